from macrocoach.core.rich_content import (
    RichContentParser,
    RichContentType,
    default_handlers,
    parse_plan,
    parse_rich_content,
)


def test_button_with_params_is_extracted() -> None:
    parsed = parse_rich_content('Eat this [BUTTON: Log Now | /log | {"id":1}] today')

    assert parsed.text == "Eat this  today"
    assert len(parsed.rich_content) == 1
    button = parsed.rich_content[0]
    assert button.type == RichContentType.ACTION_BUTTON
    assert button.data == {"label": "Log Now", "route": "/log", "params": {"id": 1}, "style": "primary"}


def test_button_without_params() -> None:
    parsed = parse_rich_content("[BUTTON: Open Diary | /diary]")

    assert parsed.text == ""
    assert parsed.rich_content[0].data == {"label": "Open Diary", "route": "/diary", "style": "primary"}


def test_button_params_may_contain_brackets() -> None:
    parsed = parse_rich_content('Go [BUTTON: Plan | /plan | {"days":[1,2], "note":"a]b"}] now')

    assert parsed.text == "Go  now"
    assert parsed.rich_content[0].data["params"] == {"days": [1, 2], "note": "a]b"}


def test_button_with_invalid_json_is_dropped() -> None:
    parsed = parse_rich_content("Try [BUTTON: Log | /log | {not json}] later")

    assert parsed.text == "Try  later"
    assert parsed.rich_content == []


def test_table_is_parsed_into_headers_and_rows() -> None:
    parsed = parse_rich_content("Macros: [TABLE: Today | Macro,Target | Protein,150g | Carbs,200g]")

    assert parsed.text == "Macros:"
    table = parsed.rich_content[0]
    assert table.type == RichContentType.DATA_TABLE
    assert table.data == {
        "title": "Today",
        "headers": ["Macro", "Target"],
        "rows": [["Protein", "150g"], ["Carbs", "200g"]],
    }


def test_malformed_table_is_stripped_without_directive() -> None:
    parsed = parse_rich_content("Before [TABLE: onlyonepart] after")

    assert parsed.text == "Before  after"
    assert parsed.rich_content == []


def test_multiple_tokens_keep_source_order() -> None:
    raw = "[TABLE: A | x,y | 1,2] mid [BUTTON: B | /b] end [BUTTON: C | /c]"
    parsed = parse_rich_content(raw)

    assert parsed.text == "mid  end"
    assert [item.type for item in parsed.rich_content] == [
        RichContentType.DATA_TABLE,
        RichContentType.ACTION_BUTTON,
        RichContentType.ACTION_BUTTON,
    ]
    assert [item.data.get("label") for item in parsed.rich_content[1:]] == ["B", "C"]


def test_unknown_tags_and_plain_brackets_stay_as_text() -> None:
    raw = "Use [optional] sauce and [NOTE: keep] it"
    parsed = parse_rich_content(raw)

    assert parsed.text == raw
    assert parsed.rich_content == []


def test_unterminated_token_is_left_as_text() -> None:
    raw = "Click [BUTTON: Log | /log and then [BUTTON: Save | /save]"
    parsed = parse_rich_content(raw)

    assert parsed.text == "Click [BUTTON: Log | /log and then"
    assert len(parsed.rich_content) == 1
    assert parsed.rich_content[0].data["label"] == "Save"


def test_plan_tag_ignored_unless_registered() -> None:
    raw = "[PLAN: workout | PPL | Push, Pull, Legs]"

    assert parse_rich_content(raw).text == raw

    parser = RichContentParser({**default_handlers(), "PLAN": parse_plan})
    parsed = parser.parse(raw)
    assert parsed.text == ""
    plan = parsed.rich_content[0]
    assert plan.type == RichContentType.PLAN_CARD
    assert plan.data == {
        "type": "workout",
        "title": "PPL",
        "items": [{"name": "Push"}, {"name": "Pull"}, {"name": "Legs"}],
    }


def test_registered_handler_that_raises_drops_token() -> None:
    def explode(body: str):
        raise RuntimeError("bad row")

    parser = RichContentParser()
    parser.register("table", explode)
    parsed = parser.parse("A [TABLE: t | h | r] B")

    assert parsed.text == "A  B"
    assert parsed.rich_content == []
