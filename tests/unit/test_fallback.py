from macrocoach.core.fallback import (
    DEFAULT_FALLBACK,
    DEFAULT_SUGGESTIONS,
    FALLBACK_CATEGORIES,
    fallback_reply,
    generate_suggestions,
)


def test_first_matching_category_wins() -> None:
    macro_reply = FALLBACK_CATEGORIES[0][1]
    sleep_reply = FALLBACK_CATEGORIES[2][1]

    assert fallback_reply("How many CALORIES after my workout?") == macro_reply
    assert fallback_reply("so tired today") == sleep_reply
    assert fallback_reply("hello there") == DEFAULT_FALLBACK
    assert fallback_reply("") == DEFAULT_FALLBACK


def test_suggestions_are_capped_and_deduplicated() -> None:
    suggestions = generate_suggestions("macro check after workout and sleep")

    assert len(suggestions) == 3
    assert suggestions[0] == "What should I eat for dinner?"
    assert len(set(suggestions)) == 3


def test_default_suggestions() -> None:
    assert generate_suggestions("hi") == list(DEFAULT_SUGGESTIONS)
