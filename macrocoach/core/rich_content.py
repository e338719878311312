import json
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Optional

COACH_PLAN_MARKUP = os.getenv("COACH_PLAN_MARKUP", "false").strip().lower() in {"1", "true", "yes", "on"}


class RichContentType(str, Enum):
    ACTION_BUTTON = "action_button"
    DATA_TABLE = "data_table"
    PLAN_CARD = "plan_card"


@dataclass(frozen=True)
class RichContent:
    type: RichContentType
    data: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "data": self.data}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "RichContent":
        return cls(type=RichContentType(raw["type"]), data=dict(raw.get("data") or {}))


@dataclass(frozen=True)
class ParsedResponse:
    text: str
    rich_content: list[RichContent] = field(default_factory=list)


# A handler receives the token body (text between "TAG:" and the closing bracket)
# and returns a directive, or None when the body is malformed.
TagHandler = Callable[[str], Optional[RichContent]]


def parse_button(body: str) -> Optional[RichContent]:
    parts = body.split("|", 2)
    if len(parts) < 2:
        return None
    label = parts[0].strip()
    route = parts[1].strip()
    if not label or not route:
        return None
    data: dict[str, Any] = {"label": label, "route": route}
    raw_params = parts[2].strip() if len(parts) == 3 else ""
    if raw_params:
        try:
            params = json.loads(raw_params)
        except json.JSONDecodeError:
            return None
        if not isinstance(params, dict):
            return None
        data["params"] = params
    data["style"] = "primary"
    return RichContent(RichContentType.ACTION_BUTTON, data)


def parse_table(body: str) -> Optional[RichContent]:
    parts = [part.strip() for part in body.split("|")]
    if len(parts) < 3:
        return None
    title = parts[0]
    headers = [cell.strip() for cell in parts[1].split(",")]
    rows = [[cell.strip() for cell in row.split(",")] for row in parts[2:] if row]
    if not title or not any(headers):
        return None
    return RichContent(RichContentType.DATA_TABLE, {"title": title, "headers": headers, "rows": rows})


def parse_plan(body: str) -> Optional[RichContent]:
    parts = [part.strip() for part in body.split("|")]
    if len(parts) < 3 or not parts[0] or not parts[1]:
        return None
    items = [{"name": item.strip()} for item in "|".join(parts[2:]).split(",") if item.strip()]
    if not items:
        return None
    return RichContent(
        RichContentType.PLAN_CARD,
        {"type": parts[0].lower(), "title": parts[1], "items": items},
    )


DEFAULT_HANDLERS: dict[str, TagHandler] = {
    "BUTTON": parse_button,
    "TABLE": parse_table,
}


def default_handlers() -> dict[str, TagHandler]:
    handlers = dict(DEFAULT_HANDLERS)
    if COACH_PLAN_MARKUP:
        handlers["PLAN"] = parse_plan
    return handlers


def _find_token_end(text: str, start: int) -> int:
    """Index of the "]" closing the token opened at ``start``, or -1.

    Brackets and braces are only counted inside a JSON value (after the
    first "{" or "[" in the body), where quoted strings are skipped.
    """
    depth = 0
    in_string = False
    escaped = False
    idx = start + 1
    while idx < len(text):
        char = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif depth > 0 and char == '"':
            in_string = True
        elif char in "{[":
            if char == "[" and depth == 0:
                # A new "[" outside JSON means this token never closed.
                return -1
            depth += 1
        elif char in "}]":
            if depth == 0:
                if char == "]":
                    return idx
            else:
                depth -= 1
        idx += 1
    return -1


def _match_tag(text: str, start: int, handlers: Mapping[str, TagHandler]) -> Optional[tuple[str, int]]:
    """Return (tag, body_start) if a registered tag opens at ``start``."""
    colon = text.find(":", start + 1)
    if colon == -1:
        return None
    tag = text[start + 1 : colon].strip().upper()
    if tag not in handlers:
        return None
    return tag, colon + 1


class RichContentParser:
    """Single-pass scanner for bracketed directives embedded in model output."""

    def __init__(self, handlers: Optional[Mapping[str, TagHandler]] = None):
        self.handlers = dict(handlers) if handlers is not None else default_handlers()

    def register(self, tag: str, handler: TagHandler) -> None:
        self.handlers[tag.strip().upper()] = handler

    def parse(self, raw_text: str) -> ParsedResponse:
        text = raw_text or ""
        out: list[str] = []
        items: list[RichContent] = []
        cursor = 0
        while True:
            start = text.find("[", cursor)
            if start == -1:
                out.append(text[cursor:])
                break
            matched = _match_tag(text, start, self.handlers)
            end = _find_token_end(text, start) if matched else -1
            if matched is None or end == -1:
                out.append(text[cursor : start + 1])
                cursor = start + 1
                continue
            out.append(text[cursor:start])
            tag, body_start = matched
            try:
                directive = self.handlers[tag](text[body_start:end])
            except Exception:
                directive = None
            if directive is not None:
                items.append(directive)
            cursor = end + 1
        return ParsedResponse(text="".join(out).strip(), rich_content=items)


def parse_rich_content(raw_text: str) -> ParsedResponse:
    return RichContentParser().parse(raw_text)
