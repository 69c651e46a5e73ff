"""
Styled text spans for template text layers.

A layer's text is an ordered list of TextSpan objects whose concatenated
`text` is exactly the layer's plain text. A style field left as None means
"inherit the layer default". Every operation here returns a new list; spans
themselves are immutable.
"""

from __future__ import annotations

import html
import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from html.parser import HTMLParser
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

logger = logging.getLogger(__name__)

MIXED = "mixed"

STYLE_FIELDS = (
    "font_weight",
    "font_family",
    "font_size",
    "color",
    "font_style",
    "text_decoration",
)


class SpanStyle(BaseModel):
    """Optional inline style; also used as a partial style patch."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    font_weight: Union[int, str, None] = Field(default=None, alias="fontWeight")
    font_family: str | None = Field(default=None, alias="fontFamily")
    font_size: Union[int, float, None] = Field(default=None, alias="fontSize")
    color: str | None = Field(default=None)
    font_style: Literal["normal", "italic"] | None = Field(default=None, alias="fontStyle")
    text_decoration: Literal["none", "underline", "line-through"] | None = Field(
        default=None, alias="textDecoration"
    )

    def style_key(self) -> tuple:
        return tuple(getattr(self, name) for name in STYLE_FIELDS)


class TextSpan(SpanStyle):
    text: str = Field(default="")


RichText = list[TextSpan]
StylePatch = Union[SpanStyle, Mapping[str, Any]]

_rich_text_adapter = TypeAdapter(list[TextSpan])

_FIELD_BY_ALIAS = {
    info.alias: name for name, info in SpanStyle.model_fields.items() if info.alias
}


def style_field_name(prop: str) -> str:
    """Map a camelCase or snake_case style property to the model field name."""
    if prop in STYLE_FIELDS:
        return prop
    if prop in _FIELD_BY_ALIAS:
        return _FIELD_BY_ALIAS[prop]
    raise ValueError(f"Unknown style property {prop!r}.")


def _patch_values(style: StylePatch | None) -> dict[str, Any]:
    # Only fields the caller actually set take part in the patch; an explicit
    # None resets that field to "inherit".
    if style is None:
        return {}
    if not isinstance(style, SpanStyle):
        style = SpanStyle.model_validate(dict(style))
    return {name: getattr(style, name) for name in style.model_fields_set if name in STYLE_FIELDS}


def _restyle(span: TextSpan, patch: dict[str, Any], text: str | None = None) -> TextSpan:
    update = dict(patch)
    if text is not None:
        update["text"] = text
    if not update:
        return span
    return span.model_copy(update=update)


def clamp_range(start: int, end: int, length: int) -> tuple[int, int]:
    """Clamp a character range into [0, length], swapping backwards ranges.

    Stale offsets from a just-edited editor are expected, so out-of-range or
    inverted ranges are repaired rather than rejected.
    """
    start = max(0, min(int(start), length))
    end = max(0, min(int(end), length))
    if start > end:
        start, end = end, start
    return start, end


def rich_text_to_plain_text(rich_text: Iterable[TextSpan]) -> str:
    return "".join(span.text for span in rich_text)


def plain_text_to_rich_text(text: str, base_style: StylePatch | None = None) -> RichText:
    return [TextSpan(text=text, **_patch_values(base_style))]


def merge_adjacent_spans(rich_text: Sequence[TextSpan]) -> RichText:
    """Collapse neighbouring spans that share a style tuple.

    Empty spans are dropped. When the whole text is empty a single empty span
    (carrying the first span's style) is kept so the model is never empty.
    Running the merge on its own output returns it unchanged.
    """
    runs: list[tuple[TextSpan, list[str]]] = []
    for span in rich_text:
        if not span.text:
            continue
        if runs and runs[-1][0].style_key() == span.style_key():
            runs[-1][1].append(span.text)
        else:
            runs.append((span, [span.text]))

    if not runs:
        first = rich_text[0] if rich_text else TextSpan()
        return [first if first.text == "" else first.model_copy(update={"text": ""})]

    return [
        span if len(parts) == 1 else span.model_copy(update={"text": "".join(parts)})
        for span, parts in runs
    ]


def apply_style_to_range(
    rich_text: Sequence[TextSpan],
    start_offset: int,
    end_offset: int,
    style: StylePatch,
) -> RichText:
    """Apply *style* to the half-open character range [start_offset, end_offset).

    `start_offset == end_offset` means "no selection" and styles the whole
    text. Spans straddling a range boundary are split; the pieces outside the
    range keep their original style. The result is always merged back into
    normalized form, so the plain text never changes.
    """
    patch = _patch_values(style)

    if start_offset == end_offset:
        return merge_adjacent_spans([_restyle(span, patch) for span in rich_text])

    start, end = clamp_range(start_offset, end_offset, len(rich_text_to_plain_text(rich_text)))
    if start == end:
        logger.debug(
            "Range [%s, %s) is empty after clamping; style not applied.", start_offset, end_offset
        )
        return merge_adjacent_spans(rich_text)

    result: RichText = []
    offset = 0
    for span in rich_text:
        span_start = offset
        span_end = offset + len(span.text)
        offset = span_end

        if span_end <= start or span_start >= end:
            result.append(span)
            continue

        lo = max(span_start, start) - span_start
        hi = min(span_end, end) - span_start
        if lo > 0:
            result.append(span.model_copy(update={"text": span.text[:lo]}))
        result.append(_restyle(span, patch, span.text[lo:hi]))
        if hi < len(span.text):
            result.append(span.model_copy(update={"text": span.text[hi:]}))

    return merge_adjacent_spans(result)


def get_common_style_value(rich_text: Iterable[TextSpan], prop: str) -> Any:
    """Value of *prop* shared by every span.

    Returns None when no span sets it (all inherit), the value when exactly one
    distinct value is set, and MIXED otherwise.
    """
    name = style_field_name(prop)
    values = {getattr(span, name) for span in rich_text if getattr(span, name) is not None}
    if not values:
        return None
    if len(values) == 1:
        return next(iter(values))
    return MIXED


def get_range_style_value(
    rich_text: Sequence[TextSpan],
    start_offset: int,
    end_offset: int,
    prop: str,
) -> Any:
    if start_offset == end_offset:
        return get_common_style_value(rich_text, prop)
    start, end = clamp_range(start_offset, end_offset, len(rich_text_to_plain_text(rich_text)))
    return get_common_style_value(_slice_spans(rich_text, start, end), prop)


def has_mixed_style(rich_text: Sequence[TextSpan], prop: str) -> bool:
    if len(rich_text) <= 1:
        return False
    return get_common_style_value(rich_text, prop) == MIXED


def _slice_spans(rich_text: Iterable[TextSpan], start: int, end: int) -> RichText:
    pieces: RichText = []
    offset = 0
    for span in rich_text:
        span_start = offset
        span_end = offset + len(span.text)
        offset = span_end
        if span_end <= start or span_start >= end:
            continue
        lo = max(span_start, start) - span_start
        hi = min(span_end, end) - span_start
        pieces.append(span if (lo, hi) == (0, len(span.text)) else span.model_copy(update={"text": span.text[lo:hi]}))
    return pieces


def _span_at(rich_text: Sequence[TextSpan], offset: int) -> TextSpan:
    # Span that owns the character just before *offset* (typing continues it).
    position = 0
    for span in rich_text:
        position += len(span.text)
        if offset <= position and span.text:
            return span
    return rich_text[-1]


def replace_plain_text(
    rich_text: Sequence[TextSpan],
    new_text: str,
    default_style: StylePatch | None = None,
) -> RichText:
    """Replace the whole text after an edit, keeping styles where possible.

    The unchanged prefix and suffix keep their spans; characters typed in
    between take the style of the span at the insertion point. When the
    previous text was empty, *default_style* (or the first span's style) is
    used instead.
    """
    old_text = rich_text_to_plain_text(rich_text)
    if new_text == old_text:
        return merge_adjacent_spans(rich_text)

    if not old_text or not rich_text:
        if default_style is not None:
            return plain_text_to_rich_text(new_text, default_style)
        base = rich_text[0] if rich_text else TextSpan()
        return [base.model_copy(update={"text": new_text})]

    prefix = 0
    limit = min(len(old_text), len(new_text))
    while prefix < limit and old_text[prefix] == new_text[prefix]:
        prefix += 1
    suffix = 0
    while (
        suffix < limit - prefix
        and old_text[len(old_text) - 1 - suffix] == new_text[len(new_text) - 1 - suffix]
    ):
        suffix += 1

    head = _slice_spans(rich_text, 0, prefix)
    tail = _slice_spans(rich_text, len(old_text) - suffix, len(old_text))
    inserted = new_text[prefix:len(new_text) - suffix]

    middle: RichText = []
    if inserted:
        owner = _span_at(rich_text, prefix) if prefix > 0 else rich_text[0]
        middle.append(owner.model_copy(update={"text": inserted}))

    return merge_adjacent_spans(head + middle + tail or [rich_text[0].model_copy(update={"text": ""})])


def load_rich_text(data: Any) -> RichText:
    """Validate stored span JSON and bring it into normalized form.

    Accepts a list of span dicts (the stored format), a plain string from
    layers saved before rich text existed, or None.
    """
    if data is None:
        return [TextSpan()]
    if isinstance(data, str):
        return plain_text_to_rich_text(data)
    spans = _rich_text_adapter.validate_python(list(data))
    return merge_adjacent_spans(spans)


def dump_rich_text(rich_text: Iterable[TextSpan]) -> list[dict[str, Any]]:
    return [span.model_dump(by_alias=True, exclude_none=True) for span in rich_text]


# ---------------------------------------------------------------------------
# HTML conversion (editing surface)
# ---------------------------------------------------------------------------

_CSS_PROPERTY_BY_FIELD = {
    "font_weight": "font-weight",
    "font_family": "font-family",
    "font_size": "font-size",
    "color": "color",
    "font_style": "font-style",
    "text_decoration": "text-decoration",
}


def parse_font_family(value: str | None) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    primary = value.split(",")[0].strip().strip("'\"")
    return primary or None


def _parse_font_weight(value: str) -> int | str | None:
    v = value.strip().lower()
    if v.isdigit():
        return int(v)
    if v in {"normal", "bold", "bolder", "lighter"}:
        return v
    return None


def _parse_font_size(value: str) -> float | int | None:
    m = re.match(r"^\s*(\d+(?:\.\d+)?)\s*(px)?\s*$", value)
    if not m:
        return None
    number = float(m.group(1))
    return int(number) if number.is_integer() else number


def parse_style_attr(style_text: str) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if not isinstance(style_text, str):
        return out
    for part in style_text.split(";"):
        if ":" not in part:
            continue
        key, value = part.split(":", 1)
        k = key.strip().lower()
        v = value.strip()
        if k == "color" and v:
            out["color"] = v
        elif k == "font-family":
            out["font_family"] = parse_font_family(v)
        elif k == "font-weight":
            out["font_weight"] = _parse_font_weight(v)
        elif k == "font-style" and v.lower() in {"normal", "italic"}:
            out["font_style"] = v.lower()
        elif k == "font-size":
            out["font_size"] = _parse_font_size(v)
        elif k in {"text-decoration", "text-decoration-line"} and v.lower() in {
            "none",
            "underline",
            "line-through",
        }:
            out["text_decoration"] = v.lower()
    return out


class InlineHtmlParser(HTMLParser):
    """Collects styled text tokens from contenteditable inline markup."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.tokens: list[dict] = []
        self.style_stack: list[dict] = [{}]
        self.tag_stack: list[tuple[str, bool]] = []

    def _push_style(self, tag: str, updates: dict) -> None:
        style = dict(self.style_stack[-1])
        style.update({k: v for k, v in updates.items() if v is not None})
        self.style_stack.append(style)
        self.tag_stack.append((tag, True))

    def _push_no_style(self, tag: str) -> None:
        self.tag_stack.append((tag, False))

    def _add_newline(self, source: str) -> None:
        self.tokens.append({"newline": True, "source": source})

    def _pop_tag(self, tag: str) -> None:
        # Close everything opened after *tag* too; stray end tags are ignored.
        if all(open_tag != tag for open_tag, _ in self.tag_stack):
            return
        while self.tag_stack:
            last_tag, had_style = self.tag_stack.pop()
            if had_style and len(self.style_stack) > 1:
                self.style_stack.pop()
            if last_tag in {"p", "div", "li"}:
                self._add_newline("block")
            if last_tag == tag:
                break

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        name = tag.lower()
        attrs_map = {k.lower(): (v or "") for k, v in attrs}
        if name == "br":
            # Void element: no end tag will pop it.
            self._add_newline("br")
            return
        if name in {"b", "strong"}:
            self._push_style(name, {"font_weight": "bold"})
        elif name in {"i", "em"}:
            self._push_style(name, {"font_style": "italic"})
        elif name == "u":
            self._push_style(name, {"text_decoration": "underline"})
        elif name in {"s", "strike", "del"}:
            self._push_style(name, {"text_decoration": "line-through"})
        elif name == "font":
            self._push_style(
                name,
                {
                    "font_family": parse_font_family(attrs_map.get("face")),
                    "color": attrs_map.get("color") or None,
                },
            )
        elif name == "span":
            self._push_style(name, parse_style_attr(attrs_map.get("style", "")))
        else:
            self._push_no_style(name)

    def handle_endtag(self, tag: str) -> None:
        if tag.lower() == "br":
            return
        self._pop_tag(tag.lower())

    def handle_data(self, data: str) -> None:
        if not data:
            return
        # Ignore editor-introduced indentation/newline text nodes between tags.
        if data.strip() == "" and ("\n" in data or "\r" in data or "\t" in data):
            return
        parts = data.replace("\r\n", "\n").replace("\r", "\n").split("\n")
        current_style = self.style_stack[-1]
        for idx, part in enumerate(parts):
            if part:
                self.tokens.append({"text": part, "style": dict(current_style)})
            if idx < len(parts) - 1:
                self._add_newline("text")


def _normalize_newline_tokens(tokens: list[dict]) -> list[dict]:
    normalized: list[dict] = []
    for token in tokens:
        if not token.get("newline"):
            normalized.append(token)
            continue

        source = token.get("source", "block")
        if not normalized:
            # Drop leading block-driven line breaks.
            if source == "block":
                continue
            normalized.append(token)
            continue

        prev = normalized[-1]
        if prev.get("newline"):
            # Keep consecutive newlines only when both are explicit user breaks.
            explicit_prev = prev.get("source", "block") in {"br", "text"}
            explicit_curr = source in {"br", "text"}
            if explicit_prev and explicit_curr:
                normalized.append(token)
            continue

        normalized.append(token)

    # Trim trailing block newline noise.
    while normalized and normalized[-1].get("newline") and normalized[-1].get("source") == "block":
        normalized.pop()
    return normalized


def rich_text_from_html(html_text: str) -> RichText:
    """Convert editor HTML into a normalized span list."""
    parser = InlineHtmlParser()
    parser.feed(str(html_text))
    parser.close()

    spans: RichText = []
    last_style: dict = {}
    for token in _normalize_newline_tokens(parser.tokens):
        if token.get("newline"):
            # A line break belongs to the run it ends.
            spans.append(TextSpan(text="\n", **last_style))
            continue
        last_style = token["style"]
        spans.append(TextSpan(text=token["text"], **last_style))
    return merge_adjacent_spans(spans)


def _css_value(name: str, value: Any) -> str:
    if name == "font_size" and isinstance(value, (int, float)):
        return f"{value:g}px"
    if name == "font_family" and " " in str(value):
        return f"'{value}'"
    return str(value)


def rich_text_to_html(rich_text: Iterable[TextSpan]) -> str:
    """Render spans as inline markup for the editing surface."""
    chunks: list[str] = []
    for span in rich_text:
        if not span.text:
            continue
        declarations = [
            f"{_CSS_PROPERTY_BY_FIELD[name]}: {_css_value(name, getattr(span, name))}"
            for name in STYLE_FIELDS
            if getattr(span, name) is not None
        ]
        body = html.escape(span.text, quote=False).replace("\n", "<br>")
        if declarations:
            style = html.escape("; ".join(declarations), quote=True)
            chunks.append(f'<span style="{style}">{body}</span>')
        else:
            chunks.append(f"<span>{body}</span>")
    return "".join(chunks)
