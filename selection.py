"""
Translation from an editor selection to span-model character offsets.

The editing surface owns the real selection. It hands the core a
SelectionQuery: a zero-argument callable answering "what is selected inside
this layer's text container right now?". The core never reaches into the
rendering layer itself; it only consumes the offset pair it is given.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, NamedTuple, Optional, Protocol

from rich_text import StylePatch, TextSpan, apply_style_to_range, clamp_range, rich_text_to_plain_text

logger = logging.getLogger(__name__)

__all__ = [
    "SelectionQuery",
    "SelectionRange",
    "apply_style_to_selection",
    "clamp_range",
    "resolve_selection",
]


class SelectionRange(NamedTuple):
    start: int
    end: int

    @property
    def is_collapsed(self) -> bool:
        return self.start == self.end


class SelectionQuery(Protocol):
    def __call__(self) -> Any:
        """Return {start, end} (mapping, pair or SelectionRange), or None."""


def _coerce(raw: Any) -> Optional[SelectionRange]:
    if raw is None:
        return None
    if isinstance(raw, SelectionRange):
        return raw
    if isinstance(raw, Mapping):
        if raw.get("start") is None or raw.get("end") is None:
            return None
        return SelectionRange(int(raw["start"]), int(raw["end"]))
    if isinstance(raw, Sequence) and not isinstance(raw, str) and len(raw) == 2:
        return SelectionRange(int(raw[0]), int(raw[1]))
    raise TypeError(f"Selection query returned an unsupported value: {raw!r}")


def resolve_selection(query: SelectionQuery, text_length: int) -> Optional[SelectionRange]:
    """Ask *query* for the current selection and fit it to the layer text.

    Returns None when there is no active selection (or it lies outside the
    container, which the query reports as None). Backwards selections are
    flipped and offsets are clamped to [0, text_length].
    """
    selection = _coerce(query())
    if selection is None:
        return None
    start, end = clamp_range(selection.start, selection.end, text_length)
    if (start, end) != tuple(selection):
        logger.debug("Selection %s adjusted to [%s, %s).", tuple(selection), start, end)
    return SelectionRange(start, end)


def apply_style_to_selection(
    rich_text: Sequence[TextSpan],
    query: SelectionQuery,
    style: StylePatch,
) -> list[TextSpan]:
    """Style whatever is selected; with no (or a collapsed) selection, style everything."""
    selection = resolve_selection(query, len(rich_text_to_plain_text(rich_text)))
    if selection is None or selection.is_collapsed:
        return apply_style_to_range(rich_text, 0, 0, style)
    return apply_style_to_range(rich_text, selection.start, selection.end, style)
