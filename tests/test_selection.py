"""
Tests for turning an editor selection into span offsets.
"""
import pytest

from conftest import dumped, spans
from selection import SelectionRange, apply_style_to_selection, resolve_selection


class TestResolveSelection:

    def test_no_selection(self):
        assert resolve_selection(lambda: None, 5) is None

    def test_mapping(self):
        assert resolve_selection(lambda: {"start": 1, "end": 3}, 5) == SelectionRange(1, 3)

    def test_pair(self):
        assert resolve_selection(lambda: (0, 2), 5) == SelectionRange(0, 2)

    def test_backwards_selection_is_flipped(self):
        assert resolve_selection(lambda: {"start": 4, "end": 1}, 5) == SelectionRange(1, 4)

    def test_stale_offsets_are_clamped(self):
        assert resolve_selection(lambda: {"start": 2, "end": 99}, 5) == SelectionRange(2, 5)
        assert resolve_selection(lambda: SelectionRange(-3, 2), 5) == SelectionRange(0, 2)

    def test_incomplete_mapping_means_no_selection(self):
        assert resolve_selection(lambda: {"start": 1}, 5) is None

    def test_unsupported_value(self):
        with pytest.raises(TypeError):
            resolve_selection(lambda: "1-3", 5)

    def test_collapsed(self):
        selection = resolve_selection(lambda: {"start": 2, "end": 2}, 5)
        assert selection.is_collapsed


class TestApplyStyleToSelection:

    def test_styles_selected_characters(self):
        result = apply_style_to_selection(spans("Hello"), lambda: {"start": 0, "end": 2}, {"fontWeight": "bold"})
        assert dumped(result) == [{"text": "He", "fontWeight": "bold"}, {"text": "llo"}]

    def test_no_selection_styles_everything(self):
        result = apply_style_to_selection(spans("Hi", " there"), lambda: None, {"color": "#ff0000"})
        assert dumped(result) == [{"text": "Hi there", "color": "#ff0000"}]

    def test_collapsed_selection_styles_everything(self):
        result = apply_style_to_selection(spans("abc"), lambda: (1, 1), {"fontSize": 20})
        assert dumped(result) == [{"text": "abc", "fontSize": 20}]
