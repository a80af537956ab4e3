"""Tests for calendar color normalization."""

import pytest

from habit_sync.utils.colors import is_allowed_calendar_color, normalize_calendar_color


class TestNormalizeCalendarColor:
    @pytest.mark.parametrize("value", ["lime", "indigo", "yellow"])
    def test_allowed_colors_pass_through(self, value):
        assert normalize_calendar_color(value) == value

    def test_case_and_whitespace(self):
        assert normalize_calendar_color("  Teal ") == "teal"

    def test_shade_suffix_stripped(self):
        assert normalize_calendar_color("blue-500") == "blue"

    @pytest.mark.parametrize("value", [None, "", "#ff0000", "chartreuse-100"])
    def test_unknown_falls_back_to_default(self, value):
        assert normalize_calendar_color(value) == "indigo"

    def test_is_allowed(self):
        assert is_allowed_calendar_color("rose")
        assert not is_allowed_calendar_color("blue-500")
