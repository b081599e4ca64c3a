"""Tests for path segment formatting."""

import pytest

from fluent_client.models import SegmentStyle
from fluent_client.path_formatter import build_path, format_segment, is_numeric_segment


class TestIsNumericSegment:
    @pytest.mark.parametrize("segment", ["42", "0", "-7", "3.14", ".5", "1e10", "+2"])
    def test_numeric(self, segment: str) -> None:
        assert is_numeric_segment(segment)

    @pytest.mark.parametrize("segment", ["v2", "1_000", "abc", "12ab", "1-2"])
    def test_not_numeric(self, segment: str) -> None:
        assert not is_numeric_segment(segment)


class TestFormatSegment:
    @pytest.mark.parametrize(
        "style,expected",
        [
            (SegmentStyle.KEBAB_CASE, "user-profiles"),
            (SegmentStyle.SNAKE_CASE, "user_profiles"),
            (SegmentStyle.CAMEL_CASE, "userProfiles"),
            (SegmentStyle.PASCAL_CASE, "UserProfiles"),
            (SegmentStyle.DOT_NOTATION, "user.profiles"),
            (SegmentStyle.CONSTANT_CASE, "USER_PROFILES"),
        ],
    )
    def test_styles(self, style: SegmentStyle, expected: str) -> None:
        assert format_segment("user_profiles", style) == expected

    @pytest.mark.parametrize("style", list(SegmentStyle))
    def test_numeric_passes_through(self, style: SegmentStyle) -> None:
        """Numeric segments are preserved verbatim in every style."""
        assert format_segment("1.5e3", style) == "1.5e3"

    def test_default_is_kebab(self) -> None:
        assert format_segment("a_b_c") == "a-b-c"

    def test_empty_segment_rejected(self) -> None:
        with pytest.raises(ValueError):
            format_segment("")


class TestBuildPath:
    def test_single_separators(self) -> None:
        assert build_path(["api", "v2", "user_profiles", "42"]) == "api/v2/user-profiles/42"

    def test_no_segments(self) -> None:
        assert build_path([]) == ""

    def test_style_applied_to_each_segment(self) -> None:
        assert build_path(["my_api", "user_id"], SegmentStyle.CAMEL_CASE) == "myApi/userId"
