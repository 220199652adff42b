"""Tests for version classification."""

from __future__ import annotations

import pytest

from npm_updater import (
    DependencyRecord,
    UpdateClass,
    VersionFormatError,
    classify_update,
    format_duration,
    is_breaking,
    leading_component,
)


class TestLeadingComponent:
    """Tests for leading_component."""

    @pytest.mark.parametrize(
        ("version", "expected"),
        [("7.32.0", 7), ("0.1.0", 0), ("12", 12), ("3.0.0-beta.1", 3)],
    )
    def test_returns_integer_before_first_dot(self, version: str, expected: int) -> None:
        assert leading_component(version) == expected

    @pytest.mark.parametrize("version", ["git", "linked", "v1.2.3", "", ".1.2"])
    def test_non_numeric_head_raises(self, version: str) -> None:
        with pytest.raises(VersionFormatError) as exc_info:
            leading_component(version)
        assert exc_info.value.version == version

    @pytest.mark.parametrize("version", ["1_0.0.0", "+2.0.0", "-1.0.0", " 1.0.0", "٣.0.0"])
    def test_head_must_be_plain_ascii_digits(self, version: str) -> None:
        with pytest.raises(VersionFormatError):
            leading_component(version)


class TestIsBreaking:
    """Tests for is_breaking."""

    def test_major_bump_is_breaking(self) -> None:
        assert is_breaking("7.32.0", "8.5.0") is True

    def test_patch_bump_is_not_breaking(self) -> None:
        assert is_breaking("4.17.20", "4.17.21") is False

    def test_minor_bump_is_not_breaking(self) -> None:
        assert is_breaking("1.2.3", "1.9.0") is False

    def test_major_compared_numerically_not_lexically(self) -> None:
        assert is_breaking("9.0.0", "10.0.0") is True

    def test_lower_latest_is_not_breaking(self) -> None:
        assert is_breaking("2.0.0", "1.9.9") is False

    def test_invalid_latest_raises(self) -> None:
        with pytest.raises(VersionFormatError):
            is_breaking("1.0.0", "git")


class TestClassifyUpdate:
    """Tests for classify_update."""

    def test_major(self) -> None:
        record = DependencyRecord(name="eslint", current="7.32.0", latest="8.5.0")
        assert classify_update(record) is UpdateClass.MAJOR

    def test_minor_patch(self) -> None:
        record = DependencyRecord(name="lodash", current="4.17.20", latest="4.17.21")
        assert classify_update(record) is UpdateClass.MINOR_PATCH


class TestFormatDuration:
    """Tests for format_duration."""

    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [
            (1, "1 second"),
            (42.4, "42 seconds"),
            (120, "2 minutes"),
            (3600, "1 hour"),
            (3 * 86400, "3 days"),
        ],
    )
    def test_picks_largest_fitting_unit(self, seconds: float, expected: str) -> None:
        assert format_duration(seconds) == expected
