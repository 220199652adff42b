"""Tests for the exclusion set."""

from __future__ import annotations

from pathlib import Path

from npm_updater import EXCLUDE_FILE_NAME, ExclusionSet


class TestLoad:
    """Tests for ExclusionSet.load."""

    def test_none_source_is_empty(self) -> None:
        exclusions = ExclusionSet.load(None)

        assert len(exclusions) == 0
        assert not exclusions.contains("lodash")

    def test_ignores_blank_and_whitespace_lines(self) -> None:
        exclusions = ExclusionSet.load(["lodash\n", "\n", "   \n", "\treact \n"])

        assert list(exclusions) == ["lodash", "react"]

    def test_ignores_comments(self) -> None:
        exclusions = ExclusionSet.load(["# pinned for the legacy build", "webpack"])

        assert list(exclusions) == ["webpack"]

    def test_skips_names_with_inner_whitespace(self) -> None:
        exclusions = ExclusionSet.load(["left pad", "left-pad"])

        assert list(exclusions) == ["left-pad"]

    def test_deduplicates_keeping_first_order(self) -> None:
        exclusions = ExclusionSet.load(["b", "a", "b", "c", "a"])

        assert exclusions.names == ("b", "a", "c")

    def test_membership_is_exact(self) -> None:
        exclusions = ExclusionSet.load(["@types/node"])

        assert "@types/node" in exclusions
        assert exclusions.contains("@types/node")
        assert not exclusions.contains("@types/*")
        assert not exclusions.contains("@Types/Node")
        assert not exclusions.contains("@types/node-fetch")


class TestFromFile:
    """Tests for ExclusionSet.from_file."""

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        exclusions = ExclusionSet.from_file(tmp_path / EXCLUDE_FILE_NAME)

        assert len(exclusions) == 0

    def test_reads_file(self, tmp_path: Path) -> None:
        exclude_file = tmp_path / EXCLUDE_FILE_NAME
        exclude_file.write_text("lodash\n\n# comment\nreact\nlodash\n", encoding="utf-8")

        exclusions = ExclusionSet.from_file(exclude_file)

        assert exclusions.names == ("lodash", "react")


class TestUnion:
    """Tests for ExclusionSet.union."""

    def test_appends_new_names(self) -> None:
        exclusions = ExclusionSet.load(["lodash"]).union(["react", "lodash"])

        assert exclusions.names == ("lodash", "react")

    def test_original_is_unchanged(self) -> None:
        original = ExclusionSet.load(["lodash"])
        original.union(["react"])

        assert original.names == ("lodash",)
