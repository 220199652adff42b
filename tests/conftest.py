"""Shared test fixtures."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

import pytest

from npm_updater import NpmUpdater, PrerequisiteMissingError


class FakeNpmClient:
    """Stands in for NpmClient without starting any npm process.

    ``install_results`` maps a package name to the results of the normal and
    the forced attempt, in that order. Unknown packages install fine.
    """

    def __init__(
        self,
        report: str | None = None,
        install_results: dict[str, list[bool]] | None = None,
        missing_tool: str | None = None,
        state_hash: str | None = "state-1",
    ) -> None:
        self.report = report
        self.install_results = install_results or {}
        self.missing_tool = missing_tool
        self.state_hash = state_hash
        self.fetch_count = 0
        self.install_calls: list[tuple[str, str, bool]] = []

    def check_prerequisites(self) -> None:
        if self.missing_tool:
            raise PrerequisiteMissingError(self.missing_tool)

    def get_npm_version(self) -> str:
        return "10.8.2"

    def project_state_hash(self) -> str | None:
        return self.state_hash

    def fetch_outdated_report(self) -> str | None:
        self.fetch_count += 1
        return self.report

    def install(self, name: str, version: str, forced: bool = False) -> bool:
        self.install_calls.append((name, version, forced))
        results = self.install_results.get(name, [True])
        index = 1 if forced else 0
        return results[min(index, len(results) - 1)]


def report_json(entries: dict[str, tuple[str, str]]) -> str:
    """Build `npm outdated --json` output from name -> (current, latest)."""
    return json.dumps(
        {
            name: {
                "current": current,
                "wanted": latest,
                "latest": latest,
                "dependent": "demo-app",
                "location": f"node_modules/{name}",
                "type": "dependencies",
            }
            for name, (current, latest) in entries.items()
        }
    )


@pytest.fixture
def eslint_lodash_report() -> str:
    """The report used throughout: one major and one patch update."""
    return report_json({"eslint": ("7.32.0", "8.5.0"), "lodash": ("4.17.20", "4.17.21")})


@pytest.fixture
def make_updater(tmp_path: Path) -> Callable[..., NpmUpdater]:
    """Create an NpmUpdater wired to a FakeNpmClient inside tmp_path."""

    def _make(client: FakeNpmClient, **kwargs: Any) -> NpmUpdater:
        options: dict[str, Any] = {
            "project_dir": tmp_path,
            "log_to_file": False,
            "rich_console": False,
            "cache_duration_minutes": 0,
            "cache_dir": tmp_path / "cache",
        }
        options.update(kwargs)
        return NpmUpdater(client=client, **options)  # type: ignore[arg-type]

    return _make
