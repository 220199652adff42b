"""Tests for the upgrade retry state machine."""

from __future__ import annotations

from conftest import FakeNpmClient

from npm_updater import (
    DependencyRecord,
    NpmCommandError,
    UpgradeExecutor,
    UpgradeStatus,
)

LODASH = DependencyRecord(name="lodash", current="4.17.20", latest="4.17.21")
REACT = DependencyRecord(name="react", current="18.2.0", latest="18.3.1")
AXIOS = DependencyRecord(name="axios", current="1.6.0", latest="1.7.2")


class RaisingInstaller:
    """Installer whose npm process cannot even be started."""

    def __init__(self) -> None:
        self.calls = 0

    def install(self, name: str, version: str, forced: bool = False) -> bool:
        self.calls += 1
        raise NpmCommandError(command=f"install {name}@{version}", stderr="EACCES", return_code=-1)


class TestUpgradeExecutor:
    """Tests for UpgradeExecutor.run."""

    def test_normal_success_skips_forced_attempt(self) -> None:
        client = FakeNpmClient()

        outcomes = UpgradeExecutor(client).run([LODASH])

        assert client.install_calls == [("lodash", "4.17.21", False)]
        assert outcomes[0].status is UpgradeStatus.SUCCEEDED
        assert outcomes[0].succeeded

    def test_failure_retries_with_force(self) -> None:
        client = FakeNpmClient(install_results={"lodash": [False, True]})

        outcomes = UpgradeExecutor(client).run([LODASH])

        assert client.install_calls == [
            ("lodash", "4.17.21", False),
            ("lodash", "4.17.21", True),
        ]
        assert outcomes[0].status is UpgradeStatus.SUCCEEDED_FORCED

    def test_forced_failure_is_failed_with_reason(self) -> None:
        client = FakeNpmClient(install_results={"lodash": [False, False]})

        (outcome,) = UpgradeExecutor(client).run([LODASH])

        assert outcome.status is UpgradeStatus.FAILED
        assert not outcome.succeeded
        assert outcome.reason
        assert len(client.install_calls) == 2

    def test_failure_does_not_abort_batch(self) -> None:
        client = FakeNpmClient(
            install_results={"lodash": [False, False], "react": [False, True]}
        )

        outcomes = UpgradeExecutor(client).run([LODASH, REACT, AXIOS])

        assert [(o.name, o.status) for o in outcomes] == [
            ("lodash", UpgradeStatus.FAILED),
            ("react", UpgradeStatus.SUCCEEDED_FORCED),
            ("axios", UpgradeStatus.SUCCEEDED),
        ]
        assert [call[0] for call in client.install_calls] == [
            "lodash",
            "lodash",
            "react",
            "react",
            "axios",
        ]

    def test_installer_error_counts_as_failed_attempt(self) -> None:
        installer = RaisingInstaller()

        (outcome,) = UpgradeExecutor(installer).run([LODASH])

        assert installer.calls == 2
        assert outcome.status is UpgradeStatus.FAILED
        assert "EACCES" in (outcome.reason or "")

    def test_outcome_carries_versions(self) -> None:
        (outcome,) = UpgradeExecutor(FakeNpmClient()).run([REACT])

        assert (outcome.old_version, outcome.new_version) == ("18.2.0", "18.3.1")

    def test_empty_batch(self) -> None:
        client = FakeNpmClient()

        assert UpgradeExecutor(client).run([]) == []
        assert client.install_calls == []
