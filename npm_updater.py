#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
npm Package Updater
============================

This module provides a class `NpmUpdater` to check a Node.js project for
outdated npm packages, separate breaking (major) updates from minor/patch
ones, and install the non-breaking subset after an interactive
confirmation. Packages listed in `.npm-update-exclude` are reported but
never updated, and a failed install is retried once with `--force`.
"""

import sys

REQUIRED_PYTHON_VERSION = (3, 11)

current_version = sys.version_info

if current_version < REQUIRED_PYTHON_VERSION:
    print(
        f"Error: This script requires Python version {REQUIRED_PYTHON_VERSION[0]}.{REQUIRED_PYTHON_VERSION[1]} or later."
    )
    print(
        f"You are using Python {current_version.major}.{current_version.minor}.{current_version.micro}."
    )
    sys.exit(1)

import argparse
import contextlib
import hashlib
import json
import platform
import shutil
import subprocess
import time
import traceback

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import (
    Any,
    Callable,
    Final,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Protocol,
    Self,
    Sequence,
    Tuple,
    Union,
)

try:
    from loguru import logger
    from rich.console import Console
    from rich.theme import Theme
    from rich.logging import RichHandler
    from rich.table import Table
    from rich.progress import (
        Progress,
        SpinnerColumn,
        TextColumn,
        BarColumn,
        TimeElapsedColumn,
    )
    import diskcache  # For caching `npm outdated` results
except ImportError as e:
    print(
        f"Error: Missing required libraries ({e.name}). Please install them: pip install loguru rich diskcache"
    )
    sys.exit(1)

# --- Constants ---
NPM_EXECUTABLE: Final[str] = "npm"
EXCLUDE_FILE_NAME: Final[str] = ".npm-update-exclude"
# Files whose content decides whether a cached outdated report is still valid
PROJECT_STATE_FILES: Final[Tuple[str, ...]] = ("package.json", "package-lock.json")
DEFAULT_LOG_FILE = Path("npm_updater.log")
DEFAULT_CACHE_DIR = Path.home() / ".cache" / "npm_updater"
DEFAULT_CACHE_DURATION_MINUTES = 0  # Caching is opt-in via --cache-duration
OUTDATED_CACHE_TAG: Final[str] = "outdated"
AFFIRMATIVE_ANSWER: Final[str] = "y"
CONFIRMATION_PROMPT: Final[str] = "Do you want to update these packages? (y/n): "
NAME_COLUMN_WIDTH: Final[int] = 30
VERSION_COLUMN_WIDTH: Final[int] = 15

# --- Custom Exceptions ---


class NpmUpdaterError(Exception):
    """Base exception for the NpmUpdater class."""

    pass


class PrerequisiteMissingError(NpmUpdaterError):
    """Raised when a required external tool is not available."""

    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(f"{tool} is not installed. Please install {tool} first.")


class NpmCommandError(NpmUpdaterError):
    """Raised when an npm command fails unexpectedly."""

    def __init__(self, command: str, stderr: str, return_code: int):
        self.command = command
        self.stderr = stderr
        self.return_code = return_code
        super().__init__(
            f"npm command '{command}' failed with code {return_code}:\n{stderr}"
        )


class ReportParseError(NpmUpdaterError):
    """Raised when the outdated report is malformed."""

    pass


class VersionFormatError(NpmUpdaterError):
    """Raised when a version string has no integer leading component."""

    def __init__(self, version: str):
        self.version = version
        super().__init__(f"Version '{version}' has no numeric major component")


class CacheError(NpmUpdaterError):
    """Raised for issues related to caching."""

    def __init__(self, cache_key: str, details: Union[str, Exception]):
        self.cache_key = cache_key
        self.details = details
        super().__init__(f"Cache operation failed for '{cache_key}': {details}")


# --- Data Structures ---


class UpdateClass(str, Enum):
    """Semantic-version impact of moving from `current` to `latest`."""

    MAJOR = "major"
    MINOR_PATCH = "minor/patch"


class UpgradeStatus(str, Enum):
    """Terminal state of a single package upgrade."""

    SUCCEEDED = "succeeded"
    SUCCEEDED_FORCED = "succeeded with --force"
    FAILED = "failed"


class RunResult(str, Enum):
    """How a run ended. Each value maps to a distinct terminal message."""

    UP_TO_DATE = "up-to-date"
    NO_MINOR_PATCH_UPDATES = "no-minor-patch-updates"
    NOTHING_AFTER_EXCLUSIONS = "nothing-after-exclusions"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


@dataclass(frozen=True, kw_only=True)
class DependencyRecord:
    """One entry of the `npm outdated` report."""

    name: str
    current: str
    latest: str
    wanted: Optional[str] = None
    dependency_type: Optional[str] = None  # e.g., 'dependencies', 'devDependencies'


@dataclass(frozen=True)
class ExclusionSet:
    """
    Ordered, immutable collection of package names that must never be
    updated automatically. Membership is an exact string match.
    """

    names: Tuple[str, ...] = ()

    @classmethod
    def load(cls, source: Optional[Iterable[str]]) -> Self:
        """
        Builds an exclusion set from an iterable of lines.

        Blank lines and lines starting with '#' are ignored, surrounding
        whitespace is stripped and duplicates are dropped, keeping the
        first occurrence. A missing source yields an empty set.
        """
        if source is None:
            return cls()
        names: List[str] = []
        for line_num, line in enumerate(source, 1):
            name = line.strip()
            if not name or name.startswith("#"):
                continue
            if any(char.isspace() for char in name):
                logger.warning(
                    f"Possible invalid package name '{name}' (contains whitespace) at line {line_num}. Skipping."
                )
                continue
            if name not in names:
                names.append(name)
        return cls(names=tuple(names))

    @classmethod
    def from_file(cls, file_path: Path) -> Self:
        """Reads package names from an exclude file. A missing file is not an error."""
        if not file_path.is_file():
            logger.debug(f"No exclude file found at {file_path}")
            return cls()
        try:
            with file_path.open("r", encoding="utf-8", errors="replace") as f:
                exclusions = cls.load(f)
        except OSError as e:
            raise NpmUpdaterError(
                f"Could not read exclude file '{file_path}': {e}"
            ) from e
        logger.debug(
            f"Read {len(exclusions)} unique package names from {file_path}"
        )
        return exclusions

    def union(self, names: Iterable[str]) -> "ExclusionSet":
        """Returns a new set with `names` appended after the current entries."""
        return ExclusionSet.load([*self.names, *names])

    def contains(self, name: str) -> bool:
        return name in self.names

    def __contains__(self, name: object) -> bool:
        return name in self.names

    def __iter__(self) -> Iterator[str]:
        return iter(self.names)

    def __len__(self) -> int:
        return len(self.names)


@dataclass(frozen=True)
class UpdatePlan:
    """
    Result of partitioning the outdated report.

    `majors` are shown but never updated, `approved` are minor/patch updates
    to install, `skipped` are minor/patch updates held back by the exclusion
    set and `invalid` are records whose versions could not be classified.
    Every parsed record lands in exactly one of the four groups.
    """

    majors: Tuple[DependencyRecord, ...] = ()
    approved: Tuple[DependencyRecord, ...] = ()
    skipped: Tuple[DependencyRecord, ...] = ()
    invalid: Tuple[DependencyRecord, ...] = ()

    @property
    def minor_patch_count(self) -> int:
        return len(self.approved) + len(self.skipped)


@dataclass(frozen=True, kw_only=True)
class UpgradeOutcome:
    """Final state of one package after the upgrade batch."""

    name: str
    status: UpgradeStatus
    old_version: str
    new_version: str
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is not UpgradeStatus.FAILED


@dataclass
class RunSummary:
    """Stores statistics about a single updater run."""

    outdated_count: int = 0
    major_count: int = 0
    excluded_count: int = 0
    invalid_count: int = 0
    attempted_update_count: int = 0
    successful_update_count: int = 0
    forced_update_count: int = 0
    failed_update_count: int = 0
    outcomes: List[UpgradeOutcome] = field(default_factory=list)
    result: Optional[RunResult] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    cache_used: bool = False

    @property
    def duration(self) -> Optional[float]:
        """Calculates the duration of the run in seconds."""
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return None

    def record_outcomes(self, outcomes: Sequence[UpgradeOutcome]) -> None:
        self.outcomes.extend(outcomes)
        for outcome in outcomes:
            if outcome.status is UpgradeStatus.FAILED:
                self.failed_update_count += 1
            else:
                self.successful_update_count += 1
                if outcome.status is UpgradeStatus.SUCCEEDED_FORCED:
                    self.forced_update_count += 1


# --- Time Operations ---
@contextlib.contextmanager
def timed_block(name: Optional[str] = "Updater"):
    start = time.perf_counter()
    try:
        yield
    finally:
        logger.debug(
            f"{name} completed in {format_duration(time.perf_counter() - start)}"
        )


def format_duration(seconds: float) -> str:
    """
    Converts a duration in seconds into a human-readable string using the most appropriate time unit.

    Args:
        seconds (float): The total duration in seconds.

    Returns:
        str: A human-friendly string representation of the duration.
    """
    SECONDS_PER_MINUTE: Final = 60
    SECONDS_PER_HOUR: Final = 3600
    SECONDS_PER_DAY: Final = 86400

    if seconds < SECONDS_PER_MINUTE:
        value = float(seconds)
        unit = "second"
    elif seconds < SECONDS_PER_HOUR:
        value = seconds / SECONDS_PER_MINUTE
        unit = "minute"
    elif seconds < SECONDS_PER_DAY:
        value = seconds / SECONDS_PER_HOUR
        unit = "hour"
    else:
        value = seconds / SECONDS_PER_DAY
        unit = "day"

    display_value = int(round(value))
    plural = "s" if display_value != 1 else ""

    return f"{display_value} {unit}{plural}"


# --- Version Classification ---


def leading_component(version: str) -> int:
    """
    Returns the integer before the first '.' of a version string.

    Raises:
        VersionFormatError: If that component is not an integer
                            (e.g., 'git', 'linked', 'v1.2.3').
    """
    head = version.split(".", 1)[0]
    # int() alone would also take '+2', '1_0' and non-ASCII digits
    if not (head.isascii() and head.isdigit()):
        raise VersionFormatError(version)
    return int(head)


def is_breaking(current: str, latest: str) -> bool:
    """
    True iff the leading component of `latest` is greater than that of
    `current`. Changes confined to the second component or later are never
    breaking.
    """
    return leading_component(latest) > leading_component(current)


def classify_update(record: DependencyRecord) -> UpdateClass:
    if is_breaking(record.current, record.latest):
        return UpdateClass.MAJOR
    return UpdateClass.MINOR_PATCH


# --- Report Parsing & Planning ---


def _npm_error_summary(data: Mapping[str, Any]) -> Optional[str]:
    """Returns npm's error summary when the report is an error payload."""
    error = data.get("error")
    if not isinstance(error, Mapping) or "current" in error:
        return None
    code = error.get("code", "unknown")
    summary = error.get("summary") or error.get("detail") or "no details"
    return f"npm reported an error ({code}): {summary}"


def parse_outdated_report(
    raw: Union[str, Mapping[str, Any], None],
) -> List[DependencyRecord]:
    """
    Parses the output of `npm outdated --json` into dependency records.

    Args:
        raw: The JSON text of the report, an already-decoded mapping, or None.
             None, empty output, 'null' and '{}' all mean nothing is outdated.

    Returns:
        One record per package, in report order.

    Raises:
        ReportParseError: If the report or any entry in it is malformed. No
                          partial result is ever returned.
    """
    if raw is None:
        return []

    if isinstance(raw, str):
        if not raw.strip():
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ReportParseError(f"Outdated report is not valid JSON: {e}") from e
    else:
        data = raw

    if data is None:
        return []
    if not isinstance(data, Mapping):
        raise ReportParseError(
            f"Outdated report must be a JSON object, got {type(data).__name__}"
        )

    if error_summary := _npm_error_summary(data):
        raise ReportParseError(error_summary)

    records: List[DependencyRecord] = []
    for name, entry in data.items():
        if not isinstance(name, str) or not name.strip():
            raise ReportParseError("Outdated report contains an empty package name")
        if not isinstance(entry, Mapping):
            raise ReportParseError(
                f"Entry for '{name}' must be an object, got {type(entry).__name__}"
            )

        missing = [
            key
            for key in ("current", "latest")
            if not isinstance(entry.get(key), str) or not entry[key].strip()
        ]
        if missing:
            raise ReportParseError(
                f"Entry for '{name}' is missing required field(s): {', '.join(missing)}"
            )

        wanted = entry.get("wanted")
        dependency_type = entry.get("type")
        records.append(
            DependencyRecord(
                name=name,
                current=entry["current"].strip(),
                latest=entry["latest"].strip(),
                wanted=wanted if isinstance(wanted, str) else None,
                dependency_type=(
                    dependency_type if isinstance(dependency_type, str) else None
                ),
            )
        )
    return records


def plan_updates(
    records: Iterable[DependencyRecord], exclusions: ExclusionSet
) -> UpdatePlan:
    """
    Partitions records into majors, approved, skipped and invalid groups.

    Pure apart from logging: the same inputs always give the same plan, and
    every group keeps the input order.
    """
    majors: List[DependencyRecord] = []
    approved: List[DependencyRecord] = []
    skipped: List[DependencyRecord] = []
    invalid: List[DependencyRecord] = []

    for record in records:
        try:
            update_class = classify_update(record)
        except VersionFormatError as e:
            logger.warning(
                f"Cannot classify '{record.name}' ({record.current} -> {record.latest}): {e}. Leaving it out of the update plan."
            )
            invalid.append(record)
            continue

        if update_class is UpdateClass.MAJOR:
            majors.append(record)
        elif exclusions.contains(record.name):
            logger.debug(f"Package '{record.name}' is excluded from updates.")
            skipped.append(record)
        else:
            approved.append(record)

    return UpdatePlan(
        majors=tuple(majors),
        approved=tuple(approved),
        skipped=tuple(skipped),
        invalid=tuple(invalid),
    )


def is_affirmative(answer: Optional[str]) -> bool:
    """Only 'y' (any case, surrounding whitespace ignored) confirms."""
    return answer is not None and answer.strip().lower() == AFFIRMATIVE_ANSWER


# --- Upgrade Execution ---


class Installer(Protocol):
    def install(self, name: str, version: str, forced: bool = False) -> bool: ...


class UpgradeExecutor:
    """
    Installs approved packages one at a time.

    Each package goes through a normal install and, only if that fails, a
    single `--force` retry. A package that fails both attempts is recorded
    as failed and the batch moves on to the next one.
    """

    def __init__(self, installer: Installer, console: Optional[Console] = None):
        self.installer = installer
        self.console = console

    def run(self, approved: Iterable[DependencyRecord]) -> List[UpgradeOutcome]:
        records = list(approved)
        outcomes: List[UpgradeOutcome] = []

        progress_context: Any = contextlib.nullcontext()
        task_id = None
        if self.console is not None and records:
            progress = Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                TimeElapsedColumn(),
                console=self.console,
                transient=False,
            )
            progress_context = progress
            task_id = progress.add_task("[cyan]Updating packages...", total=len(records))

        with progress_context as progress:
            for record in records:
                if progress:
                    progress.update(
                        task_id,
                        description=f"[cyan]Updating {record.name} ({record.current} → {record.latest})",
                    )
                outcomes.append(self._upgrade(record))
                if progress:
                    progress.update(task_id, advance=1)

        return outcomes

    def _attempt(
        self, record: DependencyRecord, forced: bool
    ) -> Tuple[bool, Optional[str]]:
        try:
            return self.installer.install(record.name, record.latest, forced=forced), None
        except NpmUpdaterError as e:
            logger.error(f"Install of {record.name} could not run: {e}")
            return False, str(e)

    def _upgrade(self, record: DependencyRecord) -> UpgradeOutcome:
        logger.info(f"Updating {record.name} ({record.current} -> {record.latest})...")

        succeeded, error = self._attempt(record, forced=False)
        if succeeded:
            logger.success(f"✅ Successfully updated {record.name}")
            return UpgradeOutcome(
                name=record.name,
                status=UpgradeStatus.SUCCEEDED,
                old_version=record.current,
                new_version=record.latest,
            )

        logger.warning(f"⚠️ Initial update of {record.name} failed, retrying with --force...")
        succeeded, forced_error = self._attempt(record, forced=True)
        if succeeded:
            logger.success(f"✅ Successfully updated {record.name} with --force")
            return UpgradeOutcome(
                name=record.name,
                status=UpgradeStatus.SUCCEEDED_FORCED,
                old_version=record.current,
                new_version=record.latest,
            )

        logger.error(f"❌ Failed to update {record.name} even with --force")
        return UpgradeOutcome(
            name=record.name,
            status=UpgradeStatus.FAILED,
            old_version=record.current,
            new_version=record.latest,
            reason=forced_error or error or "npm install failed, also with --force",
        )


# --- npm Process Boundary ---


class NpmClient:
    """
    Runs npm inside a project directory.

    Args:
        project_dir (str | Path): Directory holding package.json.
        npm_executable (str): Name or path of the npm executable.
    """

    def __init__(
        self: Self,
        project_dir: str | Path = ".",
        npm_executable: str = NPM_EXECUTABLE,
    ) -> None:
        self.project_dir: Path = Path(project_dir).resolve()
        self.npm_executable: str = npm_executable
        self._npm_path: Optional[str] = None

    def check_prerequisites(self: Self) -> None:
        """Raises PrerequisiteMissingError if npm cannot be found on PATH."""
        npm_path = shutil.which(self.npm_executable)
        if npm_path is None:
            raise PrerequisiteMissingError(self.npm_executable)
        logger.debug(f"Using npm at {npm_path}")
        self._npm_path = npm_path

    def _run_npm_command(self: Self, command: List[str]) -> Tuple[str, str, int]:
        """Runs an npm command in the project directory, ensuring UTF-8 encoding."""
        full_command = [self._npm_path or self.npm_executable] + command
        command_str = " ".join(full_command)
        logger.debug(f"Executing command: {command_str} (cwd: {self.project_dir})")
        try:
            process = subprocess.run(
                full_command,
                cwd=self.project_dir,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                check=False,
            )
        except FileNotFoundError as e:
            logger.critical(
                f"Error: '{self.npm_executable}' command not found. Is npm installed correctly?"
            )
            raise PrerequisiteMissingError(self.npm_executable) from e
        except OSError as e:
            logger.opt(exception=True).debug("Traceback for subprocess error:")
            raise NpmCommandError(
                command=command_str, stderr=str(e), return_code=-1
            ) from e

        logger.debug(f"Command finished with return code: {process.returncode}")
        stdout = process.stdout.strip() if process.stdout else ""
        stderr = process.stderr.strip() if process.stderr else ""
        if stdout:
            logger.trace(f"Command stdout:\n{stdout}")
        if stderr:
            logger.log(
                "WARNING" if process.returncode != 0 else "DEBUG",
                f"Command stderr: {stderr}",
            )
        return stdout, stderr, process.returncode

    def get_npm_version(self: Self) -> str:
        try:
            stdout, _, return_code = self._run_npm_command(["--version"])
        except NpmUpdaterError as e:
            logger.error(f"Failed to get npm version: {e}")
            return "Error retrieving version"
        return stdout if return_code == 0 and stdout else "Unknown"

    def fetch_outdated_report(self: Self) -> str:
        """
        Returns the raw JSON output of `npm outdated --json`.

        npm exits with code 1 whenever something is outdated, so a non-zero
        code is only treated as an error when no report was produced.
        """
        command = ["outdated", "--json"]
        stdout, stderr, return_code = self._run_npm_command(command)
        if return_code != 0 and not stdout:
            raise NpmCommandError(
                command=" ".join(command), stderr=stderr, return_code=return_code
            )
        return stdout

    def install(self: Self, name: str, version: str, forced: bool = False) -> bool:
        """Installs `name@version`, adding `--force` when asked. Returns True on success."""
        command = ["install", f"{name}@{version}"]
        if forced:
            command.append("--force")
        _, _, return_code = self._run_npm_command(command)
        return return_code == 0

    def project_state_hash(self: Self) -> Optional[str]:
        """
        Computes a SHA256 hash over package.json and package-lock.json.

        Returns:
            A hex digest string, or None if neither file could be read.
        """
        digest = hashlib.sha256()
        found = False
        for file_name in PROJECT_STATE_FILES:
            try:
                content = (self.project_dir / file_name).read_bytes()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(
                    f"Could not read {file_name} for hashing: {e}. Cache validation will be skipped."
                )
                return None
            digest.update(file_name.encode("utf-8") + b"\0" + content)
            found = True
        if not found:
            return None
        state_hash = digest.hexdigest()
        logger.debug(f"Project state hash: '{state_hash[:10]}...{state_hash[-10:]}'")
        return state_hash


# --- The Main Class ---


class NpmUpdater:
    """
    Checks a project for outdated npm packages and updates the minor/patch
    ones that are not excluded, with caching and detailed logging.

    Args:
        project_dir (str | Path): Directory holding package.json.
        exclude_packages (Optional[Iterable[str]]): Packages to always exclude.
        exclude_file (Optional[str | Path]): Exclude file (default: `.npm-update-exclude` in project_dir).
        log_level (str): Minimum logging level.
        log_to_file (bool): Whether to log to a file.
        log_file_path (str | Path): Path for the log file.
        rich_console (bool): Use Rich for enhanced console output.
        cache_duration_minutes (int): How long to cache outdated reports (in minutes).
        cache_dir (str | Path): Directory to store cache files.
        client (Optional[NpmClient]): npm boundary; built from project_dir when omitted.
    """

    def __init__(
        self: Self,
        project_dir: str | Path = ".",
        exclude_packages: Optional[Iterable[str]] = None,
        exclude_file: Optional[str | Path] = None,
        log_level: str = "INFO",
        log_to_file: bool = True,
        log_file_path: str | Path = DEFAULT_LOG_FILE,
        rich_console: bool = True,
        cache_duration_minutes: int = DEFAULT_CACHE_DURATION_MINUTES,
        cache_dir: str | Path = DEFAULT_CACHE_DIR,
        client: Optional[NpmClient] = None,
    ) -> None:
        self.project_dir: Path = Path(project_dir).resolve()
        self.exclude_packages: List[str] = list(exclude_packages or [])
        self.exclude_file: Path = (
            Path(exclude_file) if exclude_file else self.project_dir / EXCLUDE_FILE_NAME
        )
        self.log_level: str = log_level.upper()
        self.log_to_file: bool = log_to_file
        self.log_file_path: Path = Path(log_file_path)
        self.use_rich_console: bool = rich_console
        self.cache_duration_seconds: int = cache_duration_minutes * 60
        self.cache_dir: Path = Path(cache_dir).resolve()
        self.console = Console(
            stderr=True,
            record=True,
            theme=Theme(
                {
                    "logging.level.info": "bold magenta",
                }
            ),
        )
        self.cache: Optional[diskcache.Cache] = None

        self._setup_logger()
        self._setup_cache()

        self.client = client if client is not None else NpmClient(self.project_dir)

        self.exclusions: ExclusionSet = ExclusionSet()
        self.records: List[DependencyRecord] = []
        self.plan: UpdatePlan = UpdatePlan()
        self.summary: RunSummary = RunSummary()

        logger.info("NpmUpdater initialized")
        logger.debug(f"Project directory: {self.project_dir}")
        logger.debug(f"Exclude file: {self.exclude_file}")
        logger.debug(f"Excluded packages (command line): {self.exclude_packages}")
        logger.debug(f"Log level: {self.log_level}")
        logger.debug(
            f"Log to file: {self.log_to_file} (Path: {self.log_file_path if self.log_to_file else 'Disabled'})"
        )
        logger.debug(f"Rich console: {self.use_rich_console}")
        logger.debug(f"Cache duration: {cache_duration_minutes} minutes")
        logger.debug(f"Cache directory: {self.cache_dir}")
        logger.debug(f"Python version: {sys.version}")
        logger.debug(
            f"Platform: {platform.system()} {platform.release()} ({platform.machine()})"
        )

    def _setup_logger(self: Self) -> None:
        """Configures the Loguru logger."""
        logger.remove()  # Remove default handler

        file_log_format = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"
        stderr_log_format = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <level>{message}</level>"

        if self.use_rich_console:
            logger.add(
                RichHandler(
                    console=self.console,
                    rich_tracebacks=True,
                    markup=True,
                    show_path=False,
                ),
                level=self.log_level,
                format="{message}",
            )
        else:
            logger.add(
                sys.stderr,
                level=self.log_level,
                format=stderr_log_format,
                colorize=True,
            )

        if self.log_to_file:
            try:
                self.log_file_path.parent.mkdir(parents=True, exist_ok=True)
                logger.add(
                    self.log_file_path,
                    level="DEBUG",  # Log everything to file
                    format=file_log_format,
                    rotation="10 MB",
                    retention="7 days",
                    encoding="utf-8",
                )
                logger.info(f"Logging detailed output to file: {self.log_file_path}")
            except OSError as e:
                print(
                    f"ERROR: Failed to configure file logging to {self.log_file_path}: {e}",
                    file=sys.stderr,
                )
                self.log_to_file = False

        logger.debug("Logger configured successfully.")

    def _setup_cache(self: Self) -> None:
        """Initializes the disk cache."""
        if self.cache_duration_seconds <= 0:
            logger.debug("Cache duration is zero or negative, caching disabled.")
            self.cache = None
            return

        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            self.cache = diskcache.Cache(str(self.cache_dir))
            logger.debug(f"Disk cache initialized at: {self.cache_dir}")
            # Prune expired items on startup
            self.cache.expire()
        except Exception as e:
            logger.error(
                f"Failed to initialize disk cache at '{self.cache_dir}': {e}. Caching will be disabled."
            )
            self.cache = None

    def _get_cache_key(self: Self) -> str:
        return f"npm_outdated_{self.project_dir}"

    def _attempt_cache_deletion(self: Self, cache_key: str, reason: str) -> None:
        """Helper to safely attempt cache deletion after an error."""
        if self.cache is None:
            return
        try:
            self.cache.delete(cache_key)
            logger.debug(f"Deleted cache entry '{cache_key}' due to {reason}.")
        except Exception as inner_e:
            logger.error(str(CacheError(cache_key, inner_e)))

    def _read_cached_report(self: Self, state_hash: str) -> Optional[str]:
        """Returns the cached report if it is unexpired and the project is unchanged."""
        cache_key = self._get_cache_key()
        try:
            # A miss returns (default, None, None) when expire_time and tag are set
            cached_entry, expiry_timestamp, _ = self.cache.get(
                cache_key, default=None, expire_time=True, tag=True
            )
            if cached_entry is None:
                logger.info("No cached outdated report found.")
                return None
            stored_report, stored_hash = cached_entry
        except Exception as e:
            logger.opt(exception=True).warning(
                f"Failed to read from cache: {e}. Proceeding without cache."
            )
            self._attempt_cache_deletion(cache_key, "read failure")
            return None

        if stored_hash != state_hash:
            logger.info(
                "package.json or package-lock.json changed since the report was cached. Invalidating cache."
            )
            return None
        if not isinstance(stored_report, str):
            logger.warning(
                f"Invalid data type found in cache for key '{cache_key}'. Ignoring cache."
            )
            self._attempt_cache_deletion(cache_key, "invalid cached data")
            return None

        if expiry_timestamp:
            expiry_dt = datetime.fromtimestamp(expiry_timestamp)
            remaining_s = max(expiry_timestamp - time.time(), 0)
            logger.success(
                f"Using cached report (valid until {expiry_dt.strftime('%Y-%m-%d %H:%M:%S')}, {format_duration(remaining_s)} remaining)."
            )
        return stored_report

    def _get_outdated_report(self: Self, state_hash: Optional[str]) -> str:
        """Returns the raw outdated report, from cache when it is still valid."""
        self.summary.cache_used = False
        use_cache = self.cache is not None and state_hash is not None

        if self.cache is not None and state_hash is None:
            logger.warning(
                "No package.json or package-lock.json to hash. Skipping cache."
            )

        if use_cache:
            cached_report = self._read_cached_report(state_hash)
            if cached_report is not None:
                self.summary.cache_used = True
                return cached_report

        logger.info("Fetching live outdated report from npm...")
        with timed_block("Outdated check"):
            live_report = self.client.fetch_outdated_report()

        if use_cache:
            try:
                self.cache.set(
                    self._get_cache_key(),
                    (live_report, state_hash),
                    expire=self.cache_duration_seconds,
                    tag=OUTDATED_CACHE_TAG,
                )
                logger.debug(
                    f"Stored fresh outdated report in cache (expires in {self.cache_duration_seconds}s)."
                )
            except Exception as e:
                logger.opt(exception=True).warning(f"Failed to write to cache: {e}")
        return live_report

    def _log_exclusions(self: Self) -> None:
        if not self.exclusions:
            return
        logger.info(f"⚙️  Excluding packages listed in {self.exclude_file.name} or on the command line:")
        for name in self.exclusions:
            logger.info(f"  - {name}")

    def check_updates(self: Self) -> UpdatePlan:
        """
        Checks prerequisites, loads the exclusion set, fetches and parses the
        outdated report and partitions it into an update plan.

        Raises:
            PrerequisiteMissingError: If npm is not available.
            NpmCommandError: If `npm outdated` could not produce a report.
            ReportParseError: If the report is malformed.
        """
        logger.info("🔍 Checking for outdated npm packages...")
        self.summary = RunSummary(start_time=datetime.now())

        self.client.check_prerequisites()
        logger.debug(f"npm version: {self.client.get_npm_version()}")

        self.exclusions = ExclusionSet.from_file(self.exclude_file).union(
            self.exclude_packages
        )
        self._log_exclusions()

        raw_report = self._get_outdated_report(self.client.project_state_hash())
        try:
            self.records = parse_outdated_report(raw_report)
        except ReportParseError as e:
            logger.error(f"Failed to parse outdated report: {e}")
            logger.debug(f"Raw report:\n{raw_report}")
            self._attempt_cache_deletion(self._get_cache_key(), "unparseable report")
            raise

        self.plan = plan_updates(self.records, self.exclusions)
        self.summary.outdated_count = len(self.records)
        self.summary.major_count = len(self.plan.majors)
        self.summary.excluded_count = len(self.plan.skipped)
        self.summary.invalid_count = len(self.plan.invalid)
        logger.debug(
            f"Plan: {len(self.plan.majors)} major, {len(self.plan.approved)} approved, "
            f"{len(self.plan.skipped)} skipped, {len(self.plan.invalid)} invalid"
        )
        return self.plan

    def ask_confirmation(self: Self) -> bool:
        """Blocks until the user answers. Anything but 'y'/'Y' declines."""
        try:
            answer = (
                self.console.input(f"\n[bold yellow]❓ {CONFIRMATION_PROMPT}[/]")
                if self.use_rich_console
                else input(f"\n{CONFIRMATION_PROMPT}")
            )
        except EOFError:
            logger.warning("Could not get confirmation (EOFError). Aborting update.")
            return False
        except KeyboardInterrupt:
            logger.warning("\nUpdate confirmation interrupted.")
            return False
        return is_affirmative(answer)

    def run(
        self: Self,
        confirm: Optional[Callable[[], bool]] = None,
        skip_confirmation: bool = False,
    ) -> RunSummary:
        """
        Runs the full flow: check, display, confirm, update, summarize.

        Args:
            confirm: Returns the user's decision; defaults to `ask_confirmation`.
            skip_confirmation: Proceed without asking.
        """
        plan = self.check_updates()

        if not self.records:
            logger.success("✅ All packages are already up to date!")
            return self._finish(RunResult.UP_TO_DATE)

        self._render_majors(plan)
        self._render_minor_patch(plan)
        self._render_invalid(plan)

        if not plan.approved:
            if plan.skipped:
                logger.warning("⚠️  No packages left to update after exclusions.")
                return self._finish(RunResult.NOTHING_AFTER_EXCLUSIONS)
            logger.warning("⚠️  No packages with minor/patch updates found to update.")
            return self._finish(RunResult.NO_MINOR_PATCH_UPDATES)

        proceed = skip_confirmation or (confirm or self.ask_confirmation)()
        if not proceed:
            logger.warning("⚠️  Update cancelled by user.")
            return self._finish(RunResult.CANCELLED)

        self.update_packages()
        return self._finish(RunResult.COMPLETED)

    def update_packages(self: Self) -> List[UpgradeOutcome]:
        """Installs every approved package and records the outcomes."""
        approved = self.plan.approved
        plural = "s" if len(approved) != 1 else ""
        logger.info(f"⬆️  Updating {len(approved)} package{plural}...")
        self.summary.attempted_update_count = len(approved)

        executor = UpgradeExecutor(
            self.client, console=self.console if self.use_rich_console else None
        )
        outcomes = executor.run(approved)
        self.summary.record_outcomes(outcomes)

        if any(outcome.succeeded for outcome in outcomes):
            # The project changed, so the cached report is stale
            self._attempt_cache_deletion(self._get_cache_key(), "completed updates")
        return outcomes

    def _finish(self: Self, result: RunResult) -> RunSummary:
        self.summary.result = result
        self.summary.end_time = datetime.now()
        self._log_summary()
        logger.success("🎉 Update finished!")
        return self.summary

    # --- Rendering ---

    def _version_table(self: Self, title: str, header_style: str) -> Table:
        table = Table(
            title=title,
            show_header=True,
            header_style=header_style,
        )
        table.add_column("Package", style="cyan", width=NAME_COLUMN_WIDTH, no_wrap=True)
        table.add_column("Current", style="yellow", min_width=VERSION_COLUMN_WIDTH)
        table.add_column("Latest", style="green", min_width=VERSION_COLUMN_WIDTH)
        return table

    @staticmethod
    def _format_row(name: str, current: str, latest: str) -> str:
        return f"{name:<{NAME_COLUMN_WIDTH}} {current:<{VERSION_COLUMN_WIDTH}} {latest:<{VERSION_COLUMN_WIDTH}}"

    def _log_plain_header(self: Self) -> None:
        logger.info(self._format_row("Package", "Current", "Latest"))
        logger.info(
            self._format_row(
                "-" * NAME_COLUMN_WIDTH,
                "-" * VERSION_COLUMN_WIDTH,
                "-" * VERSION_COLUMN_WIDTH,
            )
        )

    def _render_majors(self: Self, plan: UpdatePlan) -> None:
        if not plan.majors:
            logger.success("✅ No major updates found.")
            return

        title = "⚠️  Packages with MAJOR updates available"
        if self.use_rich_console:
            table = self._version_table(f"[bold yellow]{title}[/]", "bold yellow")
            for record in plan.majors:
                table.add_row(record.name, record.current, record.latest)
            self.console.print(table)
        else:
            logger.warning(f"{title}:")
            self._log_plain_header()
            for record in plan.majors:
                logger.info(self._format_row(record.name, record.current, record.latest))

    def _render_minor_patch(self: Self, plan: UpdatePlan) -> None:
        if not plan.minor_patch_count:
            return

        # Approved and skipped share one listing, in report order
        minor_patch = [
            record
            for record in self.records
            if record in plan.approved or record in plan.skipped
        ]
        title = "📦 Packages with minor/patch updates available"
        if self.use_rich_console:
            table = self._version_table(f"[bold cyan]{title}[/]", "bold cyan")
            table.add_column("Status")
            for record in minor_patch:
                if record in plan.skipped:
                    table.add_row(
                        f"[dim]{record.name}[/]",
                        record.current,
                        record.latest,
                        "[yellow]⏭️  excluded[/]",
                    )
                else:
                    table.add_row(record.name, record.current, record.latest, "update")
            self.console.print(table)
        else:
            logger.info(f"{title}:")
            self._log_plain_header()
            for record in minor_patch:
                if record in plan.skipped:
                    logger.warning(f"⏭️  Skipping excluded package: {record.name}")
                else:
                    logger.info(
                        self._format_row(record.name, record.current, record.latest)
                    )

    def _render_invalid(self: Self, plan: UpdatePlan) -> None:
        if not plan.invalid:
            return
        names = ", ".join(record.name for record in plan.invalid)
        logger.warning(
            f"Could not classify {len(plan.invalid)} package(s) with non-numeric versions: {names}"
        )

    def _log_summary(self: Self) -> None:
        """Logs a summary report of the run, using Rich tables if enabled."""
        summary = self.summary
        duration = summary.duration
        duration_str = f"{duration:.2f} seconds" if duration is not None else "N/A"
        logger.info("=" * 45)
        logger.info(f"{'Update Summary Report'.center(45)}")
        logger.info("=" * 45)
        logger.info(f"Process duration: {duration_str}")
        logger.info(f"Outdated check cache used: {'Yes' if summary.cache_used else 'No'}")
        logger.info(f"Outdated packages found: {summary.outdated_count}")
        logger.info(f"Major updates (not applied): {summary.major_count}")
        logger.info(f"Packages skipped (excluded): {summary.excluded_count}")
        if summary.invalid_count:
            logger.info(f"Packages skipped (unclassifiable version): {summary.invalid_count}")
        logger.info(f"Packages attempted to update: {summary.attempted_update_count}")
        logger.info(f"Successfully updated: {summary.successful_update_count}")
        if summary.forced_update_count:
            logger.info(f"- of which needed --force: {summary.forced_update_count}")
        logger.info(f"Failed to update: {summary.failed_update_count}")

        if not summary.outcomes:
            return

        succeeded = [outcome for outcome in summary.outcomes if outcome.succeeded]
        failed = [outcome for outcome in summary.outcomes if not outcome.succeeded]

        if self.use_rich_console:
            if succeeded:
                success_table = Table(
                    title="[bold green]Successful Updates[/]",
                    show_header=True,
                    header_style="bold blue",
                    expand=True,
                )
                success_table.add_column(
                    "Package", style="cyan", width=NAME_COLUMN_WIDTH, no_wrap=True
                )
                success_table.add_column("Old Version", style="yellow")
                success_table.add_column("New Version", style="green")
                success_table.add_column("Mode")
                for outcome in succeeded:
                    mode = (
                        "[yellow]--force[/]"
                        if outcome.status is UpgradeStatus.SUCCEEDED_FORCED
                        else "normal"
                    )
                    success_table.add_row(
                        outcome.name, outcome.old_version, outcome.new_version, mode
                    )
                self.console.print(success_table)
            else:
                logger.info("No packages were successfully updated.")

            if failed:
                fail_table = Table(
                    title="[bold red]Failed Updates[/]",
                    show_header=True,
                    header_style="bold red",
                    expand=True,
                )
                fail_table.add_column(
                    "Package", style="cyan", width=NAME_COLUMN_WIDTH, no_wrap=True
                )
                fail_table.add_column("Reason", style="red")
                for outcome in failed:
                    fail_table.add_row(f"[bold red]{outcome.name}[/]", outcome.reason or "")
                self.console.print(fail_table)
        else:
            if succeeded:
                logger.info("Successfully updated packages:")
                for outcome in succeeded:
                    suffix = (
                        " (--force)"
                        if outcome.status is UpgradeStatus.SUCCEEDED_FORCED
                        else ""
                    )
                    logger.info(
                        f"  - {outcome.name}: {outcome.old_version} -> {outcome.new_version}{suffix}"
                    )
            else:
                logger.info("No packages were successfully updated.")

            if failed:
                logger.warning("Failed packages:")
                for outcome in failed:
                    logger.warning(f"  - {outcome.name}: {outcome.reason}")


# --- CLI Argument Parsing ---
def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parses command-line arguments using argparse."""
    parser = argparse.ArgumentParser(
        description="npm Package Updater",
        formatter_class=lambda prog: argparse.RawTextHelpFormatter(
            prog, max_help_position=80
        ),
        epilog=f"""
Default exclude file: {EXCLUDE_FILE_NAME} (in the project directory)
Default cache directory: {DEFAULT_CACHE_DIR}
Default cache duration: {DEFAULT_CACHE_DURATION_MINUTES} minutes

Example Usage:
  # Check the current project and update minor/patch releases interactively
  python {sys.argv[0]}

  # Exclude extra packages and show debug logs
  python {sys.argv[0]} --exclude lodash react --log-level DEBUG

  # Update without the confirmation prompt, reusing a report for up to 30 minutes
  python {sys.argv[0]} -y --cache-duration 30

""",
    )

    project_group = parser.add_argument_group("Project & Exclusion Options")
    logging_cache_group = parser.add_argument_group("Logging & Cache Options")
    execution_group = parser.add_argument_group("Execution Options")

    project_group.add_argument(
        "--project-dir",
        type=Path,
        default=Path("."),
        metavar="PATH",
        help="Directory containing package.json (default: current directory).",
    )
    project_group.add_argument(
        "--exclude-file",
        type=Path,
        metavar="FILE_PATH",
        help=f"Text file with package names to exclude, one per line (default: {EXCLUDE_FILE_NAME}).",
    )
    project_group.add_argument(
        "--exclude",
        type=str,
        nargs="*",
        default=[],
        metavar="PKG",
        help="List of package names to exclude directly.",
    )

    logging_cache_group.add_argument(
        "--log-level",
        type=str.upper,
        choices=["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Set the minimum console logging level (default: INFO).",
    )
    logging_cache_group.add_argument(
        "--log-file-path",
        type=Path,
        default=DEFAULT_LOG_FILE,
        metavar="PATH",
        help=f"Path to the log file (default: {DEFAULT_LOG_FILE}).",
    )
    logging_cache_group.add_argument(
        "--no-log-file",
        action="store_false",
        dest="log_to_file",
        help="Disable logging to a file.",
    )
    logging_cache_group.add_argument(
        "--no-rich-console",
        action="store_false",
        dest="rich_console",
        help="Disable rich formatting (colors, tables, progress) in console output.",
    )
    logging_cache_group.add_argument(
        "--no-cache",
        action="store_true",
        default=False,
        help="Disable caching entirely (equivalent to --cache-duration 0).",
    )
    logging_cache_group.add_argument(
        "--cache-duration",
        type=int,
        default=None,
        metavar="MINUTES",
        help=f"Cache validity for outdated reports in minutes (0 disables cache, default: {DEFAULT_CACHE_DURATION_MINUTES}, i.e. always fetch live).",
    )
    logging_cache_group.add_argument(
        "--cache-dir",
        type=Path,
        default=DEFAULT_CACHE_DIR,
        metavar="PATH",
        help=f"Directory for cache files (default: {DEFAULT_CACHE_DIR}).",
    )

    execution_group.add_argument(
        "-y",
        "--yes",
        action="store_true",
        dest="skip_confirmation",
        help="Skip the confirmation prompt before updating packages.",
    )

    args = parser.parse_args(argv)

    if args.no_cache:
        if args.cache_duration not in (None, 0):
            parser.error(
                "Cannot use --cache-duration (with non-zero value) when --no-cache is specified."
            )
        args.cache_duration = 0
    elif args.cache_duration is None:
        args.cache_duration = DEFAULT_CACHE_DURATION_MINUTES

    if args.cache_duration < 0:
        parser.error("--cache-duration cannot be negative.")

    if not args.project_dir.is_dir():
        parser.error(f"Project directory not found: {args.project_dir}")

    # The default exclude file is optional, an explicit one is not
    if args.exclude_file and not args.exclude_file.is_file():
        parser.error(f"Exclude file not found: {args.exclude_file}")

    return args


# --- Main Execution Block ---


def main(argv: Optional[List[str]] = None) -> None:
    """Main function to parse arguments and run the updater."""
    args = parse_arguments(argv)
    print(
        f"> Running NpmUpdater CLI at {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}..."
    )

    try:
        updater = NpmUpdater(
            project_dir=args.project_dir,
            exclude_packages=args.exclude,
            exclude_file=args.exclude_file,
            log_level=args.log_level,
            log_to_file=args.log_to_file,
            log_file_path=args.log_file_path,
            rich_console=args.rich_console,
            cache_duration_minutes=args.cache_duration,
            cache_dir=args.cache_dir,
        )
    except Exception as e:
        print("\n--- FATAL ERROR during initialization ---", file=sys.stderr)
        print(f"Error: {e}", file=sys.stderr)
        print("-" * 40, file=sys.stderr)
        traceback.print_exc()
        print("-" * 40, file=sys.stderr)
        sys.exit(1)

    exit_code = 0
    try:
        updater.run(skip_confirmation=args.skip_confirmation)
    except PrerequisiteMissingError as e:
        logger.critical(f"❌ {e}")
        exit_code = 1
    except ReportParseError as e:
        logger.critical(f"❌ Could not parse the outdated report: {e}")
        exit_code = 1
    except NpmUpdaterError as e:
        logger.critical(f"A critical error occurred: {e}")
        exit_code = 1
    except KeyboardInterrupt:
        logger.warning("\nProcess interrupted by user (Ctrl+C).")
        exit_code = 130
    except Exception as e:
        logger.opt(exception=True).critical(f"An unexpected error occurred: {e}")
        exit_code = 1
    finally:
        logger.info(f"NpmUpdater finished with exit code {exit_code}.")
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
