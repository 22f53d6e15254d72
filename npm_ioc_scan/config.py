"""Run configuration: IoC sources, scan scope, time window, output and exit policy.

A single frozen ScanConfig carries the union of every capability the scanner
supports. The classmethod constructors reproduce the historical variants
(static list, remote feed for the console user, remote feed restricted to an
incident window); ``dataclasses.replace`` covers everything in between.
"""

from __future__ import annotations

import datetime
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from npm_ioc_scan.models import ExitPolicy

# Public Wiz research feed for the second wave of the npm worm
DEFAULT_FEED_URL = (
    "https://raw.githubusercontent.com/wiz-sec-public/wiz-research-iocs/"
    "main/reports/shai-hulud-2-packages.csv"
)

DEFAULT_FEED_TIMEOUT = 15.0
DEFAULT_PROJECT_MAX_DEPTH = 8
DEFAULT_GLOBAL_MAX_DEPTH = 16
DEFAULT_REPORT_BASENAME = "npm_compromise_scan"


def _default_users_dir() -> Path:
    return Path("/Users") if sys.platform == "darwin" else Path("/home")


def _default_output_dir() -> Path:
    return Path("/Library/Logs") if sys.platform == "darwin" else Path("/var/log")


class ScopeMode(str, Enum):
    """Which user homes are scanned besides the global roots.

    - SYSTEM: every home directory under ``users_dir``
    - USER: only the supplied current user's home
    """

    SYSTEM = "system"
    USER = "user"


class ManifestMode(str, Enum):
    """How manifests are evaluated against the IoC table.

    - INVENTORY: read every manifest under a root; packages absent from the
      table are still reported (unmatched) for completeness auditing
    - TARGETED: only manifests whose directory names an IoC package
    """

    INVENTORY = "inventory"
    TARGETED = "targeted"


@dataclass(frozen=True)
class UserContext:
    """The current user and their home directory, resolved by the caller."""

    name: str
    home: Path


@dataclass(frozen=True)
class TimeWindow:
    """A half-open modification-time interval ``[start, end)``.

    Naive datetimes are taken as local time.
    """

    start: datetime.datetime
    end: datetime.datetime

    def __post_init__(self) -> None:
        if self.start_ts >= self.end_ts:
            raise ValueError(
                f"time window start must precede end, got {self.start} >= {self.end}"
            )

    @property
    def start_ts(self) -> float:
        return self.start.timestamp()

    @property
    def end_ts(self) -> float:
        return self.end.timestamp()

    def contains(self, mtime: float) -> bool:
        """Return True if ``mtime`` lies in ``[start, end)``."""
        return self.start_ts <= mtime < self.end_ts

    def __str__(self) -> str:
        return f"[{self.start.isoformat()}, {self.end.isoformat()})"


@dataclass(frozen=True)
class ScanConfig:
    """Everything a scan run needs to know.

    Attributes:
        use_static_iocs: Include the embedded IoC table
        feed_urls: Remote CSV feeds to fetch and merge
        feed_files: Local CSV files in the feed dialect to merge
        feed_timeout: Per-request timeout in seconds for feed fetches
        scope_mode: Scan every home (SYSTEM) or one user's home (USER)
        user: The current user, required for meaningful USER scope
        users_dir: Parent directory of home directories for SYSTEM scope
        window: Optional modification-time window
        manifest_mode: INVENTORY (unfiltered) or TARGETED (filtered)
        report_unmatched: Record findings whose match flag is false
        exit_policy: How the result maps to the process exit status
        output_dir: Directory receiving the CSV and JSON reports
        report_basename: File name stem of both reports
        project_max_depth: Depth bound for walks under home directories
        global_max_depth: Depth bound for walks under global roots
    """

    use_static_iocs: bool = True
    feed_urls: tuple[str, ...] = ()
    feed_files: tuple[Path, ...] = ()
    feed_timeout: float = DEFAULT_FEED_TIMEOUT
    scope_mode: ScopeMode = ScopeMode.SYSTEM
    user: UserContext | None = None
    users_dir: Path = field(default_factory=_default_users_dir)
    window: TimeWindow | None = None
    manifest_mode: ManifestMode = ManifestMode.INVENTORY
    report_unmatched: bool = True
    exit_policy: ExitPolicy = ExitPolicy.ALWAYS_SUCCEED
    output_dir: Path = field(default_factory=_default_output_dir)
    report_basename: str = DEFAULT_REPORT_BASENAME
    project_max_depth: int = DEFAULT_PROJECT_MAX_DEPTH
    global_max_depth: int = DEFAULT_GLOBAL_MAX_DEPTH

    def __post_init__(self) -> None:
        if self.feed_timeout <= 0:
            raise ValueError(f"feed_timeout must be positive, got {self.feed_timeout}")
        if self.project_max_depth < 1 or self.global_max_depth < 1:
            raise ValueError("max depth values must be at least 1")
        if not self.report_basename or "/" in self.report_basename:
            raise ValueError(f"invalid report_basename: {self.report_basename!r}")

    @property
    def has_sources(self) -> bool:
        return self.use_static_iocs or bool(self.feed_urls) or bool(self.feed_files)

    @property
    def csv_path(self) -> Path:
        return self.output_dir / f"{self.report_basename}.csv"

    @property
    def json_path(self) -> Path:
        return self.output_dir / f"{self.report_basename}.json"

    # ------------------------------------------------------------------
    # Historical variants
    # ------------------------------------------------------------------

    @classmethod
    def static_variant(cls, **overrides: object) -> ScanConfig:
        """Embedded table, every home, targeted manifests, always succeed."""
        values: dict[str, object] = {
            "use_static_iocs": True,
            "scope_mode": ScopeMode.SYSTEM,
            "manifest_mode": ManifestMode.TARGETED,
            "exit_policy": ExitPolicy.ALWAYS_SUCCEED,
        }
        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]

    @classmethod
    def remote_variant(
        cls,
        feed_urls: tuple[str, ...] = (DEFAULT_FEED_URL,),
        user: UserContext | None = None,
        **overrides: object,
    ) -> ScanConfig:
        """Remote feeds, console user only, matches only, fail on match."""
        values: dict[str, object] = {
            "use_static_iocs": False,
            "feed_urls": tuple(feed_urls),
            "scope_mode": ScopeMode.USER,
            "user": user,
            "manifest_mode": ManifestMode.INVENTORY,
            "report_unmatched": False,
            "exit_policy": ExitPolicy.FAIL_ON_MATCH,
        }
        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]

    @classmethod
    def windowed_variant(
        cls,
        window: TimeWindow,
        user: UserContext | None = None,
        **overrides: object,
    ) -> ScanConfig:
        """Console user only, targeted manifests inside an incident window."""
        values: dict[str, object] = {
            "scope_mode": ScopeMode.USER,
            "user": user,
            "window": window,
            "manifest_mode": ManifestMode.TARGETED,
            "exit_policy": ExitPolicy.FAIL_ON_MATCH,
        }
        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]
