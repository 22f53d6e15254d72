"""Exception taxonomy for npm_ioc_scan.

Only ReportWriteError is fatal to a run. SourceUnavailableError and
ArtifactUnreadableError are raised at the I/O boundary and caught by the
stage that owns the run, which logs them and carries on with a reduced
result set. A missing conventional root is not an error at all.
"""

from __future__ import annotations

from pathlib import Path


class ScanError(Exception):
    """Base class for all npm_ioc_scan errors."""


class SourceUnavailableError(ScanError):
    """An IoC feed could not be fetched or parsed."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"IoC source unavailable: {source}: {reason}")
        self.source = source
        self.reason = reason


class ArtifactUnreadableError(ScanError):
    """A manifest or lockfile could not be read."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Cannot read {path}: {reason}")
        self.path = path
        self.reason = reason


class ReportWriteError(ScanError):
    """The report files could not be created or written."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Cannot write report {path}: {reason}")
        self.path = path
        self.reason = reason
