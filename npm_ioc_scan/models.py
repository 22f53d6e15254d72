"""Data models for npm_ioc_scan roots, artifacts, findings and scan results.

This module defines the core dataclasses and enumerations shared by every
stage of a scan: the indicator entries loaded from an IoC source, the roots
and candidate artifacts discovered on disk, the findings produced by the
match evaluator and the aggregated result of one run.

Classes:
    IoCEntry: A single (package name, bad version) indicator
    RootScope: Enumeration of root scopes (global, project)
    Root: A directory conventionally known to hold installed packages
    ArtifactKind: Enumeration of candidate artifact kinds
    CandidateArtifact: A discovered manifest or lockfile path
    FindingScope: Enumeration of the scope column written to reports
    Finding: One reported observation about a package/location pair
    ExitPolicy: How a ScanResult is turned into a process exit status
    ScanResult: Aggregate of all findings for one run
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

# Sentinel found_version when a manifest carries no version field
UNKNOWN_VERSION = "unknown"

# Owner recorded for system-wide roots
GLOBAL_OWNER = "global"


@dataclass(frozen=True)
class IoCEntry:
    """A known-compromised (package name, version) pair.

    Attributes:
        package_name: npm package name, possibly scoped (``@scope/name``)
        bad_version: The exact version string known to be compromised
    """

    package_name: str
    bad_version: str

    def __str__(self) -> str:
        return f"{self.package_name}|{self.bad_version}"


class RootScope(str, Enum):
    """Where a root sits: a system/toolchain install prefix or a user's projects."""

    GLOBAL = "global"
    PROJECT = "project"


@dataclass(frozen=True)
class Root:
    """A directory known by convention to be the base of installed packages.

    Attributes:
        path: Normalised absolute directory path
        scope: Whether the root is a global install prefix or a project tree
        owner: ``global`` for system roots, otherwise the owning user name
    """

    path: Path
    scope: RootScope
    owner: str = GLOBAL_OWNER


class ArtifactKind(str, Enum):
    """Kinds of files the scope walker yields."""

    MANIFEST = "manifest"
    PACKAGE_LOCK = "package-lock"
    YARN_LOCK = "yarn-lock"
    PNPM_LOCK = "pnpm-lock"

    @property
    def filename(self) -> str:
        """Return the on-disk file name for this artifact kind."""
        names: dict[ArtifactKind, str] = {
            ArtifactKind.MANIFEST: "package.json",
            ArtifactKind.PACKAGE_LOCK: "package-lock.json",
            ArtifactKind.YARN_LOCK: "yarn.lock",
            ArtifactKind.PNPM_LOCK: "pnpm-lock.yaml",
        }
        return names[self]

    @property
    def is_lockfile(self) -> bool:
        return self is not ArtifactKind.MANIFEST


@dataclass(frozen=True)
class CandidateArtifact:
    """A discovered manifest or lockfile.

    Attributes:
        path: Absolute path of the file
        kind: Which artifact format the file holds
        root: The Root the file was found under
        mtime: Last-modification time as a POSIX timestamp
    """

    path: Path
    kind: ArtifactKind
    root: Root
    mtime: float

    @property
    def owner(self) -> str:
        return self.root.owner


class FindingScope(str, Enum):
    """Value of the ``scope`` report column."""

    GLOBAL = "global"
    PROJECT = "project"
    LOCKFILE = "lockfile"


@dataclass(frozen=True)
class Finding:
    """One reported observation about a package at a location.

    Findings are immutable; the report sink only ever appends them.

    Attributes:
        timestamp: Run timestamp (ISO 8601, UTC, second precision)
        host: Short host name of the scanned machine
        scope: Report scope (global, project or lockfile)
        owner: ``global`` or the user the artifact belongs to
        location: Path of the manifest or lockfile
        package: The package name the finding is about
        found_version: Version read from the artifact, ``unknown``, or a
            synthetic ``lockfile:<v>`` / ``lockref:<v>`` tag
        indicator_version: The IoC version compared against (empty when the
            package is not in the IoC table)
        match: True when the observed version equals the indicator version
        type: ``node_modules`` or the lockfile's file name
    """

    timestamp: str
    host: str
    scope: FindingScope
    owner: str
    location: str
    package: str
    found_version: str
    indicator_version: str
    match: bool
    type: str

    def to_row(self) -> list[str]:
        """Return the tabular-report cells in fixed column order."""
        return [
            self.timestamp,
            self.host,
            self.scope.value,
            self.owner,
            self.location,
            self.package,
            self.found_version,
            self.indicator_version,
            "true" if self.match else "false",
            self.type,
        ]

    def to_dict(self) -> dict[str, Any]:
        """Serialize this finding to a JSON-serializable dictionary.

        Returns:
            A dict with the same fields as a tabular row, ``match`` as a bool.
        """
        return {
            "timestamp": self.timestamp,
            "host": self.host,
            "scope": self.scope.value,
            "user_or_owner": self.owner,
            "location": self.location,
            "package": self.package,
            "found_version": self.found_version,
            "indicator_version": self.indicator_version,
            "match": self.match,
            "type": self.type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Finding:
        """Deserialize a Finding from a dictionary.

        Args:
            data: A dict as produced by ``to_dict()``.

        Returns:
            A new Finding instance.

        Raises:
            KeyError: If required keys are missing from the dict.
            ValueError: If the scope value is invalid.
        """
        return cls(
            timestamp=data["timestamp"],
            host=data["host"],
            scope=FindingScope(data["scope"]),
            owner=data["user_or_owner"],
            location=data["location"],
            package=data["package"],
            found_version=data["found_version"],
            indicator_version=data["indicator_version"],
            match=bool(data["match"]),
            type=data["type"],
        )


class ExitPolicy(str, Enum):
    """How a finished scan maps to a process exit status.

    - ALWAYS_SUCCEED: exit 0 regardless of findings; the report is the signal
    - FAIL_ON_MATCH: exit 1 when any finding matched an indicator
    """

    ALWAYS_SUCCEED = "always-succeed"
    FAIL_ON_MATCH = "fail-on-match"


@dataclass
class ScanResult:
    """Aggregate of all findings for one run.

    Attributes:
        timestamp: Run timestamp shared by every finding
        host: Short host name shared by every finding
        findings: Findings in discovery order
        roots: Roots that were traversed, in enumeration order
        ioc_count: Number of IoC entries the run matched against
        report_paths: Paths of the written report files (empty until written)
    """

    timestamp: str
    host: str
    findings: list[Finding] = field(default_factory=list)
    roots: list[Root] = field(default_factory=list)
    ioc_count: int = 0
    report_paths: list[Path] = field(default_factory=list)

    @property
    def compromised(self) -> bool:
        """Return True if any finding matched an indicator."""
        return any(f.match for f in self.findings)

    @property
    def matches(self) -> list[Finding]:
        """Return only the findings that matched an indicator."""
        return [f for f in self.findings if f.match]

    @property
    def total_findings(self) -> int:
        return len(self.findings)

    def exit_code(self, policy: ExitPolicy) -> int:
        """Compute the process exit status under the given policy.

        Args:
            policy: The configured exit policy.

        Returns:
            0 on success, 1 when the policy fails the run on a match.
        """
        if policy is ExitPolicy.FAIL_ON_MATCH and self.compromised:
            return 1
        return 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize this result to the structured report layout.

        Returns:
            A dict with ``timestamp``, ``host`` and the ordered ``findings``.
        """
        return {
            "timestamp": self.timestamp,
            "host": self.host,
            "findings": [f.to_dict() for f in self.findings],
        }
