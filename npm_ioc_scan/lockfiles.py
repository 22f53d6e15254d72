"""Indicator detection inside package-lock.json, yarn.lock and pnpm-lock.yaml.

Lockfiles are searched with coarse, format-specific heuristics instead of
being resolved:

- package-lock.json: the package name must appear as a quoted string
  somewhere in the file, and independently some ``"version": "<v>"`` field
  must equal one of that package's bad versions. The two need not come from
  the same object, so a lockfile holding ``chalk@5.0.0`` and an unrelated
  package at ``5.6.1`` is reported for ``chalk|5.6.1``. This false-positive
  mode is accepted; positives are meant to be confirmed by hand.
- yarn.lock / pnpm-lock.yaml: the literal token ``<name>@<version>`` must
  appear, not glued to a longer name before it (an ``@scope/`` prefix
  included) or a longer version after it.

Each (lockfile, IoC entry) hit yields exactly one Finding with a synthetic
``found_version`` (``lockfile:<v>`` for package-lock.json, ``lockref:<v>``
for the plain-text formats). Lockfile scans only emit positive matches.

Public API:
    detect_hits: Return the IoC entries present in lockfile text
    scan_lockfile: Read one lockfile artifact and build its Findings
"""

from __future__ import annotations

import re
from pathlib import Path

from npm_ioc_scan.errors import ArtifactUnreadableError
from npm_ioc_scan.iocs import IoCTable
from npm_ioc_scan.models import (
    ArtifactKind,
    CandidateArtifact,
    Finding,
    FindingScope,
    IoCEntry,
)

_QUOTED_RE = re.compile(r'"((?:[^"\\\n]|\\.)*)"')
_VERSION_FIELD_RE = re.compile(r'"version"\s*:\s*"((?:[^"\\\n]|\\.)*)"')

# Characters that would extend a package name to the left or a version to the right
_NAME_CHARS = r"\w.\-"
_VERSION_CHARS = r"\w.+\-"

# A scope segment directly before "/" means the token is part of a scoped name
_SCOPE_TAIL_RE = re.compile(r"@[\w.\-]+$")
_MAX_NAME_LENGTH = 214

_FOUND_PREFIX: dict[ArtifactKind, str] = {
    ArtifactKind.PACKAGE_LOCK: "lockfile",
    ArtifactKind.YARN_LOCK: "lockref",
    ArtifactKind.PNPM_LOCK: "lockref",
}


def _package_lock_hits(text: str, table: IoCTable) -> list[IoCEntry]:
    quoted = set(_QUOTED_RE.findall(text))
    versions = set(_VERSION_FIELD_RE.findall(text))
    hits: list[IoCEntry] = []
    for entry in table:
        if entry.package_name in quoted and entry.bad_version in versions:
            hits.append(entry)
    return hits


def _token_present(text: str, token: str) -> bool:
    if token not in text:
        return False
    pattern = re.compile(rf"(?<![{_NAME_CHARS}]){re.escape(token)}(?![{_VERSION_CHARS}])")
    for match in pattern.finditer(text):
        start = match.start()
        # "@types/debug@1.0.0" names @types/debug, not debug
        if start and text[start - 1] == "/":
            head = text[max(0, start - 1 - _MAX_NAME_LENGTH):start - 1]
            if _SCOPE_TAIL_RE.search(head):
                continue
        return True
    return False


def _key_at_version_hits(text: str, table: IoCTable) -> list[IoCEntry]:
    return [
        entry
        for entry in table
        if _token_present(text, f"{entry.package_name}@{entry.bad_version}")
    ]


def detect_hits(text: str, kind: ArtifactKind, table: IoCTable) -> list[IoCEntry]:
    """Return the IoC entries detected in lockfile text, in table order.

    Args:
        text: Lockfile content.
        kind: Which lockfile format the text holds.
        table: The run's IoC table.

    Returns:
        The matching entries; empty for an empty table.

    Raises:
        ValueError: If ``kind`` is not a lockfile kind.
    """
    if kind is ArtifactKind.PACKAGE_LOCK:
        return _package_lock_hits(text, table)
    if kind in (ArtifactKind.YARN_LOCK, ArtifactKind.PNPM_LOCK):
        return _key_at_version_hits(text, table)
    raise ValueError(f"not a lockfile kind: {kind}")


def _read_lockfile(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        raise ArtifactUnreadableError(path, exc.strerror or str(exc)) from exc


def scan_lockfile(
    artifact: CandidateArtifact,
    table: IoCTable,
    timestamp: str,
    host: str,
) -> list[Finding]:
    """Scan one lockfile and return a Finding per detected IoC entry.

    Args:
        artifact: The lockfile to scan.
        table: The run's IoC table.
        timestamp: Run timestamp stamped on every finding.
        host: Host name stamped on every finding.

    Returns:
        Positive findings only, in table order.

    Raises:
        ArtifactUnreadableError: If the file cannot be read.
    """
    if not table:
        return []
    text = _read_lockfile(artifact.path)
    prefix = _FOUND_PREFIX[artifact.kind]
    return [
        Finding(
            timestamp=timestamp,
            host=host,
            scope=FindingScope.LOCKFILE,
            owner=artifact.owner,
            location=str(artifact.path),
            package=entry.package_name,
            found_version=f"{prefix}:{entry.bad_version}",
            indicator_version=entry.bad_version,
            match=True,
            type=artifact.kind.filename,
        )
        for entry in detect_hits(text, artifact.kind, table)
    ]
