"""Exact-match evaluation of manifest facts against the IoC table.

Matching is plain string equality on both name and version, case-sensitive,
with no semantic-version range logic: ``5.6.1`` never matches ``^5.6.1`` or
``5.6.1-rc.0``.

Two evaluation modes exist (see ManifestMode):

- INVENTORY: the package name comes from the manifest's ``name`` field.
  A name with IoC entries produces one Finding per entry; a name absent from
  the table produces a single unmatched Finding with an empty indicator.
- TARGETED: the package name is derived from the manifest's directory and
  only names present in the table are evaluated, one Finding per entry.
"""

from __future__ import annotations

from npm_ioc_scan.config import ManifestMode
from npm_ioc_scan.iocs import IoCTable
from npm_ioc_scan.manifest import ManifestFields, package_name_from_path
from npm_ioc_scan.models import (
    UNKNOWN_VERSION,
    CandidateArtifact,
    Finding,
    FindingScope,
    RootScope,
)

MANIFEST_FINDING_TYPE = "node_modules"


def _finding_scope(artifact: CandidateArtifact) -> FindingScope:
    if artifact.root.scope is RootScope.GLOBAL:
        return FindingScope.GLOBAL
    return FindingScope.PROJECT


def is_match(found_name: str, found_version: str, package_name: str, bad_version: str) -> bool:
    """Exact comparison of an observed (name, version) with one IoC entry."""
    return found_name == package_name and found_version == bad_version


def evaluate_manifest(
    artifact: CandidateArtifact,
    fields: ManifestFields,
    table: IoCTable,
    mode: ManifestMode,
    timestamp: str,
    host: str,
) -> list[Finding]:
    """Classify one manifest against the IoC table.

    Args:
        artifact: The manifest that was read.
        fields: Name and version extracted from it.
        table: The run's IoC table.
        mode: INVENTORY or TARGETED evaluation.
        timestamp: Run timestamp stamped on every finding.
        host: Host name stamped on every finding.

    Returns:
        Findings for this manifest, possibly empty.
    """
    if mode is ManifestMode.TARGETED:
        found_name = package_name_from_path(artifact.path)
    else:
        found_name = fields.name
    if not found_name:
        return []

    found_version = fields.version

    def make(indicator: str, match: bool) -> Finding:
        return Finding(
            timestamp=timestamp,
            host=host,
            scope=_finding_scope(artifact),
            owner=artifact.owner,
            location=str(artifact.path),
            package=found_name,
            found_version=found_version or UNKNOWN_VERSION,
            indicator_version=indicator,
            match=match,
            type=MANIFEST_FINDING_TYPE,
        )

    entries = table.entries_for(found_name)
    if not entries:
        if mode is ManifestMode.TARGETED:
            return []
        return [make("", False)]

    return [
        make(
            entry.bad_version,
            is_match(found_name, found_version, entry.package_name, entry.bad_version),
        )
        for entry in entries
    ]
