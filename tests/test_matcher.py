"""Unit tests for npm_ioc_scan.matcher."""

from __future__ import annotations

from pathlib import Path

from npm_ioc_scan.config import ManifestMode
from npm_ioc_scan.iocs import IoCTable
from npm_ioc_scan.manifest import ManifestFields
from npm_ioc_scan.matcher import MANIFEST_FINDING_TYPE, evaluate_manifest, is_match
from npm_ioc_scan.models import (
    ArtifactKind,
    CandidateArtifact,
    FindingScope,
    IoCEntry,
    Root,
    RootScope,
)

TS = "2025-09-09T12:00:00Z"
HOST = "testhost"

TABLE = IoCTable([
    IoCEntry("chalk", "5.6.1"),
    IoCEntry("@ctrl/tinycolor", "4.1.1"),
    IoCEntry("@ctrl/tinycolor", "4.1.2"),
])

PROJECT_ROOT = Root(Path("/home/alice"), RootScope.PROJECT, "alice")
GLOBAL_ROOT = Root(Path("/usr/local/lib/node_modules"), RootScope.GLOBAL)


def _manifest(relative: str, root: Root = PROJECT_ROOT) -> CandidateArtifact:
    return CandidateArtifact(
        path=root.path / relative,
        kind=ArtifactKind.MANIFEST,
        root=root,
        mtime=0.0,
    )


def _evaluate(artifact, fields, mode=ManifestMode.INVENTORY, table=TABLE):
    return evaluate_manifest(artifact, fields, table, mode, TS, HOST)


class TestIsMatch:
    def test_exact_equality(self) -> None:
        assert is_match("chalk", "5.6.1", "chalk", "5.6.1")

    def test_no_range_semantics(self) -> None:
        assert not is_match("chalk", "^5.6.1", "chalk", "5.6.1")
        assert not is_match("chalk", "5.6.1-rc.0", "chalk", "5.6.1")

    def test_case_sensitive(self) -> None:
        assert not is_match("Chalk", "5.6.1", "chalk", "5.6.1")


class TestInventoryMode:
    """Tests for evaluate_manifest in INVENTORY mode."""

    def test_matching_version(self) -> None:
        artifact = _manifest("app/node_modules/chalk/package.json")
        (finding,) = _evaluate(artifact, ManifestFields("chalk", "5.6.1"))

        assert finding.match is True
        assert finding.scope is FindingScope.PROJECT
        assert finding.owner == "alice"
        assert finding.package == "chalk"
        assert finding.found_version == "5.6.1"
        assert finding.indicator_version == "5.6.1"
        assert finding.type == MANIFEST_FINDING_TYPE
        assert finding.location == str(artifact.path)

    def test_clean_version_of_listed_package(self) -> None:
        (finding,) = _evaluate(_manifest("a/node_modules/chalk/package.json"), ManifestFields("chalk", "5.6.2"))
        assert finding.match is False
        assert finding.indicator_version == "5.6.1"

    def test_one_finding_per_bad_version(self) -> None:
        """A package with several bad versions yields a finding per entry."""
        artifact = _manifest("a/node_modules/@ctrl/tinycolor/package.json")
        findings = _evaluate(artifact, ManifestFields("@ctrl/tinycolor", "4.1.2"))

        assert [(f.indicator_version, f.match) for f in findings] == [("4.1.1", False), ("4.1.2", True)]

    def test_unlisted_package_reported_unmatched(self) -> None:
        (finding,) = _evaluate(_manifest("a/node_modules/left-pad/package.json"), ManifestFields("left-pad", "1.3.0"))
        assert finding.match is False
        assert finding.indicator_version == ""
        assert finding.package == "left-pad"

    def test_name_taken_from_manifest(self) -> None:
        """The manifest's name field wins over its directory in inventory mode."""
        artifact = _manifest("a/node_modules/aliased/package.json")
        (finding,) = _evaluate(artifact, ManifestFields("chalk", "5.6.1"))
        assert finding.package == "chalk"
        assert finding.match is True

    def test_missing_version_is_unknown(self) -> None:
        (finding,) = _evaluate(_manifest("a/node_modules/chalk/package.json"), ManifestFields("chalk", ""))
        assert finding.found_version == "unknown"
        assert finding.match is False

    def test_missing_name_yields_nothing(self) -> None:
        assert _evaluate(_manifest("a/node_modules/x/package.json"), ManifestFields("", "1.0.0")) == []

    def test_global_root_scope(self) -> None:
        artifact = _manifest("chalk/package.json", root=GLOBAL_ROOT)
        (finding,) = _evaluate(artifact, ManifestFields("chalk", "5.6.1"))
        assert finding.scope is FindingScope.GLOBAL
        assert finding.owner == "global"

    def test_empty_table(self) -> None:
        """With no indicators every package is reported unmatched."""
        (finding,) = _evaluate(
            _manifest("a/node_modules/chalk/package.json"),
            ManifestFields("chalk", "5.6.1"),
            table=IoCTable(),
        )
        assert finding.match is False


class TestTargetedMode:
    """Tests for evaluate_manifest in TARGETED mode."""

    def test_name_taken_from_directory(self) -> None:
        artifact = _manifest("a/node_modules/@ctrl/tinycolor/package.json")
        findings = _evaluate(artifact, ManifestFields("something-else", "4.1.1"), ManifestMode.TARGETED)
        assert [f.package for f in findings] == ["@ctrl/tinycolor", "@ctrl/tinycolor"]
        assert [f.match for f in findings] == [True, False]

    def test_unlisted_directory_skipped(self) -> None:
        artifact = _manifest("a/node_modules/left-pad/package.json")
        assert _evaluate(artifact, ManifestFields("left-pad", "1.3.0"), ManifestMode.TARGETED) == []

    def test_unknown_version(self) -> None:
        artifact = _manifest("a/node_modules/chalk/package.json")
        (finding,) = _evaluate(artifact, ManifestFields(), ManifestMode.TARGETED)
        assert finding.found_version == "unknown"
        assert finding.match is False
