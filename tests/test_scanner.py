"""Integration tests for npm_ioc_scan.scanner.

Runs the full scanner against synthetic filesystems built under tmp_path:
a fake system root holding global prefixes, a users directory holding
homes, and local feed files standing in for remote IoC feeds. Tests cover:

- A matching manifest under a project root
- A listed package at a clean version, with and without unmatched reporting
- A package-lock.json hit
- A feed that times out, with and without the embedded table
- Scope ordering: global, then project, then lockfile
- Toolchain manifests inside a home reported once, under the global scope
- USER scope with a console user, root and a missing home
- Time window filtering
- Report files and idempotence of repeated runs
- scan_host convenience function
"""

from __future__ import annotations

import datetime
import json
import os
from pathlib import Path
from typing import Any

import pytest
import requests

from npm_ioc_scan import lockfiles as lockfiles_module
from npm_ioc_scan import roots as roots_module
from npm_ioc_scan.config import ManifestMode, ScanConfig, ScopeMode, TimeWindow, UserContext
from npm_ioc_scan.errors import ArtifactUnreadableError
from npm_ioc_scan.models import FindingScope
from npm_ioc_scan.scanner import Scanner, scan_host

# ---------------------------------------------------------------------------
# Constants / helpers
# ---------------------------------------------------------------------------

FIXED_NOW = datetime.datetime(2025, 9, 9, 12, 0, 0, tzinfo=datetime.timezone.utc)
TS = "2025-09-09T12:00:00Z"
HOST = "testhost"


def _write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def _manifest(path: Path, name: str, version: str) -> Path:
    return _write(path / "package.json", json.dumps({"name": name, "version": version}))


def _feed(tmp_path: Path, *rows: str) -> Path:
    return _write(tmp_path / "feed.csv", "Package,Version\n" + "\n".join(rows) + "\n")


def _config(tmp_path: Path, feed: Path | None = None, **overrides: Any) -> ScanConfig:
    values: dict[str, Any] = {
        "use_static_iocs": feed is None,
        "feed_files": (feed,) if feed is not None else (),
        "scope_mode": ScopeMode.SYSTEM,
        "users_dir": tmp_path / "Users",
        "output_dir": tmp_path / "out",
    }
    values.update(overrides)
    return ScanConfig(**values)


def _scanner(tmp_path: Path, config: ScanConfig, session: Any | None = None) -> Scanner:
    (tmp_path / "sys").mkdir(exist_ok=True)
    (tmp_path / "Users").mkdir(exist_ok=True)
    return Scanner(
        config,
        session=session,
        clock=lambda: FIXED_NOW,
        hostname=HOST,
        system_root=tmp_path / "sys",
    )


class TimeoutSession:
    """Session whose every request times out."""

    def __init__(self) -> None:
        self.urls: list[str] = []

    def get(self, url: str, **kwargs: Any) -> Any:
        self.urls.append(url)
        raise requests.ConnectTimeout("connect timed out")


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------


class TestEndToEnd:
    """Whole-run behaviour for the core scenarios."""

    def test_matching_manifest(self, tmp_path: Path) -> None:
        """A compromised installed version yields exactly one matching finding."""
        feed = _feed(tmp_path, "chalk,= 5.6.1")
        pkg_dir = tmp_path / "Users" / "alice" / "app" / "node_modules" / "chalk"
        _manifest(pkg_dir, "chalk", "5.6.1")

        result = _scanner(tmp_path, _config(tmp_path, feed)).run()

        (finding,) = result.findings
        assert finding.match is True
        assert finding.found_version == "5.6.1"
        assert finding.indicator_version == "5.6.1"
        assert finding.scope is FindingScope.PROJECT
        assert finding.owner == "alice"
        assert finding.location == str((pkg_dir / "package.json").resolve())
        assert (finding.timestamp, finding.host) == (TS, HOST)
        assert result.compromised
        assert result.ioc_count == 1

    def test_listed_package_at_clean_version(self, tmp_path: Path) -> None:
        """A clean version of a listed package is recorded unmatched."""
        feed = _feed(tmp_path, "chalk,5.0.0")
        _manifest(tmp_path / "Users" / "alice" / "app" / "node_modules" / "chalk", "chalk", "5.6.1")

        result = _scanner(tmp_path, _config(tmp_path, feed)).run()

        (finding,) = result.findings
        assert finding.match is False
        assert finding.indicator_version == "5.0.0"
        assert not result.compromised

    def test_matches_only_drops_unmatched(self, tmp_path: Path) -> None:
        feed = _feed(tmp_path, "chalk,5.0.0")
        _manifest(tmp_path / "Users" / "alice" / "app" / "node_modules" / "chalk", "chalk", "5.6.1")
        _manifest(tmp_path / "Users" / "alice" / "app" / "node_modules" / "left-pad", "left-pad", "1.3.0")

        result = _scanner(tmp_path, _config(tmp_path, feed, report_unmatched=False)).run()

        assert result.findings == []
        csv_lines = result.report_paths[0].read_text(encoding="utf-8").splitlines()
        assert len(csv_lines) == 1

    def test_package_lock_hit(self, tmp_path: Path) -> None:
        feed = _feed(tmp_path, "chalk,5.6.1")
        lock = _write(
            tmp_path / "Users" / "alice" / "app" / "package-lock.json",
            '{"packages": {"node_modules/chalk": {"version": "5.6.1"}}, "x": "chalk"}',
        )

        result = _scanner(tmp_path, _config(tmp_path, feed)).run()

        (finding,) = result.findings
        assert finding.scope is FindingScope.LOCKFILE
        assert finding.found_version == "lockfile:5.6.1"
        assert finding.match is True
        assert finding.owner == "alice"
        assert finding.type == "package-lock.json"
        assert finding.location == str(lock.resolve())

    def test_feed_timeout_completes_clean(self, tmp_path: Path) -> None:
        """An unreachable feed leaves an empty table and a clean run."""
        _manifest(tmp_path / "Users" / "alice" / "app" / "node_modules" / "chalk", "chalk", "5.6.1")
        session = TimeoutSession()
        config = _config(
            tmp_path,
            use_static_iocs=False,
            feed_urls=("https://feeds.example.com/iocs.csv",),
        )

        result = _scanner(tmp_path, config, session=session).run()

        assert session.urls == ["https://feeds.example.com/iocs.csv"]
        assert result.ioc_count == 0
        assert not result.compromised
        assert [f.match for f in result.findings] == [False]
        assert all(p.exists() for p in result.report_paths)

    def test_feed_timeout_keeps_static_entries(self, tmp_path: Path) -> None:
        _manifest(tmp_path / "Users" / "alice" / "app" / "node_modules" / "chalk", "chalk", "5.6.1")
        config = _config(tmp_path, feed_urls=("https://feeds.example.com/iocs.csv",))

        result = _scanner(tmp_path, config, session=TimeoutSession()).run()

        assert result.ioc_count == 18
        assert result.compromised


# ---------------------------------------------------------------------------
# Scopes and roots
# ---------------------------------------------------------------------------


class TestScopes:
    """Tests for root enumeration and scope ordering."""

    def test_scope_order(self, tmp_path: Path) -> None:
        """Global findings precede project findings, which precede lockfile findings."""
        feed = _feed(tmp_path, "chalk,5.6.1", "debug,4.4.2")
        home = tmp_path / "Users" / "alice"
        _write(home / "app" / "yarn.lock", "chalk@5.6.1:\n  version \"5.6.1\"\n")
        _manifest(home / "app" / "node_modules" / "chalk", "chalk", "5.6.1")
        _manifest(tmp_path / "sys" / "usr" / "local" / "lib" / "node_modules" / "debug", "debug", "4.4.2")

        result = _scanner(tmp_path, _config(tmp_path, feed)).run()

        assert [f.scope for f in result.findings] == [
            FindingScope.GLOBAL,
            FindingScope.PROJECT,
            FindingScope.LOCKFILE,
        ]
        assert result.findings[0].owner == "global"
        assert result.findings[2].found_version == "lockref:5.6.1"

    def test_toolchain_manifest_reported_once(self, tmp_path: Path) -> None:
        """An nvm install inside a home is scanned as global and not again as project."""
        feed = _feed(tmp_path, "chalk,5.6.1")
        nvm_modules = tmp_path / "Users" / "alice" / ".nvm" / "versions" / "node" / "v20.0.0" / "lib" / "node_modules"
        _manifest(nvm_modules / "chalk", "chalk", "5.6.1")

        result = _scanner(tmp_path, _config(tmp_path, feed)).run()

        (finding,) = result.findings
        assert finding.scope is FindingScope.GLOBAL
        assert finding.owner == "global"

    def test_every_home_in_system_scope(self, tmp_path: Path) -> None:
        feed = _feed(tmp_path, "chalk,5.6.1")
        for user in ("bob", "alice"):
            _manifest(tmp_path / "Users" / user / "p" / "node_modules" / "chalk", "chalk", "5.6.1")
        _manifest(tmp_path / "Users" / "Shared" / "p" / "node_modules" / "chalk", "chalk", "5.6.1")

        result = _scanner(tmp_path, _config(tmp_path, feed)).run()

        assert [f.owner for f in result.findings] == ["alice", "bob"]

    def test_user_scope_only_scans_that_home(self, tmp_path: Path) -> None:
        feed = _feed(tmp_path, "chalk,5.6.1")
        for user in ("alice", "bob"):
            _manifest(tmp_path / "Users" / user / "p" / "node_modules" / "chalk", "chalk", "5.6.1")
        config = _config(
            tmp_path,
            feed,
            scope_mode=ScopeMode.USER,
            user=UserContext("bob", tmp_path / "Users" / "bob"),
        )

        result = _scanner(tmp_path, config).run()

        assert [f.owner for f in result.findings] == ["bob"]

    @pytest.mark.parametrize("name", ["root", "loginwindow", ""])
    def test_user_scope_without_console_user(self, tmp_path: Path, name: str) -> None:
        """Non-console users fall back to global roots only."""
        feed = _feed(tmp_path, "chalk,5.6.1", "debug,4.4.2")
        _manifest(tmp_path / "Users" / "alice" / "p" / "node_modules" / "chalk", "chalk", "5.6.1")
        _manifest(tmp_path / "sys" / "usr" / "lib" / "node_modules" / "debug", "debug", "4.4.2")
        config = _config(
            tmp_path,
            feed,
            scope_mode=ScopeMode.USER,
            user=UserContext(name, tmp_path / "Users" / "alice"),
        )

        result = _scanner(tmp_path, config).run()

        assert [f.package for f in result.findings] == ["debug"]

    def test_user_scope_missing_home(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        feed = _feed(tmp_path, "chalk,5.6.1")
        config = _config(
            tmp_path,
            feed,
            scope_mode=ScopeMode.USER,
            user=UserContext("carol", tmp_path / "Users" / "carol"),
        )

        with caplog.at_level("WARNING", logger="npm_ioc_scan.scanner"):
            result = _scanner(tmp_path, config).run()

        assert result.findings == []
        assert "does not exist" in caplog.text

    def test_targeted_mode_skips_unlisted_packages(self, tmp_path: Path) -> None:
        feed = _feed(tmp_path, "chalk,5.6.1")
        modules = tmp_path / "Users" / "alice" / "p" / "node_modules"
        _manifest(modules / "chalk", "chalk", "5.6.1")
        _manifest(modules / "left-pad", "left-pad", "1.3.0")

        result = _scanner(tmp_path, _config(tmp_path, feed, manifest_mode=ManifestMode.TARGETED)).run()

        assert [(f.package, f.match) for f in result.findings] == [("chalk", True)]

    def test_unreadable_lockfile_does_not_abort(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A lockfile that cannot be read is skipped; the rest of the run continues."""
        feed = _feed(tmp_path, "chalk,5.6.1")
        home = tmp_path / "Users" / "alice"
        _write(home / "broken" / "yarn.lock", "chalk@5.6.1:\n")
        _write(home / "ok" / "yarn.lock", "chalk@5.6.1:\n")
        real_read = lockfiles_module._read_lockfile

        def flaky_read(path: Path) -> str:
            if path.parent.name == "broken":
                raise ArtifactUnreadableError(path, "Permission denied")
            return real_read(path)

        monkeypatch.setattr(lockfiles_module, "_read_lockfile", flaky_read)

        result = _scanner(tmp_path, _config(tmp_path, feed)).run()

        assert [f.location for f in result.findings] == [str((home / "ok" / "yarn.lock").resolve())]


# ---------------------------------------------------------------------------
# Time window
# ---------------------------------------------------------------------------


class TestWindow:
    """Tests for modification-time filtering."""

    def test_only_artifacts_in_window(self, tmp_path: Path) -> None:
        feed = _feed(tmp_path, "chalk,5.6.1")
        window = TimeWindow(
            start=datetime.datetime(2025, 9, 8, tzinfo=datetime.timezone.utc),
            end=datetime.datetime(2025, 9, 10, tzinfo=datetime.timezone.utc),
        )
        home = tmp_path / "Users" / "alice"
        inside = _manifest(home / "new" / "node_modules" / "chalk", "chalk", "5.6.1")
        outside = _manifest(home / "old" / "node_modules" / "chalk", "chalk", "5.6.1")
        os.utime(inside, (window.start_ts + 60, window.start_ts + 60))
        os.utime(outside, (window.start_ts - 60, window.start_ts - 60))

        result = _scanner(tmp_path, _config(tmp_path, feed, window=window)).run()

        assert [f.location for f in result.findings] == [str(inside.resolve())]


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class TestReports:
    """Tests for the written reports."""

    def test_report_paths_and_content(self, tmp_path: Path) -> None:
        feed = _feed(tmp_path, "chalk,5.6.1")
        _manifest(tmp_path / "Users" / "alice" / "p" / "node_modules" / "chalk", "chalk", "5.6.1")

        result = _scanner(tmp_path, _config(tmp_path, feed)).run()

        csv_path, json_path = result.report_paths
        assert csv_path == tmp_path / "out" / "npm_compromise_scan.csv"
        assert json_path == tmp_path / "out" / "npm_compromise_scan.json"
        data = json.loads(json_path.read_text(encoding="utf-8"))
        assert data["timestamp"] == TS
        assert data["host"] == HOST
        assert data["findings"] == [f.to_dict() for f in result.findings]
        assert csv_path.read_text(encoding="utf-8").splitlines()[1].endswith("true,node_modules")

    def test_repeated_runs_identical(self, tmp_path: Path) -> None:
        """Two runs over an unchanged filesystem produce identical reports."""
        feed = _feed(tmp_path, "chalk,5.6.1", "debug,4.4.2")
        home = tmp_path / "Users" / "alice"
        for name in ("chalk", "debug", "left-pad"):
            _manifest(home / "p" / "node_modules" / name, name, "1.0.0")
        _write(home / "p" / "yarn.lock", "debug@4.4.2:\n")

        scanner = _scanner(tmp_path, _config(tmp_path, feed))
        first = scanner.run()
        first_csv = first.report_paths[0].read_text(encoding="utf-8")
        first_json = first.report_paths[1].read_text(encoding="utf-8")
        second = scanner.run()

        assert second.findings == first.findings
        assert second.report_paths[0].read_text(encoding="utf-8") == first_csv
        assert second.report_paths[1].read_text(encoding="utf-8") == first_json

    def test_scan_without_writing(self, tmp_path: Path) -> None:
        """scan() returns findings and leaves the output directory untouched."""
        scanner = _scanner(tmp_path, _config(tmp_path))
        result = scanner.scan(scanner.load_iocs(), TS, HOST)
        assert result.report_paths == []
        assert not (tmp_path / "out").exists()


class TestScanHost:
    """Tests for the scan_host convenience function."""

    def test_scan_host_writes_reports(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(roots_module, "SYSTEM_GLOBAL_DIRS", ())
        monkeypatch.setattr(roots_module, "SYSTEM_GLOBAL_GLOBS", ())
        (tmp_path / "Users").mkdir()
        feed = _feed(tmp_path, "chalk,5.6.1")

        result = scan_host(_config(tmp_path, feed))

        assert result.findings == []
        assert all(p.exists() for p in result.report_paths)
