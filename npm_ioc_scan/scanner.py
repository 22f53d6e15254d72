"""Scan orchestrator that turns a ScanConfig into a written report and ScanResult.

This module is the central orchestrator for npm_ioc_scan. It builds the IoC
table once, enumerates roots, walks each scope, evaluates every artifact and
hands the findings to the report sink, which writes both report files at the
end of the run.

A run proceeds in three passes, always in this order:

1. Global scope: manifests under global install prefixes and toolchains
2. Project scope: manifests inside ``node_modules`` trees under user homes
3. Lockfile scope: lockfiles under user homes

A manifest file is evaluated at most once per run, so a toolchain directory
nested inside a scanned home is reported once, under the global scope.

Only a report write failure aborts a run; unreachable feeds, missing roots
and unreadable artifacts are logged and skipped.

Public API:
    Scanner: Main orchestrator class
    scan_host: Convenience function to run a scan from a ScanConfig
"""

from __future__ import annotations

import datetime
import logging
import os
import socket
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from npm_ioc_scan.config import ScanConfig, ScopeMode, UserContext
from npm_ioc_scan.errors import ArtifactUnreadableError
from npm_ioc_scan.iocs import IoCTable, build_ioc_table
from npm_ioc_scan.lockfiles import scan_lockfile
from npm_ioc_scan.manifest import read_fields
from npm_ioc_scan.matcher import evaluate_manifest
from npm_ioc_scan.models import Finding, Root, RootScope, ScanResult
from npm_ioc_scan.report import ReportSink
from npm_ioc_scan.roots import (
    ProjectHomeProvider,
    RootProvider,
    default_global_providers,
    discover_homes,
    enumerate_roots,
)
from npm_ioc_scan.walker import walk_lockfiles, walk_manifests

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

_NON_CONSOLE_USERS: frozenset[str] = frozenset(["", "root", "loginwindow"])


def _utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def short_hostname() -> str:
    """Return the first label of this machine's host name."""
    return socket.gethostname().split(".")[0]


class Scanner:
    """Runs one scan described by a ScanConfig.

    Attributes:
        config: The run configuration
        system_root: Filesystem root the global path conventions resolve under

    Example::

        config = ScanConfig.remote_variant(user=UserContext("alice", Path("/Users/alice")))
        result = Scanner(config).run()
        print(f"{result.total_findings} finding(s), compromised={result.compromised}")
        sys.exit(result.exit_code(config.exit_policy))
    """

    def __init__(
        self,
        config: ScanConfig,
        session: Any | None = None,
        clock: Callable[[], datetime.datetime] = _utc_now,
        hostname: str | None = None,
        system_root: Path = Path("/"),
    ) -> None:
        """Initialise the Scanner.

        Args:
            config: The run configuration.
            session: Optional ``requests.Session``-like object used for feed
                fetches.
            clock: Returns the run's timestamp; defaults to the UTC now.
            hostname: Host name written into findings; defaults to the
                machine's short host name.
            system_root: Root under which the system-wide global conventions
                (``/usr/local/lib/node_modules`` etc.) are resolved.
        """
        self.config = config
        self.session = session
        self.clock = clock
        self.hostname = hostname
        self.system_root = system_root

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def run(self) -> ScanResult:
        """Execute the scan and write both reports.

        Returns:
            The ScanResult, with ``report_paths`` set to the written files.

        Raises:
            ReportWriteError: If either report cannot be written.
        """
        timestamp = self.clock().strftime(TIMESTAMP_FORMAT)
        host = self.hostname if self.hostname is not None else short_hostname()

        table = self.load_iocs()
        result = self.scan(table, timestamp, host)

        sink = ReportSink(timestamp, host)
        sink.extend(result.findings)
        result.report_paths = sink.write(self.config.csv_path, self.config.json_path)

        logger.info(
            "Scan complete: %d finding(s), %d match(es) across %d root(s)",
            result.total_findings,
            len(result.matches),
            len(result.roots),
        )
        return result

    def load_iocs(self) -> IoCTable:
        """Build the run's IoC table from the configured sources."""
        config = self.config
        return build_ioc_table(
            use_static=config.use_static_iocs,
            feed_urls=config.feed_urls,
            feed_files=config.feed_files,
            timeout=config.feed_timeout,
            session=self.session,
        )

    def scan(self, table: IoCTable, timestamp: str, host: str) -> ScanResult:
        """Scan every scope against ``table`` without writing reports.

        Args:
            table: The IoC table to match against.
            timestamp: Run timestamp stamped on every finding.
            host: Host name stamped on every finding.

        Returns:
            A ScanResult holding the findings in discovery order.
        """
        users = self.resolve_users()
        roots = enumerate_roots(self.root_providers(users))
        global_roots = [r for r in roots if r.scope is RootScope.GLOBAL]
        project_roots = [r for r in roots if r.scope is RootScope.PROJECT]

        findings: list[Finding] = []
        seen: set[str] = set()
        findings.extend(
            self._scan_manifests(global_roots, self.config.global_max_depth, table, seen, timestamp, host)
        )
        findings.extend(
            self._scan_manifests(project_roots, self.config.project_max_depth, table, seen, timestamp, host)
        )
        findings.extend(self._scan_lockfiles(project_roots, table, timestamp, host))

        if not self.config.report_unmatched:
            findings = [f for f in findings if f.match]

        return ScanResult(
            timestamp=timestamp,
            host=host,
            findings=findings,
            roots=roots,
            ioc_count=len(table),
        )

    # ------------------------------------------------------------------
    # Root resolution
    # ------------------------------------------------------------------

    def resolve_users(self) -> list[UserContext]:
        """Return the user homes in scope for this run.

        SYSTEM scope lists every home under ``users_dir``. USER scope uses the
        configured user when it is a real console user with an existing home;
        otherwise only global roots are scanned.
        """
        config = self.config
        if config.scope_mode is ScopeMode.SYSTEM:
            return discover_homes(config.users_dir)

        user = config.user
        if user is None or user.name in _NON_CONSOLE_USERS:
            logger.warning("No non-root console user; scanning only global roots")
            return []
        if not user.home.is_dir():
            logger.warning("Home directory %s for %s does not exist", user.home, user.name)
            return []
        return [user]

    def root_providers(self, users: Iterable[UserContext]) -> list[RootProvider]:
        """Return the ordered provider list: global conventions, then homes."""
        users = list(users)
        providers = default_global_providers(
            homes=[u.home for u in users],
            system_root=self.system_root,
        )
        providers.append(ProjectHomeProvider(users))
        return providers

    # ------------------------------------------------------------------
    # Scope passes
    # ------------------------------------------------------------------

    def _scan_manifests(
        self,
        roots: list[Root],
        max_depth: int,
        table: IoCTable,
        seen: set[str],
        timestamp: str,
        host: str,
    ) -> list[Finding]:
        findings: list[Finding] = []
        for root in roots:
            logger.info("Scanning manifests under %s (%s)", root.path, root.scope.value)
            for artifact in walk_manifests(root, max_depth, self.config.window):
                key = os.path.realpath(artifact.path)
                if key in seen:
                    continue
                seen.add(key)
                fields = read_fields(artifact.path)
                findings.extend(
                    evaluate_manifest(
                        artifact,
                        fields,
                        table,
                        self.config.manifest_mode,
                        timestamp,
                        host,
                    )
                )
        return findings

    def _scan_lockfiles(
        self,
        roots: list[Root],
        table: IoCTable,
        timestamp: str,
        host: str,
    ) -> list[Finding]:
        findings: list[Finding] = []
        for root in roots:
            logger.info("Scanning lockfiles under %s", root.path)
            for artifact in walk_lockfiles(root, self.config.project_max_depth, self.config.window):
                try:
                    findings.extend(scan_lockfile(artifact, table, timestamp, host))
                except ArtifactUnreadableError as exc:
                    logger.warning("%s", exc)
        return findings


# ---------------------------------------------------------------------------
# Convenience function
# ---------------------------------------------------------------------------


def scan_host(config: ScanConfig, session: Any | None = None) -> ScanResult:
    """Convenience function to run a full scan and write its reports.

    Equivalent to::

        Scanner(config, session=session).run()

    Args:
        config: The run configuration.
        session: Optional ``requests.Session``-like object for feed fetches.

    Returns:
        The ScanResult of the run.

    Raises:
        ReportWriteError: If the reports cannot be written.
    """
    return Scanner(config, session=session).run()
