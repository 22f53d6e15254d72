"""Indicator-of-compromise table: embedded list, remote CSV feeds and local feed files.

The IoC table is a multimap from package name to the ordered list of versions
known to be compromised. It is built once per run from any combination of:

- The embedded static table (the September 2025 npm compromise)
- One or more remote CSV feeds fetched with ``requests``
- Local CSV files in the same dialect

Feed dialect: a header row followed by ``package_name,version_list`` rows,
where ``version_list`` separates versions with ``||`` and each version may be
padded with ``=``, whitespace or quotes (``"= 1.2.3 || = 1.2.4"``).

A source that fails to load never aborts the run: the failure is logged and
the source contributes nothing.

Public API:
    IoCTable: Ordered, de-duplicated multimap of IoC entries
    STATIC_IOCS: The embedded indicator list
    parse_feed: Parse feed text into IoC entries
    fetch_feed: Fetch a remote feed body
    load_feed_file: Read a local feed file
    build_ioc_table: Assemble the run's table from the configured sources
"""

from __future__ import annotations

import csv
import io
import logging
import time
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path
from typing import Any

import requests

from npm_ioc_scan.errors import SourceUnavailableError
from npm_ioc_scan.models import IoCEntry

logger = logging.getLogger(__name__)

# Packages and versions published during the September 8, 2025 compromise
STATIC_IOCS: tuple[IoCEntry, ...] = (
    IoCEntry("backslash", "0.2.1"),
    IoCEntry("chalk-template", "1.1.1"),
    IoCEntry("supports-hyperlinks", "4.1.1"),
    IoCEntry("has-ansi", "6.0.1"),
    IoCEntry("simple-swizzle", "0.2.3"),
    IoCEntry("color-string", "2.1.1"),
    IoCEntry("error-ex", "1.3.3"),
    IoCEntry("color-name", "2.0.1"),
    IoCEntry("is-arrayish", "0.3.3"),
    IoCEntry("slice-ansi", "7.1.1"),
    IoCEntry("color-convert", "3.1.1"),
    IoCEntry("wrap-ansi", "9.0.1"),
    IoCEntry("ansi-regex", "6.2.1"),
    IoCEntry("supports-color", "10.2.1"),
    IoCEntry("strip-ansi", "7.1.1"),
    IoCEntry("chalk", "5.6.1"),
    IoCEntry("debug", "4.4.2"),
    IoCEntry("ansi-styles", "6.2.2"),
)

_VERSION_SEPARATOR = "||"

# Padding characters removed from every version token
_VERSION_PADDING = str.maketrans("", "", "= \t\"'")

_USER_AGENT = "npm-ioc-scan"

# A streamed read blocks until a whole chunk arrives; single bytes keep each
# wait within the per-read timeout so the overall deadline is checked often
_READ_CHUNK_SIZE = 1


class IoCTable:
    """An ordered multimap of package name to compromised versions.

    Insertion order is preserved for both names and versions; duplicate
    (name, version) pairs are ignored.

    Example::

        table = IoCTable([IoCEntry("chalk", "5.6.1")])
        table.is_compromised("chalk", "5.6.1")   # True
        table.versions_for("chalk")              # ["5.6.1"]
    """

    def __init__(self, entries: Iterable[IoCEntry] = ()) -> None:
        self._versions: dict[str, list[str]] = {}
        self.extend(entries)

    def add(self, entry: IoCEntry) -> bool:
        """Add one entry; return False if it was already present."""
        versions = self._versions.setdefault(entry.package_name, [])
        if entry.bad_version in versions:
            return False
        versions.append(entry.bad_version)
        return True

    def extend(self, entries: Iterable[IoCEntry]) -> int:
        """Add many entries and return how many were new."""
        return sum(1 for entry in entries if self.add(entry))

    def versions_for(self, package_name: str) -> list[str]:
        """Return the bad versions recorded for a package (empty if none)."""
        return list(self._versions.get(package_name, ()))

    def entries_for(self, package_name: str) -> list[IoCEntry]:
        return [IoCEntry(package_name, v) for v in self._versions.get(package_name, ())]

    def is_compromised(self, package_name: str, version: str) -> bool:
        """Exact, case-sensitive lookup of a (name, version) pair."""
        return version in self._versions.get(package_name, ())

    @property
    def package_names(self) -> list[str]:
        return list(self._versions)

    def __iter__(self) -> Iterator[IoCEntry]:
        for name, versions in self._versions.items():
            for version in versions:
                yield IoCEntry(name, version)

    def __len__(self) -> int:
        return sum(len(v) for v in self._versions.values())

    def __contains__(self, package_name: object) -> bool:
        return package_name in self._versions

    def __bool__(self) -> bool:
        return bool(self._versions)

    def __repr__(self) -> str:
        return f"IoCTable(packages={len(self._versions)}, entries={len(self)})"


# ---------------------------------------------------------------------------
# Feed parsing
# ---------------------------------------------------------------------------


def _clean_version(token: str) -> str:
    return token.translate(_VERSION_PADDING)


def _clean_name(token: str) -> str:
    return token.strip().strip("\"'").strip()


def parse_feed(text: str) -> list[IoCEntry]:
    """Parse feed text into IoC entries.

    The first row is a header and is skipped. Rows with no package name, and
    version tokens that are empty after cleaning, are dropped silently.

    Args:
        text: The raw CSV body.

    Returns:
        IoC entries in feed order (duplicates retained; the table drops them).

    Raises:
        ValueError: If the content does not look like a two-column table.
    """
    stripped = text.lstrip("\ufeff").strip()
    if not stripped:
        return []

    try:
        rows = list(csv.reader(io.StringIO(stripped)))
    except csv.Error as exc:
        raise ValueError(f"unreadable feed content: {exc}") from exc
    header = rows[0]
    if len(header) < 2 or header[0].lstrip().startswith("<"):
        raise ValueError(f"unexpected feed header: {','.join(header)[:80]!r}")

    entries: list[IoCEntry] = []
    for row in rows[1:]:
        if not row:
            continue
        name = _clean_name(row[0])
        if not name:
            continue
        version_list = ",".join(row[1:])
        for token in version_list.split(_VERSION_SEPARATOR):
            version = _clean_version(token)
            if version:
                entries.append(IoCEntry(name, version))
    return entries


def fetch_feed(
    url: str,
    timeout: float,
    session: Any | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> str:
    """Fetch a remote feed body in a single attempt.

    The body is streamed and the whole fetch is abandoned once ``timeout``
    seconds have elapsed, so a server trickling bytes cannot hold the run.

    Args:
        url: The feed URL.
        timeout: Overall time budget in seconds, also used as the
            connect/read timeout of each socket operation.
        session: Optional ``requests.Session``-like object exposing ``get``.
        clock: Monotonic time source used for the overall deadline.

    Returns:
        The response body as text.

    Raises:
        SourceUnavailableError: On any transport error, timeout or non-2xx
            response.
    """
    getter = session if session is not None else requests
    deadline = clock() + timeout
    chunks: list[bytes] = []
    try:
        with getter.get(
            url,
            timeout=timeout,
            headers={"User-Agent": _USER_AGENT},
            stream=True,
        ) as response:
            response.raise_for_status()
            for chunk in response.iter_content(chunk_size=_READ_CHUNK_SIZE):
                chunks.append(chunk)
                if clock() > deadline:
                    raise SourceUnavailableError(url, f"timed out after {timeout}s")
            encoding = response.encoding or "utf-8"
    except requests.Timeout as exc:
        raise SourceUnavailableError(url, f"timed out after {timeout}s") from exc
    except requests.RequestException as exc:
        raise SourceUnavailableError(url, str(exc)) from exc
    return b"".join(chunks).decode(encoding, errors="replace")


def load_feed_file(path: Path) -> str:
    """Read a local feed file.

    Raises:
        SourceUnavailableError: If the file cannot be read.
    """
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        raise SourceUnavailableError(str(path), exc.strerror or str(exc)) from exc


def _merge_feed(table: IoCTable, source: str, text: str) -> None:
    try:
        entries = parse_feed(text)
    except ValueError as exc:
        logger.warning("Ignoring malformed IoC source %s: %s", source, exc)
        return
    added = table.extend(entries)
    logger.info("Loaded %d IoC entries (%d new) from %s", len(entries), added, source)


def build_ioc_table(
    use_static: bool = True,
    feed_urls: Iterable[str] = (),
    feed_files: Iterable[Path] = (),
    timeout: float = 15.0,
    session: Any | None = None,
) -> IoCTable:
    """Assemble the run's IoC table from every configured source.

    Sources are merged in order: static table, feed files, feed URLs. A
    failing source is logged and skipped; the result may be empty.

    Args:
        use_static: Include ``STATIC_IOCS``.
        feed_urls: Remote feeds to fetch.
        feed_files: Local feed files to read.
        timeout: Timeout in seconds for each remote fetch.
        session: Optional ``requests.Session``-like object for fetches.

    Returns:
        The merged IoCTable.
    """
    table = IoCTable()
    if use_static:
        table.extend(STATIC_IOCS)
        logger.info("Loaded %d embedded IoC entries", len(STATIC_IOCS))

    for path in feed_files:
        try:
            text = load_feed_file(path)
        except SourceUnavailableError as exc:
            logger.warning("%s", exc)
            continue
        _merge_feed(table, str(path), text)

    for url in feed_urls:
        try:
            text = fetch_feed(url, timeout=timeout, session=session)
        except SourceUnavailableError as exc:
            logger.warning("%s", exc)
            continue
        _merge_feed(table, url, text)

    if not table:
        logger.warning("IoC table is empty; the scan will report no matches")
    return table
