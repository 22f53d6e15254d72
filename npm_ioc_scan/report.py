"""Report sink: ordered finding log serialised once as CSV and JSON.

Findings are accumulated in memory for the whole run and written at the end,
so both files always describe the same findings in the same order. Both files
are first written to temporary siblings and only then moved into place, so
a failed write leaves the previous run's pair of reports as it was.

CSV layout: one header row followed by one row per finding, columns in the
fixed order of ``CSV_COLUMNS``. Cells are joined with plain commas and are
not quoted; ``match`` is written as ``true``/``false``.

JSON layout::

    {
      "timestamp": "2025-09-09T12:00:00Z",
      "host": "laptop",
      "findings": [{"timestamp": ..., "match": true, ...}]
    }
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path

from npm_ioc_scan.errors import ReportWriteError
from npm_ioc_scan.models import Finding, ScanResult

logger = logging.getLogger(__name__)

CSV_COLUMNS: tuple[str, ...] = (
    "timestamp",
    "host",
    "scope",
    "user_or_owner",
    "location",
    "package",
    "found_version",
    "indicator_version",
    "match",
    "type",
)


class ReportSink:
    """Append-only collection of findings for one run.

    Attributes:
        timestamp: Run timestamp written at the top of the JSON report
        host: Host name written at the top of the JSON report

    Example::

        sink = ReportSink("2025-09-09T12:00:00Z", "laptop")
        sink.append(finding)
        sink.write(Path("/var/log/scan.csv"), Path("/var/log/scan.json"))
        sink.compromised
    """

    def __init__(self, timestamp: str, host: str) -> None:
        self.timestamp = timestamp
        self.host = host
        self._findings: list[Finding] = []

    def append(self, finding: Finding) -> None:
        self._findings.append(finding)

    def extend(self, findings: Iterable[Finding]) -> None:
        self._findings.extend(findings)

    @property
    def findings(self) -> tuple[Finding, ...]:
        return tuple(self._findings)

    @property
    def compromised(self) -> bool:
        """Return True if any recorded finding matched an indicator."""
        return any(f.match for f in self._findings)

    def __len__(self) -> int:
        return len(self._findings)

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_csv(self) -> str:
        """Render the tabular report."""
        lines = [",".join(CSV_COLUMNS)]
        lines.extend(",".join(f.to_row()) for f in self._findings)
        return "\n".join(lines) + "\n"

    def to_result(self) -> ScanResult:
        return ScanResult(
            timestamp=self.timestamp,
            host=self.host,
            findings=list(self._findings),
        )

    def to_json(self) -> str:
        """Render the structured report."""
        return json.dumps(self.to_result().to_dict(), indent=2) + "\n"

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def write(self, csv_path: Path, json_path: Path) -> list[Path]:
        """Write both reports, replacing any previous files.

        Both files are staged as temporary siblings before either is moved
        into place, so a failure leaves the previous pair untouched.

        Args:
            csv_path: Destination of the tabular report.
            json_path: Destination of the structured report.

        Returns:
            The two written paths.

        Raises:
            ReportWriteError: If a directory or file cannot be created.
        """
        staged: list[tuple[str, Path]] = []
        try:
            for path, content in ((csv_path, self.to_csv()), (json_path, self.to_json())):
                staged.append((_stage(path, content), path))
            for tmp_name, path in staged:
                try:
                    os.replace(tmp_name, path)
                except OSError as exc:
                    raise ReportWriteError(path, exc.strerror or str(exc)) from exc
                logger.info("Wrote %s", path)
        finally:
            for tmp_name, _path in staged:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
        return [path for _tmp_name, path in staged]


def _stage(path: Path, content: str) -> str:
    """Write ``content`` to a temporary sibling of ``path`` and return its name.

    Raises:
        ReportWriteError: If the directory, the temporary file or the
            destination is unusable.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ReportWriteError(path, exc.strerror or str(exc)) from exc
    if path.is_dir():
        raise ReportWriteError(path, "Is a directory")

    tmp_name: str | None = None
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
        os.chmod(tmp_name, 0o644)
    except OSError as exc:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise ReportWriteError(path, exc.strerror or str(exc)) from exc
    return tmp_name
