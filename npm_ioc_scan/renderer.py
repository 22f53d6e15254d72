"""Rich-based terminal output renderer for npm_ioc_scan results.

This module formats a ScanResult for interactive terminal use and offers
plain JSON and single-line modes for automation. The CSV and JSON report
files are written by the report sink; the renderer only reports on a run.

The renderer produces:
- A header panel with host, run time, IoC count, roots and time window
- A findings table, matched indicators first and highlighted
- A summary panel with match counts, exit code and PASS / FAIL status

Public API:
    Renderer: Main class implementing all rendering modes
    render_result: Convenience function to render a ScanResult to the console
"""

from __future__ import annotations

import json
from typing import Any

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from npm_ioc_scan.config import ScanConfig
from npm_ioc_scan.models import Finding, ScanResult

# Maximum location length shown in the findings table
_LOCATION_TRUNCATE = 90

_OUTPUT_FORMATS = frozenset(["text", "json", "compact"])


class Renderer:
    """Rich-based renderer for npm_ioc_scan ScanResult output.

    Attributes:
        console: The Rich Console instance used for output
        show_unmatched: Whether unmatched findings are listed in the table

    Example::

        renderer = Renderer()
        renderer.render(result, config)
        # Or for JSON output:
        renderer.render_json(result)
    """

    def __init__(
        self,
        console: Console | None = None,
        show_unmatched: bool = False,
        no_color: bool = False,
    ) -> None:
        """Initialise the Renderer.

        Args:
            console: Optional Rich Console instance. When None, a new Console
                is created writing to stdout.
            show_unmatched: When True, list unmatched findings in the table
                as well as matches. Defaults to False.
            no_color: When True, disable Rich colour and styling.
        """
        self.console: Console = console or Console(
            highlight=False,
            no_color=no_color,
        )
        self.show_unmatched: bool = show_unmatched

    # ------------------------------------------------------------------
    # Primary rendering entry points
    # ------------------------------------------------------------------

    def render(self, result: ScanResult, config: ScanConfig) -> None:
        """Render the header, findings table and summary panel."""
        self._render_header(result, config)
        self._render_findings(result)
        self._render_summary(result, config)

    def render_json(self, result: ScanResult) -> None:
        """Render the structured report to the console without styling."""
        output = json.dumps(result.to_dict(), indent=2)
        self.console.print(output, highlight=False, markup=False, soft_wrap=True)

    def render_compact(self, result: ScanResult, config: ScanConfig) -> None:
        """Render a one-line summary suitable for CI and MDM logs.

        Outputs a single line like:
            [PASS] npm-ioc-scan: 0 match(es), 12 finding(s) on laptop
        """
        status = "FAIL" if result.compromised else "PASS"
        style = "bold red" if result.compromised else "bold green"
        line = (
            f"[{style}][{status}][/{style}] npm-ioc-scan: "
            f"{len(result.matches)} match(es), {result.total_findings} finding(s) "
            f"on {result.host} (exit {result.exit_code(config.exit_policy)})"
        )
        self.console.print(line, soft_wrap=True)

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def _render_header(self, result: ScanResult, config: ScanConfig) -> None:
        from npm_ioc_scan import __version__

        window = escape(str(config.window)) if config.window else "none (all artifacts)"
        lines: list[str] = [
            f"[bold]npm-ioc-scan[/bold] v{__version__} — Compromised Package Audit",
            "",
            f"[dim]Host:[/dim]         [cyan]{escape(result.host)}[/cyan]",
            f"[dim]Scanned:[/dim]      {result.timestamp}",
            f"[dim]Indicators:[/dim]   {result.ioc_count} IoC entr{'y' if result.ioc_count == 1 else 'ies'}",
            f"[dim]Roots:[/dim]        {len(result.roots)} root(s)",
            f"[dim]Mode:[/dim]         {config.scope_mode.value} / {config.manifest_mode.value}",
            f"[dim]Window:[/dim]       {window}",
        ]
        panel = Panel(
            "\n".join(lines),
            title="[bold blue]npm-ioc-scan[/bold blue]",
            border_style="blue",
            padding=(1, 2),
        )
        self.console.print()
        self.console.print(panel)
        self.console.print()

    def _render_findings(self, result: ScanResult) -> None:
        self.console.rule("[bold]Findings[/bold]", style="blue")
        self.console.print()

        shown = result.findings if self.show_unmatched else result.matches
        if not shown:
            self.console.print(
                "  [bold green]No compromised package versions found.[/bold green]  "
                f"[dim]({result.total_findings} finding(s) recorded)[/dim]"
            )
            self.console.print()
            return

        self.console.print(self._build_findings_table(shown))
        self.console.print()

    def _build_findings_table(self, findings: list[Finding]) -> Table:
        table = Table(
            box=box.ROUNDED,
            show_header=True,
            header_style="bold dim",
            border_style="dim",
            expand=True,
            padding=(0, 1),
        )
        table.add_column("Match", width=6, no_wrap=True)
        table.add_column("Scope", width=8, no_wrap=True)
        table.add_column("Owner", no_wrap=True)
        table.add_column("Package", min_width=16, no_wrap=True)
        table.add_column("Found", no_wrap=True)
        table.add_column("Indicator", no_wrap=True)
        table.add_column("Location", min_width=30)

        # Matches first, discovery order otherwise
        ordered = sorted(findings, key=lambda f: not f.match)
        for finding in ordered:
            row: list[Any] = [
                Text("YES", style="bold white on red") if finding.match else Text("no", style="dim"),
                Text(finding.scope.value),
                Text(finding.owner, style="dim"),
                Text(finding.package, style="cyan", no_wrap=True),
                Text(finding.found_version, style="bold red" if finding.match else ""),
                Text(finding.indicator_version or "-", style="dim"),
                Text(_truncate(finding.location, _LOCATION_TRUNCATE), style="dim"),
            ]
            table.add_row(*row)
        return table

    def _render_summary(self, result: ScanResult, config: ScanConfig) -> None:
        self.console.rule("[bold]Scan Summary[/bold]", style="blue")
        self.console.print()

        exit_code = result.exit_code(config.exit_policy)
        if result.compromised:
            status_text = "[bold red]FAIL: compromised versions present[/bold red]"
            border_style = "red"
            advice = (
                "[dim]Remove the listed versions, rotate credentials reachable from "
                "this machine and reinstall from a clean lockfile.[/dim]"
            )
        else:
            status_text = "[bold green]PASS[/bold green]"
            border_style = "green"
            advice = "[dim]No installed package matched an indicator.[/dim]"

        reports = "\n".join(f"  [dim]Report:[/dim]          {escape(str(p))}" for p in result.report_paths)
        summary_content = (
            f"  [dim]Matches:[/dim]         {len(result.matches)}\n"
            f"  [dim]Total findings:[/dim]  {result.total_findings}\n"
            f"  [dim]Exit code:[/dim]       {exit_code} ({config.exit_policy.value})\n"
            + (f"{reports}\n" if reports else "")
            + f"\n  Status: {status_text}\n\n  {advice}"
        )
        panel = Panel(
            summary_content,
            title="[bold]Results[/bold]",
            border_style=border_style,
            padding=(1, 2),
        )
        self.console.print(panel)
        self.console.print()


def _truncate(text: str, max_chars: int) -> str:
    """Shorten a path from the left, keeping its most specific end."""
    if len(text) <= max_chars:
        return text
    return "…" + text[-(max_chars - 1):]


def render_result(
    result: ScanResult,
    config: ScanConfig,
    output_format: str = "text",
    show_unmatched: bool = False,
    console: Console | None = None,
    no_color: bool = False,
) -> None:
    """Convenience function to render a ScanResult to the terminal.

    Args:
        result: The ScanResult to render.
        config: The configuration the run used.
        output_format: One of 'text', 'json' or 'compact'.
        show_unmatched: List unmatched findings in 'text' mode.
        console: Optional Rich Console instance to use.
        no_color: When True, disable Rich styling.

    Raises:
        ValueError: If output_format is not one of the accepted values.
    """
    if output_format not in _OUTPUT_FORMATS:
        raise ValueError(
            f"output_format must be one of {sorted(_OUTPUT_FORMATS)}, "
            f"got '{output_format}'"
        )

    renderer = Renderer(console=console, show_unmatched=show_unmatched, no_color=no_color)
    if output_format == "json":
        renderer.render_json(result)
    elif output_format == "compact":
        renderer.render_compact(result, config)
    else:
        renderer.render(result, config)
