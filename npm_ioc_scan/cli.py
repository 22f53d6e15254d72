"""Command-line entry point for npm_ioc_scan.

Maps arguments onto a ScanConfig, runs the scan, renders the result and
exits with the status the configured exit policy dictates. A report that
cannot be written exits with status 2.

Example::

    npm-ioc-scan --scope user --user alice --feed-url https://... --fail-on-match
    npm-ioc-scan --scope system --targeted --window-start 2025-09-08 --window-end 2025-09-10
"""

from __future__ import annotations

import argparse
import datetime
import getpass
import logging
import os
import sys
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from npm_ioc_scan import __version__
from npm_ioc_scan.config import (
    DEFAULT_FEED_TIMEOUT,
    DEFAULT_FEED_URL,
    ManifestMode,
    ScanConfig,
    ScopeMode,
    TimeWindow,
    UserContext,
)
from npm_ioc_scan.errors import ReportWriteError
from npm_ioc_scan.models import ExitPolicy
from npm_ioc_scan.renderer import render_result
from npm_ioc_scan.scanner import Scanner

EXIT_FATAL = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="npm-ioc-scan",
        description=(
            "Audit installed npm package trees and lockfiles against known "
            "compromised (package, version) indicators."
        ),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    sources = parser.add_argument_group("indicator sources")
    sources.add_argument(
        "--feed-url",
        action="append",
        default=[],
        metavar="URL",
        help="CSV feed of package,versions rows (repeatable)",
    )
    sources.add_argument(
        "--default-feed",
        action="store_true",
        help=f"add the default public feed ({DEFAULT_FEED_URL})",
    )
    sources.add_argument(
        "--feed-file",
        action="append",
        default=[],
        type=Path,
        metavar="PATH",
        help="local CSV file in the feed format (repeatable)",
    )
    sources.add_argument(
        "--static",
        dest="static",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="include the embedded indicator list (default: on unless feeds are given)",
    )
    sources.add_argument(
        "--feed-timeout",
        type=float,
        default=DEFAULT_FEED_TIMEOUT,
        metavar="SECONDS",
        help="timeout for each feed request",
    )

    scope = parser.add_argument_group("scope")
    scope.add_argument(
        "--scope",
        choices=[m.value for m in ScopeMode],
        default=ScopeMode.USER.value,
        help="scan every home (system) or only the current user's (user)",
    )
    scope.add_argument("--user", help="current user name (default: $SUDO_USER or login name)")
    scope.add_argument("--home", type=Path, help="current user's home directory")
    scope.add_argument("--users-dir", type=Path, help="parent of home directories")
    scope.add_argument(
        "--targeted",
        action="store_true",
        help="only evaluate manifests whose directory names an indicator package",
    )
    scope.add_argument(
        "--window-start",
        type=_parse_datetime,
        metavar="ISO8601",
        help="only consider artifacts modified at or after this time",
    )
    scope.add_argument(
        "--window-end",
        type=_parse_datetime,
        metavar="ISO8601",
        help="only consider artifacts modified before this time",
    )

    output = parser.add_argument_group("output")
    output.add_argument("--output-dir", type=Path, help="directory for the CSV and JSON reports")
    output.add_argument(
        "--matches-only",
        action="store_true",
        help="record only findings that match an indicator",
    )
    output.add_argument(
        "--fail-on-match",
        action="store_true",
        help="exit 1 when any indicator matched",
    )
    output.add_argument(
        "--format",
        choices=["text", "json", "compact"],
        default="text",
        help="terminal output format",
    )
    output.add_argument("--show-unmatched", action="store_true", help="list unmatched findings")
    output.add_argument("--no-color", action="store_true", help="disable colour output")
    output.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="logging level (default WARNING)",
    )
    output.add_argument("-v", "--verbose", action="store_true", help="shorthand for --log-level INFO")
    return parser


def _parse_datetime(value: str) -> datetime.datetime:
    try:
        return datetime.datetime.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid ISO 8601 time: {value!r}") from exc


def _login_name() -> str:
    try:
        return getpass.getuser()
    except (OSError, KeyError):
        return ""


def _current_user(args: argparse.Namespace, users_dir: Path) -> UserContext | None:
    """Resolve the user whose home is scanned in user scope.

    An explicit ``--user`` wins, then the invoking user under sudo, then the
    login name. The home defaults to ``$HOME`` for the login user and to
    ``<users_dir>/<name>`` otherwise.
    """
    sudo_user = os.environ.get("SUDO_USER", "")
    name = args.user or sudo_user or _login_name()
    if not name:
        return None
    if args.home is not None:
        home = args.home
    elif name == _login_name() and not sudo_user:
        home = Path.home()
    else:
        home = users_dir / name
    return UserContext(name=name, home=home)


def config_from_args(args: argparse.Namespace) -> ScanConfig:
    """Translate parsed arguments into a ScanConfig.

    Raises:
        ValueError: If the arguments describe an invalid configuration.
    """
    feed_urls = list(args.feed_url)
    if args.default_feed:
        feed_urls.append(DEFAULT_FEED_URL)
    feed_files = tuple(args.feed_file)
    use_static = args.static if args.static is not None else not (feed_urls or feed_files)

    window: TimeWindow | None = None
    if (args.window_start is None) != (args.window_end is None):
        raise ValueError("--window-start and --window-end must be given together")
    if args.window_start is not None:
        window = TimeWindow(start=args.window_start, end=args.window_end)

    overrides: dict[str, object] = {}
    if args.users_dir is not None:
        overrides["users_dir"] = args.users_dir
    if args.output_dir is not None:
        overrides["output_dir"] = args.output_dir

    config = ScanConfig(
        use_static_iocs=use_static,
        feed_urls=tuple(feed_urls),
        feed_files=feed_files,
        feed_timeout=args.feed_timeout,
        scope_mode=ScopeMode(args.scope),
        window=window,
        manifest_mode=ManifestMode.TARGETED if args.targeted else ManifestMode.INVENTORY,
        report_unmatched=not args.matches_only,
        exit_policy=ExitPolicy.FAIL_ON_MATCH if args.fail_on_match else ExitPolicy.ALWAYS_SUCCEED,
        **overrides,  # type: ignore[arg-type]
    )
    if config.scope_mode is ScopeMode.USER:
        config = replace(config, user=_current_user(args, config.users_dir))
    if not config.has_sources:
        raise ValueError("no indicator source: enable --static or give a feed")
    return config


def configure_logging(level: str, console: Console) -> None:
    """Route library logging through a Rich handler on ``console``."""
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=False)],
        force=True,
    )


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    err_console = Console(stderr=True, no_color=args.no_color)
    level = args.log_level or ("INFO" if args.verbose else "WARNING")
    configure_logging(level, err_console)

    try:
        config = config_from_args(args)
    except ValueError as exc:
        parser.error(str(exc))

    try:
        result = Scanner(config).run()
    except ReportWriteError as exc:
        err_console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}", highlight=False)
        return EXIT_FATAL

    render_result(
        result,
        config,
        output_format=args.format,
        show_unmatched=args.show_unmatched,
        no_color=args.no_color,
    )
    return result.exit_code(config.exit_policy)


if __name__ == "__main__":
    sys.exit(main())
