"""Command line entry point.

Usage:
    rfpmart-analyzer run [--since YYYY-MM-DD] [--mode memory|disk]
    rfpmart-analyzer scrape [--since YYYY-MM-DD]
    rfpmart-analyzer rescore
    rfpmart-analyzer cleanup [--dry-run]

Exit code is 0 on success and 1 when the run could not complete.
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from typing import List, Optional

from .config import Config, reload_config
from .database.connection import close_database_connections, init_database
from .exceptions import AnalyzerError
from .models import RunResult
from .pipeline.coordinator import RunCoordinator, build_coordinator
from .scrapers.browser import BrowserManager
from .utils.logging import setup_logging

logger = logging.getLogger(__name__)


def parse_since(value: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rfpmart-analyzer",
        description="Discover, acquire and score RFP Mart opportunities.",
    )
    parser.add_argument("--config", default=None, help="Path to a YAML config (default: config/default.yaml)")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")

    commands = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("run", "Discover, acquire and score new opportunities"),
        ("scrape", "Discover and acquire new opportunities without scoring"),
    ):
        command = commands.add_parser(name, help=help_text)
        command.add_argument("--since", type=parse_since, default=None,
                             help="Only opportunities posted on or after this date (default: last run)")
        command.add_argument("--mode", choices=("memory", "disk"), default=None,
                             help="Keep artifacts in memory or save them under the download dir")
        command.add_argument("--discovery", choices=("listing", "rss"), default=None,
                             help="Walk the category listing or read the RSS feed")

    commands.add_parser("rescore", help="Re-score stored corpora with the current configuration")

    cleanup = commands.add_parser("cleanup", help="Remove old or poorly fitting downloaded artifacts")
    cleanup.add_argument("--dry-run", action="store_true", help="Report what would be removed")
    return parser


def print_summary(result: RunResult) -> None:
    print(f"\nRun {result.run_id}: {result.status}")
    print(f"  since:      {result.since:%Y-%m-%d %H:%M}")
    print(f"  discovered: {result.discovered}")
    print(f"  processed:  {len(result.outcomes)} ({result.succeeded} ok, {result.failed} failed)")
    for outcome in result.outcomes:
        if outcome.fit is not None and not outcome.fit.failed:
            status = f"{outcome.fit.tier.value:<6} {outcome.fit.percentage:>3}%"
        elif outcome.success:
            status = f"{outcome.documents} docs"
        else:
            status = f"FAILED ({outcome.failure_reason})"
        print(f"  - {outcome.listing.id}  {status}  {outcome.listing.title}")


async def run_live(config: Config, command: str, since: Optional[datetime]) -> RunResult:
    """Run or scrape against the live site with one browser session."""
    async with BrowserManager(config.browser) as browser:
        coordinator = build_coordinator(config, browser.page)
        try:
            if command == "scrape":
                return await coordinator.scrape(since)
            return await coordinator.run(since)
        finally:
            await coordinator.session.logout()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = reload_config(args.config)
    except FileNotFoundError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(level=args.log_level or ("DEBUG" if config.app.debug else None))
    logger.info(f"{config.app.name} {config.app.version} ({config.app.environment}): {args.command}")

    if getattr(args, "mode", None):
        config.acquisition.mode = args.mode
    if getattr(args, "discovery", None):
        config.acquisition.discovery_mode = args.discovery

    try:
        init_database()
        if args.command in ("run", "scrape"):
            result = asyncio.run(run_live(config, args.command, args.since))
            print_summary(result)
        elif args.command == "rescore":
            result = asyncio.run(RunCoordinator(config).rescore())
            print_summary(result)
        else:
            reports = RunCoordinator(config).cleanup(dry_run=args.dry_run or None)
            for name, report in reports.items():
                prefix = "would remove" if report.dry_run else "removed"
                print(f"{name}: examined {report.examined}, {prefix} {len(report.deleted)}, "
                      f"kept {len(report.kept)}, {report.freed_bytes} bytes")
                for error in report.errors:
                    print(f"  error: {error}")
        return 0

    except AnalyzerError as e:
        logger.error(f"Fatal error: {e.message}")
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 1
    finally:
        close_database_connections()


if __name__ == "__main__":
    sys.exit(main())
