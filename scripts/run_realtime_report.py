#!/usr/bin/env python3
"""CLI entry point for project reports and ad rankings.

Usage:
    # Last 7 days for a project, with today's live data merged in
    PYTHONPATH=. python scripts/run_realtime_report.py --project acme

    # Specific range
    PYTHONPATH=. python scripts/run_realtime_report.py --project acme --start 2025-01-01 --end 2025-01-07

    # Ad ranking grouped by intro cut, sorted by CPA
    PYTHONPATH=. python scripts/run_realtime_report.py --project acme --ranking --view intro --sort cpa

    # Register section/platform labels from the settings file in the warehouse
    PYTHONPATH=. python scripts/run_realtime_report.py --sync-settings
"""
import argparse
import asyncio
import json
import logging
import sys
from datetime import date, datetime
from pathlib import Path
from typing import Optional

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.adreport_core.dates import DateRange, default_date_range, normalize_date_range
from src.adreport_core.exceptions import ProjectNotFoundError, SettingsError
from src.adreport_core.metrics.ranking import (
    RankingSort,
    RankingView,
    partition_by_account,
    rank_rows,
)
from src.adreport_core.report_service import ReportService
from src.adreport_core.storage.warehouse import SqliteWarehouse


def parse_date_arg(
    parser: argparse.ArgumentParser, flag: str, value: Optional[str], fallback: date
) -> date:
    """Parse a YYYY-MM-DD flag value, exiting with a usage error if malformed."""
    if not value:
        return fallback
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        parser.error(f"{flag} must be YYYY-MM-DD, got '{value}'")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


async def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Ad report engine")
    parser.add_argument("--project", type=str, help="Project name")
    parser.add_argument(
        "--start",
        type=str,
        help="Start date (YYYY-MM-DD). Defaults to 6 days before today.",
    )
    parser.add_argument(
        "--end",
        type=str,
        help="End date (YYYY-MM-DD). Defaults to today.",
    )
    parser.add_argument(
        "--ranking",
        action="store_true",
        help="Build an ad ranking instead of a project report",
    )
    parser.add_argument(
        "--view",
        choices=[view.value for view in RankingView],
        default=RankingView.AD.value,
        help="Ranking grouping mode",
    )
    parser.add_argument(
        "--sort",
        choices=[sort.value for sort in RankingSort],
        default=RankingSort.SPEND.value,
        help="Ranking sort key",
    )
    parser.add_argument(
        "--group-by-account",
        action="store_true",
        help="Rank each platform account separately",
    )
    parser.add_argument(
        "--sync-settings",
        action="store_true",
        help="Register section and platform labels in the warehouse, then exit",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    setup_logging(args.verbose)

    service = ReportService.from_env()

    if args.sync_settings:
        if not isinstance(service.warehouse, SqliteWarehouse):
            parser.error("--sync-settings requires the SQLite warehouse")
        try:
            service.warehouse.sync_entities(service.settings_provider.load())
        except SettingsError as exc:
            parser.exit(1, f"error: {exc}\n")
        return

    if not args.project:
        parser.error("--project is required")

    default_range = default_date_range(service.today())
    date_range = normalize_date_range(
        parse_date_arg(parser, "--start", args.start, default_range.start),
        parse_date_arg(parser, "--end", args.end, default_range.end),
    )

    try:
        if args.ranking:
            await print_ranking(service, args, date_range)
        else:
            report = await service.aggregate_historical_and_realtime(args.project, date_range)
            print(report.model_dump_json(indent=2))
    except ProjectNotFoundError as exc:
        parser.exit(1, f"error: {exc}\n")
    except SettingsError as exc:
        parser.exit(1, f"error: settings could not be loaded: {exc}\n")


async def print_ranking(
    service: ReportService, args: argparse.Namespace, date_range: DateRange
) -> None:
    """Print the ad ranking as JSON, optionally split per account."""
    report = await service.build_ad_ranking(args.project, date_range)
    view = RankingView(args.view)
    sort = RankingSort(args.sort)
    if args.group_by_account:
        output = {
            "accounts": [
                {
                    "platform": partition.platform.value,
                    "account_id": partition.account_id,
                    "account_name": partition.account_name,
                    "rows": [row.model_dump() for row in partition.rows],
                }
                for partition in partition_by_account(report.rows, view, sort)
            ],
            "warnings": report.warnings,
        }
    else:
        output = {
            "rows": [row.model_dump() for row in rank_rows(report.rows, view, sort)],
            "warnings": report.warnings,
        }
    print(json.dumps(output, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    asyncio.run(main())
