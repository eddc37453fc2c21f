#!/usr/bin/env python3
"""Command-line interface for the donation ledger.

Usage:
    python -m donation_ledger.cli sync --since 2024-03-01 --limit 200
    python -m donation_ledger.cli export --type daily --start 2024-03-01 --end 2024-03-31
    python -m donation_ledger.cli export --type campaign --output-dir reports/
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import datetime
from typing import Optional

from .database import DatabaseManager
from .processors import ProcessorConfigurationError, get_processor_client
from .reconciliation import ReconciliationWorker, ReconciliationError, MAX_LIMIT
from .reporting import LedgerViewAggregator, LedgerViewKind, CSVExporter, parse_report_date

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_BATCH_FAILURE = 2
EXIT_NO_DATA = 3


def parse_datetime(dt_string: str) -> datetime:
    """Parse datetime string in various formats.

    Args:
        dt_string: Datetime string in ISO format or date format.

    Returns:
        Parsed datetime object.

    Raises:
        ValueError: If the string cannot be parsed.
    """
    formats = [
        "%Y-%m-%dT%H:%M:%S",
        "%Y-%m-%dT%H:%M:%S.%f",
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%d",
    ]

    for fmt in formats:
        try:
            return datetime.strptime(dt_string, fmt)
        except ValueError:
            continue

    raise ValueError(
        f"Unable to parse datetime: {dt_string}. "
        f"Expected formats: YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS"
    )


async def run_sync_async(
    since: Optional[datetime],
    limit: Optional[int],
    processor: Optional[str] = None,
    concurrency: Optional[int] = None,
    timeout: Optional[float] = None,
    database_url: Optional[str] = None,
) -> int:
    """Run one reconciliation batch and print its summary as JSON.

    Returns:
        Exit code (0 for success, 2 for a batch-level failure).
    """
    manager = DatabaseManager(database_url=database_url)
    await manager.initialize()

    try:
        client = get_processor_client(processor)
        worker = ReconciliationWorker(
            manager.session_factory,
            client,
            concurrency=concurrency,
            timeout=timeout,
        )
        result = await worker.reconcile(since=since, limit=limit)
    except (ProcessorConfigurationError, ReconciliationError) as e:
        logger.error(f"Reconciliation failed: {e}")
        return EXIT_BATCH_FAILURE
    finally:
        await manager.shutdown()

    print(json.dumps(result.to_summary_dict(), indent=2))
    if result.failed:
        logger.warning(f"Reconciliation completed with {result.failed} failed donations")
    return EXIT_OK


async def run_export_async(
    kind: LedgerViewKind,
    start: Optional[str] = None,
    end: Optional[str] = None,
    output_dir: Optional[str] = None,
    database_url: Optional[str] = None,
) -> int:
    """Export a ledger view to a CSV file (or stdout).

    Returns:
        Exit code (0 for success, 3 when there is nothing to export).
    """
    start_day = parse_report_date(start)
    end_day = parse_report_date(end)

    manager = DatabaseManager(database_url=database_url)
    await manager.initialize()
    try:
        async with manager.session() as session:
            rows = await LedgerViewAggregator(session).get_view(kind, start=start_day, end=end_day)
    finally:
        await manager.shutdown()

    exporter = CSVExporter()
    csv_text = exporter.to_csv(rows)
    if csv_text is None:
        logger.warning("No data found for the specified criteria")
        return EXIT_NO_DATA

    if output_dir:
        path = os.path.join(output_dir, exporter.filename(kind, start, end))
        with open(path, "w", newline="") as f:
            f.write(csv_text)
        logger.info(f"Report written to {path}")
    else:
        print(csv_text)
    return EXIT_OK


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="donation-ledger",
        description="Donation ledger settlement backfill and reporting tools.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Sync command
    sync_parser = subparsers.add_parser(
        "sync",
        help="Backfill processor charge and fee data onto unsettled donations",
    )
    sync_parser.add_argument(
        "--since", "-s",
        help="Only donations created at or after this date/time (default: 30 days ago)",
    )
    sync_parser.add_argument(
        "--limit", "-l",
        type=int,
        help=f"Maximum number of donations to process (1-{MAX_LIMIT}, default: 200)",
    )
    sync_parser.add_argument(
        "--processor", "-p",
        choices=["stripe", "simulator"],
        help="Processor to query (default: LEDGER_PROCESSOR or stripe)",
    )
    sync_parser.add_argument(
        "--concurrency", "-c",
        type=int,
        help="Maximum donations looked up in parallel",
    )
    sync_parser.add_argument(
        "--timeout", "-t",
        type=float,
        help="Batch deadline in seconds",
    )

    # Export command
    export_parser = subparsers.add_parser(
        "export",
        help="Export a ledger view as CSV",
    )
    export_parser.add_argument(
        "--type",
        choices=[k.value for k in LedgerViewKind],
        default=LedgerViewKind.DAILY.value,
        help="View to export (default: daily)",
    )
    export_parser.add_argument("--start", help="First day (YYYY-MM-DD), daily view only")
    export_parser.add_argument("--end", help="Last day (YYYY-MM-DD), daily view only")
    export_parser.add_argument(
        "--output-dir", "-o",
        help="Directory to write the CSV file to (default: stdout)",
    )

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return EXIT_USAGE

    if parsed_args.command == "sync":
        try:
            since = parse_datetime(parsed_args.since) if parsed_args.since else None
        except ValueError as e:
            logger.error(str(e))
            return EXIT_USAGE

        return asyncio.run(run_sync_async(
            since=since,
            limit=parsed_args.limit,
            processor=parsed_args.processor,
            concurrency=parsed_args.concurrency,
            timeout=parsed_args.timeout,
        ))

    if parsed_args.command == "export":
        try:
            parse_report_date(parsed_args.start)
            parse_report_date(parsed_args.end)
        except ValueError as e:
            logger.error(f"Invalid date: {e}")
            return EXIT_USAGE

        return asyncio.run(run_export_async(
            kind=LedgerViewKind(parsed_args.type),
            start=parsed_args.start,
            end=parsed_args.end,
            output_dir=parsed_args.output_dir,
        ))

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
