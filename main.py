"""CLI entry point for the job notice crawler."""

import argparse
import asyncio
import json
import logging
import sqlite3
import sys

from crawler.admin import AdminResponse, trigger_full_scan, trigger_source_scan
from crawler.core.config import Settings
from crawler.core.db import get_source_state, init_db
from crawler.core.errors import ConfigurationError
from crawler.core.schemas import ScanOutcome, ScanReport
from crawler.pipeline.orchestrator import export_report_json


def _add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Job notice crawler - scan configured sources and store postings",
    )
    subparsers = parser.add_subparsers(dest="command")

    # --- scan subcommand (default) ---
    scan_parser = subparsers.add_parser("scan", help="Scan every enabled source")
    _add_common_flags(scan_parser)
    scan_parser.add_argument(
        "--export",
        choices=["json"],
        help="Export the scan report to format (json)",
    )

    # --- scan-source subcommand ---
    source_parser = subparsers.add_parser("scan-source", help="Scan a single source")
    source_parser.add_argument("source_id", help="Identifier of the source to scan")
    _add_common_flags(source_parser)
    source_parser.add_argument(
        "--export",
        choices=["json"],
        help="Export the scan outcome to format (json)",
    )

    # --- sources subcommand ---
    sources_parser = subparsers.add_parser(
        "sources", help="List configured sources and when they were last scanned",
    )
    _add_common_flags(sources_parser)

    # --- top-level flags for the default scan ---
    parser.add_argument("--config", default="config/settings.yaml", help=argparse.SUPPRESS)
    parser.add_argument("--export", choices=["json"], help=argparse.SUPPRESS)
    parser.add_argument("--verbose", "-v", action="store_true", help=argparse.SUPPRESS)

    args = parser.parse_args(argv)

    # Default to scan when no subcommand given
    if args.command is None:
        args.command = "scan"

    return args


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _print_outcome(outcome: ScanOutcome) -> None:
    print(
        f"  {outcome.source_id}: {outcome.status.value} - "
        f"{outcome.fetched} fetched, {outcome.extracted} extracted, "
        f"{outcome.created} created, {outcome.updated} updated, "
        f"{outcome.skipped_duplicate} duplicate, {outcome.failed} failed"
    )
    for failure in outcome.failures:
        where = f" ({failure.url})" if failure.url else ""
        print(f"    ! {failure.stage.value}{where}: {failure.cause}")
    for warning in outcome.warnings:
        print(f"    ~ {warning}")


def _exit_on_error(response: AdminResponse) -> None:
    if response.success or response.error is None:
        return
    print(f"Error [{response.error.code.value}]: {response.error.message}", file=sys.stderr)
    sys.exit(1)


def cmd_scan(settings: Settings, export_format: str | None) -> None:
    """Handle the scan subcommand."""
    response = asyncio.run(trigger_full_scan(settings))
    _exit_on_error(response)

    report = ScanReport.model_validate(response.data["report"])
    totals = report.totals
    print(
        f"\nScan complete in {report.duration_seconds:.1f}s: {totals.sources} sources, "
        f"{totals.created} created, {totals.updated} updated, "
        f"{totals.skipped_duplicate} duplicate, {totals.failed} failed."
    )
    if report.deadline_exceeded:
        print("  Cycle deadline exceeded - some sources were skipped or cancelled.")
    for source_id in sorted(report.outcomes):
        _print_outcome(report.outcomes[source_id])

    if export_format == "json":
        print(f"\n{export_report_json(report)}")


def cmd_scan_source(settings: Settings, source_id: str, export_format: str | None) -> None:
    """Handle the scan-source subcommand."""
    response = asyncio.run(trigger_source_scan(settings, source_id))
    _exit_on_error(response)

    outcome = ScanOutcome.model_validate(response.data["outcome"])
    print(f"\nScan of '{source_id}' complete:")
    _print_outcome(outcome)

    if export_format == "json":
        print(f"\n{json.dumps(outcome.model_dump(mode='json'), indent=2)}")


def cmd_sources(settings: Settings) -> None:
    """Handle the sources subcommand."""
    try:
        conn = init_db(settings.database.path)
    except (sqlite3.Error, OSError) as e:
        print(f"Error opening database {settings.database.path}: {e}", file=sys.stderr)
        sys.exit(1)
    try:
        last_scanned = get_source_state(conn)
    except sqlite3.Error as e:
        print(f"Error reading database {settings.database.path}: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        conn.close()

    print(f"{len(settings.sources)} sources configured")
    for source in settings.sources:
        state = "enabled" if source.enabled else "disabled"
        scanned_at = last_scanned.get(source.id)
        when = scanned_at.isoformat(timespec="seconds") if scanned_at else "never"
        print(f"  {source.id} [{source.strategy.value}, {state}] {source.url}")
        print(f"    last scanned: {when}")


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = Settings.from_yaml(args.config)
    except ConfigurationError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    if args.command == "sources":
        cmd_sources(settings)
    elif args.command == "scan-source":
        cmd_scan_source(settings, args.source_id, args.export)
    else:
        # scan (default)
        cmd_scan(settings, args.export)


if __name__ == "__main__":
    main()
