#!/usr/bin/env python3
"""
Main orchestration script for the roster pipeline.

Subcommands:
    reconcile          Upsert every reportable order item into the roster ledger,
                       remove rows of deleted items and superseded placeholders
    rebuild            Rebuild the whole ledger from source orders in one transaction
    placeholders       Create/refresh placeholders for published camps, courses and birthdays
    migrate-discounts  Attribute and persist discounts for historical orders, in batches
    close-event        Mark an event completed (or reopen it) by its signature
    report             Camp, course or booking report from the ledger
"""

import argparse
import logging
import sys
from datetime import date

from roster_reports.aggregation import aggregate_camps, aggregate_courses, booking_report, records_to_dataframe
from roster_reports.config import Config
from roster_reports.data_extraction import SupabaseCommerceSource
from roster_reports.database import create_schema, get_engine, get_session_factory
from roster_reports.ledger import RosterLedger
from roster_reports.models import WEEKDAYS
from roster_reports.reconciliation import (
    migrate_all_discounts,
    migrate_discount_batch,
    rebuild_ledger,
    reconcile_orders,
    sync_placeholders,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)

# Report --status choices; completed events are left out by default
REPORT_STATUSES = {"active": False, "completed": True, "all": None}


def open_ledger() -> RosterLedger:
    engine = get_engine()
    create_schema(engine)
    return RosterLedger(get_session_factory(engine))


def run_reconcile(args) -> None:
    source = SupabaseCommerceSource()
    ledger = open_ledger()

    logger.info("\n[Step 1] Extracting catalog and orders...")
    catalog = source.fetch_catalog()
    orders = source.fetch_orders(Config.REPORTABLE_ORDER_STATUSES)
    logger.info(f"  Orders: {len(orders)}")

    # Items of orders that failed to load still exist in the source
    valid_item_ids = None
    if source.errors:
        logger.warning(f"  {len(source.errors)} orders could not be loaded; keeping rows of unknown items")
    else:
        valid_item_ids = [item.item_id for order in orders for item in order.items]

    logger.info("\n[Step 2] Reconciling ledger...")
    result = reconcile_orders(
        orders,
        catalog,
        ledger,
        girls_only_ids=Config.GIRLS_ONLY_VARIATION_IDS,
        statuses=Config.REPORTABLE_ORDER_STATUSES,
        valid_item_ids=valid_item_ids,
    )
    logger.info(f"  Synced: {result.synced}  Failed: {result.failed}")


def run_rebuild(args) -> None:
    source = SupabaseCommerceSource()
    ledger = open_ledger()

    logger.info("\n[Step 1] Extracting catalog and orders...")
    catalog = source.fetch_catalog()
    orders = source.fetch_orders(Config.REPORTABLE_ORDER_STATUSES)

    logger.info("\n[Step 2] Rebuilding ledger...")
    result = rebuild_ledger(
        orders,
        catalog,
        ledger,
        girls_only_ids=Config.GIRLS_ONLY_VARIATION_IDS,
        statuses=Config.REPORTABLE_ORDER_STATUSES,
    )
    logger.info(f"  Bookings written: {result.inserted}  Failed: {result.failed}")


def run_placeholders(args) -> None:
    source = SupabaseCommerceSource()
    ledger = open_ledger()
    result = sync_placeholders(source.fetch_catalog(), ledger, Config.GIRLS_ONLY_VARIATION_IDS)
    logger.info(f"  Created: {result.created}  Removed: {result.deleted}  Failed: {result.failed}")


def run_migrate(args) -> None:
    source = SupabaseCommerceSource()
    catalog = source.fetch_catalog()
    migrate = migrate_all_discounts if args.all else migrate_discount_batch
    result = migrate(
        source,
        catalog,
        batch_size=args.batch_size,
        since=args.since,
        girls_only_ids=Config.GIRLS_ONLY_VARIATION_IDS,
    )
    logger.info(f"  Processed: {result.processed}  Migrated: {result.migrated}  Failed: {result.failed}")


def run_close_event(args) -> None:
    ledger = open_ledger()
    updated = ledger.mark_event_completed(args.signature, completed=not args.reopen)
    if not updated:
        logger.warning(f"  No roster rows carry signature {args.signature}")


def run_report(args) -> None:
    ledger = open_ledger()
    df = records_to_dataframe(ledger.rows(completed=REPORT_STATUSES[args.status]))

    if args.kind == "camp":
        report = aggregate_camps(df, args.season, args.year, args.region, include_inferred=not args.exclude_inferred)
        for group in report.groups:
            logger.info(f"\n{group.key}")
            for cell in group.cells:
                days = " ".join(f"{day[:3]}:{cell.per_weekday_count[day]}" for day in WEEKDAYS)
                logger.info(
                    f"  {cell.region} | {cell.venue} | {cell.category} | full week {cell.full_week_count} | "
                    f"{days} | {cell.min_max} | {cell.unique_record_count} players"
                )
        for category, total in report.totals.items():
            logger.info(f"Total {category}: {total.unique_record_count} players, {total.full_week_count} full week")
        logger.info(f"Excluded: {report.excluded_unresolved} without dates, {report.excluded_buyclub} BuyClub")

    elif args.kind == "course":
        report = aggregate_courses(df, args.season, args.year, args.region)
        for cell in report.cells:
            logger.info(
                f"  {cell.region} | {cell.course_name} | {cell.course_day} | "
                f"{cell.bookings} bookings | {cell.girls_free} girls free"
            )
        logger.info(f"Total: {report.total_bookings} bookings, {report.total_girls_free} girls free")

    else:
        report = booking_report(df, start=args.start, end=args.end, year=args.year, region=args.region)
        for row in report.rows.to_dict("records"):
            logger.info(
                f"  #{row['order_id']} {row['first_name']} {row['last_name']} | {row['product_name']} | "
                f"{row['event_dates']} | {row['base_price']:.2f} - {row['discount_amount']:.2f} "
                f"= {row['final_price']:.2f}"
            )
        logger.info(f"Totals: {report.totals}")
        logger.info(f"Discounts by type: {report.discount_breakdown}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Roster reconciliation and reporting")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("reconcile", help="Reconcile orders into the roster ledger").set_defaults(func=run_reconcile)
    subparsers.add_parser("rebuild", help="Rebuild the roster ledger from scratch").set_defaults(func=run_rebuild)
    subparsers.add_parser("placeholders", help="Sync placeholders with the catalog").set_defaults(
        func=run_placeholders
    )

    migrate = subparsers.add_parser("migrate-discounts", help="Backfill discount allocations")
    migrate.add_argument("--batch-size", type=int, default=Config.MIGRATION_BATCH_SIZE)
    migrate.add_argument("--since", default=Config.MIGRATION_START_DATE, help="Earliest order date (YYYY-MM-DD)")
    migrate.add_argument("--all", action="store_true", help="Run batches until nothing is left")
    migrate.set_defaults(func=run_migrate)

    close_event = subparsers.add_parser("close-event", help="Mark an event completed")
    close_event.add_argument("signature", help="Event signature")
    close_event.add_argument("--reopen", action="store_true", help="Mark the event active again")
    close_event.set_defaults(func=run_close_event)

    report = subparsers.add_parser("report", help="Print a report from the ledger")
    report.add_argument("kind", choices=["camp", "course", "bookings"])
    report.add_argument("--year", type=int)
    report.add_argument("--season", help="Season word, e.g. Summer")
    report.add_argument("--region")
    report.add_argument("--start", type=date.fromisoformat, help="Bookings from (YYYY-MM-DD)")
    report.add_argument("--end", type=date.fromisoformat, help="Bookings until (YYYY-MM-DD)")
    report.add_argument("--exclude-inferred", action="store_true", help="Drop rows with inferred dates")
    report.add_argument("--status", choices=list(REPORT_STATUSES), default="active", help="Events to include")
    report.set_defaults(func=run_report)

    return parser


def main(argv=None):
    """Main execution function."""
    args = build_parser().parse_args(argv)
    try:
        logger.info("=" * 60)
        logger.info(f"Starting roster pipeline: {args.command}")
        logger.info("=" * 60)

        args.func(args)

        logger.info("\n" + "=" * 60)
        logger.info("Roster pipeline completed successfully")
        logger.info("=" * 60)

    except Exception as e:
        logger.error(f"\nPipeline failed with error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
