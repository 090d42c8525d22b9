"""
Reconciliation of commerce orders into the roster ledger.

Turns booked items into roster rows (attributes resolved, activity
classified, dates resolved, discounts attributed, event signature computed),
keeps placeholders in step with the catalog, and runs the batch passes:
full reconciliation, full rebuild and discount migration.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Set

from roster_reports.attributes import catalog_sources, clean_value, item_sources, resolve
from roster_reports.classification import (
    GIRLS_ONLY,
    ClassificationSignals,
    classify,
    day_presence,
    normalize_season,
    product_type,
)
from roster_reports.config import Config
from roster_reports.data_extraction import CommerceSource
from roster_reports.discounts import allocate_order, allocation_for_item, attribute_group, priced_item
from roster_reports.exceptions import DuplicateKeyConflict
from roster_reports.event_dates import resolve_dates
from roster_reports.ledger import INSERTED, SKIPPED, UNCHANGED, UPDATED, RosterLedger
from roster_reports.models import (
    SENTINEL_DATE,
    BookedItem,
    Catalog,
    DateResolution,
    DiscountAllocation,
    Order,
    Product,
    ProductVariation,
)
from roster_reports.schema import RosterRecord, new_record
from roster_reports.signatures import event_fields, generate_signature

logger = logging.getLogger(__name__)

# Product families that get an empty-roster placeholder when published
PLACEHOLDER_PRODUCT_TYPES = frozenset({"camp", "course", "birthday"})

ATTENDEE_PREFIX = re.compile(r"^\s*\d+\s*[-.:)]?\s*")


@dataclass
class ReconcileResult:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    deleted_placeholders: int = 0
    obsolete_deleted: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def synced(self) -> int:
        return self.inserted + self.updated + self.unchanged

    def fail(self, message: str) -> None:
        self.failed += 1
        self.errors.append(message)
        logger.error(message)


@dataclass
class PlaceholderResult:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    deleted: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class BatchResult:
    processed: int = 0
    migrated: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    failed_order_ids: List[int] = field(default_factory=list)


def parse_attendee(value: Optional[str]):
    """
    Split an "Assigned Attendee" value into (first_name, last_name).

    The commerce platform prefixes attendees with their position ("2 - Anna Muster").
    """
    name = ATTENDEE_PREFIX.sub("", clean_value(value))
    if not name:
        return "Unknown", "Unknown"
    parts = name.split(None, 1)
    return parts[0], parts[1] if len(parts) > 1 else "Unknown"


def _discount_codes(item: BookedItem, order: Optional[Order]) -> str:
    codes = [code for code in re.split(r"\s*,\s*", resolve("discount_codes", [item.attributes])) if code]
    for code in order.coupon_codes if order else []:
        if code not in codes:
            codes.append(code)
    return ", ".join(codes)


def _date_fields(dates: DateResolution) -> Dict[str, object]:
    return {
        "start_date": dates.start or SENTINEL_DATE,
        "end_date": dates.end or SENTINEL_DATE,
        "event_dates": dates.label,
        "date_confidence": dates.confidence,
    }


def _classify_sources(sources, variation_id: int, girls_only_ids: FrozenSet[int]) -> str:
    signals = ClassificationSignals(
        course_day=resolve("course_day", sources),
        camp_terms=resolve("camp_terms", sources),
        variation_id=variation_id,
        girls_only_ids=girls_only_ids,
    )
    return classify(resolve("activity_type", sources), signals)


def _signature(sources, activity_type: str, product_id: int, start: Optional[date]) -> str:
    return generate_signature(event_fields(sources, activity_type, product_id, start))


def build_roster_record(
    item: BookedItem,
    order: Optional[Order] = None,
    catalog: Optional[Catalog] = None,
    girls_only_ids: FrozenSet[int] = frozenset(),
    allocation: Optional[DiscountAllocation] = None,
    today: Optional[date] = None,
) -> RosterRecord:
    """
    Build the roster row of one booked item.

    Args:
        item: The booked item
        order: Its order (coupon codes); optional
        catalog: Product catalog for attribute fallbacks
        girls_only_ids: Variation ids sold as girls-only events
        allocation: Pre-computed discount allocation; computed from the order when omitted
        today: Override for the current date

    Returns:
        Transient RosterRecord ready for the ledger
    """
    catalog = catalog or Catalog()
    variation = catalog.variation(item.variation_id)
    product = catalog.product(item.product_id)
    sources = item_sources(item, variation, product)

    activity_type = _classify_sources(sources, item.variation_id, girls_only_ids)
    season = normalize_season(resolve("season", sources))
    booking_type = resolve("booking_type", sources)
    selected_days = resolve("selected_days", sources)

    explicit_sources = [item.attributes, variation.attributes if variation else None,
                        product.attributes if product else None]
    dates = resolve_dates(
        resolve("camp_terms", [item.attributes]),
        season,
        resolve("start_date", explicit_sources),
        resolve("end_date", explicit_sources),
        order_date=item.order_date,
        metadata_sources=[variation.metadata if variation else None, product.metadata if product else None],
        product_term=resolve("camp_terms", catalog_sources(variation, product)),
        weekly_pattern=selected_days or booking_type,
        today=today,
    )

    if allocation is None:
        if order is not None:
            allocation = allocate_order(order, catalog, girls_only_ids)[item.item_id]
        else:
            allocation = allocation_for_item(item)

    # Placeholders are built from the catalog, so bookings of a known variation hash the same way
    if variation is not None:
        signature_sources = catalog_sources(variation, product)
        signature_activity = _classify_sources(signature_sources, item.variation_id, girls_only_ids)
    else:
        signature_sources = sources
        signature_activity = activity_type
    signature = _signature(signature_sources, signature_activity, item.product_id, dates.start)

    first_name, last_name = parse_attendee(resolve("attendee", sources))
    return new_record(
        order_id=item.order_id,
        order_item_id=item.item_id,
        product_id=item.product_id,
        variation_id=item.variation_id,
        product_name=item.name or (product.name if product else ""),
        first_name=first_name,
        last_name=last_name,
        player_key=item.player_key,
        age=resolve("player_age", sources),
        gender=resolve("player_gender", sources),
        medical_conditions=resolve("medical_conditions", sources),
        late_pickup=resolve("late_pickup", sources),
        parent_first_name=item.billing.first_name,
        parent_last_name=item.billing.last_name,
        parent_email=item.billing.email,
        parent_phone=item.billing.phone,
        activity_type=activity_type,
        venue=resolve("venue", sources),
        age_group=resolve("age_group", sources),
        camp_terms=resolve("camp_terms", sources),
        course_day=resolve("course_day", sources),
        times=resolve("times", sources),
        season=season,
        region=resolve("region", sources),
        city=resolve("city", sources),
        booking_type=booking_type,
        selected_days=selected_days,
        day_presence=day_presence(booking_type, selected_days),
        base_price=round(float(item.subtotal or 0), 2),
        discount_amount=allocation.total,
        final_price=round(float(item.total or 0), 2),
        reimbursement=round(float(item.reimbursement or 0), 2),
        discount_breakdown=allocation.breakdown(),
        discount_codes=_discount_codes(item, order),
        discount_confidence="low" if allocation.low_confidence and allocation.lines else "high",
        girls_only=activity_type == GIRLS_ONLY,
        is_placeholder=False,
        event_signature=signature,
        registration_timestamp=item.order_date,
        **_date_fields(dates),
    )


def build_placeholder(
    variation: ProductVariation,
    product: Optional[Product] = None,
    girls_only_ids: FrozenSet[int] = frozenset(),
    today: Optional[date] = None,
) -> Optional[RosterRecord]:
    """
    Build the empty-roster placeholder of a published variation.

    Returns:
        Transient placeholder RosterRecord, or None if the variation is not a
        camp, course or birthday
    """
    sources = catalog_sources(variation, product)
    activity_type = _classify_sources(sources, variation.variation_id, girls_only_ids)
    camp_terms = resolve("camp_terms", sources)
    course_day = resolve("course_day", sources)
    if product_type(activity_type, camp_terms, course_day) not in PLACEHOLDER_PRODUCT_TYPES:
        return None

    season = normalize_season(resolve("season", sources))
    booking_type = resolve("booking_type", sources)
    explicit_sources = [variation.attributes, product.attributes if product else None]
    dates = resolve_dates(
        camp_terms,
        season,
        resolve("start_date", explicit_sources),
        resolve("end_date", explicit_sources),
        metadata_sources=[variation.metadata, product.metadata if product else None],
        today=today,
    )

    return new_record(
        order_id=0,
        order_item_id=0,
        product_id=variation.product_id,
        variation_id=variation.variation_id,
        product_name=product.name if product else "",
        activity_type=activity_type,
        venue=resolve("venue", sources),
        age_group=resolve("age_group", sources),
        camp_terms=camp_terms,
        course_day=course_day,
        times=resolve("times", sources),
        season=season,
        region=resolve("region", sources),
        city=resolve("city", sources),
        booking_type=booking_type,
        girls_only=activity_type == GIRLS_ONLY,
        is_placeholder=True,
        event_signature=_signature(sources, activity_type, variation.product_id, dates.start),
        **_date_fields(dates),
    )


def _reportable(order: Order, statuses: Optional[Iterable[str]]) -> bool:
    return statuses is None or order.status in set(statuses)


def _log_progress(count: int, label: str) -> None:
    if count and count % Config.PROGRESS_LOG_EVERY == 0:
        logger.info(f"  {label}: {count} items processed")


def reconcile_orders(
    orders: Iterable[Order],
    catalog: Catalog,
    ledger: RosterLedger,
    girls_only_ids: FrozenSet[int] = frozenset(),
    statuses: Optional[Iterable[str]] = None,
    valid_item_ids: Optional[Iterable[int]] = None,
) -> ReconcileResult:
    """
    Upsert every item of the given orders into the ledger.

    A placeholder sharing a booking's event signature is deleted once the
    booking is stored. When `valid_item_ids` is given (a full pass), ledger
    rows for items outside that set are deleted afterwards.

    Args:
        orders: Orders to reconcile
        catalog: Product catalog
        ledger: Roster ledger
        girls_only_ids: Variation ids sold as girls-only events
        statuses: Order statuses that produce roster rows (None = all)
        valid_item_ids: Every item id that still exists in the source

    Returns:
        ReconcileResult with per-outcome counts and item failures
    """
    result = ReconcileResult()
    processed = 0
    for order in orders:
        if not _reportable(order, statuses):
            continue
        try:
            allocations = allocate_order(order, catalog, girls_only_ids)
        except Exception as e:
            result.fail(f"Order {order.order_id}: discount attribution failed: {e}")
            continue

        for item in order.items:
            processed += 1
            try:
                record = build_roster_record(item, order, catalog, girls_only_ids, allocations[item.item_id])
                outcome = ledger.upsert(record)
                if outcome == INSERTED:
                    result.inserted += 1
                elif outcome == UPDATED:
                    result.updated += 1
                else:
                    result.unchanged += 1
                result.deleted_placeholders += ledger.delete_by_signature(record.event_signature)
            except Exception as e:
                result.fail(f"Order {order.order_id} item {item.item_id}: {e}")
            _log_progress(processed, "Reconcile")

    if valid_item_ids is not None:
        result.obsolete_deleted = ledger.delete_obsolete(valid_item_ids)

    logger.info(
        f"Reconciled {result.synced} items ({result.inserted} new, {result.updated} updated), "
        f"{result.deleted_placeholders} placeholders superseded, "
        f"{result.obsolete_deleted} obsolete rows removed, {result.failed} failed"
    )
    return result


def record_order(
    order: Order,
    catalog: Catalog,
    ledger: RosterLedger,
    girls_only_ids: FrozenSet[int] = frozenset(),
) -> ReconcileResult:
    """
    Insert the items of a newly placed order.

    Items already in the ledger are treated as processed and skipped.
    """
    result = ReconcileResult()
    allocations = allocate_order(order, catalog, girls_only_ids)
    for item in order.items:
        try:
            record = build_roster_record(item, order, catalog, girls_only_ids, allocations[item.item_id])
            ledger.insert(record)
            result.inserted += 1
            result.deleted_placeholders += ledger.delete_by_signature(record.event_signature)
        except DuplicateKeyConflict:
            logger.info(f"Item {item.item_id} of order {order.order_id} already processed, skipping")
            result.skipped += 1
        except Exception as e:
            result.fail(f"Order {order.order_id} item {item.item_id}: {e}")
    return result


def _published(catalog: Catalog) -> Iterator[tuple]:
    for variation in catalog.variations.values():
        product = catalog.product(variation.product_id)
        if variation.status != "publish" or (product is not None and product.status != "publish"):
            continue
        yield variation, product


def publish_variation(
    variation: ProductVariation,
    product: Optional[Product],
    ledger: RosterLedger,
    girls_only_ids: FrozenSet[int] = frozenset(),
) -> str:
    """
    Create or refresh the placeholder of a newly published variation.

    Returns:
        Ledger outcome, or "skipped" if the variation gets no placeholder
    """
    placeholder = build_placeholder(variation, product, girls_only_ids)
    if placeholder is None:
        return SKIPPED
    return ledger.upsert_placeholder(placeholder)


def remove_product(product_id: int, ledger: RosterLedger) -> int:
    """Drop the placeholders of a deleted product; real bookings stay."""
    return ledger.delete_by_product(product_id)


def sync_placeholders(
    catalog: Catalog,
    ledger: RosterLedger,
    girls_only_ids: FrozenSet[int] = frozenset(),
) -> PlaceholderResult:
    """
    Bring placeholders in line with the catalog.

    Every published camp, course or birthday variation gets a placeholder
    unless it is already booked; placeholders of variations that are gone
    or unpublished are deleted.
    """
    result = PlaceholderResult()
    published_ids: Set[int] = set()
    for variation, product in _published(catalog):
        published_ids.add(variation.variation_id)
        try:
            outcome = publish_variation(variation, product, ledger, girls_only_ids)
        except Exception as e:
            result.failed += 1
            result.errors.append(f"Variation {variation.variation_id}: {e}")
            logger.error(f"Placeholder sync failed for variation {variation.variation_id}: {e}")
            continue
        if outcome == INSERTED:
            result.created += 1
        elif outcome == UPDATED:
            result.updated += 1
        elif outcome == UNCHANGED:
            result.unchanged += 1
        else:
            result.skipped += 1

    result.deleted = ledger.cleanup_placeholders(published_ids)
    logger.info(
        f"Placeholders: {result.created} created, {result.updated} updated, "
        f"{result.skipped} skipped, {result.deleted} removed, {result.failed} failed"
    )
    return result


def _rebuild_rows(
    orders: Iterable[Order],
    catalog: Catalog,
    girls_only_ids: FrozenSet[int],
    statuses: Optional[Iterable[str]],
    result: ReconcileResult,
) -> Iterator[RosterRecord]:
    booked_signatures: Set[str] = set()
    processed = 0
    for order in orders:
        if not _reportable(order, statuses):
            continue
        try:
            allocations = allocate_order(order, catalog, girls_only_ids)
        except Exception as e:
            result.fail(f"Order {order.order_id}: discount attribution failed: {e}")
            continue
        for item in order.items:
            processed += 1
            try:
                record = build_roster_record(item, order, catalog, girls_only_ids, allocations[item.item_id])
            except Exception as e:
                result.fail(f"Order {order.order_id} item {item.item_id}: {e}")
                continue
            booked_signatures.add(record.event_signature)
            result.inserted += 1
            _log_progress(processed, "Rebuild")
            yield record

    placeholder_signatures: Set[str] = set()
    for variation, product in _published(catalog):
        placeholder = build_placeholder(variation, product, girls_only_ids)
        if placeholder is None:
            continue
        signature = placeholder.event_signature
        if signature in booked_signatures or signature in placeholder_signatures:
            continue
        placeholder_signatures.add(signature)
        yield placeholder


def rebuild_ledger(
    orders: Iterable[Order],
    catalog: Catalog,
    ledger: RosterLedger,
    girls_only_ids: FrozenSet[int] = frozenset(),
    statuses: Optional[Iterable[str]] = None,
) -> ReconcileResult:
    """
    Replace the ledger with rows rebuilt from source orders plus placeholders.

    Item failures are skipped and counted; a transaction failure raises
    LedgerRebuildError with the previous ledger intact.
    """
    result = ReconcileResult()
    written = ledger.rebuild_all(_rebuild_rows(orders, catalog, girls_only_ids, statuses, result))
    logger.info(f"Rebuild wrote {written} rows ({result.inserted} bookings), {result.failed} items failed")
    return result


def migrate_discount_batch(
    source: CommerceSource,
    catalog: Catalog,
    batch_size: Optional[int] = None,
    since: Optional[str] = None,
    statuses: Optional[Iterable[str]] = None,
    girls_only_ids: FrozenSet[int] = frozenset(),
    skip_order_ids: FrozenSet[int] = frozenset(),
) -> BatchResult:
    """
    Attribute and persist discounts for one batch of unmigrated orders.

    Orders whose items all carry a persisted discount are never selected,
    so re-running a batch migrates nothing new. Each order is written
    independently; a failed order is counted and left unmigrated.

    Args:
        source: Commerce data source
        catalog: Product catalog
        batch_size: Orders per batch
        since: Only orders created on or after this date
        statuses: Order statuses to migrate
        skip_order_ids: Orders left out of the batch (earlier failures)

    Returns:
        BatchResult with processed, migrated and failed counts
    """
    batch_size = batch_size or Config.MIGRATION_BATCH_SIZE
    since = since or Config.MIGRATION_START_DATE
    statuses = list(statuses or Config.REPORTABLE_ORDER_STATUSES)

    result = BatchResult()
    orders = source.fetch_orders(
        statuses, since=since, limit=batch_size + len(skip_order_ids), unmigrated_only=True
    )
    orders = [order for order in orders if order.order_id not in skip_order_ids][:batch_size]
    for order in orders:
        if order.is_migrated:
            continue
        result.processed += 1
        try:
            priced = [priced_item(item, catalog, girls_only_ids) for item in order.items]
            allocations = attribute_group(priced, order.discounts)
            pending = [allocations[item.item_id] for item in order.items if not item.has_persisted_discount]
            source.write_item_discounts(pending)
            result.migrated += 1
        except Exception as e:
            result.failed += 1
            result.failed_order_ids.append(order.order_id)
            result.errors.append(f"Order {order.order_id}: {e}")
            logger.error(f"Discount migration failed for order {order.order_id}: {e}")

    logger.info(
        f"Discount migration batch: {result.processed} processed, "
        f"{result.migrated} migrated, {result.failed} failed"
    )
    return result


def migrate_all_discounts(
    source: CommerceSource,
    catalog: Catalog,
    batch_size: Optional[int] = None,
    since: Optional[str] = None,
    statuses: Optional[Iterable[str]] = None,
    girls_only_ids: FrozenSet[int] = frozenset(),
) -> BatchResult:
    """
    Run migration batches until no unmigrated order is left; each batch commits on its own.

    Orders that failed are skipped by later batches, so one bad order
    cannot hold back the orders behind it or stall the loop.
    """
    total = BatchResult()
    batch_number = 0
    while True:
        batch_number += 1
        batch = migrate_discount_batch(
            source, catalog, batch_size, since, statuses, girls_only_ids, frozenset(total.failed_order_ids)
        )
        total.processed += batch.processed
        total.migrated += batch.migrated
        total.failed += batch.failed
        total.errors.extend(batch.errors)
        total.failed_order_ids.extend(batch.failed_order_ids)
        logger.info(f"  Batch {batch_number}: {batch.migrated} migrated ({total.migrated} so far)")
        if batch.processed == 0:
            break
    return total
