"""
Roster ledger.

The canonical store of roster rows. Real rows are keyed by `order_item_id`
and upserted in place, which makes reconciliation passes idempotent.
Placeholder rows are keyed by `event_signature` and exist only while an
event has no real booking.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Set

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from roster_reports.config import Config
from roster_reports.exceptions import DuplicateKeyConflict, LedgerRebuildError
from roster_reports.schema import ROSTER_FIELDS, RosterRecord

logger = logging.getLogger(__name__)

INSERTED = "inserted"
UPDATED = "updated"
UNCHANGED = "unchanged"
SKIPPED = "skipped"

# Keeps IN (...) lists below SQLite's bound-parameter limit
DELETE_CHUNK_SIZE = 500


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _copy(record: RosterRecord) -> RosterRecord:
    return RosterRecord(**record.values())


def _apply(target: RosterRecord, source: RosterRecord) -> bool:
    """Copy business fields onto `target`; True if anything changed."""
    changed = False
    for name in ROSTER_FIELDS:
        value = getattr(source, name)
        if getattr(target, name) != value:
            setattr(target, name, value)
            changed = True
    if changed:
        target.updated_at = _now()
    return changed


class RosterLedger:
    """Read/write access to the roster_records table."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, record: RosterRecord) -> str:
        """
        Insert a real row, or update the row with the same order_item_id in place.

        Placeholder records are routed to upsert_placeholder.

        Returns:
            "inserted", "updated" or "unchanged"
        """
        if record.is_placeholder:
            return self.upsert_placeholder(record)

        with self.session_factory.begin() as session:
            existing = session.scalars(
                select(RosterRecord).where(
                    RosterRecord.order_item_id == record.order_item_id,
                    RosterRecord.is_placeholder.is_(False),
                )
            ).first()
            if existing is None:
                row = _copy(record)
                row.updated_at = _now()
                session.add(row)
                logger.debug(f"Inserted roster row for item {record.order_item_id}")
                return INSERTED
            if _apply(existing, record):
                logger.debug(f"Updated roster row for item {record.order_item_id}")
                return UPDATED
            return UNCHANGED

    def insert(self, record: RosterRecord) -> None:
        """
        Plain insert.

        Raises:
            DuplicateKeyConflict: If the order_item_id (or placeholder signature) already exists
        """
        key = record.event_signature if record.is_placeholder else record.order_item_id
        try:
            with self.session_factory.begin() as session:
                row = _copy(record)
                row.updated_at = _now()
                session.add(row)
        except IntegrityError as exc:
            raise DuplicateKeyConflict(key) from exc

    def upsert_placeholder(self, record: RosterRecord) -> str:
        """
        Create or refresh the placeholder for an event.

        Nothing is written when a real booking already carries the signature.

        Returns:
            "inserted", "updated", "unchanged" or "skipped"
        """
        if not record.event_signature:
            raise ValueError("Placeholder records need an event signature")

        with self.session_factory.begin() as session:
            booked = session.scalar(
                select(func.count(RosterRecord.id)).where(
                    RosterRecord.event_signature == record.event_signature,
                    RosterRecord.is_placeholder.is_(False),
                )
            )
            if booked:
                return SKIPPED

            existing = session.scalars(
                select(RosterRecord).where(
                    RosterRecord.event_signature == record.event_signature,
                    RosterRecord.is_placeholder.is_(True),
                )
            ).first()
            if existing is None:
                row = _copy(record)
                row.order_id = 0
                row.order_item_id = 0
                row.updated_at = _now()
                session.add(row)
                logger.info(
                    f"Created placeholder {record.event_signature} for variation {record.variation_id}"
                )
                return INSERTED
            return UPDATED if _apply(existing, record) else UNCHANGED

    def delete_by_signature(self, signature: str) -> int:
        """Delete the placeholder with this signature; returns rows deleted."""
        with self.session_factory.begin() as session:
            result = session.execute(
                delete(RosterRecord).where(
                    RosterRecord.event_signature == signature,
                    RosterRecord.is_placeholder.is_(True),
                )
            )
        if result.rowcount:
            logger.info(f"Deleted placeholder {signature}")
        return result.rowcount

    def mark_event_completed(self, signature: str, completed: bool = True) -> int:
        """
        Close (or reopen) an event: flag every row carrying its signature.

        Reconciliation never writes the flag, so it survives later upserts.

        Args:
            signature: Event signature
            completed: False reopens the event

        Returns:
            Number of rows carrying the signature

        Raises:
            ValueError: If the signature is empty
        """
        if not signature:
            raise ValueError("An event signature is required")
        with self.session_factory.begin() as session:
            result = session.execute(
                update(RosterRecord)
                .where(RosterRecord.event_signature == signature)
                .values(event_completed=completed, updated_at=_now())
            )
        state = "completed" if completed else "reopened"
        logger.info(f"Event {signature} {state} ({result.rowcount} roster rows)")
        return result.rowcount

    def delete_by_product(self, product_id: int, placeholders_only: bool = True) -> int:
        """
        Delete rows originating from a removed product.

        Args:
            product_id: Parent product id
            placeholders_only: Keep real bookings of the product (default)

        Returns:
            Number of rows deleted
        """
        statement = delete(RosterRecord).where(RosterRecord.product_id == product_id)
        if placeholders_only:
            statement = statement.where(RosterRecord.is_placeholder.is_(True))
        with self.session_factory.begin() as session:
            result = session.execute(statement)
        logger.info(f"Deleted {result.rowcount} roster rows for product {product_id}")
        return result.rowcount

    def delete_obsolete(self, valid_item_ids: Iterable[int]) -> int:
        """Delete real rows whose order_item_id is not in `valid_item_ids`."""
        valid = set(valid_item_ids)
        obsolete = [item_id for item_id in self.item_ids() if item_id not in valid]
        return self._delete_items(obsolete)

    def cleanup_placeholders(self, valid_variation_ids: Iterable[int]) -> int:
        """Delete placeholders whose variation no longer exists or is no longer published."""
        valid = set(valid_variation_ids)
        with self.session_factory() as session:
            rows = session.execute(
                select(RosterRecord.id, RosterRecord.variation_id).where(RosterRecord.is_placeholder.is_(True))
            ).all()
        orphaned = [row_id for row_id, variation_id in rows if variation_id not in valid]

        deleted = 0
        for start in range(0, len(orphaned), DELETE_CHUNK_SIZE):
            chunk = orphaned[start:start + DELETE_CHUNK_SIZE]
            with self.session_factory.begin() as session:
                deleted += session.execute(delete(RosterRecord).where(RosterRecord.id.in_(chunk))).rowcount
        if deleted:
            logger.info(f"Cleaned up {deleted} orphaned placeholders")
        return deleted

    def _delete_items(self, item_ids: List[int]) -> int:
        deleted = 0
        for start in range(0, len(item_ids), DELETE_CHUNK_SIZE):
            chunk = item_ids[start:start + DELETE_CHUNK_SIZE]
            with self.session_factory.begin() as session:
                result = session.execute(
                    delete(RosterRecord).where(
                        RosterRecord.order_item_id.in_(chunk),
                        RosterRecord.is_placeholder.is_(False),
                    )
                )
                deleted += result.rowcount
        if deleted:
            logger.info(f"Deleted {deleted} obsolete roster rows")
        return deleted

    def rebuild_all(self, records: Iterable[RosterRecord]) -> int:
        """
        Replace the whole ledger with `records` in a single transaction.

        The existing rows are deleted and the new ones inserted inside one
        transaction; on any failure the transaction is rolled back and the
        previous ledger is left intact. Events that were completed stay
        completed.

        Args:
            records: Full set of rows, typically a generator over the source orders

        Returns:
            Number of rows written

        Raises:
            LedgerRebuildError: If the rebuild failed and was rolled back
        """
        written = 0
        session = self.session_factory()
        try:
            with session.begin():
                completed = set(
                    session.scalars(
                        select(RosterRecord.event_signature)
                        .where(RosterRecord.event_completed.is_(True))
                        .distinct()
                    )
                )
                previous = session.execute(delete(RosterRecord)).rowcount
                logger.info(f"Rebuilding roster ledger ({previous} existing rows)")
                now = _now()
                for record in records:
                    row = _copy(record)
                    row.event_completed = row.event_signature in completed
                    row.updated_at = now
                    session.add(row)
                    written += 1
                    if written % Config.PROGRESS_LOG_EVERY == 0:
                        session.flush()
                        logger.info(f"  Rebuild progress: {written} rows written")
        except Exception as e:
            logger.error(f"Ledger rebuild failed after {written} rows, rolled back: {e}")
            raise LedgerRebuildError(
                f"Ledger rebuild failed after {written} rows; previous ledger kept"
            ) from e
        finally:
            session.close()

        logger.info(f"Roster ledger rebuilt with {written} rows")
        return written

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, order_item_id: int) -> Optional[RosterRecord]:
        with self.session_factory() as session:
            return session.scalars(
                select(RosterRecord).where(
                    RosterRecord.order_item_id == order_item_id,
                    RosterRecord.is_placeholder.is_(False),
                )
            ).first()

    def placeholder(self, signature: str) -> Optional[RosterRecord]:
        with self.session_factory() as session:
            return session.scalars(
                select(RosterRecord).where(
                    RosterRecord.event_signature == signature,
                    RosterRecord.is_placeholder.is_(True),
                )
            ).first()

    def item_ids(self) -> Set[int]:
        with self.session_factory() as session:
            return set(
                session.scalars(
                    select(RosterRecord.order_item_id).where(RosterRecord.is_placeholder.is_(False))
                )
            )

    def count(self, placeholders: Optional[bool] = None, completed: Optional[bool] = None) -> int:
        statement = select(func.count(RosterRecord.id))
        if placeholders is not None:
            statement = statement.where(RosterRecord.is_placeholder.is_(placeholders))
        if completed is not None:
            statement = statement.where(RosterRecord.event_completed.is_(completed))
        with self.session_factory() as session:
            return session.scalar(statement)

    def rows(
        self,
        include_placeholders: bool = True,
        region: Optional[str] = None,
        product_id: Optional[int] = None,
        completed: Optional[bool] = None,
    ) -> List[RosterRecord]:
        """Filtered select, ordered by start date then id; `completed=None` returns open and closed events."""
        statement = select(RosterRecord).order_by(RosterRecord.start_date, RosterRecord.id)
        if not include_placeholders:
            statement = statement.where(RosterRecord.is_placeholder.is_(False))
        if region:
            statement = statement.where(RosterRecord.region == region)
        if product_id is not None:
            statement = statement.where(RosterRecord.product_id == product_id)
        if completed is not None:
            statement = statement.where(RosterRecord.event_completed.is_(completed))
        with self.session_factory() as session:
            return list(session.scalars(statement))
