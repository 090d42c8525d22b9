"""
Roster ledger table.

One row per booked item (`order_item_id` unique among real rows) or one
placeholder per event (`event_signature` unique among placeholders).
Uniqueness is enforced with partial indexes so both kinds share a table.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from roster_reports.models import SENTINEL_DATE

ID_TYPE = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    pass


class RosterRecord(Base):
    __tablename__ = "roster_records"
    __table_args__ = (
        Index(
            "ux_roster_records_order_item",
            "order_item_id",
            unique=True,
            sqlite_where=text("is_placeholder = 0"),
            postgresql_where=text("NOT is_placeholder"),
        ),
        Index(
            "ux_roster_records_placeholder_signature",
            "event_signature",
            unique=True,
            sqlite_where=text("is_placeholder = 1"),
            postgresql_where=text("is_placeholder"),
        ),
        Index("ix_roster_records_signature", "event_signature"),
        Index("ix_roster_records_product", "product_id"),
        Index("ix_roster_records_event_completed", "event_completed"),
        CheckConstraint(
            "NOT is_placeholder OR (order_id = 0 AND order_item_id = 0)",
            name="placeholder_has_no_order",
        ),
        CheckConstraint("start_date <= end_date", name="dates_in_order"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    order_item_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    variation_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    product_name: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Player and parent
    first_name: Mapped[str] = mapped_column(Text, nullable=False, default="Unknown")
    last_name: Mapped[str] = mapped_column(Text, nullable=False, default="Unknown")
    player_key: Mapped[Optional[str]] = mapped_column(Text)
    age: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    gender: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    medical_conditions: Mapped[str] = mapped_column(Text, nullable=False, default="")
    late_pickup: Mapped[str] = mapped_column(Text, nullable=False, default="")
    parent_first_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    parent_last_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    parent_email: Mapped[str] = mapped_column(Text, nullable=False, default="")
    parent_phone: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Event
    activity_type: Mapped[str] = mapped_column(Text, nullable=False, default="Unknown")
    venue: Mapped[str] = mapped_column(Text, nullable=False, default="")
    age_group: Mapped[str] = mapped_column(Text, nullable=False, default="")
    camp_terms: Mapped[str] = mapped_column(Text, nullable=False, default="")
    course_day: Mapped[str] = mapped_column(Text, nullable=False, default="")
    times: Mapped[str] = mapped_column(Text, nullable=False, default="")
    season: Mapped[str] = mapped_column(Text, nullable=False, default="")
    region: Mapped[str] = mapped_column(Text, nullable=False, default="")
    city: Mapped[str] = mapped_column(Text, nullable=False, default="")
    booking_type: Mapped[str] = mapped_column(Text, nullable=False, default="")
    selected_days: Mapped[str] = mapped_column(Text, nullable=False, default="")
    day_presence: Mapped[Dict[str, bool]] = mapped_column(JSON, nullable=False, default=dict)
    start_date: Mapped[date] = mapped_column(Date, nullable=False, default=SENTINEL_DATE)
    end_date: Mapped[date] = mapped_column(Date, nullable=False, default=SENTINEL_DATE)
    event_dates: Mapped[str] = mapped_column(Text, nullable=False, default="N/A")
    date_confidence: Mapped[str] = mapped_column(String(8), nullable=False, default="none")

    # Pricing
    base_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    discount_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    final_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    reimbursement: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    discount_breakdown: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    discount_codes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    discount_confidence: Mapped[str] = mapped_column(String(8), nullable=False, default="high")

    girls_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_placeholder: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Set by staff when an event is closed; never written by reconciliation
    event_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    event_signature: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    registration_timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    def values(self) -> Dict[str, Any]:
        """Business fields of the row; excludes the surrogate key and bookkeeping columns."""
        return {name: getattr(self, name) for name in ROSTER_FIELDS}

    def as_dict(self) -> Dict[str, Any]:
        row = self.values()
        row["id"] = self.id
        row["event_completed"] = bool(self.event_completed)
        row["updated_at"] = self.updated_at
        return row

    def __repr__(self) -> str:
        if self.is_placeholder:
            return f"<RosterRecord placeholder {self.event_signature} product={self.product_id}>"
        return f"<RosterRecord item={self.order_item_id} order={self.order_id}>"


BOOKKEEPING_FIELDS = ("id", "event_completed", "updated_at")

ROSTER_FIELDS = tuple(
    column.key for column in RosterRecord.__table__.columns if column.key not in BOOKKEEPING_FIELDS
)


def new_record(**values: Any) -> RosterRecord:
    """Build a transient row with every business column default filled in."""
    record = RosterRecord()
    for column in RosterRecord.__table__.columns:
        if column.key in BOOKKEEPING_FIELDS:
            continue
        default = column.default.arg if column.default is not None else None
        if callable(default):
            # Column defaults of dict/list are wrapped as callables taking an execution context
            default = default(None)
        setattr(record, column.key, values.pop(column.key, default))
    if values:
        raise TypeError(f"Unknown roster fields: {', '.join(sorted(values))}")
    return record
