from datetime import datetime
from typing import List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from roster_reports.data_extraction import CommerceSource
from roster_reports.ledger import RosterLedger
from roster_reports.models import (
    BillingContact,
    BookedItem,
    Catalog,
    DiscountAllocation,
    Order,
    Product,
    ProductVariation,
)
from roster_reports.schema import Base

CAMP_TERM = "summer-week-1-june-30-july-4-5-days"


class InMemoryCommerceSource(CommerceSource):
    """Commerce source backed by Order objects; discount writes land on the items."""

    def __init__(self, orders: List[Order], catalog: Catalog = None):
        self.orders = orders
        self.catalog = catalog or Catalog()
        self.written_item_ids: List[int] = []
        self.errors: List[str] = []

    def fetch_orders(self, statuses, since=None, limit=None, unmigrated_only=False):
        statuses = set(statuses)
        selected = [order for order in sorted(self.orders, key=lambda o: o.order_id) if order.status in statuses]
        if since:
            selected = [o for o in selected if o.created_at is None or o.created_at.date().isoformat() >= since]
        if unmigrated_only:
            selected = [o for o in selected if o.items and not o.is_migrated]
        if limit:
            selected = selected[:limit]
        return selected

    def fetch_catalog(self):
        return self.catalog

    def write_item_discounts(self, allocations: List[DiscountAllocation]) -> None:
        items = {item.item_id: item for order in self.orders for item in order.items}
        for allocation in allocations:
            items[allocation.item_id].discount_total = allocation.total
            items[allocation.item_id].discount_breakdown = allocation.breakdown()
            self.written_item_ids.append(allocation.item_id)


def _make_session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def ledger() -> RosterLedger:
    return RosterLedger(_make_session_factory())


@pytest.fixture
def camp_catalog() -> Catalog:
    product = Product(
        product_id=10,
        name="Summer Football Camp",
        attributes={"pa_activity-type": "camp", "pa_canton-region": "geneva"},
    )
    variation = ProductVariation(
        variation_id=11,
        product_id=10,
        attributes={
            "pa_venue": "geneva-stadium",
            "pa_age-group": "5-13y",
            "pa_camp-terms": CAMP_TERM,
            "pa_program-season": "summer-2025",
            "pa_booking-type": "full-week",
            "pa_camp-times": "0900-1600",
        },
    )
    return Catalog([product], [variation])


def make_item(item_id: int, order_id: int = 1, price: float = 300.0, player: str = "1 - Anna Muster", **kwargs):
    attributes = {"Assigned Attendee": player, "Player Age": "9", "Player Gender": "Female"}
    attributes.update(kwargs.pop("attributes", {}))
    values = dict(
        order_id=order_id,
        item_id=item_id,
        product_id=10,
        variation_id=11,
        name="Summer Football Camp",
        attributes=attributes,
        subtotal=price,
        total=price,
        status="completed",
        order_date=datetime(2025, 3, 1, 9, 30),
        billing=BillingContact("Maria", "Muster", "maria@example.com", "+41 79 000 00 00"),
    )
    values.update(kwargs)
    return BookedItem(**values)


def make_order(order_id: int, items: List[BookedItem], status: str = "completed", discounts=None) -> Order:
    return Order(
        order_id=order_id,
        status=status,
        created_at=datetime(2025, 3, 1, 9, 30),
        billing=BillingContact("Maria", "Muster", "maria@example.com", "+41 79 000 00 00"),
        items=items,
        discounts=list(discounts or []),
    )
