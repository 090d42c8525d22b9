"""
In-memory records passed between pipeline stages.

Commerce inputs (orders, booked items, catalog entries) are read-only
snapshots of the commerce platform. Discount allocations, date resolutions
and report cells are derived values that are never persisted on their own.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday")

# Placeholder date written when no strategy resolves an event date
SENTINEL_DATE = date(1970, 1, 1)


@dataclass
class BillingContact:
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""


@dataclass
class BookedItem:
    """One purchased line item: a single participant's registration."""

    order_id: int
    item_id: int
    product_id: int
    variation_id: int = 0
    name: str = ""
    attributes: Dict[str, Any] = field(default_factory=dict)
    subtotal: float = 0.0
    total: float = 0.0
    status: str = ""
    order_date: Optional[datetime] = None
    billing: BillingContact = field(default_factory=BillingContact)
    reimbursement: float = 0.0
    # Allocation previously written back onto the line item, if any
    discount_total: Optional[float] = None
    discount_breakdown: Optional[List[Dict[str, Any]]] = None

    @property
    def player_key(self) -> Optional[str]:
        """Identity of the assigned player, used to group co-booked items."""
        for key in ("assigned_player", "Assigned Attendee", "assigned_attendee"):
            value = self.attributes.get(key)
            if isinstance(value, list):
                value = value[0] if value else None
            if value is not None and str(value).strip() != "":
                return str(value).strip().lower()
        return None

    @property
    def has_persisted_discount(self) -> bool:
        return self.discount_total is not None


@dataclass
class OrderDiscount:
    """An order-level discount (cart fee or coupon) before allocation."""

    name: str
    amount: float
    type: str = "other"


@dataclass
class Order:
    order_id: int
    status: str
    created_at: Optional[datetime] = None
    billing: BillingContact = field(default_factory=BillingContact)
    items: List[BookedItem] = field(default_factory=list)
    discounts: List[OrderDiscount] = field(default_factory=list)
    coupon_codes: List[str] = field(default_factory=list)

    @property
    def is_migrated(self) -> bool:
        return bool(self.items) and all(item.has_persisted_discount for item in self.items)


@dataclass
class ProductVariation:
    variation_id: int
    product_id: int
    attributes: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    status: str = "publish"


@dataclass
class Product:
    product_id: int
    name: str = ""
    attributes: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    status: str = "publish"


class Catalog:
    """Read-only view of products and their bookable variations."""

    def __init__(self, products: Iterable[Product] = (), variations: Iterable[ProductVariation] = ()):
        self.products: Dict[int, Product] = {p.product_id: p for p in products}
        self.variations: Dict[int, ProductVariation] = {v.variation_id: v for v in variations}

    def product(self, product_id: Optional[int]) -> Optional[Product]:
        if not product_id:
            return None
        return self.products.get(int(product_id))

    def variation(self, variation_id: Optional[int]) -> Optional[ProductVariation]:
        if not variation_id:
            return None
        return self.variations.get(int(variation_id))

    def variations_for(self, product_id: int) -> List[ProductVariation]:
        return [v for v in self.variations.values() if v.product_id == product_id]


@dataclass
class DiscountLine:
    name: str
    type: str
    amount: float
    applied_to: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.type, "amount": self.amount, "applied_to": self.applied_to}


@dataclass
class DiscountAllocation:
    """Per-item discount lines; `low_confidence` marks the base-minus-final fallback."""

    item_id: int
    lines: List[DiscountLine] = field(default_factory=list)
    low_confidence: bool = False

    @property
    def total(self) -> float:
        return round(sum(line.amount for line in self.lines), 2)

    def breakdown(self) -> List[Dict[str, Any]]:
        return [line.as_dict() for line in self.lines]


@dataclass
class DateResolution:
    """Outcome of event date resolution.

    `confidence` is "high" for parsed dates, "low" for the Jan-1 season
    inference and "none" when unresolved.
    """

    start: Optional[date] = None
    end: Optional[date] = None
    strategy: str = "unresolved"
    confidence: str = "none"

    @property
    def resolved(self) -> bool:
        return self.start is not None and self.end is not None

    @property
    def label(self) -> str:
        if not self.resolved:
            return "N/A"
        return f"{self.start.isoformat()} to {self.end.isoformat()}"


UNRESOLVED = DateResolution()


@dataclass
class ReportCell:
    date_range_key: str
    region: str
    venue: str
    category: str
    full_week_count: int = 0
    per_weekday_count: Dict[str, int] = field(default_factory=lambda: {day: 0 for day in WEEKDAYS})
    min: int = 0
    max: int = 0
    unique_record_count: int = 0

    @property
    def min_max(self) -> str:
        return f"{self.min}-{self.max}"


@dataclass
class CourseCell:
    region: str
    course_name: str
    course_day: str
    bookings: int = 0
    girls_free: int = 0
