"""
Data extraction from the commerce platform.

Pulls orders, line items and the product catalog from Supabase with column
validation, and turns the DataFrames into typed commerce records.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
from supabase import Client

from roster_reports.database import (
    get_supabase_client,
    iter_table_pages,
    query_table_to_dataframe,
    write_item_discounts,
)
from roster_reports.exceptions import SourceDataError
from roster_reports.models import (
    BillingContact,
    BookedItem,
    Catalog,
    DiscountAllocation,
    Order,
    OrderDiscount,
    Product,
    ProductVariation,
)

logger = logging.getLogger(__name__)


# Required columns for each table
REQUIRED_COLUMNS = {
    "orders": ["order_id", "status", "created_at"],
    "order_items": ["item_id", "order_id", "product_id", "variation_id", "attributes", "subtotal", "total"],
    "product_variations": ["variation_id", "product_id", "attributes"],
    "products": ["product_id", "name", "attributes"],
}

# Supabase URLs get long with big IN (...) filters
ORDER_ID_CHUNK_SIZE = 200


def validate_columns(df: pd.DataFrame, table_name: str) -> None:
    """
    Validate that DataFrame contains all required columns.

    Args:
        df: DataFrame to validate
        table_name: Name of the table (for error messages)

    Raises:
        SourceDataError: If required columns are missing
    """
    if table_name not in REQUIRED_COLUMNS:
        logger.warning(f"No required columns defined for {table_name}, skipping validation")
        return

    # An empty result has no columns at all
    if df.empty and len(df.columns) == 0:
        return

    required = REQUIRED_COLUMNS[table_name]
    missing = [col for col in required if col not in df.columns]

    if missing:
        raise SourceDataError(
            f"Table {table_name} is missing required columns: {', '.join(missing)}. "
            f"Found columns: {', '.join(df.columns)}"
        )

    logger.info(f"Table {table_name} validation passed ({len(df)} rows)")


def _json(value: Any, default: Any) -> Any:
    """Decode a JSON column that may arrive already decoded, as text, or as NaN."""
    if value is None:
        return default
    if isinstance(value, float) and pd.isna(value):
        return default
    if isinstance(value, str):
        if not value.strip():
            return default
        try:
            return json.loads(value)
        except ValueError as e:
            raise SourceDataError(f"Invalid JSON value: {value[:80]!r}") from e
    return value


def _text(row: Dict[str, Any], column: str) -> str:
    value = row.get(column)
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    return str(value)


def _number(row: Dict[str, Any], column: str, default: float = 0.0) -> float:
    value = row.get(column)
    if value is None or (isinstance(value, float) and pd.isna(value)) or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise SourceDataError(f"Column {column} is not numeric: {value!r}") from e


def _optional_number(row: Dict[str, Any], column: str) -> Optional[float]:
    value = row.get(column)
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    return _number(row, column)


def _timestamp(value: Any):
    if value is None or (isinstance(value, float) and pd.isna(value)) or value == "":
        return None
    stamp = pd.to_datetime(value, utc=True, errors="coerce")
    if pd.isna(stamp):
        raise SourceDataError(f"Invalid timestamp: {value!r}")
    # Ledger timestamps are naive UTC
    return stamp.tz_convert(None).to_pydatetime()


def _billing(row: Dict[str, Any]) -> BillingContact:
    return BillingContact(
        first_name=_text(row, "billing_first_name"),
        last_name=_text(row, "billing_last_name"),
        email=_text(row, "billing_email"),
        phone=_text(row, "billing_phone"),
    )


def build_item(row: Dict[str, Any], order: Order) -> BookedItem:
    """Convert one order_items row into a BookedItem of `order`."""
    attributes = _json(row.get("attributes"), {})
    if not isinstance(attributes, dict):
        raise SourceDataError(f"Item {row.get('item_id')} attributes are not a mapping")
    breakdown = _json(row.get("discount_breakdown"), None)
    return BookedItem(
        order_id=order.order_id,
        item_id=int(row["item_id"]),
        product_id=int(row["product_id"]),
        variation_id=int(_number(row, "variation_id")),
        name=_text(row, "name"),
        attributes=attributes,
        subtotal=_number(row, "subtotal"),
        total=_number(row, "total"),
        status=order.status,
        order_date=order.created_at,
        billing=order.billing,
        reimbursement=_number(row, "reimbursement"),
        discount_total=_optional_number(row, "discount_total"),
        discount_breakdown=breakdown,
    )


def build_order(row: Dict[str, Any], item_rows: Iterable[Dict[str, Any]]) -> Order:
    """
    Convert an orders row and its line item rows into an Order.

    Raises:
        SourceDataError: If any field is malformed
    """
    try:
        order = Order(
            order_id=int(row["order_id"]),
            status=_text(row, "status"),
            created_at=_timestamp(row.get("created_at")),
            billing=_billing(row),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise SourceDataError(f"Malformed order row {row.get('order_id')!r}: {e}") from e

    for entry in _json(row.get("discounts"), []):
        order.discounts.append(
            OrderDiscount(
                name=str(entry.get("name", "")),
                amount=float(entry.get("amount") or 0),
                type=str(entry.get("type") or "other"),
            )
        )
    order.coupon_codes = [str(code) for code in _json(row.get("coupon_codes"), [])]

    for item_row in item_rows:
        try:
            order.items.append(build_item(item_row, order))
        except (KeyError, TypeError, ValueError) as e:
            raise SourceDataError(f"Malformed item row {item_row.get('item_id')!r}: {e}") from e
    return order


def build_orders(
    orders_df: pd.DataFrame,
    items_df: pd.DataFrame,
    errors: Optional[List[str]] = None,
) -> List[Order]:
    """
    Assemble Orders from the orders and order_items DataFrames.

    Malformed orders are skipped; their messages go to `errors` when given.
    """
    validate_columns(orders_df, "orders")
    validate_columns(items_df, "order_items")

    items_by_order: Dict[int, List[Dict[str, Any]]] = {}
    if not items_df.empty:
        for item_row in items_df.to_dict("records"):
            items_by_order.setdefault(int(item_row["order_id"]), []).append(item_row)

    orders = []
    for row in orders_df.to_dict("records") if not orders_df.empty else []:
        try:
            orders.append(build_order(row, items_by_order.get(int(row["order_id"]), [])))
        except SourceDataError as e:
            logger.error(f"Skipping order {row.get('order_id')}: {e}")
            if errors is not None:
                errors.append(str(e))
    logger.info(f"Built {len(orders)} orders with {sum(len(o.items) for o in orders)} items")
    return orders


def build_catalog(products_df: pd.DataFrame, variations_df: pd.DataFrame) -> Catalog:
    """Assemble the Catalog from the products and product_variations DataFrames."""
    validate_columns(products_df, "products")
    validate_columns(variations_df, "product_variations")

    products = [
        Product(
            product_id=int(row["product_id"]),
            name=_text(row, "name"),
            attributes=_json(row.get("attributes"), {}),
            metadata=_json(row.get("metadata"), {}),
            status=_text(row, "status") or "publish",
        )
        for row in (products_df.to_dict("records") if not products_df.empty else [])
    ]
    variations = [
        ProductVariation(
            variation_id=int(row["variation_id"]),
            product_id=int(row["product_id"]),
            attributes=_json(row.get("attributes"), {}),
            metadata=_json(row.get("metadata"), {}),
            status=_text(row, "status") or "publish",
        )
        for row in (variations_df.to_dict("records") if not variations_df.empty else [])
    ]
    logger.info(f"Catalog has {len(products)} products and {len(variations)} variations")
    return Catalog(products, variations)


class CommerceSource(ABC):
    """Read access to orders and the catalog; write access to line item discount fields."""

    @abstractmethod
    def fetch_orders(
        self,
        statuses: Iterable[str],
        since: Optional[str] = None,
        limit: Optional[int] = None,
        unmigrated_only: bool = False,
    ) -> List[Order]:
        ...

    @abstractmethod
    def fetch_catalog(self) -> Catalog:
        ...

    @abstractmethod
    def write_item_discounts(self, allocations: List[DiscountAllocation]) -> None:
        ...


class SupabaseCommerceSource(CommerceSource):
    """Commerce data read from Supabase tables."""

    def __init__(self, client: Client = None):
        self.client = client or get_supabase_client()
        self.errors: List[str] = []

    def _items_for(self, order_ids: List[int]) -> pd.DataFrame:
        frames = []
        for start in range(0, len(order_ids), ORDER_ID_CHUNK_SIZE):
            chunk = order_ids[start:start + ORDER_ID_CHUNK_SIZE]
            frames.append(query_table_to_dataframe(self.client, "order_items", in_filters={"order_id": chunk}))
        frames = [frame for frame in frames if not frame.empty]
        if not frames:
            return pd.DataFrame(columns=REQUIRED_COLUMNS["order_items"])
        return pd.concat(frames, ignore_index=True)

    def fetch_orders(
        self,
        statuses: Iterable[str],
        since: Optional[str] = None,
        limit: Optional[int] = None,
        unmigrated_only: bool = False,
    ) -> List[Order]:
        """
        Fetch orders with their line items, oldest first.

        Args:
            statuses: Order statuses to include
            since: Minimum created_at (ISO date)
            limit: Maximum number of orders returned
            unmigrated_only: Only orders with a line item lacking a persisted discount

        Returns:
            List of Orders
        """
        statuses = list(statuses)
        logger.info(f"Extracting orders (statuses={statuses}, since={since})")
        orders: List[Order] = []
        pages = iter_table_pages(
            self.client,
            "orders",
            "order_id",
            in_filters={"status": statuses},
            since={"created_at": since} if since else None,
        )
        for orders_df in pages:
            validate_columns(orders_df, "orders")
            items_df = self._items_for([int(order_id) for order_id in orders_df["order_id"]])
            page = build_orders(orders_df, items_df, self.errors)
            if unmigrated_only:
                page = [order for order in page if order.items and not order.is_migrated]
            orders.extend(page)
            # Later pages are not read once enough orders qualify
            if limit and len(orders) >= limit:
                break

        if limit:
            orders = orders[:limit]
        logger.info(f"Extracted {len(orders)} orders")
        return orders

    def fetch_catalog(self) -> Catalog:
        logger.info("Extracting product catalog")
        products_df = query_table_to_dataframe(self.client, "products")
        variations_df = query_table_to_dataframe(self.client, "product_variations")
        return build_catalog(products_df, variations_df)

    def write_item_discounts(self, allocations: List[DiscountAllocation]) -> None:
        write_item_discounts(
            self.client,
            [
                {
                    "item_id": allocation.item_id,
                    "discount_total": allocation.total,
                    "discount_breakdown": allocation.breakdown(),
                }
                for allocation in allocations
            ],
        )
