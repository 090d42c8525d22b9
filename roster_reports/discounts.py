"""
Discount attribution across co-booked items.

Order-level discounts are allocated to individual items of the same
checkout (the co-booking group). Tiered discounts depend on an item's
position among its peers, so they are always computed over the whole group:

- camp sibling: players of the group ranked by their most expensive camp, 0% / 20% / 25%+
- course multi-child: each player's course items ranked by price, 10% / 15% / 20%+
- same season: a player's N items (any activity), 5% (N=2) / 10% (N=3) / 15% (N>=4)
- coupon and anything else: split by each item's share of the group subtotal

Rates are business constants and are not configurable.
"""

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Sequence

from roster_reports.attributes import resolve, sources_for
from roster_reports.classification import classify_item, product_type
from roster_reports.models import (
    BookedItem,
    Catalog,
    DiscountAllocation,
    DiscountLine,
    Order,
    OrderDiscount,
)

logger = logging.getLogger(__name__)

CAMP_SIBLING = "camp_sibling"
COURSE_MULTI_CHILD = "course_multi_child"
SAME_SEASON = "course_same_season"
COUPON = "coupon"
OTHER = "other"
UNALLOCATED = "unallocated"

# Rate by position after sorting by price descending; the last rate repeats
CAMP_SIBLING_RATES = (0.0, 0.20, 0.25)
COURSE_MULTI_CHILD_RATES = (0.10, 0.15, 0.20)
# Rate by number of items booked for the same player; 4 covers 4+
SAME_SEASON_RATES = {2: 0.05, 3: 0.10, 4: 0.15}

TIERED_TYPES = frozenset({CAMP_SIBLING, COURSE_MULTI_CHILD, SAME_SEASON})


@dataclass
class PricedItem:
    """A booked item reduced to what discount tiers depend on."""

    item_id: int
    player: Optional[str]
    product_type: str
    price: float


def priced_item(
    item: BookedItem,
    catalog: Optional[Catalog] = None,
    girls_only_ids: FrozenSet[int] = frozenset(),
) -> PricedItem:
    sources = sources_for(item, catalog)
    activity = classify_item(item, catalog, girls_only_ids)
    family = product_type(activity, resolve("camp_terms", sources), resolve("course_day", sources))
    return PricedItem(
        item_id=item.item_id,
        player=item.player_key,
        product_type=family,
        price=float(item.subtotal or 0.0),
    )


def discount_type_from_name(name: str) -> str:
    """Classify an order-level discount by its display name."""
    lowered = (name or "").lower()
    if "sibling" in lowered or ("camp" in lowered and "combo" in lowered):
        return CAMP_SIBLING
    if "same season" in lowered or "same-season" in lowered:
        return SAME_SEASON
    if "multi" in lowered and ("child" in lowered or "course" in lowered):
        return COURSE_MULTI_CHILD
    if "course" in lowered and "combo" in lowered:
        return COURSE_MULTI_CHILD
    if "coupon" in lowered:
        return COUPON
    return OTHER


def tier_rate(rates: Sequence[float], position: int) -> float:
    return rates[min(position, len(rates) - 1)]


def same_season_rate(item_count: int) -> float:
    if item_count < 2:
        return 0.0
    return SAME_SEASON_RATES[min(item_count, max(SAME_SEASON_RATES))]


def _position(item: PricedItem, ranked: List[PricedItem]) -> Optional[int]:
    for index, candidate in enumerate(ranked):
        if candidate.item_id == item.item_id:
            return index
    return None


def _ranked_by_price(items: List[PricedItem]) -> List[PricedItem]:
    # Stable: equal prices keep checkout order
    return sorted(items, key=lambda g: -g.price)


def camp_sibling_amount(item: PricedItem, group: Sequence[PricedItem]) -> float:
    if item.product_type != "camp" or item.player is None:
        return 0.0
    camps = [g for g in group if g.product_type == "camp" and g.player is not None]
    # One position per player, held by that player's most expensive camp
    representatives: Dict[str, PricedItem] = {}
    for candidate in _ranked_by_price(camps):
        representatives.setdefault(candidate.player, candidate)
    position = _position(item, list(representatives.values()))
    if position is None:
        return 0.0
    return item.price * tier_rate(CAMP_SIBLING_RATES, position)


def course_multi_child_amount(item: PricedItem, group: Sequence[PricedItem]) -> float:
    if item.product_type != "course" or item.player is None:
        return 0.0
    player_courses = [g for g in group if g.product_type == "course" and g.player == item.player]
    position = _position(item, _ranked_by_price(player_courses))
    if position is None:
        return 0.0
    return item.price * tier_rate(COURSE_MULTI_CHILD_RATES, position)


def same_season_amount(item: PricedItem, group: Sequence[PricedItem]) -> float:
    if item.player is None:
        return 0.0
    player_items = [g for g in group if g.player == item.player]
    return item.price * same_season_rate(len(player_items))


def proportional_amount(item: PricedItem, group: Sequence[PricedItem], discount: OrderDiscount) -> float:
    group_subtotal = sum(g.price for g in group)
    if group_subtotal <= 0:
        return 0.0
    return (item.price / group_subtotal) * discount.amount


def attribute(
    item: PricedItem,
    co_booked_items: Sequence[PricedItem],
    discount_pool: Sequence[OrderDiscount],
) -> DiscountAllocation:
    """
    Compute one item's share of the order-level discounts.

    Tiered discount types are applied only when the pool holds a discount of
    that type; everything else is split proportionally. Zero amounts are
    omitted.

    Args:
        item: The item to attribute
        co_booked_items: All items of the same checkout (may include `item`)
        discount_pool: Order-level discounts granted at checkout

    Returns:
        DiscountAllocation for the item
    """
    group = list(co_booked_items)
    if all(g.item_id != item.item_id for g in group):
        group.append(item)

    allocation = DiscountAllocation(item_id=item.item_id)
    for discount in discount_pool:
        discount_type = discount.type
        if not discount_type or discount_type == OTHER:
            discount_type = discount_type_from_name(discount.name)
        if discount_type == CAMP_SIBLING:
            amount = camp_sibling_amount(item, group)
        elif discount_type == COURSE_MULTI_CHILD:
            amount = course_multi_child_amount(item, group)
        elif discount_type == SAME_SEASON:
            amount = same_season_amount(item, group)
        else:
            amount = proportional_amount(item, group, discount)

        amount = round(amount, 2)
        if amount > 0:
            allocation.lines.append(
                DiscountLine(name=discount.name, type=discount_type, amount=amount, applied_to=item.player)
            )
    return allocation


def attribute_group(
    items: Sequence[PricedItem],
    discount_pool: Sequence[OrderDiscount],
) -> Dict[int, DiscountAllocation]:
    """Attribute every item of a co-booking group; keyed by item id."""
    return {item.item_id: attribute(item, items, discount_pool) for item in items}


def fallback_allocation(
    item_id: int,
    base_price: float,
    final_price: float,
    player: Optional[str] = None,
) -> DiscountAllocation:
    """
    Approximate a historical item's discount as base price minus final price.

    Used only when no allocation was ever persisted for the item; the result
    is flagged low confidence.
    """
    allocation = DiscountAllocation(item_id=item_id, low_confidence=True)
    amount = round(float(base_price or 0) - float(final_price or 0), 2)
    if amount > 0:
        logger.warning(
            f"No persisted discount allocation for item {item_id}; using base-final fallback of {amount:.2f}"
        )
        allocation.lines.append(
            DiscountLine(name="Unallocated discount", type=UNALLOCATED, amount=amount, applied_to=player)
        )
    return allocation


def allocation_from_breakdown(item_id: int, breakdown: Optional[List[dict]]) -> DiscountAllocation:
    """Rebuild an allocation from the breakdown stored on the line item."""
    allocation = DiscountAllocation(item_id=item_id)
    for entry in breakdown or []:
        amount = round(float(entry.get("amount") or 0), 2)
        if amount <= 0:
            continue
        allocation.lines.append(
            DiscountLine(
                name=str(entry.get("name", "")),
                type=str(entry.get("type") or OTHER),
                amount=amount,
                applied_to=entry.get("applied_to"),
            )
        )
    return allocation


def allocation_for_item(item: BookedItem) -> DiscountAllocation:
    """Persisted allocation when present, else the low-confidence fallback."""
    if item.has_persisted_discount:
        allocation = allocation_from_breakdown(item.item_id, item.discount_breakdown)
        if not allocation.lines and item.discount_total:
            allocation.lines.append(
                DiscountLine(name="Discount", type=OTHER, amount=round(float(item.discount_total), 2),
                             applied_to=item.player_key)
            )
        return allocation
    return fallback_allocation(item.item_id, item.subtotal, item.total, item.player_key)


def allocate_order(
    order: Order,
    catalog: Optional[Catalog] = None,
    girls_only_ids: FrozenSet[int] = frozenset(),
) -> Dict[int, DiscountAllocation]:
    """
    Discount allocation of every item of an order, keyed by item id.

    Persisted allocations win; otherwise the order's discount pool is
    attributed over the whole order; items of an order with no discount
    pool fall back to base minus final price.
    """
    attributed: Dict[int, DiscountAllocation] = {}
    if order.discounts:
        priced = [priced_item(item, catalog, girls_only_ids) for item in order.items]
        attributed = attribute_group(priced, order.discounts)

    allocations = {}
    for item in order.items:
        if item.has_persisted_discount:
            allocations[item.item_id] = allocation_for_item(item)
        elif item.item_id in attributed:
            allocations[item.item_id] = attributed[item.item_id]
        else:
            allocations[item.item_id] = fallback_allocation(item.item_id, item.subtotal, item.total, item.player_key)
    return allocations
