import logging

from conftest import make_item, make_order

from roster_reports.discounts import (
    CAMP_SIBLING,
    CAMP_SIBLING_RATES,
    COUPON,
    COURSE_MULTI_CHILD,
    OTHER,
    SAME_SEASON,
    UNALLOCATED,
    PricedItem,
    allocate_order,
    allocation_for_item,
    attribute,
    attribute_group,
    discount_type_from_name,
    fallback_allocation,
    same_season_rate,
    tier_rate,
)
from roster_reports.models import OrderDiscount

CAMP = {"Activity Type": "Camp"}


def _totals(allocations, items):
    return [allocations[item.item_id].total for item in items]


def test_camp_sibling_tiers() -> None:
    items = [
        PricedItem(1, "lea", "camp", 100.0),
        PricedItem(2, "noah", "camp", 80.0),
        PricedItem(3, "mia", "camp", 60.0),
    ]
    pool = [OrderDiscount("Camp sibling discount", 31.0, CAMP_SIBLING)]

    allocations = attribute_group(items, pool)

    assert _totals(allocations, items) == [0.0, 16.0, 15.0]
    # Zero-amount lines are omitted
    assert allocations[1].lines == []
    assert allocations[2].lines[0].type == CAMP_SIBLING
    assert allocations[2].lines[0].applied_to == "noah"


def test_camp_sibling_ranks_by_price_not_checkout_order() -> None:
    items = [
        PricedItem(1, "lea", "camp", 60.0),
        PricedItem(2, "noah", "camp", 100.0),
        PricedItem(3, "mia", "camp", 80.0),
    ]
    allocations = attribute_group(items, [OrderDiscount("Camp sibling discount", 31.0, CAMP_SIBLING)])
    assert _totals(allocations, items) == [15.0, 0.0, 16.0]


def test_camp_sibling_ignores_courses_and_unassigned_items() -> None:
    items = [
        PricedItem(1, "lea", "camp", 100.0),
        PricedItem(2, "noah", "course", 200.0),
        PricedItem(3, None, "camp", 150.0),
        PricedItem(4, "mia", "camp", 80.0),
    ]
    allocations = attribute_group(items, [OrderDiscount("Camp sibling discount", 16.0, CAMP_SIBLING)])
    assert _totals(allocations, items) == [0.0, 0.0, 0.0, 16.0]


def test_camp_sibling_counts_each_player_once() -> None:
    items = [
        PricedItem(1, "anna", "camp", 100.0),
        PricedItem(2, "anna", "camp", 90.0),
        PricedItem(3, "ben", "camp", 80.0),
    ]
    allocations = attribute_group(items, [OrderDiscount("Camp sibling discount", 16.0, CAMP_SIBLING)])
    assert _totals(allocations, items) == [0.0, 0.0, 16.0]


def test_single_player_camps_get_no_sibling_discount() -> None:
    items = [PricedItem(1, "anna", "camp", 100.0), PricedItem(2, "anna", "camp", 90.0)]
    allocations = attribute_group(items, [OrderDiscount("Camp sibling discount", 18.0, CAMP_SIBLING)])
    assert _totals(allocations, items) == [0.0, 0.0]


def test_course_multi_child_tiers_per_player() -> None:
    items = [
        PricedItem(1, "lea", "course", 120.0),
        PricedItem(2, "lea", "course", 100.0),
        PricedItem(3, "lea", "course", 90.0),
        PricedItem(4, "noah", "course", 200.0),
    ]
    allocations = attribute_group(items, [OrderDiscount("Multi-child course discount", 65.0, COURSE_MULTI_CHILD)])
    assert _totals(allocations, items) == [12.0, 15.0, 18.0, 20.0]


def test_same_season_rate_by_item_count() -> None:
    items = [
        PricedItem(1, "lea", "course", 100.0),
        PricedItem(2, "lea", "camp", 50.0),
        PricedItem(3, "lea", "course", 200.0),
        PricedItem(4, "noah", "course", 100.0),
    ]
    allocations = attribute_group(items, [OrderDiscount("Same season discount", 35.0, SAME_SEASON)])
    assert _totals(allocations, items) == [10.0, 5.0, 20.0, 0.0]

    assert same_season_rate(1) == 0.0
    assert same_season_rate(2) == 0.05
    assert same_season_rate(4) == 0.15
    assert same_season_rate(9) == 0.15


def test_tier_rate_repeats_last_rate() -> None:
    assert tier_rate(CAMP_SIBLING_RATES, 0) == 0.0
    assert tier_rate(CAMP_SIBLING_RATES, 1) == 0.20
    assert tier_rate(CAMP_SIBLING_RATES, 7) == 0.25


def test_coupon_is_split_by_subtotal_share() -> None:
    items = [
        PricedItem(1, "lea", "camp", 100.0),
        PricedItem(2, "noah", "course", 50.0),
        PricedItem(3, None, "birthday", 50.0),
    ]
    allocations = attribute_group(items, [OrderDiscount("SUMMER30", 30.0, COUPON)])
    assert _totals(allocations, items) == [15.0, 7.5, 7.5]


def test_discount_type_is_read_from_name_when_untyped() -> None:
    items = [PricedItem(1, "lea", "camp", 100.0), PricedItem(2, "noah", "camp", 80.0)]
    allocation = attribute(items[1], items, [OrderDiscount("Camp Sibling Discount", 16.0)])

    assert allocation.total == 16.0
    assert allocation.lines[0].type == CAMP_SIBLING


def test_item_missing_from_group_is_added() -> None:
    item = PricedItem(2, "noah", "camp", 80.0)
    allocation = attribute(item, [PricedItem(1, "lea", "camp", 100.0)], [OrderDiscount("Sibling", 16.0, CAMP_SIBLING)])
    assert allocation.total == 16.0


def test_discount_type_from_name() -> None:
    assert discount_type_from_name("Camp Sibling Discount") == CAMP_SIBLING
    assert discount_type_from_name("Same Season Discount") == SAME_SEASON
    assert discount_type_from_name("Multi-Child Course Discount") == COURSE_MULTI_CHILD
    assert discount_type_from_name("Course Combo") == COURSE_MULTI_CHILD
    assert discount_type_from_name("Coupon: SUMMER10") == COUPON
    assert discount_type_from_name("Loyalty") == OTHER


def test_fallback_allocation_is_flagged(caplog) -> None:
    with caplog.at_level(logging.WARNING):
        allocation = fallback_allocation(5, 100.0, 80.0, "lea")

    assert allocation.low_confidence
    assert allocation.total == 20.0
    assert allocation.lines[0].type == UNALLOCATED
    assert "fallback" in caplog.text


def test_persisted_allocation_is_preferred() -> None:
    item = make_item(
        7,
        price=80.0,
        total=64.0,
        discount_total=16.0,
        discount_breakdown=[{"name": "Camp sibling discount", "type": CAMP_SIBLING, "amount": 16.0, "applied_to": "noah"}],
    )
    allocation = allocation_for_item(item)

    assert not allocation.low_confidence
    assert allocation.total == 16.0
    assert allocation.breakdown()[0]["type"] == CAMP_SIBLING


def test_allocate_order_attributes_the_discount_pool() -> None:
    order = make_order(
        1,
        [
            make_item(1, price=100.0, player="Lea Muster", attributes=CAMP),
            make_item(2, price=80.0, player="Noah Muster", attributes=CAMP),
            make_item(3, price=60.0, player="Mia Muster", attributes=CAMP),
        ],
        discounts=[OrderDiscount("Camp sibling discount", 31.0, CAMP_SIBLING)],
    )

    allocations = allocate_order(order, catalog=None)

    assert _totals(allocations, order.items) == [0.0, 16.0, 15.0]


def test_allocate_order_without_pool_uses_fallback() -> None:
    order = make_order(1, [make_item(1, price=100.0, total=90.0)])
    allocation = allocate_order(order)[1]

    assert allocation.low_confidence
    assert allocation.total == 10.0
