from datetime import date

import pytest
from conftest import CAMP_TERM, InMemoryCommerceSource, make_item, make_order

from roster_reports.discounts import CAMP_SIBLING
from roster_reports.exceptions import LedgerRebuildError
from roster_reports.ledger import SKIPPED
from roster_reports.models import Catalog, OrderDiscount, Product, ProductVariation
from roster_reports.reconciliation import (
    build_placeholder,
    build_roster_record,
    migrate_all_discounts,
    migrate_discount_batch,
    parse_attendee,
    publish_variation,
    rebuild_ledger,
    reconcile_orders,
    record_order,
    remove_product,
    sync_placeholders,
)
from roster_reports.signatures import generate_signature


def test_parse_attendee() -> None:
    assert parse_attendee("3 - Anna Muster") == ("Anna", "Muster")
    assert parse_attendee("12. Jean-Luc de la Tour") == ("Jean-Luc", "de la Tour")
    assert parse_attendee("Léa") == ("Léa", "Unknown")
    assert parse_attendee("") == ("Unknown", "Unknown")
    assert parse_attendee(None) == ("Unknown", "Unknown")


def test_build_roster_record_from_catalog(camp_catalog) -> None:
    item = make_item(1, attributes={"Discount Codes": "SIBLING"})
    order = make_order(1, [item])

    record = build_roster_record(item, order, camp_catalog)

    assert (record.first_name, record.last_name) == ("Anna", "Muster")
    assert record.age == "9"
    assert record.gender == "Female"
    assert record.parent_email == "maria@example.com"
    assert record.activity_type == "Camp"
    assert record.venue == "geneva-stadium"
    assert record.region == "geneva"
    assert record.season == "Summer-2025"
    assert record.start_date == date(2025, 6, 30)
    assert record.end_date == date(2025, 7, 4)
    assert record.event_dates == "2025-06-30 to 2025-07-04"
    assert record.date_confidence == "high"
    assert all(record.day_presence.values())
    assert record.discount_codes == "SIBLING"
    assert record.is_placeholder is False
    assert len(record.event_signature) == 32


def test_unresolved_dates_use_sentinel() -> None:
    item = make_item(1, product_id=99, variation_id=0, attributes={"Activity Type": "Camp"})
    record = build_roster_record(item, make_order(1, [item]))

    assert record.start_date == date(1970, 1, 1)
    assert record.event_dates == "N/A"
    assert record.date_confidence == "none"


def test_girls_only_bookings(camp_catalog) -> None:
    item = make_item(1, attributes={"Activity Type": "Camp, Girls' Only"})
    record = build_roster_record(item, make_order(1, [item]), camp_catalog)

    assert record.activity_type == "Girls Only"
    assert record.girls_only is True


def test_placeholder_lifecycle(ledger, camp_catalog) -> None:
    result = sync_placeholders(camp_catalog, ledger)
    assert result.created == 1

    placeholder = ledger.rows()[0]
    assert placeholder.is_placeholder
    assert placeholder.order_id == 0
    assert placeholder.start_date == date(2025, 6, 30)

    order = make_order(1, [make_item(1)])
    reconciled = reconcile_orders([order], camp_catalog, ledger)

    assert reconciled.inserted == 1
    assert reconciled.deleted_placeholders == 1
    assert ledger.count(placeholders=True) == 0
    assert ledger.count(placeholders=False) == 1
    assert ledger.get(1).event_signature == placeholder.event_signature

    # The booked event does not get its placeholder back
    assert sync_placeholders(camp_catalog, ledger).skipped == 1
    assert ledger.count() == 1


def test_booking_and_placeholder_share_signature(camp_catalog) -> None:
    variation = camp_catalog.variation(11)
    placeholder = build_placeholder(variation, camp_catalog.product(10))
    item = make_item(1, attributes={"Venue": "Geneva Stadium", "Season": "Summer 2025"})
    record = build_roster_record(item, make_order(1, [item]), camp_catalog)

    assert placeholder.event_signature == record.event_signature


def test_reconcile_twice_changes_nothing(ledger, camp_catalog) -> None:
    orders = [make_order(1, [make_item(1), make_item(2, player="2 - Noah Muster")])]
    reconcile_orders(orders, camp_catalog, ledger)
    before = [row.values() for row in ledger.rows()]

    second = reconcile_orders(orders, camp_catalog, ledger)

    assert second.inserted == 0
    assert second.unchanged == 2
    assert [row.values() for row in ledger.rows()] == before


def test_reconcile_skips_unreportable_statuses(ledger, camp_catalog) -> None:
    orders = [make_order(1, [make_item(1)]), make_order(2, [make_item(2)], status="cancelled")]
    result = reconcile_orders(orders, camp_catalog, ledger, statuses=["completed", "processing", "on-hold"])

    assert result.inserted == 1
    assert ledger.item_ids() == {1}


def test_reconcile_removes_obsolete_items(ledger, camp_catalog) -> None:
    reconcile_orders([make_order(1, [make_item(1), make_item(2)])], camp_catalog, ledger)

    result = reconcile_orders([make_order(1, [make_item(1)])], camp_catalog, ledger, valid_item_ids=[1])

    assert result.obsolete_deleted == 1
    assert ledger.item_ids() == {1}


def test_partial_batch_failure_is_counted(ledger, camp_catalog) -> None:
    broken = make_order(2, [make_item(2, price="not a price")])
    result = reconcile_orders([make_order(1, [make_item(1)]), broken], camp_catalog, ledger)

    assert result.inserted == 1
    assert result.failed == 1
    assert "Order 2" in result.errors[0]


def test_reconcile_attributes_sibling_discounts(ledger, camp_catalog) -> None:
    order = make_order(
        1,
        [make_item(1, price=100.0, player="Lea"), make_item(2, price=80.0, player="Noah"),
         make_item(3, price=60.0, player="Mia")],
        discounts=[OrderDiscount("Camp sibling discount", 31.0, CAMP_SIBLING)],
    )
    reconcile_orders([order], camp_catalog, ledger)

    assert [ledger.get(item_id).discount_amount for item_id in (1, 2, 3)] == [0.0, 16.0, 15.0]
    assert ledger.get(2).discount_breakdown[0]["type"] == CAMP_SIBLING


def test_record_order_skips_processed_items(ledger, camp_catalog) -> None:
    order = make_order(1, [make_item(1)])
    assert record_order(order, camp_catalog, ledger).inserted == 1

    again = record_order(order, camp_catalog, ledger)
    assert again.inserted == 0
    assert again.skipped == 1
    assert again.failed == 0


def test_publish_and_remove_product(ledger, camp_catalog) -> None:
    publish_variation(camp_catalog.variation(11), camp_catalog.product(10), ledger)
    assert ledger.count(placeholders=True) == 1

    assert remove_product(10, ledger) == 1
    assert ledger.count() == 0


def test_only_camps_courses_and_birthdays_get_placeholders(ledger) -> None:
    tournament = ProductVariation(variation_id=21, product_id=20, attributes={"pa_activity-type": "tournament"})
    assert build_placeholder(tournament) is None
    assert publish_variation(tournament, None, ledger) == SKIPPED

    birthday = ProductVariation(variation_id=22, product_id=20, attributes={"pa_activity-type": "anniversaire"})
    assert build_placeholder(birthday).activity_type == "Birthday"


def test_unpublished_variations_lose_their_placeholder(ledger, camp_catalog) -> None:
    sync_placeholders(camp_catalog, ledger)
    camp_catalog.variation(11).status = "private"

    result = sync_placeholders(camp_catalog, ledger)

    assert result.deleted == 1
    assert ledger.count() == 0


def test_rebuild_ledger_adds_placeholders_for_unbooked_events(ledger, camp_catalog) -> None:
    course_product = Product(product_id=30, name="Tuesday Football", attributes={"pa_activity-type": "course"})
    course = ProductVariation(variation_id=31, product_id=30, attributes={"pa_course-day": "tuesday"})
    catalog = Catalog(
        list(camp_catalog.products.values()) + [course_product],
        list(camp_catalog.variations.values()) + [course],
    )

    result = rebuild_ledger([make_order(1, [make_item(1), make_item(2)])], catalog, ledger)

    assert result.inserted == 2
    assert ledger.item_ids() == {1, 2}
    assert ledger.count(placeholders=True) == 1
    assert ledger.rows()[0].product_id == 30


def test_rebuild_failure_keeps_previous_ledger(ledger, camp_catalog) -> None:
    reconcile_orders([make_order(1, [make_item(1)])], camp_catalog, ledger)
    duplicated = [make_order(2, [make_item(5)]), make_order(3, [make_item(5, order_id=3)])]

    with pytest.raises(LedgerRebuildError):
        rebuild_ledger(duplicated, camp_catalog, ledger)

    assert ledger.item_ids() == {1}


def _sibling_orders():
    discounts = [OrderDiscount("Camp sibling discount", 31.0, CAMP_SIBLING)]
    return [
        make_order(
            order_id,
            [
                make_item(order_id * 10 + 1, order_id, 100.0, "Lea"),
                make_item(order_id * 10 + 2, order_id, 80.0, "Noah"),
                make_item(order_id * 10 + 3, order_id, 60.0, "Mia"),
            ],
            discounts=discounts,
        )
        for order_id in (1, 2, 3)
    ]


def test_migration_batch_is_resumable(camp_catalog) -> None:
    source = InMemoryCommerceSource(_sibling_orders(), camp_catalog)

    first = migrate_discount_batch(source, camp_catalog, batch_size=10)
    second = migrate_discount_batch(source, camp_catalog, batch_size=10)

    assert (first.processed, first.migrated, first.failed) == (3, 3, 0)
    assert (second.processed, second.migrated) == (0, 0)
    assert len(source.written_item_ids) == 9

    totals = [item.discount_total for item in source.orders[0].items]
    assert totals == [0.0, 16.0, 15.0]


def test_migration_runs_in_chunks(camp_catalog) -> None:
    source = InMemoryCommerceSource(_sibling_orders(), camp_catalog)

    assert migrate_discount_batch(source, camp_catalog, batch_size=2).migrated == 2
    assert migrate_discount_batch(source, camp_catalog, batch_size=2).migrated == 1
    assert migrate_discount_batch(source, camp_catalog, batch_size=2).migrated == 0


def test_migrate_all_discounts(camp_catalog) -> None:
    orders = _sibling_orders()
    orders.append(make_order(4, [make_item(41)], status="cancelled"))
    source = InMemoryCommerceSource(orders, camp_catalog)

    result = migrate_all_discounts(source, camp_catalog, batch_size=2)

    assert result.migrated == 3
    assert orders[3].items[0].discount_total is None


class FailingWriteSource(InMemoryCommerceSource):
    def __init__(self, orders, catalog, failing_order_id):
        super().__init__(orders, catalog)
        self.failing_order_id = failing_order_id

    def write_item_discounts(self, allocations) -> None:
        if any(allocation.item_id // 10 == self.failing_order_id for allocation in allocations):
            raise RuntimeError("write rejected")
        super().write_item_discounts(allocations)


def test_failed_order_does_not_stall_migration(camp_catalog) -> None:
    source = FailingWriteSource(_sibling_orders(), camp_catalog, failing_order_id=1)

    result = migrate_all_discounts(source, camp_catalog, batch_size=1)

    assert (result.migrated, result.failed) == (2, 1)
    assert result.failed_order_ids == [1]
    assert sorted(source.written_item_ids) == [21, 22, 23, 31, 32, 33]
    assert all(item.discount_total is None for item in source.orders[0].items)


def test_migration_batch_skips_listed_orders(camp_catalog) -> None:
    source = InMemoryCommerceSource(_sibling_orders(), camp_catalog)

    result = migrate_discount_batch(source, camp_catalog, batch_size=1, skip_order_ids=frozenset({1}))

    assert result.migrated == 1
    assert source.written_item_ids == [21, 22, 23]


def test_signature_matches_catalog_event(camp_catalog) -> None:
    variation = camp_catalog.variation(11)
    expected = generate_signature(
        {
            "activity_type": "Camp",
            "venue": "geneva-stadium",
            "age_group": "5-13y",
            "camp_terms": CAMP_TERM,
            "times": "0900-1600",
            "season": "summer-2025",
            "booking_type": "full-week",
            "canton_region": "geneva",
            "product_id": 10,
        }
    )
    assert build_placeholder(variation, camp_catalog.product(10)).event_signature == expected
