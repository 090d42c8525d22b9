from datetime import date

import run_reconcile
from roster_reports.schema import new_record


def _booking(item_id: int, signature: str):
    return new_record(
        order_id=100 + item_id,
        order_item_id=item_id,
        product_id=10,
        variation_id=11,
        activity_type="Camp",
        start_date=date(2025, 6, 30),
        end_date=date(2025, 7, 4),
        event_signature=signature,
    )


def test_report_lists_active_events_by_default() -> None:
    args = run_reconcile.build_parser().parse_args(["report", "bookings"])
    assert args.status == "active"
    assert run_reconcile.REPORT_STATUSES[args.status] is False


def test_close_event_command(ledger, monkeypatch) -> None:
    monkeypatch.setattr(run_reconcile, "open_ledger", lambda: ledger)
    ledger.upsert(_booking(1, "a" * 32))
    ledger.upsert(_booking(2, "b" * 32))

    args = run_reconcile.build_parser().parse_args(["close-event", "a" * 32])
    args.func(args)
    assert [row.order_item_id for row in ledger.rows(completed=True)] == [1]

    args = run_reconcile.build_parser().parse_args(["close-event", "a" * 32, "--reopen"])
    args.func(args)
    assert ledger.count(completed=True) == 0
