import logging
from datetime import date, datetime

from roster_reports.event_dates import parse_explicit_date, parse_term, resolve_dates, season_year

TERM = "summer-week-1-june-30-july-4-5-days"


def test_parse_term_span_across_months() -> None:
    assert parse_term(TERM, 2025) == (date(2025, 6, 30), date(2025, 7, 4))


def test_parse_term_single_month() -> None:
    assert parse_term("summer-week-2-july-7-11-5-days", 2025) == (date(2025, 7, 7), date(2025, 7, 11))


def test_parse_term_tolerates_display_form() -> None:
    assert parse_term("Summer Week 2 July 7 11 5 Days", 2025) == (date(2025, 7, 7), date(2025, 7, 11))


def test_parse_term_translated_months() -> None:
    assert parse_term("ete-week-1-juillet-7-11-5-days", 2025) == (date(2025, 7, 7), date(2025, 7, 11))


def test_parse_term_cross_year_rolls_end_forward() -> None:
    assert parse_term("winter-week-1-december-29-january-2-5-days", 2025) == (date(2025, 12, 29), date(2026, 1, 2))


def test_parse_term_rejects_invalid_and_garbage() -> None:
    assert parse_term("summer-week-1-february-30-march-3-5-days", 2025) is None
    assert parse_term("full-week", 2025) is None
    assert parse_term("", 2025) is None
    assert parse_term(None, 2025) is None


def test_explicit_dates_win_over_term() -> None:
    resolution = resolve_dates(TERM, "Summer 2025", "07/14/2025", "07/18/2025")

    assert (resolution.start, resolution.end) == (date(2025, 7, 14), date(2025, 7, 18))
    assert resolution.strategy == "explicit"
    assert resolution.confidence == "high"


def test_explicit_dates_out_of_order_are_ignored() -> None:
    resolution = resolve_dates(TERM, "Summer 2025", "2025-07-18", "2025-07-14")
    assert resolution.strategy == "term"
    assert resolution.start == date(2025, 6, 30)


def test_year_from_season_hint_then_order_then_today() -> None:
    assert resolve_dates(TERM, "Summer 2024").start == date(2024, 6, 30)
    assert resolve_dates(TERM, "", order_date=datetime(2023, 2, 1)).start == date(2023, 6, 30)
    assert resolve_dates(TERM, None, today=date(2022, 5, 5)).start == date(2022, 6, 30)


def test_metadata_then_product_term() -> None:
    metadata = [None, {"_course_start_date": "2025-09-01", "_course_end_date": "2025-12-15"}]
    resolution = resolve_dates("", "Autumn 2025", metadata_sources=metadata, product_term=TERM)
    assert resolution.strategy == "metadata"
    assert resolution.start == date(2025, 9, 1)

    resolution = resolve_dates("", "Summer 2025", product_term=TERM)
    assert resolution.strategy == "product_term"
    assert resolution.end == date(2025, 7, 4)


def test_item_term_wins_over_metadata() -> None:
    metadata = [{"_course_start_date": "2025-09-01", "_course_end_date": "2025-12-15"}]
    resolution = resolve_dates(TERM, "Summer 2025", metadata_sources=metadata)
    assert resolution.strategy == "term"
    assert resolution.start == date(2025, 6, 30)


def test_weekly_pattern_inference_is_low_confidence(caplog) -> None:
    with caplog.at_level(logging.WARNING):
        resolution = resolve_dates("", "Summer 2025", weekly_pattern="Monday, Tuesday")

    assert resolution.start == date(2025, 1, 1)
    assert resolution.end == date(2025, 1, 1)
    assert resolution.confidence == "low"
    assert resolution.strategy == "inferred"
    assert "low confidence" in caplog.text


def test_inference_needs_a_season_year() -> None:
    resolution = resolve_dates("", "Summer", weekly_pattern="Monday")
    assert not resolution.resolved


def test_unresolved_dates() -> None:
    resolution = resolve_dates("not a term", "Summer 2025")

    assert not resolution.resolved
    assert resolution.label == "N/A"
    assert resolution.confidence == "none"


def test_explicit_date_formats() -> None:
    assert parse_explicit_date("2025-06-24") == date(2025, 6, 24)
    assert parse_explicit_date("24 June 2025") == date(2025, 6, 24)
    assert parse_explicit_date("24.06.2025") == date(2025, 6, 24)
    assert parse_explicit_date("06/24/2025") == date(2025, 6, 24)
    assert parse_explicit_date("24/06/2025") == date(2025, 6, 24)
    assert parse_explicit_date("soon") is None


def test_season_year() -> None:
    assert season_year("Summer 2025") == 2025
    assert season_year("", "summer-2024") == 2024
    assert season_year("Summer") is None
