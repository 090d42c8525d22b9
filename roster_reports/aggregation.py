"""
Aggregation of roster rows into reports.

Camp reports group rows by event date range, then by (region, venue, camp
type), and count per-weekday presence. Course reports count bookings per
(region, course name, course day). The booking report is a flat listing with
financial totals.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from roster_reports.classification import camp_type, is_full_week, product_type
from roster_reports.event_dates import season_year
from roster_reports.models import SENTINEL_DATE, WEEKDAYS, CourseCell, ReportCell
from roster_reports.schema import ROSTER_FIELDS, RosterRecord

logger = logging.getLogger(__name__)

ALL_CAMP_TYPES = "all"
FEMALE_MARKERS = frozenset({"female", "f", "girl", "fille", "mädchen", "femme", "weiblich"})


@dataclass
class DateRangeGroup:
    key: str
    start: date
    end: date
    cells: List[ReportCell] = field(default_factory=list)


@dataclass
class CampReport:
    groups: List[DateRangeGroup] = field(default_factory=list)
    totals: Dict[str, ReportCell] = field(default_factory=dict)
    excluded_unresolved: int = 0
    excluded_buyclub: int = 0


@dataclass
class CourseReport:
    cells: List[CourseCell] = field(default_factory=list)
    totals_by_region: Dict[str, CourseCell] = field(default_factory=dict)
    total_bookings: int = 0
    total_girls_free: int = 0
    excluded_buyclub: int = 0


@dataclass
class BookingReport:
    rows: pd.DataFrame
    totals: Dict[str, float] = field(default_factory=dict)
    discount_breakdown: Dict[str, float] = field(default_factory=dict)


def records_to_dataframe(records: Iterable[RosterRecord]) -> pd.DataFrame:
    """One DataFrame row per roster record, with every ledger column."""
    columns = ["id"] + list(ROSTER_FIELDS) + ["event_completed", "updated_at"]
    return pd.DataFrame([record.as_dict() for record in records], columns=columns)


def date_range_key(start: date, end: date) -> str:
    """
    Human-readable date range.

    "June 24, 2025", "June 24 – June 28, 2025" or, across a year boundary,
    "December 29, 2025 – January 2, 2026".
    """
    if start == end:
        return f"{start:%B} {start.day}, {start.year}"
    if start.year == end.year:
        return f"{start:%B} {start.day} – {end:%B} {end.day}, {end.year}"
    return f"{start:%B} {start.day}, {start.year} – {end:%B} {end.day}, {end.year}"


def _as_date(value) -> Optional[date]:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return pd.to_datetime(value).date()


def _family(row: pd.Series) -> str:
    return product_type(row["activity_type"], row["camp_terms"], row["course_day"])


def _matches_season(row: pd.Series, season_type: Optional[str], year: Optional[int]) -> bool:
    # The season label decides; the event date's year is used only without a label
    season = str(row["season"] or "").strip()
    if season:
        if season_type and season_type.lower() not in season.lower():
            return False
        if year is not None:
            label_year = season_year(season)
            if label_year is not None:
                return label_year == year
            start = _as_date(row["start_date"])
            return start is not None and start != SENTINEL_DATE and start.year == year
        return True
    if year is not None:
        start = _as_date(row["start_date"])
        return start is not None and start != SENTINEL_DATE and start.year == year
    return True


def filter_rows(
    df: pd.DataFrame,
    activity_type: Optional[str] = None,
    season_type: Optional[str] = None,
    year: Optional[int] = None,
    region: Optional[str] = None,
) -> pd.DataFrame:
    """
    Filter ledger rows by activity family, season/year and region.

    Args:
        df: Ledger rows (records_to_dataframe)
        activity_type: Product family ("camp", "course", ...)
        season_type: Season word matched against the season label ("Summer")
        year: Season year
        region: Canton / region, case-insensitive

    Returns:
        Filtered copy of df
    """
    if df.empty:
        return df.copy()
    mask = pd.Series(True, index=df.index)
    if activity_type:
        mask &= df.apply(_family, axis=1) == activity_type.lower()
    if season_type or year is not None:
        mask &= df.apply(_matches_season, axis=1, season_type=season_type, year=year)
    if region:
        mask &= df["region"].fillna("").str.lower() == region.lower()
    return df[mask].copy()


def _buyclub_mask(df: pd.DataFrame) -> pd.Series:
    # Club members pay through their membership: a priced item with a zero total
    real = ~df["is_placeholder"].astype(bool)
    return real & (df["base_price"].astype(float) > 0) & (df["final_price"].astype(float) == 0)


def _resolved_mask(df: pd.DataFrame, include_inferred: bool) -> pd.Series:
    starts = df["start_date"].map(_as_date)
    mask = starts.notna() & (starts != SENTINEL_DATE)
    if not include_inferred:
        mask &= df["date_confidence"] != "low"
    return mask


def _cell_from_counts(key: str, region: str, venue: str, category: str, counts: Dict[str, int]) -> ReportCell:
    cell = ReportCell(date_range_key=key, region=region, venue=venue, category=category)
    cell.full_week_count = int(counts["full_week"])
    cell.per_weekday_count = {day: int(counts["full_week"] + counts[f"single_{day}"]) for day in WEEKDAYS}
    cell.min = min(cell.per_weekday_count.values())
    cell.max = max(cell.per_weekday_count.values())
    cell.unique_record_count = int(counts["unique_records"])
    return cell


def aggregate_camps(
    df: pd.DataFrame,
    season_type: Optional[str] = None,
    year: Optional[int] = None,
    region: Optional[str] = None,
    include_inferred: bool = True,
) -> CampReport:
    """
    Build the camp attendance report.

    Rows with unresolved dates cannot be placed in a date bucket and are
    excluded; BuyClub bookings are excluded and counted separately.
    Placeholders produce cells with zero counts.

    Args:
        df: Ledger rows (records_to_dataframe)
        season_type: Season word, e.g. "Summer"
        year: Season year
        region: Optional region filter
        include_inferred: Keep rows whose date was inferred from the season year

    Returns:
        CampReport with chronological date-range groups and totals
    """
    report = CampReport()
    rows = filter_rows(df, "camp", season_type, year, region)
    logger.info(f"Aggregating {len(rows)} camp rows")
    if rows.empty:
        report.totals = _camp_totals([])
        return report

    resolved = _resolved_mask(rows, include_inferred)
    report.excluded_unresolved = int((~resolved & ~rows["is_placeholder"].astype(bool)).sum())
    rows = rows[resolved]
    buyclub = _buyclub_mask(rows)
    report.excluded_buyclub = int(buyclub.sum())
    rows = rows[~buyclub].copy()
    if rows.empty:
        report.totals = _camp_totals([])
        return report

    rows["start"] = rows["start_date"].map(_as_date)
    rows["end"] = rows["end_date"].map(_as_date)
    rows["category"] = rows["age_group"].map(camp_type)
    rows["region"] = rows["region"].fillna("")
    rows["venue"] = rows["venue"].fillna("")
    rows["unique_records"] = ~rows["is_placeholder"].astype(bool)
    rows["full_week"] = rows["booking_type"].map(is_full_week) & rows["unique_records"]
    for day in WEEKDAYS:
        present = rows["day_presence"].map(lambda presence, day=day: bool((presence or {}).get(day)))
        rows[f"single_{day}"] = present & ~rows["full_week"] & rows["unique_records"]

    count_columns = ["full_week", "unique_records"] + [f"single_{day}" for day in WEEKDAYS]
    grouped = (
        rows.groupby(["start", "end", "region", "venue", "category"], as_index=False, sort=True)[count_columns]
        .sum()
    )

    cells = []
    for (start, end), frame in grouped.groupby(["start", "end"], sort=True):
        group = DateRangeGroup(key=date_range_key(start, end), start=start, end=end)
        for record in frame.to_dict("records"):
            group.cells.append(
                _cell_from_counts(group.key, record["region"], record["venue"], record["category"], record)
            )
        cells.extend(group.cells)
        report.groups.append(group)

    report.totals = _camp_totals(cells)
    logger.info(
        f"Camp report: {len(report.groups)} date ranges, {len(cells)} cells, "
        f"{report.totals[ALL_CAMP_TYPES].unique_record_count} unique records, "
        f"{report.excluded_unresolved} unresolved and {report.excluded_buyclub} BuyClub excluded"
    )
    return report


def _camp_totals(cells: List[ReportCell]) -> Dict[str, ReportCell]:
    """Totals per camp type and overall; unique records, never weekday sums, count attendees."""
    totals = {}
    for category in ("Full Day", "Mini - Half Day", ALL_CAMP_TYPES):
        selected = [c for c in cells if category == ALL_CAMP_TYPES or c.category == category]
        total = ReportCell(date_range_key="Total", region="", venue="", category=category)
        total.full_week_count = sum(c.full_week_count for c in selected)
        total.per_weekday_count = {day: sum(c.per_weekday_count[day] for c in selected) for day in WEEKDAYS}
        total.min = min(total.per_weekday_count.values())
        total.max = max(total.per_weekday_count.values())
        total.unique_record_count = sum(c.unique_record_count for c in selected)
        totals[category] = total
    return totals


def _is_girls_free(codes: str, gender: str) -> bool:
    normalized = (codes or "").lower().replace("-", "").replace("_", "").replace(" ", "")
    return "girlsfree" in normalized and (gender or "").strip().lower() in FEMALE_MARKERS


def aggregate_courses(
    df: pd.DataFrame,
    season_type: Optional[str] = None,
    year: Optional[int] = None,
    region: Optional[str] = None,
) -> CourseReport:
    """
    Build the course report: bookings per (region, course name, course day).

    Courses have no weekday fan-out; every booking counts once.
    """
    report = CourseReport()
    rows = filter_rows(df, "course", season_type, year, region)
    if rows.empty:
        return report

    buyclub = _buyclub_mask(rows)
    report.excluded_buyclub = int(buyclub.sum())
    rows = rows[~buyclub].copy()
    if rows.empty:
        return report

    rows["region"] = rows["region"].fillna("")
    rows["course_day"] = rows["course_day"].fillna("")
    rows["bookings"] = ~rows["is_placeholder"].astype(bool)
    rows["girls_free"] = rows["bookings"] & rows.apply(
        lambda row: _is_girls_free(row["discount_codes"], row["gender"]), axis=1
    )

    grouped = (
        rows.groupby(["region", "product_name", "course_day"], as_index=False, sort=True)[["bookings", "girls_free"]]
        .sum()
    )
    for record in grouped.to_dict("records"):
        cell = CourseCell(
            region=record["region"],
            course_name=record["product_name"],
            course_day=record["course_day"],
            bookings=int(record["bookings"]),
            girls_free=int(record["girls_free"]),
        )
        report.cells.append(cell)
        total = report.totals_by_region.setdefault(
            cell.region, CourseCell(region=cell.region, course_name="Total", course_day="")
        )
        total.bookings += cell.bookings
        total.girls_free += cell.girls_free

    report.total_bookings = sum(cell.bookings for cell in report.cells)
    report.total_girls_free = sum(cell.girls_free for cell in report.cells)
    logger.info(f"Course report: {len(report.cells)} courses, {report.total_bookings} bookings")
    return report


def aggregate(
    records: Iterable[RosterRecord],
    activity_type: str = "camp",
    season_type: Optional[str] = None,
    year: Optional[int] = None,
    region: Optional[str] = None,
):
    """Aggregate ledger rows into a camp or course report."""
    df = records_to_dataframe(records)
    if activity_type.lower() == "course":
        return aggregate_courses(df, season_type, year, region)
    return aggregate_camps(df, season_type, year, region)


def booking_report(
    df: pd.DataFrame,
    start: Optional[date] = None,
    end: Optional[date] = None,
    year: Optional[int] = None,
    region: Optional[str] = None,
) -> BookingReport:
    """
    Flat booking and discount listing with financial totals.

    Rows are filtered by registration date (inclusive range, or year) and
    region. Unresolved event dates are listed as "N/A".

    Returns:
        BookingReport with the listing, totals and discount amounts per type
    """
    rows = df[~df["is_placeholder"].astype(bool)].copy() if not df.empty else df.copy()
    if not rows.empty:
        registered = pd.to_datetime(rows["registration_timestamp"]).dt.date
        mask = pd.Series(True, index=rows.index)
        if start is not None:
            mask &= registered >= start
        if end is not None:
            mask &= registered <= end
        if year is not None:
            mask &= registered.map(lambda d: d is not None and not pd.isna(d) and d.year == year)
        if region:
            mask &= rows["region"].fillna("").str.lower() == region.lower()
        rows = rows[mask].copy()
        rows.loc[rows["start_date"].map(_as_date) == SENTINEL_DATE, "event_dates"] = "N/A"
        rows = rows.sort_values(["registration_timestamp", "order_id", "order_item_id"])

    totals = {
        "bookings": int(len(rows)),
        "base_price": round(float(rows["base_price"].sum()) if not rows.empty else 0.0, 2),
        "discount_amount": round(float(rows["discount_amount"].sum()) if not rows.empty else 0.0, 2),
        "final_price": round(float(rows["final_price"].sum()) if not rows.empty else 0.0, 2),
        "reimbursement": round(float(rows["reimbursement"].sum()) if not rows.empty else 0.0, 2),
    }

    breakdown: Dict[str, float] = {}
    if not rows.empty:
        lines = rows["discount_breakdown"].explode().dropna()
        for line in lines:
            breakdown[line.get("type", "other")] = breakdown.get(line.get("type", "other"), 0.0) + float(
                line.get("amount") or 0
            )
    breakdown = {name: round(amount, 2) for name, amount in sorted(breakdown.items())}

    logger.info(f"Booking report: {totals['bookings']} bookings, {totals['discount_amount']:.2f} discounted")
    return BookingReport(rows=rows, totals=totals, discount_breakdown=breakdown)
