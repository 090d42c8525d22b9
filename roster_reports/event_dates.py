"""
Event date resolution.

Camp terms encode their week as a slug:

    <season>-week-<n>-<month>-<day>-<month>-<day>-<n>-days   (span across months)
    <season>-week-<n>-<month>-<day>-<day>-<n>-days           (single month)

e.g. "summer-week-2-july-1-5-5-days". The year is not part of the term; it
comes from the season label ("Summer 2025"), then the order date, then the
current year.

Strategies are tried in order and the first success wins:
1. explicit start/end fields
2. the item's own term string
3. stored date metadata of the variation/product
4. the term string re-derived from the variation/product
5. inference from a weekly booking pattern (January 1 of the season year,
   low confidence)
"""

import logging
import re
from datetime import date, datetime
from typing import Iterable, Mapping, Optional, Tuple

from roster_reports.attributes import clean_value, resolve
from roster_reports.models import UNRESOLVED, DateResolution

logger = logging.getLogger(__name__)

MONTHS = {
    "january": 1, "jan": 1, "janvier": 1, "januar": 1,
    "february": 2, "feb": 2, "fevrier": 2, "février": 2, "februar": 2,
    "march": 3, "mar": 3, "mars": 3, "marz": 3, "märz": 3,
    "april": 4, "apr": 4, "avril": 4,
    "may": 5, "mai": 5,
    "june": 6, "jun": 6, "juin": 6, "juni": 6,
    "july": 7, "jul": 7, "juillet": 7, "juli": 7,
    "august": 8, "aug": 8, "aout": 8, "août": 8,
    "september": 9, "sep": 9, "sept": 9, "septembre": 9,
    "october": 10, "oct": 10, "octobre": 10, "oktober": 10,
    "november": 11, "nov": 11, "novembre": 11,
    "december": 12, "dec": 12, "decembre": 12, "décembre": 12, "dezember": 12,
}

_WORD = r"[^\W\d_]+"

TERM_SPAN_PATTERN = re.compile(
    rf"(?P<season>{_WORD})-week-\d+-(?P<start_month>{_WORD})-(?P<start_day>\d{{1,2}})"
    rf"-(?P<end_month>{_WORD})-(?P<end_day>\d{{1,2}})-\d+-days"
)
TERM_SINGLE_MONTH_PATTERN = re.compile(
    rf"(?P<season>{_WORD})-week-\d+-(?P<month>{_WORD})-(?P<start_day>\d{{1,2}})"
    rf"-(?P<end_day>\d{{1,2}})-\d+-days"
)

YEAR_PATTERN = re.compile(r"(?<!\d)((?:19|20)\d{2})(?!\d)")

EXPLICIT_DATE_FORMATS = ("%m/%d/%Y", "%d/%m/%Y", "%Y-%m-%d", "%d.%m.%Y", "%d %B %Y", "%B %d, %Y")


def season_year(*texts: Optional[str]) -> Optional[int]:
    """Return the first 4-digit year found in the given free-text values."""
    for text in texts:
        match = YEAR_PATTERN.search(clean_value(text))
        if match:
            return int(match.group(1))
    return None


def parse_explicit_date(value) -> Optional[date]:
    """Parse a single explicit date field in any of the recognized formats."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = clean_value(value)
    if not text:
        return None
    for fmt in EXPLICIT_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _slug(term: str) -> str:
    return re.sub(r"[^\w]+", "-", clean_value(term).lower()).strip("-")


def _month(name: str) -> Optional[int]:
    return MONTHS.get(name.lower())


def _build_date(year: int, month: Optional[int], day: str) -> Optional[date]:
    if month is None:
        return None
    try:
        return date(year, month, int(day))
    except ValueError:
        return None


def parse_term(term: Optional[str], year: int) -> Optional[Tuple[date, date]]:
    """
    Parse a camp term slug into (start, end) dates for the given year.

    A span whose end precedes its start (December into January) rolls the
    end date into the following year.

    Returns:
        (start, end) tuple, or None if the term does not match either layout
    """
    slug = _slug(term or "")
    if not slug:
        return None

    match = TERM_SPAN_PATTERN.search(slug)
    if match:
        start = _build_date(year, _month(match.group("start_month")), match.group("start_day"))
        end = _build_date(year, _month(match.group("end_month")), match.group("end_day"))
    else:
        match = TERM_SINGLE_MONTH_PATTERN.search(slug)
        if not match:
            return None
        month = _month(match.group("month"))
        start = _build_date(year, month, match.group("start_day"))
        end = _build_date(year, month, match.group("end_day"))

    if start is None or end is None:
        logger.warning(f"Camp term '{term}' matched but holds an invalid date for {year}")
        return None
    if end < start:
        end = _build_date(year + 1, end.month, str(end.day))
        if end is None:
            return None
    return start, end


def _explicit_pair(start_value, end_value) -> Optional[Tuple[date, date]]:
    start = parse_explicit_date(start_value)
    end = parse_explicit_date(end_value)
    if start is None or end is None:
        return None
    if end < start:
        logger.warning(f"Explicit dates out of order ({start} > {end}), ignoring them")
        return None
    return start, end


def resolve_dates(
    term_string: Optional[str],
    season_hint: Optional[str],
    explicit_start=None,
    explicit_end=None,
    *,
    order_date: Optional[datetime] = None,
    metadata_sources: Iterable[Optional[Mapping]] = (),
    product_term: Optional[str] = None,
    weekly_pattern: Optional[str] = None,
    today: Optional[date] = None,
) -> DateResolution:
    """
    Resolve an event's start and end dates.

    Args:
        term_string: Camp term carried by the booked item itself
        season_hint: Free-text season label, source of the year
        explicit_start: Explicit start date field
        explicit_end: Explicit end date field
        order_date: Order timestamp, second source of the year
        metadata_sources: Stored variation/product metadata mappings
        product_term: Camp term re-derived from the variation/product
        weekly_pattern: Selected weekdays or booking type, enables inference
        today: Override for the current date

    Returns:
        DateResolution; `resolved` is False when every strategy failed
    """
    metadata_sources = list(metadata_sources)

    # 1. Explicit fields
    pair = _explicit_pair(explicit_start, explicit_end)
    if pair:
        return DateResolution(pair[0], pair[1], strategy="explicit", confidence="high")

    hinted_year = season_year(season_hint)
    year = hinted_year or (order_date.year if order_date else None) or (today or date.today()).year

    # 2. Structured term
    pair = parse_term(term_string, year)
    if pair:
        return DateResolution(pair[0], pair[1], strategy="term", confidence="high")

    # 3. Stored metadata
    if metadata_sources:
        pair = _explicit_pair(
            resolve("start_date", metadata_sources),
            resolve("end_date", metadata_sources),
        )
        if pair:
            return DateResolution(pair[0], pair[1], strategy="metadata", confidence="high")

    # 4. Term re-derived from the product
    if product_term and product_term != term_string:
        pair = parse_term(product_term, year)
        if pair:
            return DateResolution(pair[0], pair[1], strategy="product_term", confidence="high")

    # 5. Inference from a weekly pattern
    pattern_year = hinted_year or (order_date.year if order_date else None)
    if clean_value(weekly_pattern) and pattern_year:
        inferred = date(pattern_year, 1, 1)
        logger.warning(
            f"Inferred placeholder date {inferred} from season year (term '{term_string}'); low confidence"
        )
        return DateResolution(inferred, inferred, strategy="inferred", confidence="low")

    if term_string:
        logger.warning(f"Could not resolve dates for term '{term_string}' (season '{season_hint}')")
    return UNRESOLVED
