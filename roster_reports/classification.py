"""
Activity classification.

Maps raw, free-text activity types (comma-separated, mixed case, possibly
translated or entity-encoded) to a category label. A textual girls-only
signal always wins; structural signals (course day, camp terms, girls-only
variation allowlist) are consulted only when there is no text at all.
"""

import html
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional

from roster_reports.attributes import resolve, sources_for
from roster_reports.models import WEEKDAYS, BookedItem, Catalog

logger = logging.getLogger(__name__)

CAMP = "Camp"
COURSE = "Course"
GIRLS_ONLY = "Girls Only"
EVENT = "Event"
UNKNOWN = "Unknown"

GIRLS_ONLY_SYNONYMS = frozenset({
    "girls only",
    "girls' only",
    "girls’ only",
    "camp, girls' only",
    "camp, girls only",
    "course, girls' only",
    "course, girls only",
    "camp girls only",
    "course girls only",
    "filles seulement",
    "nur mädchen",
    "solo ragazze",
})

# Non-English activity words seen in the catalog, keyed by their English label
ACTIVITY_TRANSLATIONS = {
    "camp": ("camp", "camp de vacances", "lager", "campeggio"),
    "course": ("course", "cours", "kurs", "corso", "stage"),
    "birthday": ("birthday", "anniversaire", "geburtstag", "compleanno"),
    "tournament": ("tournament", "tournoi", "tournois", "turnier", "torneo"),
    "event": ("event", "événement", "evenement", "veranstaltung", "evento"),
}

SEASON_TRANSLATIONS = (
    (re.compile(r"\b(?:hiver|inverno)\b", re.I), "Winter"),
    (re.compile(r"\b(?:été|sommer|estate)\b", re.I), "Summer"),
    (re.compile(r"\b(?:printemps|frühling|primavera)\b", re.I), "Spring"),
    (re.compile(r"\b(?:automne|autumn|herbst|autunno)\b", re.I), "Fall"),
)

# Values the commerce platform writes for "no value"
EMPTY_MARKERS = frozenset({"", "n/a", "unknown"})

MINI_CAMP = "Mini - Half Day"
FULL_DAY_CAMP = "Full Day"


@dataclass
class ClassificationSignals:
    """Structural hints used when an item carries no activity text."""

    course_day: str = ""
    camp_terms: str = ""
    variation_id: int = 0
    girls_only_ids: FrozenSet[int] = field(default_factory=frozenset)


def normalize_text(raw_text: Optional[str]) -> str:
    if raw_text is None:
        return ""
    return html.unescape(str(raw_text)).strip().lower()


def _tokens(text: str) -> List[str]:
    return [token.strip() for token in text.split(",") if token.strip()]


def _strip_quotes(text: str) -> str:
    return text.replace("'", "").replace("’", "").replace('"', "")


def is_girls_only_text(raw_text: Optional[str]) -> bool:
    """True if the text, or any comma-separated token of it, is a girls-only synonym."""
    text = normalize_text(raw_text)
    if not text:
        return False
    if text in GIRLS_ONLY_SYNONYMS or _strip_quotes(text) in GIRLS_ONLY_SYNONYMS:
        return True
    return any(
        token in GIRLS_ONLY_SYNONYMS or _strip_quotes(token) == "girls only"
        for token in _tokens(text)
    )


def translate_activity(token: str) -> str:
    token = token.strip().lower()
    for english, variants in ACTIVITY_TRANSLATIONS.items():
        if token in variants:
            return english
    return token


def _label(token: str) -> str:
    token = translate_activity(token)
    return token[:1].upper() + token[1:]


def _present(value: Optional[str]) -> bool:
    return normalize_text(value) not in EMPTY_MARKERS


def classify(raw_text: Optional[str], signals: Optional[ClassificationSignals] = None) -> str:
    """
    Classify an activity type.

    Precedence:
    1. Any girls-only synonym in the text -> "Girls Only"
    2. Otherwise, any text -> tokens translated, capitalized and joined
    3. Otherwise structural fallback: course day -> Course, camp terms -> Camp,
       allowlisted variation -> Girls Only, else Unknown

    Args:
        raw_text: Raw activity type text
        signals: Structural fallback hints

    Returns:
        Category label
    """
    text = normalize_text(raw_text)
    if text and is_girls_only_text(text):
        return GIRLS_ONLY

    tokens = _tokens(text)
    if tokens:
        return ", ".join(_label(token) for token in tokens)

    signals = signals or ClassificationSignals()
    if _present(signals.course_day):
        return COURSE
    if _present(signals.camp_terms):
        return CAMP
    if signals.variation_id and signals.variation_id in signals.girls_only_ids:
        return GIRLS_ONLY
    return UNKNOWN


def classify_item(
    item: BookedItem,
    catalog: Optional[Catalog] = None,
    girls_only_ids: FrozenSet[int] = frozenset(),
) -> str:
    """Classify a booked item using the standard attribute source order."""
    sources = sources_for(item, catalog)
    signals = ClassificationSignals(
        course_day=resolve("course_day", sources),
        camp_terms=resolve("camp_terms", sources),
        variation_id=item.variation_id,
        girls_only_ids=girls_only_ids,
    )
    return classify(resolve("activity_type", sources), signals)


def product_type(activity_type: str, camp_terms: str = "", course_day: str = "") -> str:
    """
    Coarse product family used for discount tiers and placeholder eligibility.

    Girls-only events are camps or courses depending on which structural
    attribute they carry.

    Returns:
        "camp", "course", or the lowercased activity label
    """
    lowered = normalize_text(activity_type)
    if activity_type == GIRLS_ONLY:
        if _present(camp_terms):
            return "camp"
        if _present(course_day):
            return "course"
        return "girls only"
    if "camp" in lowered:
        return "camp"
    if "course" in lowered:
        return "course"
    return lowered or "unknown"


def normalize_season(season: Optional[str]) -> str:
    """Translate season words to English and capitalize ("été 2025" -> "Summer 2025")."""
    text = html.unescape(season or "").strip()
    if not text:
        return ""
    for pattern, english in SEASON_TRANSLATIONS:
        text = pattern.sub(english, text)
    text = text.lower()
    return text[:1].upper() + text[1:]


def camp_type(age_group: Optional[str]) -> str:
    """Half-day mini camps are reported separately from full-day camps."""
    lowered = (age_group or "").lower()
    if "3-5y" in lowered or "half-day" in lowered:
        return MINI_CAMP
    return FULL_DAY_CAMP


WEEKDAY_ALIASES = {
    "Monday": ("monday", "mon", "lundi", "montag", "lunedi", "lunedì"),
    "Tuesday": ("tuesday", "tue", "tues", "mardi", "dienstag", "martedi", "martedì"),
    "Wednesday": ("wednesday", "wed", "mercredi", "mittwoch", "mercoledi", "mercoledì"),
    "Thursday": ("thursday", "thu", "thur", "thurs", "jeudi", "donnerstag", "giovedi", "giovedì"),
    "Friday": ("friday", "fri", "vendredi", "freitag", "venerdi", "venerdì"),
}


def is_full_week(booking_type: Optional[str]) -> bool:
    """True for any booking type containing "full" (full-week, Full Week)."""
    return "full" in normalize_text(booking_type)


def weekday(token: str) -> Optional[str]:
    token = normalize_text(token).rstrip(".")
    for day, aliases in WEEKDAY_ALIASES.items():
        if token in aliases:
            return day
    return None


def day_presence(booking_type: Optional[str], selected_days: Optional[str]) -> Dict[str, bool]:
    """
    Per-weekday presence of one booking.

    Full-week bookings attend Monday to Friday; single-day bookings attend
    the comma-separated days they selected.
    """
    if is_full_week(booking_type):
        return {day: True for day in WEEKDAYS}
    chosen = {weekday(token) for token in re.split(r"[,/;|]", selected_days or "")}
    return {day: day in chosen for day in WEEKDAYS}
