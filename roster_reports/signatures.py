"""
Event signatures.

An event signature is the MD5 of an event's defining attributes, used as the
identity of placeholder rows. Fields are canonicalized (fixed order, slugged,
lowercased, translated to English) before hashing so that a placeholder built
from catalog attributes and a booking built from order item attributes hash
identically.
"""

import hashlib
import html
import logging
import re
import unicodedata
from datetime import date
from typing import Any, Dict, Mapping, Optional, Sequence

from roster_reports.attributes import resolve
from roster_reports.classification import (
    EMPTY_MARKERS,
    is_girls_only_text,
    normalize_season,
    translate_activity,
)

logger = logging.getLogger(__name__)

SIGNATURE_FIELDS = (
    "activity_type",
    "venue",
    "age_group",
    "camp_terms",
    "course_day",
    "times",
    "season",
    "booking_type",
    "girls_only",
    "city",
    "canton_region",
    "product_id",
)


def slugify(value: Any) -> str:
    """Lowercase ASCII slug; accents are transliterated, separators collapse to '-'."""
    text = html.unescape(str(value or "")).strip()
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    text = re.sub(r"[^a-z0-9]+", "-", text.lower())
    return text.strip("-")


def _blank(value: Any) -> bool:
    return str(value or "").strip().lower() in EMPTY_MARKERS


def normalize_activity(value: Any) -> str:
    if _blank(value):
        return ""
    if is_girls_only_text(str(value)):
        return "girls only"
    tokens = [t.strip() for t in html.unescape(str(value)).lower().split(",") if t.strip()]
    return ", ".join(translate_activity(token) for token in tokens)


def normalize_event(event: Mapping[str, Any]) -> Dict[str, str]:
    """Canonical string form of every signature field."""
    normalized = {}
    for name in SIGNATURE_FIELDS:
        value = event.get(name)
        if name == "activity_type":
            normalized[name] = normalize_activity(value)
        elif name == "season":
            normalized[name] = "" if _blank(value) else slugify(normalize_season(str(value)))
        elif name == "girls_only":
            normalized[name] = "1" if value else "0"
        elif name == "product_id":
            try:
                normalized[name] = str(int(value or 0))
            except (TypeError, ValueError):
                normalized[name] = "0"
        else:
            normalized[name] = "" if _blank(value) else slugify(value)
    return normalized


def generate_signature(event: Mapping[str, Any]) -> str:
    """
    Hash an event's defining attributes.

    Tournaments are one-day events sharing every other attribute, so their
    start date is part of the signature.

    Args:
        event: Mapping with any of SIGNATURE_FIELDS (and start_date)

    Returns:
        32-character hex MD5 digest
    """
    normalized = normalize_event(event)
    components = [normalized[name] for name in SIGNATURE_FIELDS]

    if normalized["activity_type"] == "tournament" and event.get("start_date"):
        start = event["start_date"]
        components.append(start.isoformat() if isinstance(start, date) else str(start))

    signature = hashlib.md5("|".join(components).encode("utf-8")).hexdigest()
    logger.debug(f"Generated event signature {signature} from {components}")
    return signature


def event_fields(
    sources: Sequence[Optional[Mapping[str, Any]]],
    activity_type: str,
    product_id: int,
    start_date: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Collect the signature fields of an event from attribute sources.

    Bookings and placeholders both go through here so they resolve the
    same attributes the same way.
    """
    return {
        "activity_type": activity_type,
        "venue": resolve("venue", sources),
        "age_group": resolve("age_group", sources),
        "camp_terms": resolve("camp_terms", sources),
        "course_day": resolve("course_day", sources),
        "times": resolve("times", sources),
        "season": resolve("season", sources),
        "booking_type": resolve("booking_type", sources),
        "girls_only": activity_type == "Girls Only",
        "city": resolve("city", sources),
        "canton_region": resolve("region", sources),
        "product_id": product_id,
        "start_date": start_date,
    }
