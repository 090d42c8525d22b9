"""
Attribute resolution across item, variation, product and metadata sources.

Every logical attribute has an explicit, ordered list of alternate keys.
A value is taken from the first source that yields a non-empty value after
trimming and HTML-entity decoding.
"""

import html
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from roster_reports.models import BookedItem, Catalog, Product, ProductVariation

logger = logging.getLogger(__name__)


# Alternate keys per logical attribute, most specific first
ATTRIBUTE_KEYS: Dict[str, tuple] = {
    "activity_type": ("Activity Type", "pa_activity-type", "activity_type"),
    "venue": ("pa_venue", "Venue", "venue"),
    "age_group": ("pa_age-group", "Age Group", "age_group"),
    "camp_terms": ("pa_camp-terms", "Camp Terms", "camp_terms"),
    "course_day": ("pa_course-day", "Course Day", "course_day"),
    "times": ("Camp Times", "Course Times", "pa_camp-times", "pa_course-times", "times"),
    "season": ("Season", "pa_program-season", "pa_season", "season"),
    "booking_type": ("pa_booking-type", "Booking Type", "booking_type"),
    "selected_days": ("Days Selected", "Days of Week", "days_selected", "selected_days"),
    "region": ("Canton / Region", "pa_canton-region", "canton_region", "region"),
    "city": ("City", "pa_city", "city"),
    "start_date": ("Start Date", "start_date", "_course_start_date"),
    "end_date": ("End Date", "end_date", "_course_end_date"),
    "attendee": ("Assigned Attendee", "Assigned Attendees", "assigned_attendee"),
    "player_age": ("Player Age", "player_age"),
    "player_gender": ("Player Gender", "player_gender"),
    "medical_conditions": ("Medical Conditions", "medical_conditions"),
    "late_pickup": ("Late Pickup Type", "Late Pickup", "late_pickup"),
    "discount_codes": ("_applied_discounts", "Discount Codes", "discount_codes"),
}

# Attributes whose list values are joined instead of taking the first entry
MULTI_VALUE_ATTRIBUTES = frozenset({"activity_type", "selected_days"})


def clean_value(value: Any, join_lists: bool = False) -> str:
    """
    Normalize a raw attribute value to a trimmed, entity-decoded string.

    Args:
        value: Raw value (None, scalar or list)
        join_lists: Join list entries with ", " instead of taking the first

    Returns:
        Cleaned string, empty when nothing usable is present
    """
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        parts = [clean_value(v) for v in value]
        parts = [p for p in parts if p]
        if not parts:
            return ""
        return ", ".join(parts) if join_lists else parts[0]
    text = html.unescape(str(value)).strip()
    # Values of float NaN leak in from DataFrames
    if text.lower() == "nan":
        return ""
    return text


def _candidate_keys(keys: Sequence[str]) -> List[str]:
    candidates = list(keys)
    # Stored product metadata prefixes taxonomy attributes with "attribute_"
    candidates.extend(f"attribute_{key}" for key in keys if key.startswith("pa_"))
    return candidates


def lookup(source: Optional[Mapping[str, Any]], keys: Sequence[str], join_lists: bool = False) -> str:
    """Return the first non-empty value in `source` under any of `keys` (case-insensitive)."""
    if not source:
        return ""
    lowered = {str(k).lower(): v for k, v in source.items()}
    for key in _candidate_keys(keys):
        if key in source:
            value = clean_value(source[key], join_lists)
        else:
            value = clean_value(lowered.get(key.lower()), join_lists)
        if value:
            return value
    return ""


def resolve(
    attribute_name: str,
    sources: Iterable[Optional[Mapping[str, Any]]],
    default: str = "",
) -> str:
    """
    Resolve a logical attribute from an ordered list of sources.

    Missing sources (None or empty) are skipped.

    Args:
        attribute_name: Logical name from ATTRIBUTE_KEYS, or a raw key
        sources: Sources in priority order
        default: Value returned when no source has the attribute

    Returns:
        The first non-empty value, or `default`
    """
    keys = ATTRIBUTE_KEYS.get(attribute_name, (attribute_name,))
    join_lists = attribute_name in MULTI_VALUE_ATTRIBUTES
    for source in sources:
        value = lookup(source, keys, join_lists)
        if value:
            return value
    return default


def item_sources(
    item: BookedItem,
    variation: Optional[ProductVariation] = None,
    product: Optional[Product] = None,
) -> List[Optional[Mapping[str, Any]]]:
    """Standard source order: item override, variation, parent product, stored metadata."""
    return [
        item.attributes,
        variation.attributes if variation else None,
        product.attributes if product else None,
        variation.metadata if variation else None,
        product.metadata if product else None,
    ]


def catalog_sources(
    variation: Optional[ProductVariation],
    product: Optional[Product],
) -> List[Optional[Mapping[str, Any]]]:
    """Source order for a catalog entry that has no booked item yet."""
    return [
        variation.attributes if variation else None,
        product.attributes if product else None,
        variation.metadata if variation else None,
        product.metadata if product else None,
    ]


def sources_for(item: BookedItem, catalog: Optional[Catalog]) -> List[Optional[Mapping[str, Any]]]:
    if catalog is None:
        return [item.attributes]
    variation = catalog.variation(item.variation_id)
    product = catalog.product(item.product_id)
    return item_sources(item, variation, product)
