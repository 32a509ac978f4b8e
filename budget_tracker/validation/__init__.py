"""Input validation package."""

from budget_tracker.validation.sanitizer import (
    MAX_DETAILS_LENGTH,
    is_iso_date,
    iso_sort_key,
    parse_iso_datetime,
    sanitize_details,
)

__all__ = [
    "MAX_DETAILS_LENGTH",
    "is_iso_date",
    "iso_sort_key",
    "parse_iso_datetime",
    "sanitize_details",
]
