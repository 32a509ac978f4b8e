"""
Input Sanitization for Spending Records

Record details often arrive from parsed notification text, which we do not
control. Before a description is stored it is stripped of anything that
could be interpreted as markup or script when it is later displayed.

IMPORTANT: Sanitization removes dangerous fragments, it does not "fix"
descriptions. If nothing meaningful is left the value is rejected.
"""

import re
from datetime import date, datetime, timezone
from typing import Optional


MAX_DETAILS_LENGTH = 200

# Order matters: whole script/style blocks go before generic tag stripping
_SCRIPT_BLOCK = re.compile(r"<\s*(script|style)\b[^>]*>.*?<\s*/\s*\1\s*>", re.IGNORECASE | re.DOTALL)
_HTML_TAG = re.compile(r"<[^>]*>")
_DANGEROUS_SCHEME = re.compile(r"\b(javascript|vbscript|data)\s*:", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"\bon[a-z]+\s*=", re.IGNORECASE)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_WHITESPACE = re.compile(r"\s+")


def _clean_once(value: str) -> str:
    cleaned = _SCRIPT_BLOCK.sub("", value)
    cleaned = _HTML_TAG.sub("", cleaned)
    cleaned = _DANGEROUS_SCHEME.sub("", cleaned)
    cleaned = _EVENT_HANDLER.sub("", cleaned)
    cleaned = _CONTROL_CHARS.sub("", cleaned)
    cleaned = cleaned.replace("<", "").replace(">", "")
    return _WHITESPACE.sub(" ", cleaned).strip()


def sanitize_details(value: str) -> str:
    """
    Remove script-injection patterns from a record description.

    Removing one fragment can join the text around it into a new one
    (a control character between "on" and "click=" hides a handler), so
    cleaning repeats until the text stops changing. Sanitizing the result
    again returns it unchanged.

    Returns the cleaned, whitespace-normalized text. Length and emptiness
    are checked by the caller (the Record model).
    """
    cleaned = _clean_once(value)
    while True:
        again = _clean_once(cleaned)
        if again == cleaned:
            return cleaned
        cleaned = again


def parse_iso_datetime(value: str) -> Optional[datetime]:
    """
    Parse an ISO-8601 date or datetime string.

    Accepts the trailing 'Z' produced by JavaScript clients.
    Returns None if the value is not ISO-8601.
    """
    text = value.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    try:
        parsed = date.fromisoformat(text)
    except ValueError:
        return None
    return datetime(parsed.year, parsed.month, parsed.day)


def is_iso_date(value: str) -> bool:
    """Check whether a string is an ISO-8601 date or datetime."""
    return parse_iso_datetime(value) is not None


_EPOCH_MIN = datetime.min.replace(tzinfo=timezone.utc)


def iso_sort_key(value: str) -> datetime:
    """
    Sort key for ISO-8601 strings that mixes dates and datetimes safely.

    Naive values are taken as UTC; unparseable values sort first.
    """
    parsed = parse_iso_datetime(value) if isinstance(value, str) else None
    if parsed is None:
        return _EPOCH_MIN
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed
