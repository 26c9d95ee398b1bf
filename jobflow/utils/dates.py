"""
Date and time helpers shared by the pipeline and the calendar sync.
"""
import re
from datetime import date
from typing import Optional

_TIME_RE = re.compile(r"^\s*(\d{1,2})(?::(\d{2}))?(?::\d{2})?\s*([AaPp][Mm])?\s*$")


def normalize_time_24h(value: Optional[str]) -> Optional[str]:
    """
    Normalize a wall-clock time to "HH:MM" (24h).

    "2:30 PM" → "14:30", "09:00" → "09:00", "12 am" → "00:00", "14:30:00" → "14:30".
    Returns None when the value is not a time.
    """
    if not value:
        return None
    match = _TIME_RE.match(str(value))
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    meridiem = (match.group(3) or "").lower()

    if meridiem:
        if not 1 <= hour <= 12:
            return None
        if meridiem == "am":
            hour = 0 if hour == 12 else hour
        else:
            hour = 12 if hour == 12 else hour + 12

    if hour > 23 or minute > 59:
        return None
    return f"{hour:02d}:{minute:02d}"


def format_display_date(value: Optional[date]) -> str:
    """date(2026, 3, 15) → "03/15/2026"."""
    if not value:
        return ""
    return value.strftime("%m/%d/%Y")


def format_display_time(value: Optional[str]) -> str:
    """"14:30" → "2:30 PM"."""
    normalized = normalize_time_24h(value)
    if not normalized:
        return ""
    hour, minute = (int(part) for part in normalized.split(":"))
    return f"{hour % 12 or 12}:{minute:02d} {'PM' if hour >= 12 else 'AM'}"
