"""
Phone number canonicalization.

Leads store phones as national digits only (5551234567): the country code
prefix and every non-digit character are stripped so that the same number
typed as "+1 (555) 123-4567", "555.123.4567" or "15551234567" matches.
"""
import logging
import re
from typing import Optional

import phonenumbers

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")


def canonical_phone(phone: Optional[str]) -> str:
    """
    Reduce a phone number to its national digits.

    - +15551234567    → 5551234567
    - (555) 123-4567  → 5551234567
    - 1-555-123-4567  → 5551234567
    - +44 20 7946 0958 → 2079460958

    Returns "" for missing or blank input. Numbers phonenumbers cannot
    parse still have non-digits and a leading NANP "1" removed.
    """
    if phone is None:
        return ""
    raw = str(phone).strip()
    if not raw:
        return ""

    if raw.startswith("+"):
        try:
            parsed = phonenumbers.parse(raw, None)
            return str(parsed.national_number)
        except phonenumbers.NumberParseException:
            logger.debug("phonenumbers could not parse %s***, using digit strip", raw[:4])

    digits = _NON_DIGITS.sub("", raw)
    if len(digits) == 11 and digits.startswith("1"):
        return digits[1:]
    return digits


def to_e164(phone: Optional[str], default_region: str = "US") -> Optional[str]:
    """
    Format canonical digits as E.164 for outbound CRM calls.
    Returns None if the number cannot be parsed.
    """
    digits = canonical_phone(phone)
    if not digits:
        return None
    try:
        parsed = phonenumbers.parse(digits, default_region)
    except phonenumbers.NumberParseException:
        return None
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)
