"""
Phone number normalization for Daraja MSISDNs.

Accepted input shapes (after stripping whitespace, '+' and '-'):
- national:      0712345678    (0 + 9 digits)
- subscriber:    712345678     (9 digits, no leading 0)
- international: 254712345678  (country code + 9 digits)

All three map to the canonical international form 254712345678.
"""
import re
from typing import Any

from ..exceptions import InvalidPhoneError

_STRIP_PATTERN = re.compile(r"[\s+\-]")
_SUBSCRIBER = r"[1-9]\d{8}"


def normalize_phone(raw: Any, country_code: str = "254") -> str:
    """
    Canonicalize a caller-supplied phone number.

    Args:
        raw: Phone number as typed by the caller
        country_code: Digits of the gateway's country code

    Returns:
        Canonical phone, e.g. "254712345678"

    Raises:
        InvalidPhoneError: Input is empty, not a string, or matches no accepted shape
    """
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidPhoneError("Phone number is required", {"phone": raw})

    cleaned = _STRIP_PATTERN.sub("", raw)

    match = (
        re.fullmatch(rf"0({_SUBSCRIBER})", cleaned)
        or re.fullmatch(rf"({_SUBSCRIBER})", cleaned)
        or re.fullmatch(rf"{re.escape(country_code)}({_SUBSCRIBER})", cleaned)
    )
    if not match:
        raise InvalidPhoneError("Invalid phone number", {"phone": raw})

    return f"{country_code}{match.group(1)}"
