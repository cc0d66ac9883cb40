"""Input validation and sanitization for values forwarded to Square."""

import re
from typing import Any, TypeVar

# Phone patterns accept ASCII digits only
# North American numbers: +1, area code and exchange not starting with 0 or 1
PHONE_PATTERN = re.compile(r"^\+1[2-9]\d{2}[2-9]\d{6}$", re.ASCII)
E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$", re.ASCII)
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
NAME_PATTERN = re.compile(r"^[a-zA-Z\s\-'.]+$")

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50

MAX_PAYMENT_AMOUNT = 1_000_000
SUPPORTED_CURRENCIES = ("USD", "CAD", "GBP", "EUR", "AUD", "JPY")

T = TypeVar("T")


def validate_phone_number(phone: str | None) -> bool:
    """Check a phone number against the strict ``+1NXXNXXXXXX`` format."""
    if not phone:
        return False
    return PHONE_PATTERN.fullmatch(phone) is not None


def validate_e164(phone: str | None) -> bool:
    """Check a phone number is E.164: ``+`` followed by up to 15 digits."""
    if not phone:
        return False
    return E164_PATTERN.fullmatch(phone) is not None


def validate_email(email: str | None) -> bool:
    """Check an email address has the ``local@domain.tld`` shape."""
    if not email:
        return False
    return EMAIL_PATTERN.fullmatch(email) is not None


def validate_cardholder_name(name: Any) -> bool:
    """
    Check a person or cardholder name.

    The trimmed name must be 2 to 50 characters of letters, spaces, hyphens,
    apostrophes and periods.
    """
    if not name or not isinstance(name, str):
        return False
    trimmed = name.strip()
    return (
        NAME_MIN_LENGTH <= len(trimmed) <= NAME_MAX_LENGTH
        and NAME_PATTERN.fullmatch(trimmed) is not None
    )


def sanitize_input(value: T) -> T:
    """Trim a string and drop angle brackets. Non-strings pass through."""
    if not isinstance(value, str):
        return value
    return value.strip().replace("<", "").replace(">", "")  # type: ignore[return-value]


def is_positive_integer(value: Any) -> bool:
    """Check a value is an int greater than zero. Booleans are rejected."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def mask_identifier(value: str | None) -> str:
    """Shorten an identifier for log lines."""
    if not value:
        return "<none>"
    return f"{value[:8]}..."
