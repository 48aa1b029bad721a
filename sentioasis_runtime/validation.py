"""
Input validation for marketplace operations.

Checks agent endpoints, prices, addresses and analysis text before they
are sent on-chain or to an inference backend.
"""

import re
from decimal import Decimal, InvalidOperation
from urllib.parse import urlparse

__all__ = [
    "is_valid_url",
    "is_valid_price",
    "is_valid_address",
    "validate_text",
    "format_address",
    "MIN_TEXT_LENGTH",
    "MAX_TEXT_LENGTH",
]

MIN_TEXT_LENGTH = 10
MAX_TEXT_LENGTH = 10000

_URL_RE = re.compile(r"^https?://.+")
_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def is_valid_url(url: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    if not _URL_RE.match(url or ""):
        return False
    return bool(urlparse(url).netloc)


def is_valid_price(price: str | Decimal | int | float) -> bool:
    """True when *price* parses to a finite number greater than zero."""
    try:
        value = Decimal(str(price))
    except (InvalidOperation, ValueError):
        return False
    return value.is_finite() and value > 0


def is_valid_address(address: str) -> bool:
    return bool(_ADDRESS_RE.match(address or ""))


def validate_text(
    text: str,
    min_length: int = MIN_TEXT_LENGTH,
    max_length: int = MAX_TEXT_LENGTH,
) -> str:
    """Strip control characters and enforce length bounds.

    Returns:
        The cleaned text.

    Raises:
        ValueError: If the cleaned text is shorter than *min_length* or
            longer than *max_length*.
    """
    cleaned = _CONTROL_CHARS_RE.sub("", text or "").strip()
    if len(cleaned) < min_length:
        raise ValueError(f"Text too short. Minimum {min_length} characters required.")
    if len(cleaned) > max_length:
        raise ValueError(f"Text too long. Maximum {max_length} characters allowed.")
    return cleaned


def format_address(address: str, prefix: int = 6, suffix: int = 4) -> str:
    """Shorten an address for display: ``0x1234...abcd``."""
    if not address:
        return ""
    return f"{address[:prefix]}...{address[-suffix:]}"
