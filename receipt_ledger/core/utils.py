"""
Utility functions and constants for receipt processing.
"""

import datetime as dt
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

# Closed category vocabulary used to validate predictor output
CATEGORIES = ("Dining", "Transportation", "Entertainment", "Groceries", "Electronics", "Other")
FALLBACK_CATEGORY = "Other"

# Image sniffing
PDF_MAGIC = b"%PDF"
IMAGE_MAGIC = {
    b"\x89PNG": ".png",
    b"\xff\xd8": ".jpg",
    b"II*\x00": ".tiff",
    b"MM\x00*": ".tiff",
    b"BM": ".bmp",
    PDF_MAGIC: ".pdf",
}

# Pattern constants for parsing
MONEY_PATTERN = r"\$?\s*((?:\d{1,3}(?:,\d{3})+|\d+)\.\d{2})\b"

SAME_LINE_TOTAL_PATTERN = (
    r"\b(?:total|balance|amount|sum)\b\s*(?:due\b)?\s*:?\s*" + MONEY_PATTERN
)

TOTAL_KEYWORD_PATTERN = r"\b(?:total|balance|amount\s+due)\b"

CURRENCY_MARKERS = ("$", "€", "£", "¥", "usd", "eur")

MERCHANT_SKIP_TOKENS = {"total", "subtotal", "grandtotal", "tax", "cash", "card"}

MERCHANT_KEYWORDS = (
    "store", "market", "restaurant", "cafe", "coffee", "shop",
    "inc", "llc", "ltd", "co", "bar", "grill", "pharmacy",
)


def normalize_amount(s: str) -> Optional[Decimal]:
    """Normalize amount string to Decimal."""
    if not s:
        return None
    s = s.replace(",", "").replace(" ", "").replace("$", "")
    try:
        return Decimal(s)
    except InvalidOperation:
        return None


def image_suffix(data: bytes) -> str:
    """Guess a file extension from the leading magic bytes."""
    for magic, ext in IMAGE_MAGIC.items():
        if data.startswith(magic):
            return ext
    return ".img"


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def epoch_millis(when: dt.datetime) -> int:
    return int(when.timestamp() * 1000)


class MillisecondIds:
    """
    Hands out ids derived from the capture time in milliseconds.

    Two ids requested within the same millisecond are still distinct: the
    sequence never repeats and never goes backwards.
    """

    def __init__(self, clock: Callable[[], dt.datetime] = utc_now):
        self._clock = clock
        self._last = 0

    def __call__(self) -> int:
        candidate = epoch_millis(self._clock())
        self._last = max(candidate, self._last + 1)
        return self._last

    def observe(self, issued: int):
        """Never hand out an id at or below one already in use."""
        self._last = max(self._last, issued)


def money_fmt(v: Optional[Decimal]) -> str:
    """Format amount as currency."""
    return f"${v:,.2f}" if v is not None else ""
