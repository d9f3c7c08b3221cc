"""Price parsing and formatting.

Prices found in free-text search snippets are pulled out with a fixed set of
regular expressions. This is a heuristic: any number that looks like a price
(model numbers written as "$100 series", shipping thresholds, etc.) may come
through as a false positive.
"""

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

CENT = Decimal("0.01")
MAX_PRICE = Decimal("1000000")

# Tried in this order; matches from earlier patterns win on duplicates.
PRICE_PATTERNS = [
    re.compile(r"\$[\d,]+\.?\d*"),
    re.compile(r"USD\s*[\d,]+\.?\d*", re.IGNORECASE),
    re.compile(r"\$\s*[\d,]+(?:\.\d{2})?"),
    re.compile(r"(?:price|precio|cost):\s*\$?[\d,]+\.?\d*", re.IGNORECASE),
    re.compile(r"MXN\s*\$?[\d,]+\.?\d*", re.IGNORECASE),
]

_NON_NUMERIC = re.compile(r"[^0-9.]")


def quantize(value: Decimal) -> Decimal:
    """Round a price to whole cents."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _bounded(value: Decimal) -> Optional[Decimal]:
    """NaN, infinities and absurdly large values are not prices."""
    if not value.is_finite() or abs(value) >= MAX_PRICE:
        return None
    return value


def to_decimal(value) -> Optional[Decimal]:
    """Convert an API price value (number or string) to a Decimal."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _bounded(Decimal(str(value)))
    if isinstance(value, str):
        return parse_price(value)
    return None


def parse_price(text: str) -> Optional[Decimal]:
    """
    Parse a display price such as "$1,299.99" into a Decimal.

    Returns:
        The parsed value, or None if the text holds no usable number or
        the number is out of range.
    """
    if not text:
        return None
    cleaned = text.replace("$", "").replace(",", "").strip()
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return None
    return _bounded(value)


def format_price(value: Decimal) -> str:
    """Format a price the way clients display it: "$12.50"."""
    return f"${quantize(value):.2f}"


def is_same_price(a: Decimal, b: Decimal) -> bool:
    """Two prices are the same when they differ by less than one cent."""
    return abs(a - b) < CENT


def extract_prices(text: Optional[str]) -> list[Decimal]:
    """
    Extract candidate prices from free text.

    Every pattern in PRICE_PATTERNS is applied in order. Matches are reduced
    to digits and dots, then kept when 0 < value < 1,000,000 and not within
    a cent of a value already kept.

    Args:
        text: Search result title/snippet text

    Returns:
        Prices in the order they were first seen
    """
    prices: list[Decimal] = []
    if not text:
        return prices

    for pattern in PRICE_PATTERNS:
        for match in pattern.findall(text):
            raw = _NON_NUMERIC.sub("", match)
            try:
                value = Decimal(raw)
            except InvalidOperation:
                continue
            if not value.is_finite() or value <= 0 or value >= MAX_PRICE:
                continue
            value = quantize(value)
            if any(is_same_price(value, seen) for seen in prices):
                continue
            prices.append(value)

    return prices
