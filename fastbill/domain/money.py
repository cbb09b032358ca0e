import re
import math
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")

_CURRENCY_RE = re.compile(r'(?:rs\.?|inr|₹|\$|€|£)')
_NUMBER_RE = re.compile(r'-?\d+(?:\.\d+)?')


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    """
    Parses a Decimal from a number or string, handling currency symbols and commas.
    Returns `default` if value is None, NaN/infinite or cannot be parsed.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        return value if value.is_finite() else default
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return default
        # str() keeps the shortest repr, so 0.1 stays 0.1
        return Decimal(str(value))

    cleaned = str(value).strip().lower()
    cleaned = _CURRENCY_RE.sub('', cleaned).replace(',', '').strip()
    if not cleaned:
        return default

    match = _NUMBER_RE.search(cleaned)
    if not match:
        return default
    try:
        return Decimal(match.group())
    except InvalidOperation:
        return default


def to_optional_decimal(value: Any) -> Optional[Decimal]:
    """Like to_decimal, but keeps None (and blank strings) as None."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return to_decimal(value)


def round2(value: Any) -> Decimal:
    """Currency rounding: half-up to 2 decimals. Garbage rounds to 0.00."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def clamp(value: Decimal, low: Decimal, high: Optional[Decimal] = None) -> Decimal:
    if value < low:
        return low
    if high is not None and value > high:
        return high
    return value


def coerce_quantity(value: Any, voice: bool = False) -> Decimal:
    """
    Quantity is never negative. Non-numeric input is 0 for manual lines,
    1 for lines created from a voice command.
    """
    fallback = Decimal(1) if voice else ZERO
    if value is None or isinstance(value, bool):
        return fallback
    if isinstance(value, str) and not _NUMBER_RE.search(value):
        return fallback
    qty = to_decimal(value, default=fallback)
    return clamp(qty, ZERO)


def format_rupees(value: Any) -> str:
    """Formats a 2dp amount as ₹1,234.56"""
    return f"₹{round2(value):,.2f}"


def format_rate(value: Any) -> str:
    """18 -> '18%', 2.5 -> '2.5%'"""
    rate = to_decimal(value)
    text = format(rate.normalize(), 'f') if rate != rate.to_integral() else str(int(rate))
    return f"{text}%"
