"""Pure functions for input parsing, validation and money arithmetic."""

import logging
import math
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from ..errors import ValidationError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
PRICE_STEP = Decimal("0.0001")

_METRIC_NUMBER_RE = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")


def quantize_money(value: Decimal) -> Decimal:
    """Round a cash amount to cents."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def quantize_price(value: Decimal) -> Decimal:
    """Round a unit price (or average cost) to 4 decimal places."""
    return value.quantize(PRICE_STEP, rounding=ROUND_HALF_UP)


def to_decimal(value: Any) -> Optional[Decimal]:
    """
    Convert a number or numeric string to Decimal.

    Floats go through ``str`` so 0.1 stays 0.1 instead of its binary expansion.

    Returns:
        Decimal value, or None if the input is not a finite number
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    try:
        result = Decimal(value) if isinstance(value, (int, Decimal)) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def to_price(value: Any) -> Decimal:
    """
    Validate an externally supplied unit price.

    Raises:
        ValidationError: if the price is not a finite number that stays > 0
            at 4 decimal places
    """
    price = to_decimal(value)
    if price is None:
        raise ValidationError(f"Invalid price: {value!r}")
    try:
        price = quantize_price(price)
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid price: {value!r}") from exc
    # a positive input can round to 0
    if price <= 0:
        raise ValidationError(f"Invalid price: {value!r}")
    return price


def parse_share_count(value: Any) -> int:
    """
    Parse a share count typed by the user.

    Accepts ints and integer strings ("12", " 12 "); rejects fractions,
    zero and negatives.

    Raises:
        ValidationError: if the input is not a positive whole number
    """
    if isinstance(value, bool):
        raise ValidationError("Please enter a valid number of shares.")
    if isinstance(value, int):
        shares = value
    else:
        text = str(value).strip() if value is not None else ""
        if not re.fullmatch(r"\d+", text):
            raise ValidationError("Please enter a valid number of shares.")
        shares = int(text)
    if shares <= 0:
        raise ValidationError("Please enter a valid number of shares.")
    return shares


def normalize_ticker(ticker: str) -> str:
    """Uppercase, trim and drop a leading ``$``."""
    return ticker.strip().upper().replace("$", "")


def is_valid_ticker(ticker: str) -> bool:
    """Allow 1-15 chars with letters, numbers, dots, hyphens (e.g. ``BRVM.BRVM``)."""
    return bool(re.fullmatch(r"[A-Z0-9.\-]{1,15}", ticker))


def parse_metric_value(display: Any) -> Optional[float]:
    """
    Extract the leading number from a formatted metric string.

    "25.3" -> 25.3, "2.5T USD" -> 2.5, "+12%" -> 12.0, "N/A" -> None.
    Everything except digits, dots and minus signs is stripped first.
    """
    if display is None:
        return None
    if isinstance(display, (int, float)) and not isinstance(display, bool):
        return float(display) if math.isfinite(display) else None
    cleaned = re.sub(r"[^0-9.\-]+", "", str(display))
    match = _METRIC_NUMBER_RE.match(cleaned)
    if not match:
        return None
    try:
        return float(match.group(0))
    except ValueError:
        logger.debug("Unparseable metric value: %r", display)
        return None
