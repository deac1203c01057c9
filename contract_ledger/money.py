"""
Money Helpers Module

Decimal conversion and rounding helpers shared by the codec, the projector
and the mutation operations. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Any, Optional
import re

from .config import get_config

# Set global decimal context for financial precision
getcontext().prec = 28

ZERO = Decimal('0')
ONE = Decimal('1')
HUNDRED = Decimal('100')


def to_decimal(value: Any) -> Decimal:
    """
    Convert int, float, str or Decimal to Decimal.

    Floats go through str() so 0.1 becomes Decimal('0.1') rather than its
    binary expansion.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if value is None:
        return ZERO
    return Decimal(value)


def parse_decimal(value: Optional[str], default: Decimal = ZERO) -> Decimal:
    """
    Permissive decimal parsing for values read out of free text.

    Accepts "1234.56" and a single-comma decimal separator ("1234,56").
    Anything unparsable, non-finite or negative yields ``default``.
    """
    if value is None:
        return default
    text = value.strip()
    if not text:
        return default
    if ',' in text and '.' not in text and text.count(',') == 1:
        text = text.replace(',', '.')
    try:
        result = Decimal(text)
    except (InvalidOperation, ValueError):
        return default
    if not result.is_finite() or result < ZERO:
        return default
    return result


def parse_int(value: Optional[str], default: int = 0) -> int:
    """Permissive integer parsing; unparsable or negative values yield ``default``"""
    if value is None:
        return default
    try:
        result = int(value.strip())
    except ValueError:
        return default
    return result if result >= 0 else default


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert user input to Decimal, handling common formats

    Args:
        value: String representation of number, optionally with "R$" and
            Brazilian thousand/decimal separators ("1.234,56")

    Returns:
        Decimal value

    Raises:
        ValueError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise ValueError("Value must be a non-empty string")

    # Remove currency symbols and whitespace
    clean_value = re.sub(r'[^\d.,\-+]', '', value.strip())

    if ',' in clean_value and '.' in clean_value:
        # Whichever separator comes last is the decimal separator
        if clean_value.rfind(',') > clean_value.rfind('.'):
            clean_value = clean_value.replace('.', '').replace(',', '.')
        else:
            clean_value = clean_value.replace(',', '')
    elif ',' in clean_value and clean_value.count(',') == 1:
        clean_value = clean_value.replace(',', '.')
    else:
        clean_value = clean_value.replace(',', '')

    try:
        return Decimal(clean_value)
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{value}' to Decimal")


def quantize_money(value: Decimal, places: Optional[int] = None) -> Decimal:
    """Round to money precision (2 places unless configured otherwise)"""
    if places is None:
        places = get_config().money_places
    return value.quantize(Decimal('0.1') ** places, rounding=ROUND_HALF_UP)


def non_negative(value: Decimal) -> Decimal:
    """Clamp a Decimal at zero"""
    return value if value > ZERO else ZERO
