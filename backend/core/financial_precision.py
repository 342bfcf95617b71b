"""
INVOICE BASIS: DECIMAL PRECISION & TOTALS CALCULATOR

This module provides:
1. Decimal precision lock (2-decimal places, half away from zero)
2. Safe financial calculations
3. Per-line amounts and VAT-bucketed invoice totals

Totals are the sum of per-line rounded figures, never the rounding of a sum.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union, Dict, Any, List, Optional
import logging
import os

logger = logging.getLogger(__name__)

# Precision configuration
DECIMAL_PLACES = 2
QUANTIZE_PATTERN = Decimal('0.01')

DEFAULT_CURRENCY = os.getenv("INVOICE_DEFAULT_CURRENCY", "SEK")

# Lines of this type describe site diary entries and never carry money
DIARY_LINE_TYPE = "diary"


class FinancialPrecisionError(Exception):
    """Raised when financial precision validation fails"""
    pass


def to_decimal(value: Union[float, int, str, Decimal]) -> Decimal:
    """
    Convert any numeric value to Decimal.
    Does NOT round - preserves full precision for intermediate calculations.
    """
    if isinstance(value, bool):
        raise FinancialPrecisionError("Cannot convert bool to Decimal")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        # Convert via string to avoid float precision issues
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value)
        except InvalidOperation:
            raise FinancialPrecisionError(f"Cannot convert '{value}' to Decimal")
    raise FinancialPrecisionError(f"Cannot convert {type(value)} to Decimal")


def round_financial(value: Union[float, int, str, Decimal]) -> Decimal:
    """
    Round a value to 2 decimal places, halves away from zero.
    This should be called ONLY at calculation boundaries.
    """
    decimal_value = to_decimal(value)
    return decimal_value.quantize(QUANTIZE_PATTERN, rounding=ROUND_HALF_UP)


def to_float(value: Union[float, int, str, Decimal]) -> float:
    """
    Convert Decimal back to float for MongoDB storage.
    Rounds to 2 decimal places first.
    """
    rounded = round_financial(value)
    return float(rounded)


def safe_multiply(a: Union[float, int, Decimal], b: Union[float, int, Decimal]) -> Decimal:
    """Safe multiplication preserving precision"""
    return to_decimal(a) * to_decimal(b)


def safe_divide(numerator: Union[float, int, Decimal],
                denominator: Union[float, int, Decimal]) -> Decimal:
    """Safe division with zero check"""
    denom = to_decimal(denominator)
    if denom == Decimal('0'):
        return Decimal('0')
    return to_decimal(numerator) / denom


def safe_add(*values: Union[float, int, Decimal]) -> Decimal:
    """Safe addition of multiple values"""
    result = Decimal('0')
    for v in values:
        result += to_decimal(v)
    return result


def calculate_percentage(amount: Union[float, int, Decimal],
                         percentage: Union[float, int, Decimal]) -> Decimal:
    """
    Calculate percentage of an amount.
    Example: calculate_percentage(1000, 10) = 100
    """
    return safe_multiply(to_decimal(amount), safe_divide(to_decimal(percentage), Decimal('100')))


def _line_value(line: Dict[str, Any], field: str) -> Decimal:
    value = line.get(field)
    if value is None or isinstance(value, bool):
        return Decimal('0')
    try:
        decimal_value = to_decimal(value)
    except FinancialPrecisionError:
        return Decimal('0')
    if not decimal_value.is_finite():
        return Decimal('0')
    return decimal_value


def format_rate_key(rate: Decimal) -> str:
    """Render a VAT rate as a bucket key: 25 -> '25', 12.50 -> '12.5'."""
    return format(rate.normalize(), 'f')


def calculate_line_amount(line: Dict[str, Any]) -> Decimal:
    """
    Net amount of one line, rounded.

    LOCKED FORMULA:
    - amount_ex_vat = round(quantity * unit_price * (1 - discount / 100))
    """
    quantity = _line_value(line, "quantity")
    unit_price = _line_value(line, "unit_price")
    discount = _line_value(line, "discount")

    gross = safe_multiply(quantity, unit_price)
    if discount > Decimal('0'):
        gross = gross - calculate_percentage(gross, discount)
    return round_financial(gross)


def calculate_invoice_totals(
    lines: Optional[List[Dict[str, Any]]],
    currency: Optional[str] = None
) -> Dict[str, Any]:
    """
    Calculate invoice totals from the full line set.

    LOCKED FORMULAS (per line, then summed):
    - amount_ex_vat = round(quantity * unit_price * (1 - discount / 100))
    - vat = round(amount_ex_vat * vat_rate / 100)
    - per_vat_rate[rate] = {base: sum(amount_ex_vat), vat: sum(vat), total: base + vat}

    Diary lines and lines without a positive quantity or amount are skipped.
    Returns rounded float values ready for storage.
    """
    buckets: Dict[str, Dict[str, Decimal]] = {}

    for line in lines or []:
        if not isinstance(line, dict) or line.get("type") == DIARY_LINE_TYPE:
            continue
        if _line_value(line, "quantity") <= Decimal('0'):
            continue

        amount_ex_vat = calculate_line_amount(line)
        if amount_ex_vat <= Decimal('0'):
            continue

        vat_rate = _line_value(line, "vat_rate")
        vat_amount = round_financial(calculate_percentage(amount_ex_vat, vat_rate))

        bucket = buckets.setdefault(
            format_rate_key(vat_rate),
            {"base": Decimal('0'), "vat": Decimal('0')}
        )
        bucket["base"] = safe_add(bucket["base"], amount_ex_vat)
        bucket["vat"] = safe_add(bucket["vat"], vat_amount)

    total_ex_vat = Decimal('0')
    total_vat = Decimal('0')
    per_vat_rate = {}

    for rate_key, bucket in buckets.items():
        per_vat_rate[rate_key] = {
            "base": to_float(bucket["base"]),
            "vat": to_float(bucket["vat"]),
            "total": to_float(safe_add(bucket["base"], bucket["vat"])),
        }
        total_ex_vat = safe_add(total_ex_vat, bucket["base"])
        total_vat = safe_add(total_vat, bucket["vat"])

    return {
        "currency": currency or DEFAULT_CURRENCY,
        "total_ex_vat": to_float(total_ex_vat),
        "total_vat": to_float(total_vat),
        "total_inc_vat": to_float(safe_add(total_ex_vat, total_vat)),
        "per_vat_rate": per_vat_rate,
    }
