# fee_engine/core/money.py - Decimal helpers shared by the fee pipeline
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from fee_engine.core.config import settings
from fee_engine.core.exceptions import InvalidArgumentError

ZERO = Decimal("0")
HUNDRED = Decimal("100")
MONTHS_PER_YEAR = Decimal("12")
# largest value a Numeric(12, 2) column holds
MAX_AMOUNT = Decimal("9999999999.99")

Amount = Union[Decimal, int, str]


def to_decimal(value: Amount, field: str = "amount") -> Decimal:
    """
    Convert a stored or user supplied value to Decimal.

    Floats are rejected: binary floating point never enters the pipeline.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or isinstance(value, float):
        raise InvalidArgumentError(f"{field} must be a decimal string or integer, got {type(value).__name__}")
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(value)
        except InvalidOperation:
            raise InvalidArgumentError(f"{field} is not a valid decimal: {value!r}")
    else:
        raise InvalidArgumentError(f"{field} has unsupported type {type(value).__name__}")

    if not result.is_finite():
        raise InvalidArgumentError(f"{field} must be finite")
    return result


def quantum(places: Optional[int] = None) -> Decimal:
    """Smallest persisted unit, e.g. Decimal('0.01') for two places"""
    places = settings.FEE_MONEY_DECIMAL_PLACES if places is None else places
    return Decimal(1).scaleb(-places)


def round_money(value: Decimal, places: Optional[int] = None) -> Decimal:
    """Round with the configured mode; only called right before persisting"""
    try:
        return value.quantize(quantum(places), rounding=settings.rounding)
    except InvalidOperation:
        raise InvalidArgumentError(f"Amount {value} is out of range", {"max_amount": str(MAX_AMOUNT)})


def money_str(value: Decimal) -> str:
    """Canonical string form used inside stored JSON documents"""
    return format(round_money(value), "f")
