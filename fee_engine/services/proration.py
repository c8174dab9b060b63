# fee_engine/services/proration.py
"""
Monthly proration of fee structure snapshots.

Pure functions, no I/O. Every amount stays an exact Decimal; nothing is
rounded here.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Tuple, Union

from pydantic import ValidationError

from fee_engine.core.exceptions import InvalidArgumentError
from fee_engine.core.money import MONTHS_PER_YEAR, ZERO
from fee_engine.schemas.fee_schema import FeeItemSnapshot

DEFAULT_TERMS_PER_YEAR = 3

SnapshotItem = Union[FeeItemSnapshot, Mapping[str, Any]]


@dataclass(frozen=True)
class ProratedItem:
    category: str
    label: str
    frequency: str
    amount: Decimal
    monthly_portion: Decimal
    is_optional: bool = False


@dataclass(frozen=True)
class ProrationResult:
    base: Decimal
    items: Tuple[ProratedItem, ...]


def coerce_items(items: Iterable[SnapshotItem]) -> List[FeeItemSnapshot]:
    """Validate raw snapshot items; malformed data raises InvalidArgumentError"""
    parsed = []
    for index, item in enumerate(items):
        if isinstance(item, FeeItemSnapshot):
            parsed.append(item)
            continue
        try:
            parsed.append(FeeItemSnapshot.model_validate(item))
        except ValidationError as e:
            raise InvalidArgumentError(
                f"Malformed fee item at position {index}",
                {"errors": e.errors(include_url=False, include_context=False, include_input=False)},
            )
    return parsed


def monthly_portion(amount: Decimal, frequency: str, terms_per_year: int = DEFAULT_TERMS_PER_YEAR) -> Decimal:
    """
    Share of one item billed in a single month.

    MONTHLY is billed in full every month. ANNUAL is spread over 12 months.
    TERM is billed once per term, so a year holds terms_per_year of them.
    ONE_TIME is never part of a monthly bill.
    """
    if frequency == "MONTHLY":
        return amount
    if frequency == "ANNUAL":
        return amount / MONTHS_PER_YEAR
    if frequency == "TERM":
        return amount * Decimal(terms_per_year) / MONTHS_PER_YEAR
    if frequency == "ONE_TIME":
        return ZERO
    raise InvalidArgumentError(f"Unknown fee frequency '{frequency}'")


def annual_amount(amount: Decimal, frequency: str, terms_per_year: int = DEFAULT_TERMS_PER_YEAR) -> Decimal:
    """Yearly total of one item, used for a version's total_annual"""
    if frequency == "MONTHLY":
        return amount * MONTHS_PER_YEAR
    if frequency == "TERM":
        return amount * Decimal(terms_per_year)
    if frequency in ("ANNUAL", "ONE_TIME"):
        return amount
    raise InvalidArgumentError(f"Unknown fee frequency '{frequency}'")


def prorate(items: Iterable[SnapshotItem], period_month: date, terms_per_year: int = DEFAULT_TERMS_PER_YEAR) -> ProrationResult:
    """
    Map a snapshot's items to the base amount billed for period_month.

    The month does not change the portions today; it is part of the
    signature so month-dependent billing can be added without touching
    callers.
    """
    base = ZERO
    prorated = []
    for item in coerce_items(items):
        portion = monthly_portion(item.amount, item.frequency, terms_per_year)
        base += portion
        prorated.append(ProratedItem(
            category=item.category,
            label=item.label,
            frequency=item.frequency,
            amount=item.amount,
            monthly_portion=portion,
            is_optional=item.is_optional,
        ))
    return ProrationResult(base=base, items=tuple(prorated))


def total_annual(items: Iterable[SnapshotItem], terms_per_year: int = DEFAULT_TERMS_PER_YEAR) -> Decimal:
    total = ZERO
    for item in coerce_items(items):
        total += annual_amount(item.amount, item.frequency, terms_per_year)
    return total
