# fee_engine/schemas/fee_breakdown.py
"""
Frozen breakdown document stored on every ledger row.

The document is self-contained: it carries the names and values of every
item, scholarship and charge as they were at computation time, so a
statement can be rebuilt without reading any other table. It is versioned
through ``schema_version``; readers ignore fields they do not know.
"""
from pydantic import BaseModel, ValidationError
from typing import Any, Dict, List, Literal, Optional
from datetime import date
from decimal import Decimal
from uuid import UUID

from fee_engine.core.exceptions import InvalidArgumentError

BREAKDOWN_SCHEMA_VERSION = 1


class _Frozen(BaseModel):
    class Config:
        frozen = True
        extra = "ignore"


class BreakdownItem(_Frozen):
    category: str
    label: str
    frequency: str
    amount: Decimal
    monthly_portion: Decimal
    is_optional: bool = False


class BreakdownScholarship(_Frozen):
    assignment_id: UUID
    scholarship_id: UUID
    name: str
    type: str
    value_type: Literal["PERCENTAGE", "FIXED"]
    value: Decimal
    deduction: Decimal


class BreakdownCharge(_Frozen):
    assignment_id: UUID
    charge_id: UUID
    name: str
    type: str
    amount: Decimal
    reason: Optional[str] = None


class BreakdownTotals(_Frozen):
    base: Decimal
    scholarship_deduction: Decimal
    charges: Decimal
    final: Decimal


class FeeBreakdown(_Frozen):
    schema_version: Literal[1] = BREAKDOWN_SCHEMA_VERSION
    period_month: date
    fee_structure_id: UUID
    fee_structure_version: int
    effective_from: date
    terms_per_year: int
    items: List[BreakdownItem] = []
    scholarships: List[BreakdownScholarship] = []
    charges: List[BreakdownCharge] = []
    totals: BreakdownTotals

    def to_document(self) -> Dict[str, Any]:
        """JSON-safe dict; Decimals become strings, UUIDs and dates ISO strings"""
        return self.model_dump(mode="json")


_PARSERS = {
    1: FeeBreakdown,
}


def parse_breakdown(document: Dict[str, Any]) -> FeeBreakdown:
    """Parse a stored breakdown of any known schema version"""
    if not isinstance(document, dict):
        raise InvalidArgumentError("Breakdown document must be an object")

    schema_version = document.get("schema_version", BREAKDOWN_SCHEMA_VERSION)
    parser = _PARSERS.get(schema_version)
    if parser is None:
        raise InvalidArgumentError(
            f"Unsupported breakdown schema version {schema_version}",
            {"supported": sorted(_PARSERS)},
        )
    try:
        return parser.model_validate(document)
    except ValidationError as e:
        raise InvalidArgumentError("Malformed breakdown document", {"errors": e.errors(include_url=False, include_context=False, include_input=False)})
