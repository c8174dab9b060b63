# fee_engine/services/composition.py
"""
Scholarship and charge composition on top of a prorated base.

Scholarships reduce the structure base; charges are added afterwards and
never interact with scholarships. Both are additive with no capping, so
the total deduction may exceed the base.
"""
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional, Tuple
from uuid import UUID

from fee_engine.core.money import HUNDRED, ZERO
from fee_engine.core.periods import is_active_in_month
from fee_engine.models.charge import ChargeAssignment
from fee_engine.models.scholarship import ScholarshipAssignment


@dataclass(frozen=True)
class ScholarshipTerms:
    """A scholarship assignment joined with its definition, detached from the session"""
    assignment_id: UUID
    scholarship_id: UUID
    name: str
    type: str
    value_type: str
    value: Decimal
    effective_from: date
    expires_at: Optional[date]
    is_active: bool

    @classmethod
    def from_assignment(cls, assignment: ScholarshipAssignment) -> "ScholarshipTerms":
        definition = assignment.scholarship
        return cls(
            assignment_id=assignment.id,
            scholarship_id=assignment.scholarship_id,
            name=definition.name,
            type=definition.type,
            value_type=definition.value_type,
            value=definition.value,
            effective_from=assignment.effective_from,
            expires_at=assignment.expires_at,
            is_active=definition.is_active and assignment.deleted_at is None,
        )


@dataclass(frozen=True)
class ChargeLine:
    """A charge assignment joined with its definition, detached from the session"""
    assignment_id: UUID
    charge_id: UUID
    name: str
    type: str
    applied_month: date
    amount: Decimal
    reason: Optional[str]
    is_active: bool
    deleted_at: Optional[datetime] = None

    @classmethod
    def from_assignment(cls, assignment: ChargeAssignment) -> "ChargeLine":
        definition = assignment.charge
        return cls(
            assignment_id=assignment.id,
            charge_id=assignment.charge_id,
            name=definition.name,
            type=definition.type,
            applied_month=assignment.applied_month,
            amount=assignment.amount,
            reason=assignment.reason,
            is_active=definition.is_active,
            deleted_at=assignment.deleted_at,
        )


@dataclass(frozen=True)
class AppliedScholarship:
    terms: ScholarshipTerms
    deduction: Decimal


@dataclass(frozen=True)
class ScholarshipResult:
    deduction: Decimal
    applied: Tuple[AppliedScholarship, ...]


@dataclass(frozen=True)
class ChargeResult:
    total: Decimal
    applied: Tuple[ChargeLine, ...]


def scholarship_deduction(base: Decimal, terms: ScholarshipTerms) -> Decimal:
    if terms.value_type == "PERCENTAGE":
        return base * terms.value / HUNDRED
    return terms.value


def apply_scholarships(base: Decimal, scholarships: Iterable[ScholarshipTerms], period_month: date) -> ScholarshipResult:
    deduction = ZERO
    applied = []
    for terms in scholarships:
        if not terms.is_active:
            continue
        if not is_active_in_month(terms.effective_from, terms.expires_at, period_month):
            continue
        amount = scholarship_deduction(base, terms)
        deduction += amount
        applied.append(AppliedScholarship(terms=terms, deduction=amount))
    return ScholarshipResult(deduction=deduction, applied=tuple(applied))


def apply_charges(charges: Iterable[ChargeLine], period_month: date) -> ChargeResult:
    total = ZERO
    applied = []
    for line in charges:
        if not line.is_active or line.deleted_at is not None:
            continue
        if line.applied_month != period_month:
            continue
        total += line.amount
        applied.append(line)
    return ChargeResult(total=total, applied=tuple(applied))
