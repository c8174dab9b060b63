import uuid
from datetime import date, datetime
from decimal import Decimal

from fee_engine.services.composition import (
    ChargeLine, ScholarshipTerms, apply_charges, apply_scholarships,
)

MARCH = date(2024, 3, 1)


def terms(value_type, value, effective_from=date(2024, 1, 1), expires_at=None, is_active=True):
    return ScholarshipTerms(
        assignment_id=uuid.uuid4(),
        scholarship_id=uuid.uuid4(),
        name=f"{value_type} {value}",
        type="MERIT",
        value_type=value_type,
        value=Decimal(value),
        effective_from=effective_from,
        expires_at=expires_at,
        is_active=is_active,
    )


def line(amount, applied_month=MARCH, is_active=True, deleted_at=None):
    return ChargeLine(
        assignment_id=uuid.uuid4(),
        charge_id=uuid.uuid4(),
        name="Library fine",
        type="FINE",
        applied_month=applied_month,
        amount=Decimal(amount),
        reason=None,
        is_active=is_active,
        deleted_at=deleted_at,
    )


def test_scholarships_are_additive():
    result = apply_scholarships(Decimal("1000"), [terms("FIXED", "50"), terms("PERCENTAGE", "10")], MARCH)

    assert result.deduction == Decimal("150")
    assert [applied.deduction for applied in result.applied] == [Decimal("50"), Decimal("100")]


def test_deduction_is_not_capped_at_base():
    result = apply_scholarships(Decimal("100"), [terms("FIXED", "80"), terms("PERCENTAGE", "50")], MARCH)
    assert result.deduction == Decimal("130")


def test_scholarships_outside_window_or_inactive_are_ignored():
    result = apply_scholarships(Decimal("1000"), [
        terms("FIXED", "10", effective_from=date(2024, 4, 1)),
        terms("FIXED", "20", expires_at=date(2024, 2, 29)),
        terms("FIXED", "30", is_active=False),
        terms("FIXED", "40", effective_from=date(2024, 3, 31), expires_at=date(2024, 3, 31)),
    ], MARCH)

    assert result.deduction == Decimal("40")
    assert len(result.applied) == 1


def test_charges_only_count_in_their_month():
    result = apply_charges([
        line("25"),
        line("15.50"),
        line("99", applied_month=date(2024, 4, 1)),
        line("7", deleted_at=datetime(2024, 3, 5)),
        line("3", is_active=False),
    ], MARCH)

    assert result.total == Decimal("40.50")
    assert len(result.applied) == 2


def test_no_scholarships_or_charges():
    assert apply_scholarships(Decimal("200"), [], MARCH).deduction == Decimal("0")
    assert apply_charges([], MARCH).total == Decimal("0")
