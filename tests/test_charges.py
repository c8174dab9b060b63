import uuid
from datetime import date
from decimal import Decimal

import pytest

from fee_engine.core.exceptions import ConflictError, InvalidArgumentError, NotFoundError
from fee_engine.schemas.charge_schema import BulkApplyChargeRequest
from fee_engine.services import charges


def test_assignment_amount_defaults_to_definition_value(factory):
    student = factory.student(factory.class_())
    charge = factory.charge("25.00")

    assignment = factory.apply_charge(student, charge, "2024-03-17")

    assert assignment.amount == Decimal("25.00")
    assert assignment.applied_month == date(2024, 3, 1)


def test_explicit_amount_overrides_definition(factory):
    student = factory.student(factory.class_())
    charge = factory.charge("25.00")

    assignment = factory.apply_charge(student, charge, "2024-03", amount="40.00")

    assert assignment.amount == Decimal("40.00")


def test_same_charge_twice_in_a_month_conflicts(factory):
    student = factory.student(factory.class_())
    charge = factory.charge()
    factory.apply_charge(student, charge, "2024-03")

    with pytest.raises(ConflictError):
        factory.apply_charge(student, charge, "2024-03-20")

    # a different month is fine
    factory.apply_charge(student, charge, "2024-04")


def test_removed_assignment_can_be_reapplied(db, factory):
    student = factory.student(factory.class_())
    charge = factory.charge()
    assignment = factory.apply_charge(student, charge, "2024-03")

    charges.remove_assignment(db, assignment.id)
    factory.apply_charge(student, charge, "2024-03")

    assert len(charges.get_student_charges(db, student.id, date(2024, 3, 1))) == 1
    with pytest.raises(NotFoundError):
        charges.remove_assignment(db, assignment.id)


def test_charges_for_month(db, factory):
    first = factory.student(factory.class_())
    second = factory.student(factory.class_("Grade 5"))
    fine = factory.charge("10.00", name="Fine")
    bus = factory.charge("30.00", name="Bus", type="TRANSPORT")
    factory.apply_charge(first, fine, "2024-03")
    factory.apply_charge(first, bus, "2024-03")
    factory.apply_charge(first, bus, "2024-04")
    factory.apply_charge(second, bus, "2024-03")

    assert sorted(a.amount for a in charges.charges_for(db, first.id, date(2024, 3, 1))) == [Decimal("10.00"), Decimal("30.00")]

    grouped = charges.charges_by_student(db, [first.id, second.id], date(2024, 3, 1))
    assert len(grouped[first.id]) == 2
    assert len(grouped[second.id]) == 1


def test_deactivated_charge_is_not_billed(db, factory):
    student = factory.student(factory.class_())
    charge = factory.charge()
    factory.apply_charge(student, charge, "2024-03")

    charges.set_charge_active(db, charge.id, False)

    assert charges.charges_for(db, student.id, date(2024, 3, 1)) == []
    with pytest.raises(InvalidArgumentError):
        factory.apply_charge(student, charge, "2024-04")


def test_unknown_student_or_charge(factory):
    charge = factory.charge()
    student = factory.student(factory.class_())

    class Missing:
        id = uuid.uuid4()

    with pytest.raises(NotFoundError):
        factory.apply_charge(Missing, charge)
    with pytest.raises(NotFoundError):
        factory.apply_charge(student, Missing)


def test_bulk_apply_reports_per_student_errors(db, factory):
    klass = factory.class_()
    first = factory.student(klass)
    second = factory.student(klass)
    charge = factory.charge("15.00")
    factory.apply_charge(second, charge, "2024-03")
    missing = uuid.uuid4()

    result = charges.bulk_apply(db, charge.id, BulkApplyChargeRequest(
        student_ids=[first.id, second.id, missing],
        applied_month="2024-03",
        reason="Sports day kit",
    ))

    assert result.success_count == 1
    assert result.successful[0].student_id == first.id
    assert result.error_count == 2
    assert {error.student_id for error in result.errors} == {second.id, missing}
