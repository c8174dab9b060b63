import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from fee_engine.core.config import settings
from fee_engine.core.exceptions import InvalidArgumentError, NotFoundError
from fee_engine.models import FeeStructure, FeeStructureVersion, StudentFeeHistory
from fee_engine.schemas.fee_breakdown import parse_breakdown
from fee_engine.services import fee_ledger

MONTHLY_100 = {"category": "Tuition", "label": "Tuition", "amount": "100.00", "frequency": "MONTHLY"}
ANNUAL_1200 = {"category": "Activities", "label": "Activity fee", "amount": "1200.00", "frequency": "ANNUAL"}
MONTHLY_1000 = {"category": "Tuition", "label": "Tuition", "amount": "1000.00", "frequency": "MONTHLY"}


def ledger_rows(db, student, month):
    return fee_ledger.get_month_versions(db, student.id, month)


def legacy_structure(db, klass, snapshot):
    """A structure version written straight to the table, bypassing item validation"""
    structure = FeeStructure(class_id=klass.id, academic_year="2024", name="Legacy", status="ACTIVE")
    db.add(structure)
    db.add(FeeStructureVersion(
        structure=structure,
        version=1,
        effective_from=date(2024, 1, 1),
        snapshot=snapshot,
        total_annual=Decimal("0"),
    ))
    db.commit()


def test_base_is_prorated_from_structure(db, factory, compute):
    klass = factory.class_()
    student = factory.student(klass)
    factory.structure(klass, [MONTHLY_100, ANNUAL_1200])

    result = compute("2024-03")

    assert result.count == 1
    row = fee_ledger.get_latest(db, student.id, "2024-03")
    assert row.version == 1
    assert row.period_month == date(2024, 3, 1)
    assert row.base_amount == Decimal("200.00")
    assert row.scholarship_amount == Decimal("0.00")
    assert row.extra_charges_amount == Decimal("0.00")
    assert row.final_payable == Decimal("200.00")


def test_computation_is_idempotent(db, factory, compute):
    klass = factory.class_()
    student = factory.student(klass)
    factory.structure(klass, [MONTHLY_100])

    first = compute("2024-03")
    second = compute("2024-03")

    assert first.count == 1
    assert second.count == 0
    assert second.unchanged == 1
    assert len(ledger_rows(db, student, "2024-03")) == 1


def test_include_existing_appends_even_when_unchanged(db, factory, compute):
    klass = factory.class_()
    student = factory.student(klass)
    factory.structure(klass, [MONTHLY_100])

    compute("2024-03")
    result = compute("2024-03", include_existing=True)

    assert result.count == 1
    versions = ledger_rows(db, student, "2024-03")
    assert [v.version for v in versions] == [2, 1]
    assert versions[0].amounts() == versions[1].amounts()


def test_versions_are_monotonic_and_earlier_rows_untouched(db, factory, compute):
    klass = factory.class_()
    student = factory.student(klass)
    structure = factory.structure(klass, [MONTHLY_100])
    scholarship = factory.scholarship("FIXED", "10.00")
    charge = factory.charge("5.00")

    compute("2024-03")
    original = fee_ledger.get_latest(db, student.id, "2024-03")
    original_id, original_amounts, original_breakdown = original.id, original.amounts(), original.breakdown

    factory.assign_scholarship(student, scholarship)
    compute("2024-03")
    factory.apply_charge(student, charge, "2024-03")
    compute("2024-03")
    factory.revise(structure, [MONTHLY_1000], effective_from=date(2024, 2, 1))
    compute("2024-03")

    versions = ledger_rows(db, student, "2024-03")
    assert [v.version for v in versions] == [4, 3, 2, 1]

    db.expire_all()
    first = db.get(StudentFeeHistory, original_id)
    assert first.amounts() == original_amounts
    assert first.breakdown == original_breakdown


def test_student_without_structure_is_skipped(db, factory, compute):
    with_structure = factory.class_("Grade 4")
    without_structure = factory.class_("Grade 5")
    priced = factory.student(with_structure)
    skipped = factory.student(without_structure)
    unassigned = factory.student(None)
    factory.structure(with_structure, [MONTHLY_100])

    result = compute("2024-03")

    assert result.count == 1
    assert result.students_evaluated == 3
    assert result.skipped_no_structure == 2
    assert result.failed == 0
    assert fee_ledger.get_latest(db, priced.id, "2024-03") is not None
    assert fee_ledger.get_latest(db, skipped.id, "2024-03") is None
    assert fee_ledger.get_latest(db, unassigned.id, "2024-03") is None


def test_structure_effective_after_month_is_not_used(db, factory, compute):
    klass = factory.class_()
    factory.student(klass)
    factory.structure(klass, [MONTHLY_100], effective_from=date(2024, 4, 1))

    result = compute("2024-03")

    assert result.count == 0
    assert result.skipped_no_structure == 1


def test_latest_effective_version_is_used(db, factory, compute):
    klass = factory.class_()
    student = factory.student(klass)
    structure = factory.structure(klass, [MONTHLY_100], effective_from=date(2024, 1, 1))
    factory.revise(structure, [MONTHLY_1000], effective_from=date(2024, 5, 1))

    compute("2024-04")
    compute("2024-05")

    assert fee_ledger.get_latest(db, student.id, "2024-04").base_amount == Decimal("100.00")
    may = fee_ledger.get_latest(db, student.id, "2024-05")
    assert may.base_amount == Decimal("1000.00")
    assert parse_breakdown(may.breakdown).fee_structure_version == 2


def test_scholarships_are_additive_in_ledger(db, factory, compute):
    klass = factory.class_()
    student = factory.student(klass)
    factory.structure(klass, [MONTHLY_1000])
    factory.assign_scholarship(student, factory.scholarship("FIXED", "50.00", name="Sports award", type="SPORTS"))
    factory.assign_scholarship(student, factory.scholarship("PERCENTAGE", "10.00", name="Merit award"))

    compute("2024-03")

    row = fee_ledger.get_latest(db, student.id, "2024-03")
    assert row.scholarship_amount == Decimal("150.00")
    assert row.final_payable == Decimal("850.00")
    breakdown = parse_breakdown(row.breakdown)
    assert sorted(s.deduction for s in breakdown.scholarships) == [Decimal("50.00"), Decimal("100.00")]


def test_scholarship_window_is_respected(db, factory, compute):
    klass = factory.class_()
    student = factory.student(klass)
    factory.structure(klass, [MONTHLY_1000])
    february_only = factory.scholarship("FIXED", "100.00")
    factory.assign_scholarship(student, february_only, effective_from=date(2024, 2, 1), expires_at=date(2024, 2, 29))

    for month in ("2024-01", "2024-02", "2024-03"):
        compute(month)

    assert fee_ledger.get_latest(db, student.id, "2024-01").scholarship_amount == Decimal("0.00")
    assert fee_ledger.get_latest(db, student.id, "2024-02").scholarship_amount == Decimal("100.00")
    assert fee_ledger.get_latest(db, student.id, "2024-03").scholarship_amount == Decimal("0.00")


def test_new_charge_only_changes_charges_and_final(db, factory, compute):
    klass = factory.class_()
    student = factory.student(klass)
    factory.structure(klass, [MONTHLY_100, ANNUAL_1200])
    factory.assign_scholarship(student, factory.scholarship("PERCENTAGE", "10.00"))

    compute("2024-03")
    before = fee_ledger.get_latest(db, student.id, "2024-03")
    before_amounts = before.amounts()

    factory.apply_charge(student, factory.charge("25.00"), "2024-03", reason="Late return")
    result = compute("2024-03")

    after = fee_ledger.get_latest(db, student.id, "2024-03")
    assert result.count == 1
    assert after.version == 2
    assert after.base_amount == before_amounts[0]
    assert after.scholarship_amount == before_amounts[1]
    assert after.extra_charges_amount == before_amounts[2] + Decimal("25.00")
    assert after.final_payable == before_amounts[3] + Decimal("25.00")

    charge = parse_breakdown(after.breakdown).charges[0]
    assert charge.amount == Decimal("25.00")
    assert charge.reason == "Late return"


def test_charge_for_another_month_is_ignored(db, factory, compute):
    klass = factory.class_()
    student = factory.student(klass)
    factory.structure(klass, [MONTHLY_100])
    factory.apply_charge(student, factory.charge("25.00"), "2024-04")

    compute("2024-03")

    assert fee_ledger.get_latest(db, student.id, "2024-03").extra_charges_amount == Decimal("0.00")


def test_final_payable_may_go_negative(db, factory, compute):
    klass = factory.class_()
    student = factory.student(klass)
    factory.structure(klass, [MONTHLY_100])
    factory.assign_scholarship(student, factory.scholarship("FIXED", "150.00"))

    compute("2024-03")

    assert fee_ledger.get_latest(db, student.id, "2024-03").final_payable == Decimal("-50.00")


def test_rounding_happens_once_per_component(db, factory, compute):
    klass = factory.class_()
    student = factory.student(klass)
    # 1000 / 12 = 83.333..., 10% of that = 8.333...
    factory.structure(klass, [{"label": "Library", "amount": "1000.00", "frequency": "ANNUAL"}])
    factory.assign_scholarship(student, factory.scholarship("PERCENTAGE", "10.00"))

    compute("2024-03")

    row = fee_ledger.get_latest(db, student.id, "2024-03")
    assert row.base_amount == Decimal("83.33")
    assert row.scholarship_amount == Decimal("8.33")
    assert row.final_payable == Decimal("75.00")


def test_class_scope(db, factory, compute):
    grade_4 = factory.class_("Grade 4")
    grade_5 = factory.class_("Grade 5")
    in_scope = factory.student(grade_4)
    out_of_scope = factory.student(grade_5)
    factory.structure(grade_4, [MONTHLY_100])
    factory.structure(grade_5, [MONTHLY_100])

    result = compute("2024-03", class_id=grade_4.id)

    assert result.students_evaluated == 1
    assert fee_ledger.get_latest(db, in_scope.id, "2024-03") is not None
    assert fee_ledger.get_latest(db, out_of_scope.id, "2024-03") is None


def test_invalid_month_fails_before_any_write(db, factory, compute):
    klass = factory.class_()
    factory.student(klass)
    factory.structure(klass, [MONTHLY_100])

    with pytest.raises(InvalidArgumentError):
        compute("2024-13")

    assert db.execute(select(StudentFeeHistory)).first() is None


def test_unknown_class_is_not_found(compute):
    with pytest.raises(NotFoundError):
        compute("2024-03", class_id=uuid.uuid4())


def test_one_student_failure_does_not_stop_the_batch(db, factory, compute):
    good_class = factory.class_("Grade 4")
    bad_class = factory.class_("Grade 5")
    good = factory.student(good_class)
    bad = factory.student(bad_class)
    factory.structure(good_class, [MONTHLY_100])
    legacy_structure(db, bad_class, {"items": [{"label": "Bus", "amount": "10", "frequency": "WEEKLY"}]})

    result = compute("2024-03")

    assert result.count == 1
    assert result.failed == 1
    assert fee_ledger.get_latest(db, good.id, "2024-03") is not None
    assert fee_ledger.get_latest(db, bad.id, "2024-03") is None


def test_out_of_range_stored_amount_fails_only_that_student(db, factory, compute):
    good_class = factory.class_("Grade 4")
    bad_class = factory.class_("Grade 5")
    good = factory.student(good_class)
    bad = factory.student(bad_class)
    factory.structure(good_class, [MONTHLY_100])
    legacy_structure(db, bad_class, {"items": [{"label": "Bus", "amount": "1e30", "frequency": "MONTHLY"}]})

    result = compute("2024-03")

    assert result.count == 1
    assert result.failed == 1
    assert fee_ledger.get_latest(db, good.id, "2024-03").final_payable == Decimal("100.00")
    assert fee_ledger.get_latest(db, bad.id, "2024-03") is None


@pytest.mark.parametrize("snapshot", [["not", "a", "dict"], {"items": 5}])
def test_malformed_snapshot_fails_only_its_students(db, factory, compute, snapshot):
    good_class = factory.class_("Grade 4")
    bad_class = factory.class_("Grade 5")
    factory.student(good_class)
    factory.student(bad_class)
    factory.student(bad_class)
    factory.structure(good_class, [MONTHLY_100])
    legacy_structure(db, bad_class, snapshot)

    result = compute("2024-03")

    assert result.students_evaluated == 3
    assert result.count == 1
    assert result.failed == 2


def test_stale_read_is_retried_with_the_next_version(db, factory, compute, monkeypatch):
    klass = factory.class_()
    student = factory.student(klass)
    factory.structure(klass, [MONTHLY_100])
    compute("2024-03")
    factory.apply_charge(student, factory.charge("5.00"), "2024-03")

    # the first read misses version 1, as if another writer had not committed yet
    real_get_latest = fee_ledger.get_latest
    calls = []

    def stale_once(db, student_id, month):
        calls.append(student_id)
        if len(calls) == 1:
            return None
        return real_get_latest(db, student_id, month)

    monkeypatch.setattr(fee_ledger, "get_latest", stale_once)
    result = compute("2024-03")
    monkeypatch.undo()

    assert result.count == 1
    assert result.failed == 0
    assert len(calls) == 2
    versions = ledger_rows(db, student, "2024-03")
    assert [v.version for v in versions] == [2, 1]
    assert versions[0].extra_charges_amount == Decimal("5.00")


def test_append_gives_up_after_repeated_conflicts(db, factory, compute, monkeypatch):
    klass = factory.class_()
    student = factory.student(klass)
    factory.structure(klass, [MONTHLY_100])
    compute("2024-03")
    factory.apply_charge(student, factory.charge("5.00"), "2024-03")

    calls = []

    def always_stale(db, student_id, month):
        calls.append(student_id)
        return None

    monkeypatch.setattr(settings, "FEE_LEDGER_APPEND_RETRIES", 2)
    monkeypatch.setattr(fee_ledger, "get_latest", always_stale)
    result = compute("2024-03")
    monkeypatch.undo()

    assert result.count == 0
    assert result.failed == 1
    assert len(calls) == 2
    assert [v.version for v in ledger_rows(db, student, "2024-03")] == [1]


def test_breakdown_is_self_contained(db, factory, compute):
    klass = factory.class_()
    student = factory.student(klass)
    structure = factory.structure(klass, [MONTHLY_100, ANNUAL_1200])
    scholarship = factory.scholarship("FIXED", "20.00", name="Bursary", type="NEED_BASED")
    factory.assign_scholarship(student, scholarship)

    compute("2024-03")
    row = fee_ledger.get_latest(db, student.id, "2024-03")
    breakdown = parse_breakdown(row.breakdown)

    assert breakdown.schema_version == 1
    assert breakdown.fee_structure_id == structure.id
    assert breakdown.fee_structure_version == 1
    assert breakdown.terms_per_year == 3
    assert [item.label for item in breakdown.items] == ["Tuition", "Activity fee"]
    assert breakdown.scholarships[0].name == "Bursary"
    assert breakdown.totals.final == row.final_payable
    # money is stored as strings inside the document
    assert row.breakdown["totals"]["final"] == "180.00"
    assert row.fee_structure_version_id is not None
