# fee_engine/services/fee_computation.py
"""
Monthly fee computation.

For a month and an optional class, resolves each student's effective fee
structure version, prorates it, applies scholarships then charges, and
appends a new ledger version whenever the amounts differ from the latest
one. Ledger rows are only ever inserted.

Each student is its own unit of work: a failure rolls back that student
alone and the batch continues.
"""
import logging
import time
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from fee_engine.core.config import settings
from fee_engine.core.exceptions import ConflictError, FeeEngineError, InvalidArgumentError, NotFoundError
from fee_engine.core.money import MAX_AMOUNT, round_money
from fee_engine.core.periods import format_month, parse_month
from fee_engine.models.class_model import Class
from fee_engine.models.fee import FeeStructureVersion
from fee_engine.models.fee_history import StudentFeeHistory
from fee_engine.models.student import Student
from fee_engine.schemas.fee_breakdown import (
    BreakdownCharge, BreakdownItem, BreakdownScholarship, BreakdownTotals, FeeBreakdown,
)
from fee_engine.schemas.fee_schema import ComputeMonthlyFeesRequest
from fee_engine.services import charges as charge_store
from fee_engine.services import fee_ledger
from fee_engine.services import scholarships as scholarship_store
from fee_engine.services.composition import (
    ChargeLine, ScholarshipTerms, apply_charges, apply_scholarships,
)
from fee_engine.services.fee_structures import resolve_latest_versions
from fee_engine.services.proration import prorate

logger = logging.getLogger(__name__)

Amounts = Tuple[Decimal, Decimal, Decimal, Decimal]


@dataclass(frozen=True)
class ComputeMonthlyFeesResult:
    count: int
    students_evaluated: int = 0
    skipped_no_structure: int = 0
    unchanged: int = 0
    failed: int = 0


@dataclass(frozen=True)
class StructureSnapshot:
    fee_structure_id: UUID
    version_id: UUID
    version: int
    effective_from: date
    items: Tuple[Dict[str, Any], ...]

    @classmethod
    def from_version(cls, version: FeeStructureVersion) -> "StructureSnapshot":
        return cls(
            fee_structure_id=version.fee_structure_id,
            version_id=version.id,
            version=version.version,
            effective_from=version.effective_from,
            items=tuple(version.items),
        )


@dataclass(frozen=True)
class StudentInputs:
    """Everything needed to price one student, read up front and detached from the session"""
    student_id: UUID
    structure: StructureSnapshot
    scholarships: Tuple[ScholarshipTerms, ...]
    charges: Tuple[ChargeLine, ...]


@dataclass(frozen=True)
class ComputedFee:
    amounts: Amounts
    breakdown: Dict[str, Any]


def compute_fee(inputs: StudentInputs, period_month: date, terms_per_year: int) -> ComputedFee:
    """Price one student for one month; pure apart from reading settings"""
    proration = prorate(inputs.structure.items, period_month, terms_per_year)
    scholarship_result = apply_scholarships(proration.base, inputs.scholarships, period_month)
    charge_result = apply_charges(inputs.charges, period_month)

    base = round_money(proration.base)
    scholarship = round_money(scholarship_result.deduction)
    extra = round_money(charge_result.total)
    final = base - scholarship + extra
    if max(abs(base), scholarship, extra, abs(final)) > MAX_AMOUNT:
        raise InvalidArgumentError(
            f"Fee for student {inputs.student_id} exceeds the storable amount",
            {"final": str(final), "max_amount": str(MAX_AMOUNT)},
        )

    breakdown = FeeBreakdown(
        period_month=period_month,
        fee_structure_id=inputs.structure.fee_structure_id,
        fee_structure_version=inputs.structure.version,
        effective_from=inputs.structure.effective_from,
        terms_per_year=terms_per_year,
        items=[
            BreakdownItem(
                category=item.category,
                label=item.label,
                frequency=item.frequency,
                amount=item.amount,
                monthly_portion=round_money(item.monthly_portion),
                is_optional=item.is_optional,
            )
            for item in proration.items
        ],
        scholarships=[
            BreakdownScholarship(
                assignment_id=applied.terms.assignment_id,
                scholarship_id=applied.terms.scholarship_id,
                name=applied.terms.name,
                type=applied.terms.type,
                value_type=applied.terms.value_type,
                value=applied.terms.value,
                deduction=round_money(applied.deduction),
            )
            for applied in scholarship_result.applied
        ],
        charges=[
            BreakdownCharge(
                assignment_id=line.assignment_id,
                charge_id=line.charge_id,
                name=line.name,
                type=line.type,
                amount=round_money(line.amount),
                reason=line.reason,
            )
            for line in charge_result.applied
        ],
        totals=BreakdownTotals(base=base, scholarship_deduction=scholarship, charges=extra, final=final),
    )
    return ComputedFee(amounts=(base, scholarship, extra, final), breakdown=breakdown.to_document())


def _same_amounts(row: StudentFeeHistory, amounts: Amounts) -> bool:
    return tuple(round_money(Decimal(value)) for value in row.amounts()) == amounts


class FeeComputationService:
    """Sole writer of the student fee ledger"""

    def __init__(self, db: Session):
        self.db = db
        self.terms_per_year = settings.FEE_TERMS_PER_YEAR
        self.max_attempts = settings.FEE_LEDGER_APPEND_RETRIES

    def compute_for_month(self, request: ComputeMonthlyFeesRequest) -> ComputeMonthlyFeesResult:
        started = time.time()
        period_month = parse_month(request.month)

        if request.class_id is not None:
            if not self.db.execute(select(Class.id).where(Class.id == request.class_id)).first():
                raise NotFoundError("Class", request.class_id)

        students = self._students_in_scope(request.class_id)
        inputs, skipped, unreadable = self._load_inputs(students, period_month)
        # inputs are plain values now; end the read transaction before the per-student writes
        self.db.rollback()

        appended = unchanged = 0
        failed = len(unreadable)
        for student_id, error in unreadable:
            logger.error(f"Fee computation failed for student {student_id} in {format_month(period_month)}: {error}")

        for student_inputs in inputs:
            try:
                fee = compute_fee(student_inputs, period_month, self.terms_per_year)
                if self._append(student_inputs, fee, period_month, request):
                    appended += 1
                else:
                    unchanged += 1
            except (FeeEngineError, SQLAlchemyError) as e:
                self.db.rollback()
                failed += 1
                logger.error(
                    f"Fee computation failed for student {student_inputs.student_id} "
                    f"in {format_month(period_month)}: {e}",
                    exc_info=True,
                )

        duration_ms = (time.time() - started) * 1000
        logger.info(
            f"Computed fees for {format_month(period_month)}"
            f"{f' class {request.class_id}' if request.class_id else ''}: "
            f"{len(students)} students, {appended} appended, {unchanged} unchanged, "
            f"{skipped} without structure, {failed} failed in {duration_ms:.0f}ms"
        )

        return ComputeMonthlyFeesResult(
            count=appended,
            students_evaluated=len(students),
            skipped_no_structure=skipped,
            unchanged=unchanged,
            failed=failed,
        )

    def _students_in_scope(self, class_id: Optional[UUID]) -> List[Tuple[UUID, Optional[UUID]]]:
        query = select(Student.id, Student.class_id).order_by(Student.admission_no)
        if class_id is not None:
            query = query.where(Student.class_id == class_id)
        return [(row.id, row.class_id) for row in self.db.execute(query).all()]

    def _load_inputs(self, students, period_month: date) -> Tuple[List[StudentInputs], int, List[Tuple[UUID, FeeEngineError]]]:
        """Detached inputs per priced student, the skipped count, and students whose structure cannot be read"""
        class_ids = {class_id for _, class_id in students if class_id is not None}
        versions = resolve_latest_versions(self.db, class_ids, period_month)

        priced = [(student_id, versions[class_id]) for student_id, class_id in students if class_id in versions]
        skipped = len(students) - len(priced)
        if skipped:
            logger.debug(f"{skipped} students have no fee structure effective for {format_month(period_month)}")

        student_ids = [student_id for student_id, _ in priced]
        scholarships = scholarship_store.active_scholarships_by_student(self.db, student_ids, period_month)
        charges = charge_store.charges_by_student(self.db, student_ids, period_month)

        snapshots: Dict[UUID, Any] = {}
        inputs = []
        unreadable = []
        for student_id, version in priced:
            if version.id not in snapshots:
                try:
                    snapshots[version.id] = StructureSnapshot.from_version(version)
                except FeeEngineError as e:
                    snapshots[version.id] = e
            if isinstance(snapshots[version.id], FeeEngineError):
                unreadable.append((student_id, snapshots[version.id]))
                continue
            inputs.append(StudentInputs(
                student_id=student_id,
                structure=snapshots[version.id],
                scholarships=tuple(ScholarshipTerms.from_assignment(a) for a in scholarships.get(student_id, [])),
                charges=tuple(ChargeLine.from_assignment(a) for a in charges.get(student_id, [])),
            ))
        return inputs, skipped, unreadable

    def _lock(self, student_id: UUID, period_month: date) -> None:
        """Serialize read-compare-append per (student, month); released at commit or rollback"""
        if self.db.get_bind().dialect.name == "postgresql":
            self.db.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                {"key": f"{student_id}:{format_month(period_month)}"},
            )

    def _append(self, inputs: StudentInputs, fee: ComputedFee, period_month: date, request: ComputeMonthlyFeesRequest) -> bool:
        """Append a version if needed; True when a row was written"""
        for attempt in range(1, self.max_attempts + 1):
            try:
                self._lock(inputs.student_id, period_month)
                latest = fee_ledger.get_latest(self.db, inputs.student_id, period_month)

                if latest is not None and not request.include_existing and _same_amounts(latest, fee.amounts):
                    self.db.rollback()
                    return False

                base, scholarship, extra, final = fee.amounts
                version = (latest.version if latest else 0) + 1
                row = StudentFeeHistory(
                    student_id=inputs.student_id,
                    period_month=period_month,
                    version=version,
                    fee_structure_id=inputs.structure.fee_structure_id,
                    fee_structure_version_id=inputs.structure.version_id,
                    base_amount=base,
                    scholarship_amount=scholarship,
                    extra_charges_amount=extra,
                    final_payable=final,
                    breakdown=fee.breakdown,
                    created_by_id=request.actor_id,
                )
                self.db.add(row)
                self.db.commit()
                logger.debug(
                    f"Appended version {version} for student {inputs.student_id} "
                    f"in {format_month(period_month)}: final {final}"
                )
                return True
            except IntegrityError:
                self.db.rollback()
                logger.warning(
                    f"Concurrent append for student {inputs.student_id} in {format_month(period_month)}, "
                    f"attempt {attempt}/{self.max_attempts}"
                )

        raise ConflictError(
            f"Could not append fee version after {self.max_attempts} attempts",
            {"student_id": str(inputs.student_id), "month": format_month(period_month)},
        )
