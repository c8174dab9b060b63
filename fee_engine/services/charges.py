# fee_engine/services/charges.py
import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from fee_engine.core.exceptions import ConflictError, InvalidArgumentError, NotFoundError
from fee_engine.core.periods import normalize_month
from fee_engine.models.charge import ChargeAssignment, ChargeDefinition
from fee_engine.models.student import Student
from fee_engine.schemas.charge_schema import (
    BulkApplyChargeRequest, BulkApplyChargeResult, BulkApplyError,
    ChargeAssignmentCreate, ChargeAssignmentOut, ChargeCreate,
)

logger = logging.getLogger(__name__)


def _month_query(period_month: date):
    return (
        select(ChargeAssignment)
        .join(ChargeDefinition, ChargeAssignment.charge_id == ChargeDefinition.id)
        .options(selectinload(ChargeAssignment.charge))
        .where(
            ChargeDefinition.is_active.is_(True),
            ChargeAssignment.deleted_at.is_(None),
            ChargeAssignment.applied_month == period_month,
        )
        .order_by(ChargeAssignment.created_at)
    )


def charges_for(db: Session, student_id: UUID, period_month: date) -> List[ChargeAssignment]:
    """Live assignments of active charges applied to exactly this month"""
    return list(db.execute(
        _month_query(period_month).where(ChargeAssignment.student_id == student_id)
    ).scalars().all())


def charges_by_student(db: Session, student_ids: Iterable[UUID], period_month: date) -> Dict[UUID, List[ChargeAssignment]]:
    student_ids = list(set(student_ids))
    grouped: Dict[UUID, List[ChargeAssignment]] = defaultdict(list)
    if not student_ids:
        return grouped

    rows = db.execute(
        _month_query(period_month).where(ChargeAssignment.student_id.in_(student_ids))
    ).scalars().all()
    for assignment in rows:
        grouped[assignment.student_id].append(assignment)
    return grouped


def get_charge(db: Session, charge_id: UUID) -> ChargeDefinition:
    charge = db.execute(
        select(ChargeDefinition).where(ChargeDefinition.id == charge_id)
    ).scalar_one_or_none()
    if not charge:
        raise NotFoundError("Charge", charge_id)
    return charge


def list_charges(db: Session, active_only: bool = False) -> List[ChargeDefinition]:
    query = select(ChargeDefinition).order_by(ChargeDefinition.name)
    if active_only:
        query = query.where(ChargeDefinition.is_active.is_(True))
    return list(db.execute(query).scalars().all())


def create_charge(db: Session, data: ChargeCreate) -> ChargeDefinition:
    charge = ChargeDefinition(
        name=data.name,
        type=data.type,
        category=data.category,
        description=data.description,
        value_type=data.value_type,
        value=data.value,
        is_recurring=data.is_recurring,
    )
    db.add(charge)
    db.commit()
    db.refresh(charge)
    logger.info(f"Created charge '{charge.name}' ({charge.type} {charge.value})")
    return charge


def set_charge_active(db: Session, charge_id: UUID, is_active: bool) -> ChargeDefinition:
    charge = get_charge(db, charge_id)
    charge.is_active = is_active
    db.commit()
    db.refresh(charge)
    return charge


def apply_to_student(db: Session, data: ChargeAssignmentCreate) -> ChargeAssignment:
    """
    Apply a charge to a student for one month.

    The amount is materialized on the assignment: an explicit override wins,
    otherwise the definition's value is copied. Later edits to the
    definition do not change assignments already made.
    """
    applied_month = normalize_month(data.applied_month)

    if not db.execute(select(Student.id).where(Student.id == data.student_id)).first():
        raise NotFoundError("Student", data.student_id)
    charge = get_charge(db, data.charge_id)
    if not charge.is_active:
        raise InvalidArgumentError(f"Charge '{charge.name}' is not active")

    amount = data.amount if data.amount is not None else charge.value
    if charge.value_type == "PERCENTAGE" and data.amount is None:
        raise InvalidArgumentError(f"Charge '{charge.name}' is a percentage; an explicit amount is required")

    existing = db.execute(
        select(ChargeAssignment.id).where(
            ChargeAssignment.charge_id == data.charge_id,
            ChargeAssignment.student_id == data.student_id,
            ChargeAssignment.applied_month == applied_month,
            ChargeAssignment.deleted_at.is_(None),
        )
    ).first()
    if existing:
        raise ConflictError(
            f"Charge '{charge.name}' is already applied to this student for {applied_month:%Y-%m}",
            {"assignment_id": str(existing[0])},
        )

    assignment = ChargeAssignment(
        charge_id=data.charge_id,
        student_id=data.student_id,
        applied_month=applied_month,
        amount=amount,
        reason=data.reason,
    )
    try:
        db.add(assignment)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        if "uix_charge_assignment_live" in str(e.orig) or "UNIQUE" in str(e.orig).upper():
            raise ConflictError(f"Charge '{charge.name}' is already applied to this student for {applied_month:%Y-%m}")
        raise

    db.refresh(assignment)
    logger.info(f"Applied charge {charge.id} to student {data.student_id} for {applied_month:%Y-%m}: {amount}")
    return assignment


def bulk_apply(db: Session, charge_id: UUID, data: BulkApplyChargeRequest) -> BulkApplyChargeResult:
    """Apply one charge to many students; each student succeeds or fails on its own"""
    get_charge(db, charge_id)
    result = BulkApplyChargeResult()

    for student_id in data.student_ids:
        try:
            assignment = apply_to_student(db, ChargeAssignmentCreate(
                charge_id=charge_id,
                student_id=student_id,
                applied_month=data.applied_month,
                reason=data.reason,
            ))
            result.successful.append(ChargeAssignmentOut.model_validate(assignment))
        except (NotFoundError, ConflictError, InvalidArgumentError) as e:
            result.errors.append(BulkApplyError(student_id=student_id, error=e.message))

    result.success_count = len(result.successful)
    result.error_count = len(result.errors)
    logger.info(f"Bulk applied charge {charge_id}: {result.success_count} applied, {result.error_count} failed")
    return result


def get_student_charges(db: Session, student_id: UUID, applied_month: Optional[date] = None) -> List[ChargeAssignment]:
    query = (
        select(ChargeAssignment)
        .options(selectinload(ChargeAssignment.charge))
        .where(
            ChargeAssignment.student_id == student_id,
            ChargeAssignment.deleted_at.is_(None),
        )
        .order_by(ChargeAssignment.applied_month.desc(), ChargeAssignment.created_at)
    )
    if applied_month is not None:
        query = query.where(ChargeAssignment.applied_month == applied_month)
    return list(db.execute(query).scalars().all())


def remove_assignment(db: Session, assignment_id: UUID) -> None:
    """Soft delete so breakdowns that referenced the assignment stay resolvable"""
    assignment = db.execute(
        select(ChargeAssignment).where(
            ChargeAssignment.id == assignment_id,
            ChargeAssignment.deleted_at.is_(None),
        )
    ).scalar_one_or_none()
    if not assignment:
        raise NotFoundError("Charge assignment", assignment_id)

    assignment.deleted_at = datetime.utcnow()
    db.commit()
    logger.info(f"Removed charge assignment {assignment_id}")
