# fee_engine/services/scholarships.py
import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Dict, Iterable, List
from uuid import UUID

from sqlalchemy import select, or_
from sqlalchemy.orm import Session, selectinload

from fee_engine.core.exceptions import ConflictError, InvalidArgumentError, NotFoundError
from fee_engine.core.periods import month_bounds
from fee_engine.models.scholarship import ScholarshipAssignment, ScholarshipDefinition
from fee_engine.models.student import Student
from fee_engine.schemas.scholarship_schema import ScholarshipAssignmentCreate, ScholarshipCreate

logger = logging.getLogger(__name__)


def _active_query(period_month: date):
    start, end = month_bounds(period_month)
    return (
        select(ScholarshipAssignment)
        .join(ScholarshipDefinition, ScholarshipAssignment.scholarship_id == ScholarshipDefinition.id)
        .options(selectinload(ScholarshipAssignment.scholarship))
        .where(
            ScholarshipDefinition.is_active.is_(True),
            ScholarshipAssignment.deleted_at.is_(None),
            ScholarshipAssignment.effective_from <= end,
            or_(ScholarshipAssignment.expires_at.is_(None), ScholarshipAssignment.expires_at >= start),
        )
        .order_by(ScholarshipAssignment.effective_from, ScholarshipAssignment.created_at)
    )


def active_scholarships(db: Session, student_id: UUID, period_month: date) -> List[ScholarshipAssignment]:
    """Assignments whose window overlaps the month, with their definitions loaded"""
    return list(db.execute(
        _active_query(period_month).where(ScholarshipAssignment.student_id == student_id)
    ).scalars().all())


def active_scholarships_by_student(db: Session, student_ids: Iterable[UUID], period_month: date) -> Dict[UUID, List[ScholarshipAssignment]]:
    student_ids = list(set(student_ids))
    grouped: Dict[UUID, List[ScholarshipAssignment]] = defaultdict(list)
    if not student_ids:
        return grouped

    rows = db.execute(
        _active_query(period_month).where(ScholarshipAssignment.student_id.in_(student_ids))
    ).scalars().all()
    for assignment in rows:
        grouped[assignment.student_id].append(assignment)
    return grouped


def get_scholarship(db: Session, scholarship_id: UUID) -> ScholarshipDefinition:
    scholarship = db.execute(
        select(ScholarshipDefinition).where(ScholarshipDefinition.id == scholarship_id)
    ).scalar_one_or_none()
    if not scholarship:
        raise NotFoundError("Scholarship", scholarship_id)
    return scholarship


def list_scholarships(db: Session, active_only: bool = False) -> List[ScholarshipDefinition]:
    query = select(ScholarshipDefinition).order_by(ScholarshipDefinition.name)
    if active_only:
        query = query.where(ScholarshipDefinition.is_active.is_(True))
    return list(db.execute(query).scalars().all())


def create_scholarship(db: Session, data: ScholarshipCreate) -> ScholarshipDefinition:
    scholarship = ScholarshipDefinition(
        name=data.name,
        type=data.type,
        description=data.description,
        value_type=data.value_type,
        value=data.value,
    )
    db.add(scholarship)
    db.commit()
    db.refresh(scholarship)
    logger.info(f"Created scholarship '{scholarship.name}' ({scholarship.value_type} {scholarship.value})")
    return scholarship


def set_scholarship_active(db: Session, scholarship_id: UUID, is_active: bool) -> ScholarshipDefinition:
    """Deactivated scholarships stop applying to future computations; past ledger rows are untouched"""
    scholarship = get_scholarship(db, scholarship_id)
    scholarship.is_active = is_active
    db.commit()
    db.refresh(scholarship)
    return scholarship


def assign_to_student(db: Session, data: ScholarshipAssignmentCreate) -> ScholarshipAssignment:
    if data.expires_at is not None and data.expires_at < data.effective_from:
        raise InvalidArgumentError("expires_at cannot be before effective_from")

    if not db.execute(select(Student.id).where(Student.id == data.student_id)).first():
        raise NotFoundError("Student", data.student_id)
    scholarship = get_scholarship(db, data.scholarship_id)
    if not scholarship.is_active:
        raise InvalidArgumentError(f"Scholarship '{scholarship.name}' is not active")

    # the same scholarship may be reassigned only once the previous window is closed
    open_assignment = db.execute(
        select(ScholarshipAssignment.id).where(
            ScholarshipAssignment.student_id == data.student_id,
            ScholarshipAssignment.scholarship_id == data.scholarship_id,
            ScholarshipAssignment.deleted_at.is_(None),
            or_(
                ScholarshipAssignment.expires_at.is_(None),
                ScholarshipAssignment.expires_at >= data.effective_from,
            ),
        )
    ).first()
    if open_assignment:
        raise ConflictError(
            f"Scholarship '{scholarship.name}' is already assigned to this student",
            {"assignment_id": str(open_assignment[0])},
        )

    assignment = ScholarshipAssignment(
        scholarship_id=data.scholarship_id,
        student_id=data.student_id,
        effective_from=data.effective_from,
        expires_at=data.expires_at,
    )
    db.add(assignment)
    db.commit()
    db.refresh(assignment)
    logger.info(f"Assigned scholarship {scholarship.id} to student {data.student_id} from {data.effective_from}")
    return assignment


def get_student_scholarships(db: Session, student_id: UUID, include_removed: bool = False) -> List[ScholarshipAssignment]:
    query = (
        select(ScholarshipAssignment)
        .options(selectinload(ScholarshipAssignment.scholarship))
        .where(ScholarshipAssignment.student_id == student_id)
        .order_by(ScholarshipAssignment.effective_from.desc())
    )
    if not include_removed:
        query = query.where(ScholarshipAssignment.deleted_at.is_(None))
    return list(db.execute(query).scalars().all())


def remove_assignment(db: Session, assignment_id: UUID) -> None:
    """Soft delete: the row stays so historical breakdowns keep their reference"""
    assignment = db.execute(
        select(ScholarshipAssignment).where(
            ScholarshipAssignment.id == assignment_id,
            ScholarshipAssignment.deleted_at.is_(None),
        )
    ).scalar_one_or_none()
    if not assignment:
        raise NotFoundError("Scholarship assignment", assignment_id)

    assignment.deleted_at = datetime.utcnow()
    db.commit()
    logger.info(f"Removed scholarship assignment {assignment_id}")
