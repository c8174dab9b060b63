# fee_engine/services/fee_ledger.py
"""
Read side of the student fee ledger.

Nothing here writes; appends go through FeeComputationService only.
"""
import logging
import math
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, func, and_
from sqlalchemy.orm import Session

from fee_engine.core.config import settings
from fee_engine.core.exceptions import InvalidArgumentError, NotFoundError
from fee_engine.core.money import ZERO, round_money
from fee_engine.core.periods import format_month, normalize_month
from fee_engine.models.class_model import Class
from fee_engine.models.fee_history import StudentFeeHistory
from fee_engine.models.student import Student
from fee_engine.schemas.fee_schema import (
    BulkFeesSummary, BulkStudentFees, Pagination,
    StudentFeeHistoryOut, StudentFeeHistoryPage,
)

logger = logging.getLogger(__name__)


def _page_window(page: int, page_size: Optional[int], default_size: int) -> Tuple[int, int]:
    if page < 1:
        raise InvalidArgumentError("page must be 1 or greater")
    size = default_size if page_size is None else page_size
    if size < 1:
        raise InvalidArgumentError("page_size must be 1 or greater")
    return page, min(size, settings.FEE_MAX_PAGE_SIZE)


def _pagination(page: int, page_size: int, total_count: int) -> Pagination:
    total_pages = math.ceil(total_count / page_size) if total_count else 0
    return Pagination(
        page=page,
        page_size=page_size,
        total_count=total_count,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_prev=page > 1,
    )


def get_latest(db: Session, student_id: UUID, month) -> Optional[StudentFeeHistory]:
    """Highest version for the student and month, or None if never computed"""
    period_month = normalize_month(month)
    return db.execute(
        select(StudentFeeHistory)
        .where(
            StudentFeeHistory.student_id == student_id,
            StudentFeeHistory.period_month == period_month,
        )
        .order_by(StudentFeeHistory.version.desc())
        .limit(1)
    ).scalar_one_or_none()


def get_month_versions(db: Session, student_id: UUID, month) -> List[StudentFeeHistory]:
    """Full version chain for one month, newest first"""
    period_month = normalize_month(month)
    return list(db.execute(
        select(StudentFeeHistory)
        .where(
            StudentFeeHistory.student_id == student_id,
            StudentFeeHistory.period_month == period_month,
        )
        .order_by(StudentFeeHistory.version.desc())
    ).scalars().all())


def get_history(
    db: Session,
    student_id: UUID,
    from_month=None,
    to_month=None,
    page: int = 1,
    page_size: Optional[int] = None,
) -> StudentFeeHistoryPage:
    """Every ledger row of a student, newest month and version first"""
    page, page_size = _page_window(page, page_size, settings.FEE_HISTORY_PAGE_SIZE)

    if not db.execute(select(Student.id).where(Student.id == student_id)).first():
        raise NotFoundError("Student", student_id)

    conditions = [StudentFeeHistory.student_id == student_id]
    if from_month is not None:
        conditions.append(StudentFeeHistory.period_month >= normalize_month(from_month))
    if to_month is not None:
        conditions.append(StudentFeeHistory.period_month <= normalize_month(to_month))

    total_count = db.execute(
        select(func.count()).select_from(StudentFeeHistory).where(*conditions)
    ).scalar_one()

    rows = db.execute(
        select(StudentFeeHistory)
        .where(*conditions)
        .order_by(StudentFeeHistory.period_month.desc(), StudentFeeHistory.version.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).scalars().all()

    return StudentFeeHistoryPage(
        student_id=student_id,
        pagination=_pagination(page, page_size, total_count),
        history=[StudentFeeHistoryOut.model_validate(row) for row in rows],
    )


def get_bulk_latest(
    db: Session,
    month,
    class_id: Optional[UUID] = None,
    page: int = 1,
    page_size: Optional[int] = None,
) -> BulkStudentFees:
    """
    Latest version per student for one month, optionally for one class.

    Summary totals are summed in Decimal over the returned page.
    """
    period_month: date = normalize_month(month)
    page, page_size = _page_window(page, page_size, settings.FEE_BULK_PAGE_SIZE)

    if class_id is not None and not db.execute(select(Class.id).where(Class.id == class_id)).first():
        raise NotFoundError("Class", class_id)

    latest = (
        select(
            StudentFeeHistory.student_id.label("student_id"),
            func.max(StudentFeeHistory.version).label("version"),
        )
        .where(StudentFeeHistory.period_month == period_month)
        .group_by(StudentFeeHistory.student_id)
        .subquery()
    )

    query = (
        select(StudentFeeHistory)
        .join(latest, and_(
            StudentFeeHistory.student_id == latest.c.student_id,
            StudentFeeHistory.version == latest.c.version,
        ))
        .join(Student, Student.id == StudentFeeHistory.student_id)
        .where(StudentFeeHistory.period_month == period_month)
    )
    if class_id is not None:
        query = query.where(Student.class_id == class_id)

    total_count = db.execute(
        select(func.count()).select_from(query.subquery())
    ).scalar_one()

    rows = db.execute(
        query.order_by(Student.last_name, Student.first_name, Student.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).scalars().all()

    totals = {"base": ZERO, "scholarships": ZERO, "charges": ZERO, "final": ZERO}
    for row in rows:
        totals["base"] += Decimal(row.base_amount)
        totals["scholarships"] += Decimal(row.scholarship_amount)
        totals["charges"] += Decimal(row.extra_charges_amount)
        totals["final"] += Decimal(row.final_payable)

    count = len(rows)
    summary = BulkFeesSummary(
        total_students=count,
        total_base_amount=round_money(totals["base"]),
        total_scholarships=round_money(totals["scholarships"]),
        total_charges=round_money(totals["charges"]),
        total_final_payable=round_money(totals["final"]),
        average_fee_per_student=round_money(totals["final"] / count) if count else round_money(ZERO),
    )

    return BulkStudentFees(
        month=format_month(period_month),
        class_id=class_id,
        pagination=_pagination(page, page_size, total_count),
        summary=summary,
        students=[StudentFeeHistoryOut.model_validate(row) for row in rows],
    )
