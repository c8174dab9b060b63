# fee_engine/api/routers/fee_history.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from fee_engine.core.db import get_db
from fee_engine.core.periods import format_month, parse_month
from fee_engine.services import fee_ledger
from fee_engine.services.fee_computation import FeeComputationService
from fee_engine.schemas.fee_schema import (
    BulkStudentFees, ComputeMonthlyFeesRequest, ComputeMonthlyFeesResponse,
    StudentFeeHistoryOut, StudentFeeHistoryPage, StudentMonthFees,
)

router = APIRouter()


@router.post("/compute", response_model=ComputeMonthlyFeesResponse)
async def compute_monthly_fees(data: ComputeMonthlyFeesRequest, db: Session = Depends(get_db)):
    """
    Compute fees for a month and append new ledger versions where amounts changed.

    Safe to call repeatedly: unchanged students get no new version unless
    include_existing is set.
    """
    result = FeeComputationService(db).compute_for_month(data)
    return ComputeMonthlyFeesResponse(
        count=result.count,
        students_evaluated=result.students_evaluated,
        skipped_no_structure=result.skipped_no_structure,
        unchanged=result.unchanged,
        failed=result.failed,
    )


@router.get("/students/{student_id}/months/{month}", response_model=StudentMonthFees)
async def get_student_month_fees(student_id: UUID, month: str, db: Session = Depends(get_db)):
    """Current version and full version chain for one month"""
    period_month = parse_month(month)
    versions = fee_ledger.get_month_versions(db, student_id, period_month)
    return StudentMonthFees(
        student_id=student_id,
        month=format_month(period_month),
        current=StudentFeeHistoryOut.model_validate(versions[0]) if versions else None,
        versions=[StudentFeeHistoryOut.model_validate(v) for v in versions],
    )


@router.get("/students/{student_id}", response_model=StudentFeeHistoryPage)
async def get_student_fee_history(
    student_id: UUID,
    db: Session = Depends(get_db),
    from_month: Optional[str] = Query(None, description="YYYY-MM, inclusive"),
    to_month: Optional[str] = Query(None, description="YYYY-MM, inclusive"),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1),
):
    return fee_ledger.get_history(
        db, student_id,
        from_month=parse_month(from_month) if from_month else None,
        to_month=parse_month(to_month) if to_month else None,
        page=page,
        page_size=page_size,
    )


@router.get("/bulk", response_model=BulkStudentFees)
async def get_bulk_fees(
    month: str = Query(..., description="YYYY-MM"),
    class_id: Optional[UUID] = None,
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
):
    """Latest version per student for a month with page totals"""
    return fee_ledger.get_bulk_latest(db, parse_month(month), class_id=class_id, page=page, page_size=page_size)
