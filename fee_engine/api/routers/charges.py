# fee_engine/api/routers/charges.py
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from fee_engine.core.db import get_db
from fee_engine.core.periods import normalize_month
from fee_engine.services import charges
from fee_engine.schemas.charge_schema import (
    BulkApplyChargeRequest, BulkApplyChargeResult,
    ChargeAssignmentCreate, ChargeAssignmentOut, ChargeCreate, ChargeOut,
)

router = APIRouter()


@router.post("/", response_model=ChargeOut, status_code=status.HTTP_201_CREATED)
async def create_charge(data: ChargeCreate, db: Session = Depends(get_db)):
    return charges.create_charge(db, data)


@router.get("/", response_model=List[ChargeOut])
async def list_charges(active_only: bool = False, db: Session = Depends(get_db)):
    return charges.list_charges(db, active_only=active_only)


@router.put("/{charge_id}/deactivate", response_model=ChargeOut)
async def deactivate_charge(charge_id: UUID, db: Session = Depends(get_db)):
    return charges.set_charge_active(db, charge_id, False)


@router.post("/assignments", response_model=ChargeAssignmentOut, status_code=status.HTTP_201_CREATED)
async def apply_charge(data: ChargeAssignmentCreate, db: Session = Depends(get_db)):
    """Apply a charge to one student for one month"""
    return charges.apply_to_student(db, data)


@router.post("/{charge_id}/bulk-apply", response_model=BulkApplyChargeResult)
async def bulk_apply_charge(charge_id: UUID, data: BulkApplyChargeRequest, db: Session = Depends(get_db)):
    """Apply a charge to many students; per-student failures are reported, not raised"""
    return charges.bulk_apply(db, charge_id, data)


@router.get("/students/{student_id}", response_model=List[ChargeAssignmentOut])
async def get_student_charges(
    student_id: UUID,
    month: Optional[str] = Query(None, description="YYYY-MM"),
    db: Session = Depends(get_db),
):
    return charges.get_student_charges(db, student_id, normalize_month(month) if month else None)


@router.delete("/assignments/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_charge_assignment(assignment_id: UUID, db: Session = Depends(get_db)):
    charges.remove_assignment(db, assignment_id)
