# fee_engine/api/routers/scholarships.py
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID

from fee_engine.core.db import get_db
from fee_engine.services import scholarships
from fee_engine.schemas.scholarship_schema import (
    ScholarshipAssignmentCreate, ScholarshipAssignmentOut,
    ScholarshipCreate, ScholarshipOut,
)

router = APIRouter()


@router.post("/", response_model=ScholarshipOut, status_code=status.HTTP_201_CREATED)
async def create_scholarship(data: ScholarshipCreate, db: Session = Depends(get_db)):
    return scholarships.create_scholarship(db, data)


@router.get("/", response_model=List[ScholarshipOut])
async def list_scholarships(active_only: bool = False, db: Session = Depends(get_db)):
    return scholarships.list_scholarships(db, active_only=active_only)


@router.put("/{scholarship_id}/deactivate", response_model=ScholarshipOut)
async def deactivate_scholarship(scholarship_id: UUID, db: Session = Depends(get_db)):
    return scholarships.set_scholarship_active(db, scholarship_id, False)


@router.put("/{scholarship_id}/activate", response_model=ScholarshipOut)
async def activate_scholarship(scholarship_id: UUID, db: Session = Depends(get_db)):
    return scholarships.set_scholarship_active(db, scholarship_id, True)


@router.post("/assignments", response_model=ScholarshipAssignmentOut, status_code=status.HTTP_201_CREATED)
async def assign_scholarship(data: ScholarshipAssignmentCreate, db: Session = Depends(get_db)):
    return scholarships.assign_to_student(db, data)


@router.get("/students/{student_id}", response_model=List[ScholarshipAssignmentOut])
async def get_student_scholarships(student_id: UUID, include_removed: bool = False, db: Session = Depends(get_db)):
    return scholarships.get_student_scholarships(db, student_id, include_removed=include_removed)


@router.delete("/assignments/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_scholarship_assignment(assignment_id: UUID, db: Session = Depends(get_db)):
    scholarships.remove_assignment(db, assignment_id)
