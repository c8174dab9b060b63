# fee_engine/api/routers/fees.py
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List
from decimal import Decimal
from uuid import UUID

from fee_engine.core.db import get_db
from fee_engine.services import fee_structures
from fee_engine.schemas.fee_schema import (
    FeeStructureCreate, FeeStructureOut, FeeStructureRevise,
    FeeStructureStatusUpdate, FeeStructureTimeline, FeeStructureVersionOut,
)

router = APIRouter()


def _structure_out(db: Session, structure) -> FeeStructureOut:
    latest = fee_structures.latest_version(db, structure.id)
    return FeeStructureOut(
        id=structure.id,
        class_id=structure.class_id,
        academic_year=structure.academic_year,
        name=structure.name,
        status=structure.status,
        latest_version=latest.version if latest else 0,
        total_annual=latest.total_annual if latest else Decimal("0.00"),
        created_at=structure.created_at,
        updated_at=structure.updated_at,
    )


@router.post("/", response_model=FeeStructureOut, status_code=status.HTTP_201_CREATED)
async def create_fee_structure(data: FeeStructureCreate, db: Session = Depends(get_db)):
    """Create a fee structure and its first version"""
    structure = fee_structures.create_structure(db, data)
    return _structure_out(db, structure)


@router.get("/{structure_id}", response_model=FeeStructureOut)
async def get_fee_structure(structure_id: UUID, db: Session = Depends(get_db)):
    return _structure_out(db, fee_structures.get_structure(db, structure_id))


@router.post("/{structure_id}/revisions", response_model=FeeStructureVersionOut, status_code=status.HTTP_201_CREATED)
async def revise_fee_structure(structure_id: UUID, data: FeeStructureRevise, db: Session = Depends(get_db)):
    """
    Append a new version.

    Months already in the ledger keep their amounts until fees are
    recomputed for them.
    """
    return fee_structures.revise_structure(db, structure_id, data)


@router.get("/{structure_id}/versions", response_model=List[FeeStructureVersionOut])
async def list_fee_structure_versions(structure_id: UUID, db: Session = Depends(get_db)):
    return fee_structures.list_versions(db, structure_id)


@router.get("/{structure_id}/timeline", response_model=FeeStructureTimeline)
async def get_fee_structure_timeline(structure_id: UUID, db: Session = Depends(get_db)):
    return fee_structures.get_timeline(db, structure_id)


@router.put("/{structure_id}/status", response_model=FeeStructureOut)
async def update_fee_structure_status(structure_id: UUID, data: FeeStructureStatusUpdate, db: Session = Depends(get_db)):
    structure = fee_structures.update_status(db, structure_id, data.status)
    return _structure_out(db, structure)
