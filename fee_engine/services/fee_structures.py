# fee_engine/services/fee_structures.py
"""
Fee structure version store.

The read side resolves which immutable snapshot applies to a class on a
date. The write side appends versions; it never edits one.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fee_engine.core.config import settings
from fee_engine.core.exceptions import ConflictError, InvalidArgumentError, NotFoundError
from fee_engine.core.money import MAX_AMOUNT, MONTHS_PER_YEAR, HUNDRED, ZERO, round_money
from fee_engine.models.class_model import Class
from fee_engine.models.fee import FeeStructure, FeeStructureVersion
from fee_engine.models.fee_history import StudentFeeHistory
from fee_engine.schemas.fee_schema import (
    FeeItemSnapshot, FeeStructureCreate, FeeStructureRevise,
    FeeStructureTimeline, TimelineVersion, VersionChange,
)
from fee_engine.services.proration import coerce_items, total_annual

logger = logging.getLogger(__name__)


def _snapshot(items: Iterable[FeeItemSnapshot]) -> dict:
    return {"items": [item.model_dump(mode="json") for item in items]}


def _annual_total(items: Iterable[FeeItemSnapshot]) -> Decimal:
    annual = round_money(total_annual(items, settings.FEE_TERMS_PER_YEAR))
    if annual > MAX_AMOUNT:
        raise InvalidArgumentError("Annual total of the fee items is out of range", {"max_amount": str(MAX_AMOUNT)})
    return annual


def resolve_latest_versions(db: Session, class_ids: Iterable[UUID], on_or_before: date) -> Dict[UUID, FeeStructureVersion]:
    """
    Currently effective version per class.

    Among every version of every structure of the class whose
    effective_from is on or before the date, the greatest effective_from
    wins; equal dates go to the most recently created row, then the higher
    version number.
    """
    class_ids = list(set(class_ids))
    if not class_ids:
        return {}

    rows = db.execute(
        select(FeeStructureVersion, FeeStructure.class_id)
        .join(FeeStructure, FeeStructureVersion.fee_structure_id == FeeStructure.id)
        .where(
            FeeStructure.class_id.in_(class_ids),
            FeeStructureVersion.effective_from <= on_or_before,
        )
        .order_by(
            FeeStructureVersion.effective_from,
            FeeStructureVersion.created_at,
            FeeStructureVersion.version,
        )
    ).all()

    # ascending order: the last row seen per class is the effective one
    resolved: Dict[UUID, FeeStructureVersion] = {}
    for version, class_id in rows:
        resolved[class_id] = version
    return resolved


def resolve_latest_version(db: Session, class_id: UUID, on_or_before: date) -> Optional[FeeStructureVersion]:
    return resolve_latest_versions(db, [class_id], on_or_before).get(class_id)


def get_structure(db: Session, structure_id: UUID) -> FeeStructure:
    structure = db.execute(
        select(FeeStructure).where(FeeStructure.id == structure_id)
    ).scalar_one_or_none()
    if not structure:
        raise NotFoundError("Fee structure", structure_id)
    return structure


def list_versions(db: Session, structure_id: UUID) -> List[FeeStructureVersion]:
    get_structure(db, structure_id)
    return list(db.execute(
        select(FeeStructureVersion)
        .where(FeeStructureVersion.fee_structure_id == structure_id)
        .order_by(FeeStructureVersion.version)
    ).scalars().all())


def latest_version(db: Session, structure_id: UUID) -> Optional[FeeStructureVersion]:
    return db.execute(
        select(FeeStructureVersion)
        .where(FeeStructureVersion.fee_structure_id == structure_id)
        .order_by(FeeStructureVersion.version.desc())
        .limit(1)
    ).scalar_one_or_none()


def create_structure(db: Session, data: FeeStructureCreate) -> FeeStructure:
    """Create a structure together with its first version"""
    if not db.execute(select(Class.id).where(Class.id == data.class_id)).first():
        raise NotFoundError("Class", data.class_id)

    existing = db.execute(
        select(FeeStructure.id).where(
            FeeStructure.class_id == data.class_id,
            FeeStructure.academic_year == data.academic_year,
            FeeStructure.name == data.name,
        )
    ).first()
    if existing:
        raise ConflictError(
            f"A fee structure named '{data.name}' already exists for this class in {data.academic_year}",
            {"fee_structure_id": str(existing[0])},
        )

    structure = FeeStructure(
        class_id=data.class_id,
        academic_year=data.academic_year,
        name=data.name,
        status=data.status,
    )
    version = FeeStructureVersion(
        structure=structure,
        version=1,
        effective_from=data.effective_from,
        snapshot=_snapshot(data.items),
        total_annual=_annual_total(data.items),
        created_by_id=data.actor_id,
    )

    try:
        db.add(structure)
        db.add(version)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"A fee structure named '{data.name}' already exists for this class in {data.academic_year}")

    db.refresh(structure)
    logger.info(f"Created fee structure {structure.id} for class {structure.class_id} effective {data.effective_from}")
    return structure


def revise_structure(db: Session, structure_id: UUID, data: FeeStructureRevise) -> FeeStructureVersion:
    """Append a new version; effective_from may not move backwards"""
    structure = get_structure(db, structure_id)
    previous = latest_version(db, structure_id)

    if previous is not None and data.effective_from < previous.effective_from:
        raise InvalidArgumentError(
            "Revision cannot take effect before the previous version",
            {"previous_effective_from": previous.effective_from.isoformat()},
        )

    version = FeeStructureVersion(
        fee_structure_id=structure.id,
        version=(previous.version if previous else 0) + 1,
        effective_from=data.effective_from,
        change_reason=data.change_reason,
        snapshot=_snapshot(data.items),
        total_annual=_annual_total(data.items),
        created_by_id=data.actor_id,
    )

    try:
        db.add(version)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Fee structure was revised concurrently; reload and retry")

    db.refresh(version)
    logger.info(f"Fee structure {structure.id} revised to version {version.version} effective {version.effective_from}")
    return version


def update_status(db: Session, structure_id: UUID, status: str) -> FeeStructure:
    structure = get_structure(db, structure_id)
    structure.status = status
    db.commit()
    db.refresh(structure)
    return structure


def _change(previous_total: Decimal, total: Decimal) -> VersionChange:
    delta = total - previous_total
    percentage = (delta / previous_total * HUNDRED) if previous_total > 0 else ZERO
    return VersionChange(
        annual_change=round_money(delta),
        monthly_change=round_money(delta / MONTHS_PER_YEAR),
        percentage_change=round_money(percentage),
        is_increase=delta > 0,
    )


def get_timeline(db: Session, structure_id: UUID) -> FeeStructureTimeline:
    """Every version in order with totals, impact and change from the previous one"""
    structure = get_structure(db, structure_id)
    versions = list_versions(db, structure_id)

    affected = dict(db.execute(
        select(
            StudentFeeHistory.fee_structure_version_id,
            func.count(func.distinct(StudentFeeHistory.student_id)),
        )
        .where(StudentFeeHistory.fee_structure_id == structure_id)
        .group_by(StudentFeeHistory.fee_structure_version_id)
    ).all())

    timeline = []
    previous_total = None
    for version in versions:
        items = coerce_items(version.items)
        annual = total_annual(items, settings.FEE_TERMS_PER_YEAR)
        timeline.append(TimelineVersion(
            version=version.version,
            effective_from=version.effective_from,
            change_reason=version.change_reason,
            annual_total=round_money(annual),
            monthly_total=round_money(annual / MONTHS_PER_YEAR),
            items=items,
            students_affected=affected.get(version.id, 0),
            change_from_previous=_change(previous_total, annual) if previous_total is not None else None,
            created_at=version.created_at,
        ))
        previous_total = annual

    return FeeStructureTimeline(
        fee_structure_id=structure.id,
        name=structure.name,
        class_id=structure.class_id,
        academic_year=structure.academic_year,
        status=structure.status,
        total_versions=len(versions),
        current_version=max((v.version for v in versions), default=0),
        versions=timeline,
    )
