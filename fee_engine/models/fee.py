from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from sqlalchemy import (
    String, Integer, Numeric, ForeignKey, Date, DateTime, Uuid,
    CheckConstraint, Index, UniqueConstraint, event, inspect
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fee_engine.core.exceptions import ImmutableRecordError, InvalidArgumentError
from fee_engine.models.base import Base, JSONDocument

StructureStatus = Literal["DRAFT", "ACTIVE", "ARCHIVED"]
Frequency = Literal["MONTHLY", "TERM", "ANNUAL", "ONE_TIME"]

FREQUENCIES = ("MONTHLY", "TERM", "ANNUAL", "ONE_TIME")


class FeeStructure(Base):
    """A named fee plan for one class and academic year; amounts live in its versions"""
    __tablename__ = "fee_structures"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    class_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("classes.id"), index=True, nullable=False)
    academic_year: Mapped[str] = mapped_column(String(16), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[StructureStatus] = mapped_column(String(16), default="ACTIVE", nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    class_: Mapped["Class"] = relationship("Class", back_populates="fee_structures")
    versions: Mapped[list["FeeStructureVersion"]] = relationship(
        "FeeStructureVersion",
        back_populates="structure",
        order_by="FeeStructureVersion.version",
    )

    __table_args__ = (
        CheckConstraint("status IN ('DRAFT','ACTIVE','ARCHIVED')", name="ck_fee_structures_status"),
        UniqueConstraint("class_id", "academic_year", "name", name="uix_fee_structure_class_year_name"),
    )


class FeeStructureVersion(Base):
    """Immutable dated snapshot of a fee structure's line items"""
    __tablename__ = "fee_structure_versions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    fee_structure_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("fee_structures.id"),
        index=True,
        nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    change_reason: Mapped[Optional[str]] = mapped_column(String(255))
    # {"items": [{"category", "label", "amount", "frequency", "is_optional"}, ...]}
    snapshot: Mapped[dict] = mapped_column(JSONDocument, nullable=False)
    total_annual: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0.00'))
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    structure: Mapped["FeeStructure"] = relationship("FeeStructure", back_populates="versions")

    __table_args__ = (
        UniqueConstraint("fee_structure_id", "version", name="uix_fee_structure_version"),
        CheckConstraint("version >= 1", name="ck_fee_structure_versions_version_positive"),
        Index("ix_fee_structure_versions_effective", "fee_structure_id", "effective_from"),
    )

    @property
    def items(self) -> list:
        """Raw snapshot items; a snapshot of the wrong shape raises InvalidArgumentError"""
        snapshot = self.snapshot if self.snapshot is not None else {}
        if not isinstance(snapshot, dict):
            raise InvalidArgumentError(f"Fee structure version {self.id} has a malformed snapshot")
        items = snapshot.get("items") or []
        if not isinstance(items, list):
            raise InvalidArgumentError(f"Fee structure version {self.id} has malformed snapshot items")
        return list(items)


IMMUTABLE_VERSION_FIELDS = ("fee_structure_id", "version", "effective_from", "snapshot", "total_annual")


@event.listens_for(FeeStructureVersion, "before_update")
def _reject_version_rewrite(mapper, connection, target):
    state = inspect(target)
    changed = [name for name in IMMUTABLE_VERSION_FIELDS if state.attrs[name].history.has_changes()]
    if changed:
        raise ImmutableRecordError(
            "Fee structure versions cannot be rewritten; append a revision instead",
            {"id": str(target.id), "fields": changed},
        )


@event.listens_for(FeeStructureVersion, "before_delete")
def _reject_version_delete(mapper, connection, target):
    raise ImmutableRecordError("Fee structure versions cannot be deleted", {"id": str(target.id)})
