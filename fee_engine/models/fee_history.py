from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Integer, Numeric, ForeignKey, Date, DateTime, Uuid,
    CheckConstraint, Index, UniqueConstraint, event, inspect
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fee_engine.core.exceptions import ImmutableRecordError
from fee_engine.models.base import Base, JSONDocument

LEDGER_AMOUNT_FIELDS = ("base_amount", "scholarship_amount", "extra_charges_amount", "final_payable")


class StudentFeeHistory(Base):
    """
    Append-only ledger of computed monthly fees.

    One version chain per (student_id, period_month). Rows are never
    updated or deleted; a correction is a new version.
    """
    __tablename__ = "student_fee_history"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("students.id"), nullable=False)
    period_month: Mapped[date] = mapped_column(Date, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    fee_structure_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("fee_structures.id"), index=True, nullable=False)
    # the exact snapshot used, so a version's impact can be counted without parsing breakdowns
    fee_structure_version_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("fee_structure_versions.id"), index=True, nullable=False
    )

    base_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    scholarship_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    extra_charges_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    final_payable: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    breakdown: Mapped[dict] = mapped_column(JSONDocument, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)

    student: Mapped["Student"] = relationship("Student")

    __table_args__ = (
        # serializes concurrent appends: a second writer of the same version fails and retries
        UniqueConstraint("student_id", "period_month", "version", name="uix_student_fee_history_version"),
        CheckConstraint("version >= 1", name="ck_student_fee_history_version_positive"),
        Index("ix_student_fee_history_month", "period_month", "student_id"),
    )

    def amounts(self) -> tuple:
        return tuple(getattr(self, name) for name in LEDGER_AMOUNT_FIELDS)


@event.listens_for(StudentFeeHistory, "before_update")
def _reject_ledger_update(mapper, connection, target):
    state = inspect(target)
    if not any(state.attrs[column.key].history.has_changes() for column in mapper.column_attrs):
        return
    raise ImmutableRecordError("Student fee history is append-only", {"id": str(target.id)})


@event.listens_for(StudentFeeHistory, "before_delete")
def _reject_ledger_delete(mapper, connection, target):
    raise ImmutableRecordError("Student fee history is append-only", {"id": str(target.id)})
