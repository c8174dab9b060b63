from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from sqlalchemy import (
    String, Boolean, Numeric, ForeignKey, Date, DateTime, Uuid,
    CheckConstraint, Index, text
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fee_engine.models.base import Base

ChargeType = Literal["FINE", "EQUIPMENT", "TRANSPORT", "OTHER"]
ChargeValueType = Literal["FIXED", "PERCENTAGE"]


class ChargeDefinition(Base):
    __tablename__ = "charge_definitions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[ChargeType] = mapped_column(String(16), default="OTHER", nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(64))
    description: Mapped[Optional[str]] = mapped_column(String(512))
    value_type: Mapped[ChargeValueType] = mapped_column(String(16), default="FIXED", nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    assignments: Mapped[list["ChargeAssignment"]] = relationship("ChargeAssignment", back_populates="charge")

    __table_args__ = (
        CheckConstraint("type IN ('FINE','EQUIPMENT','TRANSPORT','OTHER')", name="ck_charge_definitions_type"),
        CheckConstraint("value_type IN ('FIXED','PERCENTAGE')", name="ck_charge_definitions_value_type"),
        CheckConstraint("value >= 0", name="ck_charge_definitions_value_positive"),
    )


class ChargeAssignment(Base):
    """A charge applied to one student for one month, with its amount materialized"""
    __tablename__ = "charge_assignments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    charge_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("charge_definitions.id"), index=True, nullable=False)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("students.id"), index=True, nullable=False)
    applied_month: Mapped[date] = mapped_column(Date, nullable=False)  # always first of month
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(255))
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    charge: Mapped["ChargeDefinition"] = relationship("ChargeDefinition", back_populates="assignments")

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_charge_assignments_amount_positive"),
        Index("ix_charge_assignments_student_month", "student_id", "applied_month"),
        # one live assignment per charge/student/month; soft-deleted rows may repeat
        Index(
            "uix_charge_assignment_live",
            "charge_id", "student_id", "applied_month",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
    )
