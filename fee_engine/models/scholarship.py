from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from sqlalchemy import (
    String, Boolean, Numeric, ForeignKey, Date, DateTime, Uuid,
    CheckConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fee_engine.models.base import Base

ScholarshipType = Literal["MERIT", "NEED_BASED", "SPORTS", "OTHER"]
ScholarshipValueType = Literal["PERCENTAGE", "FIXED"]


class ScholarshipDefinition(Base):
    __tablename__ = "scholarship_definitions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[ScholarshipType] = mapped_column(String(16), default="OTHER", nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(512))
    value_type: Mapped[ScholarshipValueType] = mapped_column(String(16), nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    assignments: Mapped[list["ScholarshipAssignment"]] = relationship("ScholarshipAssignment", back_populates="scholarship")

    __table_args__ = (
        CheckConstraint("type IN ('MERIT','NEED_BASED','SPORTS','OTHER')", name="ck_scholarship_definitions_type"),
        CheckConstraint("value_type IN ('PERCENTAGE','FIXED')", name="ck_scholarship_definitions_value_type"),
        CheckConstraint("value >= 0", name="ck_scholarship_definitions_value_positive"),
        CheckConstraint("value_type <> 'PERCENTAGE' OR value <= 100", name="ck_scholarship_definitions_percentage_range"),
    )


class ScholarshipAssignment(Base):
    """Time-bounded link between a scholarship and a student"""
    __tablename__ = "scholarship_assignments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    scholarship_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("scholarship_definitions.id"), index=True, nullable=False
    )
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("students.id"), index=True, nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    expires_at: Mapped[Optional[date]] = mapped_column(Date)  # NULL = open-ended
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    scholarship: Mapped["ScholarshipDefinition"] = relationship("ScholarshipDefinition", back_populates="assignments")

    __table_args__ = (
        CheckConstraint("expires_at IS NULL OR expires_at >= effective_from", name="ck_scholarship_assignments_window"),
        Index("ix_scholarship_assignments_student_window", "student_id", "effective_from", "expires_at"),
    )
