# fee_engine/models/student.py
from __future__ import annotations
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import String, ForeignKey, DateTime, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from fee_engine.models.base import Base


class Student(Base):
    __tablename__ = "students"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    admission_no: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(64), nullable=False)
    last_name: Mapped[str] = mapped_column(String(64), nullable=False)
    class_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("classes.id"), index=True)
    status: Mapped[str] = mapped_column(String(16), default="ACTIVE")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    class_: Mapped[Optional["Class"]] = relationship("Class", back_populates="students")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
