# fee_engine/schemas/scholarship_schema.py
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, Literal
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from fee_engine.core.money import MAX_AMOUNT


class ScholarshipCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    type: Literal["MERIT", "NEED_BASED", "SPORTS", "OTHER"] = "OTHER"
    description: Optional[str] = Field(None, max_length=512)
    value_type: Literal["PERCENTAGE", "FIXED"]
    value: Decimal = Field(..., ge=0, le=MAX_AMOUNT, decimal_places=2)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('Scholarship name cannot be empty or whitespace')
        return v.strip()

    @model_validator(mode='after')
    def validate_percentage(self):
        if self.value_type == "PERCENTAGE" and self.value > 100:
            raise ValueError('Percentage scholarships cannot exceed 100')
        return self


class ScholarshipOut(BaseModel):
    id: UUID
    name: str
    type: str
    description: Optional[str]
    value_type: str
    value: Decimal
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class ScholarshipAssignmentCreate(BaseModel):
    scholarship_id: UUID
    student_id: UUID
    effective_from: date
    expires_at: Optional[date] = None  # open-ended when omitted


class ScholarshipAssignmentOut(BaseModel):
    id: UUID
    scholarship_id: UUID
    student_id: UUID
    effective_from: date
    expires_at: Optional[date]
    created_at: datetime
    scholarship: ScholarshipOut

    class Config:
        from_attributes = True
