# fee_engine/schemas/charge_schema.py
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Literal
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from fee_engine.core.money import MAX_AMOUNT


class ChargeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    type: Literal["FINE", "EQUIPMENT", "TRANSPORT", "OTHER"] = "OTHER"
    category: Optional[str] = Field(None, max_length=64)
    description: Optional[str] = Field(None, max_length=512)
    value_type: Literal["FIXED", "PERCENTAGE"] = "FIXED"
    value: Decimal = Field(..., ge=0, le=MAX_AMOUNT, decimal_places=2)
    is_recurring: bool = False

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('Charge name cannot be empty or whitespace')
        return v.strip()


class ChargeOut(BaseModel):
    id: UUID
    name: str
    type: str
    category: Optional[str]
    description: Optional[str]
    value_type: str
    value: Decimal
    is_recurring: bool
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class ChargeAssignmentCreate(BaseModel):
    charge_id: UUID
    student_id: UUID
    applied_month: str = Field(..., description="YYYY-MM or YYYY-MM-DD; stored as first of month")
    amount: Optional[Decimal] = Field(None, ge=0, le=MAX_AMOUNT, decimal_places=2)  # overrides the definition value
    reason: Optional[str] = Field(None, max_length=255)


class ChargeAssignmentOut(BaseModel):
    id: UUID
    charge_id: UUID
    student_id: UUID
    applied_month: date
    amount: Decimal
    reason: Optional[str]
    created_at: datetime
    charge: ChargeOut

    class Config:
        from_attributes = True


class BulkApplyChargeRequest(BaseModel):
    student_ids: List[UUID] = Field(..., min_length=1)
    applied_month: str
    reason: Optional[str] = Field(None, max_length=255)


class BulkApplyError(BaseModel):
    student_id: UUID
    error: str


class BulkApplyChargeResult(BaseModel):
    successful: List[ChargeAssignmentOut] = []
    errors: List[BulkApplyError] = []
    success_count: int = 0
    error_count: int = 0
