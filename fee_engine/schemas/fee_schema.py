# fee_engine/schemas/fee_schema.py
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Literal, Dict, Any
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from fee_engine.core.money import MAX_AMOUNT


# Fee Item Schemas
class FeeItemSnapshot(BaseModel):
    """One line of a fee structure version snapshot"""
    category: str = Field(default="General", min_length=1, max_length=64)
    label: str = Field(..., min_length=1, max_length=128)
    amount: Decimal = Field(..., ge=0, le=MAX_AMOUNT)
    frequency: Literal["MONTHLY", "TERM", "ANNUAL", "ONE_TIME"] = "MONTHLY"
    is_optional: bool = False

    @field_validator('label')
    @classmethod
    def validate_label(cls, v: str) -> str:
        """Ensure item label is not just whitespace"""
        if not v.strip():
            raise ValueError('Item label cannot be empty or whitespace')
        return v.strip()

    @field_validator('amount', mode='before')
    @classmethod
    def reject_float_amount(cls, v):
        if isinstance(v, float):
            raise ValueError('Amounts must be sent as decimal strings, not floats')
        return v


# Fee Structure Schemas
class FeeStructureCreate(BaseModel):
    class_id: UUID
    academic_year: str = Field(..., min_length=4, max_length=16)
    name: str = Field(..., min_length=1, max_length=128)
    effective_from: date
    items: List[FeeItemSnapshot] = Field(..., min_length=1)
    status: Literal["DRAFT", "ACTIVE", "ARCHIVED"] = "ACTIVE"
    actor_id: Optional[UUID] = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Ensure structure name is not just whitespace"""
        if not v.strip():
            raise ValueError('Structure name cannot be empty or whitespace')
        return v.strip()


class FeeStructureRevise(BaseModel):
    effective_from: date
    items: List[FeeItemSnapshot] = Field(..., min_length=1)
    change_reason: Optional[str] = Field(None, max_length=255)
    actor_id: Optional[UUID] = None


class FeeStructureStatusUpdate(BaseModel):
    status: Literal["DRAFT", "ACTIVE", "ARCHIVED"]


class FeeStructureVersionOut(BaseModel):
    id: UUID
    fee_structure_id: UUID
    version: int
    effective_from: date
    change_reason: Optional[str]
    snapshot: Dict[str, Any]
    total_annual: Decimal
    created_at: datetime

    class Config:
        from_attributes = True


class FeeStructureOut(BaseModel):
    id: UUID
    class_id: UUID
    academic_year: str
    name: str
    status: str
    latest_version: int = 0
    total_annual: Decimal = Decimal('0.00')
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class VersionChange(BaseModel):
    annual_change: Decimal
    monthly_change: Decimal
    percentage_change: Decimal
    is_increase: bool


class TimelineVersion(BaseModel):
    version: int
    effective_from: date
    change_reason: Optional[str]
    annual_total: Decimal
    monthly_total: Decimal
    items: List[FeeItemSnapshot]
    students_affected: int = 0
    change_from_previous: Optional[VersionChange] = None
    created_at: datetime


class FeeStructureTimeline(BaseModel):
    fee_structure_id: UUID
    name: str
    class_id: UUID
    academic_year: str
    status: str
    total_versions: int
    current_version: int
    versions: List[TimelineVersion] = []


# Computation Schemas
class ComputeMonthlyFeesRequest(BaseModel):
    """Request to compute ledger versions for one month"""
    month: str = Field(..., description="Target month as YYYY-MM")
    class_id: Optional[UUID] = None  # If None, compute for all students
    include_existing: bool = False  # Append even when nothing changed
    actor_id: Optional[UUID] = None


class ComputeMonthlyFeesResponse(BaseModel):
    """Aggregate outcome of a computation batch"""
    count: int  # newly appended versions
    students_evaluated: int = 0
    skipped_no_structure: int = 0
    unchanged: int = 0
    failed: int = 0


# Ledger Schemas
class StudentFeeHistoryOut(BaseModel):
    id: UUID
    student_id: UUID
    period_month: date
    version: int
    fee_structure_id: UUID
    fee_structure_version_id: UUID
    base_amount: Decimal
    scholarship_amount: Decimal
    extra_charges_amount: Decimal
    final_payable: Decimal
    breakdown: Dict[str, Any]
    created_at: datetime
    created_by_id: Optional[UUID] = None

    class Config:
        from_attributes = True


class Pagination(BaseModel):
    page: int
    page_size: int
    total_count: int
    total_pages: int
    has_next: bool
    has_prev: bool


class StudentFeeHistoryPage(BaseModel):
    student_id: UUID
    pagination: Pagination
    history: List[StudentFeeHistoryOut] = []


class StudentMonthFees(BaseModel):
    """Latest version for a month plus every earlier version"""
    student_id: UUID
    month: str
    current: Optional[StudentFeeHistoryOut] = None
    versions: List[StudentFeeHistoryOut] = []


class BulkFeesSummary(BaseModel):
    total_students: int
    total_base_amount: Decimal = Decimal('0.00')
    total_scholarships: Decimal = Decimal('0.00')
    total_charges: Decimal = Decimal('0.00')
    total_final_payable: Decimal = Decimal('0.00')
    average_fee_per_student: Decimal = Decimal('0.00')


class BulkStudentFees(BaseModel):
    month: str
    class_id: Optional[UUID] = None
    pagination: Pagination
    summary: BulkFeesSummary
    students: List[StudentFeeHistoryOut] = []
