# fee_engine/models/__init__.py - Import all models so SQLAlchemy can discover them

from fee_engine.models.base import Base

from fee_engine.models.class_model import Class
from fee_engine.models.student import Student
from fee_engine.models.fee import FeeStructure, FeeStructureVersion
from fee_engine.models.scholarship import ScholarshipDefinition, ScholarshipAssignment
from fee_engine.models.charge import ChargeDefinition, ChargeAssignment
from fee_engine.models.fee_history import StudentFeeHistory

__all__ = [
    "Base",
    "Class",
    "Student",
    "FeeStructure",
    "FeeStructureVersion",
    "ScholarshipDefinition",
    "ScholarshipAssignment",
    "ChargeDefinition",
    "ChargeAssignment",
    "StudentFeeHistory",
]
