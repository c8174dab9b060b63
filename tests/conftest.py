# tests/conftest.py
import itertools
import os
from datetime import date
from decimal import Decimal

# settings are read at import time
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["ENV"] = "test"

import pytest
from fastapi.testclient import TestClient

from fee_engine.core.db import db_manager, get_engine
from fee_engine.main import app
from fee_engine.models import Base, Class, Student
from fee_engine.schemas.charge_schema import ChargeAssignmentCreate, ChargeCreate
from fee_engine.schemas.fee_schema import ComputeMonthlyFeesRequest, FeeStructureCreate, FeeStructureRevise
from fee_engine.schemas.scholarship_schema import ScholarshipAssignmentCreate, ScholarshipCreate
from fee_engine.services import charges, fee_structures, scholarships
from fee_engine.services.fee_computation import FeeComputationService


@pytest.fixture(autouse=True)
def schema():
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = db_manager.SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


class Factory:
    """Builds the rows a computation needs, through the same services the API uses"""

    def __init__(self, db):
        self.db = db
        self._sequence = itertools.count(1)

    def class_(self, name="Grade 4"):
        klass = Class(name=name, level=name, academic_year=2024)
        self.db.add(klass)
        self.db.commit()
        return klass

    def student(self, klass=None, first_name="Amina", last_name=None):
        number = next(self._sequence)
        student = Student(
            admission_no=f"ADM{number:04d}",
            first_name=first_name,
            last_name=last_name or f"Student{number:04d}",
            class_id=klass.id if klass else None,
        )
        self.db.add(student)
        self.db.commit()
        return student

    def structure(self, klass, items, effective_from=date(2024, 1, 1), name="Standard", academic_year="2024"):
        return fee_structures.create_structure(self.db, FeeStructureCreate(
            class_id=klass.id,
            academic_year=academic_year,
            name=name,
            effective_from=effective_from,
            items=items,
        ))

    def revise(self, structure, items, effective_from, change_reason=None):
        return fee_structures.revise_structure(self.db, structure.id, FeeStructureRevise(
            effective_from=effective_from,
            items=items,
            change_reason=change_reason,
        ))

    def scholarship(self, value_type="FIXED", value="50.00", name="Merit award", type="MERIT"):
        return scholarships.create_scholarship(self.db, ScholarshipCreate(
            name=name, type=type, value_type=value_type, value=Decimal(value),
        ))

    def assign_scholarship(self, student, scholarship, effective_from=date(2024, 1, 1), expires_at=None):
        return scholarships.assign_to_student(self.db, ScholarshipAssignmentCreate(
            scholarship_id=scholarship.id,
            student_id=student.id,
            effective_from=effective_from,
            expires_at=expires_at,
        ))

    def charge(self, value="25.00", name="Library fine", type="FINE"):
        return charges.create_charge(self.db, ChargeCreate(name=name, type=type, value=Decimal(value)))

    def apply_charge(self, student, charge, month="2024-03", amount=None, reason=None):
        return charges.apply_to_student(self.db, ChargeAssignmentCreate(
            charge_id=charge.id,
            student_id=student.id,
            applied_month=month,
            amount=Decimal(amount) if amount is not None else None,
            reason=reason,
        ))


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def compute(db):
    def run(month, **kwargs):
        return FeeComputationService(db).compute_for_month(ComputeMonthlyFeesRequest(month=month, **kwargs))
    return run
