import os

# Settings are read at import time; pin them before certhub is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["METRICS_ENABLED"] = "false"
os.environ.setdefault("JWT_SECRET", "test-secret")

from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from certhub.auth.security import create_access_token
from certhub.clock import FixedClock, get_clock
from certhub.db import Base, get_db
from certhub.main import app
from certhub.models import models  # noqa: F401
from certhub.models.models import Department, Employee, TrainingType, TrainingProvider
from certhub.services.certificates import create_certificate
from certhub.storage import get_storage
from certhub.storage.local_provider import LocalStorageProvider


TODAY = date(2024, 6, 1)


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def db(engine):
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock():
    return FixedClock(TODAY)


@pytest.fixture()
def storage(tmp_path):
    return LocalStorageProvider(str(tmp_path / "storage"))


@pytest.fixture()
def client(db, clock, storage):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_storage] = lambda: storage
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def hr_headers():
    return {"Authorization": f"Bearer {create_access_token('hr-1', ['hr_admin'])}"}


@pytest.fixture()
def viewer_headers():
    return {"Authorization": f"Bearer {create_access_token('viewer-1', ['viewer'])}"}


# =====================
# Factories
# =====================

def make_department(db, code="OPS", name="Operations"):
    department = Department(code=code, name=name, is_active=True)
    db.add(department)
    db.commit()
    return department


def make_employee(db, number="E001", name="Ana Silva", department=None, status="active"):
    employee = Employee(
        employee_number=number,
        name=name,
        email=f"{number.lower()}@example.com",
        department_id=department.id if department else None,
        status=status,
        background_check_status="not_started",
        background_check_files=[],
    )
    db.add(employee)
    db.commit()
    return employee


def make_training_type(db, code="FA", name="First Aid", validity_months=12, warning_days=30, is_mandatory=True, category="safety"):
    training_type = TrainingType(
        code=code,
        name=name,
        category=category,
        validity_months=validity_months,
        warning_days=warning_days,
        is_mandatory=is_mandatory,
        is_active=True,
    )
    db.add(training_type)
    db.commit()
    return training_type


def make_provider(db, code="RC", name="Red Cross Training", accreditation_expiry=None):
    provider = TrainingProvider(code=code, name=name, accreditation_expiry=accreditation_expiry, is_active=True)
    db.add(provider)
    db.commit()
    return provider


def make_certificate(db, clock, employee, training_type, issue_date=date(2024, 1, 1), actor="hr-1", **fields):
    data = {
        "employee_id": employee.id,
        "training_type_id": training_type.id,
        "issue_date": issue_date,
    }
    data.update(fields)
    return create_certificate(db, data, actor, clock)
