"""
Employee records. Shared by the API and the spreadsheet importer.
"""
import re
import uuid
from typing import Optional, Dict, Any

import structlog
from sqlalchemy.orm import Session

from ..clock import Clock
from ..errors import ValidationError, NotFoundError, UniquenessConflictError, InvalidStateError
from ..models.models import Employee, Department, Certificate
from .audit import log_event


log = structlog.get_logger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

EMPLOYEE_FIELDS = (
    "employee_number",
    "name",
    "email",
    "department_id",
    "position",
    "status",
    "hire_date",
)


def get_employee(db: Session, employee_id: uuid.UUID) -> Employee:
    employee = db.query(Employee).filter(Employee.id == employee_id).first()
    if not employee:
        raise NotFoundError(f"Employee {employee_id} not found")
    return employee


def _validate(db: Session, data: Dict[str, Any], clock: Clock, exclude_id: Optional[uuid.UUID] = None) -> None:
    errors: Dict[str, str] = {}
    if "employee_number" in data and not (data.get("employee_number") or "").strip():
        errors["employee_number"] = "Employee number is required"
    if "name" in data and not (data.get("name") or "").strip():
        errors["name"] = "Name is required"
    if data.get("email") and not EMAIL_RE.match(data["email"]):
        errors["email"] = "Invalid email address"
    if data.get("status") and data["status"] not in ("active", "inactive", "terminated"):
        errors["status"] = "Status must be active, inactive or terminated"
    if data.get("hire_date") and data["hire_date"] > clock.today():
        errors["hire_date"] = "Hire date cannot be in the future"
    if data.get("department_id"):
        if not db.query(Department.id).filter(Department.id == data["department_id"]).first():
            errors["department_id"] = "Department not found"
    if errors:
        raise ValidationError(errors)

    number = (data.get("employee_number") or "").strip()
    if number:
        query = db.query(Employee.id).filter(Employee.employee_number == number)
        if exclude_id:
            query = query.filter(Employee.id != exclude_id)
        if query.first():
            raise UniquenessConflictError(
                f"Employee number {number} already exists",
                {"employee_number": "Employee number already exists"},
            )


def create_employee(db: Session, data: Dict[str, Any], actor: Optional[str], clock: Clock) -> Employee:
    data = {k: v for k, v in data.items() if k in EMPLOYEE_FIELDS}
    for required in ("employee_number", "name"):
        data.setdefault(required, None)
    _validate(db, data, clock)

    employee = Employee(
        employee_number=data["employee_number"].strip(),
        name=data["name"].strip(),
        email=data.get("email"),
        department_id=data.get("department_id"),
        position=data.get("position"),
        status=data.get("status") or "active",
        hire_date=data.get("hire_date"),
        background_check_status="not_started",
        background_check_files=[],
        created_at=clock.now(),
    )
    db.add(employee)
    db.flush()
    log_event(db, "CREATE", "employee", employee.id, actor, {"employee_number": employee.employee_number})
    db.commit()
    db.refresh(employee)
    log.info("employee_created", employee_id=str(employee.id), employee_number=employee.employee_number)
    return employee


def update_employee(db: Session, employee_id: uuid.UUID, data: Dict[str, Any], actor: Optional[str], clock: Clock) -> Employee:
    employee = get_employee(db, employee_id)
    changes = {k: v for k, v in data.items() if k in EMPLOYEE_FIELDS and v is not None}
    _validate(db, changes, clock, exclude_id=employee.id)

    diff = {}
    for key, value in changes.items():
        before = getattr(employee, key)
        if before != value:
            diff[key] = {"before": before, "after": value}
            setattr(employee, key, value)
    if diff:
        employee.updated_at = clock.now()
        log_event(db, "UPDATE", "employee", employee.id, actor, changes=diff)
        db.commit()
        db.refresh(employee)
    return employee


def update_background_check(db: Session, employee_id: uuid.UUID, data: Dict[str, Any], actor: Optional[str], clock: Clock) -> Employee:
    employee = get_employee(db, employee_id)
    check_date = data.get("background_check_date")
    if check_date and check_date > clock.today():
        raise ValidationError({"background_check_date": "Background check date cannot be in the future"})

    before = employee.background_check_status
    employee.background_check_status = data["background_check_status"]
    employee.background_check_date = check_date or employee.background_check_date
    if data.get("background_check_notes") is not None:
        employee.background_check_notes = data["background_check_notes"]
    employee.updated_at = clock.now()
    log_event(db, "BACKGROUND_CHECK", "employee", employee.id, actor,
              changes={"background_check_status": {"before": before, "after": employee.background_check_status}})
    db.commit()
    db.refresh(employee)
    return employee


def delete_employee(db: Session, employee_id: uuid.UUID, actor: Optional[str]) -> None:
    """Employees holding certificates are kept; deactivate or terminate them instead."""
    employee = get_employee(db, employee_id)
    if db.query(Certificate.id).filter(Certificate.employee_id == employee.id).first():
        raise InvalidStateError("Employee has certificates and cannot be deleted; set status to terminated instead")
    log_event(db, "DELETE", "employee", employee.id, actor, {"employee_number": employee.employee_number})
    db.delete(employee)
    db.commit()
