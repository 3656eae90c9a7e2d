from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth.security import Actor, get_current_actor, require_roles
from ..db import get_db
from ..errors import NotFoundError, UniquenessConflictError, InvalidStateError
from ..models.models import Department, Employee
from ..schemas.employees import DepartmentCreate, DepartmentUpdate, DepartmentResponse
from ..services.audit import log_event
from .common import HR_ROLE, parse_uuid

router = APIRouter(prefix="/departments", tags=["departments"])


def _get_department(db: Session, department_id: str) -> Department:
    department = db.query(Department).filter(Department.id == parse_uuid(department_id, "department ID")).first()
    if not department:
        raise NotFoundError(f"Department {department_id} not found")
    return department


def _check_code(db: Session, code: str, exclude_id=None) -> None:
    query = db.query(Department.id).filter(func.upper(Department.code) == code.upper())
    if exclude_id:
        query = query.filter(Department.id != exclude_id)
    if query.first():
        raise UniquenessConflictError(f"Department code {code} already exists", {"code": "Code already exists"})


@router.get("", response_model=list[DepartmentResponse])
def list_departments(
    active_only: bool = Query(False),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    counts = dict(
        db.query(Employee.department_id, func.count(Employee.id))
        .filter(Employee.status == "active")
        .group_by(Employee.department_id)
        .all()
    )
    query = db.query(Department)
    if active_only:
        query = query.filter(Department.is_active == True)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter((Department.name.ilike(term)) | (Department.code.ilike(term)))
    result = []
    for d in query.order_by(Department.name).all():
        item = DepartmentResponse.model_validate(d)
        item.employee_count = counts.get(d.id, 0)
        result.append(item)
    return result


@router.post("", response_model=DepartmentResponse, status_code=201)
def create_department(
    payload: DepartmentCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    _check_code(db, payload.code)
    department = Department(**payload.model_dump())
    department.code = department.code.upper()
    db.add(department)
    db.flush()
    log_event(db, "CREATE", "department", department.id, actor.id, {"code": department.code})
    db.commit()
    db.refresh(department)
    return department


@router.get("/{department_id}", response_model=DepartmentResponse)
def get_department(department_id: str, db: Session = Depends(get_db), _: Actor = Depends(get_current_actor)):
    department = _get_department(db, department_id)
    item = DepartmentResponse.model_validate(department)
    item.employee_count = db.query(func.count(Employee.id)).filter(
        Employee.department_id == department.id,
        Employee.status == "active",
    ).scalar()
    return item


@router.patch("/{department_id}", response_model=DepartmentResponse)
def update_department(
    department_id: str,
    payload: DepartmentUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    department = _get_department(db, department_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("code"):
        _check_code(db, changes["code"], exclude_id=department.id)
        changes["code"] = changes["code"].upper()
    for key, value in changes.items():
        setattr(department, key, value)
    log_event(db, "UPDATE", "department", department.id, actor.id, changes=changes)
    db.commit()
    db.refresh(department)
    return department


@router.delete("/{department_id}")
def delete_department(
    department_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    department = _get_department(db, department_id)
    if db.query(Employee.id).filter(Employee.department_id == department.id).first():
        raise InvalidStateError("Department still has employees; move them or deactivate the department")
    log_event(db, "DELETE", "department", department.id, actor.id, {"code": department.code})
    db.delete(department)
    db.commit()
    return {"status": "ok"}
