from typing import Optional

from fastapi import APIRouter, Depends, Query, UploadFile, File
from sqlalchemy.orm import Session, joinedload

from ..auth.security import Actor, get_current_actor, require_roles
from ..clock import Clock, get_clock
from ..db import get_db
from ..models.models import Employee, Certificate
from ..schemas.certificates import CertificateResponse
from ..schemas.employees import EmployeeCreate, EmployeeUpdate, EmployeeResponse, BackgroundCheckUpdate
from ..services import employees as employee_service
from ..services import files as file_service
from ..services import reports as report_service
from ..services.certificates import serialize_certificate
from ..storage import get_storage
from ..storage.provider import StorageProvider
from .common import HR_ROLE, parse_uuid

router = APIRouter(prefix="/employees", tags=["employees"])


def _serialize(employee: Employee) -> EmployeeResponse:
    item = EmployeeResponse.model_validate(employee)
    item.department_name = employee.department.name if employee.department else None
    item.background_check_files = employee.background_check_files or []
    return item


@router.get("")
def list_employees(
    department_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    query = db.query(Employee).options(joinedload(Employee.department))
    if department_id:
        query = query.filter(Employee.department_id == parse_uuid(department_id, "department ID"))
    if status:
        query = query.filter(Employee.status == status)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(
            (Employee.name.ilike(term)) | (Employee.employee_number.ilike(term)) | (Employee.email.ilike(term))
        )
    total = query.count()
    items = query.order_by(Employee.name).offset((page - 1) * per_page).limit(per_page).all()
    return {
        "items": [_serialize(e) for e in items],
        "total": total,
        "page": page,
        "per_page": per_page,
    }


@router.post("", response_model=EmployeeResponse, status_code=201)
def create_employee(
    payload: EmployeeCreate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    employee = employee_service.create_employee(db, payload.model_dump(), actor.id, clock)
    return _serialize(employee)


@router.get("/{employee_id}", response_model=EmployeeResponse)
def get_employee(employee_id: str, db: Session = Depends(get_db), _: Actor = Depends(get_current_actor)):
    return _serialize(employee_service.get_employee(db, parse_uuid(employee_id, "employee ID")))


@router.patch("/{employee_id}", response_model=EmployeeResponse)
def update_employee(
    employee_id: str,
    payload: EmployeeUpdate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    employee = employee_service.update_employee(
        db, parse_uuid(employee_id, "employee ID"), payload.model_dump(exclude_unset=True), actor.id, clock
    )
    return _serialize(employee)


@router.delete("/{employee_id}")
def delete_employee(employee_id: str, db: Session = Depends(get_db), actor: Actor = Depends(require_roles(HR_ROLE))):
    employee_service.delete_employee(db, parse_uuid(employee_id, "employee ID"), actor.id)
    return {"status": "ok"}


@router.put("/{employee_id}/background-check", response_model=EmployeeResponse)
def update_background_check(
    employee_id: str,
    payload: BackgroundCheckUpdate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    employee = employee_service.update_background_check(
        db, parse_uuid(employee_id, "employee ID"), payload.model_dump(), actor.id, clock
    )
    return _serialize(employee)


@router.post("/{employee_id}/background-check/files", status_code=201)
async def upload_background_check_file(
    employee_id: str,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    storage: StorageProvider = Depends(get_storage),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    content = await file.read()
    return file_service.upload_background_check_file(
        db, storage, clock, parse_uuid(employee_id, "employee ID"),
        file.filename or "upload", content, file.content_type, actor.id,
    )


@router.delete("/{employee_id}/background-check/files/{file_hash}")
def delete_background_check_file(
    employee_id: str,
    file_hash: str,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    file_service.delete_background_check_file(db, storage, parse_uuid(employee_id, "employee ID"), file_hash, actor.id)
    return {"status": "ok"}


@router.get("/{employee_id}/compliance")
def employee_compliance(
    employee_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    _: Actor = Depends(get_current_actor),
):
    return report_service.employee_report(db, parse_uuid(employee_id, "employee ID"), clock.today())


@router.get("/{employee_id}/certificates", response_model=list[CertificateResponse])
def employee_certificates(
    employee_id: str,
    include_superseded: bool = Query(False),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    _: Actor = Depends(get_current_actor),
):
    employee = employee_service.get_employee(db, parse_uuid(employee_id, "employee ID"))
    query = db.query(Certificate).options(
        joinedload(Certificate.employee),
        joinedload(Certificate.training_type),
    ).filter(Certificate.employee_id == employee.id)
    if not include_superseded:
        query = query.filter(Certificate.status != "renewed")
    today = clock.today()
    return [serialize_certificate(c, today) for c in query.order_by(Certificate.issue_date.desc()).all()]
