from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import Actor, get_current_actor
from ..clock import Clock, get_clock
from ..db import get_db
from ..services import reports as report_service
from .common import parse_uuid

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/dashboard")
def dashboard(
    department_id: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    _: Actor = Depends(get_current_actor),
):
    return report_service.dashboard(
        db,
        clock.today(),
        department_id=parse_uuid(department_id, "department ID") if department_id else None,
        category=category,
    )


@router.get("/departments")
def departments(db: Session = Depends(get_db), clock: Clock = Depends(get_clock), _: Actor = Depends(get_current_actor)):
    return report_service.departments_report(db, clock.today())


@router.get("/training-types")
def training_types(
    category: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    _: Actor = Depends(get_current_actor),
):
    return report_service.training_types_report(db, clock.today(), category)


@router.get("/employees")
def employees(
    department_id: Optional[str] = Query(None),
    only_non_compliant: bool = Query(False),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    _: Actor = Depends(get_current_actor),
):
    return report_service.employees_report(
        db,
        clock.today(),
        department_id=parse_uuid(department_id, "department ID") if department_id else None,
        only_non_compliant=only_non_compliant,
    )


@router.get("/providers")
def providers(db: Session = Depends(get_db), clock: Clock = Depends(get_clock), _: Actor = Depends(get_current_actor)):
    return report_service.providers_report(db, clock.today())


@router.get("/trends")
def trends(
    months: int = Query(12, ge=1, le=60),
    department_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    _: Actor = Depends(get_current_actor),
):
    return report_service.trends_report(
        db,
        clock.today(),
        months,
        department_id=parse_uuid(department_id, "department ID") if department_id else None,
    )


@router.get("/expiring")
def expiring(
    days: int = Query(90, ge=1, le=365),
    department_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    _: Actor = Depends(get_current_actor),
):
    return report_service.expiring_report(
        db,
        clock.today(),
        days,
        department_id=parse_uuid(department_id, "department ID") if department_id else None,
    )
