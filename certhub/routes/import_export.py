from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, UploadFile, File
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ..auth.security import Actor, get_current_actor, require_roles
from ..clock import Clock, get_clock
from ..db import get_db
from ..schemas.files import ImportResultResponse
from ..services import reports as report_service
from ..services import spreadsheet
from .common import HR_ROLE, parse_uuid

router = APIRouter(prefix="/import-export", tags=["import-export"])


def _attachment(content, filename: str, media_type: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={filename}", "Cache-Control": "no-store"},
    )


@router.post("/employees", response_model=ImportResultResponse)
async def import_employees(
    file: UploadFile = File(...),
    update_existing: bool = Query(True),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    rows = spreadsheet.read_rows(file.filename or "", await file.read())
    return spreadsheet.import_employees(db, rows, actor.id, clock, update_existing=update_existing)


@router.post("/certificates", response_model=ImportResultResponse)
async def import_certificates(
    file: UploadFile = File(...),
    update_existing: bool = Query(True),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    rows = spreadsheet.read_rows(file.filename or "", await file.read())
    return spreadsheet.import_certificates(db, rows, actor.id, clock, update_existing=update_existing)


@router.get("/certificates")
def export_certificates(
    fmt: str = Query("xlsx", pattern="^(xlsx|csv)$"),
    department_id: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    issued_from: Optional[date] = Query(None),
    issued_to: Optional[date] = Query(None),
    include_superseded: bool = Query(False),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    _: Actor = Depends(get_current_actor),
):
    today = clock.today()
    certs = report_service.load_certificates(
        db,
        department_id=parse_uuid(department_id, "department ID") if department_id else None,
        category=category,
        issued_from=issued_from,
        issued_to=issued_to,
        include_superseded=include_superseded,
    )
    certs.sort(key=lambda c: (c.employee.employee_number, c.issue_date))
    stamp = today.strftime("%Y%m%d")
    if fmt == "csv":
        return _attachment(spreadsheet.export_certificates_csv(certs, today), f"certificates_{stamp}.csv", "text/csv")
    return _attachment(
        spreadsheet.export_certificates_xlsx(certs, today), f"certificates_{stamp}.xlsx", spreadsheet.XLSX_MEDIA_TYPE
    )


@router.get("/compliance-report")
def export_compliance_report(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    _: Actor = Depends(get_current_actor),
):
    today = clock.today()
    content = spreadsheet.export_compliance_report_xlsx(
        report_service.dashboard(db, today),
        report_service.departments_report(db, today),
        report_service.training_types_report(db, today),
        report_service.employees_report(db, today)["employees"],
    )
    return _attachment(content, f"compliance_report_{today.strftime('%Y%m%d')}.xlsx", spreadsheet.XLSX_MEDIA_TYPE)
