from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, UploadFile, File, Form
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ..auth.security import Actor, get_current_actor, require_roles
from ..clock import Clock, get_clock
from ..db import get_db
from ..schemas.files import CertificateFileResponse
from ..services import files as file_service
from ..storage import get_storage
from ..storage.provider import StorageProvider
from .common import HR_ROLE, parse_uuid

router = APIRouter(prefix="/files", tags=["files"])


@router.post("", response_model=CertificateFileResponse, status_code=201)
async def upload_certificate_file(
    file: UploadFile = File(...),
    employee_id: str = Form(...),
    training_type_id: str = Form(...),
    certificate_id: Optional[str] = Form(None),
    issue_date: Optional[date] = Form(None),
    expiry_date: Optional[date] = Form(None),
    notes: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    storage: StorageProvider = Depends(get_storage),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    """Store a new version of a certificate scan for an employee and training type."""
    content = await file.read()
    return file_service.upload_certificate_file(
        db,
        storage,
        clock,
        employee_id=parse_uuid(employee_id, "employee ID"),
        training_type_id=parse_uuid(training_type_id, "training type ID"),
        filename=file.filename or "upload",
        content=content,
        content_type=file.content_type,
        actor=actor.id,
        certificate_id=parse_uuid(certificate_id, "certificate ID") if certificate_id else None,
        issue_date=issue_date,
        expiry_date=expiry_date,
        notes=notes,
    )


@router.get("", response_model=list[CertificateFileResponse])
def list_certificate_files(
    employee_id: str = Query(...),
    training_type_id: Optional[str] = Query(None),
    latest_only: bool = Query(False),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    return file_service.list_certificate_files(
        db,
        parse_uuid(employee_id, "employee ID"),
        parse_uuid(training_type_id, "training type ID") if training_type_id else None,
        latest_only,
    )


@router.get("/{file_id}", response_model=CertificateFileResponse)
def get_certificate_file(file_id: str, db: Session = Depends(get_db), _: Actor = Depends(get_current_actor)):
    return file_service.get_certificate_file(db, parse_uuid(file_id, "file ID"))


@router.get("/{file_id}/download")
def download_certificate_file(
    file_id: str,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    _: Actor = Depends(get_current_actor),
):
    record, content = file_service.download_certificate_file(db, storage, parse_uuid(file_id, "file ID"))
    return Response(
        content=content,
        media_type=record.mime_type,
        headers={"Content-Disposition": f'attachment; filename="{record.stored_filename}"'},
    )


@router.delete("/{file_id}")
def delete_certificate_file(
    file_id: str,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    file_service.delete_certificate_file(db, storage, parse_uuid(file_id, "file ID"), actor.id)
    return {"status": "ok"}
