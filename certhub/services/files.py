"""
Certificate file storage.

Scans are versioned per (employee, training type): each upload becomes the
next version and the only one flagged latest. Identical content for the same
pair is rejected by sha256. Background check documents live on the employee.
"""
import hashlib
import mimetypes
import os
import uuid
from datetime import date
from typing import Optional, List, Dict, Any, Tuple

import structlog
from slugify import slugify
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..clock import Clock
from ..config import settings
from ..errors import ValidationError, NotFoundError, UniquenessConflictError
from ..models.models import CertificateFile, Certificate, Employee, TrainingType
from ..storage.provider import StorageProvider
from .audit import log_event


log = structlog.get_logger(__name__)


def _resolve_content_type(filename: str, content_type: Optional[str]) -> str:
    if content_type and content_type != "application/octet-stream":
        return content_type.split(";")[0].strip().lower()
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"


def validate_upload(filename: str, content: bytes, content_type: Optional[str]) -> str:
    """Check name, size and type. Returns the effective mime type."""
    errors: Dict[str, str] = {}
    mime_type = _resolve_content_type(filename or "", content_type)
    if not filename:
        errors["file"] = "A file name is required"
    if not content:
        errors["file"] = "The uploaded file is empty"
    elif len(content) > settings.max_upload_mb * 1024 * 1024:
        errors["file"] = f"File exceeds the {settings.max_upload_mb} MB limit"
    if mime_type not in settings.allowed_upload_types:
        errors["content_type"] = f"Unsupported file type {mime_type}"
    if errors:
        raise ValidationError(errors)
    return mime_type


def file_hash(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def stored_filename(original_filename: str, version: int, issue_date: Optional[date], expiry_date: Optional[date]) -> str:
    """v{version}_{issue}_{expiry}{ext}, dates as YYYY-MM-DD or 'na'"""
    ext = os.path.splitext(original_filename)[1].lower()
    issue = issue_date.isoformat() if issue_date else "na"
    expiry = expiry_date.isoformat() if expiry_date else "na"
    return f"v{version}_{issue}_{expiry}{ext}"


def storage_folder(training_type: TrainingType, employee: Employee) -> str:
    return f"certificates/{slugify(training_type.name)}/employee-{slugify(employee.employee_number)}"


def _latest_version(db: Session, employee_id: uuid.UUID, training_type_id: uuid.UUID) -> int:
    return db.query(func.max(CertificateFile.version_number)).filter(
        CertificateFile.employee_id == employee_id,
        CertificateFile.training_type_id == training_type_id,
    ).scalar() or 0


def upload_certificate_file(
    db: Session,
    storage: StorageProvider,
    clock: Clock,
    employee_id: uuid.UUID,
    training_type_id: uuid.UUID,
    filename: str,
    content: bytes,
    content_type: Optional[str] = None,
    actor: Optional[str] = None,
    certificate_id: Optional[uuid.UUID] = None,
    issue_date: Optional[date] = None,
    expiry_date: Optional[date] = None,
    notes: Optional[str] = None,
) -> CertificateFile:
    """
    Store a new version of an employee's certificate scan.

    The blob is written first; if the database commit then fails the blob is
    removed again.

    Raises:
        NotFoundError: employee, training type or certificate missing
        ValidationError: bad file, or certificate belongs to another pair
        UniquenessConflictError: same content already stored for this pair
    """
    mime_type = validate_upload(filename, content, content_type)

    employee = db.query(Employee).filter(Employee.id == employee_id).first()
    if not employee:
        raise NotFoundError(f"Employee {employee_id} not found")
    training_type = db.query(TrainingType).filter(TrainingType.id == training_type_id).first()
    if not training_type:
        raise NotFoundError(f"Training type {training_type_id} not found")

    certificate = None
    if certificate_id:
        certificate = db.query(Certificate).filter(Certificate.id == certificate_id).first()
        if not certificate:
            raise NotFoundError(f"Certificate {certificate_id} not found")
        if certificate.employee_id != employee.id or certificate.training_type_id != training_type.id:
            raise ValidationError({"certificate_id": "Certificate belongs to a different employee or training type"})
        issue_date = issue_date or certificate.issue_date
        expiry_date = expiry_date or certificate.expiry_date

    digest = file_hash(content)
    duplicate = db.query(CertificateFile).filter(
        CertificateFile.employee_id == employee.id,
        CertificateFile.training_type_id == training_type.id,
        CertificateFile.file_hash == digest,
    ).first()
    if duplicate:
        raise UniquenessConflictError(
            f"This file is already stored as version {duplicate.version_number}",
            {"file": "Duplicate file"},
        )

    version = _latest_version(db, employee.id, training_type.id) + 1
    name = stored_filename(filename, version, issue_date, expiry_date)
    # Per-upload suffix; a failed upload must only ever clean up its own blob
    key = storage.put(
        f"{storage_folder(training_type, employee)}/{uuid.uuid4().hex[:8]}_{name}", content, content_type=mime_type
    )

    try:
        db.query(CertificateFile).filter(
            CertificateFile.employee_id == employee.id,
            CertificateFile.training_type_id == training_type.id,
            CertificateFile.is_latest == True,
        ).update({CertificateFile.is_latest: False}, synchronize_session=False)

        record = CertificateFile(
            employee_id=employee.id,
            training_type_id=training_type.id,
            certificate_id=certificate.id if certificate else None,
            version_number=version,
            is_latest=True,
            storage_key=key,
            original_filename=filename,
            stored_filename=name,
            mime_type=mime_type,
            file_size=len(content),
            file_hash=digest,
            issue_date=issue_date,
            expiry_date=expiry_date,
            status="stored",
            notes=notes,
            uploaded_by=actor,
            uploaded_at=clock.now(),
        )
        db.add(record)

        if certificate:
            certificate.attachments = list(certificate.attachments or []) + [{
                "path": key,
                "hash": digest,
                "size": len(content),
                "original_name": filename,
                "version": version,
            }]

        db.flush()
        log_event(db, "UPLOAD", "certificate_file", record.id, actor, {
            "employee_id": employee.id,
            "training_type": training_type.code,
            "version": version,
            "size": len(content),
        })
        db.commit()
    except IntegrityError as e:
        db.rollback()
        storage.delete(key)
        log.warning("certificate_file_version_conflict", key=key, version=version)
        raise UniquenessConflictError(
            f"Version {version} was stored by another upload; retry the upload",
            {"file": "Version conflict"},
        ) from e
    except Exception:
        db.rollback()
        storage.delete(key)
        raise

    db.refresh(record)
    log.info("certificate_file_uploaded", file_id=str(record.id), key=key, version=version)
    return record


def list_certificate_files(
    db: Session,
    employee_id: uuid.UUID,
    training_type_id: Optional[uuid.UUID] = None,
    latest_only: bool = False,
) -> List[CertificateFile]:
    query = db.query(CertificateFile).filter(CertificateFile.employee_id == employee_id)
    if training_type_id:
        query = query.filter(CertificateFile.training_type_id == training_type_id)
    if latest_only:
        query = query.filter(CertificateFile.is_latest == True)
    return query.order_by(CertificateFile.training_type_id, CertificateFile.version_number.desc()).all()


def get_certificate_file(db: Session, file_id: uuid.UUID) -> CertificateFile:
    record = db.query(CertificateFile).filter(CertificateFile.id == file_id).first()
    if not record:
        raise NotFoundError(f"File {file_id} not found")
    return record


def download_certificate_file(db: Session, storage: StorageProvider, file_id: uuid.UUID) -> Tuple[CertificateFile, bytes]:
    record = get_certificate_file(db, file_id)
    return record, storage.get(record.storage_key)


def delete_certificate_file(db: Session, storage: StorageProvider, file_id: uuid.UUID, actor: Optional[str] = None) -> None:
    """Remove a version. When it was the latest, the highest remaining version takes over."""
    record = get_certificate_file(db, file_id)
    key = record.storage_key
    was_latest = record.is_latest

    if record.certificate_id:
        certificate = db.query(Certificate).filter(Certificate.id == record.certificate_id).first()
        if certificate and certificate.attachments:
            certificate.attachments = [a for a in certificate.attachments if a.get("path") != key]

    log_event(db, "DELETE", "certificate_file", record.id, actor, {"version": record.version_number, "key": key})
    db.delete(record)
    db.flush()

    if was_latest:
        successor = db.query(CertificateFile).filter(
            CertificateFile.employee_id == record.employee_id,
            CertificateFile.training_type_id == record.training_type_id,
        ).order_by(CertificateFile.version_number.desc()).first()
        if successor:
            successor.is_latest = True

    db.commit()
    if not storage.delete(key):
        log.warning("certificate_file_blob_missing", key=key)


# =====================
# Background checks
# =====================

def upload_background_check_file(
    db: Session,
    storage: StorageProvider,
    clock: Clock,
    employee_id: uuid.UUID,
    filename: str,
    content: bytes,
    content_type: Optional[str] = None,
    actor: Optional[str] = None,
) -> Dict[str, Any]:
    mime_type = validate_upload(filename, content, content_type)
    employee = db.query(Employee).filter(Employee.id == employee_id).first()
    if not employee:
        raise NotFoundError(f"Employee {employee_id} not found")

    digest = file_hash(content)
    existing = list(employee.background_check_files or [])
    if any(f.get("hash") == digest for f in existing):
        raise UniquenessConflictError("This file is already attached to the background check", {"file": "Duplicate file"})

    today = clock.today()
    base, ext = os.path.splitext(filename)
    folder = f"background_checks/employee-{slugify(employee.employee_number)}"
    key = storage.put(
        f"{folder}/{today.isoformat()}_{uuid.uuid4().hex[:8]}_{slugify(base)}{ext.lower()}",
        content,
        content_type=mime_type,
    )
    entry = {
        "path": key,
        "hash": digest,
        "size": len(content),
        "original_name": filename,
        "mime_type": mime_type,
        "uploaded_at": clock.now().isoformat(),
        "uploaded_by": actor,
    }
    try:
        employee.background_check_files = existing + [entry]
        employee.updated_at = clock.now()
        log_event(db, "UPLOAD", "employee", employee.id, actor, {"background_check_file": key})
        db.commit()
    except Exception:
        db.rollback()
        storage.delete(key)
        raise
    return entry


def delete_background_check_file(
    db: Session,
    storage: StorageProvider,
    employee_id: uuid.UUID,
    digest: str,
    actor: Optional[str] = None,
) -> None:
    employee = db.query(Employee).filter(Employee.id == employee_id).first()
    if not employee:
        raise NotFoundError(f"Employee {employee_id} not found")
    files = list(employee.background_check_files or [])
    match = next((f for f in files if f.get("hash") == digest), None)
    if not match:
        raise NotFoundError("Background check file not found")

    employee.background_check_files = [f for f in files if f is not match]
    log_event(db, "DELETE", "employee", employee.id, actor, {"background_check_file": match["path"]})
    db.commit()
    if not storage.delete(match["path"]):
        log.warning("background_check_blob_missing", key=match["path"])
