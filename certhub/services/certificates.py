"""
Certificate lifecycle service.

Issuing, verification, revocation, suspension, renewal chains and the
expiry sweep. Every date decision goes through services.status with "today"
taken from the injected Clock.
"""
import secrets
import string
import uuid
from datetime import date, timedelta
from io import BytesIO
from typing import Optional, List, Dict, Any, Tuple

import qrcode
import structlog
from slugify import slugify
from sqlalchemy import and_, or_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.orm.exc import StaleDataError

from ..clock import Clock
from ..config import settings
from ..errors import (
    ValidationError,
    NotFoundError,
    UniquenessConflictError,
    InvalidStateError,
    NotRenewableError,
    ConcurrencyConflictError,
)
from ..models.models import (
    Certificate,
    CertificateSequence,
    Employee,
    TrainingType,
    TrainingProvider,
    VerificationAttempt,
)
from ..schemas.certificates import CertificateFilters
from ..storage.provider import StorageProvider
from .audit import log_event
from .status import (
    LifecycleStatus,
    ComplianceStatus,
    TERMINAL_STATUSES,
    SWEEPABLE_STATUSES,
    RENEWABLE_STATUSES,
    compute_expiry_date,
    days_until_expiry,
    evaluate_certificate,
    lifecycle_for,
)


log = structlog.get_logger(__name__)

# Lifecycle stages that follow the calendar
DATE_DRIVEN_STATUSES = frozenset({
    LifecycleStatus.ACTIVE,
    LifecycleStatus.EXPIRING_SOON,
    LifecycleStatus.EXPIRED,
    LifecycleStatus.COMPLETED,
})

ISSUABLE_STATUSES = frozenset({
    LifecycleStatus.DRAFT,
    LifecycleStatus.PENDING,
    LifecycleStatus.COMPLETED,
    LifecycleStatus.ACTIVE,
})

SUSPENDABLE_STATUSES = frozenset({LifecycleStatus.ACTIVE, LifecycleStatus.EXPIRING_SOON})

UPDATABLE_FIELDS = (
    "provider_id",
    "certificate_number",
    "issuer",
    "issue_date",
    "valid_from",
    "completion_date",
    "expiry_date",
    "score",
    "passing_score",
    "training_hours",
    "cost",
    "location",
    "instructor_name",
    "notes",
    "is_renewable",
)

VERIFICATION_CODE_ALPHABET = string.ascii_uppercase + string.digits


# =====================
# Identifiers
# =====================

def generate_verification_code(db: Session) -> str:
    """Unique public lookup code, e.g. CERT-7GQ2KX9A"""
    while True:
        code = "CERT-" + "".join(secrets.choice(VERIFICATION_CODE_ALPHABET) for _ in range(8))
        if not db.query(Certificate.id).filter(Certificate.verification_code == code).first():
            return code


def generate_certificate_number(db: Session, training_type: TrainingType, today: date) -> str:
    """
    Next certificate number for a training type in the current month.

    Format: {TYPE_CODE}-{YYYYMM}-{NNNN}. The counter lives in
    certificate_sequences; numbers already taken (e.g. typed in by hand)
    are skipped.
    """
    prefix = (training_type.code or "GEN").upper()
    sequence = db.query(CertificateSequence).filter(
        CertificateSequence.training_type_id == training_type.id,
        CertificateSequence.year == today.year,
        CertificateSequence.month == today.month,
    ).first()
    if not sequence:
        sequence = CertificateSequence(
            training_type_id=training_type.id,
            year=today.year,
            month=today.month,
            last_number=0,
        )
        db.add(sequence)

    while True:
        sequence.last_number += 1
        number = f"{prefix}-{today.year}{today.month:02d}-{sequence.last_number:04d}"
        if not _certificate_number_taken(db, number):
            return number


def _certificate_number_taken(db: Session, number: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
    query = db.query(Certificate.id).filter(Certificate.certificate_number == number)
    if exclude_id:
        query = query.filter(Certificate.id != exclude_id)
    return query.first() is not None


# =====================
# Loading & persistence helpers
# =====================

def get_certificate(db: Session, certificate_id: uuid.UUID) -> Certificate:
    cert = db.query(Certificate).options(
        joinedload(Certificate.employee),
        joinedload(Certificate.training_type),
        joinedload(Certificate.provider),
    ).filter(Certificate.id == certificate_id).first()
    if not cert:
        raise NotFoundError(f"Certificate {certificate_id} not found")
    return cert


def _check_version(cert: Certificate, expected_version: Optional[int]) -> None:
    if expected_version is not None and cert.version != expected_version:
        raise ConcurrencyConflictError()


def _write(db: Session, operation) -> None:
    try:
        operation()
    except StaleDataError as e:
        db.rollback()
        log.warning("certificate_stale_write", error=str(e))
        raise ConcurrencyConflictError() from e
    except IntegrityError as e:
        db.rollback()
        log.warning("certificate_integrity_error", error=str(e.orig))
        raise UniquenessConflictError("Certificate number or verification code already exists") from e


def _commit(db: Session) -> None:
    """Commit, translating lock and constraint failures into domain errors."""
    _write(db, db.commit)


def _flush(db: Session) -> None:
    """Flush with the same error translation as _commit; the session is rolled back on failure."""
    _write(db, db.flush)


def refresh_status(cert: Certificate, today: date) -> bool:
    """
    Re-derive compliance_status (and the date-driven lifecycle stage) from
    stored state. Returns True when anything changed.
    """
    compliance = evaluate_certificate(cert, today)
    changed = False
    if cert.compliance_status != compliance.value:
        cert.compliance_status = compliance.value
        changed = True
    if LifecycleStatus(cert.status) in DATE_DRIVEN_STATUSES:
        lifecycle = lifecycle_for(compliance)
        if lifecycle and cert.status != lifecycle.value:
            cert.status = lifecycle.value
            changed = True
    if changed:
        cert.last_compliance_check = today
    return changed


# =====================
# Validation
# =====================

def _validate_dates_and_scores(data: Dict[str, Any], today: date, errors: Dict[str, str]) -> None:
    issue_date = data.get("issue_date")
    expiry_date = data.get("expiry_date")
    if issue_date and issue_date > today:
        errors["issue_date"] = "Issue date cannot be in the future"
    if issue_date and expiry_date and expiry_date <= issue_date:
        errors["expiry_date"] = "Expiry date must be after the issue date"
    for field in ("score", "passing_score"):
        value = data.get(field)
        if value is not None and not (0 <= float(value) <= 100):
            errors[field] = f"{field.replace('_', ' ').capitalize()} must be between 0 and 100"
    for field in ("training_hours", "cost"):
        value = data.get(field)
        if value is not None and float(value) < 0:
            errors[field] = f"{field.replace('_', ' ').capitalize()} cannot be negative"


def validate_new_certificate(db: Session, data: Dict[str, Any], today: date) -> Tuple[Employee, TrainingType]:
    """
    Rules shared by interactive creation and spreadsheet import.

    Raises ValidationError with every failing field at once.
    """
    errors: Dict[str, str] = {}

    employee = None
    if not data.get("employee_id"):
        errors["employee_id"] = "Employee is required"
    else:
        employee = db.query(Employee).filter(Employee.id == data["employee_id"]).first()
        if not employee:
            errors["employee_id"] = "Employee not found"
        elif employee.status != "active":
            errors["employee_id"] = "Employee is not active"

    training_type = None
    if not data.get("training_type_id"):
        errors["training_type_id"] = "Training type is required"
    else:
        training_type = db.query(TrainingType).filter(TrainingType.id == data["training_type_id"]).first()
        if not training_type:
            errors["training_type_id"] = "Training type not found"
        elif not training_type.is_active:
            errors["training_type_id"] = "Training type is not active"

    if data.get("provider_id"):
        if not db.query(TrainingProvider.id).filter(TrainingProvider.id == data["provider_id"]).first():
            errors["provider_id"] = "Training provider not found"

    if not data.get("issue_date"):
        errors["issue_date"] = "Issue date is required"

    _validate_dates_and_scores(data, today, errors)

    if errors:
        raise ValidationError(errors)

    number = data.get("certificate_number")
    if number and _certificate_number_taken(db, number):
        raise UniquenessConflictError(
            f"Certificate number {number} already exists",
            {"certificate_number": "Certificate number already exists"},
        )
    return employee, training_type


# =====================
# Create / update / delete
# =====================

def create_certificate(db: Session, data: Dict[str, Any], actor: Optional[str], clock: Clock) -> Certificate:
    """Create a certificate. Expiry defaults to issue_date + the type's validity."""
    today = clock.today()
    data = dict(data)
    status = LifecycleStatus(data.pop("status", None) or LifecycleStatus.ACTIVE)
    if status not in ISSUABLE_STATUSES:
        raise ValidationError({"status": f"Certificates cannot be created as {status.value}"})

    employee, training_type = validate_new_certificate(db, data, today)

    expiry_date = data.get("expiry_date") or compute_expiry_date(data["issue_date"], training_type.validity_months)
    if expiry_date and expiry_date <= data["issue_date"]:
        raise ValidationError({"expiry_date": "Expiry date must be after the issue date"})

    cert = Certificate(
        employee_id=employee.id,
        training_type_id=training_type.id,
        provider_id=data.get("provider_id"),
        certificate_number=data.get("certificate_number") or generate_certificate_number(db, training_type, today),
        verification_code=generate_verification_code(db),
        issuer=data.get("issuer") or settings.default_issuer,
        issue_date=data["issue_date"],
        valid_from=data.get("valid_from"),
        completion_date=data.get("completion_date"),
        expiry_date=expiry_date,
        score=data.get("score"),
        passing_score=data.get("passing_score"),
        training_hours=data.get("training_hours"),
        cost=data.get("cost"),
        location=data.get("location"),
        instructor_name=data.get("instructor_name"),
        notes=data.get("notes"),
        is_renewable=data.get("is_renewable") is not False,
        status=status.value,
        compliance_status=ComplianceStatus.PENDING.value,
        renewal_generation=1,
        attachments=[],
        created_by=actor,
        updated_by=actor,
    )
    cert.employee = employee
    cert.training_type = training_type
    refresh_status(cert, today)
    cert.last_compliance_check = today
    db.add(cert)
    _flush(db)

    log_event(db, "ISSUE", "certificate", cert.id, actor, {
        "certificate_number": cert.certificate_number,
        "employee_id": str(employee.id),
        "training_type": training_type.code,
        "status": cert.status,
    })
    _commit(db)
    db.refresh(cert)
    log.info("certificate_created", certificate_id=str(cert.id), number=cert.certificate_number, status=cert.status)
    return cert


def update_certificate(
    db: Session,
    certificate_id: uuid.UUID,
    data: Dict[str, Any],
    actor: Optional[str],
    clock: Clock,
    expected_version: Optional[int] = None,
) -> Certificate:
    """Patch descriptive fields; status is re-derived afterwards."""
    today = clock.today()
    cert = get_certificate(db, certificate_id)
    _check_version(cert, expected_version)
    if LifecycleStatus(cert.status) in TERMINAL_STATUSES:
        raise InvalidStateError(f"Certificate is {cert.status} and can no longer be edited")

    changes = {k: v for k, v in data.items() if k in UPDATABLE_FIELDS and v is not None}

    merged = {
        "issue_date": changes.get("issue_date", cert.issue_date),
        "expiry_date": changes.get("expiry_date", cert.expiry_date),
        "score": changes.get("score", cert.score),
        "passing_score": changes.get("passing_score", cert.passing_score),
        "training_hours": changes.get("training_hours", cert.training_hours),
        "cost": changes.get("cost", cert.cost),
    }
    # A new issue date without an explicit expiry moves the expiry with it
    if "issue_date" in changes and "expiry_date" not in changes and cert.training_type:
        merged["expiry_date"] = compute_expiry_date(changes["issue_date"], cert.training_type.validity_months)
        changes["expiry_date"] = merged["expiry_date"]

    errors: Dict[str, str] = {}
    _validate_dates_and_scores(merged, today, errors)
    if changes.get("provider_id") and not db.query(TrainingProvider.id).filter(TrainingProvider.id == changes["provider_id"]).first():
        errors["provider_id"] = "Training provider not found"
    if errors:
        raise ValidationError(errors)

    number = changes.get("certificate_number")
    if number and _certificate_number_taken(db, number, exclude_id=cert.id):
        raise UniquenessConflictError(
            f"Certificate number {number} already exists",
            {"certificate_number": "Certificate number already exists"},
        )

    before = {k: getattr(cert, k) for k in changes}
    for key, value in changes.items():
        setattr(cert, key, value)
    cert.updated_by = actor
    cert.updated_at = clock.now()
    refresh_status(cert, today)

    log_event(db, "UPDATE", "certificate", cert.id, actor, changes={
        k: {"before": before[k], "after": v} for k, v in changes.items() if before[k] != v
    })
    _commit(db)
    db.refresh(cert)
    return cert


def delete_certificate(
    db: Session,
    certificate_id: uuid.UUID,
    actor: Optional[str],
    expected_version: Optional[int] = None,
) -> None:
    """Hard delete. Certificates that are part of a renewal chain are kept."""
    cert = get_certificate(db, certificate_id)
    _check_version(cert, expected_version)
    if cert.renewed_from_id or cert.renewed_to_id:
        raise InvalidStateError("Certificates in a renewal chain cannot be deleted; revoke instead")
    log_event(db, "DELETE", "certificate", cert.id, actor, {"certificate_number": cert.certificate_number})
    db.delete(cert)
    _commit(db)
    log.info("certificate_deleted", certificate_id=str(certificate_id))


# =====================
# State machine
# =====================

def issue_certificate(
    db: Session,
    certificate_id: uuid.UUID,
    actor: Optional[str],
    clock: Clock,
    expected_version: Optional[int] = None,
) -> Certificate:
    """draft/pending -> active (then the calendar decides)"""
    cert = get_certificate(db, certificate_id)
    _check_version(cert, expected_version)
    if cert.status not in (LifecycleStatus.DRAFT, LifecycleStatus.PENDING):
        raise InvalidStateError(f"Only draft or pending certificates can be issued (current: {cert.status})")

    previous = cert.status
    cert.status = LifecycleStatus.ACTIVE.value
    cert.updated_by = actor
    cert.updated_at = clock.now()
    refresh_status(cert, clock.today())
    log_event(db, "ISSUE", "certificate", cert.id, actor, changes={"status": {"before": previous, "after": cert.status}})
    _commit(db)
    db.refresh(cert)
    return cert


def verify_certificate(
    db: Session,
    certificate_id: uuid.UUID,
    actor: str,
    clock: Clock,
    expected_version: Optional[int] = None,
) -> Certificate:
    """Mark as verified by `actor`. Lifecycle status is left alone."""
    cert = get_certificate(db, certificate_id)
    _check_version(cert, expected_version)
    if cert.status in (LifecycleStatus.REVOKED, LifecycleStatus.CANCELLED):
        raise InvalidStateError(f"A {cert.status} certificate cannot be verified")

    cert.is_verified = True
    cert.verified_by = actor
    cert.verification_date = clock.now()
    cert.updated_by = actor
    cert.updated_at = clock.now()
    log_event(db, "VERIFY", "certificate", cert.id, actor)
    _commit(db)
    db.refresh(cert)
    return cert


def record_verification_lookup(
    db: Session,
    code: str,
    clock: Clock,
    client_address: Optional[str] = None,
) -> Optional[Certificate]:
    """
    Public lookup by verification code.

    Every attempt is recorded, including unknown codes. Nothing is rate
    limited here; the attempt rows are there for abuse visibility.
    """
    code = (code or "").strip().upper()
    now = clock.now()
    cert = db.query(Certificate).options(
        joinedload(Certificate.employee),
        joinedload(Certificate.training_type),
    ).filter(Certificate.verification_code == code).first()

    db.add(VerificationAttempt(
        code=code[:50],
        found=cert is not None,
        certificate_id=cert.id if cert else None,
        client_address=client_address,
        attempted_at=now,
    ))
    if cert:
        cert.verification_attempts = (cert.verification_attempts or 0) + 1
        cert.last_verification_attempt = now
    try:
        db.commit()
    except StaleDataError:
        # Counter bump lost to a concurrent edit; record the attempt alone
        db.rollback()
        db.add(VerificationAttempt(
            code=code[:50],
            found=cert is not None,
            certificate_id=cert.id if cert else None,
            client_address=client_address,
            attempted_at=now,
        ))
        db.commit()
        cert = db.query(Certificate).filter(Certificate.verification_code == code).first()

    log.info("verification_lookup", code=code, found=cert is not None)
    return cert


def revoke_certificate(
    db: Session,
    certificate_id: uuid.UUID,
    reason: str,
    actor: str,
    clock: Clock,
    notes: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> Certificate:
    """Any non-terminal stage -> revoked (terminal)."""
    if not reason or not reason.strip():
        raise ValidationError({"reason": "A revocation reason is required"})

    cert = get_certificate(db, certificate_id)
    _check_version(cert, expected_version)
    if LifecycleStatus(cert.status) in TERMINAL_STATUSES:
        raise InvalidStateError(f"Certificate is already {cert.status}")

    previous = cert.status
    cert.status = LifecycleStatus.REVOKED.value
    cert.revocation_reason = reason.strip()[:255]
    cert.revocation_notes = notes
    cert.revocation_date = clock.today()
    cert.revoked_by = actor
    cert.updated_by = actor
    cert.updated_at = clock.now()
    refresh_status(cert, clock.today())

    log_event(db, "REVOKE", "certificate", cert.id, actor, {"reason": cert.revocation_reason},
              changes={"status": {"before": previous, "after": cert.status}})
    _commit(db)
    db.refresh(cert)
    log.info("certificate_revoked", certificate_id=str(cert.id), actor=actor)
    return cert


def suspend_certificate(
    db: Session,
    certificate_id: uuid.UUID,
    start: date,
    end: date,
    reason: Optional[str],
    actor: Optional[str],
    clock: Clock,
    expected_version: Optional[int] = None,
) -> Certificate:
    """active/expiring_soon -> suspended for [start, end]."""
    if not start or not end or end <= start:
        raise ValidationError({"end": "Suspension end must be after its start"})

    cert = get_certificate(db, certificate_id)
    _check_version(cert, expected_version)
    if LifecycleStatus(cert.status) not in SUSPENDABLE_STATUSES:
        raise InvalidStateError(f"Only active certificates can be suspended (current: {cert.status})")

    previous = cert.status
    cert.status = LifecycleStatus.SUSPENDED.value
    cert.suspension_start = start
    cert.suspension_end = end
    cert.suspension_reason = reason
    cert.updated_by = actor
    cert.updated_at = clock.now()
    refresh_status(cert, clock.today())

    log_event(db, "SUSPEND", "certificate", cert.id, actor,
              {"start": start, "end": end, "reason": reason},
              changes={"status": {"before": previous, "after": cert.status}})
    _commit(db)
    db.refresh(cert)
    return cert


def reactivate_certificate(
    db: Session,
    certificate_id: uuid.UUID,
    actor: Optional[str],
    clock: Clock,
    expected_version: Optional[int] = None,
) -> Certificate:
    """suspended -> active; anything else is an InvalidStateError."""
    cert = get_certificate(db, certificate_id)
    _check_version(cert, expected_version)
    if cert.status != LifecycleStatus.SUSPENDED:
        raise InvalidStateError(f"Only suspended certificates can be reactivated (current: {cert.status})")

    cert.status = LifecycleStatus.ACTIVE.value
    cert.suspension_start = None
    cert.suspension_end = None
    cert.suspension_reason = None
    cert.updated_by = actor
    cert.updated_at = clock.now()
    refresh_status(cert, clock.today())

    log_event(db, "REACTIVATE", "certificate", cert.id, actor,
              changes={"status": {"before": LifecycleStatus.SUSPENDED.value, "after": cert.status}})
    _commit(db)
    db.refresh(cert)
    return cert


# =====================
# Renewal chain
# =====================

def renew_certificate(
    db: Session,
    certificate_id: uuid.UUID,
    fields: Dict[str, Any],
    actor: Optional[str],
    clock: Clock,
    expected_version: Optional[int] = None,
) -> Certificate:
    """
    Supersede a certificate with a fresh one.

    The new certificate copies employee, training type, provider and issuer,
    takes the given fields on top, and is generation + 1. The old one is
    marked renewed and points forward to the new one.

    Raises:
        InvalidStateError: old certificate is not active/expiring/expired, or
            was already renewed
        NotRenewableError: old certificate is flagged non-renewable
        ConcurrencyConflictError: the old row changed underneath us
    """
    today = clock.today()
    old = get_certificate(db, certificate_id)
    _check_version(old, expected_version)

    if old.renewed_to_id:
        raise InvalidStateError("Certificate has already been renewed")
    if LifecycleStatus(old.status) not in RENEWABLE_STATUSES:
        raise InvalidStateError(f"A {old.status} certificate cannot be renewed")
    if not old.is_renewable:
        raise NotRenewableError("Certificate is not renewable")

    training_type = old.training_type
    issue_date = fields.get("issue_date") or today
    expiry_date = fields.get("expiry_date") or compute_expiry_date(issue_date, training_type.validity_months)
    provider_id = fields.get("provider_id") or old.provider_id

    data = {
        "issue_date": issue_date,
        "expiry_date": expiry_date,
        "score": fields.get("score"),
        "training_hours": fields.get("training_hours"),
        "cost": fields.get("cost"),
    }
    errors: Dict[str, str] = {}
    _validate_dates_and_scores(data, today, errors)
    if fields.get("provider_id") and not db.query(TrainingProvider.id).filter(TrainingProvider.id == provider_id).first():
        errors["provider_id"] = "Training provider not found"
    if errors:
        raise ValidationError(errors)

    number = fields.get("certificate_number")
    if number and _certificate_number_taken(db, number):
        raise UniquenessConflictError(
            f"Certificate number {number} already exists",
            {"certificate_number": "Certificate number already exists"},
        )

    new = Certificate(
        employee_id=old.employee_id,
        training_type_id=old.training_type_id,
        provider_id=provider_id,
        certificate_number=number or generate_certificate_number(db, training_type, today),
        verification_code=generate_verification_code(db),
        issuer=old.issuer,
        issue_date=issue_date,
        completion_date=fields.get("completion_date") or issue_date,
        expiry_date=expiry_date,
        score=fields.get("score"),
        passing_score=old.passing_score,
        training_hours=fields.get("training_hours"),
        cost=fields.get("cost"),
        location=old.location,
        notes=fields.get("notes"),
        is_renewable=old.is_renewable,
        status=LifecycleStatus.ACTIVE.value,
        compliance_status=ComplianceStatus.COMPLIANT.value,
        renewal_generation=(old.renewal_generation or 1) + 1,
        renewed_from_id=old.id,
        attachments=[],
        created_by=actor,
        updated_by=actor,
    )
    new.training_type = training_type
    refresh_status(new, today)
    new.last_compliance_check = today
    db.add(new)

    _flush(db)
    previous = old.status
    old.renewed_to_id = new.id
    old.status = LifecycleStatus.RENEWED.value
    old.updated_by = actor
    old.updated_at = clock.now()
    _flush(db)

    log_event(db, "RENEW", "certificate", old.id, actor,
              {"renewed_to": new.id, "generation": new.renewal_generation},
              changes={"status": {"before": previous, "after": old.status}})
    log_event(db, "ISSUE", "certificate", new.id, actor,
              {"renewed_from": old.id, "certificate_number": new.certificate_number})
    _commit(db)
    db.refresh(new)
    log.info(
        "certificate_renewed",
        old_id=str(old.id),
        new_id=str(new.id),
        generation=new.renewal_generation,
    )
    return new


def get_renewal_chain(db: Session, certificate_id: uuid.UUID) -> List[Certificate]:
    """
    Full lineage of a certificate, oldest generation first.

    Walks back to the root through renewed_from_id, then forward through
    renewed_to_id. Steps are bounded by the number of certificates; a loop
    means corrupt links and raises InvalidStateError.
    """
    cert = get_certificate(db, certificate_id)
    max_steps = db.query(func.count(Certificate.id)).scalar() or 0

    root = cert
    seen = {root.id}
    while root.renewed_from_id:
        if len(seen) > max_steps:
            raise InvalidStateError("Renewal chain is corrupt (too long)")
        parent = db.query(Certificate).filter(Certificate.id == root.renewed_from_id).first()
        if not parent:
            break
        if parent.id in seen:
            raise InvalidStateError("Renewal chain contains a cycle")
        seen.add(parent.id)
        root = parent

    chain = [root]
    seen = {root.id}
    current = root
    while current.renewed_to_id:
        child = db.query(Certificate).filter(Certificate.id == current.renewed_to_id).first()
        if not child:
            break
        if child.id in seen or len(chain) > max_steps:
            raise InvalidStateError("Renewal chain contains a cycle")
        seen.add(child.id)
        chain.append(child)
        current = child
    return chain


# =====================
# Queries
# =====================

def query_certificates(
    db: Session,
    filters: CertificateFilters,
    today: date,
    page: int = 1,
    per_page: int = 50,
) -> Tuple[List[Certificate], int]:
    """Filtered, paginated certificate list with employee and type pre-joined."""
    query = db.query(Certificate).join(Certificate.employee).join(Certificate.training_type).options(
        joinedload(Certificate.employee),
        joinedload(Certificate.training_type),
    )

    if not filters.include_superseded and filters.status != LifecycleStatus.RENEWED:
        query = query.filter(Certificate.status != LifecycleStatus.RENEWED.value)
    if filters.employee_id:
        query = query.filter(Certificate.employee_id == filters.employee_id)
    if filters.department_id:
        query = query.filter(Employee.department_id == filters.department_id)
    if filters.training_type_id:
        query = query.filter(Certificate.training_type_id == filters.training_type_id)
    if filters.provider_id:
        query = query.filter(Certificate.provider_id == filters.provider_id)
    if filters.category:
        query = query.filter(TrainingType.category == filters.category)
    if filters.mandatory_only:
        query = query.filter(TrainingType.is_mandatory == True)
    if filters.status:
        query = query.filter(Certificate.status == filters.status)
    if filters.compliance_status:
        query = query.filter(Certificate.compliance_status == filters.compliance_status)
    if filters.expiring_within_days is not None:
        query = query.filter(
            Certificate.expiry_date.isnot(None),
            Certificate.expiry_date >= today,
            Certificate.expiry_date <= today + timedelta(days=filters.expiring_within_days),
        )
    if filters.issued_from:
        query = query.filter(Certificate.issue_date >= filters.issued_from)
    if filters.issued_to:
        query = query.filter(Certificate.issue_date <= filters.issued_to)
    if filters.search:
        term = f"%{filters.search.strip()}%"
        query = query.filter(or_(
            Certificate.certificate_number.ilike(term),
            Certificate.verification_code.ilike(term),
            Certificate.issuer.ilike(term),
            Employee.name.ilike(term),
            Employee.employee_number.ilike(term),
            TrainingType.name.ilike(term),
        ))

    total = query.count()
    items = query.order_by(
        Certificate.issue_date.desc(),
        Certificate.certificate_number,
    ).offset((page - 1) * per_page).limit(per_page).all()
    return items, total


def sweep_expiry_statuses(db: Session, clock: Clock, chunk_size: Optional[int] = None) -> int:
    """
    Re-evaluate dated certificates and persist any status that moved.

    Suspended certificates are included so their compliance_status follows
    the suspension window; their lifecycle stage is left alone.

    Works in id-ordered chunks, committing each one. The comparison is against
    stored state, so a second run with the same clock changes nothing and a
    failed chunk can simply be re-run.

    Returns:
        Number of certificates whose status or compliance_status changed
    """
    today = clock.today()
    chunk_size = chunk_size or settings.sweep_chunk_size
    changed = 0
    chunks = 0
    last_id = None

    while True:
        query = db.query(Certificate).options(joinedload(Certificate.training_type)).filter(
            or_(
                and_(
                    Certificate.expiry_date.isnot(None),
                    Certificate.status.in_([s.value for s in SWEEPABLE_STATUSES]),
                ),
                # Suspension windows open and close with the calendar
                Certificate.status == LifecycleStatus.SUSPENDED.value,
            )
        )
        if last_id is not None:
            query = query.filter(Certificate.id > last_id)
        batch = query.order_by(Certificate.id).limit(chunk_size).all()
        if not batch:
            break

        last_id = batch[-1].id
        chunks += 1
        batch_changed = sum(1 for cert in batch if refresh_status(cert, today))
        try:
            db.commit()
        except StaleDataError as e:
            # Someone edited a row mid-sweep; their write wins and the next run catches up
            db.rollback()
            log.warning("certificate_sweep_chunk_conflict", chunk=chunks, error=str(e))
            continue
        changed += batch_changed

    log.info("certificate_sweep_completed", changed=changed, chunks=chunks, today=today.isoformat())
    return changed


# =====================
# QR codes
# =====================

def verification_url(cert: Certificate) -> str:
    return f"{settings.public_base_url.rstrip('/')}/verify/{cert.verification_code}"


def generate_qr_code(
    db: Session,
    certificate_id: uuid.UUID,
    storage: StorageProvider,
    clock: Clock,
) -> str:
    """Render a verification QR code PNG, store it and remember its key."""
    cert = get_certificate(db, certificate_id)

    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(verification_url(cert))
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffer = BytesIO()
    img.save(buffer, format="PNG")

    today = clock.today()
    key = f"qr_codes/{today:%Y}/{today:%m}/{slugify(cert.certificate_number)}_qr.png"
    key = storage.put(key, buffer.getvalue(), content_type="image/png")

    cert.qr_code_path = key
    _commit(db)
    log.info("certificate_qr_generated", certificate_id=str(cert.id), key=key)
    return key


# =====================
# Serialization
# =====================

def _number(value) -> Optional[float]:
    return float(value) if value is not None else None


def serialize_certificate(cert: Certificate, today: date) -> Dict[str, Any]:
    employee = cert.employee
    training_type = cert.training_type
    return {
        "id": cert.id,
        "employee_id": cert.employee_id,
        "employee_name": employee.name if employee else None,
        "employee_number": employee.employee_number if employee else None,
        "training_type_id": cert.training_type_id,
        "training_type_name": training_type.name if training_type else None,
        "training_type_code": training_type.code if training_type else None,
        "provider_id": cert.provider_id,
        "certificate_number": cert.certificate_number,
        "verification_code": cert.verification_code,
        "issuer": cert.issuer,
        "issue_date": cert.issue_date,
        "valid_from": cert.valid_from,
        "completion_date": cert.completion_date,
        "expiry_date": cert.expiry_date,
        "days_until_expiry": days_until_expiry(cert.expiry_date, today),
        "score": _number(cert.score),
        "passing_score": _number(cert.passing_score),
        "training_hours": _number(cert.training_hours),
        "cost": _number(cert.cost),
        "location": cert.location,
        "instructor_name": cert.instructor_name,
        "notes": cert.notes,
        "status": cert.status,
        "compliance_status": cert.compliance_status,
        "is_verified": bool(cert.is_verified),
        "verified_by": cert.verified_by,
        "verification_date": cert.verification_date,
        "verification_attempts": cert.verification_attempts or 0,
        "revocation_date": cert.revocation_date,
        "revocation_reason": cert.revocation_reason,
        "revoked_by": cert.revoked_by,
        "suspension_start": cert.suspension_start,
        "suspension_end": cert.suspension_end,
        "suspension_reason": cert.suspension_reason,
        "is_renewable": bool(cert.is_renewable),
        "renewed_from_id": cert.renewed_from_id,
        "renewed_to_id": cert.renewed_to_id,
        "renewal_generation": cert.renewal_generation,
        "attachments": cert.attachments or [],
        "qr_code_path": cert.qr_code_path,
        "version": cert.version,
        "created_at": cert.created_at,
        "updated_at": cert.updated_at,
    }
