from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ..auth.security import Actor, get_current_actor, require_roles
from ..clock import Clock, get_clock
from ..db import get_db
from ..schemas.certificates import (
    CertificateCreate,
    CertificateUpdate,
    CertificateResponse,
    CertificateListResponse,
    CertificateFilters,
    RenewRequest,
    RevokeRequest,
    SuspendRequest,
    VersionedRequest,
    SweepResult,
)
from ..services import certificates as certificate_service
from ..services.audit import get_audit_logs
from ..storage import get_storage
from ..storage.provider import StorageProvider
from .common import HR_ROLE, parse_uuid

router = APIRouter(prefix="/certificates", tags=["certificates"])


def _response(cert, clock: Clock) -> dict:
    return certificate_service.serialize_certificate(cert, clock.today())


@router.get("", response_model=CertificateListResponse)
def list_certificates(
    employee_id: Optional[str] = Query(None),
    department_id: Optional[str] = Query(None),
    training_type_id: Optional[str] = Query(None),
    provider_id: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    compliance_status: Optional[str] = Query(None),
    mandatory_only: bool = Query(False),
    expiring_within_days: Optional[int] = Query(None, ge=0),
    issued_from: Optional[date] = Query(None),
    issued_to: Optional[date] = Query(None),
    search: Optional[str] = Query(None),
    include_superseded: bool = Query(False),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    _: Actor = Depends(get_current_actor),
):
    filters = CertificateFilters(
        employee_id=parse_uuid(employee_id, "employee ID") if employee_id else None,
        department_id=parse_uuid(department_id, "department ID") if department_id else None,
        training_type_id=parse_uuid(training_type_id, "training type ID") if training_type_id else None,
        provider_id=parse_uuid(provider_id, "provider ID") if provider_id else None,
        category=category,
        status=status,
        compliance_status=compliance_status,
        mandatory_only=mandatory_only,
        expiring_within_days=expiring_within_days,
        issued_from=issued_from,
        issued_to=issued_to,
        search=search,
        include_superseded=include_superseded,
    )
    today = clock.today()
    items, total = certificate_service.query_certificates(db, filters, today, page, per_page)
    return {
        "items": [certificate_service.serialize_certificate(c, today) for c in items],
        "total": total,
        "page": page,
        "per_page": per_page,
    }


@router.post("", response_model=CertificateResponse, status_code=201)
def create_certificate(
    payload: CertificateCreate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    cert = certificate_service.create_certificate(db, payload.model_dump(), actor.id, clock)
    return _response(cert, clock)


@router.post("/sweep", response_model=SweepResult)
def sweep_statuses(
    chunk_size: Optional[int] = Query(None, ge=1, le=10000),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    _: Actor = Depends(require_roles(HR_ROLE)),
):
    """Re-evaluate expiry-driven statuses now instead of waiting for the scheduled job."""
    return {"changed": certificate_service.sweep_expiry_statuses(db, clock, chunk_size)}


@router.get("/{certificate_id}", response_model=CertificateResponse)
def get_certificate(
    certificate_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    _: Actor = Depends(get_current_actor),
):
    cert = certificate_service.get_certificate(db, parse_uuid(certificate_id, "certificate ID"))
    return _response(cert, clock)


@router.patch("/{certificate_id}", response_model=CertificateResponse)
def update_certificate(
    certificate_id: str,
    payload: CertificateUpdate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    data = payload.model_dump(exclude_unset=True)
    expected_version = data.pop("expected_version", None)
    cert = certificate_service.update_certificate(
        db, parse_uuid(certificate_id, "certificate ID"), data, actor.id, clock, expected_version
    )
    return _response(cert, clock)


@router.delete("/{certificate_id}")
def delete_certificate(
    certificate_id: str,
    expected_version: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    certificate_service.delete_certificate(db, parse_uuid(certificate_id, "certificate ID"), actor.id, expected_version)
    return {"status": "ok"}


@router.post("/{certificate_id}/issue", response_model=CertificateResponse)
def issue_certificate(
    certificate_id: str,
    payload: VersionedRequest = VersionedRequest(),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    cert = certificate_service.issue_certificate(
        db, parse_uuid(certificate_id, "certificate ID"), actor.id, clock, payload.expected_version
    )
    return _response(cert, clock)


@router.post("/{certificate_id}/verify", response_model=CertificateResponse)
def verify_certificate(
    certificate_id: str,
    payload: VersionedRequest = VersionedRequest(),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    cert = certificate_service.verify_certificate(
        db, parse_uuid(certificate_id, "certificate ID"), actor.id, clock, payload.expected_version
    )
    return _response(cert, clock)


@router.post("/{certificate_id}/revoke", response_model=CertificateResponse)
def revoke_certificate(
    certificate_id: str,
    payload: RevokeRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    cert = certificate_service.revoke_certificate(
        db, parse_uuid(certificate_id, "certificate ID"), payload.reason, actor.id, clock,
        notes=payload.notes, expected_version=payload.expected_version,
    )
    return _response(cert, clock)


@router.post("/{certificate_id}/suspend", response_model=CertificateResponse)
def suspend_certificate(
    certificate_id: str,
    payload: SuspendRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    cert = certificate_service.suspend_certificate(
        db, parse_uuid(certificate_id, "certificate ID"), payload.start, payload.end, payload.reason,
        actor.id, clock, payload.expected_version,
    )
    return _response(cert, clock)


@router.post("/{certificate_id}/reactivate", response_model=CertificateResponse)
def reactivate_certificate(
    certificate_id: str,
    payload: VersionedRequest = VersionedRequest(),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    cert = certificate_service.reactivate_certificate(
        db, parse_uuid(certificate_id, "certificate ID"), actor.id, clock, payload.expected_version
    )
    return _response(cert, clock)


@router.post("/{certificate_id}/renew", response_model=CertificateResponse, status_code=201)
def renew_certificate(
    certificate_id: str,
    payload: RenewRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    fields = payload.model_dump(exclude_unset=True)
    expected_version = fields.pop("expected_version", None)
    cert = certificate_service.renew_certificate(
        db, parse_uuid(certificate_id, "certificate ID"), fields, actor.id, clock, expected_version
    )
    return _response(cert, clock)


@router.get("/{certificate_id}/chain", response_model=list[CertificateResponse])
def renewal_chain(
    certificate_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    _: Actor = Depends(get_current_actor),
):
    chain = certificate_service.get_renewal_chain(db, parse_uuid(certificate_id, "certificate ID"))
    return [_response(c, clock) for c in chain]


@router.post("/{certificate_id}/qr-code")
def generate_qr_code(
    certificate_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    storage: StorageProvider = Depends(get_storage),
    _: Actor = Depends(require_roles(HR_ROLE)),
):
    key = certificate_service.generate_qr_code(db, parse_uuid(certificate_id, "certificate ID"), storage, clock)
    return {"key": key}


@router.get("/{certificate_id}/qr-code")
def get_qr_code(
    certificate_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    storage: StorageProvider = Depends(get_storage),
    _: Actor = Depends(get_current_actor),
):
    cert_id = parse_uuid(certificate_id, "certificate ID")
    cert = certificate_service.get_certificate(db, cert_id)
    key = cert.qr_code_path or certificate_service.generate_qr_code(db, cert_id, storage, clock)
    return Response(content=storage.get(key), media_type="image/png")


@router.get("/{certificate_id}/history")
def certificate_history(
    certificate_id: str,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    cert_id = parse_uuid(certificate_id, "certificate ID")
    certificate_service.get_certificate(db, cert_id)
    return [
        {
            "action": entry.action,
            "actor_id": entry.actor_id,
            "timestamp": entry.timestamp_utc,
            "changes": entry.changes_json,
            "context": entry.context,
        }
        for entry in get_audit_logs(db, entity_type="certificate", entity_id=str(cert_id), limit=limit)
    ]
