from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..clock import Clock, get_clock
from ..db import get_db
from ..schemas.certificates import VerificationResult
from ..services.certificates import record_verification_lookup
from ..services.status import ComplianceStatus, VALID_COMPLIANCE, evaluate_certificate

router = APIRouter(prefix="/verify", tags=["verify"])


@router.get("/{code}", response_model=VerificationResult)
def verify_code(code: str, request: Request, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    """Public certificate check. Every lookup is recorded, unknown codes included."""
    client = request.client.host if request.client else None
    cert = record_verification_lookup(db, code, clock, client_address=client)
    if not cert:
        return {"code": code.strip().upper(), "found": False, "valid": False}

    compliance = ComplianceStatus(evaluate_certificate(cert, clock.today()))
    return {
        "code": cert.verification_code,
        "found": True,
        "certificate_number": cert.certificate_number,
        "employee_name": cert.employee.name if cert.employee else None,
        "training_type_name": cert.training_type.name if cert.training_type else None,
        "issue_date": cert.issue_date,
        "expiry_date": cert.expiry_date,
        "status": cert.status,
        "compliance_status": compliance.value,
        "is_verified": bool(cert.is_verified),
        "valid": compliance in VALID_COMPLIANCE and cert.status != "renewed",
    }
