import uuid
from datetime import date, datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, field_validator


ISSUABLE_STATUSES = ("draft", "pending", "completed", "active")


class CertificateCreate(BaseModel):
    employee_id: uuid.UUID
    training_type_id: uuid.UUID
    provider_id: Optional[uuid.UUID] = None
    certificate_number: Optional[str] = None  # generated when omitted
    issuer: Optional[str] = None
    issue_date: date
    valid_from: Optional[date] = None
    completion_date: Optional[date] = None
    expiry_date: Optional[date] = None  # derived from validity_months when omitted
    score: Optional[float] = None
    passing_score: Optional[float] = None
    training_hours: Optional[float] = None
    cost: Optional[float] = None
    location: Optional[str] = None
    instructor_name: Optional[str] = None
    notes: Optional[str] = None
    is_renewable: bool = True
    status: str = "active"  # draft|pending|completed|active

    @field_validator('status')
    @classmethod
    def validate_status(cls, v):
        if v not in ISSUABLE_STATUSES:
            raise ValueError(f'status must be one of {list(ISSUABLE_STATUSES)}')
        return v


class CertificateUpdate(BaseModel):
    provider_id: Optional[uuid.UUID] = None
    certificate_number: Optional[str] = None
    issuer: Optional[str] = None
    issue_date: Optional[date] = None
    valid_from: Optional[date] = None
    completion_date: Optional[date] = None
    expiry_date: Optional[date] = None
    score: Optional[float] = None
    passing_score: Optional[float] = None
    training_hours: Optional[float] = None
    cost: Optional[float] = None
    location: Optional[str] = None
    instructor_name: Optional[str] = None
    notes: Optional[str] = None
    is_renewable: Optional[bool] = None
    expected_version: Optional[int] = None


class RenewRequest(BaseModel):
    certificate_number: Optional[str] = None
    issue_date: Optional[date] = None
    expiry_date: Optional[date] = None
    completion_date: Optional[date] = None
    provider_id: Optional[uuid.UUID] = None
    score: Optional[float] = None
    training_hours: Optional[float] = None
    cost: Optional[float] = None
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class RevokeRequest(BaseModel):
    reason: str
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class SuspendRequest(BaseModel):
    start: date
    end: date
    reason: Optional[str] = None
    expected_version: Optional[int] = None


class VersionedRequest(BaseModel):
    expected_version: Optional[int] = None


class CertificateFilters(BaseModel):
    """Typed filter set for certificate queries."""
    employee_id: Optional[uuid.UUID] = None
    department_id: Optional[uuid.UUID] = None
    training_type_id: Optional[uuid.UUID] = None
    provider_id: Optional[uuid.UUID] = None
    category: Optional[str] = None
    status: Optional[str] = None
    compliance_status: Optional[str] = None
    mandatory_only: bool = False
    expiring_within_days: Optional[int] = None
    issued_from: Optional[date] = None
    issued_to: Optional[date] = None
    search: Optional[str] = None
    include_superseded: bool = False


class CertificateResponse(BaseModel):
    id: uuid.UUID
    employee_id: uuid.UUID
    employee_name: Optional[str] = None
    employee_number: Optional[str] = None
    training_type_id: uuid.UUID
    training_type_name: Optional[str] = None
    training_type_code: Optional[str] = None
    provider_id: Optional[uuid.UUID] = None
    certificate_number: str
    verification_code: str
    issuer: Optional[str] = None
    issue_date: date
    valid_from: Optional[date] = None
    completion_date: Optional[date] = None
    expiry_date: Optional[date] = None
    days_until_expiry: Optional[int] = None
    score: Optional[float] = None
    passing_score: Optional[float] = None
    training_hours: Optional[float] = None
    cost: Optional[float] = None
    location: Optional[str] = None
    instructor_name: Optional[str] = None
    notes: Optional[str] = None
    status: str
    compliance_status: str
    is_verified: bool = False
    verified_by: Optional[str] = None
    verification_date: Optional[datetime] = None
    verification_attempts: int = 0
    revocation_date: Optional[date] = None
    revocation_reason: Optional[str] = None
    revoked_by: Optional[str] = None
    suspension_start: Optional[date] = None
    suspension_end: Optional[date] = None
    suspension_reason: Optional[str] = None
    is_renewable: bool = True
    renewed_from_id: Optional[uuid.UUID] = None
    renewed_to_id: Optional[uuid.UUID] = None
    renewal_generation: int = 1
    attachments: List[Dict[str, Any]] = Field(default_factory=list)
    qr_code_path: Optional[str] = None
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CertificateListResponse(BaseModel):
    items: List[CertificateResponse]
    total: int
    page: int
    per_page: int


class VerificationResult(BaseModel):
    code: str
    found: bool
    certificate_number: Optional[str] = None
    employee_name: Optional[str] = None
    training_type_name: Optional[str] = None
    issue_date: Optional[date] = None
    expiry_date: Optional[date] = None
    status: Optional[str] = None
    compliance_status: Optional[str] = None
    is_verified: Optional[bool] = None
    valid: bool = False


class SweepResult(BaseModel):
    changed: int
