import uuid
from datetime import datetime, date
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Integer,
    Numeric,
    JSON,
    UniqueConstraint,
    BigInteger,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


class Department(Base):
    __tablename__ = "departments"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    employees = relationship("Employee", back_populates="department")


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[uuid.UUID] = uuid_pk()
    employee_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("departments.id", ondelete="SET NULL"), index=True)
    position: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)  # active|inactive|terminated
    hire_date: Mapped[Optional[date]] = mapped_column(Date)

    # Background check
    background_check_date: Mapped[Optional[date]] = mapped_column(Date)
    background_check_status: Mapped[str] = mapped_column(String(20), default="not_started")  # not_started|in_progress|cleared|failed
    background_check_notes: Mapped[Optional[str]] = mapped_column(Text)
    background_check_files: Mapped[Optional[list]] = mapped_column(JSON)  # [{path, hash, size, original_name, uploaded_at}]

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    department = relationship("Department", back_populates="employees")
    certificates = relationship("Certificate", back_populates="employee", foreign_keys="Certificate.employee_id")


class TrainingType(Base):
    __tablename__ = "training_types"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True, index=True)
    category: Mapped[Optional[str]] = mapped_column(String(50), index=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    validity_months: Mapped[Optional[int]] = mapped_column(Integer, default=24)  # 0/None = never expires
    warning_days: Mapped[Optional[int]] = mapped_column(Integer)  # None = settings.default_warning_days
    is_mandatory: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    is_recurrent: Mapped[bool] = mapped_column(Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class TrainingProvider(Base):
    __tablename__ = "training_providers"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(20), unique=True)
    contact_person: Mapped[Optional[str]] = mapped_column(String(255))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(100))
    accreditation_number: Mapped[Optional[str]] = mapped_column(String(100))
    accreditation_expiry: Mapped[Optional[date]] = mapped_column(Date)
    contract_start_date: Mapped[Optional[date]] = mapped_column(Date)
    contract_end_date: Mapped[Optional[date]] = mapped_column(Date)
    rating: Mapped[Optional[float]] = mapped_column(Numeric(3, 2))  # 0-5
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class Certificate(Base):
    """Training certificate held by an employee.

    `status` is the lifecycle stage, `compliance_status` is derived from it and
    the dates (see services.status.evaluate). Renewal supersedes a row instead
    of deleting it: the old row points forward through `renewed_to_id`.
    """
    __tablename__ = "certificates"

    id: Mapped[uuid.UUID] = uuid_pk()
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("employees.id"), nullable=False, index=True)
    training_type_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("training_types.id"), nullable=False, index=True)
    provider_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("training_providers.id", ondelete="SET NULL"))

    certificate_number: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    verification_code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True, index=True)
    issuer: Mapped[Optional[str]] = mapped_column(String(255))

    # Dates
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    valid_from: Mapped[Optional[date]] = mapped_column(Date)
    completion_date: Mapped[Optional[date]] = mapped_column(Date)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, index=True)

    # Training details
    score: Mapped[Optional[float]] = mapped_column(Numeric(5, 2))
    passing_score: Mapped[Optional[float]] = mapped_column(Numeric(5, 2))
    training_hours: Mapped[Optional[float]] = mapped_column(Numeric(6, 2))
    cost: Mapped[Optional[float]] = mapped_column(Numeric(12, 2))
    location: Mapped[Optional[str]] = mapped_column(String(255))
    instructor_name: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False, index=True)
    compliance_status: Mapped[str] = mapped_column(String(20), default="compliant", nullable=False, index=True)
    last_compliance_check: Mapped[Optional[date]] = mapped_column(Date)

    # Verification
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    verified_by: Mapped[Optional[str]] = mapped_column(String(100))
    verification_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    verification_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_verification_attempt: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Revocation & suspension
    revocation_date: Mapped[Optional[date]] = mapped_column(Date)
    revocation_reason: Mapped[Optional[str]] = mapped_column(String(255))
    revocation_notes: Mapped[Optional[str]] = mapped_column(Text)
    revoked_by: Mapped[Optional[str]] = mapped_column(String(100))
    suspension_start: Mapped[Optional[date]] = mapped_column(Date)
    suspension_end: Mapped[Optional[date]] = mapped_column(Date)
    suspension_reason: Mapped[Optional[str]] = mapped_column(Text)

    # Renewal chain
    is_renewable: Mapped[bool] = mapped_column(Boolean, default=True)
    renewed_from_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("certificates.id"), unique=True)
    renewed_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("certificates.id"), unique=True)
    renewal_generation: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Files
    attachments: Mapped[Optional[list]] = mapped_column(JSON)  # [{path, hash, size, original_name}]
    qr_code_path: Mapped[Optional[str]] = mapped_column(String(1024))

    # Optimistic locking
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_by: Mapped[Optional[str]] = mapped_column(String(100))
    updated_by: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    employee = relationship("Employee", back_populates="certificates", foreign_keys=[employee_id])
    training_type = relationship("TrainingType")
    provider = relationship("TrainingProvider")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_cert_status_expiry", "status", "expiry_date"),
        Index("idx_cert_employee_type", "employee_id", "training_type_id"),
    )


class CertificateSequence(Base):
    __tablename__ = "certificate_sequences"

    id: Mapped[uuid.UUID] = uuid_pk()
    training_type_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("training_types.id", ondelete="CASCADE"), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    last_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("training_type_id", "year", "month", name="uq_cert_sequence_period"),
    )


class CertificateFile(Base):
    """Versioned certificate scan for an (employee, training type) pair."""
    __tablename__ = "certificate_files"

    id: Mapped[uuid.UUID] = uuid_pk()
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    training_type_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("training_types.id", ondelete="CASCADE"), nullable=False)
    certificate_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("certificates.id", ondelete="SET NULL"))

    version_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_latest: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    storage_key: Mapped[str] = mapped_column(String(1024), nullable=False)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    stored_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    file_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    issue_date: Mapped[Optional[date]] = mapped_column(Date)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date)

    status: Mapped[str] = mapped_column(String(20), default="stored")  # stored|archived
    notes: Mapped[Optional[str]] = mapped_column(Text)
    uploaded_by: Mapped[Optional[str]] = mapped_column(String(100))
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("employee_id", "training_type_id", "version_number", name="uq_cert_file_version"),
        Index("idx_cert_file_latest", "employee_id", "training_type_id", "is_latest"),
    )


class VerificationAttempt(Base):
    """Every public lookup of a verification code, found or not."""
    __tablename__ = "verification_attempts"

    id: Mapped[uuid.UUID] = uuid_pk()
    code: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    found: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    certificate_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("certificates.id", ondelete="SET NULL"))
    client_address: Mapped[Optional[str]] = mapped_column(String(100))
    attempted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, index=True)


class AuditLog(Base):
    """Append-only audit log for certificate and employee actions"""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # certificate|employee|certificate_file
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # ISSUE|VERIFY|REVOKE|SUSPEND|REACTIVATE|RENEW|...
    actor_id: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    changes_json: Mapped[Optional[dict]] = mapped_column(JSON)
    context: Mapped[Optional[dict]] = mapped_column(JSON)
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
    )
