import uuid
from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel


class CertificateFileResponse(BaseModel):
    id: uuid.UUID
    employee_id: uuid.UUID
    training_type_id: uuid.UUID
    certificate_id: Optional[uuid.UUID] = None
    version_number: int
    is_latest: bool
    storage_key: str
    original_filename: str
    stored_filename: str
    mime_type: str
    file_size: int
    file_hash: str
    issue_date: Optional[date] = None
    expiry_date: Optional[date] = None
    status: str
    notes: Optional[str] = None
    uploaded_by: Optional[str] = None
    uploaded_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ImportResultResponse(BaseModel):
    created: int
    updated: int
    skipped: int
    errors: list
