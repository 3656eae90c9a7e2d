import uuid
from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, field_validator


# Training Type Schemas
class TrainingTypeBase(BaseModel):
    name: str
    code: str
    category: Optional[str] = None
    description: Optional[str] = None
    validity_months: Optional[int] = 24  # 0/None = never expires
    warning_days: Optional[int] = None
    is_mandatory: bool = False
    is_recurrent: bool = True
    is_active: bool = True

    @field_validator('validity_months', 'warning_days')
    @classmethod
    def validate_non_negative(cls, v):
        if v is not None and v < 0:
            raise ValueError('must be zero or positive')
        return v


class TrainingTypeCreate(TrainingTypeBase):
    pass


class TrainingTypeUpdate(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    validity_months: Optional[int] = None
    warning_days: Optional[int] = None
    is_mandatory: Optional[bool] = None
    is_recurrent: Optional[bool] = None
    is_active: Optional[bool] = None


class TrainingTypeResponse(TrainingTypeBase):
    id: uuid.UUID
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Provider Schemas
class ProviderBase(BaseModel):
    name: str
    code: Optional[str] = None
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    accreditation_number: Optional[str] = None
    accreditation_expiry: Optional[date] = None
    contract_start_date: Optional[date] = None
    contract_end_date: Optional[date] = None
    rating: Optional[float] = None
    is_active: bool = True

    @field_validator('rating')
    @classmethod
    def validate_rating(cls, v):
        if v is not None and not (0 <= v <= 5):
            raise ValueError('rating must be between 0 and 5')
        return v


class ProviderCreate(ProviderBase):
    pass


class ProviderUpdate(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    accreditation_number: Optional[str] = None
    accreditation_expiry: Optional[date] = None
    contract_start_date: Optional[date] = None
    contract_end_date: Optional[date] = None
    rating: Optional[float] = None
    is_active: Optional[bool] = None


class ProviderResponse(ProviderBase):
    id: uuid.UUID
    accreditation_status: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
