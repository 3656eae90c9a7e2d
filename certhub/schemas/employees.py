import uuid
from datetime import date, datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, field_validator


EMPLOYMENT_STATUSES = ("active", "inactive", "terminated")
BACKGROUND_CHECK_STATUSES = ("not_started", "in_progress", "cleared", "failed")


# Department Schemas
class DepartmentBase(BaseModel):
    name: str
    code: str
    description: Optional[str] = None
    is_active: bool = True


class DepartmentCreate(DepartmentBase):
    pass


class DepartmentUpdate(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class DepartmentResponse(DepartmentBase):
    id: uuid.UUID
    created_at: Optional[datetime] = None
    employee_count: Optional[int] = None

    class Config:
        from_attributes = True


# Employee Schemas
class EmployeeBase(BaseModel):
    employee_number: str
    name: str
    email: Optional[str] = None
    department_id: Optional[uuid.UUID] = None
    position: Optional[str] = None
    status: str = "active"  # active|inactive|terminated
    hire_date: Optional[date] = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, v):
        if v not in EMPLOYMENT_STATUSES:
            raise ValueError(f'status must be one of {list(EMPLOYMENT_STATUSES)}')
        return v


class EmployeeCreate(EmployeeBase):
    pass


class EmployeeUpdate(BaseModel):
    employee_number: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    department_id: Optional[uuid.UUID] = None
    position: Optional[str] = None
    status: Optional[str] = None
    hire_date: Optional[date] = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, v):
        if v is not None and v not in EMPLOYMENT_STATUSES:
            raise ValueError(f'status must be one of {list(EMPLOYMENT_STATUSES)}')
        return v


class BackgroundCheckUpdate(BaseModel):
    background_check_date: Optional[date] = None
    background_check_status: str
    background_check_notes: Optional[str] = None

    @field_validator('background_check_status')
    @classmethod
    def validate_status(cls, v):
        if v not in BACKGROUND_CHECK_STATUSES:
            raise ValueError(f'background_check_status must be one of {list(BACKGROUND_CHECK_STATUSES)}')
        return v


class EmployeeResponse(EmployeeBase):
    id: uuid.UUID
    department_name: Optional[str] = None
    background_check_date: Optional[date] = None
    background_check_status: Optional[str] = None
    background_check_notes: Optional[str] = None
    background_check_files: Optional[List[Dict[str, Any]]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
