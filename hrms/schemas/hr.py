import datetime as dt
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import ConfigDict, Field, model_validator

from .common import CamelModel


class OrmOut(CamelModel):
    model_config = ConfigDict(from_attributes=True)


class CompanyCreate(CamelModel):
    name: str = Field(min_length=2, max_length=255)
    commercial_file_number: Optional[str] = Field(default=None, max_length=100)
    commercial_file_name: Optional[str] = Field(default=None, max_length=255)
    department: Optional[str] = None
    classification: Optional[str] = None
    industry_type: Optional[str] = None
    location: Optional[str] = None
    establishment_date: Optional[date] = None
    logo_url: Optional[str] = None


class CompanyUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    commercial_file_number: Optional[str] = Field(default=None, max_length=100)
    commercial_file_name: Optional[str] = Field(default=None, max_length=255)
    department: Optional[str] = None
    classification: Optional[str] = None
    industry_type: Optional[str] = None
    location: Optional[str] = None
    establishment_date: Optional[date] = None
    logo_url: Optional[str] = None
    is_active: Optional[bool] = None


class CompanyMemberCreate(CamelModel):
    user_id: uuid.UUID
    role: Literal["company_manager", "administrative_employee", "supervisor", "worker"]
    permissions: list[str] = []
    is_active: bool = True


EmployeeType = Literal["citizen", "expatriate"]
EmployeeStatus = Literal["active", "inactive", "on_leave", "terminated"]


class EmployeeCreate(CamelModel):
    company_id: uuid.UUID
    civil_id: str = Field(min_length=1, max_length=50)
    full_name: str = Field(min_length=2, max_length=255)
    nationality: str = Field(min_length=1, max_length=100)
    type: EmployeeType
    job_title: str = Field(min_length=1, max_length=255)
    hire_date: Optional[date] = None
    monthly_salary: Optional[Decimal] = Field(default=None, ge=0)
    status: EmployeeStatus = "active"
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None


class EmployeeUpdate(CamelModel):
    civil_id: Optional[str] = Field(default=None, min_length=1, max_length=50)
    full_name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    nationality: Optional[str] = None
    type: Optional[EmployeeType] = None
    job_title: Optional[str] = None
    hire_date: Optional[date] = None
    monthly_salary: Optional[Decimal] = Field(default=None, ge=0)
    status: Optional[EmployeeStatus] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None


class ArchiveRequest(CamelModel):
    reason: str = Field(min_length=1)


class EmployeeOut(OrmOut):
    id: uuid.UUID
    company_id: uuid.UUID
    civil_id: str
    full_name: str
    nationality: str
    type: str
    job_title: str
    hire_date: Optional[date] = None
    monthly_salary: Optional[Decimal] = None
    status: str
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    is_archived: bool = False
    archived_at: Optional[datetime] = None
    archived_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class LeaveCreate(CamelModel):
    type: Literal["annual", "sick", "maternity", "emergency", "unpaid"]
    start_date: date
    end_date: date
    days: Optional[int] = Field(default=None, ge=1)
    reason: Optional[str] = None

    @model_validator(mode="after")
    def check_range(self):
        if self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate")
        return self


class LeaveReject(CamelModel):
    rejection_reason: str = Field(min_length=1)


class LeaveStatusQuery(CamelModel):
    status: Optional[Literal["pending", "approved", "rejected"]] = None


class LeaveOut(OrmOut):
    id: uuid.UUID
    employee_id: uuid.UUID
    company_id: uuid.UUID
    type: str
    start_date: date
    end_date: date
    days: int
    reason: Optional[str] = None
    status: str
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None


class DeductionCreate(CamelModel):
    amount: Decimal = Field(gt=0)
    reason: str = Field(min_length=1)
    date: dt.date
    notes: Optional[str] = None


class DeductionOut(OrmOut):
    id: uuid.UUID
    employee_id: uuid.UUID
    company_id: uuid.UUID
    amount: Decimal
    reason: str
    date: dt.date
    processed_by: uuid.UUID
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class ViolationCreate(CamelModel):
    violation_type: str = Field(min_length=1, max_length=255)
    date: dt.date
    action_taken: Optional[str] = None
    notes: Optional[str] = None


class ViolationOut(OrmOut):
    id: uuid.UUID
    employee_id: uuid.UUID
    company_id: uuid.UUID
    violation_type: str
    date: dt.date
    action_taken: Optional[str] = None
    notes: Optional[str] = None
    reported_by: uuid.UUID
    created_at: Optional[datetime] = None


class IdParams(CamelModel):
    id: uuid.UUID
