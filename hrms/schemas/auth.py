import uuid
from datetime import datetime, date
from typing import Annotated, Optional, List

from pydantic import AfterValidator, EmailStr, Field

from .common import CamelModel


def _check_uuid(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    try:
        return str(uuid.UUID(str(v)))
    except ValueError:
        raise ValueError("must be a valid id")


CompanyId = Annotated[str, AfterValidator(_check_uuid)]


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1)
    company_id: Optional[CompanyId] = None
    remember_me: bool = False


class RegisterRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1)
    first_name: str = Field(min_length=2, max_length=100)
    last_name: str = Field(min_length=2, max_length=100)


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=1)


class ForgotPasswordRequest(CamelModel):
    email: EmailStr


class ResetPasswordRequest(CamelModel):
    token: str = Field(min_length=1)
    new_password: str = Field(min_length=1)


class VerifyEmailRequest(CamelModel):
    token: str = Field(min_length=1)


class ResendVerificationRequest(CamelModel):
    email: EmailStr


class SwitchCompanyRequest(CamelModel):
    company_id: CompanyId


class UpdateProfileRequest(CamelModel):
    first_name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    profile_image_url: Optional[str] = Field(default=None, max_length=500)


class CompanyQuery(CamelModel):
    company_id: Optional[CompanyId] = None


class CompanyOut(CamelModel):
    id: str
    name: str
    commercial_file_name: Optional[str] = None
    commercial_file_number: Optional[str] = None
    department: Optional[str] = None
    classification: Optional[str] = None
    is_active: bool = True
    industry_type: Optional[str] = None
    location: Optional[str] = None
    establishment_date: Optional[date] = None
    logo_url: Optional[str] = None
    total_employees: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserOut(CamelModel):
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    role: str
    company_id: Optional[str] = None
    companies: List[CompanyOut] = []
    permissions: List[str] = []
    is_active: bool = True
    email_verified: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    claims: Optional[dict] = None


class RoleOut(CamelModel):
    company_id: str
    role: str
    permissions: List[str] = []


class AuditLogQuery(CamelModel):
    action: Optional[str] = Field(default=None, max_length=50)
    user_id: Optional[CompanyId] = None
    limit: int = Field(default=100, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


class AuditLogOut(CamelModel):
    id: str
    entity_type: str
    entity_id: Optional[str] = None
    action: str
    actor_id: Optional[str] = None
    actor_role: Optional[str] = None
    source: Optional[str] = None
    context: Optional[dict] = None
    timestamp_utc: datetime
    integrity_valid: bool
