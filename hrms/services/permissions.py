"""
Role and permission derivation.

A user has a global role plus, per company, a membership (company_users row)
with its own role and an optional permission list. The membership list, when
non-empty, replaces the role defaults for that company.
"""
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from ..models.models import Company, User
from ..schemas.auth import CompanyOut, UserOut


class UserRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    COMPANY_MANAGER = "company_manager"
    ADMINISTRATIVE_EMPLOYEE = "administrative_employee"
    SUPERVISOR = "supervisor"
    WORKER = "worker"


class Permission:
    MANAGE_EMPLOYEES = "manage_employees"
    VIEW_EMPLOYEES = "view_employees"
    MANAGE_LEAVE_REQUESTS = "manage_leave_requests"
    VIEW_LEAVE_REQUESTS = "view_leave_requests"
    MANAGE_PAYROLL = "manage_payroll"
    VIEW_PAYROLL = "view_payroll"
    MANAGE_FINANCES = "manage_finances"
    VIEW_FINANCES = "view_finances"
    MANAGE_INVENTORY = "manage_inventory"
    VIEW_INVENTORY = "view_inventory"
    MANAGE_ASSETS = "manage_assets"
    VIEW_ASSETS = "view_assets"
    GENERATE_REPORTS = "generate_reports"
    VIEW_REPORTS = "view_reports"
    EXPORT_DATA = "export_data"
    MANAGE_PURCHASES = "manage_purchases"
    VIEW_PURCHASES = "view_purchases"
    APPROVE_PURCHASES = "approve_purchases"
    MANAGE_COMPANY = "manage_company"
    MANAGE_PERMISSIONS = "manage_permissions"
    SYSTEM_ADMIN = "system_admin"


ALL_PERMISSIONS: List[str] = [
    v for k, v in vars(Permission).items() if not k.startswith("_") and isinstance(v, str)
]

ROLE_PERMISSIONS = {
    UserRole.SUPER_ADMIN.value: list(ALL_PERMISSIONS),
    UserRole.COMPANY_MANAGER.value: [
        Permission.MANAGE_EMPLOYEES,
        Permission.VIEW_EMPLOYEES,
        Permission.MANAGE_LEAVE_REQUESTS,
        Permission.VIEW_LEAVE_REQUESTS,
        Permission.MANAGE_PAYROLL,
        Permission.VIEW_PAYROLL,
        Permission.MANAGE_FINANCES,
        Permission.VIEW_FINANCES,
        Permission.GENERATE_REPORTS,
        Permission.VIEW_REPORTS,
        Permission.EXPORT_DATA,
        Permission.MANAGE_COMPANY,
        Permission.MANAGE_PERMISSIONS,
    ],
    UserRole.ADMINISTRATIVE_EMPLOYEE.value: [
        Permission.VIEW_EMPLOYEES,
        Permission.VIEW_LEAVE_REQUESTS,
        Permission.VIEW_REPORTS,
    ],
    UserRole.SUPERVISOR.value: [
        Permission.VIEW_EMPLOYEES,
        Permission.VIEW_LEAVE_REQUESTS,
        Permission.VIEW_REPORTS,
    ],
    UserRole.WORKER.value: [
        Permission.VIEW_LEAVE_REQUESTS,
    ],
}


def _role_value(role) -> str:
    return role.value if isinstance(role, UserRole) else str(role or "")


def _dedupe(perms: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for p in perms:
        if p and p not in seen:
            seen.add(p)
            out.append(p)
    return out


def _active_membership(user: User, company_id):
    if company_id is None:
        return None
    cid = str(company_id)
    for m in getattr(user, "memberships", None) or []:
        if str(m.company_id) != cid or not m.is_active:
            continue
        company = getattr(m, "company", None)
        if company is not None and not company.is_active:
            continue
        return m
    return None


def is_super_admin(user) -> bool:
    return _role_value(getattr(user, "role", None)) == UserRole.SUPER_ADMIN.value


def is_company_manager(user) -> bool:
    return _role_value(getattr(user, "role", None)) == UserRole.COMPANY_MANAGER.value


def get_effective_permissions(user: User, company_id=None) -> List[str]:
    if is_super_admin(user):
        return list(ALL_PERMISSIONS)
    membership = _active_membership(user, company_id)
    if membership is not None:
        if membership.permissions:
            return _dedupe(membership.permissions)
        return _dedupe(ROLE_PERMISSIONS.get(membership.role, []))
    return _dedupe(ROLE_PERMISSIONS.get(_role_value(user.role), []))


def get_user_role_for_company(user: User, company_id) -> Optional[str]:
    if is_super_admin(user):
        return UserRole.SUPER_ADMIN.value
    membership = _active_membership(user, company_id)
    return membership.role if membership is not None else None


def has_permission(permissions: Sequence[str], permission: str) -> bool:
    return permission in (permissions or ())


def has_any_permission(permissions: Sequence[str], required: Iterable[str]) -> bool:
    held = set(permissions or ())
    return any(p in held for p in required)


def has_all_permissions(permissions: Sequence[str], required: Iterable[str]) -> bool:
    held = set(permissions or ())
    return all(p in held for p in required)


def can_access_company(user, company_id) -> bool:
    """True when company_id is one of the user's companies.

    Works on the wire projection (``companies`` list) as well as on an ORM user
    (active memberships). Super admins see every active company; the caller
    puts those into the projection.
    """
    if not company_id:
        return False
    cid = str(company_id)
    companies = getattr(user, "companies", None)
    if companies is not None:
        return any(str(c.id) == cid for c in companies)
    if is_super_admin(user):
        return True
    return _active_membership(user, cid) is not None


def company_out(company: Company) -> CompanyOut:
    return CompanyOut(
        id=str(company.id),
        name=company.name,
        commercial_file_name=company.commercial_file_name,
        commercial_file_number=company.commercial_file_number,
        department=company.department,
        classification=company.classification,
        is_active=bool(company.is_active),
        industry_type=company.industry_type,
        location=company.location,
        establishment_date=company.establishment_date,
        logo_url=company.logo_url,
        total_employees=company.total_employees or 0,
        created_at=company.created_at,
        updated_at=company.updated_at,
    )


def build_user_projection(user: User, companies: Sequence[Company], company_id=None) -> UserOut:
    """Project a user for the given company context.

    ``companyId`` is the requested company, else the user's stored current
    company, and is dropped when it is not one of ``companies``.
    """
    company_ids = {str(c.id) for c in companies}
    current = str(company_id) if company_id else (str(user.company_id) if user.company_id else None)
    if current not in company_ids:
        current = None
    return UserOut(
        id=str(user.id),
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        profile_image_url=user.profile_image_url,
        role=user.role,
        company_id=current,
        companies=[company_out(c) for c in companies],
        permissions=get_effective_permissions(user, current),
        is_active=bool(user.is_active),
        email_verified=bool(user.email_verified),
        created_at=user.created_at,
        updated_at=user.updated_at,
        last_login_at=user.last_login_at,
        claims=user.claims,
    )
