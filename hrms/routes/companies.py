from fastapi import APIRouter, Depends

from ..auth.security import authorize_company, get_current_user
from ..errors import AuthorizationError, NotFoundError
from ..models.models import User
from ..schemas.hr import (
    CompanyCreate,
    CompanyMemberCreate,
    CompanyUpdate,
    DeductionOut,
    EmployeeOut,
    IdParams,
    LeaveOut,
    LeaveStatusQuery,
    ViolationOut,
)
from ..services.permissions import Permission, company_out, is_super_admin
from ..storage.database import DatabaseStorage, get_storage
from ..validation import ValidatedRequest, validate, validate_multiple, validate_params


router = APIRouter(prefix="/companies", tags=["companies"])


def _company_for(storage: DatabaseStorage, user: User, company_id, *permissions: str):
    authorize_company(storage, user, company_id, *permissions)
    company = storage.get_company(company_id)
    if company is None:
        raise NotFoundError("Company not found")
    return company


@router.get("")
def list_companies(
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    return [company_out(c).to_wire() for c in storage.get_user_companies(user)]


@router.post("", status_code=201)
def create_company(
    payload: CompanyCreate = Depends(validate(CompanyCreate)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    if not is_super_admin(user):
        raise AuthorizationError("insufficient_permissions", "Only a super admin can create companies")
    company = storage.create_company(**payload.model_dump())
    return company_out(company).to_wire()


@router.get("/{id}")
def get_company(
    params: IdParams = Depends(validate_params(IdParams)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    company = _company_for(storage, user, params.id)
    return company_out(company).to_wire()


@router.put("/{id}")
def update_company(
    req: ValidatedRequest = Depends(validate_multiple(body=CompanyUpdate, params=IdParams)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    if is_super_admin(user):
        # super admins own the company lifecycle, including reactivation
        company = storage.get_company(req.params.id)
        if company is None:
            raise NotFoundError("Company not found")
    else:
        company = _company_for(storage, user, req.params.id, Permission.MANAGE_COMPANY)
    company = storage.update_company(company.id, **req.body.model_dump(exclude_unset=True))
    return company_out(company).to_wire()


@router.post("/{id}/users", status_code=201)
def add_company_user(
    req: ValidatedRequest = Depends(validate_multiple(body=CompanyMemberCreate, params=IdParams)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    company = _company_for(storage, user, req.params.id, Permission.MANAGE_PERMISSIONS)
    member = req.body
    if storage.get_user(member.user_id) is None:
        raise NotFoundError("User not found")
    row = storage.add_company_user(member.user_id, company.id, member.role, member.permissions, member.is_active)
    return {
        "userId": str(row.user_id),
        "companyId": str(row.company_id),
        "role": row.role,
        "permissions": row.permissions or [],
        "isActive": row.is_active,
    }


@router.get("/{id}/employees")
def company_employees(
    params: IdParams = Depends(validate_params(IdParams)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    company = _company_for(storage, user, params.id, Permission.VIEW_EMPLOYEES, Permission.MANAGE_EMPLOYEES)
    return [EmployeeOut.model_validate(e).to_wire() for e in storage.get_company_employees(company.id)]


@router.get("/{id}/leaves")
def company_leaves(
    req: ValidatedRequest = Depends(validate_multiple(query=LeaveStatusQuery, params=IdParams)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    company = _company_for(storage, user, req.params.id, Permission.VIEW_LEAVE_REQUESTS, Permission.MANAGE_LEAVE_REQUESTS)
    leaves = storage.get_company_leaves(company.id, status=req.query.status)
    return [LeaveOut.model_validate(l).to_wire() for l in leaves]


@router.get("/{id}/deductions")
def company_deductions(
    params: IdParams = Depends(validate_params(IdParams)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    company = _company_for(storage, user, params.id, Permission.VIEW_PAYROLL, Permission.MANAGE_PAYROLL)
    return [DeductionOut.model_validate(d).to_wire() for d in storage.get_company_deductions(company.id)]


@router.get("/{id}/violations")
def company_violations(
    params: IdParams = Depends(validate_params(IdParams)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    company = _company_for(storage, user, params.id, Permission.VIEW_EMPLOYEES, Permission.MANAGE_EMPLOYEES)
    return [ViolationOut.model_validate(v).to_wire() for v in storage.get_company_violations(company.id)]
