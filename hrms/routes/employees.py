from fastapi import APIRouter, Depends

from ..auth.security import authorize_company, get_current_user
from ..errors import NotFoundError
from ..models.models import Employee, User
from ..schemas.hr import (
    ArchiveRequest,
    DeductionCreate,
    DeductionOut,
    EmployeeCreate,
    EmployeeOut,
    EmployeeUpdate,
    IdParams,
    LeaveCreate,
    LeaveOut,
    ViolationCreate,
    ViolationOut,
)
from ..services.permissions import Permission
from ..storage.database import DatabaseStorage, get_storage
from ..validation import ValidatedRequest, validate, validate_multiple, validate_params


router = APIRouter(prefix="/employees", tags=["employees"])


def _employee_for(storage: DatabaseStorage, user: User, employee_id, *permissions: str) -> Employee:
    employee = storage.get_employee(employee_id)
    if employee is None:
        raise NotFoundError("Employee not found")
    authorize_company(storage, user, employee.company_id, *permissions)
    return employee


@router.post("", status_code=201)
def create_employee(
    payload: EmployeeCreate = Depends(validate(EmployeeCreate)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    authorize_company(storage, user, payload.company_id, Permission.MANAGE_EMPLOYEES)
    fields = payload.model_dump(exclude={"company_id"})
    employee = storage.create_employee(payload.company_id, **fields)
    return EmployeeOut.model_validate(employee).to_wire()


@router.get("/{id}")
def get_employee(
    params: IdParams = Depends(validate_params(IdParams)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    employee = _employee_for(storage, user, params.id, Permission.VIEW_EMPLOYEES, Permission.MANAGE_EMPLOYEES)
    return EmployeeOut.model_validate(employee).to_wire()


@router.put("/{id}")
def update_employee(
    req: ValidatedRequest = Depends(validate_multiple(body=EmployeeUpdate, params=IdParams)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    employee = _employee_for(storage, user, req.params.id, Permission.MANAGE_EMPLOYEES)
    employee = storage.update_employee(employee.id, **req.body.model_dump(exclude_unset=True))
    return EmployeeOut.model_validate(employee).to_wire()


@router.post("/{id}/archive")
def archive_employee(
    req: ValidatedRequest = Depends(validate_multiple(body=ArchiveRequest, params=IdParams)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    employee = _employee_for(storage, user, req.params.id, Permission.MANAGE_EMPLOYEES)
    employee = storage.archive_employee(employee.id, req.body.reason)
    return EmployeeOut.model_validate(employee).to_wire()


# leaves

@router.get("/{id}/leaves")
def employee_leaves(
    params: IdParams = Depends(validate_params(IdParams)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    employee = _employee_for(
        storage, user, params.id, Permission.VIEW_LEAVE_REQUESTS, Permission.MANAGE_LEAVE_REQUESTS
    )
    return [LeaveOut.model_validate(l).to_wire() for l in storage.get_employee_leaves(employee.id)]


@router.post("/{id}/leaves", status_code=201)
def create_leave(
    req: ValidatedRequest = Depends(validate_multiple(body=LeaveCreate, params=IdParams)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    employee = _employee_for(storage, user, req.params.id, Permission.MANAGE_LEAVE_REQUESTS)
    leave = storage.create_leave(employee.id, **req.body.model_dump())
    return LeaveOut.model_validate(leave).to_wire()


# deductions

@router.get("/{id}/deductions")
def employee_deductions(
    params: IdParams = Depends(validate_params(IdParams)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    employee = _employee_for(storage, user, params.id, Permission.VIEW_PAYROLL, Permission.MANAGE_PAYROLL)
    return [DeductionOut.model_validate(d).to_wire() for d in storage.get_employee_deductions(employee.id)]


@router.post("/{id}/deductions", status_code=201)
def create_deduction(
    req: ValidatedRequest = Depends(validate_multiple(body=DeductionCreate, params=IdParams)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    employee = _employee_for(storage, user, req.params.id, Permission.MANAGE_PAYROLL)
    row = storage.create_deduction(employee.id, processed_by=user.id, **req.body.model_dump())
    return DeductionOut.model_validate(row).to_wire()


# violations

@router.get("/{id}/violations")
def employee_violations(
    params: IdParams = Depends(validate_params(IdParams)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    employee = _employee_for(storage, user, params.id, Permission.VIEW_EMPLOYEES, Permission.MANAGE_EMPLOYEES)
    return [ViolationOut.model_validate(v).to_wire() for v in storage.get_employee_violations(employee.id)]


@router.post("/{id}/violations", status_code=201)
def create_violation(
    req: ValidatedRequest = Depends(validate_multiple(body=ViolationCreate, params=IdParams)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    employee = _employee_for(storage, user, req.params.id, Permission.MANAGE_EMPLOYEES)
    row = storage.create_violation(employee.id, reported_by=user.id, **req.body.model_dump())
    return ViolationOut.model_validate(row).to_wire()
