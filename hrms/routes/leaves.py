from fastapi import APIRouter, Depends

from ..auth.security import authorize_company, get_current_user
from ..errors import NotFoundError
from ..models.models import User
from ..schemas.hr import IdParams, LeaveOut, LeaveReject
from ..services.permissions import Permission
from ..storage.database import DatabaseStorage, get_storage
from ..validation import ValidatedRequest, validate_multiple, validate_params


router = APIRouter(prefix="/leaves", tags=["leaves"])


def _pending_leave(storage: DatabaseStorage, user: User, leave_id):
    leave = storage.get_leave(leave_id)
    if leave is None:
        raise NotFoundError("Leave request not found")
    authorize_company(storage, user, leave.company_id, Permission.MANAGE_LEAVE_REQUESTS)
    return leave


@router.post("/{id}/approve")
def approve_leave(
    params: IdParams = Depends(validate_params(IdParams)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    leave = _pending_leave(storage, user, params.id)
    leave = storage.approve_leave(leave.id, user.id)
    return LeaveOut.model_validate(leave).to_wire()


@router.post("/{id}/reject")
def reject_leave(
    req: ValidatedRequest = Depends(validate_multiple(body=LeaveReject, params=IdParams)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    leave = _pending_leave(storage, user, req.params.id)
    leave = storage.reject_leave(leave.id, user.id, req.body.rejection_reason)
    return LeaveOut.model_validate(leave).to_wire()
