import structlog
from fastapi import APIRouter, Depends

from ..auth.security import authorize_company, get_current_user
from ..errors import AuthorizationError, NotFoundError
from ..models.models import User
from ..schemas.hr import IdParams
from ..schemas.notifications import NotificationCreate, NotificationListQuery, NotificationOut
from ..services.permissions import Permission
from ..storage.database import DatabaseStorage, get_storage
from ..validation import validate, validate_params, validate_query


router = APIRouter(prefix="/notifications", tags=["notifications"])
log = structlog.get_logger()


@router.get("")
def list_notifications(
    query: NotificationListQuery = Depends(validate_query(NotificationListQuery)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    rows = storage.get_user_notifications(
        user.id,
        is_read=query.is_read,
        type=query.type,
        limit=query.limit,
        offset=query.offset,
    )
    return [NotificationOut.model_validate(n).to_wire() for n in rows]


@router.get("/unread-count")
def unread_count(
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    return {"count": storage.get_unread_count(user.id)}


@router.post("", status_code=201)
def create_notification(
    payload: NotificationCreate = Depends(validate(NotificationCreate)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    """Notify yourself, or a member of a company where you manage employees."""
    target = str(payload.user_id or user.id)
    company_id = str(payload.company_id) if payload.company_id else None
    if target != str(user.id):
        if company_id is None:
            raise AuthorizationError("company_access_denied", "Notifying another user needs a company")
        authorize_company(storage, user, company_id, Permission.MANAGE_EMPLOYEES)
        recipient = storage.get_user(target)
        if recipient is None or company_id not in {str(c.id) for c in storage.get_user_companies(recipient)}:
            raise NotFoundError("User not found")
    elif company_id is not None:
        authorize_company(storage, user, company_id)
    row = storage.create_notification(
        target,
        type=payload.type,
        title=payload.title,
        message=payload.message,
        company_id=company_id,
        data=payload.data_as_json(),
    )
    log.info("notification_created", notification_id=str(row.id), user_id=target, type=row.type)
    return NotificationOut.model_validate(row).to_wire()


@router.patch("/mark-all-read")
def mark_all_read(
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    updated = storage.mark_all_notifications_as_read(user.id)
    return {"success": True, "updated": updated}


@router.patch("/{id}/read")
def mark_read(
    params: IdParams = Depends(validate_params(IdParams)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    row = storage.mark_notification_as_read(params.id, user.id)
    return NotificationOut.model_validate(row).to_wire()


@router.delete("/{id}")
def delete_notification(
    params: IdParams = Depends(validate_params(IdParams)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    storage.delete_notification(params.id, user.id)
    return {"success": True, "message": "Notification deleted"}
