from fastapi import APIRouter, Depends

from ..auth.security import require_permissions
from ..models.models import User
from ..schemas.auth import AuditLogOut, AuditLogQuery
from ..services import audit
from ..services.permissions import Permission
from ..storage.database import DatabaseStorage, get_storage
from ..validation import validate_query


router = APIRouter(prefix="/audit-logs", tags=["audit"])


@router.get("")
def list_audit_logs(
    query: AuditLogQuery = Depends(validate_query(AuditLogQuery)),
    user: User = Depends(require_permissions(Permission.SYSTEM_ADMIN)),
    storage: DatabaseStorage = Depends(get_storage),
):
    """Newest auth events first, each with its integrity check result."""
    entries = audit.get_audit_logs(
        storage.db,
        entity_type="user",
        entity_id=query.user_id,
        action=query.action,
        limit=query.limit,
        offset=query.offset,
    )
    return [
        AuditLogOut(
            id=str(e.id),
            entity_type=e.entity_type,
            entity_id=e.entity_id,
            action=e.action,
            actor_id=e.actor_id,
            actor_role=e.actor_role,
            source=e.source,
            context=e.context,
            timestamp_utc=e.timestamp_utc,
            integrity_valid=audit.verify_integrity(e),
        ).to_wire()
        for e in entries
    ]
