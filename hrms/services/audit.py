"""
Security audit trail.
Append-only log of authentication events with integrity hashing.
"""
import hashlib
import json
from datetime import datetime
from typing import Optional, Dict, Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.models import AuditLog
from ..config import settings


log = structlog.get_logger()

# actions
LOGIN = "LOGIN"
LOGIN_FAILED = "LOGIN_FAILED"
LOGOUT = "LOGOUT"
REGISTER = "REGISTER"
REFRESH_REUSE = "REFRESH_REUSE"
PASSWORD_CHANGE = "PASSWORD_CHANGE"
PASSWORD_RESET = "PASSWORD_RESET"
COMPANY_SWITCH = "COMPANY_SWITCH"


def _integrity_hash(canonical_data: Dict[str, Any], secret: str) -> str:
    canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
    canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)
    return hashlib.sha256(f"{canonical_json}:{secret}".encode()).hexdigest()


def create_audit_log(
    db: Session,
    entity_type: str,
    entity_id: Optional[str],
    action: str,
    actor_id: Optional[str] = None,
    actor_role: Optional[str] = None,
    source: Optional[str] = None,
    context: Optional[Dict] = None,
    integrity_secret: Optional[str] = None,
) -> AuditLog:
    """
    Create an append-only audit log entry.

    Args:
        db: Database session
        entity_type: Type of entity (user|session|company)
        entity_id: Entity ID
        action: One of the action constants above
        actor_id: User ID who performed the action
        actor_role: Role of the actor
        source: Source of the action (api|system)
        context: Additional context (ip, user agent, reason, company id)
        integrity_secret: Secret for integrity hash (defaults to JWT_SECRET)
    """
    timestamp_utc = datetime.utcnow().replace(tzinfo=None)
    source = source or "api"
    secret = integrity_secret if integrity_secret is not None else settings.jwt_secret

    integrity_hash = None
    if secret:
        integrity_hash = _integrity_hash(
            {
                "entity_type": entity_type,
                "entity_id": str(entity_id) if entity_id else None,
                "action": action,
                "actor_id": str(actor_id) if actor_id else None,
                "actor_role": actor_role,
                "source": source,
                "timestamp_utc": timestamp_utc.isoformat(),
                "context": context,
            },
            secret,
        )

    entry = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id else None,
        action=action,
        actor_id=str(actor_id) if actor_id else None,
        actor_role=actor_role,
        source=source,
        timestamp_utc=timestamp_utc,
        context=context,
        integrity_hash=integrity_hash,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def record_auth_event(
    db: Session,
    action: str,
    user_id: Optional[str] = None,
    role: Optional[str] = None,
    **context: Any,
) -> None:
    """Write an auth event. Audit failures are logged and never fail the request."""
    try:
        create_audit_log(
            db,
            entity_type="user",
            entity_id=user_id,
            action=action,
            actor_id=user_id,
            actor_role=role,
            source="api",
            context={k: v for k, v in context.items() if v is not None} or None,
        )
    except SQLAlchemyError as e:
        db.rollback()
        log.error("audit_write_failed", action=action, error=str(e))


def get_audit_logs(
    db: Session,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> list:
    query = db.query(AuditLog)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id:
        query = query.filter(AuditLog.entity_id == entity_id)
    if action:
        query = query.filter(AuditLog.action == action)
    return query.order_by(AuditLog.timestamp_utc.desc()).limit(limit).offset(offset).all()


def verify_integrity(entry: AuditLog, integrity_secret: Optional[str] = None) -> bool:
    secret = integrity_secret if integrity_secret is not None else settings.jwt_secret
    if not entry.integrity_hash or not secret:
        return False
    expected = _integrity_hash(
        {
            "entity_type": entry.entity_type,
            "entity_id": entry.entity_id,
            "action": entry.action,
            "actor_id": entry.actor_id,
            "actor_role": entry.actor_role,
            "source": entry.source,
            "timestamp_utc": entry.timestamp_utc.isoformat(),
            "context": entry.context,
        },
        secret,
    )
    return expected == entry.integrity_hash
