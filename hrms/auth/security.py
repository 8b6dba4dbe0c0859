import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import jwt
from fastapi import Depends, Request

from ..config import settings
from ..errors import AuthenticationError, AuthorizationError
from ..models.models import User
from ..services.permissions import get_effective_permissions, has_any_permission
from ..storage.database import DatabaseStorage, get_storage
from .cookies import get_access_token_from_request


ACCESS = "access"
REFRESH = "refresh"


def _create_token(
    sub: str,
    token_type: str,
    ttl_seconds: int,
    audience: str,
    extra: Optional[dict] = None,
) -> Tuple[str, dict]:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": str(sub),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
        "iss": settings.jwt_issuer,
        "aud": audience,
        "type": token_type,
    }
    if extra:
        payload.update(extra)
    token = jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return token, payload


def create_access_token(user_id) -> Tuple[str, dict]:
    return _create_token(user_id, ACCESS, settings.jwt_ttl_seconds, settings.jwt_audience)


def refresh_ttl(remember_me: bool) -> int:
    return settings.refresh_remember_ttl_seconds if remember_me else settings.refresh_ttl_seconds


def create_refresh_token(user_id, family_id: Optional[str] = None, remember_me: bool = False) -> Tuple[str, dict]:
    """Refresh tokens carry their rotation family and the remember-me choice."""
    return _create_token(
        user_id,
        REFRESH,
        refresh_ttl(remember_me),
        settings.jwt_refresh_audience,
        extra={"fam": family_id or str(uuid.uuid4()), "rem": bool(remember_me)},
    )


def decode_token(token: str, expected_type: str = ACCESS, verify_exp: bool = True) -> dict:
    invalid_reason = "invalid_refresh_token" if expected_type == REFRESH else "invalid_token"
    audience = settings.jwt_refresh_audience if expected_type == REFRESH else settings.jwt_audience
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=audience,
            issuer=settings.jwt_issuer,
            options={"verify_exp": verify_exp, "require": ["exp", "iat", "sub", "jti"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("token_expired", "Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError(invalid_reason, "Invalid token")
    if claims.get("type") != expected_type:
        raise AuthenticationError(invalid_reason, "Invalid token")
    return claims


def claims_expiry(claims: dict) -> datetime:
    return datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc)


def get_current_user(request: Request, storage: DatabaseStorage = Depends(get_storage)) -> User:
    token = get_access_token_from_request(request)
    if not token:
        raise AuthenticationError("missing_token")
    claims = decode_token(token, ACCESS)
    # revocation wins over a valid signature and expiry
    if storage.is_token_blacklisted(claims.get("jti")):
        raise AuthenticationError("token_revoked", "Token has been revoked")
    user = storage.get_user(claims.get("sub"))
    if user is None:
        raise AuthenticationError("invalid_token", "Invalid token")
    if not user.is_active:
        raise AuthenticationError("user_inactive", "User account is inactive")
    request.state.token_claims = claims
    request.state.user = user
    return user


def get_optional_user(request: Request, storage: DatabaseStorage = Depends(get_storage)) -> Optional[User]:
    try:
        return get_current_user(request, storage)
    except AuthenticationError:
        return None


def authorize_company(storage: DatabaseStorage, user: User, company_id, *permissions: str) -> None:
    """Allow when the company is one of the user's active companies and any of
    `permissions` is held there.

    Unknown and deactivated companies answer like foreign ones (403).
    """
    accessible = {str(c.id) for c in storage.get_user_companies(user)}
    if company_id is None or str(company_id) not in accessible:
        raise AuthorizationError("company_access_denied", "Access to this company is denied")
    if permissions and not has_any_permission(get_effective_permissions(user, company_id), permissions):
        raise AuthorizationError("insufficient_permissions", "Insufficient permissions")


def require_permissions(*required_permissions: str):
    """
    Require at least one of the specified permissions (OR logic) in the
    user's current company context.
    """
    def _dep(user: User = Depends(get_current_user)):
        held = get_effective_permissions(user, user.company_id)
        if not has_any_permission(held, required_permissions):
            raise AuthorizationError("insufficient_permissions", "Insufficient permissions")
        return user

    return _dep
