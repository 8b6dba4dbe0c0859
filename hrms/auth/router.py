from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Request, Response

from ..config import settings
from ..errors import AuthenticationError, AuthorizationError, BadRequestError, ConflictError, RequestValidationFailed
from ..models.models import User
from ..schemas.auth import (
    ChangePasswordRequest,
    CompanyQuery,
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResendVerificationRequest,
    ResetPasswordRequest,
    RoleOut,
    SwitchCompanyRequest,
    UpdateProfileRequest,
    VerifyEmailRequest,
)
from ..services import audit, mailer
from ..services.permissions import (
    UserRole,
    build_user_projection,
    company_out,
    get_effective_permissions,
    get_user_role_for_company,
)
from ..storage.database import DatabaseStorage, get_storage
from ..validation import validate, validate_query
from .cookies import (
    clear_auth_cookies,
    get_access_token_from_request,
    get_refresh_token_from_request,
    set_auth_cookies,
)
from .passwords import (
    generate_secure_token,
    hash_password,
    hash_token,
    is_password_different,
    needs_rehash,
    validate_password_strength,
    verify_password,
)
from .security import (
    ACCESS,
    REFRESH,
    claims_expiry,
    create_access_token,
    create_refresh_token,
    decode_token,
    get_current_user,
    get_optional_user,
)


router = APIRouter(prefix="/auth", tags=["auth"])
log = structlog.get_logger()


def _client_meta(request: Request) -> dict:
    return {
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


def _issue_session(
    response: Response,
    request: Request,
    storage: DatabaseStorage,
    user: User,
    remember_me: bool = False,
    family_id: Optional[str] = None,
) -> dict:
    """Mint an access/refresh pair, record the refresh token and set both cookies."""
    access_token, _ = create_access_token(user.id)
    refresh_token, refresh_claims = create_refresh_token(user.id, family_id=family_id, remember_me=remember_me)
    meta = _client_meta(request)
    storage.create_refresh_token_record(
        user.id,
        refresh_claims["jti"],
        refresh_claims["fam"],
        claims_expiry(refresh_claims),
        user_agent=meta["user_agent"],
        ip=meta["ip"],
    )
    set_auth_cookies(response, access_token, refresh_token, remember_me=remember_me)
    return refresh_claims


def _require_strong(password: str, field: str) -> None:
    strength = validate_password_strength(password)
    if not strength.is_valid:
        raise RequestValidationFailed(
            "Validation failed",
            "validation_failed",
            [{"field": field, "message": strength.message, "code": "weak_password"}],
        )


def _accessible(storage: DatabaseStorage, user: User, company_id: Optional[str]):
    companies = storage.get_user_companies(user)
    if company_id and company_id not in {str(c.id) for c in companies}:
        raise AuthorizationError("company_access_denied", "Access to this company is denied")
    return companies


@router.post("/login")
def login(
    request: Request,
    response: Response,
    payload: LoginRequest = Depends(validate(LoginRequest)),
    storage: DatabaseStorage = Depends(get_storage),
):
    meta = _client_meta(request)
    user = storage.get_user_by_email(payload.email)
    if user is None or not verify_password(payload.password, user.password_hash):
        log.warning("login_failed", email=payload.email, reason="invalid_credentials", ip=meta["ip"])
        audit.record_auth_event(
            storage.db, audit.LOGIN_FAILED, str(user.id) if user else None, email=payload.email, ip=meta["ip"]
        )
        raise AuthenticationError("invalid_credentials", "Invalid email or password")
    if not user.is_active:
        log.warning("login_failed", user_id=str(user.id), reason="account_inactive")
        raise AuthenticationError("account_inactive", "Account is inactive")

    if needs_rehash(user.password_hash):
        storage.update_user_password(user.id, hash_password(payload.password))
        log.info("password_hash_upgraded", user_id=str(user.id))

    companies = _accessible(storage, user, payload.company_id)
    if payload.company_id:
        user = storage.set_current_company(user.id, payload.company_id)
    user = storage.update_user_last_login(user.id)

    _issue_session(response, request, storage, user, remember_me=payload.remember_me)
    audit.record_auth_event(storage.db, audit.LOGIN, str(user.id), user.role, ip=meta["ip"])
    log.info("login_succeeded", user_id=str(user.id))
    return {"success": True, "user": build_user_projection(user, companies, payload.company_id).to_wire()}


@router.post("/register", status_code=201)
def register(
    request: Request,
    response: Response,
    payload: RegisterRequest = Depends(validate(RegisterRequest)),
    storage: DatabaseStorage = Depends(get_storage),
):
    _require_strong(payload.password, "password")
    if storage.get_user_by_email(payload.email) is not None:
        raise ConflictError("Email is already registered", reason="email_exists")

    user = storage.create_user(
        email=payload.email,
        password_hash=hash_password(payload.password),
        first_name=payload.first_name,
        last_name=payload.last_name,
        role=UserRole.WORKER.value,
    )
    token = generate_secure_token()
    storage.create_email_verification(
        user.id,
        hash_token(token),
        datetime.now(timezone.utc) + timedelta(seconds=settings.email_verification_ttl_seconds),
    )
    mailer.send_verification_email(user.email, token)

    _issue_session(response, request, storage, user)
    audit.record_auth_event(storage.db, audit.REGISTER, str(user.id), user.role)
    return {
        "success": True,
        "message": "Registration successful",
        "user": build_user_projection(user, []).to_wire(),
    }


@router.post("/refresh")
def refresh(
    request: Request,
    response: Response,
    storage: DatabaseStorage = Depends(get_storage),
):
    token = get_refresh_token_from_request(request)
    if not token:
        raise AuthenticationError("missing_refresh_token", "Refresh token required")
    claims = decode_token(token, REFRESH)

    # first use wins: listing the old id fails when it was already rotated or revoked
    listed = storage.blacklist_token(
        claims["jti"], REFRESH, claims_expiry(claims), user_id=claims.get("sub"), reason="rotated"
    )
    if not listed:
        revoked = storage.revoke_refresh_token_family(claims.get("fam") or "", reason="reuse_detected")
        log.warning("refresh_token_reuse", user_id=claims.get("sub"), family=claims.get("fam"), revoked=revoked)
        audit.record_auth_event(storage.db, audit.REFRESH_REUSE, claims.get("sub"), family=claims.get("fam"))
        raise AuthenticationError("token_revoked", "Refresh token has been revoked")

    user = storage.get_user(claims.get("sub"))
    if user is None:
        raise AuthenticationError("invalid_refresh_token", "Invalid token")
    if not user.is_active:
        raise AuthenticationError("user_inactive", "User account is inactive")

    new_claims = _issue_session(
        response, request, storage, user, remember_me=bool(claims.get("rem")), family_id=claims.get("fam")
    )
    storage.revoke_refresh_token(claims["jti"], replaced_by=new_claims["jti"], reason="rotated")
    return {"success": True, "message": "Token refreshed"}


@router.post("/logout")
def logout(
    request: Request,
    response: Response,
    storage: DatabaseStorage = Depends(get_storage),
):
    user_id = None
    presented = (
        (get_access_token_from_request(request), ACCESS),
        (get_refresh_token_from_request(request), REFRESH),
    )
    for token, token_type in presented:
        if not token:
            continue
        try:
            claims = decode_token(token, token_type, verify_exp=False)
        except AuthenticationError:
            continue
        user_id = user_id or claims.get("sub")
        storage.blacklist_token(claims["jti"], token_type, claims_expiry(claims), user_id=claims.get("sub"), reason="logout")
        if token_type == REFRESH:
            storage.revoke_refresh_token(claims["jti"], reason="logout")

    clear_auth_cookies(response)
    if user_id:
        audit.record_auth_event(storage.db, audit.LOGOUT, user_id)
    return {"success": True, "message": "Logged out successfully"}


@router.get("/me")
@router.get("/user")
def me(
    query: CompanyQuery = Depends(validate_query(CompanyQuery)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    companies = _accessible(storage, user, query.company_id)
    return build_user_projection(user, companies, query.company_id).to_wire()


@router.get("/session")
def session(
    user: Optional[User] = Depends(get_optional_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    if user is None:
        return {"isAuthenticated": False, "user": None}
    companies = storage.get_user_companies(user)
    return {"isAuthenticated": True, "user": build_user_projection(user, companies).to_wire()}


@router.post("/switch-company")
def switch_company(
    payload: SwitchCompanyRequest = Depends(validate(SwitchCompanyRequest)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    companies = _accessible(storage, user, payload.company_id)
    user = storage.set_current_company(user.id, payload.company_id)
    audit.record_auth_event(storage.db, audit.COMPANY_SWITCH, str(user.id), user.role, company_id=payload.company_id)
    return {"success": True, "user": build_user_projection(user, companies, payload.company_id).to_wire()}


@router.get("/permissions")
def permissions(
    query: CompanyQuery = Depends(validate_query(CompanyQuery)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    companies = _accessible(storage, user, query.company_id)
    return build_user_projection(user, companies, query.company_id).permissions


@router.get("/roles")
def roles(
    query: CompanyQuery = Depends(validate_query(CompanyQuery)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    if query.company_id:
        _accessible(storage, user, query.company_id)
        rows = [
            RoleOut(
                company_id=query.company_id,
                role=get_user_role_for_company(user, query.company_id) or user.role,
                permissions=get_effective_permissions(user, query.company_id),
            )
        ]
    else:
        rows = [RoleOut(**r) for r in storage.get_user_roles(user.id)]
    return [r.to_wire() for r in rows]


@router.get("/companies")
def companies(
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    return [company_out(c).to_wire() for c in storage.get_user_companies(user)]


@router.put("/profile")
def update_profile(
    payload: UpdateProfileRequest = Depends(validate(UpdateProfileRequest)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    fields = payload.model_dump(exclude_unset=True)
    user = storage.update_user(user.id, **fields)
    companies = storage.get_user_companies(user)
    return {
        "success": True,
        "message": "Profile updated successfully",
        "user": build_user_projection(user, companies).to_wire(),
    }


@router.post("/change-password")
def change_password(
    request: Request,
    response: Response,
    payload: ChangePasswordRequest = Depends(validate(ChangePasswordRequest)),
    user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    if not verify_password(payload.current_password, user.password_hash):
        log.warning("change_password_failed", user_id=str(user.id), reason="invalid_current_password")
        raise AuthenticationError("invalid_current_password", "Current password is incorrect")
    _require_strong(payload.new_password, "newPassword")
    if not is_password_different(payload.new_password, user.password_hash):
        raise RequestValidationFailed(
            "Validation failed",
            "validation_failed",
            [{"field": "newPassword", "message": "New password must differ from the current one", "code": "password_reused"}],
        )

    user = storage.update_user_password(user.id, hash_password(payload.new_password))
    storage.revoke_user_refresh_tokens(user.id, reason="password_change")
    claims = getattr(request.state, "token_claims", None)
    if claims:
        storage.blacklist_token(claims["jti"], ACCESS, claims_expiry(claims), user_id=str(user.id), reason="password_change")
    _issue_session(response, request, storage, user)
    audit.record_auth_event(storage.db, audit.PASSWORD_CHANGE, str(user.id), user.role)
    return {"success": True, "message": "Password changed successfully"}


@router.post("/forgot-password")
def forgot_password(
    payload: ForgotPasswordRequest = Depends(validate(ForgotPasswordRequest)),
    storage: DatabaseStorage = Depends(get_storage),
):
    user = storage.get_user_by_email(payload.email)
    if user is not None and user.is_active:
        token = generate_secure_token()
        storage.create_password_reset(
            user.id,
            hash_token(token),
            datetime.now(timezone.utc) + timedelta(seconds=settings.password_reset_ttl_seconds),
        )
        mailer.send_password_reset_email(user.email, token)
    # same answer whether or not the account exists
    return {"success": True, "message": "If the email exists, a password reset link has been sent"}


@router.post("/reset-password")
def reset_password(
    payload: ResetPasswordRequest = Depends(validate(ResetPasswordRequest)),
    storage: DatabaseStorage = Depends(get_storage),
):
    _require_strong(payload.new_password, "newPassword")
    user = storage.reset_password_with_token(hash_token(payload.token), hash_password(payload.new_password))
    if user is None:
        raise BadRequestError("Invalid or expired reset token", reason="invalid_reset_token")
    storage.revoke_user_refresh_tokens(user.id, reason="password_reset")
    audit.record_auth_event(storage.db, audit.PASSWORD_RESET, str(user.id), user.role)
    return {"success": True, "message": "Password has been reset"}


@router.post("/verify-email")
def verify_email(
    payload: VerifyEmailRequest = Depends(validate(VerifyEmailRequest)),
    storage: DatabaseStorage = Depends(get_storage),
):
    user = storage.consume_email_verification(hash_token(payload.token))
    if user is None:
        raise BadRequestError("Invalid or expired verification token", reason="invalid_verification_token")
    return {"success": True, "message": "Email verified successfully"}


@router.post("/resend-verification")
def resend_verification(
    payload: ResendVerificationRequest = Depends(validate(ResendVerificationRequest)),
    storage: DatabaseStorage = Depends(get_storage),
):
    user = storage.get_user_by_email(payload.email)
    if user is not None and user.is_active and not user.email_verified:
        token = generate_secure_token()
        storage.create_email_verification(
            user.id,
            hash_token(token),
            datetime.now(timezone.utc) + timedelta(seconds=settings.email_verification_ttl_seconds),
        )
        mailer.send_verification_email(user.email, token)
    return {"success": True, "message": "If the account needs verification, an email has been sent"}
