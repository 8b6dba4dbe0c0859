"""
Client-side auth facade.

Four small units share one UserStore:

- AuthCore: login, logout, get_current_user
- AuthPermissions: permission predicates over the stored user
- AuthProfile: update_profile, get_user_full_name, switch_company
- AuthSession: check_auth, initialize_auth

AuthFacade holds one of each and forwards to them. Every action returns an
AuthResult; transport and API failures are turned into ``success=False``
results instead of propagating.
"""
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

import httpx
import structlog
from pydantic import ValidationError

from ..schemas.auth import CompanyOut, UserOut
from ..services import permissions as perms
from .api import ApiClient, ApiError
from .auth_service import AuthService
from .store import UserStore


log = structlog.get_logger()

_FAILURES = (ApiError, httpx.HTTPError, ValidationError)


@dataclass
class AuthResult:
    success: bool
    user: Optional[UserOut] = None
    company: Optional[CompanyOut] = None
    permissions: List[str] = field(default_factory=list)
    error: Optional[str] = None


def _error_text(exc: Exception) -> str:
    if isinstance(exc, ApiError):
        return exc.message
    if isinstance(exc, httpx.HTTPError):
        return "Network error"
    return "Unexpected response from server"


class _Unit:
    def __init__(self, service: AuthService, store: UserStore):
        self.service = service
        self.store = store

    def _ok(self) -> AuthResult:
        return AuthResult(
            True,
            user=self.store.user,
            company=self.store.current_company,
            permissions=list(self.store.permissions),
        )

    def _fail(self, action: str, exc: Exception) -> AuthResult:
        message = _error_text(exc)
        log.warning("auth_action_failed", action=action, error=message)
        self.store.set_error(message)
        return AuthResult(False, error=message)


class AuthCore(_Unit):
    def login(
        self,
        email: str,
        password: str,
        company_id: Optional[str] = None,
        remember_me: bool = False,
    ) -> AuthResult:
        self.store.set_loading(True)
        try:
            user = self.service.login(email, password, company_id=company_id, remember_me=remember_me)
        except _FAILURES as e:
            return self._fail("login", e)
        finally:
            self.store.set_loading(False)
        self.store.set_user(user)
        return self._ok()

    def logout(self) -> AuthResult:
        try:
            self.service.logout()
        except _FAILURES as e:
            self.store.clear_user()
            return self._fail("logout", e)
        self.store.clear_user()
        return AuthResult(True)

    def get_current_user(self, company_id: Optional[str] = None) -> AuthResult:
        try:
            user = self.service.get_current_user(company_id)
        except _FAILURES as e:
            return self._fail("get_current_user", e)
        self.store.set_user(user)
        return self._ok()


class AuthPermissions(_Unit):
    def get_permissions(self, company_id: Optional[str] = None) -> AuthResult:
        try:
            permissions = self.service.get_user_permissions(company_id)
        except _FAILURES as e:
            return self._fail("get_permissions", e)
        self.store.set_permissions(permissions)
        return self._ok()

    def has_permission(self, permission: str) -> bool:
        return perms.has_permission(self.store.permissions, permission)

    def has_any_permission(self, permissions: Iterable[str]) -> bool:
        return perms.has_any_permission(self.store.permissions, permissions)

    def has_all_permissions(self, permissions: Iterable[str]) -> bool:
        return perms.has_all_permissions(self.store.permissions, permissions)

    def can_access_company(self, company_id: str) -> bool:
        return self.store.user is not None and perms.can_access_company(self.store.user, company_id)

    def is_super_admin(self) -> bool:
        return self.store.user is not None and perms.is_super_admin(self.store.user)

    def is_company_manager(self) -> bool:
        return self.store.user is not None and perms.is_company_manager(self.store.user)


class AuthProfile(_Unit):
    def update_profile(self, **fields) -> AuthResult:
        try:
            user = self.service.update_profile(**fields)
        except _FAILURES as e:
            return self._fail("update_profile", e)
        self.store.set_user(user)
        return self._ok()

    def get_user_full_name(self) -> str:
        user = self.store.user
        if user is None:
            return ""
        full = " ".join(p for p in (user.first_name, user.last_name) if p)
        return full or user.email

    def switch_company(self, company_id: str) -> AuthResult:
        try:
            user = self.service.switch_company(company_id)
        except _FAILURES as e:
            return self._fail("switch_company", e)
        # replace wholesale so no permission from the previous company survives
        self.store.set_user(user)
        return self._ok()


class AuthSession(_Unit):
    def check_auth(self) -> bool:
        try:
            return bool(self.service.get_session()["is_authenticated"])
        except _FAILURES:
            return False

    def initialize_auth(self) -> AuthResult:
        """Hydrate from an existing cookie session, refreshing once if needed."""
        try:
            session = self.service.get_session()
            if not session["is_authenticated"]:
                try:
                    self.service.refresh_token()
                except ApiError:
                    return AuthResult(False, error="Not authenticated")
                session = self.service.get_session()
        except _FAILURES as e:
            return AuthResult(False, error=_error_text(e))
        user = session["user"]
        if user is None:
            return AuthResult(False, error="Not authenticated")
        return AuthResult(True, user=user, company=UserStore._company_of(user), permissions=list(user.permissions))


class AuthFacade:
    def __init__(self, api: ApiClient, store: Optional[UserStore] = None):
        self.store = store or UserStore()
        service = AuthService(api)
        self.core = AuthCore(service, self.store)
        self.permissions = AuthPermissions(service, self.store)
        self.profile = AuthProfile(service, self.store)
        self.session = AuthSession(service, self.store)

    # state

    @property
    def user(self) -> Optional[UserOut]:
        return self.store.user

    @property
    def current_company(self) -> Optional[CompanyOut]:
        return self.store.current_company

    @property
    def is_authenticated(self) -> bool:
        return self.store.is_authenticated

    @property
    def loading(self) -> bool:
        return self.store.loading

    @property
    def error(self) -> Optional[str]:
        return self.store.error

    def mount(self) -> Optional[AuthResult]:
        """Hydrate once on start; clears stale state when there is no session."""
        if self.store.is_authenticated or self.store.loading:
            return None
        self.store.set_loading(True)
        try:
            result = self.session.initialize_auth()
        finally:
            self.store.set_loading(False)
        if result.success:
            self.store.set_user(result.user)
        else:
            self.store.clear_user()
        return result

    # core

    def login(self, email: str, password: str, company_id: Optional[str] = None, remember_me: bool = False) -> AuthResult:
        return self.core.login(email, password, company_id=company_id, remember_me=remember_me)

    def logout(self) -> AuthResult:
        return self.core.logout()

    def get_current_user(self, company_id: Optional[str] = None) -> AuthResult:
        return self.core.get_current_user(company_id)

    # permissions

    def get_permissions(self, company_id: Optional[str] = None) -> AuthResult:
        return self.permissions.get_permissions(company_id)

    def has_permission(self, permission: str) -> bool:
        return self.permissions.has_permission(permission)

    def has_any_permission(self, permissions: Iterable[str]) -> bool:
        return self.permissions.has_any_permission(permissions)

    def has_all_permissions(self, permissions: Iterable[str]) -> bool:
        return self.permissions.has_all_permissions(permissions)

    def can_access_company(self, company_id: str) -> bool:
        return self.permissions.can_access_company(company_id)

    def is_super_admin(self) -> bool:
        return self.permissions.is_super_admin()

    def is_company_manager(self) -> bool:
        return self.permissions.is_company_manager()

    # profile

    def update_profile(self, **fields) -> AuthResult:
        return self.profile.update_profile(**fields)

    def get_user_full_name(self) -> str:
        return self.profile.get_user_full_name()

    def switch_company(self, company_id: str) -> AuthResult:
        return self.profile.switch_company(company_id)

    # session

    def check_auth(self) -> bool:
        return self.session.check_auth()

    def initialize_auth(self) -> AuthResult:
        return self.session.initialize_auth()
