from typing import List, Optional

from ..schemas.auth import CompanyOut, UserOut


class UserStore:
    """In-memory session state shared by the auth units. Never persisted."""

    def __init__(self):
        self.user: Optional[UserOut] = None
        self.current_company: Optional[CompanyOut] = None
        self.permissions: List[str] = []
        self.loading: bool = False
        self.error: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def set_user(self, user: Optional[UserOut]) -> None:
        self.user = user
        self.permissions = list(user.permissions) if user else []
        self.current_company = self._company_of(user)
        self.error = None

    def update_user(self, **fields) -> None:
        if self.user is None:
            return
        self.set_user(self.user.model_copy(update=fields))

    def set_current_company(self, company: Optional[CompanyOut]) -> None:
        self.current_company = company

    def set_permissions(self, permissions: List[str]) -> None:
        self.permissions = list(permissions)

    def set_loading(self, loading: bool) -> None:
        self.loading = loading

    def set_error(self, error: Optional[str]) -> None:
        self.error = error

    def clear_user(self) -> None:
        self.user = None
        self.current_company = None
        self.permissions = []
        self.error = None

    @staticmethod
    def _company_of(user: Optional[UserOut]) -> Optional[CompanyOut]:
        if user is None or not user.company_id:
            return None
        for c in user.companies:
            if c.id == user.company_id:
                return c
        return None
