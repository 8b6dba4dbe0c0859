from typing import Any, Dict, List, Optional

from ..schemas.auth import CompanyOut, UpdateProfileRequest, UserOut
from .api import ApiClient, ApiError


def _unexpected() -> ApiError:
    return ApiError(200, "Unexpected response from server", reason="invalid_response")


def _object(data: Any, *keys: str) -> Dict[str, Any]:
    if not isinstance(data, dict) or any(k not in data for k in keys):
        raise _unexpected()
    return data


def _array(data: Any) -> list:
    if not isinstance(data, list):
        raise _unexpected()
    return data


class AuthService:
    """Calls the /auth endpoints. Errors propagate as ApiError or httpx exceptions."""

    def __init__(self, api: ApiClient):
        self.api = api

    def login(
        self,
        email: str,
        password: str,
        company_id: Optional[str] = None,
        remember_me: bool = False,
    ) -> UserOut:
        body: Dict[str, Any] = {"email": email, "password": password, "rememberMe": remember_me}
        if company_id:
            body["companyId"] = company_id
        data = _object(self.api.post("/auth/login", body), "user")
        return UserOut.model_validate(data["user"])

    def logout(self) -> None:
        try:
            self.api.post("/auth/logout")
        finally:
            self.api.clear_cookies()

    def get_current_user(self, company_id: Optional[str] = None) -> UserOut:
        return UserOut.model_validate(_object(self.api.get("/auth/me", {"companyId": company_id})))

    def refresh_token(self) -> bool:
        return bool(_object(self.api.post("/auth/refresh")).get("success"))

    def switch_company(self, company_id: str) -> UserOut:
        data = _object(self.api.post("/auth/switch-company", {"companyId": company_id}), "user")
        return UserOut.model_validate(data["user"])

    def get_user_permissions(self, company_id: Optional[str] = None) -> List[str]:
        return [str(p) for p in _array(self.api.get("/auth/permissions", {"companyId": company_id}))]

    def get_user_companies(self) -> List[CompanyOut]:
        return [CompanyOut.model_validate(c) for c in _array(self.api.get("/auth/companies"))]

    def update_profile(self, **fields: Any) -> UserOut:
        body = UpdateProfileRequest(**fields).model_dump(mode="json", by_alias=True, exclude_unset=True)
        data = _object(self.api.put("/auth/profile", body), "user")
        return UserOut.model_validate(data["user"])

    def change_password(self, current_password: str, new_password: str) -> None:
        self.api.post(
            "/auth/change-password",
            {"currentPassword": current_password, "newPassword": new_password},
        )

    def get_session(self) -> Dict[str, Any]:
        data = _object(self.api.get("/auth/session"))
        user = data.get("user")
        return {
            "is_authenticated": bool(data.get("isAuthenticated")),
            "user": UserOut.model_validate(user) if user else None,
        }
