"""
HTTP client for the HRMS API.
Session tokens live only in the client's in-memory cookie jar.
"""
from typing import Any, Dict, Optional

import httpx


class ApiError(Exception):
    """Non-2xx answer from the API."""

    def __init__(
        self,
        status_code: int,
        message: str,
        reason: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[list] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.reason = reason
        self.code = code
        self.details = details or []

    @classmethod
    def from_response(cls, response: httpx.Response) -> "ApiError":
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = body.get("message") or body.get("error") or body.get("detail") or response.reason_phrase
        return cls(
            response.status_code,
            str(message),
            reason=body.get("reason"),
            code=body.get("code") or body.get("error"),
            details=body.get("details"),
        )


class ApiClient:
    """Thin JSON wrapper over an httpx.Client.

    Pass ``client`` to reuse an existing httpx client (a TestClient in tests);
    otherwise one is created for ``base_url``.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
        headers: Optional[Dict[str, str]] = None,
    ):
        if client is None and not base_url:
            raise ValueError("base_url or client is required")
        self._owns_client = client is None
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout, headers=headers)

    @property
    def cookies(self) -> httpx.Cookies:
        return self._client.cookies

    def _request(self, method: str, path: str, **kwargs) -> Any:
        response = self._client.request(method, path, **kwargs)
        if response.status_code >= 400:
            raise ApiError.from_response(response)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            raise ApiError(response.status_code, "Unexpected response from server", reason="invalid_response")

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("GET", path, params={k: v for k, v in (params or {}).items() if v is not None})

    def post(self, path: str, json: Optional[Any] = None) -> Any:
        return self._request("POST", path, json=json if json is not None else {})

    def put(self, path: str, json: Optional[Any] = None) -> Any:
        return self._request("PUT", path, json=json if json is not None else {})

    def patch(self, path: str, json: Optional[Any] = None) -> Any:
        return self._request("PATCH", path, json=json if json is not None else {})

    def delete(self, path: str) -> Any:
        return self._request("DELETE", path)

    def clear_cookies(self) -> None:
        self._client.cookies.clear()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "ApiClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
