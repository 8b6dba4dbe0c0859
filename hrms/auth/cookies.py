from typing import Optional

from fastapi import Request, Response

from ..config import settings


def _cookie_kwargs() -> dict:
    return {
        "httponly": True,
        "secure": settings.cookie_secure,
        "samesite": "strict",
        "path": "/",
    }


def set_auth_cookies(response: Response, access_token: str, refresh_token: str, remember_me: bool = False) -> None:
    response.set_cookie(
        settings.access_cookie_name,
        access_token,
        max_age=settings.jwt_ttl_seconds,
        **_cookie_kwargs(),
    )
    response.set_cookie(
        settings.refresh_cookie_name,
        refresh_token,
        max_age=settings.refresh_remember_ttl_seconds if remember_me else settings.refresh_ttl_seconds,
        **_cookie_kwargs(),
    )


def clear_auth_cookies(response: Response) -> None:
    for name in (settings.access_cookie_name, settings.refresh_cookie_name):
        response.delete_cookie(name, **_cookie_kwargs())


def get_access_token_from_request(request: Request) -> Optional[str]:
    """Cookie first; mobile and API clients may send a Bearer header instead."""
    token = request.cookies.get(settings.access_cookie_name)
    if token:
        return token
    auth = request.headers.get("authorization") or ""
    scheme, _, value = auth.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


def get_refresh_token_from_request(request: Request) -> Optional[str]:
    return request.cookies.get(settings.refresh_cookie_name) or None
