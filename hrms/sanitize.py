"""
HTML sanitization of request input.

Every string leaf of a JSON body and every query value is reduced to a small
allow-list of inline markup before routing, so schema validation sees the
cleaned text. Path parameters only exist after routing and are cleaned in
validation.validate_params.
"""
import json
from typing import Any, Iterable
from urllib.parse import parse_qsl, urlencode

import nh3
import structlog


log = structlog.get_logger()

ALLOWED_TAGS = {"b", "i", "em", "strong", "a", "p", "ul", "ol", "li", "br", "span"}
ALLOWED_ATTRIBUTES = {"a": {"href", "name", "target"}}
ALLOWED_URL_SCHEMES = {"http", "https", "mailto", "tel"}

# secrets are hashed or compared verbatim
CREDENTIAL_FIELDS = frozenset({"password", "currentPassword", "newPassword", "confirmPassword"})


def sanitize_html_string(value: str) -> str:
    return nh3.clean(
        value,
        tags=ALLOWED_TAGS,
        attributes=ALLOWED_ATTRIBUTES,
        url_schemes=ALLOWED_URL_SCHEMES,
        link_rel=None,
    )


def deep_sanitize(value: Any, exempt_keys: Iterable[str] = ()) -> Any:
    exempt = exempt_keys if isinstance(exempt_keys, (set, frozenset)) else frozenset(exempt_keys)
    if isinstance(value, str):
        return sanitize_html_string(value)
    if isinstance(value, dict):
        return {
            k: (v if k in exempt else deep_sanitize(v, exempt))
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [deep_sanitize(v, exempt) for v in value]
    if isinstance(value, tuple):
        return tuple(deep_sanitize(v, exempt) for v in value)
    return value


def _is_json(headers) -> bool:
    for name, val in headers:
        if name.lower() == b"content-type":
            ctype = val.decode("latin-1").split(";")[0].strip().lower()
            return ctype == "application/json" or ctype.endswith("+json")
    return False


class SanitizeInputMiddleware:
    """Pure ASGI middleware; rewrites the query string and JSON body in place."""

    def __init__(self, app, exempt_keys: Iterable[str] = CREDENTIAL_FIELDS):
        self.app = app
        self.exempt_keys = frozenset(exempt_keys)

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        scope = dict(scope)
        query_string = scope.get("query_string") or b""
        if query_string:
            scope["query_string"] = self._sanitize_query(query_string)

        if scope.get("method") in ("GET", "HEAD", "OPTIONS", "DELETE") or not _is_json(scope.get("headers") or []):
            await self.app(scope, receive, send)
            return

        chunks = []
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] != "http.request":
                # client went away before the body arrived
                await self.app(scope, _replay(b"", receive, message), send)
                return
            chunks.append(message.get("body", b""))
            more_body = message.get("more_body", False)
        body = b"".join(chunks)

        new_body = self._sanitize_body(body, scope.get("path"))
        if new_body is not body:
            scope["headers"] = [
                (k, v) for k, v in scope.get("headers") or [] if k.lower() != b"content-length"
            ] + [(b"content-length", str(len(new_body)).encode("latin-1"))]
        await self.app(scope, _replay(new_body, receive), send)

    def _sanitize_query(self, query_string: bytes) -> bytes:
        pairs = parse_qsl(query_string.decode("latin-1"), keep_blank_values=True)
        cleaned = [(k, v if k in self.exempt_keys else sanitize_html_string(v)) for k, v in pairs]
        if cleaned == pairs:
            return query_string
        return urlencode(cleaned).encode("latin-1")

    def _sanitize_body(self, body: bytes, path) -> bytes:
        if not body:
            return body
        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            # left for the validator to reject
            log.debug("sanitize_skipped_malformed_json", path=path)
            return body
        cleaned = deep_sanitize(payload, self.exempt_keys)
        if cleaned == payload:
            return body
        return json.dumps(cleaned, ensure_ascii=False).encode("utf-8")


def _replay(body: bytes, receive, pending=None):
    sent = False

    async def _receive():
        nonlocal sent
        if not sent:
            sent = True
            if pending is not None:
                return pending
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return _receive
