from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient
from passlib.context import CryptContext

from conftest import PASSWORD, login
from hrms.auth.security import ACCESS, REFRESH, create_access_token, create_refresh_token, decode_token
from hrms.config import settings
from hrms.errors import AuthenticationError
from hrms.main import app
from hrms.services import mailer


ACCESS_COOKIE = "__Host-hrms-access"
REFRESH_COOKIE = "__Host-hrms-refresh"


def bearer_client(token):
    return TestClient(app, base_url="https://testserver", headers={"Authorization": f"Bearer {token}"})


def test_login_sets_host_cookies_and_keeps_tokens_out_of_body(client, seed):
    resp = login(client, "manager@example.com")
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["success"] is True
    assert body["user"]["email"] == "manager@example.com"
    assert "token" not in resp.text.lower()

    cookies = resp.headers.get_list("set-cookie")
    access = next(c for c in cookies if c.startswith(f"{ACCESS_COOKIE}="))
    refresh = next(c for c in cookies if c.startswith(f"{REFRESH_COOKIE}="))
    for header in (access, refresh):
        lowered = header.lower()
        assert "httponly" in lowered
        assert "secure" in lowered
        assert "samesite=strict" in lowered
        assert "path=/" in lowered
        assert "domain=" not in lowered
    assert f"max-age={settings.refresh_ttl_seconds}" in refresh.lower()


def test_remember_me_extends_refresh_cookie(client, seed):
    resp = login(client, "manager@example.com", rememberMe=True)
    refresh = next(c for c in resp.headers.get_list("set-cookie") if c.startswith(f"{REFRESH_COOKIE}="))
    assert f"max-age={settings.refresh_remember_ttl_seconds}" in refresh.lower()


def test_login_wrong_password(client, seed):
    resp = login(client, "manager@example.com", "Wrong@1234")
    assert resp.status_code == 401
    body = resp.json()
    assert body["success"] is False
    assert body["reason"] == "invalid_credentials"
    assert ACCESS_COOKIE not in resp.headers.get("set-cookie", "")


def test_login_unknown_email_same_answer(client, seed):
    resp = login(client, "ghost@example.com")
    assert resp.status_code == 401
    assert resp.json()["reason"] == "invalid_credentials"


def test_login_inactive_account(client, seed, storage):
    storage.update_user(seed.worker_id, is_active=False)
    resp = login(client, "worker@example.com")
    assert resp.status_code == 401
    assert resp.json()["reason"] == "account_inactive"


def test_login_with_company_context(client, seed):
    resp = login(client, "manager@example.com", companyId=seed.acme_id)
    assert resp.status_code == 200
    user = resp.json()["user"]
    assert user["companyId"] == seed.acme_id
    assert "manage_company" in user["permissions"]
    assert {c["id"] for c in user["companies"]} == {seed.acme_id, seed.nile_id}


def test_login_with_foreign_company_denied(client, seed):
    resp = login(client, "manager@example.com", companyId=seed.other_id)
    assert resp.status_code == 403
    assert resp.json()["reason"] == "company_access_denied"


def test_login_upgrades_legacy_hash(client, seed, storage, db):
    legacy = CryptContext(schemes=["pbkdf2_sha256"]).hash(PASSWORD)
    storage.update_user_password(seed.worker_id, legacy)
    assert login(client, "worker@example.com").status_code == 200
    db.expire_all()
    assert storage.get_user(seed.worker_id).password_hash.startswith("$2b$")


def test_me_requires_auth(client, seed):
    resp = client.get("/auth/me")
    assert resp.status_code == 401
    assert resp.json()["reason"] == "missing_token"


def test_me_and_user_alias(manager_client, seed):
    me = manager_client.get("/auth/me")
    assert me.status_code == 200
    assert me.json()["email"] == "manager@example.com"
    assert manager_client.get("/auth/user").json()["id"] == me.json()["id"]


def test_bearer_header_accepted(client, seed):
    token, _ = create_access_token(seed.worker_id)
    with bearer_client(token) as c:
        assert c.get("/auth/me").json()["email"] == "worker@example.com"


def test_expired_access_token(client, seed):
    now = datetime.now(timezone.utc)
    token = jwt.encode(
        {
            "sub": seed.worker_id,
            "jti": "expired-1",
            "iat": int((now - timedelta(hours=1)).timestamp()),
            "exp": int((now - timedelta(minutes=5)).timestamp()),
            "iss": settings.jwt_issuer,
            "aud": settings.jwt_audience,
            "type": ACCESS,
        },
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    with bearer_client(token) as c:
        resp = c.get("/auth/me")
    assert resp.status_code == 401
    assert resp.json()["reason"] == "token_expired"


def test_refresh_token_is_not_an_access_token(seed):
    token, _ = create_refresh_token(seed.worker_id)
    with pytest.raises(AuthenticationError) as exc:
        decode_token(token, ACCESS)
    assert exc.value.reason == "invalid_token"

    access, _ = create_access_token(seed.worker_id)
    with pytest.raises(AuthenticationError) as exc:
        decode_token(access, REFRESH)
    assert exc.value.reason == "invalid_refresh_token"


def test_session(client, seed):
    assert client.get("/auth/session").json() == {"isAuthenticated": False, "user": None}
    login(client, "worker@example.com")
    body = client.get("/auth/session").json()
    assert body["isAuthenticated"] is True
    assert body["user"]["email"] == "worker@example.com"


def test_logout_blacklists_access_token(manager_client, seed):
    access = manager_client.cookies.get(ACCESS_COOKIE)
    resp = manager_client.post("/auth/logout")
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": "Logged out successfully"}
    cleared = [c for c in resp.headers.get_list("set-cookie") if c.startswith(ACCESS_COOKIE)]
    assert cleared and "max-age=0" in cleared[0].lower()

    with bearer_client(access) as c:
        resp = c.get("/auth/me")
    assert resp.status_code == 401
    assert resp.json()["reason"] == "token_revoked"


def test_logout_without_session_is_ok(client):
    resp = client.post("/auth/logout")
    assert resp.status_code == 200
    assert resp.json()["success"] is True


def test_refresh_rotates_tokens(manager_client, seed):
    old_refresh = manager_client.cookies.get(REFRESH_COOKIE)
    resp = manager_client.post("/auth/refresh")
    assert resp.status_code == 200, resp.text
    assert resp.json() == {"success": True, "message": "Token refreshed"}
    new_refresh = manager_client.cookies.get(REFRESH_COOKIE)
    assert new_refresh and new_refresh != old_refresh
    assert decode_token(new_refresh, REFRESH)["fam"] == decode_token(old_refresh, REFRESH)["fam"]
    assert manager_client.get("/auth/me").status_code == 200


def test_refresh_reuse_revokes_family(manager_client, seed):
    old_refresh = manager_client.cookies.get(REFRESH_COOKIE)
    assert manager_client.post("/auth/refresh").status_code == 200

    with TestClient(app, base_url="https://testserver", cookies={REFRESH_COOKIE: old_refresh}) as attacker:
        resp = attacker.post("/auth/refresh")
    assert resp.status_code == 401
    assert resp.json()["reason"] == "token_revoked"

    # the legitimate holder's newer token belongs to the same family
    resp = manager_client.post("/auth/refresh")
    assert resp.status_code == 401
    assert resp.json()["reason"] == "token_revoked"


def test_refresh_without_cookie(client):
    resp = client.post("/auth/refresh")
    assert resp.status_code == 401
    assert resp.json()["reason"] == "missing_refresh_token"


def test_refresh_with_garbage_token(client):
    with TestClient(app, base_url="https://testserver", cookies={REFRESH_COOKIE: "garbage"}) as c:
        resp = c.post("/auth/refresh")
    assert resp.status_code == 401
    assert resp.json()["reason"] == "invalid_refresh_token"


def test_register_and_verify_email(client, monkeypatch):
    sent = {}
    monkeypatch.setattr(mailer, "send_verification_email", lambda to, token: sent.update(to=to, token=token))

    resp = client.post(
        "/auth/register",
        json={"email": "New.Person@example.com", "password": "Brand@New1", "firstName": "Noor", "lastName": "Saleh"},
    )
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["success"] is True
    assert body["user"]["email"] == "new.person@example.com"
    assert body["user"]["role"] == "worker"
    assert body["user"]["emailVerified"] is False
    assert sent["to"] == "new.person@example.com"

    resp = client.post("/auth/verify-email", json={"token": sent["token"]})
    assert resp.status_code == 200
    assert client.get("/auth/me").json()["emailVerified"] is True

    again = client.post("/auth/verify-email", json={"token": sent["token"]})
    assert again.status_code == 400
    assert again.json()["reason"] == "invalid_verification_token"


def test_register_weak_password(client):
    resp = client.post(
        "/auth/register",
        json={"email": "weak@example.com", "password": "weakpass", "firstName": "Noor", "lastName": "Saleh"},
    )
    assert resp.status_code == 400
    detail = resp.json()["details"][0]
    assert detail["field"] == "password"
    assert detail["code"] == "weak_password"
    assert detail["message"] == "Password must contain at least one uppercase letter"


def test_register_duplicate_email(client, seed):
    resp = client.post(
        "/auth/register",
        json={"email": "WORKER@example.com", "password": "Brand@New1", "firstName": "Ali", "lastName": "Again"},
    )
    assert resp.status_code == 409
    assert resp.json()["reason"] == "email_exists"


def test_forgot_and_reset_password(client, seed, monkeypatch):
    sent = {}
    monkeypatch.setattr(mailer, "send_password_reset_email", lambda to, token: sent.update(to=to, token=token))

    unknown = client.post("/auth/forgot-password", json={"email": "ghost@example.com"})
    known = client.post("/auth/forgot-password", json={"email": "worker@example.com"})
    assert unknown.status_code == known.status_code == 200
    assert unknown.json() == known.json()
    assert sent["to"] == "worker@example.com"

    resp = client.post("/auth/reset-password", json={"token": sent["token"], "newPassword": "Fresh#Pass9"})
    assert resp.status_code == 200, resp.text

    assert login(client, "worker@example.com").status_code == 401
    assert login(client, "worker@example.com", "Fresh#Pass9").status_code == 200

    reused = client.post("/auth/reset-password", json={"token": sent["token"], "newPassword": "Other#Pass9"})
    assert reused.status_code == 400
    assert reused.json()["reason"] == "invalid_reset_token"


def test_reset_password_revokes_refresh_tokens(client, seed, monkeypatch):
    sent = {}
    monkeypatch.setattr(mailer, "send_password_reset_email", lambda to, token: sent.update(token=token))
    login(client, "worker@example.com")
    client.post("/auth/forgot-password", json={"email": "worker@example.com"})
    client.post("/auth/reset-password", json={"token": sent["token"], "newPassword": "Fresh#Pass9"})

    resp = client.post("/auth/refresh")
    assert resp.status_code == 401
    assert resp.json()["reason"] == "token_revoked"


def test_change_password(manager_client, seed):
    old_access = manager_client.cookies.get(ACCESS_COOKIE)

    wrong = manager_client.post(
        "/auth/change-password", json={"currentPassword": "Nope@1234", "newPassword": "Changed#Pass1"}
    )
    assert wrong.status_code == 401
    assert wrong.json()["reason"] == "invalid_current_password"

    same = manager_client.post(
        "/auth/change-password", json={"currentPassword": PASSWORD, "newPassword": PASSWORD}
    )
    assert same.status_code == 400
    assert same.json()["details"][0]["code"] == "password_reused"

    resp = manager_client.post(
        "/auth/change-password", json={"currentPassword": PASSWORD, "newPassword": "Changed#Pass1"}
    )
    assert resp.status_code == 200, resp.text
    assert manager_client.get("/auth/me").status_code == 200

    with bearer_client(old_access) as c:
        assert c.get("/auth/me").json()["reason"] == "token_revoked"


def test_update_profile(manager_client, seed):
    resp = manager_client.put("/auth/profile", json={"lastName": "Khalid"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Profile updated successfully"
    assert body["user"]["lastName"] == "Khalid"
    assert body["user"]["firstName"] == "Sara"
