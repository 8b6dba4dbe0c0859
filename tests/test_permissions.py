from types import SimpleNamespace

from conftest import login
from hrms.services.permissions import (
    ALL_PERMISSIONS,
    ROLE_PERMISSIONS,
    Permission,
    UserRole,
    can_access_company,
    get_effective_permissions,
    get_user_role_for_company,
    has_all_permissions,
    has_any_permission,
    has_permission,
)


def membership(company_id, role, permissions=(), is_active=True):
    return SimpleNamespace(company_id=company_id, role=role, permissions=list(permissions), is_active=is_active)


def user(role="worker", memberships=(), **extra):
    return SimpleNamespace(role=role, memberships=list(memberships), company_id=None, **extra)


def test_super_admin_gets_everything():
    admin = user("super_admin")
    assert get_effective_permissions(admin, "any") == ALL_PERMISSIONS
    assert Permission.SYSTEM_ADMIN in get_effective_permissions(admin)
    assert get_user_role_for_company(admin, "c1") == "super_admin"
    assert can_access_company(admin, "c1")


def test_membership_override_replaces_role_defaults():
    u = user("company_manager", [membership("c1", "supervisor", ["view_reports", "view_reports", "export_data"])])
    assert get_effective_permissions(u, "c1") == ["view_reports", "export_data"]


def test_empty_override_uses_membership_role():
    u = user("worker", [membership("c1", "company_manager")])
    assert get_effective_permissions(u, "c1") == ROLE_PERMISSIONS["company_manager"]


def test_no_membership_falls_back_to_global_role():
    u = user("supervisor", [membership("c1", "worker")])
    assert get_effective_permissions(u, "c2") == ROLE_PERMISSIONS["supervisor"]
    assert get_effective_permissions(u) == ROLE_PERMISSIONS["supervisor"]
    assert get_user_role_for_company(u, "c2") is None


def test_inactive_membership_is_ignored():
    u = user("worker", [membership("c1", "company_manager", is_active=False)])
    assert get_effective_permissions(u, "c1") == ROLE_PERMISSIONS["worker"]
    assert not can_access_company(u, "c1")


def test_membership_in_deactivated_company_is_ignored():
    closed = SimpleNamespace(is_active=False)
    m = membership("c1", "company_manager")
    m.company = closed
    u = user("worker", [m])
    assert get_user_role_for_company(u, "c1") is None
    assert get_effective_permissions(u, "c1") == ROLE_PERMISSIONS["worker"]
    assert not can_access_company(u, "c1")


def test_can_access_company_uses_projection_companies():
    projected = SimpleNamespace(role="super_admin", companies=[SimpleNamespace(id="c1")])
    assert can_access_company(projected, "c1")
    assert not can_access_company(projected, "c2")
    assert not can_access_company(projected, None)


def test_permission_predicates():
    held = ["a", "b"]
    assert has_permission(held, "a")
    assert not has_permission([], "a")
    assert has_any_permission(held, ["z", "b"])
    assert not has_any_permission(held, [])
    assert has_all_permissions(held, ["a", "b"])
    assert not has_all_permissions(held, ["a", "c"])
    assert has_all_permissions(held, [])


def test_role_enum_values_match_storage_strings():
    assert UserRole("company_manager") is UserRole.COMPANY_MANAGER
    assert set(ROLE_PERMISSIONS) == {r.value for r in UserRole}


# over HTTP


def test_switch_company_applies_membership_override(manager_client, seed):
    resp = manager_client.post("/auth/switch-company", json={"companyId": seed.nile_id})
    assert resp.status_code == 200, resp.text
    user = resp.json()["user"]
    assert user["companyId"] == seed.nile_id
    assert sorted(user["permissions"]) == sorted([Permission.VIEW_EMPLOYEES, Permission.VIEW_REPORTS])

    # persisted as the current company
    me = manager_client.get("/auth/me").json()
    assert me["companyId"] == seed.nile_id


def test_switch_to_foreign_company_denied(manager_client, seed):
    resp = manager_client.post("/auth/switch-company", json={"companyId": seed.other_id})
    assert resp.status_code == 403
    assert resp.json()["reason"] == "company_access_denied"


def test_switch_company_rejects_bad_id(manager_client, seed):
    resp = manager_client.post("/auth/switch-company", json={"companyId": "not-a-uuid"})
    assert resp.status_code == 400
    assert resp.json()["details"][0]["field"] == "companyId"


def test_permissions_endpoint_per_company(manager_client, seed):
    acme = manager_client.get("/auth/permissions", params={"companyId": seed.acme_id}).json()
    nile = manager_client.get("/auth/permissions", params={"companyId": seed.nile_id}).json()
    assert Permission.MANAGE_PERMISSIONS in acme
    assert Permission.MANAGE_PERMISSIONS not in nile
    assert set(nile) == {Permission.VIEW_EMPLOYEES, Permission.VIEW_REPORTS}

    denied = manager_client.get("/auth/permissions", params={"companyId": seed.other_id})
    assert denied.status_code == 403


def test_roles_endpoint(manager_client, seed):
    roles = manager_client.get("/auth/roles").json()
    by_company = {r["companyId"]: r for r in roles}
    assert by_company[seed.acme_id]["role"] == "company_manager"
    assert by_company[seed.nile_id]["role"] == "supervisor"

    one = manager_client.get("/auth/roles", params={"companyId": seed.nile_id}).json()
    assert one == [
        {
            "companyId": seed.nile_id,
            "role": "supervisor",
            "permissions": [Permission.VIEW_EMPLOYEES, Permission.VIEW_REPORTS],
        }
    ]


def test_companies_endpoint_lists_memberships_only(manager_client, seed):
    ids = {c["id"] for c in manager_client.get("/auth/companies").json()}
    assert ids == {seed.acme_id, seed.nile_id}


def test_super_admin_sees_all_active_companies(client, seed, storage):
    storage.update_company(seed.other_id, is_active=False)
    login(client, "admin@example.com")
    ids = {c["id"] for c in client.get("/auth/companies").json()}
    assert ids == {seed.acme_id, seed.nile_id}


def test_supervisor_override_limits_company_routes(manager_client, seed, storage):
    storage.create_employee(
        seed.nile_id, civil_id="290010100001", full_name="Yousef Nile", nationality="Egyptian",
        type="expatriate", job_title="Mason",
    )
    # view_employees is in the override
    assert manager_client.get(f"/companies/{seed.nile_id}/employees").status_code == 200
    # view_payroll is not
    resp = manager_client.get(f"/companies/{seed.nile_id}/deductions")
    assert resp.status_code == 403
    assert resp.json()["reason"] == "insufficient_permissions"


def test_worker_cannot_manage_employees(client, seed):
    login(client, "worker@example.com")
    resp = client.post(
        "/employees",
        json={
            "companyId": seed.acme_id,
            "civilId": "290010100002",
            "fullName": "Blocked Person",
            "nationality": "Kuwaiti",
            "type": "citizen",
            "jobTitle": "Clerk",
        },
    )
    assert resp.status_code == 403
    assert resp.json()["reason"] == "insufficient_permissions"


def test_foreign_company_is_denied_before_permissions(manager_client, seed):
    resp = manager_client.get(f"/companies/{seed.other_id}")
    assert resp.status_code == 403
    assert resp.json()["reason"] == "company_access_denied"


def test_audit_log_needs_system_admin(client, seed):
    login(client, "manager@example.com")
    resp = client.get("/audit-logs")
    assert resp.status_code == 403
    assert resp.json()["reason"] == "insufficient_permissions"

    client.cookies.clear()
    login(client, "admin@example.com")
    logins = client.get("/audit-logs", params={"action": "LOGIN"}).json()
    assert len(logins) == 2
    assert {e["entityId"] for e in logins} == {seed.admin_id, seed.manager_id}
    assert all(e["integrityValid"] for e in logins)

    mine = client.get("/audit-logs", params={"userId": seed.manager_id, "action": "LOGIN"}).json()
    assert len(mine) == 1
    assert client.get("/audit-logs", params={"limit": "0"}).status_code == 400
