from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from hrms.errors import ConflictError, StorageError
from hrms.services import audit


def make_employee(storage, company_id, civil_id="280010100001", **extra):
    fields = dict(
        civil_id=civil_id,
        full_name="Fatma Ahmad",
        nationality="Kuwaiti",
        type="citizen",
        job_title="Accountant",
        monthly_salary=Decimal("950.000"),
    )
    fields.update(extra)
    return storage.create_employee(company_id, **fields)


def test_create_employee_bumps_company_headcount(storage, seed):
    make_employee(storage, seed.acme_id)
    make_employee(storage, seed.acme_id, civil_id="280010100002")
    assert storage.get_company(seed.acme_id).total_employees == 2
    assert storage.get_company(seed.nile_id).total_employees == 0


def test_archive_employee_decrements_once(storage, seed):
    emp = make_employee(storage, seed.acme_id)
    archived = storage.archive_employee(emp.id, "Contract ended")
    assert archived.is_archived
    assert archived.archived_reason == "Contract ended"
    assert archived.archived_at is not None
    storage.archive_employee(emp.id, "again")
    assert storage.get_company(seed.acme_id).total_employees == 0
    assert storage.get_company_employees(seed.acme_id) == []
    assert len(storage.get_company_employees(seed.acme_id, include_archived=True)) == 1


def test_create_employee_for_missing_company(storage, seed):
    with pytest.raises(StorageError) as exc:
        make_employee(storage, "00000000-0000-0000-0000-000000000000")
    assert exc.value.storage_code == StorageError.NOT_FOUND
    assert exc.value.status_code == 404


def test_leave_days_default_to_inclusive_range(storage, seed):
    emp = make_employee(storage, seed.acme_id)
    leave = storage.create_leave(emp.id, "annual", date(2024, 3, 10), date(2024, 3, 14))
    assert leave.days == 5
    assert leave.status == "pending"
    assert leave.company_id == emp.company_id


def test_leave_transitions(storage, seed):
    emp = make_employee(storage, seed.acme_id)
    approved = storage.create_leave(emp.id, "sick", date(2024, 4, 1), date(2024, 4, 1))
    rejected = storage.create_leave(emp.id, "unpaid", date(2024, 5, 1), date(2024, 5, 2))

    approved = storage.approve_leave(approved.id, seed.manager_id)
    assert approved.status == "approved"
    assert str(approved.approved_by) == seed.manager_id
    assert approved.approved_at is not None

    rejected = storage.reject_leave(rejected.id, seed.manager_id, "Peak season")
    assert rejected.status == "rejected"
    assert rejected.rejection_reason == "Peak season"
    assert str(rejected.approved_by) == seed.manager_id

    with pytest.raises(ConflictError):
        storage.approve_leave(approved.id, seed.manager_id)
    with pytest.raises(ConflictError):
        storage.reject_leave(rejected.id, seed.manager_id, "twice")
    with pytest.raises(ConflictError):
        storage.approve_leave(rejected.id, seed.manager_id)

    assert [l.status for l in storage.get_company_leaves(seed.acme_id, status="pending")] == []
    assert len(storage.get_employee_leaves(emp.id)) == 2


def test_deductions_and_violations_carry_company(storage, seed):
    emp = make_employee(storage, seed.acme_id)
    d = storage.create_deduction(emp.id, seed.manager_id, Decimal("25.500"), "Late arrival", date(2024, 6, 3))
    v = storage.create_violation(emp.id, seed.manager_id, "Absence", date(2024, 6, 4), action_taken="Warning")
    assert d.company_id == emp.company_id
    assert v.company_id == emp.company_id
    assert [x.id for x in storage.get_company_deductions(seed.acme_id)] == [d.id]
    assert [x.id for x in storage.get_employee_violations(emp.id)] == [v.id]
    assert storage.get_company_violations(seed.nile_id) == []


def test_duplicate_email_is_constraint_violation(storage, seed):
    with pytest.raises(StorageError) as exc:
        storage.create_user("worker@example.com", "x")
    assert exc.value.storage_code == StorageError.CONSTRAINT_VIOLATION
    assert exc.value.status_code == 409
    # session is usable after the rollback
    assert storage.get_user_by_email("WORKER@example.com") is not None


def test_connection_failure_is_mapped(storage, seed, monkeypatch):
    def broken(*a, **k):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(storage.db, "get", broken)
    with pytest.raises(StorageError) as exc:
        storage.get_company(seed.acme_id)
    assert exc.value.storage_code == StorageError.CONNECTION_FAILURE
    assert exc.value.status_code == 503
    assert "locked" not in exc.value.message


def test_update_unknown_user_is_not_found(storage):
    with pytest.raises(StorageError) as exc:
        storage.update_user("00000000-0000-0000-0000-000000000000", first_name="Nobody")
    assert exc.value.storage_code == StorageError.NOT_FOUND


def test_malformed_ids_read_as_missing(storage, seed):
    assert storage.get_user("not-a-uuid") is None
    assert storage.get_company("not-a-uuid") is None
    assert storage.get_company_employees("not-a-uuid") == []


def test_blacklist_is_insert_if_absent(storage, seed):
    exp = datetime.utcnow() + timedelta(minutes=10)
    assert storage.blacklist_token("jti-1", "access", exp, seed.worker_id, "logout") is True
    assert storage.blacklist_token("jti-1", "access", exp, seed.worker_id, "logout") is False
    assert storage.is_token_blacklisted("jti-1")
    assert not storage.is_token_blacklisted("jti-2")
    assert not storage.is_token_blacklisted(None)


def test_refresh_family_revocation(storage, seed):
    exp = datetime.utcnow() + timedelta(days=1)
    storage.create_refresh_token_record(seed.worker_id, "r1", "fam-a", exp)
    storage.create_refresh_token_record(seed.worker_id, "r2", "fam-a", exp)
    storage.create_refresh_token_record(seed.worker_id, "r3", "fam-b", exp)

    storage.revoke_refresh_token("r1", replaced_by="r2", reason="rotated")
    assert storage.get_refresh_token_record("r1").replaced_by == "r2"

    assert storage.revoke_refresh_token_family("fam-a") == 2
    assert storage.is_token_blacklisted("r1")
    assert storage.is_token_blacklisted("r2")
    assert not storage.is_token_blacklisted("r3")
    assert storage.get_refresh_token_record("r2").revoked_at is not None

    assert storage.revoke_user_refresh_tokens(seed.worker_id) == 3
    assert storage.is_token_blacklisted("r3")


def test_purge_expired_tokens(storage, seed):
    now = datetime.utcnow()
    storage.blacklist_token("old", "access", now - timedelta(hours=1))
    storage.blacklist_token("live", "access", now + timedelta(hours=1))
    storage.create_refresh_token_record(seed.worker_id, "old-r", "f", now - timedelta(days=1))

    assert storage.purge_expired_tokens(dry_run=True) == {"blacklist": 1, "refresh_tokens": 1}
    assert storage.is_token_blacklisted("old")

    assert storage.purge_expired_tokens() == {"blacklist": 1, "refresh_tokens": 1}
    assert not storage.is_token_blacklisted("old")
    assert storage.is_token_blacklisted("live")
    assert storage.get_refresh_token_record("old-r") is None


def test_user_companies_and_roles(storage, seed):
    manager = storage.get_user(seed.manager_id)
    names = [c.name for c in storage.get_user_companies(manager)]
    assert names == ["Acme Trading", "Nile Contracting"]
    roles = {r["company_id"]: r["role"] for r in storage.get_user_roles(seed.manager_id)}
    assert roles == {seed.acme_id: "company_manager", seed.nile_id: "supervisor"}
    assert storage.get_user_permissions(seed.manager_id, seed.nile_id) == ["view_employees", "view_reports"]

    admin_companies = storage.get_user_companies(seed.admin_id)
    assert len(admin_companies) == 3


def test_add_company_user_upserts(storage, seed):
    storage.add_company_user(seed.worker_id, seed.acme_id, "supervisor", ["view_reports"])
    assert storage.get_user_permissions(seed.worker_id, seed.acme_id) == ["view_reports"]
    storage.add_company_user(seed.worker_id, seed.acme_id, "worker", is_active=False)
    assert storage.get_user_companies(seed.worker_id) == []


def test_deactivated_company_drops_out_of_memberships(storage, seed):
    storage.update_company(seed.nile_id, is_active=False)
    manager = storage.get_user(seed.manager_id)
    assert [str(c.id) for c in storage.get_user_companies(manager)] == [seed.acme_id]
    assert [r["company_id"] for r in storage.get_user_roles(seed.manager_id)] == [seed.acme_id]
    assert seed.nile_id not in {str(c.id) for c in storage.get_user_companies(seed.admin_id)}
    assert len(storage.get_all_companies()) == 3


def test_audit_entries_detect_tampering(db):
    entry = audit.create_audit_log(db, "user", "u-1", audit.LOGIN, actor_id="u-1", context={"ip": "10.0.0.1"})
    assert [e.id for e in audit.get_audit_logs(db, entity_id="u-1", action=audit.LOGIN)] == [entry.id]
    assert audit.verify_integrity(entry)
    entry.action = audit.LOGOUT
    assert not audit.verify_integrity(entry)
