import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["JWT_SECRET"] = "test-secret-key-that-is-long-enough-for-hs256"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ["COOKIE_SECURE"] = "true"
os.environ["DEFAULT_LOCALE"] = "ar"
os.environ.pop("SMTP_HOST", None)

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from hrms.auth.passwords import hash_password
from hrms.db import Base, get_db
from hrms.main import app
from hrms.services.permissions import Permission
from hrms.storage.database import DatabaseStorage


PASSWORD = "Secret@123"

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    future=True,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def storage(db):
    return DatabaseStorage(db)


@pytest.fixture
def client():
    app.dependency_overrides[get_db] = override_get_db
    # https so Secure cookies are stored and sent back
    c = TestClient(app, base_url="https://testserver")
    try:
        yield c
    finally:
        c.close()
        app.dependency_overrides.clear()


@pytest.fixture
def seed(storage):
    """Three companies, a super admin, a manager in two companies and a worker."""
    pw = hash_password(PASSWORD)
    acme = storage.create_company(name="Acme Trading", commercial_file_number="CF-1")
    nile = storage.create_company(name="Nile Contracting", commercial_file_number="CF-2")
    other = storage.create_company(name="Other Holdings", commercial_file_number="CF-3")

    admin = storage.create_user("admin@example.com", pw, "Sys", "Admin", role="super_admin", email_verified=True)
    manager = storage.create_user("manager@example.com", pw, "Sara", "Manager", role="company_manager", email_verified=True)
    worker = storage.create_user("worker@example.com", pw, "Ali", "Worker", role="worker", email_verified=True)

    storage.add_company_user(manager.id, acme.id, "company_manager")
    storage.add_company_user(
        manager.id, nile.id, "supervisor", [Permission.VIEW_EMPLOYEES, Permission.VIEW_REPORTS]
    )
    storage.add_company_user(worker.id, acme.id, "worker")

    return SimpleNamespace(
        acme_id=str(acme.id),
        nile_id=str(nile.id),
        other_id=str(other.id),
        admin_id=str(admin.id),
        manager_id=str(manager.id),
        worker_id=str(worker.id),
    )


def login(client, email, password=PASSWORD, **extra):
    return client.post("/auth/login", json={"email": email, "password": password, **extra})


@pytest.fixture
def manager_client(client, seed):
    resp = login(client, "manager@example.com")
    assert resp.status_code == 200, resp.text
    return client
