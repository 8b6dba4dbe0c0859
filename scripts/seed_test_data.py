"""
Seed the local database with sample companies, users and memberships.

Usage:
  python scripts/seed_test_data.py

This script is idempotent: running it multiple times will upsert the same
records based on unique fields (email for users, name for companies,
user/company pair for memberships).
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Load environment variables first
from dotenv import load_dotenv
load_dotenv()

from hrms.db import SessionLocal, Base, engine
from hrms.models.models import Company, CompanyUser, User
from hrms.auth.passwords import hash_password
from hrms.services.permissions import Permission, UserRole


def ensure_company(session, name: str, **fields) -> Company:
    company = session.query(Company).filter(Company.name == name).first()
    if company is None:
        company = Company(name=name, total_employees=0)
        session.add(company)
    for k, v in fields.items():
        setattr(company, k, v)
    session.flush()
    return company


def ensure_user(session, email: str, password: str, first_name: str, last_name: str, role: str) -> User:
    user = session.query(User).filter(User.email == email).first()
    if user:
        user.first_name = first_name
        user.last_name = last_name
        user.role = role
        # keep an existing password
        if not user.password_hash:
            user.password_hash = hash_password(password)
        return user
    user = User(
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        role=role,
        is_active=True,
        email_verified=True,
    )
    session.add(user)
    session.flush()
    return user


def ensure_membership(session, user: User, company: Company, role: str, permissions: list | None = None) -> CompanyUser:
    m = (
        session.query(CompanyUser)
        .filter(CompanyUser.user_id == user.id, CompanyUser.company_id == company.id)
        .first()
    )
    if m is None:
        m = CompanyUser(user_id=user.id, company_id=company.id)
        session.add(m)
    m.role = role
    m.permissions = permissions or []
    m.is_active = True
    session.flush()
    return m


def main() -> None:
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        union = ensure_company(
            session,
            "Union Trading Co.",
            commercial_file_number="CF-1001",
            industry_type="Trading",
            location="Kuwait City",
        )
        nile = ensure_company(
            session,
            "Nile Contracting",
            commercial_file_number="CF-2002",
            industry_type="Construction",
            location="Hawalli",
        )

        ensure_user(session, "admin@example.com", "Admin@12345", "System", "Admin", UserRole.SUPER_ADMIN.value)
        manager = ensure_user(session, "manager@example.com", "Manager@12345", "Sara", "Manager", UserRole.COMPANY_MANAGER.value)
        clerk = ensure_user(session, "clerk@example.com", "Clerk@12345", "Omar", "Clerk", UserRole.ADMINISTRATIVE_EMPLOYEE.value)
        worker = ensure_user(session, "worker@example.com", "Worker@12345", "Ali", "Worker", UserRole.WORKER.value)

        ensure_membership(session, manager, union, UserRole.COMPANY_MANAGER.value)
        ensure_membership(session, manager, nile, UserRole.SUPERVISOR.value)
        # clerk may also record deductions in Union
        ensure_membership(
            session,
            clerk,
            union,
            UserRole.ADMINISTRATIVE_EMPLOYEE.value,
            [Permission.VIEW_EMPLOYEES, Permission.VIEW_PAYROLL, Permission.MANAGE_PAYROLL],
        )
        ensure_membership(session, worker, union, UserRole.WORKER.value)

        manager.company_id = union.id
        session.commit()
        print("Seed completed: companies, users and memberships upserted.")
    finally:
        session.close()


if __name__ == "__main__":
    main()
