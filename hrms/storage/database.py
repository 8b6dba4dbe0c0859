"""
Relational data access for the HRMS core.

One DatabaseStorage is built per request around that request's session (see
get_storage). Every method turns SQLAlchemy failures into StorageError with a
code the caller can branch on; the driver error itself only reaches the log.
"""
import uuid
from contextlib import contextmanager
from datetime import datetime, date, timezone
from typing import Any, Dict, Iterable, List, Optional

import structlog
from fastapi import Depends
from sqlalchemy import func, update
from sqlalchemy.exc import (
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import ConflictError, StorageError
from ..models.models import (
    Company,
    CompanyUser,
    EmailVerification,
    Employee,
    EmployeeDeduction,
    EmployeeLeave,
    EmployeeViolation,
    Notification,
    PasswordReset,
    RefreshToken,
    TokenBlacklist,
    User,
)
from ..services.permissions import get_effective_permissions, is_super_admin


log = structlog.get_logger()

LEAVE_PENDING = "pending"
LEAVE_APPROVED = "approved"
LEAVE_REJECTED = "rejected"


def _as_uuid(value) -> Optional[uuid.UUID]:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _utcnow() -> datetime:
    return datetime.utcnow()


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class DatabaseStorage:
    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self, operation: str, message: str):
        try:
            yield
        except (StorageError, ConflictError):
            raise
        except IntegrityError as e:
            self.db.rollback()
            log.warning("storage_error", operation=operation, code=StorageError.CONSTRAINT_VIOLATION, error=str(e.orig))
            raise StorageError(StorageError.CONSTRAINT_VIOLATION, message, e) from e
        except (OperationalError, InterfaceError) as e:
            self.db.rollback()
            log.error("storage_error", operation=operation, code=StorageError.CONNECTION_FAILURE, error=str(e))
            raise StorageError(StorageError.CONNECTION_FAILURE, message, e) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            log.error("storage_error", operation=operation, code=StorageError.UNKNOWN, error=str(e))
            raise StorageError(StorageError.UNKNOWN, message, e) from e

    def _require(self, obj, what: str):
        if obj is None:
            raise StorageError(StorageError.NOT_FOUND, f"{what} not found")
        return obj

    def _apply(self, obj, fields: Dict[str, Any], allowed: Iterable[str]) -> None:
        allowed = set(allowed)
        for k, v in fields.items():
            if k in allowed:
                setattr(obj, k, v)

    # ---------------------------------------------------------------- users

    def get_user(self, user_id) -> Optional[User]:
        uid = _as_uuid(user_id)
        if uid is None:
            return None
        with self._guard("get_user", "Failed to fetch user"):
            return self.db.get(User, uid)

    def get_user_by_email(self, email: str) -> Optional[User]:
        if not email:
            return None
        with self._guard("get_user_by_email", "Failed to fetch user"):
            return self.db.query(User).filter(func.lower(User.email) == email.strip().lower()).first()

    def create_user(
        self,
        email: str,
        password_hash: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        role: str = "worker",
        company_id=None,
        email_verified: bool = False,
        is_active: bool = True,
    ) -> User:
        with self._guard("create_user", "Failed to create user"):
            user = User(
                email=email.strip().lower(),
                password_hash=password_hash,
                first_name=first_name,
                last_name=last_name,
                role=role,
                company_id=_as_uuid(company_id),
                email_verified=email_verified,
                is_active=is_active,
            )
            self.db.add(user)
            self.db.commit()
            self.db.refresh(user)
            return user

    def update_user(self, user_id, **fields) -> User:
        with self._guard("update_user", "Failed to update user"):
            user = self._require(self.get_user(user_id), "User")
            self._apply(
                user,
                fields,
                ("first_name", "last_name", "profile_image_url", "role", "is_active", "email_verified", "claims"),
            )
            user.updated_at = _utcnow()
            self.db.commit()
            self.db.refresh(user)
            return user

    def update_user_last_login(self, user_id) -> User:
        with self._guard("update_user_last_login", "Failed to update last login"):
            user = self._require(self.get_user(user_id), "User")
            user.last_login_at = _utcnow()
            self.db.commit()
            self.db.refresh(user)
            return user

    def update_user_password(self, user_id, password_hash: str) -> User:
        with self._guard("update_user_password", "Failed to update password"):
            user = self._require(self.get_user(user_id), "User")
            user.password_hash = password_hash
            user.updated_at = _utcnow()
            self.db.commit()
            self.db.refresh(user)
            return user

    def set_current_company(self, user_id, company_id) -> User:
        with self._guard("set_current_company", "Failed to switch company"):
            user = self._require(self.get_user(user_id), "User")
            user.company_id = _as_uuid(company_id)
            user.updated_at = _utcnow()
            self.db.commit()
            self.db.refresh(user)
            return user

    def get_user_companies(self, user_or_id) -> List[Company]:
        """Active companies the user belongs to; every active company for super admins."""
        user = user_or_id if isinstance(user_or_id, User) else self.get_user(user_or_id)
        if user is None:
            return []
        if is_super_admin(user):
            return self.get_all_companies(active_only=True)
        with self._guard("get_user_companies", "Failed to fetch user companies"):
            return (
                self.db.query(Company)
                .join(CompanyUser, CompanyUser.company_id == Company.id)
                .filter(
                    Company.is_active.is_(True),
                    CompanyUser.user_id == user.id,
                    CompanyUser.is_active.is_(True),
                )
                .order_by(Company.name.asc())
                .all()
            )

    def get_user_permissions(self, user_id, company_id=None) -> List[str]:
        user = self.get_user(user_id)
        if user is None:
            return []
        return get_effective_permissions(user, company_id)

    def get_user_roles(self, user_id) -> List[Dict[str, Any]]:
        user = self.get_user(user_id)
        if user is None:
            return []
        with self._guard("get_user_roles", "Failed to fetch user roles"):
            rows = (
                self.db.query(CompanyUser)
                .join(Company, Company.id == CompanyUser.company_id)
                .filter(
                    CompanyUser.user_id == user.id,
                    CompanyUser.is_active.is_(True),
                    Company.is_active.is_(True),
                )
                .all()
            )
            return [
                {
                    "company_id": str(m.company_id),
                    "role": m.role,
                    "permissions": get_effective_permissions(user, m.company_id),
                }
                for m in rows
            ]

    # ---------------------------------------------- verification / resets

    def create_email_verification(self, user_id, token_hash: str, expires_at: datetime) -> None:
        with self._guard("create_email_verification", "Failed to store verification token"):
            self.db.add(EmailVerification(user_id=_as_uuid(user_id), token_hash=token_hash, expires_at=_naive_utc(expires_at)))
            self.db.commit()

    def consume_email_verification(self, token_hash: str) -> Optional[User]:
        """Mark the user verified; None for unknown, used or expired tokens."""
        with self._guard("consume_email_verification", "Failed to verify email"):
            row = self.db.query(EmailVerification).filter(EmailVerification.token_hash == token_hash).first()
            now = _utcnow()
            if row is None or row.used_at is not None or _naive_utc(row.expires_at) < now:
                return None
            user = self.db.get(User, row.user_id)
            if user is None:
                return None
            row.used_at = now
            user.email_verified = True
            user.updated_at = now
            self.db.commit()
            self.db.refresh(user)
            return user

    def create_password_reset(self, user_id, token_hash: str, expires_at: datetime) -> None:
        with self._guard("create_password_reset", "Failed to store reset token"):
            self.db.add(PasswordReset(user_id=_as_uuid(user_id), token_hash=token_hash, expires_at=_naive_utc(expires_at)))
            self.db.commit()

    def reset_password_with_token(self, token_hash: str, password_hash: str) -> Optional[User]:
        """Consume a reset token and set the new password in one transaction."""
        with self._guard("reset_password_with_token", "Failed to reset password"):
            row = self.db.query(PasswordReset).filter(PasswordReset.token_hash == token_hash).first()
            now = _utcnow()
            if row is None or row.used_at is not None or _naive_utc(row.expires_at) < now:
                return None
            user = self.db.get(User, row.user_id)
            if user is None or not user.is_active:
                return None
            row.used_at = now
            user.password_hash = password_hash
            user.updated_at = now
            self.db.commit()
            self.db.refresh(user)
            return user

    # ------------------------------------------------------------ companies

    def get_all_companies(self, active_only: bool = False) -> List[Company]:
        with self._guard("get_all_companies", "Failed to fetch companies"):
            q = self.db.query(Company)
            if active_only:
                q = q.filter(Company.is_active.is_(True))
            return q.order_by(Company.name.asc()).all()

    def get_company(self, company_id) -> Optional[Company]:
        cid = _as_uuid(company_id)
        if cid is None:
            return None
        with self._guard("get_company", "Failed to fetch company"):
            return self.db.get(Company, cid)

    _company_fields = (
        "name",
        "commercial_file_number",
        "commercial_file_name",
        "department",
        "classification",
        "industry_type",
        "location",
        "establishment_date",
        "logo_url",
        "is_active",
    )

    def create_company(self, **fields) -> Company:
        with self._guard("create_company", "Failed to create company"):
            company = Company(total_employees=0)
            self._apply(company, fields, self._company_fields)
            self.db.add(company)
            self.db.commit()
            self.db.refresh(company)
            return company

    def update_company(self, company_id, **fields) -> Company:
        with self._guard("update_company", "Failed to update company"):
            company = self._require(self.get_company(company_id), "Company")
            self._apply(company, fields, self._company_fields)
            company.updated_at = _utcnow()
            self.db.commit()
            self.db.refresh(company)
            return company

    def add_company_user(
        self,
        user_id,
        company_id,
        role: str,
        permissions: Optional[List[str]] = None,
        is_active: bool = True,
    ) -> CompanyUser:
        """Create or update the membership of a user in a company."""
        with self._guard("add_company_user", "Failed to add user to company"):
            uid, cid = _as_uuid(user_id), _as_uuid(company_id)
            membership = (
                self.db.query(CompanyUser)
                .filter(CompanyUser.user_id == uid, CompanyUser.company_id == cid)
                .first()
            )
            if membership is None:
                membership = CompanyUser(user_id=uid, company_id=cid)
                self.db.add(membership)
            membership.role = role
            membership.permissions = list(permissions or [])
            membership.is_active = is_active
            membership.updated_at = _utcnow()
            self.db.commit()
            self.db.refresh(membership)
            user = self.db.get(User, uid)
            if user is not None:
                self.db.refresh(user)
            return membership

    # ------------------------------------------------------------ employees

    _employee_fields = (
        "civil_id",
        "full_name",
        "nationality",
        "type",
        "job_title",
        "hire_date",
        "monthly_salary",
        "status",
        "phone",
        "email",
        "address",
        "notes",
    )

    def get_company_employees(self, company_id, include_archived: bool = False) -> List[Employee]:
        cid = _as_uuid(company_id)
        if cid is None:
            return []
        with self._guard("get_company_employees", "Failed to fetch employees"):
            q = self.db.query(Employee).filter(Employee.company_id == cid)
            if not include_archived:
                q = q.filter(Employee.is_archived.is_(False))
            return q.order_by(Employee.full_name.asc()).all()

    def get_employee(self, employee_id) -> Optional[Employee]:
        eid = _as_uuid(employee_id)
        if eid is None:
            return None
        with self._guard("get_employee", "Failed to fetch employee"):
            return self.db.get(Employee, eid)

    def create_employee(self, company_id, **fields) -> Employee:
        """Insert the employee and bump the company head count together."""
        with self._guard("create_employee", "Failed to create employee"):
            company = self._require(self.get_company(company_id), "Company")
            employee = Employee(company_id=company.id)
            self._apply(employee, fields, self._employee_fields)
            self.db.add(employee)
            self.db.execute(
                update(Company)
                .where(Company.id == company.id)
                .values(total_employees=Company.total_employees + 1, updated_at=_utcnow())
            )
            self.db.commit()
            self.db.refresh(employee)
            self.db.refresh(company)
            return employee

    def update_employee(self, employee_id, **fields) -> Employee:
        with self._guard("update_employee", "Failed to update employee"):
            employee = self._require(self.get_employee(employee_id), "Employee")
            self._apply(employee, fields, self._employee_fields)
            employee.updated_at = _utcnow()
            self.db.commit()
            self.db.refresh(employee)
            return employee

    def archive_employee(self, employee_id, reason: str) -> Employee:
        with self._guard("archive_employee", "Failed to archive employee"):
            employee = self._require(self.get_employee(employee_id), "Employee")
            if employee.is_archived:
                return employee
            now = _utcnow()
            employee.is_archived = True
            employee.archived_at = now
            employee.archived_reason = reason
            employee.status = "archived"
            employee.updated_at = now
            self.db.execute(
                update(Company)
                .where(Company.id == employee.company_id, Company.total_employees > 0)
                .values(total_employees=Company.total_employees - 1, updated_at=now)
            )
            self.db.commit()
            self.db.refresh(employee)
            return employee

    # --------------------------------------------------------------- leaves

    def get_leave(self, leave_id) -> Optional[EmployeeLeave]:
        lid = _as_uuid(leave_id)
        if lid is None:
            return None
        with self._guard("get_leave", "Failed to fetch leave"):
            return self.db.get(EmployeeLeave, lid)

    def get_employee_leaves(self, employee_id) -> List[EmployeeLeave]:
        eid = _as_uuid(employee_id)
        if eid is None:
            return []
        with self._guard("get_employee_leaves", "Failed to fetch leaves"):
            return (
                self.db.query(EmployeeLeave)
                .filter(EmployeeLeave.employee_id == eid)
                .order_by(EmployeeLeave.start_date.desc())
                .all()
            )

    def get_company_leaves(self, company_id, status: Optional[str] = None) -> List[EmployeeLeave]:
        cid = _as_uuid(company_id)
        if cid is None:
            return []
        with self._guard("get_company_leaves", "Failed to fetch leaves"):
            q = self.db.query(EmployeeLeave).filter(EmployeeLeave.company_id == cid)
            if status:
                q = q.filter(EmployeeLeave.status == status)
            return q.order_by(EmployeeLeave.created_at.desc()).all()

    def create_leave(
        self,
        employee_id,
        type: str,
        start_date: date,
        end_date: date,
        days: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> EmployeeLeave:
        with self._guard("create_leave", "Failed to create leave"):
            employee = self._require(self.get_employee(employee_id), "Employee")
            leave = EmployeeLeave(
                employee_id=employee.id,
                company_id=employee.company_id,
                type=type,
                start_date=start_date,
                end_date=end_date,
                days=days if days is not None else (end_date - start_date).days + 1,
                reason=reason,
                status=LEAVE_PENDING,
            )
            self.db.add(leave)
            self.db.commit()
            self.db.refresh(leave)
            return leave

    def _decide_leave(self, leave_id, approver_id, status: str, reason: Optional[str] = None) -> EmployeeLeave:
        leave = self._require(self.get_leave(leave_id), "Leave")
        if leave.status != LEAVE_PENDING:
            raise ConflictError(f"Leave request is already {leave.status}")
        now = _utcnow()
        leave.status = status
        leave.approved_by = _as_uuid(approver_id)
        leave.approved_at = now
        if reason is not None:
            leave.rejection_reason = reason
        leave.updated_at = now
        self.db.commit()
        self.db.refresh(leave)
        return leave

    def approve_leave(self, leave_id, approver_id) -> EmployeeLeave:
        with self._guard("approve_leave", "Failed to approve leave"):
            return self._decide_leave(leave_id, approver_id, LEAVE_APPROVED)

    def reject_leave(self, leave_id, approver_id, reason: str) -> EmployeeLeave:
        with self._guard("reject_leave", "Failed to reject leave"):
            return self._decide_leave(leave_id, approver_id, LEAVE_REJECTED, reason)

    # ------------------------------------------------ deductions, violations

    def get_employee_deductions(self, employee_id) -> List[EmployeeDeduction]:
        eid = _as_uuid(employee_id)
        if eid is None:
            return []
        with self._guard("get_employee_deductions", "Failed to fetch deductions"):
            return (
                self.db.query(EmployeeDeduction)
                .filter(EmployeeDeduction.employee_id == eid)
                .order_by(EmployeeDeduction.date.desc())
                .all()
            )

    def get_company_deductions(self, company_id) -> List[EmployeeDeduction]:
        cid = _as_uuid(company_id)
        if cid is None:
            return []
        with self._guard("get_company_deductions", "Failed to fetch deductions"):
            return (
                self.db.query(EmployeeDeduction)
                .filter(EmployeeDeduction.company_id == cid)
                .order_by(EmployeeDeduction.date.desc())
                .all()
            )

    def create_deduction(self, employee_id, processed_by, amount, reason: str, date: date, notes: Optional[str] = None) -> EmployeeDeduction:
        with self._guard("create_deduction", "Failed to create deduction"):
            employee = self._require(self.get_employee(employee_id), "Employee")
            row = EmployeeDeduction(
                employee_id=employee.id,
                company_id=employee.company_id,
                amount=amount,
                reason=reason,
                date=date,
                processed_by=_as_uuid(processed_by),
                notes=notes,
            )
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            return row

    def get_employee_violations(self, employee_id) -> List[EmployeeViolation]:
        eid = _as_uuid(employee_id)
        if eid is None:
            return []
        with self._guard("get_employee_violations", "Failed to fetch violations"):
            return (
                self.db.query(EmployeeViolation)
                .filter(EmployeeViolation.employee_id == eid)
                .order_by(EmployeeViolation.date.desc())
                .all()
            )

    def get_company_violations(self, company_id) -> List[EmployeeViolation]:
        cid = _as_uuid(company_id)
        if cid is None:
            return []
        with self._guard("get_company_violations", "Failed to fetch violations"):
            return (
                self.db.query(EmployeeViolation)
                .filter(EmployeeViolation.company_id == cid)
                .order_by(EmployeeViolation.date.desc())
                .all()
            )

    def create_violation(
        self,
        employee_id,
        reported_by,
        violation_type: str,
        date: date,
        action_taken: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> EmployeeViolation:
        with self._guard("create_violation", "Failed to create violation"):
            employee = self._require(self.get_employee(employee_id), "Employee")
            row = EmployeeViolation(
                employee_id=employee.id,
                company_id=employee.company_id,
                violation_type=violation_type,
                date=date,
                action_taken=action_taken,
                notes=notes,
                reported_by=_as_uuid(reported_by),
            )
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            return row

    # -------------------------------------------------------- notifications

    def get_user_notifications(
        self,
        user_id,
        is_read: Optional[bool] = None,
        type: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Notification]:
        with self._guard("get_user_notifications", "Failed to fetch notifications"):
            q = self.db.query(Notification).filter(Notification.user_id == _as_uuid(user_id))
            if is_read is not None:
                q = q.filter(Notification.is_read.is_(is_read))
            if type:
                q = q.filter(Notification.type == type)
            return q.order_by(Notification.created_at.desc()).limit(limit).offset(offset).all()

    def get_unread_count(self, user_id) -> int:
        with self._guard("get_unread_count", "Failed to count notifications"):
            return (
                self.db.query(func.count(Notification.id))
                .filter(Notification.user_id == _as_uuid(user_id), Notification.is_read.is_(False))
                .scalar()
                or 0
            )

    def create_notification(
        self,
        user_id,
        type: str,
        title: str,
        message: str,
        company_id=None,
        data: Optional[str] = None,
    ) -> Notification:
        with self._guard("create_notification", "Failed to create notification"):
            row = Notification(
                user_id=_as_uuid(user_id),
                company_id=_as_uuid(company_id),
                type=type,
                title=title,
                message=message,
                data=data,
                is_read=False,
            )
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            return row

    def _owned_notification(self, notification_id, user_id) -> Notification:
        nid = _as_uuid(notification_id)
        row = self.db.get(Notification, nid) if nid is not None else None
        if row is None or row.user_id != _as_uuid(user_id):
            raise StorageError(StorageError.NOT_FOUND, "Notification not found")
        return row

    def mark_notification_as_read(self, notification_id, user_id) -> Notification:
        with self._guard("mark_notification_as_read", "Failed to update notification"):
            row = self._owned_notification(notification_id, user_id)
            if not row.is_read:
                row.is_read = True
                self.db.commit()
                self.db.refresh(row)
            return row

    def mark_all_notifications_as_read(self, user_id) -> int:
        with self._guard("mark_all_notifications_as_read", "Failed to update notifications"):
            result = self.db.execute(
                update(Notification)
                .where(Notification.user_id == _as_uuid(user_id), Notification.is_read.is_(False))
                .values(is_read=True)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            return result.rowcount or 0

    def delete_notification(self, notification_id, user_id) -> None:
        with self._guard("delete_notification", "Failed to delete notification"):
            row = self._owned_notification(notification_id, user_id)
            self.db.delete(row)
            self.db.commit()

    # --------------------------------------------------------------- tokens

    def create_refresh_token_record(
        self,
        user_id,
        jti: str,
        family_id: str,
        expires_at: datetime,
        user_agent: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> RefreshToken:
        with self._guard("create_refresh_token_record", "Failed to store refresh token"):
            row = RefreshToken(
                user_id=_as_uuid(user_id),
                jti=jti,
                family_id=family_id,
                expires_at=_naive_utc(expires_at),
                user_agent=(user_agent or "")[:500] or None,
                ip=ip,
            )
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            return row

    def get_refresh_token_record(self, jti: str) -> Optional[RefreshToken]:
        with self._guard("get_refresh_token_record", "Failed to fetch refresh token"):
            return self.db.query(RefreshToken).filter(RefreshToken.jti == jti).first()

    def _blacklist_rows(self, rows: Iterable[RefreshToken], reason: str, now: datetime) -> None:
        for row in rows:
            if row.revoked_at is None:
                row.revoked_at = now
            if self.db.get(TokenBlacklist, row.jti) is None:
                self.db.add(
                    TokenBlacklist(
                        jti=row.jti,
                        user_id=row.user_id,
                        token_type="refresh",
                        reason=reason,
                        expires_at=row.expires_at,
                    )
                )

    def revoke_refresh_token(self, jti: str, replaced_by: Optional[str] = None, reason: str = "revoked") -> None:
        with self._guard("revoke_refresh_token", "Failed to revoke refresh token"):
            row = self.db.query(RefreshToken).filter(RefreshToken.jti == jti).first()
            if row is None:
                return
            if replaced_by:
                row.replaced_by = replaced_by
            self._blacklist_rows([row], reason, _utcnow())
            self.db.commit()

    def revoke_refresh_token_family(self, family_id: str, reason: str = "reuse_detected") -> int:
        with self._guard("revoke_refresh_token_family", "Failed to revoke token family"):
            rows = self.db.query(RefreshToken).filter(RefreshToken.family_id == family_id).all()
            self._blacklist_rows(rows, reason, _utcnow())
            self.db.commit()
            return len(rows)

    def revoke_user_refresh_tokens(self, user_id, reason: str = "revoked") -> int:
        with self._guard("revoke_user_refresh_tokens", "Failed to revoke refresh tokens"):
            now = _utcnow()
            rows = (
                self.db.query(RefreshToken)
                .filter(RefreshToken.user_id == _as_uuid(user_id), RefreshToken.expires_at > now)
                .all()
            )
            self._blacklist_rows(rows, reason, now)
            self.db.commit()
            return len(rows)

    def blacklist_token(
        self,
        jti: str,
        token_type: str,
        expires_at: datetime,
        user_id=None,
        reason: Optional[str] = None,
    ) -> bool:
        """Insert-if-absent. Returns False when the id was already listed."""
        with self._guard("blacklist_token", "Failed to blacklist token"):
            if self.db.get(TokenBlacklist, jti) is not None:
                return False
            self.db.add(
                TokenBlacklist(
                    jti=jti,
                    user_id=_as_uuid(user_id),
                    token_type=token_type,
                    reason=reason,
                    expires_at=_naive_utc(expires_at),
                )
            )
            try:
                self.db.commit()
            except IntegrityError:
                # another request listed it first
                self.db.rollback()
                return False
            return True

    def is_token_blacklisted(self, jti: Optional[str]) -> bool:
        if not jti:
            return False
        with self._guard("is_token_blacklisted", "Failed to check token"):
            return self.db.get(TokenBlacklist, jti) is not None

    def purge_expired_tokens(self, now: Optional[datetime] = None, dry_run: bool = False) -> Dict[str, int]:
        now = _naive_utc(now) if now is not None else _utcnow()
        with self._guard("purge_expired_tokens", "Failed to purge tokens"):
            bl = self.db.query(TokenBlacklist).filter(TokenBlacklist.expires_at < now)
            rt = self.db.query(RefreshToken).filter(RefreshToken.expires_at < now)
            counts = {"blacklist": bl.count(), "refresh_tokens": rt.count()}
            if not dry_run:
                bl.delete(synchronize_session=False)
                rt.delete(synchronize_session=False)
                self.db.commit()
            return counts


def get_storage(db: Session = Depends(get_db)) -> DatabaseStorage:
    return DatabaseStorage(db)
