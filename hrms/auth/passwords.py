"""
Password hashing, strength rules and one-off token helpers.

New hashes are always bcrypt. Older accounts may still carry pbkdf2_sha256
hashes; those verify through passlib and are flagged by needs_rehash so login
can upgrade them.
"""
import base64
import hashlib
import re
import secrets
from dataclasses import dataclass

import bcrypt as _bcrypt
import structlog
from passlib.context import CryptContext

from ..config import settings


log = structlog.get_logger()

legacy_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")
_BCRYPT_MAX_BYTES = 72
_SYMBOLS = re.compile(r'[!@#$%^&*(),.?":{}|<>]')


class PasswordHashingError(Exception):
    pass


@dataclass(frozen=True)
class PasswordStrength:
    is_valid: bool
    message: str


def _encode(password: str) -> bytes:
    # bcrypt ignores everything past 72 bytes; newer releases refuse it instead
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    try:
        salt = _bcrypt.gensalt(rounds=settings.bcrypt_rounds)
        return _bcrypt.hashpw(_encode(password), salt).decode("utf-8")
    except (TypeError, ValueError) as e:
        log.error("password_hash_failed", error=str(e))
        raise PasswordHashingError("Failed to hash password") from e


def verify_password(password: str, hashed: str) -> bool:
    if not password or not hashed:
        return False
    if hashed.startswith(_BCRYPT_PREFIXES):
        try:
            return _bcrypt.checkpw(_encode(password), hashed.encode("utf-8"))
        except (TypeError, ValueError):
            return False
    try:
        return legacy_context.verify(password, hashed)
    except (TypeError, ValueError):
        return False


def _bcrypt_cost(hashed: str) -> int:
    try:
        return int(hashed.split("$")[2])
    except (IndexError, ValueError):
        return 0


def needs_rehash(hashed: str) -> bool:
    if not hashed or not hashed.startswith(_BCRYPT_PREFIXES):
        return True
    return _bcrypt_cost(hashed) < settings.bcrypt_rounds


def validate_password_strength(password: str) -> PasswordStrength:
    """Check the rules in order and report the first one that fails."""
    password = password or ""
    if len(password) < 8:
        return PasswordStrength(False, "Password must be at least 8 characters long")
    if not re.search(r"[A-Z]", password):
        return PasswordStrength(False, "Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        return PasswordStrength(False, "Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        return PasswordStrength(False, "Password must contain at least one number")
    if not _SYMBOLS.search(password):
        return PasswordStrength(False, "Password must contain at least one special character")
    return PasswordStrength(True, "Password meets strength requirements")


def generate_token(length: int = 32) -> str:
    return secrets.token_bytes(length).hex()


def generate_secure_token(length: int = 64) -> str:
    raw = secrets.token_bytes(length)
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def is_password_different(new_password: str, old_hash: str) -> bool:
    return not verify_password(new_password, old_hash)
