import base64

import pytest
from passlib.context import CryptContext

from hrms.auth import passwords
from hrms.auth.passwords import (
    PasswordHashingError,
    generate_secure_token,
    generate_token,
    hash_password,
    hash_token,
    is_password_different,
    needs_rehash,
    validate_password_strength,
    verify_password,
)


def test_hash_and_verify():
    h = hash_password("Str0ng!pass")
    assert h.startswith("$2b$")
    assert verify_password("Str0ng!pass", h)
    assert not verify_password("Str0ng!pasS", h)


def test_verify_never_raises_on_bad_hash():
    assert verify_password("anything", "") is False
    assert verify_password("anything", "not-a-hash") is False
    assert verify_password("anything", "$2b$12$broken") is False
    assert verify_password("", hash_password("x")) is False


def test_long_passwords_are_truncated_to_72_bytes():
    base = "A" * 72
    h = hash_password(base + "tail-one")
    assert verify_password(base + "tail-two", h)


def test_hash_failure_is_generic(monkeypatch):
    def boom(*a, **k):
        raise ValueError("backend exploded")

    monkeypatch.setattr(passwords._bcrypt, "hashpw", boom)
    with pytest.raises(PasswordHashingError) as exc:
        hash_password("whatever")
    assert str(exc.value) == "Failed to hash password"


def test_legacy_pbkdf2_hash_verifies_and_needs_rehash():
    legacy = CryptContext(schemes=["pbkdf2_sha256"]).hash("OldPass!1")
    assert verify_password("OldPass!1", legacy)
    assert needs_rehash(legacy)
    assert not needs_rehash(hash_password("NewPass!1"))


def test_low_cost_bcrypt_needs_rehash(monkeypatch):
    h = hash_password("Pass!word1")
    monkeypatch.setattr(passwords.settings, "bcrypt_rounds", 12)
    assert needs_rehash(h)


@pytest.mark.parametrize(
    "password,message",
    [
        ("Ab1!", "Password must be at least 8 characters long"),
        ("abcdefg1!", "Password must contain at least one uppercase letter"),
        ("ABCDEFG1!", "Password must contain at least one lowercase letter"),
        ("Abcdefgh!", "Password must contain at least one number"),
        ("Abcdefgh1", "Password must contain at least one special character"),
    ],
)
def test_strength_reports_first_failing_rule(password, message):
    result = validate_password_strength(password)
    assert result.is_valid is False
    assert result.message == message


def test_strength_ok():
    result = validate_password_strength("Abcdefg1!")
    assert result.is_valid
    assert result.message == "Password meets strength requirements"


def test_short_password_reports_length_even_if_other_rules_fail():
    assert validate_password_strength("abc").message == "Password must be at least 8 characters long"


def test_token_generators():
    t = generate_token()
    assert len(t) == 64
    int(t, 16)
    assert len(generate_token(16)) == 32

    s = generate_secure_token()
    assert "=" not in s
    raw = base64.urlsafe_b64decode(s + "=" * (-len(s) % 4))
    assert len(raw) == 64
    assert generate_secure_token() != s


def test_hash_token_is_sha256_hex():
    assert hash_token("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_is_password_different():
    h = hash_password("Same!Pass1")
    assert not is_password_different("Same!Pass1", h)
    assert is_password_different("Other!Pass1", h)
