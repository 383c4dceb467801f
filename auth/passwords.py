"""
auth/passwords.py -- Password lifecycle: hashing, verification, generated secrets.

Passwords: bcrypt used directly (no passlib wrapper). Each hash carries its own
random salt from bcrypt.gensalt(); the cost factor makes offline brute-force
expensive for low-entropy secrets.

verify_password() answers only True or False. A corrupt or foreign hash is
indistinguishable from a wrong password, so the login response cannot be used
as an oracle on stored data.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import secrets

import bcrypt

from auth.errors import ValidationError
from core.config import get_settings

# bcrypt ignores (and bcrypt>=5 rejects) input past 72 bytes.
_BCRYPT_MAX_BYTES = 72


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes of input. validate_new_password()
    rejects anything longer before it reaches this function.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load. authenticate() always runs bcrypt, even when
# the email is unknown, so response time does not reveal which emails exist.
DUMMY_HASH: str = hash_password("archive_timing_dummy")


def generate_placeholder_secret() -> str:
    """Hash a random 256-bit value for accounts created through Google sign-in.

    Nobody ever learns the plaintext, so the account satisfies
    "active => password set" without being reachable through /login.
    """
    return hash_password(secrets.token_urlsafe(32))


def generate_temporary_password() -> str:
    """Random password for the administrative invite path (mailed to the invitee)."""
    return secrets.token_urlsafe(9)


def validate_new_password(plain: str | None) -> str:
    """Check a user-chosen password against the length policy; return it unchanged."""
    min_length = get_settings().password_min_length
    if not plain or len(plain) < min_length:
        raise ValidationError(f"Password must be at least {min_length} characters", code="weak_password")
    if len(plain.encode("utf-8")) > _BCRYPT_MAX_BYTES:
        raise ValidationError("Password is too long", code="weak_password")
    return plain
