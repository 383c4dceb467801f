"""
auth/tokens.py -- Session token issuance and verification, plus one-time tokens.

Security design decisions:
  Session tokens: python-jose with HS256. A token carries only the principal
       id (sub) plus iat/exp -- no role, no email. Role and domain are read from
       the store on every request, so a role change takes effect immediately.
       Verification returns None on any failure (malformed, bad signature,
       expired); the dependency layer turns that into a 401.

  No revocation: tokens are stateless. Logout is client-side discard and a
       leaked token stays valid until exp. Rotating SECRET_KEY invalidates all
       tokens at once [M8].

  Invitation tokens: secrets.token_hex(32), 256 bits. Stored as-is because
       the column is cleared on first use and expires in days.

  Reset tokens: secrets.token_hex(32), but only SHA-256(token) is stored, so
       a read of the users table does not hand out working reset links.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from core.config import get_settings

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


def create_session_token(user_id: str, issued_at: datetime | None = None, expire_days: int = 0) -> str:
    """Encode a signed session token for a principal id.

    Args:
        user_id:     Opaque principal id.
        issued_at:   Override for the iat claim; defaults to now (UTC).
        expire_days: Lifetime in days. If 0 (default), uses
                     Settings.token_expire_days (30).
    """
    iat = issued_at or datetime.now(timezone.utc)
    days = expire_days if expire_days > 0 else _settings.token_expire_days
    payload = {
        "sub": user_id,
        "iat": iat,
        "exp": iat + timedelta(days=days),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def verify_session_token(token: str) -> str | None:
    """Return the principal id carried by a valid token, or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        return None
    return subject


# ---------------------------------------------------------------------------
# One-time tokens
# ---------------------------------------------------------------------------


def generate_invitation_token() -> str:
    return secrets.token_hex(32)


def generate_reset_token() -> str:
    return secrets.token_hex(32)


def hash_reset_token(raw_token: str) -> str:
    """SHA-256 hex digest. Deterministic so the store can look the token up directly."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()
