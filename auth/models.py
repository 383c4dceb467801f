"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). The rules that bind
these fields together (domain/role consistency, active <=> password set)
live in auth/domains.py and auth/accounts.py; stores and routes do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Closed set of principal roles. Stored and serialized by value."""

    ADMIN_DEAN = "admin/dean"
    FACULTY_ADVISER = "faculty adviser"
    PROGRAM_HEAD = "program head"
    GRADUATE_STUDENT = "graduate student"


@dataclass
class User:
    """The durable identity record (Principal) a request authenticates as.

    Invariants maintained by auth/accounts.py and auth/invitations.py:
    - is_active is True exactly when hashed_password is set.
    - role GRADUATE_STUDENT <=> student-domain email <=> student_id set.
    - invitation_token / invitation_expires are set only while an invited
      account is pending activation; both are cleared in the same UPDATE that
      sets is_active.

    hashed_password is excluded from the projection handed to request
    handlers (see UserStore.get_principal).
    """

    name: str
    email: str
    role: Role
    id: str | None = None
    hashed_password: str | None = None
    student_id: str | None = None
    is_active: bool = True
    invitation_token: str | None = None
    invitation_expires: str | None = None  # ISO 8601 UTC
    reset_token_hash: str | None = None  # SHA-256 hex of the emailed reset token
    reset_expires: str | None = None  # ISO 8601 UTC
    created_at: str | None = None
    last_login: str | None = None


@dataclass(frozen=True)
class InvitationPreview:
    """Read-only view of a pending invitation, safe to show the invitee."""

    name: str
    email: str
    role: Role


@dataclass(frozen=True)
class VerifiedIdentity:
    """Claims taken from a verified Google ID token. Never persisted."""

    email: str
    name: str
