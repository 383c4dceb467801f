"""
auth/invitations.py -- Token-based invitation and activation state machine.

  INVITED --verify_invitation--> INVITED (read-only preview, no transition)
  INVITED --complete_registration--> ACTIVE
  INVITED --(expiry passes)--> INVALID
  ACTIVE  --any call with the old token--> INVALID

An invitation is a pending Principal row: is_active false, no password, a
256-bit invitation_token and an invitation_expires timestamp. Activation is
one conditional UPDATE (UserStore.activate_invitation) that sets the password
and is_active and clears both token columns together. Two concurrent
completions of one token get exactly one winner; the loser sees INVALID.

"Never existed", "expired" and "already used" all produce the same
ValidationError. Telling them apart would let a caller probe which tokens
were once real.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum

from sqlalchemy.exc import IntegrityError

from auth.captcha import RecaptchaVerifier
from auth.domains import check_role_domain, normalize_email, parse_role
from auth.errors import ConflictError, ValidationError
from auth.mailer import Mailer, deliver, invitation_email
from auth.models import InvitationPreview, Role, User
from auth.passwords import hash_password, validate_new_password
from auth.store import UserStore, to_iso
from auth.tokens import create_session_token, generate_invitation_token
from core.config import get_settings

logger = logging.getLogger("archive.auth.invitations")

INVALID_INVITATION_MESSAGE = "Invalid or expired invitation token"


class InvitationState(str, Enum):
    INVITED = "invited"
    ACTIVE = "active"
    INVALID = "invalid"


def invitation_state(user: User | None, now: datetime) -> InvitationState:
    """Classify the record a token resolved to (None when nothing matched)."""
    if user is None or user.invitation_token is None:
        return InvitationState.INVALID
    if user.is_active:
        return InvitationState.ACTIVE
    if not user.invitation_expires or user.invitation_expires <= to_iso(now):
        return InvitationState.INVALID
    return InvitationState.INVITED


def _invalid() -> ValidationError:
    return ValidationError(INVALID_INVITATION_MESSAGE, code="invalid_invitation")


def create_invitation(
    store: UserStore,
    mailer: Mailer,
    name: str,
    email: str,
    role: str | Role,
    now: datetime | None = None,
) -> tuple[User, str]:
    """Create a pending staff account and mail its activation link.

    Only @buksu.edu.ph addresses with a staff role can be invited; students
    register themselves. Returns (pending_user, invitation_token).
    """
    now = now or datetime.now(timezone.utc)
    settings = get_settings()
    email = normalize_email(email)
    resolved_role = parse_role(role)
    if resolved_role is Role.GRADUATE_STUDENT:
        raise ValidationError("Faculty must use @buksu.edu.ph email address", code="role_domain_mismatch")
    check_role_domain(resolved_role, email)
    if not name or not name.strip():
        raise ValidationError("Name is required", code="missing_fields")

    if store.email_exists(email):
        raise ConflictError("User with this email already exists")

    token = generate_invitation_token()
    pending = User(
        name=name.strip(),
        email=email,
        role=resolved_role,
        is_active=False,
        invitation_token=token,
        invitation_expires=to_iso(now + timedelta(days=settings.invitation_ttl_days)),
    )
    try:
        user_id = store.create_user(pending)
    except IntegrityError as exc:
        raise ConflictError("User with this email already exists") from exc

    link = f"{settings.frontend_url.rstrip('/')}/register?token={token}"
    deliver(
        mailer,
        invitation_email(email, pending.name, resolved_role.value, link, settings.invitation_ttl_days),
    )
    pending.id = user_id
    logger.info("Invitation issued user_id=%s role=%s", user_id, resolved_role.value)
    return pending, token


def verify_invitation(store: UserStore, token: str, now: datetime | None = None) -> InvitationPreview:
    """Return a read-only preview of a live invitation, or raise ValidationError."""
    now = now or datetime.now(timezone.utc)
    if not token:
        raise _invalid()
    user = store.get_by_invitation_token(token, now)
    if invitation_state(user, now) is not InvitationState.INVITED:
        raise _invalid()
    return InvitationPreview(name=user.name, email=user.email, role=user.role)


def complete_registration(
    store: UserStore,
    captcha: RecaptchaVerifier,
    token: str,
    password: str,
    captcha_response: str | None,
    remote_ip: str | None = None,
    now: datetime | None = None,
) -> tuple[str, User]:
    """Activate an invited account with the invitee's own password.

    CAPTCHA is checked first and no lookup happens when it fails, so a bot
    cannot time token lookups. The token is then re-resolved inside the
    conditional update rather than trusted from an earlier verify call --
    time may have passed. Returns (session_token, activated_user).
    """
    if not captcha.verify(captcha_response, remote_ip):
        raise ValidationError("Recaptcha verification failed", code="recaptcha_failed")
    if not token:
        raise _invalid()
    validate_new_password(password)

    now = now or datetime.now(timezone.utc)
    user_id = store.activate_invitation(token, hash_password(password), now)
    if user_id is None:
        raise _invalid()

    user = store.get_principal(user_id)
    if user is None:
        raise _invalid()
    logger.info("Invitation completed user_id=%s", user_id)
    return create_session_token(user_id), user
