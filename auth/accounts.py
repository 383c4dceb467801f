"""
auth/accounts.py -- Account orchestration for the public credential endpoints.

Each function here is one public operation. They run verification first
(CAPTCHA or Google), then the domain policy, then exactly one write, and only
then issue a session token. Nothing is written when an earlier step fails.

Error mapping follows auth/errors.py. Two rules matter for callers:
  - authenticate() gives the same AuthenticationError for unknown email,
    inactive account and wrong password, and always spends one bcrypt check
    so response time does not separate them either [C1].
  - Duplicate email / student ID surfaces as ConflictError whether the
    pre-check caught it or the UNIQUE constraint did.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from auth.captcha import RecaptchaVerifier
from auth.domains import (
    check_role_domain,
    normalize_email,
    parse_role,
    require_institutional_email,
    resolve_google_role,
)
from auth.errors import AuthenticationError, AuthorizationError, ConflictError, ValidationError
from auth.google import GoogleIdTokenVerifier
from auth.mailer import Mailer, deliver, password_reset_email, temporary_password_email
from auth.models import Role, User
from auth.passwords import (
    DUMMY_HASH,
    generate_placeholder_secret,
    generate_temporary_password,
    hash_password,
    validate_new_password,
    verify_password,
)
from auth.store import UserStore
from auth.tokens import create_session_token, generate_reset_token, hash_reset_token
from core.config import get_settings

logger = logging.getLogger("archive.auth")

RESET_REQUESTED_MESSAGE = "If your email is registered, you will receive a password reset link."


def _require_captcha(captcha: RecaptchaVerifier, response: str | None, remote_ip: str | None) -> None:
    if not captcha.verify(response, remote_ip):
        raise ValidationError("Recaptcha verification failed", code="recaptcha_failed")


def _student_id_for(role: Role, student_id: str | None) -> str | None:
    """Student ID is mandatory for graduate students and dropped for everyone else."""
    if role is not Role.GRADUATE_STUDENT:
        return None
    student_id = (student_id or "").strip()
    if not student_id:
        raise ValidationError("Student ID is required for graduate students", code="missing_fields")
    return student_id


def _insert(store: UserStore, user: User) -> str:
    """create_user() with the UNIQUE constraint violation mapped to ConflictError."""
    try:
        return store.create_user(user)
    except IntegrityError as exc:
        if store.email_exists(user.email):
            raise ConflictError("Email already registered") from exc
        raise ConflictError("Student ID already registered") from exc


def _session_for(store: UserStore, user_id: str) -> tuple[str, User]:
    user = store.get_principal(user_id)
    if user is None:
        raise AuthenticationError("Invalid credentials", code="bad_credentials")
    return create_session_token(user_id), user


# ---------------------------------------------------------------------------
# Self-service registration and login
# ---------------------------------------------------------------------------


def register_user(
    store: UserStore,
    captcha: RecaptchaVerifier,
    name: str | None,
    email: str | None,
    password: str | None,
    role: str | None,
    student_id: str | None,
    captcha_response: str | None,
    remote_ip: str | None = None,
) -> tuple[str, User]:
    """Create an active account and return (session_token, user)."""
    _require_captcha(captcha, captcha_response, remote_ip)
    user_id = create_account(store, name, email, password, role, student_id)
    return _session_for(store, user_id)


def create_account(
    store: UserStore,
    name: str | None,
    email: str | None,
    password: str | None,
    role: str | Role | None,
    student_id: str | None = None,
) -> str:
    """Validate and insert an active password account. Returns the new id.

    Shared by self-service registration and the operator CLI, which has no
    CAPTCHA to check.
    """
    if not name or not name.strip() or not email or not password or not role:
        raise ValidationError("All fields (name, email, password, role) are required", code="missing_fields")

    email = normalize_email(email)
    require_institutional_email(email)
    resolved_role = parse_role(role)
    check_role_domain(resolved_role, email)
    resolved_student_id = _student_id_for(resolved_role, student_id)
    validate_new_password(password)

    if store.email_exists(email):
        raise ConflictError("Email already registered")

    user_id = _insert(
        store,
        User(
            name=name.strip(),
            email=email,
            role=resolved_role,
            hashed_password=hash_password(password),
            student_id=resolved_student_id,
            is_active=True,
        ),
    )
    logger.info("Registered user_id=%s role=%s", user_id, resolved_role.value)
    return user_id


def authenticate(
    store: UserStore,
    captcha: RecaptchaVerifier,
    email: str | None,
    password: str | None,
    role: str | None,
    captcha_response: str | None,
    remote_ip: str | None = None,
) -> tuple[str, User]:
    """Password login. Returns (session_token, user).

    A correct password with the wrong declared role is a 403 naming the
    stored role, so the client can correct its role picker.
    """
    _require_captcha(captcha, captcha_response, remote_ip)
    if not email or not password or not role:
        raise ValidationError("All fields are required", code="missing_fields")
    email = normalize_email(email)
    require_institutional_email(email)
    declared_role = parse_role(role)

    user = store.get_by_email(email)
    if user is None or not user.is_active or not user.hashed_password:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, DUMMY_HASH)
        raise AuthenticationError("Invalid credentials", code="bad_credentials")
    if not verify_password(password, user.hashed_password):
        raise AuthenticationError("Invalid credentials", code="bad_credentials")

    if user.role is not declared_role:
        raise AuthorizationError(
            f"This email is registered as {user.role.value}. Please select the correct role.",
            code="role_mismatch",
        )

    store.update_last_login(user.id)
    return _session_for(store, user.id)


# ---------------------------------------------------------------------------
# Google sign-in
# ---------------------------------------------------------------------------


def google_sign_in(
    store: UserStore,
    verifier: GoogleIdTokenVerifier,
    credential: str | None,
    selected_role: str | None,
    student_id: str | None = None,
) -> tuple[str, User]:
    """Verify a Google ID token, apply the domain/role rules, upsert, issue a session.

    The domain/role consistency check runs before any lookup, for new and
    returning users alike. An existing account keeps its stored role; the
    declared role only matters when a new account is created.
    """
    if not credential:
        raise ValidationError("Missing Google credential", code="missing_fields")

    identity = verifier.verify(credential)
    new_role = resolve_google_role(identity.email, selected_role)

    existing = store.get_by_email(identity.email)
    if existing is not None:
        if not existing.is_active:
            raise AuthenticationError(
                "Account is not active. Please complete your registration.", code="inactive_account"
            )
        store.update_last_login(existing.id)
        return _session_for(store, existing.id)

    if new_role is None:
        raise ValidationError(
            "Account not found. Please sign up by selecting a role first.", code="missing_fields"
        )
    check_role_domain(new_role, identity.email)
    resolved_student_id = _student_id_for(new_role, student_id)

    try:
        user_id = store.create_user(
            User(
                name=identity.name,
                email=identity.email,
                role=new_role,
                hashed_password=generate_placeholder_secret(),
                student_id=resolved_student_id,
                is_active=True,
            )
        )
    except IntegrityError as exc:
        # A concurrent first sign-in may have created the account; it wins.
        raced = store.get_by_email(identity.email)
        if raced is None:
            raise ConflictError("Student ID already registered") from exc
        user_id = raced.id
    else:
        logger.info("Created account via Google user_id=%s role=%s", user_id, new_role.value)

    store.update_last_login(user_id)
    return _session_for(store, user_id)


# ---------------------------------------------------------------------------
# Administrative invite (temporary password)
# ---------------------------------------------------------------------------


def invite_with_temporary_password(
    store: UserStore,
    mailer: Mailer,
    name: str | None,
    email: str | None,
    role: str | None,
    student_id: str | None = None,
) -> User:
    """Create an active account and mail it a generated temporary password.

    This is the weaker of the two invite paths: a working password travels
    by email. New integrations should use auth.invitations.create_invitation,
    where the invitee chooses the password and nothing usable is mailed.
    """
    if not name or not name.strip() or not email or not role:
        raise ValidationError("All fields (name, email, role) are required", code="missing_fields")
    email = normalize_email(email)
    resolved_role = parse_role(role)
    check_role_domain(resolved_role, email)
    resolved_student_id = _student_id_for(resolved_role, student_id)
    if store.email_exists(email):
        raise ConflictError("User with this email already exists")

    temporary_password = generate_temporary_password()
    user_id = _insert(
        store,
        User(
            name=name.strip(),
            email=email,
            role=resolved_role,
            hashed_password=hash_password(temporary_password),
            student_id=resolved_student_id,
            is_active=True,
        ),
    )
    logger.warning("Account user_id=%s created with a mailed temporary password", user_id)
    deliver(mailer, temporary_password_email(email, name.strip(), resolved_role.value, temporary_password))
    return User(
        id=user_id,
        name=name.strip(),
        email=email,
        role=resolved_role,
        student_id=resolved_student_id,
        is_active=True,
    )


# ---------------------------------------------------------------------------
# Password reset and change
# ---------------------------------------------------------------------------


def request_password_reset(store: UserStore, mailer: Mailer, email: str | None, now: datetime | None = None) -> None:
    """Mail a reset link when the account exists. Callers always answer the same way."""
    if not email:
        raise ValidationError("Email is required", code="missing_fields")
    email = normalize_email(email)
    require_institutional_email(email)

    user = store.get_by_email(email)
    if user is None or not user.is_active:
        return

    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    raw_token = generate_reset_token()
    store.set_reset_token(
        user.id,
        hash_reset_token(raw_token),
        now + timedelta(seconds=settings.password_reset_ttl_seconds),
    )
    link = f"{settings.frontend_url.rstrip('/')}/reset-password/{raw_token}"
    deliver(
        mailer,
        password_reset_email(user.email, user.name, link, settings.password_reset_ttl_seconds // 60),
    )


def reset_password(store: UserStore, raw_token: str, new_password: str | None, now: datetime | None = None) -> None:
    """Consume a reset token (single use) and set the new password."""
    validate_new_password(new_password)
    now = now or datetime.now(timezone.utc)
    user_id = store.consume_reset_token(hash_reset_token(raw_token), hash_password(new_password), now)
    if user_id is None:
        raise ValidationError("Invalid or expired reset token", code="invalid_reset_token")
    logger.info("Password reset completed user_id=%s", user_id)


def change_password(store: UserStore, user_id: str, current_password: str | None, new_password: str | None) -> None:
    """Replace the password of a signed-in user after re-checking the current one."""
    if not current_password or not new_password:
        raise ValidationError("Current password and new password are required", code="missing_fields")
    user = store.get_by_id(user_id)
    if user is None or not verify_password(current_password, user.hashed_password):
        raise ValidationError("Current password is incorrect", code="bad_credentials")
    if current_password == new_password:
        raise ValidationError("New password must be different from the current password", code="weak_password")
    validate_new_password(new_password)
    store.update_password(user_id, hash_password(new_password))
