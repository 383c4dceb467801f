"""
tests/test_invitations.py -- Service-level tests for the invitation state machine.

Covers:
  - create_invitation: pending row, mailed link, staff-only, duplicate email
  - verify_invitation: preview for a live token; unknown / expired / used -> one error
  - complete_registration: CAPTCHA gate before lookup, password policy,
    activation clears the token, single use
  - Two concurrent completions of one token -> exactly one winner
"""

from __future__ import annotations

import os

os.environ.setdefault("DEBUG", "true")

import threading
from datetime import datetime, timedelta, timezone

import pytest

from auth import invitations
from auth.errors import ConflictError, ValidationError
from auth.invitations import INVALID_INVITATION_MESSAGE, InvitationState, invitation_state
from auth.models import Role, User
from auth.passwords import verify_password
from auth.store import UserStore
from auth.tokens import verify_session_token

VALID_CAPTCHA = "valid-captcha"


def _invite(store, mailer, email="ana@buksu.edu.ph", role="faculty adviser", now=None):
    return invitations.create_invitation(store, mailer, "Ana Reyes", email, role, now=now)


class TestCreateInvitation:
    def test_creates_pending_account_and_mails_link(self, store, mailer) -> None:
        pending, token = _invite(store, mailer)
        record = store.get_by_id(pending.id)
        assert record.is_active is False
        assert record.hashed_password is None
        assert record.invitation_token == token
        assert record.role is Role.FACULTY_ADVISER
        message = mailer.last_to("ana@buksu.edu.ph")
        assert f"/register?token={token}" in message.body

    def test_email_is_normalized(self, store, mailer) -> None:
        pending, _ = _invite(store, mailer, email="  Ana@BUKSU.edu.ph ")
        assert pending.email == "ana@buksu.edu.ph"

    def test_students_cannot_be_invited(self, store, mailer) -> None:
        with pytest.raises(ValidationError):
            _invite(store, mailer, email="alice@student.buksu.edu.ph", role="graduate student")
        assert mailer.sent == []

    def test_staff_role_needs_staff_domain(self, store, mailer) -> None:
        with pytest.raises(ValidationError):
            _invite(store, mailer, email="alice@gmail.com")

    def test_duplicate_email_is_conflict(self, store, mailer, add_user) -> None:
        add_user(store, "ana@buksu.edu.ph", Role.PROGRAM_HEAD)
        with pytest.raises(ConflictError, match="already exists"):
            _invite(store, mailer)

    def test_mail_failure_does_not_undo_invitation(self, store) -> None:
        class BrokenMailer:
            def send(self, message):
                raise ConnectionError("smtp down")

        pending, token = _invite(store, BrokenMailer())
        assert invitations.verify_invitation(store, token).email == pending.email


class TestVerifyInvitation:
    def test_preview_of_live_token(self, store, mailer) -> None:
        _, token = _invite(store, mailer)
        preview = invitations.verify_invitation(store, token)
        assert (preview.name, preview.email, preview.role) == ("Ana Reyes", "ana@buksu.edu.ph", Role.FACULTY_ADVISER)

    def test_preview_does_not_transition(self, store, mailer) -> None:
        _, token = _invite(store, mailer)
        invitations.verify_invitation(store, token)
        invitations.verify_invitation(store, token)
        assert store.get_by_invitation_token(token, datetime.now(timezone.utc)) is not None

    @pytest.mark.parametrize("token", ["", "0" * 64, "not-a-token"])
    def test_unknown_tokens_invalid(self, store, token: str) -> None:
        with pytest.raises(ValidationError, match=INVALID_INVITATION_MESSAGE):
            invitations.verify_invitation(store, token)

    def test_expired_token_invalid(self, store, mailer) -> None:
        past = datetime.now(timezone.utc) - timedelta(days=8)
        _, token = _invite(store, mailer, now=past)
        with pytest.raises(ValidationError) as excinfo:
            invitations.verify_invitation(store, token)
        assert excinfo.value.message == INVALID_INVITATION_MESSAGE

    def test_expiry_boundary(self, store, mailer) -> None:
        issued = datetime(2030, 1, 1, tzinfo=timezone.utc)
        _, token = _invite(store, mailer, now=issued)
        invitations.verify_invitation(store, token, now=issued + timedelta(days=7) - timedelta(seconds=1))
        with pytest.raises(ValidationError):
            invitations.verify_invitation(store, token, now=issued + timedelta(days=7))


class TestCompleteRegistration:
    def test_activates_and_issues_session(self, store, mailer, captcha) -> None:
        pending, token = _invite(store, mailer)
        session, user = invitations.complete_registration(store, captcha, token, "newpass123", VALID_CAPTCHA)
        assert verify_session_token(session) == pending.id
        assert user.is_active is True
        record = store.get_by_id(pending.id)
        assert record.invitation_token is None
        assert record.invitation_expires is None
        assert verify_password("newpass123", record.hashed_password)

    def test_captcha_checked_before_lookup(self, store, mailer, captcha) -> None:
        _, token = _invite(store, mailer)
        spy_store = _SpyStore(store)
        with pytest.raises(ValidationError, match="Recaptcha verification failed"):
            invitations.complete_registration(spy_store, captcha, token, "newpass123", "wrong")
        assert spy_store.lookups == 0

    def test_weak_password_leaves_invitation_pending(self, store, mailer, captcha) -> None:
        _, token = _invite(store, mailer)
        with pytest.raises(ValidationError, match="at least"):
            invitations.complete_registration(store, captcha, token, "abc", VALID_CAPTCHA)
        invitations.verify_invitation(store, token)

    def test_token_is_single_use(self, store, mailer, captcha) -> None:
        _, token = _invite(store, mailer)
        invitations.complete_registration(store, captcha, token, "newpass123", VALID_CAPTCHA)
        with pytest.raises(ValidationError, match=INVALID_INVITATION_MESSAGE):
            invitations.complete_registration(store, captcha, token, "otherpass456", VALID_CAPTCHA)
        with pytest.raises(ValidationError, match=INVALID_INVITATION_MESSAGE):
            invitations.verify_invitation(store, token)

    def test_expired_token_cannot_complete(self, store, mailer, captcha) -> None:
        past = datetime.now(timezone.utc) - timedelta(days=8)
        _, token = _invite(store, mailer, now=past)
        with pytest.raises(ValidationError, match=INVALID_INVITATION_MESSAGE):
            invitations.complete_registration(store, captcha, token, "newpass123", VALID_CAPTCHA)


class _SpyStore:
    """Wraps a UserStore and counts token lookups and activation attempts."""

    def __init__(self, inner: UserStore) -> None:
        self._inner = inner
        self.lookups = 0

    def get_by_invitation_token(self, *args, **kwargs):
        self.lookups += 1
        return self._inner.get_by_invitation_token(*args, **kwargs)

    def activate_invitation(self, *args, **kwargs):
        self.lookups += 1
        return self._inner.activate_invitation(*args, **kwargs)

    def __getattr__(self, name):
        return getattr(self._inner, name)


def test_invitation_state_classification() -> None:
    now = datetime(2030, 1, 1, tzinfo=timezone.utc)
    live = User(name="a", email="a@buksu.edu.ph", role=Role.PROGRAM_HEAD, is_active=False,
                invitation_token="t", invitation_expires="2030-01-02T00:00:00.000000+00:00")
    expired = User(name="a", email="a@buksu.edu.ph", role=Role.PROGRAM_HEAD, is_active=False,
                   invitation_token="t", invitation_expires="2029-12-31T00:00:00.000000+00:00")
    assert invitation_state(live, now) is InvitationState.INVITED
    assert invitation_state(expired, now) is InvitationState.INVALID
    assert invitation_state(None, now) is InvitationState.INVALID


def test_concurrent_completion_has_single_winner(tmp_path, captcha, mailer) -> None:
    """Two threads complete the same token at once; exactly one succeeds."""
    file_store = UserStore(f"sqlite:///{tmp_path / 'race.db'}")
    try:
        _, token = _invite(file_store, mailer)
        barrier = threading.Barrier(2)
        outcomes: list[str] = []
        lock = threading.Lock()

        def _attempt(password: str) -> None:
            barrier.wait()
            try:
                invitations.complete_registration(file_store, captcha, token, password, VALID_CAPTCHA)
                result = "won"
            except ValidationError:
                result = "invalid"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=_attempt, args=(pw,)) for pw in ("firstpass1", "secondpass2")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["invalid", "won"]
        activated = file_store.get_by_email("ana@buksu.edu.ph")
        assert activated.is_active is True
        assert activated.invitation_token is None
    finally:
        file_store.close()
