"""
tests/conftest.py -- Shared test fixtures for the archive auth integration tests.

This module provides:
  - make_store(): isolated named shared-memory SQLite UserStore
  - FakeCaptcha / FakeGoogleVerifier / RecordingMailer: in-process stand-ins
    for the upstream verifiers and the email collaborator
  - _patch_lifespan(): wires test collaborators into app.state, bypassing real startup
  - api_client: TestClient with a signed-in admin/dean for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.errors import AuthenticationError
from auth.mailer import OutboundEmail
from auth.models import Role, User, VerifiedIdentity
from auth.passwords import hash_password
from auth.store import UserStore
from auth.tokens import create_session_token

VALID_CAPTCHA = "valid-captcha"

# Rate limits are exercised separately; every other test would trip them.
limiter.enabled = False


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeCaptcha:
    """Accepts exactly VALID_CAPTCHA. Records every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str | None, str | None]] = []

    def verify(self, response_token: str | None, remote_ip: str | None = None) -> bool:
        self.calls.append((response_token, remote_ip))
        return response_token == VALID_CAPTCHA


class FakeGoogleVerifier:
    """Maps credential strings to identities; anything unknown fails verification."""

    def __init__(self) -> None:
        self.identities: dict[str, VerifiedIdentity] = {}

    def register(self, credential: str, email: str, name: str) -> str:
        self.identities[credential] = VerifiedIdentity(email=email, name=name)
        return credential

    def verify(self, credential: str) -> VerifiedIdentity:
        identity = self.identities.get(credential)
        if identity is None:
            raise AuthenticationError("Google authentication failed", code="oauth_failed")
        return identity


@dataclass
class RecordingMailer:
    sent: list[OutboundEmail]

    def send(self, message: OutboundEmail) -> None:
        self.sent.append(message)

    def last_to(self, address: str) -> OutboundEmail:
        return [m for m in self.sent if m.to == address][-1]


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_store(db_suffix: str | None = None) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state. A random one is used when omitted.
    """
    suffix = db_suffix or uuid.uuid4().hex
    return UserStore(f"sqlite:///file:test_auth_{suffix}?mode=memory&cache=shared&uri=true")


def _add_user(
    store: UserStore,
    email: str,
    role: Role,
    password: str = "testpass123",
    name: str = "Test User",
    student_id: str | None = None,
    is_active: bool = True,
) -> str:
    """Insert an active password account directly and return its id."""
    return store.create_user(
        User(
            name=name,
            email=email,
            role=role,
            hashed_password=hash_password(password) if is_active else None,
            student_id=student_id,
            is_active=is_active,
        )
    )


def _bearer(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_session_token(user_id)}"}


def _patch_lifespan(user_store: UserStore, captcha, verifier, mailer):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and fakes into app.state so TestClient routes never
    reach Google, reCAPTCHA or a real mail relay.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.captcha = captcha
        app.state.id_token_verifier = verifier
        app.state.mailer = mailer
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    user_store = make_store()
    yield user_store
    user_store.close()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer(sent=[])


@pytest.fixture
def captcha() -> FakeCaptcha:
    return FakeCaptcha()


@pytest.fixture
def add_user():
    """Insert an active password account directly: add_user(store, email, role, ...) -> id."""
    return _add_user


@pytest.fixture
def bearer():
    """Build an Authorization header for a user id: bearer(user_id) -> dict."""
    return _bearer


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, token, dean_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers against an isolated in-memory store. An
    admin/dean (dean@buksu.edu.ph / testpass123) exists before the client starts.
    The fakes are reachable through client.app.state.
    """
    user_store = make_store(request.module.__name__.rsplit(".", 1)[-1])
    uid = _add_user(user_store, "dean@buksu.edu.ph", Role.ADMIN_DEAN, name="Test Dean")
    token = create_session_token(uid)

    app.router.lifespan_context = _patch_lifespan(
        user_store, FakeCaptcha(), FakeGoogleVerifier(), RecordingMailer(sent=[])
    )

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, uid

    user_store.close()
