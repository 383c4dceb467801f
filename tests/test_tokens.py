"""
tests/test_tokens.py -- Unit tests for session and one-time tokens (auth/tokens.py).

Covers:
  - verify_session_token(create_session_token(p)) == p
  - Expired tokens, altered signatures and garbage all verify as None
  - Tokens signed with a different key are rejected
  - One-time tokens are 256-bit hex and reset token hashing is deterministic
"""

from __future__ import annotations

import os

os.environ.setdefault("DEBUG", "true")

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.tokens import (
    create_session_token,
    generate_invitation_token,
    generate_reset_token,
    hash_reset_token,
    verify_session_token,
)


def test_round_trip_returns_principal_id() -> None:
    token = create_session_token("abc123")
    assert verify_session_token(token) == "abc123"


def test_token_carries_only_sub_iat_exp() -> None:
    token = create_session_token("abc123")
    claims = jwt.get_unverified_claims(token)
    assert set(claims) == {"sub", "iat", "exp"}


def test_default_lifetime_is_thirty_days() -> None:
    issued = datetime(2030, 1, 1, tzinfo=timezone.utc)
    claims = jwt.get_unverified_claims(create_session_token("abc123", issued_at=issued))
    assert claims["exp"] - claims["iat"] == int(timedelta(days=30).total_seconds())


def test_expired_token_is_invalid() -> None:
    issued = datetime.now(timezone.utc) - timedelta(days=31)
    token = create_session_token("abc123", issued_at=issued)
    assert verify_session_token(token) is None


def test_token_inside_lifetime_is_valid() -> None:
    issued = datetime.now(timezone.utc) - timedelta(days=29)
    token = create_session_token("abc123", issued_at=issued)
    assert verify_session_token(token) == "abc123"


def test_altered_signature_is_invalid() -> None:
    token = create_session_token("abc123")
    head, payload, signature = token.split(".")
    flipped = ("A" if signature[0] != "A" else "B") + signature[1:]
    assert verify_session_token(f"{head}.{payload}.{flipped}") is None


def test_altered_payload_is_invalid() -> None:
    token = create_session_token("abc123")
    forged_payload = jwt.encode({"sub": "someone-else"}, "x" * 32, algorithm="HS256").split(".")[1]
    head, _, signature = token.split(".")
    assert verify_session_token(f"{head}.{forged_payload}.{signature}") is None


def test_foreign_key_is_invalid() -> None:
    now = datetime.now(timezone.utc)
    forged = jwt.encode(
        {"sub": "abc123", "iat": now, "exp": now + timedelta(days=1)},
        "a-completely-different-32-char-key!!",
        algorithm="HS256",
    )
    assert verify_session_token(forged) is None


@pytest.mark.parametrize("garbage", ["", "not-a-token", "a.b.c"])
def test_malformed_token_is_invalid(garbage: str) -> None:
    assert verify_session_token(garbage) is None


def test_one_time_tokens_are_256_bit_hex() -> None:
    for token in (generate_invitation_token(), generate_reset_token()):
        assert len(token) == 64
        int(token, 16)


def test_reset_token_hash_is_deterministic_and_not_the_token() -> None:
    raw = generate_reset_token()
    assert hash_reset_token(raw) == hash_reset_token(raw)
    assert hash_reset_token(raw) != raw
