"""
tests/test_captcha.py -- Unit tests for RecaptchaVerifier (auth/captcha.py).

The requests.Session is a MagicMock, so no test touches the network.

Covers:
  - No response token or no secret -> False without a network call
  - success: true -> True, with secret/response/remoteip form-encoded
  - success false / missing / non-boolean truthy -> False
  - Timeout, connection error, HTTP 5xx and non-JSON bodies -> False (fail closed)
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from auth.captcha import RecaptchaVerifier

VERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"


def _session_returning(payload=None, exc: Exception | None = None, json_exc: Exception | None = None) -> MagicMock:
    session = MagicMock()
    if exc is not None:
        session.post.side_effect = exc
        return session
    resp = MagicMock()
    resp.raise_for_status.return_value = None
    if json_exc is not None:
        resp.json.side_effect = json_exc
    else:
        resp.json.return_value = payload
    session.post.return_value = resp
    return session


def _verifier(session: MagicMock, secret: str = "server-secret") -> RecaptchaVerifier:
    return RecaptchaVerifier(secret, VERIFY_URL, timeout=5.0, session=session)


def test_missing_response_token_fails_without_network() -> None:
    session = _session_returning({"success": True})
    assert _verifier(session).verify(None) is False
    assert _verifier(session).verify("") is False
    session.post.assert_not_called()


def test_missing_secret_fails_without_network() -> None:
    session = _session_returning({"success": True})
    assert _verifier(session, secret="").verify("client-token") is False
    session.post.assert_not_called()


def test_success_true_passes_and_posts_form() -> None:
    session = _session_returning({"success": True})
    assert _verifier(session).verify("client-token", "203.0.113.9") is True
    session.post.assert_called_once_with(
        VERIFY_URL,
        data={"secret": "server-secret", "response": "client-token", "remoteip": "203.0.113.9"},
        timeout=5.0,
    )


def test_remote_ip_is_optional() -> None:
    session = _session_returning({"success": True})
    _verifier(session).verify("client-token")
    assert "remoteip" not in session.post.call_args.kwargs["data"]


@pytest.mark.parametrize(
    "payload",
    [
        {"success": False, "error-codes": ["invalid-input-response"]},
        {},
        {"success": "true"},
        {"success": 1},
        ["success"],
        None,
    ],
)
def test_anything_but_literal_true_fails(payload) -> None:
    assert _verifier(_session_returning(payload)).verify("client-token") is False


@pytest.mark.parametrize(
    "exc",
    [
        requests.Timeout("slow"),
        requests.ConnectionError("down"),
        requests.TooManyRedirects("loop"),
    ],
)
def test_transport_errors_fail_closed(exc: Exception) -> None:
    assert _verifier(_session_returning(exc=exc)).verify("client-token") is False


def test_http_error_status_fails_closed() -> None:
    session = _session_returning({"success": True})
    session.post.return_value.raise_for_status.side_effect = requests.HTTPError("503")
    assert _verifier(session).verify("client-token") is False


def test_non_json_body_fails_closed() -> None:
    session = _session_returning(json_exc=ValueError("no json"))
    assert _verifier(session).verify("client-token") is False
