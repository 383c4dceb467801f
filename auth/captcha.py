"""
auth/captcha.py -- reCAPTCHA verification for account-creating and authenticating actions.

Fail-closed in every ambiguous case:
  - no response token from the client      -> False, no network call
  - no RECAPTCHA_SECRET_KEY configured      -> False, no network call
  - transport error, timeout, non-2xx       -> False (cause logged)
  - body that is not JSON or lacks success  -> False
Only a JSON body whose "success" is literally true passes.

A rejected human retries; an admitted bot creates accounts. The asymmetry is
why nothing here ever returns True on doubt.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from auth.errors import UpstreamError

logger = logging.getLogger("archive.auth.captcha")


class RecaptchaVerifier:
    """Checks a client's reCAPTCHA response token against Google's siteverify endpoint."""

    def __init__(
        self,
        secret_key: str,
        verify_url: str,
        timeout: float,
        session: requests.Session | None = None,
    ) -> None:
        self.secret_key = secret_key
        self.verify_url = verify_url
        self.timeout = timeout
        if session is None:
            # max_redirects=3 replaces the requests default of 30 -- siteverify
            # is a known endpoint and should never bounce around.
            session = requests.Session()
            session.max_redirects = 3
        self._session = session

    def verify(self, response_token: str | None, remote_ip: str | None = None) -> bool:
        """Return True only when the upstream explicitly confirms the token."""
        if not response_token:
            return False
        if not self.secret_key:
            logger.warning("reCAPTCHA secret not configured -- rejecting verification")
            return False
        form = {"secret": self.secret_key, "response": response_token}
        if remote_ip:
            form["remoteip"] = remote_ip
        try:
            payload = self._post(form)
        except UpstreamError as exc:
            logger.warning("reCAPTCHA verification failed upstream: %s", exc)
            return False
        if not isinstance(payload, dict):
            return False
        if payload.get("success") is not True:
            logger.info("reCAPTCHA rejected token (error-codes=%s)", payload.get("error-codes"))
            return False
        return True

    def _post(self, form: dict[str, str]) -> Any:
        try:
            resp = self._session.post(self.verify_url, data=form, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as exc:
            raise UpstreamError(f"siteverify request failed: {type(exc).__name__}") from exc
        except ValueError as exc:
            raise UpstreamError("siteverify returned a non-JSON body") from exc
