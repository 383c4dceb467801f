"""
auth/google.py -- Google ID-token verification (Sign in with Google).

The browser obtains an ID token from Google Identity Services and posts it to
POST /google. We verify it locally with authlib's JOSE implementation:

  signature  RS256 against Google's published JWKS (fetched with requests,
             cached for GOOGLE_CERTS_CACHE_SECONDS)
  aud        must equal GOOGLE_CLIENT_ID
  iss        accounts.google.com or https://accounts.google.com
  exp / iat  checked with a 60 s leeway for clock skew

[H1] Email verification is mandatory: a token whose email_verified claim is
not true is rejected, same as a bad signature.

Any failure -- bad token, unreachable key endpoint, missing claim -- becomes
AuthenticationError with one generic message. The specific cause is logged
here and never returned to the client. A payload is never partially trusted.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import requests
from authlib.jose import JsonWebKey, JsonWebToken, KeySet
from authlib.jose.errors import JoseError

from auth.errors import AuthenticationError, UpstreamError
from auth.models import VerifiedIdentity

logger = logging.getLogger("archive.auth.google")

GOOGLE_ISSUERS = ["accounts.google.com", "https://accounts.google.com"]

# Google signs ID tokens with RS256 only. Pinning the algorithm list keeps
# HS256/none confusion attacks off the table.
_jwt = JsonWebToken(["RS256"])

# A token with an unknown kid triggers one key refresh, at most this often.
_MIN_REFRESH_SECONDS = 60

_FAILURE_MESSAGE = "Google authentication failed"


class GoogleIdTokenVerifier:
    """Validates Google ID tokens for one OAuth client id.

    fetch_jwks can be supplied to pin a key set (tests, air-gapped setups);
    by default the JWKS is downloaded from certs_url.
    """

    def __init__(
        self,
        client_id: str,
        certs_url: str,
        timeout: float,
        cache_seconds: int = 3600,
        fetch_jwks: Callable[[], dict[str, Any]] | None = None,
    ) -> None:
        self.client_id = client_id
        self.certs_url = certs_url
        self.timeout = timeout
        self.cache_seconds = cache_seconds
        self._fetch_jwks = fetch_jwks or self._download_jwks
        self._session = requests.Session()
        self._session.max_redirects = 3
        self._keys: KeySet | None = None
        self._fetched_at = 0.0

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    def verify(self, credential: str) -> VerifiedIdentity:
        """Return the verified (email, name) or raise AuthenticationError."""
        if not self.client_id:
            logger.warning("GOOGLE_CLIENT_ID not configured -- rejecting Google sign-in")
            raise AuthenticationError(_FAILURE_MESSAGE, code="oauth_failed")
        try:
            claims = self._decode(credential)
        except UpstreamError as exc:
            logger.warning("Google key set unavailable: %s", exc)
            raise AuthenticationError(_FAILURE_MESSAGE, code="oauth_failed") from exc
        except (JoseError, ValueError) as exc:
            logger.warning("Google ID token rejected: %s", exc)
            raise AuthenticationError(_FAILURE_MESSAGE, code="oauth_failed") from exc

        email = claims.get("email")
        if not isinstance(email, str) or "@" not in email:
            logger.warning("Google ID token has no usable email claim")
            raise AuthenticationError(_FAILURE_MESSAGE, code="oauth_failed")
        if claims.get("email_verified") not in (True, "true"):
            logger.warning("Google ID token email is not verified")
            raise AuthenticationError(_FAILURE_MESSAGE, code="oauth_failed")

        email = email.strip().lower()
        name = claims.get("name") or email.split("@")[0]
        return VerifiedIdentity(email=email, name=name)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _decode(self, credential: str) -> dict[str, Any]:
        try:
            return self._decode_with(self._key_set(), credential)
        except (JoseError, ValueError):
            # Google rotates keys; a new kid may not be in our cached set yet.
            if time.monotonic() - self._fetched_at < _MIN_REFRESH_SECONDS:
                raise
            return self._decode_with(self._key_set(force=True), credential)

    def _decode_with(self, keys: KeySet, credential: str) -> dict[str, Any]:
        claims = _jwt.decode(
            credential,
            keys,
            claims_options={
                "iss": {"essential": True, "values": GOOGLE_ISSUERS},
                "aud": {"essential": True, "value": self.client_id},
                "exp": {"essential": True},
            },
        )
        claims.validate(leeway=60)
        return dict(claims)

    def _key_set(self, force: bool = False) -> KeySet:
        fresh = time.monotonic() - self._fetched_at < self.cache_seconds
        if self._keys is None or force or not fresh:
            self._keys = JsonWebKey.import_key_set(self._fetch_jwks())
            self._fetched_at = time.monotonic()
        return self._keys

    def _download_jwks(self) -> dict[str, Any]:
        try:
            resp = self._session.get(self.certs_url, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as exc:
            raise UpstreamError(f"JWKS request failed: {type(exc).__name__}") from exc
        except ValueError as exc:
            raise UpstreamError("JWKS endpoint returned a non-JSON body") from exc
