"""
auth/errors.py -- Error taxonomy for the identity core.

Every public entry point converts failures into one of these before a
response is written. api/main.py maps them onto the standard error envelope
using status_code and code; the message is always generic and safe to show.

  ValidationError     400  missing/malformed input, domain-policy violation
  ConflictError       400  duplicate email or student ID
  AuthenticationError 401  bad credentials, bad/expired token, failed verification
  AuthorizationError  403  role not permitted, account domain no longer valid

UpstreamError never reaches a client. The CAPTCHA verifier turns it into a
False verdict; Google sign-in turns it into AuthenticationError. The cause is
logged server-side only.

Layer rule: no imports from api/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class. Subclasses fix status_code and a default machine code."""

    status_code: int = 400
    code: str = "error"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(AuthError):
    status_code = 400
    code = "validation_error"


class ConflictError(AuthError):
    status_code = 400
    code = "conflict"


class AuthenticationError(AuthError):
    status_code = 401
    code = "unauthorized"


class AuthorizationError(AuthError):
    status_code = 403
    code = "forbidden"


class UpstreamError(Exception):
    """An upstream verification provider was unreachable or answered ambiguously."""
