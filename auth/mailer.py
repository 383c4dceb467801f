"""
auth/mailer.py -- Outbound email seam used by invitations and password resets.

Email delivery belongs to another part of the application. The identity core
only needs "hand this message to someone who sends mail", fire-and-forget:
a delivery failure is logged and never rolls back the account change that
triggered it.

LoggingMailer is the default wiring: it records recipient and subject only
(bodies carry invitation links, reset links or temporary passwords and must
not land in logs). Production deployments replace app.state.mailer with an
implementation backed by their mail service.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger("archive.auth.mailer")


@dataclass(frozen=True)
class OutboundEmail:
    to: str
    subject: str
    body: str


class Mailer(Protocol):
    def send(self, message: OutboundEmail) -> None: ...


class LoggingMailer:
    """Development mailer -- logs the envelope, drops the body."""

    def send(self, message: OutboundEmail) -> None:
        logger.info("Email queued to=%s subject=%r", message.to, message.subject)


def deliver(mailer: Mailer, message: OutboundEmail) -> bool:
    """Send without letting a delivery failure escape. Returns False on failure."""
    try:
        mailer.send(message)
    except Exception:
        logger.exception("Email delivery to %s failed", message.to)
        return False
    return True


# ---------------------------------------------------------------------------
# Message builders
# ---------------------------------------------------------------------------


def invitation_email(to: str, name: str, role: str, link: str, ttl_days: int) -> OutboundEmail:
    return OutboundEmail(
        to=to,
        subject="Faculty Invitation - Masteral Archive and Monitoring System",
        body=(
            f"Hello {name},\n\n"
            f"You have been invited to join as a {role} in our system.\n"
            f"Complete your registration and set your password here:\n\n{link}\n\n"
            f"This invitation link will expire in {ttl_days} days.\n"
            "If you didn't expect this invitation, please ignore this email.\n"
        ),
    )


def temporary_password_email(to: str, name: str, role: str, temporary_password: str) -> OutboundEmail:
    return OutboundEmail(
        to=to,
        subject="Your Masteral Archive account",
        body=(
            f"Hello {name},\n\n"
            f"An account has been created for you as a {role}.\n"
            f"Temporary password: {temporary_password}\n\n"
            "Sign in and change this password right away.\n"
        ),
    )


def password_reset_email(to: str, name: str, link: str, ttl_minutes: int) -> OutboundEmail:
    return OutboundEmail(
        to=to,
        subject="Password Reset Request",
        body=(
            f"Hello {name},\n\n"
            f"You requested to reset your password. Use this link:\n\n{link}\n\n"
            f"This link will expire in {ttl_minutes} minutes.\n"
            "If you didn't request this, please ignore this email.\n"
        ),
    )
