"""
api/routes/v1/admin.py -- Administrative account provisioning (admin/dean only).

Routes:
  POST /api/v1/admin/invite-faculty  -- pending account + emailed activation link
  POST /api/v1/admin/invite-user     -- active account + emailed temporary password

Two invite mechanisms exist and they differ in security posture. invite-user
mails a working password; invite-faculty mails a single-use link and the
invitee picks the password. Prefer invite-faculty for new integrations;
invite-user is kept for clients that still depend on it.

Every route on this router runs require("admin.invite"): protect, then the
role check against ACCESS_POLICY.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.models import InvitationUser, InviteRequest, InviteResponse
from auth import accounts, invitations
from auth.dependencies import require

logger = logging.getLogger("archive.api.admin")

router = APIRouter(dependencies=[Depends(require("admin.invite"))])


@router.post("/admin/invite-faculty", response_model=InviteResponse)
def invite_faculty(request: Request, body: InviteRequest) -> InviteResponse:
    """Create a pending staff account and mail its activation link."""
    pending, _token = invitations.create_invitation(
        request.app.state.user_store,
        request.app.state.mailer,
        name=body.name or "",
        email=body.email or "",
        role=body.role,
    )
    logger.info("Invitation created by user_id=%s for user_id=%s", request.state.user.id, pending.id)
    return InviteResponse(
        message=f"Invitation sent successfully to {pending.email}!",
        user=InvitationUser(name=pending.name, email=pending.email, role=pending.role.value),
    )


@router.post("/admin/invite-user", response_model=InviteResponse, status_code=201)
def invite_user(request: Request, body: InviteRequest) -> InviteResponse:
    """Create an active account with a mailed temporary password (weaker path)."""
    user = accounts.invite_with_temporary_password(
        request.app.state.user_store,
        request.app.state.mailer,
        name=body.name,
        email=body.email,
        role=body.role,
        student_id=body.student_id,
    )
    logger.info("Account created by user_id=%s for user_id=%s", request.state.user.id, user.id)
    return InviteResponse(
        message=f"Account created and credentials sent to {user.email}",
        user=InvitationUser(name=user.name, email=user.email, role=user.role.value),
    )
