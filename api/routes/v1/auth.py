"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register                -- self-service registration; 201 + session token
  POST /api/v1/auth/login                   -- password login; 200 + session token
  POST /api/v1/auth/logout                  -- client discards its token; 200
  GET  /api/v1/auth/me                      -- current principal (requires auth)
  POST /api/v1/auth/google                  -- Google ID-token sign-in / sign-up
  GET  /api/v1/auth/verify-invitation/{t}   -- preview a pending invitation
  POST /api/v1/auth/complete-registration   -- activate an invitation with a new password
  POST /api/v1/auth/forgot-password         -- mail a reset link (same answer either way)
  POST /api/v1/auth/reset-password/{t}      -- consume a reset link
  POST /api/v1/auth/change-password         -- change own password (requires auth)

Security:
  [H2] Credential endpoints are rate-limited per IP (AUTH_RATE_LIMIT).
  [C1] accounts.authenticate() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries a session token.
  CAPTCHA runs before anything touches the store on register, login and
  complete-registration.

Handlers stay thin: parse the body, call one auth/ function, shape the
response. Errors are auth.errors exceptions rendered by api/main.py.
"""

# No "from __future__ import annotations" here: slowapi wraps these endpoints
# and FastAPI resolves string annotations against the wrapper's globals.
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ActivatedUser,
    AuthResponse,
    ChangePasswordRequest,
    CompleteRegistrationRequest,
    CompleteRegistrationResponse,
    ForgotPasswordRequest,
    GoogleAuthRequest,
    InvitationUser,
    LoginRequest,
    MeResponse,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    VerifyInvitationResponse,
)
from auth import accounts, invitations
from auth.dependencies import require
from auth.models import User
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST /register, /login, /google, /complete-registration, /forgot-password: public, rate-limited
# - POST /logout, GET /verify-invitation/{token}, POST /reset-password/{token}: public
# - GET  /me:              requires auth (profile.read)
# - POST /change-password: requires auth (profile.change_password)
router = APIRouter()


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def _token_response(status_code: int, content: dict) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
@limiter.limit(_settings.auth_rate_limit)  # [H2] must sit BELOW @router so the route registers the limited wrapper
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an active account for an institutional email and sign it in."""
    token, user = accounts.register_user(
        request.app.state.user_store,
        request.app.state.captcha,
        name=body.username,
        email=body.email,
        password=body.password,
        role=body.role,
        student_id=body.student_id,
        captcha_response=body.recaptcha,
        remote_ip=_client_ip(request),
    )
    return _token_response(201, AuthResponse.issue(user, token).model_dump())


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(_settings.auth_rate_limit)  # [H2]
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email, password and the role the user expects to hold.

    Unknown email and wrong password share one generic 401 ("Invalid
    credentials"). A right password with the wrong role is a 403 that names
    the stored role.
    """
    token, user = accounts.authenticate(
        request.app.state.user_store,
        request.app.state.captcha,
        email=body.email,
        password=body.password,
        role=body.role,
        captcha_response=body.recaptcha,
        remote_ip=_client_ip(request),
    )
    return _token_response(200, AuthResponse.issue(user, token).model_dump())


@router.post("/auth/logout", response_model=MessageResponse)
async def logout() -> MessageResponse:
    """Acknowledge logout. Tokens are stateless; the client discards its copy."""
    return MessageResponse(message="Logged out successfully")


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(require("profile.read"))) -> MeResponse:
    """Return identity information for the currently authenticated principal."""
    return MeResponse.from_user(current_user)


# ---------------------------------------------------------------------------
# Google sign-in
# ---------------------------------------------------------------------------


@router.post("/auth/google", response_model=AuthResponse)
@limiter.limit(_settings.auth_rate_limit)  # [H2]
def google(request: Request, body: GoogleAuthRequest) -> JSONResponse:
    """Sign in (or sign up) with a Google ID token.

    selectedRole must agree with the email domain even for returning users;
    it only picks the role when the account is created.
    """
    token, user = accounts.google_sign_in(
        request.app.state.user_store,
        request.app.state.id_token_verifier,
        credential=body.credential,
        selected_role=body.selected_role,
        student_id=body.student_id,
    )
    return _token_response(200, AuthResponse.issue(user, token).model_dump())


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


@router.get("/auth/verify-invitation/{token}", response_model=VerifyInvitationResponse)
def verify_invitation(request: Request, token: str) -> VerifyInvitationResponse:
    """Preview a pending invitation. Unknown, expired and used tokens all give 400."""
    preview = invitations.verify_invitation(request.app.state.user_store, token)
    return VerifyInvitationResponse(valid=True, user=InvitationUser.from_preview(preview))


@router.post("/auth/complete-registration", response_model=CompleteRegistrationResponse)
@limiter.limit(_settings.auth_rate_limit)  # [H2]
def complete_registration(request: Request, body: CompleteRegistrationRequest) -> JSONResponse:
    """Set the invitee's password, activate the account and sign it in."""
    token, user = invitations.complete_registration(
        request.app.state.user_store,
        request.app.state.captcha,
        token=body.token or "",
        password=body.password,
        captcha_response=body.recaptcha,
        remote_ip=_client_ip(request),
    )
    content = CompleteRegistrationResponse(
        message="Registration completed successfully",
        token=token,
        user=ActivatedUser(id=user.id, name=user.name, email=user.email, role=user.role.value),
    )
    return _token_response(200, content.model_dump())


# ---------------------------------------------------------------------------
# Password reset and change
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password", response_model=MessageResponse)
@limiter.limit(_settings.auth_rate_limit)  # [H2]
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Mail a reset link if the account exists. The answer never says which."""
    accounts.request_password_reset(request.app.state.user_store, request.app.state.mailer, body.email)
    return MessageResponse(message=accounts.RESET_REQUESTED_MESSAGE)


@router.post("/auth/reset-password/{token}", response_model=MessageResponse)
def reset_password(request: Request, token: str, body: ResetPasswordRequest) -> MessageResponse:
    """Consume a reset token and set the new password. Single use."""
    accounts.reset_password(request.app.state.user_store, token, body.password)
    return MessageResponse(message="Password reset successful! You can now log in.")


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: User = Depends(require("profile.change_password")),
) -> MessageResponse:
    """Change the signed-in principal's password after re-checking the current one."""
    accounts.change_password(
        request.app.state.user_store,
        current_user.id,
        body.current_password,
        body.new_password,
    )
    return MessageResponse(message="Password updated successfully.")
