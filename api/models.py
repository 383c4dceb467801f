"""
API request and response models for the archive auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request fields that the contract requires are still Optional here: a missing
field must produce the specific 400 "required" error from the service layer.
Length caps and types stay; api/main.py renders their failures as a 400
validation_error.

Field names follow the existing browser client (camelCase where it sends
camelCase); populate_by_name lets Python callers use snake_case too.

Passwords are never stripped. Models that carry one trim their other string
fields with a strip_text validator instead of str_strip_whitespace, so the
secret login compares is byte-for-byte the one that was hashed.
"""

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from auth.models import InvitationPreview, User

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /register."""

    model_config = ConfigDict(populate_by_name=True)

    username: Optional[str] = Field(
        default=None,
        max_length=255,
        validation_alias=AliasChoices("username", "name"),
    )
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=255)
    role: Optional[str] = Field(default=None, max_length=50)
    student_id: Optional[str] = Field(default=None, max_length=64, alias="studentId")
    recaptcha: Optional[str] = Field(default=None, max_length=4096)

    @field_validator("username", "email", "role", "student_id", "recaptcha")
    @classmethod
    def strip_text(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if value is not None else value


class LoginRequest(BaseModel):
    """Request body for POST /login."""

    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=255)
    role: Optional[str] = Field(default=None, max_length=50)
    recaptcha: Optional[str] = Field(default=None, max_length=4096)

    @field_validator("email", "role", "recaptcha")
    @classmethod
    def strip_text(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if value is not None else value


class GoogleAuthRequest(BaseModel):
    """Request body for POST /google. credential is the Google ID token (JWT)."""

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    credential: Optional[str] = Field(default=None, max_length=8192)
    selected_role: Optional[str] = Field(default=None, max_length=50, alias="selectedRole")
    student_id: Optional[str] = Field(default=None, max_length=64, alias="studentId")


class CompleteRegistrationRequest(BaseModel):
    """Request body for POST /complete-registration."""

    token: Optional[str] = Field(default=None, max_length=128)
    password: Optional[str] = Field(default=None, max_length=255)
    recaptcha: Optional[str] = Field(default=None, max_length=4096)


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: Optional[str] = Field(default=None, max_length=255)


class ResetPasswordRequest(BaseModel):
    password: Optional[str] = Field(default=None, max_length=255)


class ChangePasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: Optional[str] = Field(default=None, max_length=255, alias="currentPassword")
    new_password: Optional[str] = Field(default=None, max_length=255, alias="newPassword")


class InviteRequest(BaseModel):
    """Request body for POST /admin/invite-faculty and POST /admin/invite-user.

    studentId is only read by invite-user, and only for graduate students.
    """

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    role: Optional[str] = Field(default=None, max_length=50)
    student_id: Optional[str] = Field(default=None, max_length=64, alias="studentId")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MeResponse(BaseModel):
    """Response for GET /me."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    email: str
    role: str

    @classmethod
    def from_user(cls, user: User) -> "MeResponse":
        return cls(id=user.id, username=user.name, email=user.email, role=user.role.value)


class AuthResponse(MeResponse):
    """Response for POST /register, /login and /google."""

    token: str

    @classmethod
    def issue(cls, user: User, token: str) -> "AuthResponse":
        return cls(id=user.id, username=user.name, email=user.email, role=user.role.value, token=token)


class InvitationUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    email: str
    role: str

    @classmethod
    def from_preview(cls, preview: InvitationPreview) -> "InvitationUser":
        return cls(name=preview.name, email=preview.email, role=preview.role.value)


class VerifyInvitationResponse(BaseModel):
    """Response for GET /verify-invitation/{token}."""

    model_config = ConfigDict(frozen=True)

    valid: bool = True
    user: InvitationUser


class ActivatedUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    role: str


class CompleteRegistrationResponse(BaseModel):
    """Response for POST /complete-registration."""

    model_config = ConfigDict(frozen=True)

    message: str
    token: str
    user: ActivatedUser


class InviteResponse(BaseModel):
    """Response for the admin invite endpoints. Never carries the token or password."""

    model_config = ConfigDict(frozen=True)

    message: str
    user: InvitationUser


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
