"""
auth/domains.py -- Institutional domain policy and role parsing.

Only two email suffixes are accepted anywhere in the system, and one of them
is bound to a single role:

  @student.buksu.edu.ph  <=>  Role.GRADUATE_STUDENT
  @buksu.edu.ph          <=>  every other role

The allow-list is fixed in code. Per-tenant domain configuration is not
supported.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from auth.errors import ValidationError
from auth.models import Role

STAFF_DOMAIN = "buksu.edu.ph"
STUDENT_DOMAIN = "student.buksu.edu.ph"

# Legacy role strings seen in stored data and older clients.
_ROLE_ALIASES: dict[str, Role] = {
    "dean": Role.ADMIN_DEAN,
    "admin": Role.ADMIN_DEAN,
}


def normalize_email(email: str) -> str:
    return email.strip().lower()


def email_domain(email: str) -> str:
    """Return the part after the last '@', lowercased ('' when there is none)."""
    _, sep, domain = email.strip().lower().rpartition("@")
    return domain if sep else ""


def is_student_email(email: str) -> bool:
    return email_domain(email) == STUDENT_DOMAIN


def is_staff_email(email: str) -> bool:
    return email_domain(email) == STAFF_DOMAIN


def is_institutional_email(email: str) -> bool:
    return is_student_email(email) or is_staff_email(email)


def require_institutional_email(email: str) -> None:
    if not is_institutional_email(email):
        raise ValidationError("Institutional emails only", code="invalid_domain")


def parse_role(value: str | Role | None) -> Role:
    """Map an inbound role string onto the closed Role enum (case-insensitive).

    Raises ValidationError for anything outside the enum or its aliases.
    """
    if isinstance(value, Role):
        return value
    if not value:
        raise ValidationError("Role is required", code="invalid_role")
    key = " ".join(value.strip().lower().split())
    if key in _ROLE_ALIASES:
        return _ROLE_ALIASES[key]
    try:
        return Role(key)
    except ValueError as exc:
        raise ValidationError("Unknown role", code="invalid_role") from exc


def indicates_student(selected_role: str | None) -> bool:
    """True when a client-declared role expresses student intent ("student" substring)."""
    return bool(selected_role) and "student" in selected_role.lower()


def check_role_domain(role: Role, email: str) -> None:
    """Enforce the role <=> domain binding for a new or updated account."""
    require_institutional_email(email)
    if role is Role.GRADUATE_STUDENT and not is_student_email(email):
        raise ValidationError(
            "Graduate students must use @student.buksu.edu.ph email",
            code="role_domain_mismatch",
        )
    if role is not Role.GRADUATE_STUDENT and not is_staff_email(email):
        raise ValidationError(
            "Faculty/Admin must use @buksu.edu.ph email",
            code="role_domain_mismatch",
        )


def resolve_google_role(email: str, selected_role: str | None) -> Role | None:
    """Apply the OAuth domain/role consistency rules.

    Returns the role a new account would receive, or None when the caller
    declared no usable staff role (an existing account may still sign in).
    Raises ValidationError when the email domain and declared intent disagree.
    """
    require_institutional_email(email)
    wants_student = indicates_student(selected_role)
    if is_student_email(email):
        if not wants_student:
            raise ValidationError(
                "Student emails can only be used for graduate student accounts",
                code="role_domain_mismatch",
            )
        return Role.GRADUATE_STUDENT
    if wants_student:
        raise ValidationError(
            "Faculty/Admin emails cannot be used for student accounts",
            code="role_domain_mismatch",
        )
    if not selected_role:
        return None
    return parse_role(selected_role)
