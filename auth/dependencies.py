"""
auth/dependencies.py -- Request-time authorization policy as FastAPI dependencies.

Two stages, composed per router or per route:

  protect / get_current_user
      Requires "Authorization: Bearer <token>". Verifies the session token,
      loads the principal (password hash excluded) and attaches it to
      request.state.user. Missing header, wrong scheme, bad or expired token,
      or a principal id that no longer resolves -> 401.

  check_auth(*roles) / authorize(*roles)
      Requires a principal from stage 1 (401 if absent). Re-checks the
      institutional domain on every request (403 if the stored email no
      longer qualifies) and, when roles are given, role membership (403).
      authorize is the same function under a second name.

Router-level usage mirrors the order the stages must run in:

    router = APIRouter(dependencies=[Depends(protect), Depends(check_auth(Role.ADMIN_DEAN))])

Route-level usage with a named operation from ACCESS_POLICY:

    @router.get("/dean/overview")
    def overview(user: User = Depends(require("dean.overview"))): ...

Every failure raises an auth.errors exception; api/main.py renders it. A
request is either fully authorized or stopped -- nothing is half-attached.

Layer rule: no imports from api/. fastapi is allowed here because this
module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request

from auth.domains import is_institutional_email, parse_role
from auth.errors import AuthenticationError, AuthorizationError, ValidationError
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import verify_session_token

# ---------------------------------------------------------------------------
# Access policy table
#
# Each protected operation names its allowed roles explicitly. An empty tuple
# means "any authenticated institutional principal". require() looks names up
# at import time, so a typo in an operation name fails on startup.
# ---------------------------------------------------------------------------

ACCESS_POLICY: dict[str, tuple[Role, ...]] = {
    "profile.read": (),
    "profile.change_password": (),
    "admin.invite": (Role.ADMIN_DEAN,),
    "dean.overview": (Role.ADMIN_DEAN,),
    "program_head.workspace": (Role.PROGRAM_HEAD,),
    "faculty.workspace": (Role.FACULTY_ADVISER,),
    "student.workspace": (Role.GRADUATE_STUDENT,),
}


# ---------------------------------------------------------------------------
# Stage 1 -- authentication
# ---------------------------------------------------------------------------


def _bearer_token(request: Request) -> str | None:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme != "Bearer":
        return None
    return token.strip() or None


def get_current_user(request: Request) -> User:
    """Resolve the bearer token to a principal or raise AuthenticationError (401)."""
    token = _bearer_token(request)
    if token is None:
        raise AuthenticationError("Not authorized, no token")

    user_id = verify_session_token(token)
    if user_id is None:
        raise AuthenticationError("Not authorized, token failed")

    user_store: UserStore = request.app.state.user_store
    try:
        user = user_store.get_principal(user_id)
    except ValidationError as exc:
        # Stored role outside the enum -- a corrupted record is never authorized.
        raise AuthorizationError("Access denied") from exc
    if user is None or not user.is_active:
        raise AuthenticationError("Not authorized, token failed")

    request.state.user = user
    return user


protect = get_current_user


# ---------------------------------------------------------------------------
# Stage 2 -- authorization
# ---------------------------------------------------------------------------


def authorize_principal(user: User | None, allowed: frozenset[Role]) -> User:
    """Apply the domain and role checks to an already-authenticated principal."""
    if user is None:
        raise AuthenticationError("Unauthorized")
    if not is_institutional_email(user.email):
        raise AuthorizationError("Access denied", code="invalid_domain")
    if allowed and user.role not in allowed:
        raise AuthorizationError("Access denied")
    return user


def check_auth(*roles: Role | str) -> Callable[[Request], User]:
    """Build a stage-2 dependency admitting only the given roles (none = any role).

    Role strings are parsed into the Role enum here, once, so an unknown role
    name fails when the router is built rather than on the first request.
    """
    allowed = frozenset(parse_role(r) for r in roles)

    def _check(request: Request) -> User:
        return authorize_principal(getattr(request.state, "user", None), allowed)

    return _check


authorize = check_auth


def require(operation: str) -> Callable[..., User]:
    """Both stages in one dependency, with roles taken from ACCESS_POLICY."""
    allowed = frozenset(ACCESS_POLICY[operation])

    def _require(user: User = Depends(get_current_user)) -> User:
        return authorize_principal(user, allowed)

    return _require
