"""
auth/store.py -- SQLAlchemy Core persistence layer for Principals.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route, service and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(email), UNIQUE(student_id) and UNIQUE(invitation_token) are enforced
  by the database. The "does this email exist" pre-check in the service layer
  is only a friendlier error; the IntegrityError raised by create_user() is
  the authoritative duplicate signal. SQLite treats NULLs as distinct in
  UNIQUE constraints, which is exactly the sparse behaviour student_id and
  invitation_token need.

  activate_invitation() and consume_reset_token() are compare-and-swap
  updates: the WHERE clause re-checks the token and its expiry, and the row
  count decides the single winner when two requests race on one token.

Timestamps are ISO 8601 UTC strings with fixed microsecond precision, so
string comparison in SQL orders them the same way datetime comparison would.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.domains import parse_role
from auth.models import User

logger = logging.getLogger("archive.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),  # uuid4 hex, opaque
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),  # NULL while an invitation is pending
    Column("role", String(30), nullable=False),
    Column("student_id", String(64), unique=True),  # graduate students only
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("invitation_token", String(64), unique=True),
    Column("invitation_expires", String(32)),
    Column("reset_token_hash", String(64)),
    Column("reset_expires", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

# Columns handed to request handlers. The password hash and one-time token
# material stay inside the store.
_PRINCIPAL_COLUMNS = (
    _users.c.id,
    _users.c.name,
    _users.c.email,
    _users.c.role,
    _users.c.student_id,
    _users.c.is_active,
    _users.c.created_at,
    _users.c.last_login,
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User (Principal) records.

    Usage:
        store = UserStore(get_settings().database_url)
        user_id = store.create_user(User(name="Ana", email="ana@buksu.edu.ph", role=Role.FACULTY_ADVISER,
                                          hashed_password=hash_password("secret")))
        user = store.get_by_email("ana@buksu.edu.ph")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Inserts
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new principal and return its assigned id.

        Raises sqlalchemy.exc.IntegrityError if the email, student ID or
        invitation token already exists. Callers convert that into
        ConflictError.
        """
        user_id = uuid.uuid4().hex
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    name=user.name,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    role=user.role.value,
                    student_id=user.student_id,
                    is_active=1 if user.is_active else 0,
                    invitation_token=user.invitation_token,
                    invitation_expires=user.invitation_expires,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return user_id

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a full record by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_principal(self, user_id: str) -> User | None:
        """Look up a principal for request handling, without secret columns."""
        with self.engine.connect() as conn:
            row = conn.execute(select(*_PRINCIPAL_COLUMNS).where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def email_exists(self, email: str) -> bool:
        with self.engine.connect() as conn:
            found = conn.execute(select(_users.c.id).where(_users.c.email == email)).first()
        return found is not None

    def get_by_invitation_token(self, token: str, now: datetime) -> User | None:
        """Return the pending principal holding a live invitation token.

        A token that never existed, one that expired and one already consumed
        all give None. Callers must not tell these apart.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(
                    (_users.c.invitation_token == token)
                    & (_users.c.invitation_expires > to_iso(now))
                    & (_users.c.is_active == 0)
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM users")).scalar()
        return (result or 0) > 0

    # ------------------------------------------------------------------
    # Conditional updates (single winner)
    # ------------------------------------------------------------------

    def activate_invitation(self, token: str, hashed_password: str, now: datetime) -> str | None:
        """Atomically turn a pending invitation into an active account.

        Sets the password, sets is_active and clears both invitation columns
        in one UPDATE guarded by the token still matching and being unexpired.
        Returns the activated principal id, or None if another request already
        consumed the token or it expired in the meantime.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_users.c.id).where(
                    (_users.c.invitation_token == token)
                    & (_users.c.invitation_expires > to_iso(now))
                    & (_users.c.is_active == 0)
                )
            ).fetchone()
            if row is None:
                return None
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.id == row.id)
                    & (_users.c.invitation_token == token)
                    & (_users.c.invitation_expires > to_iso(now))
                    & (_users.c.is_active == 0)
                )
                .values(
                    hashed_password=hashed_password,
                    is_active=1,
                    invitation_token=None,
                    invitation_expires=None,
                )
            )
            conn.commit()
        return row.id if result.rowcount == 1 else None

    def set_reset_token(self, user_id: str, token_hash: str, expires: datetime) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(reset_token_hash=token_hash, reset_expires=to_iso(expires))
            )
            conn.commit()

    def consume_reset_token(self, token_hash: str, hashed_password: str, now: datetime) -> str | None:
        """Atomically swap in a new password for a live reset token. Single use."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_users.c.id).where(
                    (_users.c.reset_token_hash == token_hash)
                    & (_users.c.reset_expires > to_iso(now))
                    & (_users.c.is_active == 1)
                )
            ).fetchone()
            if row is None:
                return None
            result = conn.execute(
                _users.update()
                .where((_users.c.id == row.id) & (_users.c.reset_token_hash == token_hash))
                .values(hashed_password=hashed_password, reset_token_hash=None, reset_expires=None)
            )
            conn.commit()
        return row.id if result.rowcount == 1 else None

    # ------------------------------------------------------------------
    # Plain updates
    # ------------------------------------------------------------------

    def update_password(self, user_id: str, hashed_password: str) -> bool:
        """Replace the password hash of an active account. Returns False if not found."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.is_active == 1))
                .values(hashed_password=hashed_password)
            )
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: str) -> None:
        """Stamp the current UTC timestamp as last_login for the given user."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    def ping(self) -> bool:
        """Cheap liveness probe for the health endpoint. False when the database is unreachable."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    # get_principal() selects a subset of columns; absent ones map to None.
    # parse_role() accepts legacy stored values ("dean") and raises
    # ValidationError on anything unknown.
    fields = row._mapping
    return User(
        id=fields["id"],
        name=fields["name"],
        email=fields["email"],
        role=parse_role(fields["role"]),
        hashed_password=fields.get("hashed_password"),
        student_id=fields.get("student_id"),
        is_active=bool(fields["is_active"]),
        invitation_token=fields.get("invitation_token"),
        invitation_expires=fields.get("invitation_expires"),
        reset_token_hash=fields.get("reset_token_hash"),
        reset_expires=fields.get("reset_expires"),
        created_at=fields.get("created_at"),
        last_login=fields.get("last_login"),
    )
