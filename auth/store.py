"""
auth/store.py -- SQLAlchemy Core persistence layer for user identities.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Flow and dependency code never touches SQL directly, and only
depends on the CredentialStore protocol below, so any backend exposing those
methods can stand in.

Security:
  All queries use bound parameters. No f-strings in SQL.

Failure mapping:
  sqlalchemy OperationalError (database unreachable, locked, missing schema)
  is raised as auth.errors.UpstreamUnavailable so the API answers 503.
  IntegrityError from create() propagates unchanged -- AuthFlows turns it
  into DuplicateResource after checking which column collided.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError

from auth.errors import UpstreamUnavailable
from auth.models import Role, UserIdentity

logger = logging.getLogger("authgate.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),  # stored lower-cased
    Column("password_hash", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default=Role.user.value),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("created_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("last_login", Text),
)


class CredentialStore(Protocol):
    """The lookups and writes the auth flows need from user persistence."""

    def get_by_username(self, username: str) -> UserIdentity | None: ...

    def get_by_email(self, email: str) -> UserIdentity | None: ...

    def get_by_id(self, user_id: int) -> UserIdentity | None: ...

    def create(self, user: UserIdentity) -> int: ...

    def update_last_login(self, user_id: int) -> None: ...


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """SQLAlchemy-backed CredentialStore.

    Usage:
        store = UserStore("sqlite:///authgate.db")
        uid = store.create(UserIdentity(username="alice", email="a@x.com", password_hash=h))
        user = store.get_by_username("alice")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        try:
            with self.engine.connect() as conn:
                yield conn
        except OperationalError as exc:
            logger.error("Credential store unavailable: %s", exc.orig)
            raise UpstreamUnavailable("Credential store unavailable.") from exc

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_username(self, username: str) -> UserIdentity | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> UserIdentity | None:
        """Look up a user by email. Case-insensitive: emails are stored lower-cased."""
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> UserIdentity | None:
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[UserIdentity]:
        """Return all users ordered by username. Admin-only operation."""
        with self._connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, user: UserIdentity) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. The UNIQUE constraints are the final word when two
        registrations race past the flow's pre-insert checks.
        """
        with self._connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email.strip().lower(),
                    password_hash=user.password_hash,
                    role=user.role.value,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    created_at=_now_iso(),
                    is_active=1 if user.is_active else 0,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: role, is_active, first_name, last_name, password_hash.
        Returns True if a row was updated, False if user_id was not found.
        """
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        if isinstance(fields.get("role"), Role):
            fields["role"] = fields["role"].value
        with self._connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login. Called on every successful login."""
        with self._connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        try:
            with self._connect() as conn:
                conn.execute(_users.select().limit(1)).fetchone()
        except UpstreamUnavailable:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> UserIdentity:
    return UserIdentity(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        role=Role(row.role),
        first_name=row.first_name,
        last_name=row.last_name,
        created_at=row.created_at,
        is_active=bool(row.is_active),
        last_login=row.last_login,
    )
