"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and
services do the work; the one exception is role_satisfies(), which is the
single place a role is compared against a requirement.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    user = "user"
    admin = "admin"


# What each role is allowed to act as. Closed: adding a role means adding a row.
_ROLE_GRANTS: dict[Role, frozenset[Role]] = {
    Role.user: frozenset({Role.user}),
    Role.admin: frozenset({Role.admin, Role.user}),
}


def role_satisfies(actual: Role, required: Role) -> bool:
    """Return True if a holder of `actual` may access something requiring `required`."""
    return required in _ROLE_GRANTS[actual]


@dataclass
class UserIdentity:
    """A first-party account.

    password_hash is the bcrypt hash and must never leave the server -- the
    API layer maps to UserResponse, which has no password field.
    """

    username: str
    email: str
    password_hash: str
    role: Role = Role.user
    id: int | None = None
    first_name: str | None = None
    last_name: str | None = None
    is_active: bool = True
    created_at: str | None = None
    last_login: str | None = None


@dataclass(frozen=True)
class AccessClaims:
    user_id: int
    role: Role
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class RefreshClaims:
    user_id: int
    token_id: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class TokenPair:
    """Access + refresh token returned together. Never persisted as a unit."""

    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime in seconds
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password
