"""
API request and response models for AuthGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

JSON bodies use camelCase (firstName, accessToken, ...) through the alias
generator on _CamelModel; Python code keeps snake_case names.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
UserResponse has no password field, so a hash can never be serialized.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from auth.models import Role, TokenPair, UserIdentity

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# No "@" allowed, so a login identifier can never match both a username and an email.
USERNAME_PATTERN = r"^[A-Za-z0-9_.-]{3,50}$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_CamelModel):
    """Request body for POST /api/auth/register.

    Password length policy is enforced by AuthFlows (it is configurable);
    max_length here only bounds the request size.
    """

    username: str = Field(pattern=USERNAME_PATTERN)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)


class LoginRequest(_CamelModel):
    """Request body for POST /api/auth/login. Either username or email is required."""

    username: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    password: str = Field(min_length=1, max_length=255)

    @model_validator(mode="after")
    def require_identifier(self) -> "LoginRequest":
        if not (self.username or self.email):
            raise ValueError("username or email is required")
        return self

    @property
    def identifier(self) -> str:
        """username wins when both are sent."""
        return self.username or self.email or ""


class RefreshRequest(_CamelModel):
    """Request body for POST /api/auth/refresh.

    refresh_token is optional at the shape level so a missing token is
    reported by AuthFlows.refresh() with a specific message.
    """

    refresh_token: Optional[str] = Field(default=None, max_length=4096)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(_CamelModel):
    id: int
    username: str
    email: str
    role: Role
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    created_at: str = ""
    last_login: Optional[str] = None

    @classmethod
    def from_identity(cls, user: UserIdentity) -> "UserResponse":
        """Factory Method -- the domain-to-wire mapping lives beside the wire model."""
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            first_name=user.first_name,
            last_name=user.last_name,
            created_at=user.created_at or "",
            last_login=user.last_login,
        )


class TokenResponse(_CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password
    expires_in: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenResponse":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
        )


class AuthResponse(_CamelModel):
    """Response for register and login."""

    user: UserResponse
    tokens: TokenResponse


class MeResponse(_CamelModel):
    user: UserResponse


class UserListResponse(_CamelModel):
    users: list[UserResponse]


class MessageResponse(BaseModel):
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
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
