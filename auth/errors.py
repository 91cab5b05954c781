"""
auth/errors.py -- Error taxonomy for the authentication subsystem.

Every failure the auth flows can produce is one of these classes. Each carries
an HTTP status, a machine-readable code and a human message, so the transport
boundary (api/main.py) can render all of them through one exception handler
without inspecting types.

Token-level failures (TokenError subclasses) are raised by TokenService and
never reach the client directly: the middleware and refresh flow wrap them in
AuthenticationFailed, keeping the distinct `reason` for logs and clients.

Layer rule: no imports from api/ or core/. Pure Python.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all structured auth failures."""

    status_code: int = 500
    code: str = "auth_error"
    message: str = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def extra(self) -> dict:
        """Additional fields merged into the error envelope."""
        return {}

    def headers(self) -> dict[str, str]:
        """Additional response headers for this error."""
        return {}

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, **self.extra()}


class ValidationError(AuthError):
    status_code = 400
    code = "validation_error"
    message = "Request validation failed."

    def __init__(self, message: str | None = None, detail: str | None = None) -> None:
        super().__init__(message)
        self.detail = detail

    def extra(self) -> dict:
        return {"detail": self.detail} if self.detail else {}


class DuplicateResource(AuthError):
    """A username or email is already taken. `field` says which one."""

    status_code = 409

    def __init__(self, field: str) -> None:
        self.field = field
        self.code = f"duplicate_{field}"
        super().__init__(f"A user with that {field} already exists.")

    def extra(self) -> dict:
        return {"field": self.field}


class InvalidCredentials(AuthError):
    """Deliberately identical for unknown users and wrong passwords."""

    status_code = 401
    code = "invalid_credentials"
    message = "Invalid username or password."


class AuthenticationRequired(AuthError):
    status_code = 401
    code = "authentication_required"
    message = "Authentication required."

    def headers(self) -> dict[str, str]:
        return {"WWW-Authenticate": "Bearer"}


class AuthenticationFailed(AuthError):
    """The presented token was rejected.

    `expired` tells clients whether to attempt a refresh (True) or send the
    user back to login (False).
    """

    status_code = 401

    def __init__(self, reason: str, expired: bool = False, message: str | None = None) -> None:
        self.reason = reason
        self.expired = expired
        self.code = "token_expired" if expired else "invalid_token"
        if message is None:
            message = "Token has expired." if expired else "Invalid token."
        super().__init__(message)

    @classmethod
    def from_token_error(cls, exc: TokenError) -> AuthenticationFailed:
        return cls(reason=exc.reason, expired=isinstance(exc, ExpiredToken))

    def extra(self) -> dict:
        return {"expired": self.expired, "reason": self.reason}

    def headers(self) -> dict[str, str]:
        return {"WWW-Authenticate": 'Bearer error="invalid_token"'}


class AuthorizationDenied(AuthError):
    status_code = 403
    code = "forbidden"
    message = "You do not have permission to perform this action."


class RateLimited(AuthError):
    status_code = 429
    code = "rate_limited"
    message = "Too many requests."

    def __init__(self, retry_after: int, limit: int | None = None, reset_at: int | None = None) -> None:
        self.retry_after = retry_after
        self.limit = limit
        self.reset_at = reset_at
        super().__init__()

    def extra(self) -> dict:
        return {"retryAfter": self.retry_after}

    def headers(self) -> dict[str, str]:
        headers = {"Retry-After": str(self.retry_after)}
        if self.limit is not None:
            headers["X-RateLimit-Limit"] = str(self.limit)
            headers["X-RateLimit-Remaining"] = "0"
        if self.reset_at is not None:
            headers["X-RateLimit-Reset"] = str(self.reset_at)
        return headers


class UpstreamUnavailable(AuthError):
    """Credential store or signing backend failed. Not retried internally."""

    status_code = 503
    code = "upstream_unavailable"
    message = "Service temporarily unavailable."


# ---------------------------------------------------------------------------
# Token errors (TokenService)
# ---------------------------------------------------------------------------


class TokenError(AuthError):
    status_code = 401
    reason = "invalid"


class MalformedToken(TokenError):
    code = "malformed_token"
    reason = "malformed"
    message = "Token is malformed."


class InvalidSignature(TokenError):
    code = "invalid_signature"
    reason = "invalid_signature"
    message = "Token signature is invalid."


class ExpiredToken(TokenError):
    code = "token_expired"
    reason = "expired"
    message = "Token has expired."


class UnknownSubject(TokenError):
    code = "unknown_subject"
    reason = "unknown_subject"
    message = "Token subject no longer exists."
