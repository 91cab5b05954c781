"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Protected routes authenticate with exactly one method:
  Authorization: Bearer <access token>

get_current_user() verifies the token, then re-reads the user from the
credential store. Authorization-sensitive fields (role, is_active) come from
the store, never from the token, so a demotion or deactivation takes effect
on the next request rather than at token expiry. The resolved user is also
attached to request.state.user for middleware and handlers further down.

require_role(role) wraps get_current_user() and enforces the role through
auth.models.role_satisfies -- the only place roles are compared.

Failures are raised as auth.errors classes; api/main.py renders them:
  AuthenticationRequired (401)  no/malformed Authorization header
  AuthenticationFailed   (401)  bad, expired or orphaned token
  AuthorizationDenied    (403)  role check failed

Layer rule: may import from fastapi (Request/Depends) because this module is
part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Depends, Request

from auth.errors import AuthenticationFailed, AuthenticationRequired, AuthorizationDenied, TokenError
from auth.models import Role, UserIdentity, role_satisfies

logger = logging.getLogger("authgate.auth")


def parse_bearer(header: str | None) -> str:
    """Extract the token from an Authorization header value.

    The scheme is matched case-insensitively (RFC 6750). Anything other than
    exactly "Bearer <token>" is AuthenticationRequired.
    """
    if not header:
        raise AuthenticationRequired()
    parts = header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationRequired("Authorization header must be 'Bearer <token>'.")
    return parts[1]


def get_current_user(request: Request) -> UserIdentity:
    """Require a valid access token and return the user it belongs to.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: UserIdentity = Depends(get_current_user)): ...
    """
    token = parse_bearer(request.headers.get("Authorization"))
    tokens = request.app.state.token_service
    try:
        claims = tokens.verify_access(token)
    except TokenError as exc:
        logger.info("Access token rejected on %s: %s", request.url.path, exc.reason)
        raise AuthenticationFailed.from_token_error(exc) from exc

    user = request.app.state.user_store.get_by_id(claims.user_id)
    if user is None or not user.is_active:
        logger.info("Access token for missing or inactive user_id=%s", claims.user_id)
        raise AuthenticationFailed(reason="unknown_subject")

    request.state.user = user
    return user


def require_role(role: Role) -> Callable[..., UserIdentity]:
    """Build a dependency that requires the caller to hold `role` (or a role that grants it).

    Use as a FastAPI dependency:
        @router.get("/admin-only")
        def route(user: UserIdentity = Depends(require_role(Role.admin))): ...
    """

    def dependency(user: UserIdentity = Depends(get_current_user)) -> UserIdentity:
        if not role_satisfies(user.role, role):
            logger.info("Role check failed: user_id=%s role=%s required=%s", user.id, user.role.value, role.value)
            raise AuthorizationDenied(f"{role.value.capitalize()} access required.")
        return user

    return dependency


require_admin = require_role(Role.admin)
