"""
api/routes/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/auth/register   -- create account; returns user + token pair (201)
  POST /api/auth/login      -- username-or-email + password; returns user + token pair
  POST /api/auth/refresh    -- refresh token -> new token pair
  GET  /api/auth/me         -- current user (requires Bearer access token)
  POST /api/auth/logout     -- stateless acknowledgement (requires Bearer access token)
  GET  /api/auth/users      -- list all users (admin only)

Rate limiting runs as a route-level dependency, so it is evaluated before
authentication and before the body reaches any flow:
  register         -> EndpointClass.register
  login, refresh   -> EndpointClass.auth
  everything else  -> EndpointClass.general_api

Handlers are plain `def`: bcrypt is CPU-bound and deliberately slow, so
FastAPI runs them in its worker threadpool instead of the event loop.

Security:
  [C1] Login goes through CredentialVerifier.verify() (timing equalization).
  [M5] Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import EndpointClass, rate_limit
from api.models import (
    AuthResponse,
    LoginRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    UserListResponse,
    UserResponse,
)
from auth.dependencies import get_current_user, require_admin
from auth.flows import AuthFlows, AuthResult
from auth.models import UserIdentity
from auth.store import UserStore

# Auth policy:
# - POST /api/auth/register: public, register limiter
# - POST /api/auth/login:    public, auth limiter
# - POST /api/auth/refresh:  public (carries refresh token in body), auth limiter
# - GET  /api/auth/me:       requires auth (get_current_user)
# - POST /api/auth/logout:   requires auth (get_current_user)
# - GET  /api/auth/users:    requires admin (require_admin)
router = APIRouter()


def _auth_response(result: AuthResult, response: Response) -> AuthResponse:
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return AuthResponse(
        user=UserResponse.from_identity(result.user),
        tokens=TokenResponse.from_pair(result.tokens),
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/auth/register",
    response_model=AuthResponse,
    status_code=201,
    dependencies=[Depends(rate_limit(EndpointClass.register))],
)
def register(request: Request, response: Response, body: RegisterRequest) -> AuthResponse:
    """Create a `user` account and return it with a fresh token pair."""
    flows: AuthFlows = request.app.state.auth_flows
    result = flows.register(
        username=body.username,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    return _auth_response(result, response)


@router.post(
    "/auth/login",
    response_model=AuthResponse,
    dependencies=[Depends(rate_limit(EndpointClass.auth))],
)
def login(request: Request, response: Response, body: LoginRequest) -> AuthResponse:
    """Authenticate with username (or email) and password.

    Unknown user, wrong password and inactive account all return the same
    401 invalid_credentials.
    """
    flows: AuthFlows = request.app.state.auth_flows
    result = flows.login(body.identifier, body.password)
    return _auth_response(result, response)


@router.post(
    "/auth/refresh",
    response_model=TokenResponse,
    dependencies=[Depends(rate_limit(EndpointClass.auth))],
)
def refresh(request: Request, response: Response, body: RefreshRequest) -> TokenResponse:
    """Exchange a refresh token for a new access + refresh pair."""
    flows: AuthFlows = request.app.state.auth_flows
    result = flows.refresh(body.refresh_token)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return TokenResponse.from_pair(result.tokens)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/auth/me",
    response_model=MeResponse,
    dependencies=[Depends(rate_limit(EndpointClass.general_api))],
)
def me(current_user: UserIdentity = Depends(get_current_user)) -> MeResponse:
    """Return the currently authenticated user."""
    return MeResponse(user=UserResponse.from_identity(current_user))


@router.post(
    "/auth/logout",
    response_model=MessageResponse,
    dependencies=[Depends(rate_limit(EndpointClass.general_api))],
)
def logout(request: Request, current_user: UserIdentity = Depends(get_current_user)) -> MessageResponse:
    """Acknowledge logout. Tokens are not tracked server-side, so the client must discard them."""
    flows: AuthFlows = request.app.state.auth_flows
    flows.logout(current_user)
    return MessageResponse(message="Logged out.")


@router.get(
    "/auth/users",
    response_model=UserListResponse,
    dependencies=[Depends(rate_limit(EndpointClass.general_api))],
)
def list_users(request: Request, current_user: UserIdentity = Depends(require_admin)) -> UserListResponse:
    """List all user accounts. Admin only."""
    user_store: UserStore = request.app.state.user_store
    return UserListResponse(users=[UserResponse.from_identity(u) for u in user_store.list_users()])
