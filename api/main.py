"""
api/main.py -- FastAPI application factory for AuthGate.

Run with:  uvicorn asgi:app --proxy-headers
           (asgi.py calls create_app() with get_settings())

Middleware stack (outermost to innermost):
  1. log_requests          -- one access-log line per request, rejections included
  2. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  3. CORSMiddleware        -- adds CORS headers for allowed browser origins

Rate limiting is not middleware: it is a per-route dependency
(api/limiter.py) because each endpoint class has its own quota.

Lifespan builds the service graph from the injected Settings on startup and
closes the store on shutdown. Tests call create_app(settings, user_store=...)
to run the real routes against an isolated store.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from api.limiter import RateLimiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from auth.credentials import CredentialVerifier
from auth.errors import AuthError
from auth.flows import AuthFlows
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import Settings

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authgate.api")


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def _wire_services(app: FastAPI, settings: Settings, user_store: UserStore) -> None:
    """Build the auth service graph and hang it on app.state.

    Order matters: the verifier and token service both read from the store;
    the flows need all three.
    """
    verifier = CredentialVerifier(user_store, settings)
    token_service = TokenService(settings, user_store)
    app.state.settings = settings
    app.state.user_store = user_store
    app.state.token_service = token_service
    app.state.auth_flows = AuthFlows(user_store, verifier, token_service, settings)
    app.state.rate_limiter = RateLimiter.from_settings(settings)


def create_app(settings: Settings, user_store: UserStore | None = None) -> FastAPI:
    """Build a fully configured AuthGate application.

    Args:
        settings:   The configuration every service is built from.
        user_store: Pre-built store (tests). When None, lifespan opens one at
                    settings.database_url and closes it on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("AuthGate API starting up")
        store = user_store if user_store is not None else UserStore(settings.database_url)
        _wire_services(app, settings, store)
        logger.info("Auth initialized (profile=%s)", settings.rate_limit_profile)

        yield

        if user_store is None:
            store.close()
        logger.info("AuthGate API shutdown complete")

    app = FastAPI(
        title="AuthGate API",
        description="First-party username/password login with short-lived bearer tokens and refresh rotation.",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
    )

    # Starlette wraps each add_middleware() call around everything registered
    # before it, so the last one registered sees the request first.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
        expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
        max_age=3600,
    )
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=["localhost", "127.0.0.1", "*.localhost", "testserver"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        ms = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s %d %.1fms %s",
            request.method,
            request.url.path,
            response.status_code,
            ms,
            request.client.host if request.client else "unknown",
        )
        return response

    app.include_router(auth_router, prefix="/api", tags=["Auth"])
    _register_exception_handlers(app)

    @app.get("/api/health", tags=["Health"])
    def health(request: Request) -> HealthResponse:
        """Liveness plus a database round-trip. Never rate limited."""
        db_ok = request.app.state.user_store.ping()
        return HealthResponse(
            status="healthy" if db_ok else "degraded",
            version=VERSION,
            components={"app": "ok", "database": "ok" if db_ok else "error"},
        )

    return app


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {"error": {...}} envelope so API clients can
# parse errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        """Render any auth.errors class: status, code and extra fields come from the exception."""
        if exc.status_code >= 500:
            logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.to_dict()},
            headers=exc.headers(),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Return 400 with structured error when the request body fails validation."""
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(
                error=ErrorDetail(
                    code="validation_error",
                    message="Request validation failed.",
                    detail=_describe_validation_errors(exc),
                )
            ).model_dump(),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Structured error for framework HTTP exceptions (404, 405, ...)."""
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail)),
            ).model_dump(),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unexpected server errors.

        The exception goes to the log only, never to the response body:
        stack traces and SQL fragments help attackers, not clients.
        """
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error=ErrorDetail(code="internal_error", message="An unexpected error occurred."),
            ).model_dump(),
        )


def _describe_validation_errors(exc: RequestValidationError) -> str:
    """Summarize validation errors without echoing submitted values (passwords)."""
    parts = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{location or 'body'}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)
