"""
api/limiter.py -- Tiered fixed-window rate limiting for the auth endpoints.

One RateLimiter instance per app, created in the app factory from Settings and
stored on app.state.rate_limiter. Routes opt in per endpoint class with
Depends(rate_limit(EndpointClass.auth)) -- each class has its own window
length and quota, and counters are keyed by (client address, endpoint class),
so a burst of logins never eats into the general-api budget.

Algorithm: fixed window, via limits.strategies.FixedWindowRateLimiter (the
same engine slowapi runs on). The first hit in a window starts it with
count=1; later hits increment; a hit is allowed while count <= quota. A client
can get up to 2x quota through by bursting on both sides of a window boundary.
That is the accepted cost of fixed windows.

Storage: Settings.rate_limit_storage_uri. memory:// keeps counters in this
process only (per-key locks, lost on restart, not shared between replicas);
redis:// shares them across instances with atomic INCR. Storage errors are
logged and then resolved by Settings.rate_limit_fail_open -- never ignored.

Client key: slowapi.util.get_remote_address (request.client.host). Behind a
reverse proxy, run uvicorn with --proxy-headers so that is the real client.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from fastapi import Request, Response
from limits import RateLimitItem, RateLimitItemPerSecond
from limits.errors import StorageError
from limits.storage import storage_from_string
from limits.strategies import FixedWindowRateLimiter
from slowapi.util import get_remote_address

from auth.errors import RateLimited
from core.config import Settings

logger = logging.getLogger("authgate.ratelimit")

# Retry hint sent when the counter backend is down and we fail closed.
_FAIL_CLOSED_RETRY_AFTER = 60


class EndpointClass(str, Enum):
    auth = "auth"
    register = "register"
    general_api = "general-api"


@dataclass(frozen=True)
class RatePolicy:
    quota: int
    window_seconds: int


PROFILES: dict[str, dict[EndpointClass, RatePolicy]] = {
    "strict": {
        EndpointClass.auth: RatePolicy(quota=5, window_seconds=15 * 60),
        EndpointClass.register: RatePolicy(quota=3, window_seconds=60 * 60),
        EndpointClass.general_api: RatePolicy(quota=100, window_seconds=15 * 60),
    },
    "relaxed": {
        EndpointClass.auth: RatePolicy(quota=50, window_seconds=60),
        EndpointClass.register: RatePolicy(quota=20, window_seconds=5 * 60),
        EndpointClass.general_api: RatePolicy(quota=1000, window_seconds=60),
    },
}


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one check. retry_after is set only when blocked."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: int  # epoch seconds when the current window ends
    retry_after: int | None = None


class RateLimiter:
    """Fixed-window counters per (client_key, endpoint_class).

    Usage:
        limiter = RateLimiter.from_settings(settings)
        decision = limiter.check("203.0.113.7", EndpointClass.auth)
        if not decision.allowed:
            ...  # 429, Retry-After: decision.retry_after
    """

    def __init__(
        self,
        policies: dict[EndpointClass, RatePolicy],
        storage_uri: str = "memory://",
        fail_open: bool = False,
    ) -> None:
        self.policies = dict(policies)
        self.fail_open = fail_open
        self._items: dict[EndpointClass, RateLimitItem] = {
            cls: RateLimitItemPerSecond(policy.quota, policy.window_seconds, namespace="authgate")
            for cls, policy in self.policies.items()
        }
        self.storage = storage_from_string(storage_uri, wrap_exceptions=True)
        self.strategy = FixedWindowRateLimiter(self.storage)

    @classmethod
    def from_settings(cls, settings: Settings) -> RateLimiter:
        logger.info(
            "Rate limiter profile=%s storage=%s fail_open=%s",
            settings.rate_limit_profile,
            settings.rate_limit_storage_uri.split("://", 1)[0],
            settings.rate_limit_fail_open,
        )
        return cls(
            PROFILES[settings.rate_limit_profile],
            storage_uri=settings.rate_limit_storage_uri,
            fail_open=settings.rate_limit_fail_open,
        )

    def check(self, client_key: str, endpoint_class: EndpointClass) -> RateLimitDecision:
        """Count one request and decide whether it may proceed."""
        policy = self.policies[endpoint_class]
        item = self._items[endpoint_class]
        try:
            allowed = self.strategy.hit(item, client_key, endpoint_class.value)
            stats = self.strategy.get_window_stats(item, client_key, endpoint_class.value)
        except StorageError as exc:
            return self._storage_failure(policy, endpoint_class, exc)

        reset_at = math.ceil(stats.reset_time)
        if allowed:
            return RateLimitDecision(allowed=True, limit=policy.quota, remaining=stats.remaining, reset_at=reset_at)

        retry_after = max(1, math.ceil(stats.reset_time - time.time()))
        logger.warning("Rate limit hit: class=%s client=%s retry_after=%ds", endpoint_class.value, client_key, retry_after)
        return RateLimitDecision(
            allowed=False,
            limit=policy.quota,
            remaining=0,
            reset_at=reset_at,
            retry_after=retry_after,
        )

    def _storage_failure(self, policy: RatePolicy, endpoint_class: EndpointClass, exc: StorageError) -> RateLimitDecision:
        now = time.time()
        if self.fail_open:
            logger.error("Rate limit storage failed, allowing request (fail open): %s", exc)
            return RateLimitDecision(
                allowed=True,
                limit=policy.quota,
                remaining=policy.quota,
                reset_at=math.ceil(now + policy.window_seconds),
            )
        logger.error("Rate limit storage failed, blocking %s request (fail closed): %s", endpoint_class.value, exc)
        return RateLimitDecision(
            allowed=False,
            limit=policy.quota,
            remaining=0,
            reset_at=math.ceil(now + _FAIL_CLOSED_RETRY_AFTER),
            retry_after=_FAIL_CLOSED_RETRY_AFTER,
        )

    def hits(self, client_key: str, endpoint_class: EndpointClass) -> int:
        """Requests counted for this key in the current window, blocked ones included."""
        return int(self.storage.get(self._items[endpoint_class].key_for(client_key, endpoint_class.value)))

    def reset(self) -> None:
        """Drop every counter in the backing storage."""
        self.storage.reset()


def rate_limit(endpoint_class: EndpointClass) -> Callable[[Request, Response], None]:
    """Build a FastAPI dependency that enforces endpoint_class's quota.

    Use in the route's dependencies list so it runs before authentication:
        @router.post("/auth/login", dependencies=[Depends(rate_limit(EndpointClass.auth))])
    """

    def dependency(request: Request, response: Response) -> None:
        limiter: RateLimiter = request.app.state.rate_limiter
        decision = limiter.check(get_remote_address(request), endpoint_class)
        if not decision.allowed:
            raise RateLimited(
                retry_after=decision.retry_after or 1,
                limit=decision.limit,
                reset_at=decision.reset_at,
            )
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        response.headers["X-RateLimit-Reset"] = str(decision.reset_at)

    return dependency
