"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AuthGate happen here. No module should
call os.getenv() or os.environ.get() directly.

Design patterns used:
  Explicit injection: the app factory (api/main.py) and the CLI build one
      Settings object at startup and hand it to TokenService, RateLimiter,
      CredentialVerifier and AuthFlows. Services never look config up on their
      own, so tests can run side by side with distinct secrets and quotas.

  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call. Only process entry points (asgi.py, main.py) call it.

  @model_validator(mode="after"): cross-field validation once every field is
      resolved from the environment.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. HMAC-SHA256
       token signing relies on key entropy.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authgate.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Environment variable name mapping: field names are uppercased automatically.
    E.g. `secret_key` reads from SECRET_KEY, `rate_limit_profile` reads from
    RATE_LIMIT_PROFILE.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = "sqlite:///authgate.db"
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = Field(default=15 * 60, gt=0)
    refresh_token_expire_seconds: int = Field(default=7 * 24 * 3600, gt=0)
    # Compatibility shim: accept userId / user_id / id when "sub" is absent.
    accept_legacy_subject_claims: bool = True

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=10, le=16)
    password_min_length: int = Field(default=8, ge=8, le=72)

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    # "strict" for production, "relaxed" for local development and staging.
    rate_limit_profile: Literal["strict", "relaxed"] = "strict"
    # memory:// keeps counters in-process (lost on restart, not shared between
    # instances). Use redis://host:port/db for horizontally scaled deployments.
    rate_limit_storage_uri: str = "memory://"
    # Behaviour when the counter backend errors: False = block (fail closed).
    rate_limit_fail_open: bool = False

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_token_lifetimes(self) -> "Settings":
        """Access tokens must expire well before the refresh token that renews them."""
        if self.access_token_expire_seconds >= self.refresh_token_expire_seconds:
            raise ValueError("ACCESS_TOKEN_EXPIRE_SECONDS must be shorter than REFRESH_TOKEN_EXPIRE_SECONDS.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings singleton.

    Called by entry points only (asgi.py, main.py). In tests, construct
    Settings(...) directly and pass it to create_app() instead.
    """
    return Settings()
