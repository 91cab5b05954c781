"""
auth/flows.py -- The four public auth operations: register, login, refresh, logout.

Each flow is one request/response. The only state carried between requests
is the tokens themselves -- there is no session table and no revocation list.

Flows raise auth.errors classes; they never build HTTP responses. Input
*shape* (types, required fields, username pattern) is checked by the Pydantic
models in api/models.py before a flow runs; flows enforce the policies that
need configuration or the store (password length, uniqueness).

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from auth.credentials import MAX_PASSWORD_BYTES
from auth.errors import AuthenticationFailed, DuplicateResource, TokenError, ValidationError
from auth.models import Role, TokenPair, UserIdentity

if TYPE_CHECKING:
    from auth.credentials import CredentialVerifier
    from auth.store import CredentialStore
    from auth.tokens import TokenService
    from core.config import Settings

logger = logging.getLogger("authgate.auth")


@dataclass(frozen=True)
class AuthResult:
    user: UserIdentity
    tokens: TokenPair


def check_password_policy(password: str, min_length: int) -> None:
    """Raise ValidationError unless password fits the length policy."""
    if len(password) < min_length:
        raise ValidationError(f"Password must be at least {min_length} characters long.")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long.")


class AuthFlows:
    def __init__(
        self,
        store: CredentialStore,
        verifier: CredentialVerifier,
        tokens: TokenService,
        settings: Settings,
    ) -> None:
        self.store = store
        self.verifier = verifier
        self.tokens = tokens
        self.password_min_length = settings.password_min_length

    def register(
        self,
        username: str,
        email: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> AuthResult:
        """Create a `user`-role account and sign it in.

        Username collisions are checked before email collisions and each is
        reported as its own DuplicateResource. The UNIQUE constraints catch
        a concurrent registration that slips between check and insert.
        """
        username = username.strip()
        email = email.strip().lower()
        check_password_policy(password, self.password_min_length)

        if self.store.get_by_username(username) is not None:
            raise DuplicateResource("username")
        if self.store.get_by_email(email) is not None:
            raise DuplicateResource("email")

        new_user = UserIdentity(
            username=username,
            email=email,
            password_hash=self.verifier.hash(password),
            role=Role.user,
            first_name=first_name,
            last_name=last_name,
        )
        try:
            user_id = self.store.create(new_user)
        except IntegrityError as exc:
            field = "username" if self.store.get_by_username(username) is not None else "email"
            logger.info("Registration lost a uniqueness race on %s", field)
            raise DuplicateResource(field) from exc

        user = self.store.get_by_id(user_id)
        if user is None:
            raise RuntimeError(f"user_id={user_id} missing immediately after insert")
        logger.info("Registered user_id=%s", user.id)
        return AuthResult(user=user, tokens=self.tokens.issue(user))

    def login(self, identifier: str, password: str) -> AuthResult:
        """Verify credentials and issue a pair. Any failure is InvalidCredentials."""
        if not identifier.strip() or not password:
            raise ValidationError("Username/email and password are required.")
        user = self.verifier.verify(identifier, password)
        self.store.update_last_login(user.id)
        logger.info("Login succeeded for user_id=%s", user.id)
        return AuthResult(user=user, tokens=self.tokens.issue(user))

    def refresh(self, refresh_token: str | None) -> AuthResult:
        """Rotate a refresh token into a new pair.

        Any token problem becomes AuthenticationFailed: the client must log in
        again with a password.
        """
        if not refresh_token or not refresh_token.strip():
            raise ValidationError("Refresh token is required.")
        try:
            user, pair = self.tokens.refresh(refresh_token.strip())
        except TokenError as exc:
            logger.info("Refresh rejected: %s", exc.reason)
            raise AuthenticationFailed.from_token_error(exc) from exc
        logger.info("Refreshed tokens for user_id=%s", user.id)
        return AuthResult(user=user, tokens=pair)

    def logout(self, user: UserIdentity) -> None:
        """Stateless: the client discards its tokens. Nothing is revoked server-side."""
        logger.info("Logout for user_id=%s", user.id)
