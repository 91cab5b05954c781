"""
auth/credentials.py -- Password hashing and username/password verification.

Security design decisions:
  bcrypt, used directly (no passlib wrapper). The cost factor comes from
  Settings.bcrypt_rounds, which refuses anything below 10.

  Passwords longer than 72 bytes are rejected at the API layer
  (api/models.py) because bcrypt only looks at the first 72 bytes and
  bcrypt >= 4.1 raises on longer input.

  Timing equalization [C1]: CredentialVerifier hashes a dummy password once
  at construction and checks against it whenever the account does not
  exist, so "unknown user" and "wrong password" cost the same bcrypt work
  and produce the same InvalidCredentials.

  Lookup policy (the only one in the codebase): username first, then email
  when the identifier contains "@". Usernames cannot contain "@", so an
  identifier can only ever match one account.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import bcrypt

from auth.errors import InvalidCredentials

if TYPE_CHECKING:
    from auth.models import UserIdentity
    from auth.store import CredentialStore
    from core.config import Settings

logger = logging.getLogger("authgate.auth")


# bcrypt only reads the first 72 bytes of a password.
MAX_PASSWORD_BYTES = 72


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares in constant time. Passwords longer than
    MAX_PASSWORD_BYTES never match: no stored hash was made from one, and
    bcrypt refuses them outright. A corrupt stored hash raises ValueError
    inside bcrypt; that is a mismatch, not a server error.
    """
    secret = plain.encode("utf-8")
    if len(secret) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(secret, hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash could not be parsed")
        return False


class CredentialVerifier:
    """Resolve an identifier + password to a UserIdentity or raise InvalidCredentials."""

    def __init__(self, store: CredentialStore, settings: Settings) -> None:
        self.store = store
        self.rounds = settings.bcrypt_rounds
        # Same cost factor as real hashes, so the dummy check takes as long.
        self._dummy_hash = hash_password("authgate_timing_dummy", rounds=self.rounds)

    def hash(self, plain: str) -> str:
        return hash_password(plain, rounds=self.rounds)

    def lookup(self, identifier: str) -> UserIdentity | None:
        """Apply the canonical lookup policy: username, then email for '@' identifiers."""
        user = self.store.get_by_username(identifier)
        if user is None and "@" in identifier:
            user = self.store.get_by_email(identifier)
        return user

    def verify(self, identifier: str, password: str) -> UserIdentity:
        """Authenticate a local login with timing equalization [C1].

        Always runs bcrypt whether or not the user exists. Raises
        InvalidCredentials on any failure -- unknown identifier, wrong
        password and deactivated account are indistinguishable to the caller.
        """
        user = self.lookup(identifier.strip())
        if user is None:
            # Do NOT return before running bcrypt [C1]
            verify_password(password, self._dummy_hash)
            logger.info("Login failed: unknown identifier")
            raise InvalidCredentials()
        if not verify_password(password, user.password_hash):
            logger.info("Login failed: bad password for user_id=%s", user.id)
            raise InvalidCredentials()
        if not user.is_active:
            logger.info("Login failed: inactive user_id=%s", user.id)
            raise InvalidCredentials()
        return user
