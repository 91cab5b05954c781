"""
auth/tokens.py -- Access/refresh token issuance, verification and rotation.

Security design decisions:
  JWT: python-jose with HS256, signed with Settings.secret_key. The expected
       algorithm is pinned: the header is inspected before verification and
       anything other than HS256 (including "none") is InvalidSignature, so a
       token cannot choose its own verification method.

  Two token types share one secret and are told apart by the "type" claim.
       An access token presented to /refresh (or the reverse) is rejected
       as MalformedToken.

  Canonical claims:
       access  -> {sub, role, type="access",  iat, exp}
       refresh -> {sub, jti,  type="refresh", iat, exp}
       "sub" is the user id as a string (RFC 7519 requires a string).

  Legacy subject claims: older clients hold access tokens that carry the user
       id as "userId", "user_id" or "id" and have no "type". When
       Settings.accept_legacy_subject_claims is on, those names are read as a
       fallback for access tokens only. Turn the flag off once every legacy
       token has expired.

  Verification order is: header and payload decodable -> algorithm ->
       signature (the segment must be canonical base64url) -> expiry ->
       claim shape. Each stage raises a distinct error (see auth/errors.py).

  Refresh is stateless: no record of issued refresh tokens is kept, so a
       rotated refresh token stays usable until its own expiry. Logout cannot
       revoke a live access token either. Both follow from having no
       server-side token store.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JOSEError, JWTClaimsError, JWTError
from jose.utils import base64url_decode, base64url_encode

from auth.errors import (
    ExpiredToken,
    InvalidSignature,
    MalformedToken,
    UnknownSubject,
    UpstreamUnavailable,
)
from auth.models import AccessClaims, RefreshClaims, Role, TokenPair, UserIdentity

if TYPE_CHECKING:
    from auth.store import CredentialStore
    from core.config import Settings

logger = logging.getLogger("authgate.auth")

ALGORITHM = "HS256"

_ACCESS = "access"
_REFRESH = "refresh"

# Historical field names for the subject claim, checked in this order.
_LEGACY_SUBJECT_CLAIMS = ("userId", "user_id", "id")

_SIGNATURE_RE = re.compile(r"[A-Za-z0-9_-]+")


def _from_timestamp(value) -> datetime:
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError) as exc:
        raise MalformedToken("Token timestamps are invalid.") from exc


def _load_segment(segment: str) -> dict:
    """Decode a header or payload segment; anything unreadable is MalformedToken."""
    try:
        data = json.loads(base64url_decode(segment.encode("ascii")))
    except ValueError as exc:
        raise MalformedToken() from exc
    if not isinstance(data, dict):
        raise MalformedToken()
    return data


def _is_canonical_signature(segment: str) -> bool:
    if not _SIGNATURE_RE.fullmatch(segment):
        return False
    try:
        return base64url_encode(base64url_decode(segment.encode("ascii"))) == segment.encode("ascii")
    except ValueError:
        return False


class TokenService:
    """Issue and verify signed token pairs.

    Usage:
        tokens = TokenService(settings, store)
        pair = tokens.issue(user)
        claims = tokens.verify_access(pair.access_token)
        user, new_pair = tokens.refresh(pair.refresh_token)
    """

    def __init__(self, settings: Settings, store: CredentialStore) -> None:
        self._secret = settings.secret_key
        self.access_ttl = settings.access_token_expire_seconds
        self.refresh_ttl = settings.refresh_token_expire_seconds
        self.accept_legacy_claims = settings.accept_legacy_subject_claims
        self.store = store

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(self, user: UserIdentity, now: datetime | None = None) -> TokenPair:
        """Build and sign a fresh access + refresh pair for user.

        `now` pins the issue time; tests use it to mint already-expired tokens.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        subject = str(user.id)
        access = self._encode(
            {
                "sub": subject,
                "role": user.role.value,
                "type": _ACCESS,
                "iat": now,
                "exp": now + timedelta(seconds=self.access_ttl),
            }
        )
        refresh = self._encode(
            {
                "sub": subject,
                "jti": secrets.token_hex(16),
                "type": _REFRESH,
                "iat": now,
                "exp": now + timedelta(seconds=self.refresh_ttl),
            }
        )
        return TokenPair(access_token=access, refresh_token=refresh, expires_in=self.access_ttl)

    def _encode(self, claims: dict) -> str:
        try:
            return jwt.encode(claims, self._secret, algorithm=ALGORITHM)
        except JOSEError as exc:
            logger.error("Token signing failed: %s", exc)
            raise UpstreamUnavailable("Token signing failed.") from exc

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def _decode(self, token: str) -> dict:
        """Verify signature and expiry and return the raw payload."""
        segments = token.split(".")
        if len(segments) != 3:
            raise MalformedToken()
        header = _load_segment(segments[0])
        _load_segment(segments[1])

        if header.get("alg") != ALGORITHM:
            raise InvalidSignature("Unexpected signing algorithm.")
        # base64url ignores the low bits of a final partial character, so two
        # different segments can carry the same signature bytes.
        if not _is_canonical_signature(segments[2]):
            raise InvalidSignature()

        try:
            payload = jwt.decode(token, self._secret, algorithms=[ALGORITHM])
        except ExpiredSignatureError as exc:
            raise ExpiredToken() from exc
        except JWTClaimsError as exc:
            raise MalformedToken(str(exc)) from exc
        except JWTError as exc:
            raise InvalidSignature() from exc

        if "exp" not in payload or "iat" not in payload:
            raise MalformedToken("Token is missing iat/exp.")
        return payload

    def _subject(self, payload: dict, allow_legacy: bool) -> int:
        raw = payload.get("sub")
        if raw is None and allow_legacy:
            raw = next((payload[name] for name in _LEGACY_SUBJECT_CLAIMS if name in payload), None)
        try:
            return int(raw)
        except (TypeError, ValueError) as exc:
            raise MalformedToken("Token subject is missing or not a user id.") from exc

    def verify_access(self, token: str) -> AccessClaims:
        """Return the claims of a valid access token.

        Raises MalformedToken, InvalidSignature or ExpiredToken.
        """
        payload = self._decode(token)
        token_type = payload.get("type")
        legacy = token_type is None and self.accept_legacy_claims
        if token_type != _ACCESS and not legacy:
            raise MalformedToken("Not an access token.")

        role_value = payload.get("role", Role.user.value if legacy else None)
        try:
            role = Role(role_value)
        except ValueError as exc:
            raise MalformedToken("Token role is invalid.") from exc

        return AccessClaims(
            user_id=self._subject(payload, allow_legacy=self.accept_legacy_claims),
            role=role,
            issued_at=_from_timestamp(payload["iat"]),
            expires_at=_from_timestamp(payload["exp"]),
        )

    def verify_refresh(self, token: str) -> RefreshClaims:
        """Return the claims of a valid refresh token. Legacy claim names are not accepted here."""
        payload = self._decode(token)
        if payload.get("type") != _REFRESH:
            raise MalformedToken("Not a refresh token.")
        token_id = payload.get("jti")
        if not isinstance(token_id, str) or not token_id:
            raise MalformedToken("Refresh token has no token id.")
        return RefreshClaims(
            user_id=self._subject(payload, allow_legacy=False),
            token_id=token_id,
            issued_at=_from_timestamp(payload["iat"]),
            expires_at=_from_timestamp(payload["exp"]),
        )

    # ------------------------------------------------------------------
    # Rotate
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> tuple[UserIdentity, TokenPair]:
        """Exchange a valid refresh token for a brand-new pair.

        The user is re-read from the store so role changes and deactivations
        since issuance take effect immediately. Missing or inactive users
        raise UnknownSubject.
        """
        claims = self.verify_refresh(refresh_token)
        user = self.store.get_by_id(claims.user_id)
        if user is None or not user.is_active:
            raise UnknownSubject()
        return user, self.issue(user)
