"""Unit tests for auth/tokens.py -- issue, verify and rotate.

Covers:
- Round trip: verify_access(issue(user).access_token) returns the user's id and role
- Expiry enforcement for both token types
- Tamper rejection, foreign secrets, algorithm pinning (none / HS512)
- Malformed input and token-type confusion
- Legacy subject-claim shim, on and off
- refresh(): rotation, role re-resolution, unknown/inactive subjects
"""

from __future__ import annotations

import base64
import json
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.errors import ExpiredToken, InvalidSignature, MalformedToken, UnknownSubject
from auth.models import Role, UserIdentity
from auth.tokens import ALGORITHM, TokenService
from tests.conftest import TEST_SECRET, make_settings, seed_user


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()


_B64_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"


def _flip_signature(token: str) -> str:
    """Change the first signature character."""
    head, sig = token.rsplit(".", 1)
    replacement = "A" if sig[0] != "A" else "B"
    return f"{head}.{replacement}{sig[1:]}"


# ---------------------------------------------------------------------------
# Issue / verify
# ---------------------------------------------------------------------------


class TestRoundTrip:
    def test_access_claims_match_user(self, store, token_service):
        user = seed_user(store, "carol", role=Role.admin)
        pair = token_service.issue(user)
        claims = token_service.verify_access(pair.access_token)
        assert claims.user_id == user.id
        assert claims.role is Role.admin
        assert claims.expires_at > claims.issued_at

    def test_pair_shape(self, store, token_service):
        user = seed_user(store)
        pair = token_service.issue(user)
        assert pair.token_type == "bearer"
        assert pair.expires_in == 15 * 60
        assert pair.access_token != pair.refresh_token

    def test_access_expires_before_refresh(self, store, token_service):
        user = seed_user(store)
        pair = token_service.issue(user)
        access = token_service.verify_access(pair.access_token)
        refresh = token_service.verify_refresh(pair.refresh_token)
        assert access.expires_at < refresh.expires_at
        assert refresh.user_id == user.id
        assert len(refresh.token_id) == 32

    def test_canonical_claim_names(self, store, token_service):
        user = seed_user(store)
        pair = token_service.issue(user)
        payload = jwt.get_unverified_claims(pair.access_token)
        assert payload["sub"] == str(user.id)
        assert payload["type"] == "access"
        assert "userId" not in payload


class TestExpiry:
    def test_expired_access_token(self, store, token_service):
        user = seed_user(store)
        pair = token_service.issue(user, now=datetime.now(timezone.utc) - timedelta(hours=1))
        with pytest.raises(ExpiredToken):
            token_service.verify_access(pair.access_token)

    def test_expired_refresh_token(self, store, token_service):
        user = seed_user(store)
        pair = token_service.issue(user, now=datetime.now(timezone.utc) - timedelta(days=8))
        with pytest.raises(ExpiredToken):
            token_service.verify_refresh(pair.refresh_token)

    def test_refresh_token_outlives_access_token(self, store, token_service):
        user = seed_user(store)
        pair = token_service.issue(user, now=datetime.now(timezone.utc) - timedelta(hours=1))
        with pytest.raises(ExpiredToken):
            token_service.verify_access(pair.access_token)
        assert token_service.verify_refresh(pair.refresh_token).user_id == user.id


class TestSignature:
    def test_flipped_signature_byte(self, store, token_service):
        user = seed_user(store)
        pair = token_service.issue(user)
        with pytest.raises(InvalidSignature):
            token_service.verify_access(_flip_signature(pair.access_token))
        with pytest.raises(InvalidSignature):
            token_service.verify_refresh(_flip_signature(pair.refresh_token))

    def test_last_signature_character_neighbour(self, store, token_service):
        pair = token_service.issue(seed_user(store))
        head, sig = pair.access_token.rsplit(".", 1)
        neighbour = _B64_ALPHABET[_B64_ALPHABET.index(sig[-1]) ^ 1]
        tampered = f"{head}.{sig[:-1]}{neighbour}"
        assert tampered != pair.access_token
        with pytest.raises(InvalidSignature):
            token_service.verify_access(tampered)

    @pytest.mark.parametrize("position", [0, 5, -1])
    def test_non_alphabet_signature_character(self, store, token_service, position):
        pair = token_service.issue(seed_user(store))
        head, sig = pair.refresh_token.rsplit(".", 1)
        chars = list(sig)
        chars[position] = "!"
        with pytest.raises(InvalidSignature):
            token_service.verify_refresh(f"{head}.{''.join(chars)}")

    def test_padded_signature_rejected(self, store, token_service):
        pair = token_service.issue(seed_user(store))
        with pytest.raises(InvalidSignature):
            token_service.verify_access(pair.access_token + "=")

    def test_foreign_secret_rejected(self, store, token_service):
        user = seed_user(store)
        other = TokenService(make_settings(secret_key="another-secret-that-is-long-enough-123456"), store)
        pair = other.issue(user)
        with pytest.raises(InvalidSignature):
            token_service.verify_access(pair.access_token)

    def test_alg_none_rejected(self, token_service):
        now = int(datetime.now(timezone.utc).timestamp())
        payload = {"sub": "1", "role": "admin", "type": "access", "iat": now, "exp": now + 600}
        token = f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{_b64(payload)}."
        with pytest.raises(InvalidSignature):
            token_service.verify_access(token)

    def test_other_hmac_algorithm_rejected(self, token_service):
        now = datetime.now(timezone.utc)
        claims = {"sub": "1", "role": "user", "type": "access", "iat": now, "exp": now + timedelta(minutes=5)}
        token = jwt.encode(claims, TEST_SECRET, algorithm="HS512")
        with pytest.raises(InvalidSignature):
            token_service.verify_access(token)


class TestMalformed:
    @pytest.mark.parametrize("token", ["", "not-a-token", "a.b", "###.###.###"])
    def test_garbage(self, token_service, token):
        with pytest.raises(MalformedToken):
            token_service.verify_access(token)

    def test_refresh_token_is_not_an_access_token(self, store, token_service):
        pair = token_service.issue(seed_user(store))
        with pytest.raises(MalformedToken):
            token_service.verify_access(pair.refresh_token)

    def test_access_token_is_not_a_refresh_token(self, store, token_service):
        pair = token_service.issue(seed_user(store))
        with pytest.raises(MalformedToken):
            token_service.verify_refresh(pair.access_token)

    def test_missing_exp(self, token_service):
        now = datetime.now(timezone.utc)
        token = jwt.encode({"sub": "1", "role": "user", "type": "access", "iat": now}, TEST_SECRET, algorithm=ALGORITHM)
        with pytest.raises(MalformedToken):
            token_service.verify_access(token)

    def test_unknown_role(self, token_service):
        now = datetime.now(timezone.utc)
        claims = {"sub": "1", "role": "superuser", "type": "access", "iat": now, "exp": now + timedelta(minutes=5)}
        token = jwt.encode(claims, TEST_SECRET, algorithm=ALGORITHM)
        with pytest.raises(MalformedToken):
            token_service.verify_access(token)

    def test_non_numeric_subject(self, token_service):
        now = datetime.now(timezone.utc)
        claims = {"sub": "alice", "role": "user", "type": "access", "iat": now, "exp": now + timedelta(minutes=5)}
        token = jwt.encode(claims, TEST_SECRET, algorithm=ALGORITHM)
        with pytest.raises(MalformedToken):
            token_service.verify_access(token)


class TestLegacySubjectClaims:
    def _legacy_token(self, **claims) -> str:
        now = datetime.now(timezone.utc)
        return jwt.encode({**claims, "iat": now, "exp": now + timedelta(minutes=5)}, TEST_SECRET, algorithm=ALGORITHM)

    @pytest.mark.parametrize("field", ["userId", "user_id", "id"])
    def test_legacy_field_names_accepted(self, token_service, field):
        claims = token_service.verify_access(self._legacy_token(**{field: 7}))
        assert claims.user_id == 7
        assert claims.role is Role.user

    def test_sub_wins_over_legacy_field(self, token_service):
        claims = token_service.verify_access(self._legacy_token(sub="3", userId=9))
        assert claims.user_id == 3

    def test_shim_disabled(self, store):
        strict = TokenService(make_settings(accept_legacy_subject_claims=False), store)
        with pytest.raises(MalformedToken):
            strict.verify_access(self._legacy_token(userId=7))


# ---------------------------------------------------------------------------
# Refresh rotation
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_issues_new_pair(self, store, token_service):
        user = seed_user(store)
        pair = token_service.issue(user)
        refreshed_user, new_pair = token_service.refresh(pair.refresh_token)
        assert refreshed_user.id == user.id
        assert new_pair.refresh_token != pair.refresh_token
        assert token_service.verify_access(new_pair.access_token).user_id == user.id

    def test_picks_up_role_change(self, store, token_service):
        user = seed_user(store)
        pair = token_service.issue(user)
        store.update_user(user.id, role=Role.admin)
        _, new_pair = token_service.refresh(pair.refresh_token)
        assert token_service.verify_access(new_pair.access_token).role is Role.admin

    def test_unknown_subject(self, token_service):
        ghost = UserIdentity(id=999, username="ghost", email="g@example.com", password_hash="x")
        pair = token_service.issue(ghost)
        with pytest.raises(UnknownSubject):
            token_service.refresh(pair.refresh_token)

    def test_deactivated_subject(self, store, token_service):
        user = seed_user(store)
        pair = token_service.issue(user)
        store.update_user(user.id, is_active=False)
        with pytest.raises(UnknownSubject):
            token_service.refresh(pair.refresh_token)

    def test_expired_refresh_token(self, store, token_service):
        user = seed_user(store)
        pair = token_service.issue(user, now=datetime.now(timezone.utc) - timedelta(days=30))
        with pytest.raises(ExpiredToken):
            token_service.refresh(pair.refresh_token)
