"""Unit tests for core/config.py -- Settings validation."""

import pytest

from core.config import Settings

GOOD_KEY = "k" * 32


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("SECRET_KEY", "DEBUG", "BCRYPT_ROUNDS", "RATE_LIMIT_PROFILE"):
        monkeypatch.delenv(name, raising=False)


def test_secret_required_in_production():
    with pytest.raises(ValueError, match="SECRET_KEY is required"):
        Settings(debug=False)


def test_debug_generates_secret():
    settings = Settings(debug=True)
    assert len(settings.secret_key) >= 32


def test_short_secret_rejected():
    with pytest.raises(ValueError, match="at least 32"):
        Settings(secret_key="too-short")


def test_secret_read_from_environment(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", GOOD_KEY)
    monkeypatch.setenv("RATE_LIMIT_PROFILE", "relaxed")
    settings = Settings()
    assert settings.secret_key == GOOD_KEY
    assert settings.rate_limit_profile == "relaxed"


def test_defaults():
    settings = Settings(secret_key=GOOD_KEY)
    assert settings.access_token_expire_seconds == 15 * 60
    assert settings.refresh_token_expire_seconds == 7 * 24 * 3600
    assert settings.rate_limit_profile == "strict"
    assert settings.rate_limit_fail_open is False
    assert settings.bcrypt_rounds >= 10


def test_access_must_expire_before_refresh():
    with pytest.raises(ValueError, match="shorter than"):
        Settings(secret_key=GOOD_KEY, access_token_expire_seconds=3600, refresh_token_expire_seconds=3600)


def test_bcrypt_cost_floor():
    with pytest.raises(ValueError):
        Settings(secret_key=GOOD_KEY, bcrypt_rounds=4)
