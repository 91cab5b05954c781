"""
tests/conftest.py -- Shared test fixtures for AuthGate.

This module provides:
  - make_settings(): explicit Settings with a fixed test secret
  - make_store_url(): a unique named shared-memory SQLite URL per call
  - seed_user(): insert a user straight into a store (skips HTTP + limiter)
  - settings / store / token_service fixtures
  - client: TestClient over the real app with an isolated store
  - make_client: factory for clients with non-default settings or options

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the process; the
uuid suffix keeps every test's database separate.

Every client gets a brand-new app, so rate-limit counters never leak between
tests.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Generator
from contextlib import ExitStack

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from auth.credentials import hash_password
from auth.models import Role, UserIdentity
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import Settings

TEST_SECRET = "authgate-test-secret-key-0123456789abcdef"
TEST_ROUNDS = 10


def make_settings(**overrides) -> Settings:
    values = {
        "secret_key": TEST_SECRET,
        "debug": False,
        "bcrypt_rounds": TEST_ROUNDS,
        "rate_limit_profile": "strict",
        "rate_limit_storage_uri": "memory://",
    }
    values.update(overrides)
    return Settings(**values)


def make_store_url() -> str:
    return f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def seed_user(
    store: UserStore,
    username: str = "bob",
    password: str = "bobpassword1",
    role: Role = Role.user,
    email: str | None = None,
) -> UserIdentity:
    """Insert a user directly and return the stored identity (with id)."""
    user_id = store.create(
        UserIdentity(
            username=username,
            email=email or f"{username}@example.com",
            password_hash=hash_password(password, rounds=TEST_ROUNDS),
            role=role,
        )
    )
    return store.get_by_id(user_id)


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore(make_store_url())
    yield s
    s.close()


@pytest.fixture
def token_service(settings: Settings, store: UserStore) -> TokenService:
    return TokenService(settings, store)


@pytest.fixture
def make_client(store: UserStore) -> Generator[Callable[..., TestClient], None, None]:
    """Return a factory: make_client(settings=None, **testclient_kwargs) -> started TestClient.

    All clients built by one test share that test's store.
    """
    with ExitStack() as stack:

        def factory(settings: Settings | None = None, **kwargs) -> TestClient:
            app = create_app(settings or make_settings(), user_store=store)
            kwargs.setdefault("raise_server_exceptions", True)
            return stack.enter_context(TestClient(app, **kwargs))

        yield factory


@pytest.fixture
def client(make_client: Callable[..., TestClient]) -> TestClient:
    return make_client()
