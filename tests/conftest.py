"""
tests/conftest.py -- Shared test fixtures for Shelfguard.

This module provides:
  - FakeClock: a settable UTC clock for throttle and session expiry tests
  - per-test stores on SQLite files under tmp_path
  - auth_service / catalog: services wired to those stores and the fake clock
  - api_client: TestClient with isolated stores and an admin Bearer token

Design: file-backed SQLite (tmp_path) rather than :memory:. The services run
store calls on worker threads (core.bounded.bounded_call), and a plain
:memory: database is per-connection, so each thread would see a blank schema.

Environment variables must be set before any core/auth/api import so the
cached Settings picks them up: DEBUG lets get_settings() auto-generate a
SECRET_KEY, BCRYPT_ROUNDS=4 keeps hashing fast, and ALLOWED_HOSTS admits
TestClient's "testserver" host.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path

# CRITICAL: configure Settings before any project import.
_TMP = Path(tempfile.mkdtemp(prefix="shelfguard-tests-"))
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TMP / 'default.db'}")
os.environ.setdefault("MEDIA_ROOT", str(_TMP / "media"))
os.environ.setdefault("MEDIA_BASE_URL", "http://testserver/media")
os.environ.setdefault("SESSION_CACHE_PATH", str(_TMP / "session.db"))

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import Identity
from auth.service import AuthService
from auth.store import CredentialStore
from auth.throttle import MemoryLoginThrottle
from auth.tokens import PasswordHasher, SessionIssuer
from catalog.media import MediaStore
from catalog.service import CatalogService
from catalog.store import ContentStore
from core.config import get_settings

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def run(coro):
    """Drive one facade coroutine from a synchronous test."""
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'shelfguard.db'}"


@pytest.fixture
def credential_store(db_url: str) -> Generator[CredentialStore, None, None]:
    store = CredentialStore(db_url)
    yield store
    store.close()


@pytest.fixture
def content_store(db_url: str) -> Generator[ContentStore, None, None]:
    store = ContentStore(db_url)
    yield store
    store.close()


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def issuer(clock: FakeClock) -> SessionIssuer:
    return SessionIssuer(TEST_SECRET, lifetime_seconds=24 * 60 * 60, clock=clock)


@pytest.fixture
def auth_service(credential_store, hasher, issuer, clock) -> AuthService:
    return AuthService(
        store=credential_store,
        hasher=hasher,
        issuer=issuer,
        throttle=MemoryLoginThrottle(clock=clock),
        timeout=10.0,
    )


@pytest.fixture
def media(tmp_path: Path) -> MediaStore:
    return MediaStore(tmp_path / "media", "http://testserver/media")


@pytest.fixture
def catalog(content_store, media) -> CatalogService:
    return CatalogService(content_store, media, timeout=10.0)


@pytest.fixture
def admin(auth_service: AuthService) -> Identity:
    return run(auth_service.create_first_admin("root@shop.test", "rootpass1", "Root"))


@pytest.fixture
def alice(auth_service: AuthService) -> Identity:
    identity, _session = run(auth_service.register("alice@shop.test", "alicepass", "Alice"))
    return identity


@pytest.fixture
def bob(auth_service: AuthService) -> Identity:
    identity, _session = run(auth_service.register("bob@shop.test", "bobpass1", "Bob"))
    return identity


# ---------------------------------------------------------------------------
# API integration fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(credential_store: CredentialStore, content_store: ContentStore, media_root: Path):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured database.
    """
    settings = get_settings()

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.credential_store = credential_store
        app.state.content_store = content_store
        app.state.auth_service = AuthService.from_settings(settings, credential_store)
        app.state.catalog = CatalogService(content_store, MediaStore(media_root, settings.media_base_url))
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, str, Identity], None, None]:
    """Yield (client, admin_token, admin_identity) for API integration tests.

    The admin account is created before the client starts; its token is sent
    as a Bearer header. Tests that log in through the API must clear the
    client's cookie jar afterwards, because the session cookie takes priority
    over the Bearer header.
    """
    base = tmp_path_factory.mktemp("api")
    db = f"sqlite:///{base / 'api.db'}"
    credential_store = CredentialStore(db)
    content_store = ContentStore(db)

    bootstrap_service = AuthService.from_settings(get_settings(), credential_store)
    admin_identity = run(bootstrap_service.create_first_admin("admin@shop.test", "adminpass1", "Admin"))
    token = bootstrap_service.issuer.issue(admin_identity).token

    app.router.lifespan_context = _patch_lifespan(credential_store, content_store, base / "media")

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, admin_identity

    content_store.close()
    credential_store.close()
