"""Pytest configuration and fixtures for OneChat tests.

Test isolation strategy:
- Each test gets a fresh in-memory SQLite schema (create_all / drop_all)
  on a single shared connection, so every session sees committed rows
- Redis is replaced by the in-memory FakeRedis double
- Provider HTTP calls are intercepted with respx
- Auth tests use authenticated_client with tokens minted by MockJwtVerifier
"""

import os
import sys
from collections.abc import Generator
from pathlib import Path

# Settings are read at import time by the app module
os.environ.setdefault("ONECHAT_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")

# Add repo root to sys.path for importing top-level packages (e.g., apps)
_repo_root = Path(__file__).parent.parent.parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from onechat.app import create_app
from onechat.auth.middleware import AuthMiddleware
from onechat.config import clear_settings_cache
from onechat.db.models import Base
from onechat.db.session import create_session_factory, set_session_factory
from onechat.services.thread_cache import ThreadCache
from onechat.storage.client import FakeStorageClient
from tests.helpers import auth_headers, create_test_user_id, wire_app_state
from tests.support.fake_redis import FakeRedis
from tests.support.test_verifier import MockJwtVerifier


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """In-memory SQLite engine with the full schema.

    StaticPool pins one connection so the schema and data survive across
    sessions for the life of the test.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> Generator[sessionmaker[Session], None, None]:
    """Session factory installed as the app default for the test."""
    factory = create_session_factory(engine)
    set_session_factory(factory)
    yield factory
    set_session_factory(None)


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# Shared clients
# =============================================================================


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def storage() -> FakeStorageClient:
    return FakeStorageClient()


@pytest.fixture
def test_user_id() -> str:
    return create_test_user_id()


@pytest.fixture
def app(session_factory, fake_redis: FakeRedis, storage: FakeStorageClient) -> FastAPI:
    """App with test auth and in-memory collaborators.

    The lifespan is never entered (clients are not used as context
    managers), so no real redis or storage connection is attempted.
    """
    app = create_app(skip_auth_middleware=True)
    app.add_middleware(
        AuthMiddleware,
        verifier=MockJwtVerifier(),
        requires_internal_header=False,
        internal_secret=None,
    )
    wire_app_state(app, fake_redis, storage)
    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Test client without credentials."""
    return TestClient(app)


@pytest.fixture
def authenticated_client(app: FastAPI, test_user_id: str) -> TestClient:
    """Test client that sends a valid bearer token for test_user_id."""
    return TestClient(app, headers=auth_headers(test_user_id))


@pytest.fixture
def thread_cache(fake_redis: FakeRedis) -> ThreadCache:
    """Cache over the fake redis that applies deferred effects inline."""
    return ThreadCache(fake_redis)
