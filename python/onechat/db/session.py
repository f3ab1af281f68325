"""Database sessions.

- get_db(): request-scoped session for route handlers
- session_scope(): session for code outside a request (Celery tasks,
  seeding), rolled back on error and always closed
- The chat stream outlives its request, so it takes the session factory
  itself (see ChatDeps.db_factory) rather than the request session
"""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from onechat.db.engine import get_engine

_SessionLocal: sessionmaker[Session] | None = None


def create_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine if engine is not None else get_engine(),
        autocommit=False,
        autoflush=False,
        # Messages are serialized after commit (SSE finish event, cache writes).
        expire_on_commit=False,
    )


def get_session_factory() -> sessionmaker[Session]:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = create_session_factory()
    return _SessionLocal


def set_session_factory(factory: sessionmaker[Session] | None) -> None:
    """Replace the default factory. Tests install a SQLite-bound one."""
    global _SessionLocal
    _SessionLocal = factory


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a session closed after the response."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Session for work outside a request.

    Commits are left to the caller (services commit their own writes).
    Any exception rolls back pending work before it propagates.

        with session_scope() as db:
            sweep_stale_messages_once(db, redis_client)
    """
    db = get_session_factory()()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
