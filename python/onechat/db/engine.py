"""SQLAlchemy engine for the thread, message and attachment tables.

One engine per process. The API holds a connection only while a request
or a chat stream writes; the worker opens one per task run.
"""

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from onechat.config import get_settings

POSTGRES_DRIVER = "postgresql+psycopg"
_BARE_SCHEMES = ("postgres://", "postgresql://")


def normalize_database_url(database_url: str) -> str:
    """Pin Postgres URLs to the psycopg 3 driver.

    Hosted databases hand out ``postgres://`` or ``postgresql://`` URLs,
    which SQLAlchemy would route to psycopg2. Other schemes pass through.
    """
    for scheme in _BARE_SCHEMES:
        if database_url.startswith(scheme):
            return f"{POSTGRES_DRIVER}://{database_url[len(scheme):]}"
    return database_url


def create_db_engine(database_url: str | None = None) -> Engine:
    if database_url is None:
        database_url = get_settings().database_url

    return create_engine(
        normalize_database_url(database_url),
        pool_pre_ping=True,
        echo=False,
    )


@lru_cache
def get_engine() -> Engine:
    return create_db_engine()
