from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

import psycopg
from psycopg.conninfo import make_conninfo
from psycopg_pool import ConnectionPool

from smart_upload.config.settings import Settings

APPLICATION_NAME = "smart-upload-worker"

_pool: ConnectionPool | None = None


def build_conninfo(settings: Settings) -> str:
    """Connection string for the sessions database, tagged with the worker's name."""
    return make_conninfo(
        host=settings.db_host,
        port=settings.db_port,
        dbname=settings.db_database,
        user=settings.db_username,
        password=settings.db_password,
        application_name=APPLICATION_NAME,
    )


def pool_size(settings: Settings) -> int:
    """Every worker thread may hold a connection while another claims a job."""
    return max(settings.db_pool_max_size, settings.max_concurrent + 1)


def init_pool(settings: Settings) -> None:
    """Open the process-wide pool shared by all worker threads."""
    global _pool  # noqa: PLW0603
    _pool = ConnectionPool(
        build_conninfo(settings),
        min_size=1,
        max_size=pool_size(settings),
        name="smart-upload",
        open=True,
    )


def close_pool() -> None:
    global _pool  # noqa: PLW0603
    if _pool is not None:
        _pool.close()
        _pool = None


@contextmanager
def get_connection() -> Generator[psycopg.Connection[Any], None, None]:
    """Yield a pooled connection. Callers commit their own writes."""
    if _pool is None:
        raise RuntimeError("Connection pool not initialized. Call init_pool() first.")
    with _pool.connection() as conn:
        yield conn
