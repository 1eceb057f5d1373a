import os
import uuid
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import psycopg
import pytest

from smart_upload.config.settings import Settings
from smart_upload.database.connection import close_pool, get_connection, init_pool

SCHEMA_PATH = Path(__file__).resolve().parents[2] / "sql" / "schema.sql"


def _test_settings() -> Settings:
    os.environ.setdefault("DB_DATABASE", "smart_upload_test")
    return Settings()


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return _test_settings()


@pytest.fixture(scope="session")
def integration_pool(test_settings: Settings) -> Generator[None, None, None]:
    try:
        init_pool(test_settings)
        with get_connection() as conn:
            conn.execute(SCHEMA_PATH.read_text())
            conn.commit()
    except Exception as e:
        close_pool()
        pytest.skip(
            f"PostgreSQL test DB not available: {e}. "
            "Set DB_* env to point at an empty test database"
        )
    try:
        yield
    finally:
        close_pool()


@pytest.fixture
def db_conn(integration_pool: None) -> Generator[psycopg.Connection[Any], None, None]:
    with get_connection() as conn:
        yield conn


@pytest.fixture
def integration_cleanup(integration_pool: None) -> Generator[list[str], None, None]:
    """Collects session ids; their jobs and the sessions are deleted after the test."""
    session_ids: list[str] = []
    yield session_ids
    if not session_ids:
        return
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "DELETE FROM smart_upload_jobs WHERE session_id = ANY(%s)", (session_ids,)
            )
            cur.execute(
                "DELETE FROM smart_upload_sessions WHERE id = ANY(%s)", (session_ids,)
            )
        conn.commit()


@pytest.fixture
def seed_session(
    db_conn: psycopg.Connection[Any],
    integration_cleanup: list[str],
) -> Callable[..., str]:
    """Insert an upload session and return its id."""

    def _seed(file_name: str = "American Patrol.pdf", storage_key: str | None = None) -> str:
        session_id = str(uuid.uuid4())
        db_conn.execute(
            """
            INSERT INTO smart_upload_sessions (id, file_id, uploaded_by, file_name, storage_key)
            VALUES (%s, %s, %s, %s, %s)
            """,
            (
                session_id,
                str(uuid.uuid4()),
                "librarian",
                file_name,
                storage_key or f"uploads/{session_id}.pdf",
            ),
        )
        db_conn.commit()
        integration_cleanup.append(session_id)
        return session_id

    return _seed


@pytest.fixture
def files_root(tmp_path: Path) -> Path:
    return tmp_path
