from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from smart_upload.database.connection import get_connection
from smart_upload.database.models import JobRecord, JobType

_JOB_COLUMNS = """
    id, session_id, job_type, status, attempts, max_attempts, priority,
    backoff_seconds, payload, error_message, run_at, locked_at,
    created_at, updated_at
"""


class JobRepository:
    """Database operations for the smart_upload_jobs table."""

    def __init__(self, max_attempts: int, backoff_base_seconds: int = 5) -> None:
        self._max_attempts = max_attempts
        self._backoff_base_seconds = backoff_base_seconds

    def claim_next_job(self, conn: psycopg.Connection[Any]) -> JobRecord | None:
        """Claim the highest-priority due job using SELECT FOR UPDATE SKIP LOCKED."""
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                SELECT {_JOB_COLUMNS}
                FROM smart_upload_jobs
                WHERE status = 'pending'
                  AND attempts < max_attempts
                  AND run_at <= NOW()
                ORDER BY priority DESC, created_at
                LIMIT 1
                FOR UPDATE SKIP LOCKED
                """
            )
            row = cur.fetchone()

        if row is None:
            conn.commit()
            return None

        conn.execute(
            """
            UPDATE smart_upload_jobs
            SET status = 'processing', locked_at = NOW(), updated_at = NOW()
            WHERE id = %s
            """,
            (row["id"],),
        )
        conn.commit()

        job = _row_to_job(row)
        job.status = "processing"
        return job

    def enqueue(
        self,
        job_type: JobType,
        session_id: str,
        *,
        priority: int,
        max_attempts: int | None = None,
        backoff_seconds: int | None = None,
        payload: dict[str, Any] | None = None,
    ) -> int | None:
        """Insert a pending job unless the session already has one of this type waiting.

        Returns:
            The new job id, or None when an equivalent pending job exists.
        """
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO smart_upload_jobs
                        (session_id, job_type, status, attempts, max_attempts,
                         priority, backoff_seconds, payload, run_at)
                    SELECT %s, %s, 'pending', 0, %s, %s, %s, %s, NOW()
                    WHERE NOT EXISTS (
                        SELECT 1 FROM smart_upload_jobs
                        WHERE session_id = %s AND job_type = %s AND status = 'pending'
                    )
                    RETURNING id
                    """,
                    (
                        session_id,
                        job_type.value,
                        max_attempts if max_attempts is not None else self._max_attempts,
                        priority,
                        (
                            backoff_seconds
                            if backoff_seconds is not None
                            else self._backoff_base_seconds
                        ),
                        Jsonb(payload or {}),
                        session_id,
                        job_type.value,
                    ),
                )
                row = cur.fetchone()
            conn.commit()
        return row[0] if row is not None else None

    def mark_done(self, job_id: int) -> None:
        """Mark a job as done."""
        with get_connection() as conn:
            conn.execute(
                """
                UPDATE smart_upload_jobs
                SET status = 'done', locked_at = NULL, updated_at = NOW()
                WHERE id = %s
                """,
                (job_id,),
            )
            conn.commit()

    def mark_failed(self, job_id: int, error: str) -> None:
        """Mark a job as permanently failed."""
        with get_connection() as conn:
            conn.execute(
                """
                UPDATE smart_upload_jobs
                SET status = 'failed', error_message = %s,
                    locked_at = NULL, updated_at = NOW()
                WHERE id = %s
                """,
                (error, job_id),
            )
            conn.commit()

    def increment_attempts(self, job_id: int, error: str | None = None) -> None:
        """Increment attempt count and reschedule with exponential backoff.

        The next run is delayed by backoff_seconds * 2^attempts, measured from
        the attempt count before this increment.
        """
        with get_connection() as conn:
            conn.execute(
                """
                UPDATE smart_upload_jobs
                SET run_at = NOW() + make_interval(secs => backoff_seconds * POWER(2, attempts)),
                    attempts = attempts + 1,
                    status = 'pending',
                    error_message = %s,
                    locked_at = NULL,
                    updated_at = NOW()
                WHERE id = %s
                """,
                (error, job_id),
            )
            conn.commit()

    def cancel_pending(self, session_id: str) -> int:
        """Cancel every pending job of a session. In-flight jobs are left alone.

        Returns:
            Number of jobs cancelled.
        """
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE smart_upload_jobs
                    SET status = 'cancelled', updated_at = NOW()
                    WHERE session_id = %s AND status = 'pending'
                    """,
                    (session_id,),
                )
                cancelled = cur.rowcount
            conn.commit()
        return cancelled

    def find_by_id(self, job_id: int) -> JobRecord | None:
        """Find a job by ID. Useful for tests."""
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_JOB_COLUMNS}
                    FROM smart_upload_jobs
                    WHERE id = %s
                    """,
                    (job_id,),
                )
                row = cur.fetchone()

        if row is None:
            return None
        return _row_to_job(row)


def _row_to_job(row: dict[str, Any]) -> JobRecord:
    return JobRecord(
        id=row["id"],
        session_id=str(row["session_id"]),
        job_type=JobType(row["job_type"]),
        status=row["status"],
        attempts=row["attempts"],
        max_attempts=row["max_attempts"],
        priority=row["priority"],
        backoff_seconds=row["backoff_seconds"],
        payload=row.get("payload") or {},
        error_message=row.get("error_message"),
        run_at=row.get("run_at"),
        locked_at=row.get("locked_at"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )
