import threading

import psycopg

from smart_upload.config.settings import Settings
from smart_upload.database.connection import get_connection
from smart_upload.database.models import JobRecord
from smart_upload.database.repositories.job_repository import JobRepository
from smart_upload.logging.logger import Log
from smart_upload.worker.job_runner import JobRunner


class Worker:
    """Poll loop: sleep -> claim -> dispatch."""

    def __init__(
        self,
        job_repo: JobRepository,
        job_runner: JobRunner,
        settings: Settings,
        stop_event: threading.Event | None = None,
    ) -> None:
        self._job_repo = job_repo
        self._job_runner = job_runner
        self._settings = settings
        self._stop_event = stop_event or threading.Event()

    def run(self, max_jobs: int | None = None) -> None:
        """Main poll loop. Runs until the stop event is set.

        If max_jobs is set, stop after processing that many jobs (for testing).
        The job in progress always runs to completion.
        """
        Log.info("Worker started, polling for jobs")
        jobs_done = 0
        while not self._stop_event.is_set():
            if max_jobs is not None and jobs_done >= max_jobs:
                break
            job = self._try_claim_job()
            if job:
                self._job_runner.run(job)
                jobs_done += 1
            else:
                Log.debug("No jobs available, sleeping")
                self._stop_event.wait(self._settings.job_poll_interval_seconds)
        Log.info("Worker shutting down gracefully")

    def _try_claim_job(self) -> JobRecord | None:
        """Attempt to claim the next pending job. Gracefully handle DB errors."""
        try:
            with get_connection() as conn:
                return self._job_repo.claim_next_job(conn)
        except psycopg.Error as exc:
            Log.warning(f"Database error, will retry: {exc}")
            return None
