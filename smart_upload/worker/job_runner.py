from smart_upload.database.models import JobRecord, JobType
from smart_upload.database.repositories.job_repository import JobRepository
from smart_upload.logging.logger import Log
from smart_upload.processor.exceptions import NonRetryableError
from smart_upload.processor.processor import Processor


class JobRunner:
    """Run one job, catch exceptions, and apply retry logic."""

    def __init__(
        self,
        processors: dict[JobType, Processor],
        job_repo: JobRepository,
    ) -> None:
        self._processors = processors
        self._job_repo = job_repo

    def run(self, job: JobRecord) -> None:
        """Execute a single job with error handling."""
        Log.bind_job(job.id)
        try:
            Log.info(
                f"Running job {job.id} ({job.job_type.value}) for session {job.session_id} "
                f"(attempt {job.attempts + 1}/{job.max_attempts})"
            )
            try:
                processor = self._processors.get(job.job_type)
                if processor is None:
                    raise NonRetryableError(
                        f"No processor registered for job type {job.job_type.value}"
                    )
                processor.process(job)
                self._job_repo.mark_done(job.id)
                Log.info(f"Job {job.id} completed successfully")
            except Exception as exc:
                self._handle_failure(job, exc)
        finally:
            Log.bind_job(None)

    def _handle_failure(self, job: JobRecord, exc: Exception) -> None:
        """Fail non-retryable errors at once; otherwise back off, or fail at max attempts."""
        Log.error(f"Job {job.id} failed: {exc}")
        if isinstance(exc, NonRetryableError):
            self._job_repo.mark_failed(job.id, str(exc))
            Log.error(f"Job {job.id} failed permanently: {type(exc).__name__} is not retryable")
        elif job.is_final_attempt:
            self._job_repo.mark_failed(job.id, str(exc))
            Log.error(f"Job {job.id} permanently failed after {job.attempts + 1} attempts")
        else:
            self._job_repo.increment_attempts(job.id, str(exc))
            Log.warning(f"Job {job.id} will be retried (attempt {job.attempts + 1})")
