from smart_upload.config.settings import Settings
from smart_upload.database.connection import close_pool, init_pool
from smart_upload.database.repositories.job_repository import JobRepository
from smart_upload.logging.logger import Log
from smart_upload.processor.processor import build_processors
from smart_upload.worker.job_runner import JobRunner
from smart_upload.worker.pool import WorkerPool


def main() -> None:
    """Entry point: initialize pool -> build dependencies -> start worker pool."""
    settings = Settings()
    Log.configure(settings.log_level)
    init_pool(settings)

    try:
        job_repo = JobRepository(settings.max_job_attempts, settings.job_backoff_base_seconds)
        processors = build_processors(settings, job_repo)
        job_runner = JobRunner(processors, job_repo)
        pool = WorkerPool(job_repo, job_runner, settings)
        pool.run()
    finally:
        close_pool()


if __name__ == "__main__":
    main()
