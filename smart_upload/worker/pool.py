import threading
from collections.abc import Callable

from smart_upload.config.settings import Settings
from smart_upload.database.repositories.job_repository import JobRepository
from smart_upload.logging.logger import Log
from smart_upload.worker.job_runner import JobRunner
from smart_upload.worker.worker import Worker


class WorkerPool:
    """Runs max_concurrent worker poll loops on threads sharing one stop event."""

    def __init__(
        self,
        job_repo: JobRepository,
        job_runner: JobRunner,
        settings: Settings,
        worker_factory: Callable[..., Worker] = Worker,
    ) -> None:
        self._settings = settings
        self._stop_event = threading.Event()
        self._workers = [
            worker_factory(job_repo, job_runner, settings, self._stop_event)
            for _ in range(max(1, settings.max_concurrent))
        ]
        self._threads: list[threading.Thread] = []

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def start(self) -> None:
        for index, worker in enumerate(self._workers, start=1):
            thread = threading.Thread(target=worker.run, name=f"worker-{index}", daemon=True)
            thread.start()
            self._threads.append(thread)
        Log.info(f"Started {len(self._threads)} workers")

    def stop(self) -> None:
        """Ask workers to exit after their current job."""
        self._stop_event.set()

    def join(self, timeout: float | None = None) -> None:
        for thread in self._threads:
            thread.join(timeout)

    def run(self) -> None:
        """Start workers and block until they exit; Ctrl+C requests a graceful stop."""
        self.start()
        try:
            while any(thread.is_alive() for thread in self._threads):
                for thread in self._threads:
                    thread.join(0.5)
        except KeyboardInterrupt:
            Log.info("Interrupt received, waiting for workers to finish current jobs")
            self.stop()
            self.join()
        Log.info("Worker pool stopped")
