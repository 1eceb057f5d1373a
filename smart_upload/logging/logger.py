import logging
import sys
import threading

_LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(threadName)s] [job %(job_id)s] %(message)s"

_job_context = threading.local()


class _JobContextFilter(logging.Filter):
    """Stamps each record with the job id bound to the emitting thread."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "job_id"):
            record.job_id = getattr(_job_context, "job_id", None) or "-"
        return True


class Log:
    """Process-wide logger for the worker threads.

    Each worker thread binds the job it is running so every line it emits
    can be traced back to a queue row.
    """

    _logger: logging.Logger = logging.getLogger("smart_upload")

    @classmethod
    def configure(cls, log_level: str) -> None:
        cls._logger.setLevel(log_level.upper())
        if not cls._logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(logging.Formatter(_LOG_FORMAT))
            handler.addFilter(_JobContextFilter())
            cls._logger.addHandler(handler)

    @classmethod
    def bind_job(cls, job_id: int | None) -> None:
        """Attach job_id to records logged from the current thread; None clears it."""
        _job_context.job_id = job_id

    @classmethod
    def current_job(cls) -> int | None:
        return getattr(_job_context, "job_id", None)

    @classmethod
    def info(cls, message: str, **kwargs: object) -> None:
        cls._logger.info(message, extra=kwargs)

    @classmethod
    def error(cls, message: str, **kwargs: object) -> None:
        cls._logger.error(message, extra=kwargs)

    @classmethod
    def warning(cls, message: str, **kwargs: object) -> None:
        cls._logger.warning(message, extra=kwargs)

    @classmethod
    def debug(cls, message: str, **kwargs: object) -> None:
        cls._logger.debug(message, extra=kwargs)
