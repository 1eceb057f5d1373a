from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobType(str, Enum):
    """Kinds of work carried by the smart_upload_jobs queue."""

    PROCESS = "process"
    SECOND_PASS = "secondPass"
    AUTO_COMMIT = "autoCommit"


# Higher value is claimed first.
JOB_PRIORITIES: dict[JobType, int] = {
    JobType.PROCESS: 5,
    JobType.SECOND_PASS: 10,
    JobType.AUTO_COMMIT: 15,
}


@dataclass
class JobRecord:
    """Represents a row from the smart_upload_jobs table."""

    id: int
    session_id: str
    job_type: JobType
    status: str
    attempts: int
    max_attempts: int = 3
    priority: int = 0
    backoff_seconds: int = 5
    payload: dict[str, Any] = field(default_factory=dict)
    error_message: str | None = None
    run_at: datetime | None = None
    locked_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_final_attempt(self) -> bool:
        return self.attempts + 1 >= self.max_attempts
