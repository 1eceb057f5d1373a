from collections.abc import Callable
from pathlib import Path

import pytest

from smart_upload.config.settings import Settings
from smart_upload.database.models import JOB_PRIORITIES, JobType
from smart_upload.database.repositories.job_repository import JobRepository
from smart_upload.database.repositories.upload_sessions_repository import UploadSessionsRepository
from smart_upload.processor.models import ParseStatus, RoutingDecision, SecondPassStatus
from smart_upload.processor.processor import build_processors
from smart_upload.worker.job_runner import JobRunner
from smart_upload.worker.worker import Worker


def _make_worker(settings: Settings, files_root: Path) -> tuple[Worker, JobRepository]:
    job_repo = JobRepository(settings.max_job_attempts, settings.job_backoff_base_seconds)
    processors = build_processors(settings, job_repo, files_root=files_root)
    return Worker(job_repo, JobRunner(processors, job_repo), settings), job_repo


@pytest.mark.integration
class TestWorkerEndToEnd:
    def test_first_pass_then_second_pass(
        self,
        test_settings: Settings,
        seed_session: Callable[..., str],
        files_root: Path,
        make_pdf: Callable[..., bytes],
    ) -> None:
        settings = test_settings.model_copy(
            update={
                "extraction_provider": "example",
                "storage_driver": "local",
                "render_dpi": 20,
                "header_crop_dpi": 20,
                "autonomous_mode_enabled": False,
            }
        )
        session_id = seed_session(storage_key="uploads/march.pdf")
        (files_root / "uploads").mkdir()
        (files_root / "uploads" / "march.pdf").write_bytes(make_pdf([None, None, None]))
        worker, job_repo = _make_worker(settings, files_root)
        job_repo.enqueue(JobType.PROCESS, session_id, priority=JOB_PRIORITIES[JobType.PROCESS])

        worker.run(max_jobs=1)

        session = UploadSessionsRepository().find_by_id(session_id)
        assert session.routing_decision is RoutingDecision.NO_PARSE_SECOND_PASS
        assert session.parse_status is ParseStatus.NOT_PARSED
        assert session.second_pass_status is SecondPassStatus.QUEUED
        assert session.final_confidence == 50
        assert session.total_pages == 3

        worker.run(max_jobs=1)

        session = UploadSessionsRepository().find_by_id(session_id)
        assert session.second_pass_status is SecondPassStatus.DONE
        assert session.parse_status is ParseStatus.PARSED
        assert session.routing_decision is RoutingDecision.NO_PARSE_SECOND_PASS
        assert session.requires_human_review is True
        (part,) = session.parsed_parts
        assert part.instrument == "Full Score"
        assert (part.page_start, part.page_end) == (0, 2)
        assert (files_root / part.storage_key).read_bytes().startswith(b"%PDF")

    def test_missing_file_fails_job_without_retry(
        self,
        test_settings: Settings,
        seed_session: Callable[..., str],
        files_root: Path,
    ) -> None:
        settings = test_settings.model_copy(
            update={"extraction_provider": "example", "storage_driver": "local"}
        )
        session_id = seed_session(storage_key="uploads/missing.pdf")
        worker, job_repo = _make_worker(settings, files_root)
        job_id = job_repo.enqueue(JobType.PROCESS, session_id, priority=5)
        assert job_id is not None

        worker.run(max_jobs=1)

        job = job_repo.find_by_id(job_id)
        assert job is not None
        assert job.status == "failed"
        assert job.attempts == 0
        session = UploadSessionsRepository().find_by_id(session_id)
        assert session.parse_status is ParseStatus.NOT_PARSED
        assert session.requires_human_review is True
        assert "not found" in (session.error_message or "")
