from pathlib import Path

from smart_upload.config.settings import Settings
from smart_upload.database.models import JobRecord, JobType
from smart_upload.database.repositories.job_repository import JobRepository
from smart_upload.database.repositories.upload_sessions_repository import (
    UploadSessionsRepository,
)
from smart_upload.extraction.base import BaseExtractor
from smart_upload.extraction.factory import ExtractorFactory
from smart_upload.logging.logger import Log
from smart_upload.pdf.base import BaseDocumentRenderer
from smart_upload.pdf.factory import DocumentRendererFactory
from smart_upload.pdf.render_cache import RenderCache
from smart_upload.pdf.splitter import PdfSplitter
from smart_upload.processor.budget import SessionBudget
from smart_upload.processor.models import PipelineState
from smart_upload.processor.pipeline import PipelineContext, PipelineStep
from smart_upload.processor.steps import (
    AutoCommitStep,
    BeginSecondPassStep,
    DownloadDocumentStep,
    ExtractMetadataStep,
    HeaderLabelStep,
    LoadSessionStep,
    MarkSecondPassFailedStep,
    PersistSessionStep,
    QualityGateStep,
    QueueAutoCommitStep,
    QueueSecondPassStep,
    RecordSessionErrorStep,
    RenderPagesStep,
    RouteStep,
    SegmentStep,
    SplitStep,
    VerifyStep,
)
from smart_upload.segmentation.segmenter import DeterministicSegmenter
from smart_upload.storage.base import BaseStorageGateway
from smart_upload.storage.factory import StorageGatewayFactory


class Processor:
    """Runs one job's pipeline steps in order inside a render cache scope.

    On failure the failed_step (if any) records the error, then the
    exception is re-raised so the job runner can apply the retry policy.
    """

    def __init__(
        self,
        steps: list[PipelineStep],
        failed_step: PipelineStep | None = None,
        max_model_calls: int = 0,
    ) -> None:
        self._steps = steps
        self._failed_step = failed_step
        self._max_model_calls = max_model_calls

    def process(self, job: JobRecord) -> PipelineContext:
        Log.info(f"Processing session {job.session_id} for job {job.id} ({job.job_type.value})")
        with RenderCache(job.session_id) as cache:
            context = PipelineContext(
                job=job,
                render_cache=cache,
                budget=SessionBudget(job.session_id, self._max_model_calls),
            )
            state: PipelineState | None = None
            try:
                for step in self._steps:
                    if step.state != state:
                        Log.info(
                            f"Session {job.session_id}: "
                            f"{state.value if state else 'START'} -> {step.state.value}"
                        )
                        state = step.state
                    context = step.run(context)
                    if context.halted:
                        break
            except Exception as exc:
                context.error = exc
                context.error_message = str(exc)
                if self._failed_step is not None:
                    self._run_failed_step(self._failed_step, context)
                raise
        Log.info(f"Session {job.session_id}: {state.value if state else 'START'} -> DONE")
        return context

    @staticmethod
    def _run_failed_step(step: PipelineStep, context: PipelineContext) -> None:
        try:
            step.run(context)
        except Exception as exc:
            Log.error(f"Session {context.session_id}: could not record failure: {exc}")


def build_processors(
    settings: Settings,
    job_repo: JobRepository,
    files_root: Path | None = None,
) -> dict[JobType, Processor]:
    """Build one Processor per job type with all required adapters."""
    sessions_repo = UploadSessionsRepository()
    storage = StorageGatewayFactory.create(settings, files_root=files_root)
    renderer = DocumentRendererFactory.create(settings)
    extractor = ExtractorFactory.create(settings)
    return {
        JobType.PROCESS: build_first_pass_processor(
            settings, job_repo, sessions_repo, storage, renderer, extractor
        ),
        JobType.SECOND_PASS: build_second_pass_processor(
            settings, job_repo, sessions_repo, storage, renderer, extractor
        ),
        JobType.AUTO_COMMIT: Processor(
            steps=[
                LoadSessionStep(sessions_repo),
                AutoCommitStep(sessions_repo, settings),
            ]
        ),
    }


def build_first_pass_processor(
    settings: Settings,
    job_repo: JobRepository,
    sessions_repo: UploadSessionsRepository,
    storage: BaseStorageGateway,
    renderer: BaseDocumentRenderer,
    extractor: BaseExtractor,
) -> Processor:
    segmenter = DeterministicSegmenter()
    steps: list[PipelineStep] = [
        LoadSessionStep(sessions_repo),
        DownloadDocumentStep(storage, renderer, settings.max_file_size_bytes),
        RenderPagesStep(renderer, settings.max_pages),
        SegmentStep(segmenter, settings.segmentation_trust_threshold),
        HeaderLabelStep(renderer, extractor, segmenter, settings.header_label_pass_enabled),
        ExtractMetadataStep(extractor, settings.ocr_first_enabled),
        RouteStep(settings.skip_parse_threshold, settings.auto_approve_threshold),
        SplitStep(PdfSplitter(), storage, settings.storage_namespace),
        QualityGateStep(settings),
        PersistSessionStep(sessions_repo),
        QueueSecondPassStep(job_repo),
        QueueAutoCommitStep(job_repo),
    ]
    return Processor(
        steps=steps,
        failed_step=RecordSessionErrorStep(sessions_repo),
        max_model_calls=settings.max_llm_calls_per_session,
    )


def build_second_pass_processor(
    settings: Settings,
    job_repo: JobRepository,
    sessions_repo: UploadSessionsRepository,
    storage: BaseStorageGateway,
    renderer: BaseDocumentRenderer,
    extractor: BaseExtractor,
) -> Processor:
    steps: list[PipelineStep] = [
        LoadSessionStep(sessions_repo),
        BeginSecondPassStep(sessions_repo),
        DownloadDocumentStep(storage, renderer, settings.max_file_size_bytes),
        RenderPagesStep(renderer, settings.max_pages, scan_headers=False),
        VerifyStep(extractor),
        SplitStep(PdfSplitter(), storage, settings.storage_namespace),
        QualityGateStep(settings, second_pass=True),
        PersistSessionStep(sessions_repo, second_pass=True),
        QueueAutoCommitStep(job_repo),
    ]
    return Processor(
        steps=steps,
        failed_step=MarkSecondPassFailedStep(sessions_repo),
        max_model_calls=settings.max_llm_calls_per_session,
    )
