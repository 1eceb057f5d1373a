from dataclasses import replace
from datetime import datetime, timezone

from smart_upload.config.settings import Settings
from smart_upload.database.models import JOB_PRIORITIES, JobType
from smart_upload.database.repositories.job_repository import JobRepository
from smart_upload.database.repositories.upload_sessions_repository import (
    UploadSessionsRepository,
)
from smart_upload.extraction.base import BaseExtractor
from smart_upload.extraction.extractor import HEADER_LABEL_BATCH_SIZE
from smart_upload.extraction.filename_metadata import metadata_from_filename
from smart_upload.extraction.models import ExtractedMetadata, ExtractionOutcome, ParsedExtraction
from smart_upload.extraction.prompt_loader import PROMPT_VERSION
from smart_upload.extraction.sampling import sample_page_indices
from smart_upload.logging.logger import Log
from smart_upload.parts.instructions import normalize_instructions
from smart_upload.parts.models import CuttingInstruction, PartDescriptor
from smart_upload.parts.naming import build_part_display_name, normalize_instrument_label
from smart_upload.pdf.base import BaseDocumentRenderer
from smart_upload.pdf.exceptions import PdfError
from smart_upload.pdf.splitter import PdfSplitter
from smart_upload.processor.exceptions import (
    DocumentRejectedError,
    ExtractionMalformedError,
    NonRetryableError,
)
from smart_upload.processor.gates import GateInput, all_passed, evaluate_gates, gate_input_from_session
from smart_upload.processor.models import (
    ParseStatus,
    PipelineState,
    RoutingDecision,
    SecondPassStatus,
)
from smart_upload.processor.pipeline import PipelineContext, PipelineStep
from smart_upload.processor.routing import compute_final_confidence, decide_route
from smart_upload.segmentation.models import PageLabel
from smart_upload.segmentation.segmenter import DeterministicSegmenter
from smart_upload.storage.base import BaseStorageGateway, part_storage_key
from smart_upload.storage.exceptions import StorageObjectNotFoundError

SINGLE_SCORE_MAX_PAGES = 30

_SECOND_PASS_ROUTES = frozenset(
    {RoutingDecision.AUTO_PARSE_SECOND_PASS, RoutingDecision.NO_PARSE_SECOND_PASS}
)


def single_score_instruction(
    metadata: ExtractedMetadata, total_pages: int
) -> CuttingInstruction | None:
    """One full-score part covering the document, for short scores with no instructions."""
    if not metadata.is_score or total_pages > SINGLE_SCORE_MAX_PAGES:
        return None
    return CuttingInstruction(
        part_name="Full Score",
        instrument="Full Score",
        page_start=0,
        page_end=total_pages - 1,
        section="Score",
        transposition="C",
        part_number=1,
    )


def find_disagreements(
    first: ExtractedMetadata,
    first_instructions: list[CuttingInstruction],
    second: ExtractedMetadata,
    second_instructions: list[CuttingInstruction],
) -> list[str]:
    """Fields on which two extraction passes disagree, compared case-insensitively."""
    disagreements: list[str] = []
    if _fold(first.title) != _fold(second.title):
        disagreements.append("title")
    if first.composer and second.composer and _fold(first.composer) != _fold(second.composer):
        disagreements.append("composer")
    first_set = {_fold(i.instrument) for i in first_instructions if not i.synthesized}
    second_set = {_fold(i.instrument) for i in second_instructions if not i.synthesized}
    if first_set and second_set and first_set != second_set:
        disagreements.append("instruments")
    return disagreements


def _fold(value: str | None) -> str:
    return (value or "").strip().casefold()


class LoadSessionStep(PipelineStep):
    state = PipelineState.DOWNLOADING

    def __init__(self, sessions_repo: UploadSessionsRepository) -> None:
        self._sessions_repo = sessions_repo

    def run(self, context: PipelineContext) -> PipelineContext:
        context.session = self._sessions_repo.find_by_id(context.session_id)
        return context


class DownloadDocumentStep(PipelineStep):
    """Fetches and validates the source PDF.

    Rejections raise DocumentRejectedError; the failed step records them.
    """

    state = PipelineState.DOWNLOADING

    def __init__(
        self,
        storage: BaseStorageGateway,
        renderer: BaseDocumentRenderer,
        max_file_size_bytes: int,
    ) -> None:
        self._storage = storage
        self._renderer = renderer
        self._max_file_size_bytes = max_file_size_bytes

    def run(self, context: PipelineContext) -> PipelineContext:
        session = context.require_session()
        try:
            stored = self._storage.download(session.storage_key)
        except StorageObjectNotFoundError as exc:
            raise self._reject(context, f"Source file {session.storage_key} not found") from exc

        if stored.size > self._max_file_size_bytes:
            stored.stream.close()
            raise self._reject(context, f"File of {stored.size} bytes exceeds the size limit")
        data = stored.read_all()
        if len(data) > self._max_file_size_bytes:
            raise self._reject(context, f"File of {len(data)} bytes exceeds the size limit")

        try:
            total_pages = self._renderer.page_count(data)
        except PdfError as exc:
            raise self._reject(context, f"Not a readable PDF: {exc}") from exc
        if total_pages <= 0:
            raise self._reject(context, "PDF has no pages")

        context.pdf_bytes = data
        context.total_pages = total_pages
        Log.info(
            f"Session {context.session_id}: downloaded {len(data)} bytes, {total_pages} pages"
        )
        return context

    @staticmethod
    def _reject(context: PipelineContext, reason: str) -> DocumentRejectedError:
        Log.error(f"Session {context.session_id}: document rejected: {reason}")
        return DocumentRejectedError(reason)


class RenderPagesStep(PipelineStep):
    state = PipelineState.RENDERING

    def __init__(
        self,
        renderer: BaseDocumentRenderer,
        max_pages: int,
        scan_headers: bool = True,
    ) -> None:
        self._renderer = renderer
        self._max_pages = max_pages
        self._scan_headers = scan_headers

    def run(self, context: PipelineContext) -> PipelineContext:
        indices = sample_page_indices(context.total_pages, self._max_pages)
        context.page_images = self._renderer.render_pages(
            context.pdf_bytes, indices, context.render_cache
        )
        if self._scan_headers:
            context.header_extraction = self._renderer.extract_headers(context.pdf_bytes)
            Log.info(
                f"Session {context.session_id}: text layer coverage "
                f"{context.header_extraction.coverage:.2f}"
            )
        Log.info(f"Session {context.session_id}: rendered {len(context.page_images)} pages")
        return context


class SegmentStep(PipelineStep):
    state = PipelineState.SEGMENTING

    def __init__(self, segmenter: DeterministicSegmenter, trust_threshold: int) -> None:
        self._segmenter = segmenter
        self._trust_threshold = trust_threshold

    def run(self, context: PipelineContext) -> PipelineContext:
        headers = context.header_extraction
        if headers is None or not headers.has_text_layer:
            Log.info(f"Session {context.session_id}: no usable text layer, segmentation skipped")
            return context

        result = self._segmenter.segment(headers.page_headers, context.total_pages, headers.coverage)
        context.segmentation = result
        if result.is_empty:
            Log.info(f"Session {context.session_id}: no recognizable part headers")
            return context

        context.segmentation_confidence = result.confidence
        context.seed_instructions = list(result.instructions)
        context.segmentation_trusted = (
            result.confidence >= self._trust_threshold and len(result.segments) > 1
        )
        Log.info(
            f"Session {context.session_id}: {len(result.segments)} segments, "
            f"confidence {result.confidence}, trusted={context.segmentation_trusted}"
        )
        return context


class HeaderLabelStep(PipelineStep):
    """Asks the vision model for per-page part labels to seed the extraction call."""

    state = PipelineState.SEGMENTING

    def __init__(
        self,
        renderer: BaseDocumentRenderer,
        extractor: BaseExtractor,
        segmenter: DeterministicSegmenter,
        enabled: bool = True,
    ) -> None:
        self._renderer = renderer
        self._extractor = extractor
        self._segmenter = segmenter
        self._enabled = enabled

    def run(self, context: PipelineContext) -> PipelineContext:
        if not self._enabled or context.segmentation_trusted:
            return context

        budget = context.budget
        page_labels: list[PageLabel] = []
        for offset in range(0, context.total_pages, HEADER_LABEL_BATCH_SIZE):
            # one call stays reserved for metadata extraction
            if not budget.allows_call(reserve=1):
                Log.warning(
                    f"Session {context.session_id}: model call budget reached, header "
                    f"labels stop at page {offset + 1} of {context.total_pages}"
                )
                break
            end = min(offset + HEADER_LABEL_BATCH_SIZE, context.total_pages)
            batch = list(range(offset, end))
            crops = self._renderer.render_header_crops(
                context.pdf_bytes, batch, context.render_cache
            )
            labels = self._extractor.label_headers(crops)
            budget.record()
            page_labels.extend(
                PageLabel(
                    page_index=label.page_index,
                    label=normalize_instrument_label(label.label).instrument,
                    confidence=label.confidence,
                    raw_header=label.label,
                )
                for label in labels
                if label.label
            )
        if not page_labels:
            Log.info(f"Session {context.session_id}: header label pass found no labels")
            return context

        seeded = self._segmenter.segment_from_labels(page_labels, context.total_pages)
        context.seed_instructions = list(seeded.instructions)
        Log.info(
            f"Session {context.session_id}: header label pass seeded "
            f"{len(seeded.instructions)} instructions"
        )
        return context


class ExtractMetadataStep(PipelineStep):
    state = PipelineState.EXTRACTING

    def __init__(self, extractor: BaseExtractor, ocr_first_enabled: bool = False) -> None:
        self._extractor = extractor
        self._ocr_first_enabled = ocr_first_enabled

    def run(self, context: PipelineContext) -> PipelineContext:
        session = context.require_session()
        segmentation = context.segmentation

        if self._ocr_first_enabled and context.segmentation_trusted and segmentation:
            Log.info(f"Session {context.session_id}: OCR-first mode, vision call skipped")
            context.metadata = metadata_from_filename(
                session.file_name, is_multi_part=len(segmentation.segments) > 1
            )
            context.extraction_confidence = segmentation.confidence
            context.instructions = list(segmentation.instructions)
            context.metadata_extras = {"source": "ocr_first", "promptVersion": PROMPT_VERSION}
            self._finish(context)
            return context

        outcome = self._extract(context)
        if isinstance(outcome, ParsedExtraction):
            metadata = outcome.metadata
            model_instructions = outcome.instructions
            context.extraction_confidence = outcome.confidence
            context.metadata_extras = {"model": outcome.model, "promptVersion": PROMPT_VERSION}
        else:
            if not context.job.is_final_attempt:
                raise ExtractionMalformedError(
                    f"Session {context.session_id}: malformed model response: {outcome.reason}"
                )
            Log.warning(
                f"Session {context.session_id}: malformed model response on final attempt, "
                "falling back to file name metadata"
            )
            metadata = metadata_from_filename(session.file_name)
            model_instructions = []
            context.extraction_confidence = 0
            context.metadata_extras = {
                "source": "filename",
                "malformedReason": outcome.reason,
                "promptVersion": PROMPT_VERSION,
            }

        if context.segmentation_trusted and segmentation:
            instructions = list(segmentation.instructions)
        elif model_instructions:
            instructions = list(model_instructions)
        elif context.segmentation_attempted and segmentation:
            instructions = list(segmentation.instructions)
        else:
            instructions = []

        if not instructions:
            fallback = single_score_instruction(metadata, context.total_pages)
            if fallback is not None:
                instructions = [fallback]
                metadata = replace(metadata, is_multi_part=False)
                Log.info(f"Session {context.session_id}: using a single full-score part")

        context.metadata = metadata
        context.instructions = instructions
        self._finish(context)
        return context

    def _extract(self, context: PipelineContext) -> ExtractionOutcome:
        budget = context.budget
        budget.require_call("metadata extraction")
        outcome = self._extractor.extract_metadata(
            context.page_images,
            total_pages=context.total_pages,
            seed_instructions=context.seed_instructions,
        )
        budget.record()
        if (
            isinstance(outcome, ParsedExtraction)
            and outcome.metadata.is_multi_part
            and not outcome.instructions
        ):
            if not budget.allows_call():
                Log.warning(
                    f"Session {context.session_id}: multi-part result without instructions, "
                    "no model calls left for a retry"
                )
                return outcome
            Log.warning(
                f"Session {context.session_id}: multi-part result without instructions, retrying"
            )
            retry = self._extractor.extract_metadata(
                context.page_images,
                total_pages=context.total_pages,
                seed_instructions=context.seed_instructions,
            )
            budget.record()
            if isinstance(retry, ParsedExtraction):
                return retry
        return outcome

    @staticmethod
    def _finish(context: PipelineContext) -> None:
        context.final_confidence = compute_final_confidence(
            context.extraction_confidence, context.segmentation_confidence
        )
        Log.info(
            f"Session {context.session_id}: extraction confidence "
            f"{context.extraction_confidence}, segmentation "
            f"{context.segmentation_confidence}, final {context.final_confidence}"
        )


class RouteStep(PipelineStep):
    state = PipelineState.EXTRACTING

    def __init__(self, skip_threshold: int, auto_threshold: int) -> None:
        self._skip_threshold = skip_threshold
        self._auto_threshold = auto_threshold

    def run(self, context: PipelineContext) -> PipelineContext:
        context.routing_decision = decide_route(
            context.final_confidence,
            skip_threshold=self._skip_threshold,
            auto_threshold=self._auto_threshold,
        )
        context.split_required = (
            context.routing_decision != RoutingDecision.NO_PARSE_SECOND_PASS
        )
        Log.info(
            f"Session {context.session_id}: routed to {context.routing_decision.value}"
        )
        return context


class SplitStep(PipelineStep):
    state = PipelineState.SPLITTING

    def __init__(
        self,
        splitter: PdfSplitter,
        storage: BaseStorageGateway,
        namespace: str,
    ) -> None:
        self._splitter = splitter
        self._storage = storage
        self._namespace = namespace

    def run(self, context: PipelineContext) -> PipelineContext:
        if not context.split_required:
            context.parts = []
            return context

        instruction_set = normalize_instructions(context.instructions, context.total_pages)
        for warning in instruction_set.warnings:
            Log.warning(f"Session {context.session_id}: {warning}")

        title = context.metadata.title if context.metadata else ""
        parts: list[PartDescriptor] = []
        for index, result in enumerate(
            self._splitter.split(context.pdf_bytes, instruction_set.instructions)
        ):
            key = part_storage_key(self._namespace, context.session_id, index)
            self._storage.upload(key, result.data, "application/pdf")
            instruction = result.instruction
            parts.append(
                PartDescriptor(
                    part_index=index,
                    instrument=instruction.instrument,
                    part_name=instruction.part_name,
                    section=instruction.section,
                    transposition=instruction.transposition,
                    part_number=instruction.part_number,
                    page_start=instruction.page_start,
                    page_end=instruction.page_end,
                    storage_key=key,
                    page_count=result.page_count,
                    display_name=build_part_display_name(
                        title, instruction.part_name or instruction.instrument
                    ),
                    synthesized=instruction.synthesized,
                )
            )
        context.parts = parts
        Log.info(f"Session {context.session_id}: stored {len(parts)} parts")
        return context


class QualityGateStep(PipelineStep):
    state = PipelineState.GATING

    def __init__(self, settings: Settings, second_pass: bool = False) -> None:
        self._settings = settings
        self._second_pass = second_pass

    def run(self, context: PipelineContext) -> PipelineContext:
        context.gate_results = []
        context.auto_commit_eligible = False
        context.requires_human_review = True

        if not self._second_pass and (
            context.routing_decision != RoutingDecision.AUTO_PARSE_AUTO_APPROVE
        ):
            return context
        if not self._settings.autonomous_mode_enabled:
            Log.info(f"Session {context.session_id}: autonomous mode disabled, review required")
            return context

        context.gate_results = evaluate_gates(
            GateInput(
                parts=tuple(context.parts),
                is_multi_part=bool(context.metadata and context.metadata.is_multi_part),
                total_pages=context.total_pages,
                segmentation_confidence=context.segmentation_confidence,
                final_confidence=context.final_confidence,
                max_pages_per_part=self._settings.max_pages_per_part,
                autonomous_threshold=self._settings.autonomous_approval_threshold,
            )
        )
        for result in context.gate_results:
            if not result.passed:
                Log.info(f"Session {context.session_id}: gate {result.name} failed: {result.reason}")

        passed = all_passed(context.gate_results) and not context.disagreements
        context.auto_commit_eligible = passed
        context.requires_human_review = not passed
        return context


class PersistSessionStep(PipelineStep):
    """Writes every field of the run in one UPDATE, before any follow-up job is queued."""

    state = PipelineState.PERSISTING

    def __init__(self, sessions_repo: UploadSessionsRepository, second_pass: bool = False) -> None:
        self._sessions_repo = sessions_repo
        self._second_pass = second_pass

    def run(self, context: PipelineContext) -> PipelineContext:
        metadata = context.metadata or ExtractedMetadata()
        fields: dict[str, object] = {
            "parse_status": (
                ParseStatus.PARSED if context.split_required else ParseStatus.NOT_PARSED
            ),
            "requires_human_review": context.requires_human_review,
            "extraction_confidence": context.extraction_confidence,
            "segmentation_confidence": context.segmentation_confidence,
            "final_confidence": context.final_confidence,
            "total_pages": context.total_pages,
            "extracted_metadata": {**metadata.to_dict(), **context.metadata_extras},
            "parsed_parts": context.parts,
            "error_message": None,
        }
        if self._second_pass:
            fields["second_pass_status"] = SecondPassStatus.DONE
        else:
            fields["routing_decision"] = context.routing_decision
            fields["second_pass_status"] = (
                SecondPassStatus.QUEUED
                if context.routing_decision in _SECOND_PASS_ROUTES
                else SecondPassStatus.NONE
            )
        self._sessions_repo.update(context.session_id, **fields)
        Log.info(
            f"Session {context.session_id}: persisted {len(context.parts)} parts, "
            f"review required={context.requires_human_review}"
        )
        return context


class QueueSecondPassStep(PipelineStep):
    state = PipelineState.QUEUEING_SECOND_PASS

    def __init__(self, job_repo: JobRepository) -> None:
        self._job_repo = job_repo

    def run(self, context: PipelineContext) -> PipelineContext:
        if context.routing_decision not in _SECOND_PASS_ROUTES:
            return context
        job_id = self._job_repo.enqueue(
            JobType.SECOND_PASS,
            context.session_id,
            priority=JOB_PRIORITIES[JobType.SECOND_PASS],
        )
        Log.info(f"Session {context.session_id}: second pass queued (job {job_id})")
        return context


class QueueAutoCommitStep(PipelineStep):
    state = PipelineState.QUEUEING_AUTO_COMMIT

    def __init__(self, job_repo: JobRepository) -> None:
        self._job_repo = job_repo

    def run(self, context: PipelineContext) -> PipelineContext:
        if not context.auto_commit_eligible:
            return context
        job_id = self._job_repo.enqueue(
            JobType.AUTO_COMMIT,
            context.session_id,
            priority=JOB_PRIORITIES[JobType.AUTO_COMMIT],
        )
        Log.info(f"Session {context.session_id}: auto-commit queued (job {job_id})")
        return context


class RecordSessionErrorStep(PipelineStep):
    state = PipelineState.DONE

    def __init__(self, sessions_repo: UploadSessionsRepository) -> None:
        self._sessions_repo = sessions_repo

    def run(self, context: PipelineContext) -> PipelineContext:
        if isinstance(context.error, NonRetryableError):
            self._sessions_repo.update(
                context.session_id,
                parse_status=ParseStatus.NOT_PARSED,
                requires_human_review=True,
                error_message=context.error_message,
            )
        else:
            self._sessions_repo.update(context.session_id, error_message=context.error_message)
        return context


class BeginSecondPassStep(PipelineStep):
    state = PipelineState.VERIFYING

    _RUNNABLE = frozenset(
        {SecondPassStatus.NONE, SecondPassStatus.QUEUED, SecondPassStatus.FAILED}
    )

    def __init__(self, sessions_repo: UploadSessionsRepository) -> None:
        self._sessions_repo = sessions_repo

    def run(self, context: PipelineContext) -> PipelineContext:
        session = context.require_session()
        # RUNNING on a retry is the leftover of an attempt that died before recording FAILED
        resumed = (
            session.second_pass_status is SecondPassStatus.RUNNING and context.job.attempts > 0
        )
        if session.second_pass_status not in self._RUNNABLE and not resumed:
            Log.info(
                f"Session {context.session_id}: second pass already "
                f"{session.second_pass_status.value}, skipping"
            )
            context.halted = True
            return context
        self._sessions_repo.update(
            context.session_id, second_pass_status=SecondPassStatus.RUNNING
        )
        return context


class VerifyStep(PipelineStep):
    state = PipelineState.VERIFYING

    def __init__(self, extractor: BaseExtractor) -> None:
        self._extractor = extractor

    def run(self, context: PipelineContext) -> PipelineContext:
        session = context.require_session()
        previous_metadata = ExtractedMetadata.from_dict(session.extracted_metadata)
        previous_instructions = [part.to_instruction() for part in session.parsed_parts]

        context.budget.require_call("verification")
        outcome = self._extractor.verify(
            context.page_images,
            total_pages=context.total_pages,
            previous_metadata=previous_metadata,
            previous_instructions=[i for i in previous_instructions if not i.synthesized],
        )
        context.budget.record()
        if not isinstance(outcome, ParsedExtraction):
            raise ExtractionMalformedError(
                f"Session {context.session_id}: malformed verification response: {outcome.reason}"
            )

        metadata = outcome.metadata
        context.extraction_confidence = outcome.confidence
        if outcome.instructions:
            instructions = list(outcome.instructions)
            context.segmentation_confidence = None
        elif previous_instructions:
            instructions = previous_instructions
            context.segmentation_confidence = session.segmentation_confidence
        else:
            fallback = single_score_instruction(metadata, context.total_pages)
            instructions = [fallback] if fallback else []
            if fallback:
                metadata = replace(metadata, is_multi_part=False)
            context.segmentation_confidence = None

        context.disagreements = find_disagreements(
            previous_metadata, previous_instructions, metadata, instructions
        )
        context.metadata = metadata
        context.instructions = instructions
        context.split_required = True
        context.final_confidence = compute_final_confidence(
            context.extraction_confidence, context.segmentation_confidence
        )
        context.metadata_extras = {
            "model": session.extracted_metadata.get("model"),
            "promptVersion": PROMPT_VERSION,
            "verification": {
                "model": outcome.model,
                "confidence": outcome.confidence,
                "corrections": outcome.corrections,
                "disagreements": context.disagreements,
            },
        }
        if context.disagreements:
            Log.warning(
                f"Session {context.session_id}: passes disagree on "
                f"{', '.join(context.disagreements)}"
            )
        Log.info(
            f"Session {context.session_id}: verification confidence {outcome.confidence}, "
            f"final {context.final_confidence}"
        )
        return context


class MarkSecondPassFailedStep(PipelineStep):
    state = PipelineState.DONE

    def __init__(self, sessions_repo: UploadSessionsRepository) -> None:
        self._sessions_repo = sessions_repo

    def run(self, context: PipelineContext) -> PipelineContext:
        self._sessions_repo.update(
            context.session_id,
            second_pass_status=SecondPassStatus.FAILED,
            error_message=context.error_message,
        )
        Log.error(
            f"Session {context.session_id}: second pass failed: {context.error_message}"
        )
        return context


class AutoCommitStep(PipelineStep):
    """Confirms a session is still eligible, then marks it committed."""

    state = PipelineState.COMMITTING

    def __init__(self, sessions_repo: UploadSessionsRepository, settings: Settings) -> None:
        self._sessions_repo = sessions_repo
        self._settings = settings

    def run(self, context: PipelineContext) -> PipelineContext:
        session = context.require_session()
        if session.auto_committed_at is not None:
            Log.info(f"Session {context.session_id}: already committed")
            return context

        context.gate_results = evaluate_gates(gate_input_from_session(session, self._settings))
        verification = session.extracted_metadata.get("verification") or {}
        eligible = (
            self._settings.autonomous_mode_enabled
            and session.parse_status == ParseStatus.PARSED
            and bool(session.parsed_parts)
            and not verification.get("disagreements")
            and all_passed(context.gate_results)
        )
        if eligible:
            self._sessions_repo.update(
                context.session_id,
                auto_committed_at=datetime.now(timezone.utc),
                requires_human_review=False,
            )
            Log.info(f"Session {context.session_id}: auto-committed")
        else:
            self._sessions_repo.update(context.session_id, requires_human_review=True)
            Log.info(f"Session {context.session_id}: no longer eligible, sent to review")
        return context
