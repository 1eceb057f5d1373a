from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from unittest.mock import MagicMock, patch

import pymupdf
import pytest

from smart_upload.config.settings import Settings
from smart_upload.database.models import JobRecord, JobType
from smart_upload.database.repositories.job_repository import JobRepository
from smart_upload.database.repositories.upload_sessions_repository import (
    UploadSessionsRepository,
)
from smart_upload.extraction.base import BaseExtractor
from smart_upload.extraction.extractor import HEADER_LABEL_BATCH_SIZE
from smart_upload.extraction.models import (
    ExtractedMetadata,
    HeaderLabel,
    MalformedExtraction,
    ParsedExtraction,
)
from smart_upload.parts.models import CuttingInstruction
from smart_upload.pdf.pymupdf_adapter import PyMuPdfRenderer
from smart_upload.processor.exceptions import DocumentRejectedError, ExtractionMalformedError
from smart_upload.processor.models import (
    ParseStatus,
    PipelineState,
    RoutingDecision,
    SecondPassStatus,
    UploadSession,
)
from smart_upload.processor.pipeline import PipelineContext, PipelineStep
from smart_upload.processor.processor import Processor, build_first_pass_processor
from smart_upload.segmentation.models import Segment, SegmentationResult
from smart_upload.storage.local_adapter import LocalStorageGateway

SOURCE_KEY = "uploads/american-patrol.pdf"


def _blank_pdf(pages: int) -> bytes:
    """Pages with no text layer, as a scanned document has."""
    with pymupdf.open() as doc:
        for _ in range(pages):
            doc.new_page()
        return doc.tobytes()


@dataclass
class _Harness:
    processor: Processor
    sessions_repo: MagicMock
    job_repo: MagicMock
    extractor: MagicMock
    storage: LocalStorageGateway

    def persisted(self) -> dict:
        return self.sessions_repo.update.call_args.kwargs

    def enqueued_types(self) -> list[JobType]:
        return [c.args[0] for c in self.job_repo.enqueue.call_args_list]


def _make_settings(**overrides: object) -> Settings:
    values: dict[str, object] = {
        "skip_parse_threshold": 55,
        "auto_approve_threshold": 95,
        "autonomous_approval_threshold": 95,
        "autonomous_mode_enabled": True,
        "header_label_pass_enabled": False,
        "render_dpi": 20,
        "header_crop_dpi": 20,
        "storage_namespace": "smart-upload",
    }
    values.update(overrides)
    return Settings(**values)  # type: ignore[arg-type]


def _make_job(attempts: int = 0) -> JobRecord:
    return JobRecord(
        id=9,
        session_id="sess-1",
        job_type=JobType.PROCESS,
        status="processing",
        attempts=attempts,
        max_attempts=3,
    )


def _instruction(name: str, start: int, end: int, section: str = "Woodwinds") -> CuttingInstruction:
    return CuttingInstruction(
        part_name=name, instrument=name, page_start=start, page_end=end, section=section
    )


def _parsed(
    confidence: int,
    instructions: list[CuttingInstruction],
    *,
    is_multi_part: bool = True,
    file_type: str = "PART",
) -> ParsedExtraction:
    return ParsedExtraction(
        metadata=ExtractedMetadata(
            title="American Patrol",
            composer="Meacham",
            file_type=file_type,
            is_multi_part=is_multi_part,
        ),
        instructions=instructions,
        confidence=confidence,
        model="vision-model",
    )


THREE_PARTS = [
    _instruction("Flute", 0, 0),
    _instruction("1st Bb Clarinet", 1, 1),
    _instruction("Tuba", 2, 2, section="Brass"),
]


def _make_harness(
    tmp_path: Path,
    pdf_bytes: bytes,
    settings: Settings | None = None,
) -> _Harness:
    storage = LocalStorageGateway(files_root=tmp_path)
    storage.upload(SOURCE_KEY, pdf_bytes)
    sessions_repo = MagicMock(spec=UploadSessionsRepository)
    sessions_repo.find_by_id.return_value = UploadSession(
        id="sess-1",
        file_name="Meacham - American Patrol.pdf",
        storage_key=SOURCE_KEY,
        file_size_bytes=len(pdf_bytes),
    )
    job_repo = MagicMock(spec=JobRepository)
    extractor = MagicMock(spec=BaseExtractor)
    extractor.label_headers.return_value = []
    settings = settings or _make_settings()
    processor = build_first_pass_processor(
        settings,
        job_repo,
        sessions_repo,
        storage,
        PyMuPdfRenderer(dpi=settings.render_dpi, header_dpi=settings.header_crop_dpi),
        extractor,
    )
    return _Harness(processor, sessions_repo, job_repo, extractor, storage)


class TestFirstPassScenarios:
    def test_mid_confidence_parses_and_queues_second_pass(self, tmp_path: Path) -> None:
        harness = _make_harness(tmp_path, _blank_pdf(3))
        harness.extractor.extract_metadata.return_value = _parsed(92, THREE_PARTS)

        context = harness.processor.process(_make_job())

        fields = harness.persisted()
        assert fields["final_confidence"] == 92
        assert fields["segmentation_confidence"] is None
        assert fields["routing_decision"] is RoutingDecision.AUTO_PARSE_SECOND_PASS
        assert fields["parse_status"] is ParseStatus.PARSED
        assert fields["second_pass_status"] is SecondPassStatus.QUEUED
        assert fields["requires_human_review"] is True
        assert [p.instrument for p in fields["parsed_parts"]] == [
            "Flute", "1st Bb Clarinet", "Tuba",
        ]
        assert fields["parsed_parts"][0].display_name == "American Patrol Flute"
        assert harness.enqueued_types() == [JobType.SECOND_PASS]
        harness.job_repo.enqueue.assert_called_once_with(
            JobType.SECOND_PASS, "sess-1", priority=10
        )
        assert context.segmentation is None

    def test_parts_are_stored_under_namespaced_keys(self, tmp_path: Path) -> None:
        harness = _make_harness(tmp_path, _blank_pdf(3))
        harness.extractor.extract_metadata.return_value = _parsed(92, THREE_PARTS)

        harness.processor.process(_make_job())

        keys = [p.storage_key for p in harness.persisted()["parsed_parts"]]
        assert keys == ["smart-upload/sess-1/0", "smart-upload/sess-1/1", "smart-upload/sess-1/2"]
        assert harness.storage.download(keys[2]).read_all().startswith(b"%PDF")

    def test_low_confidence_defers_parsing(self, tmp_path: Path) -> None:
        harness = _make_harness(tmp_path, _blank_pdf(3))
        harness.extractor.extract_metadata.return_value = _parsed(40, THREE_PARTS)

        harness.processor.process(_make_job())

        fields = harness.persisted()
        assert fields["routing_decision"] is RoutingDecision.NO_PARSE_SECOND_PASS
        assert fields["parse_status"] is ParseStatus.NOT_PARSED
        assert fields["parsed_parts"] == []
        assert harness.enqueued_types() == [JobType.SECOND_PASS]
        assert not (tmp_path / "smart-upload").exists()

    def test_placeholder_label_blocks_auto_commit(self, tmp_path: Path) -> None:
        harness = _make_harness(tmp_path, _blank_pdf(3))
        harness.extractor.extract_metadata.return_value = _parsed(
            95, [_instruction("Flute", 0, 0), _instruction("null", 1, 2)]
        )

        context = harness.processor.process(_make_job())

        fields = harness.persisted()
        assert fields["routing_decision"] is RoutingDecision.AUTO_PARSE_AUTO_APPROVE
        assert fields["second_pass_status"] is SecondPassStatus.NONE
        assert fields["requires_human_review"] is True
        assert [p.instrument for p in fields["parsed_parts"]] == ["Flute", "null"]
        assert [r.name for r in context.gate_results if not r.passed] == ["forbidden_labels"]
        harness.job_repo.enqueue.assert_not_called()

    def test_single_instruction_for_long_multi_part_document_is_blocked(
        self, tmp_path: Path
    ) -> None:
        harness = _make_harness(tmp_path, _blank_pdf(20))
        harness.extractor.extract_metadata.return_value = _parsed(
            95, [_instruction("Flute", 0, 19)]
        )

        context = harness.processor.process(_make_job())

        failed = [r.name for r in context.gate_results if not r.passed]
        assert "implausible_part_count" in failed
        assert harness.persisted()["requires_human_review"] is True
        assert len(harness.persisted()["parsed_parts"]) == 1
        harness.job_repo.enqueue.assert_not_called()

    def test_low_segmentation_confidence_caps_final_confidence(
        self, tmp_path: Path, part_headers_pdf_bytes: bytes
    ) -> None:
        settings = _make_settings(
            skip_parse_threshold=40, auto_approve_threshold=50, autonomous_approval_threshold=50
        )
        segmentation = SegmentationResult(
            segments=[Segment("Flute", 0, 2), Segment("Tuba", 3, 5)],
            instructions=[_instruction("Flute", 0, 2), _instruction("Tuba", 3, 5, "Brass")],
            confidence=55,
        )
        with patch("smart_upload.processor.processor.DeterministicSegmenter") as mock_segmenter:
            mock_segmenter.return_value.segment.return_value = segmentation
            harness = _make_harness(tmp_path, part_headers_pdf_bytes, settings)
        harness.extractor.extract_metadata.return_value = _parsed(
            95, [_instruction("Flute", 0, 2), _instruction("Tuba", 3, 5, "Brass")]
        )

        context = harness.processor.process(_make_job())

        fields = harness.persisted()
        assert fields["final_confidence"] == 55
        assert fields["segmentation_confidence"] == 55
        assert fields["extraction_confidence"] == 95
        assert fields["routing_decision"] is RoutingDecision.AUTO_PARSE_AUTO_APPROVE
        assert [r.name for r in context.gate_results if not r.passed] == [
            "segmentation_confidence"
        ]
        assert fields["requires_human_review"] is True
        harness.job_repo.enqueue.assert_not_called()


class TestFirstPassAutoApproval:
    def test_clean_high_confidence_queues_auto_commit(self, tmp_path: Path) -> None:
        harness = _make_harness(tmp_path, _blank_pdf(3))
        harness.extractor.extract_metadata.return_value = _parsed(98, THREE_PARTS)

        context = harness.processor.process(_make_job())

        assert context.auto_commit_eligible
        assert harness.persisted()["requires_human_review"] is False
        harness.job_repo.enqueue.assert_called_once_with(
            JobType.AUTO_COMMIT, "sess-1", priority=15
        )

    def test_autonomous_mode_disabled_requires_review(self, tmp_path: Path) -> None:
        settings = _make_settings(autonomous_mode_enabled=False)
        harness = _make_harness(tmp_path, _blank_pdf(3), settings)
        harness.extractor.extract_metadata.return_value = _parsed(98, THREE_PARTS)

        context = harness.processor.process(_make_job())

        assert context.gate_results == []
        assert harness.persisted()["requires_human_review"] is True
        harness.job_repo.enqueue.assert_not_called()


class TestFirstPassExtraction:
    def test_sends_sampled_pages_to_extractor(self, tmp_path: Path) -> None:
        harness = _make_harness(tmp_path, _blank_pdf(12))
        harness.extractor.extract_metadata.return_value = _parsed(70, [])

        harness.processor.process(_make_job())

        call = harness.extractor.extract_metadata.call_args
        assert [image.page_index for image in call.args[0]] == [0, 1, 2, 4, 6, 8, 10, 11]
        assert call.kwargs["total_pages"] == 12

    def test_gaps_become_synthesized_parts(self, tmp_path: Path) -> None:
        harness = _make_harness(tmp_path, _blank_pdf(4))
        harness.extractor.extract_metadata.return_value = _parsed(
            80, [_instruction("Flute", 0, 1)]
        )

        harness.processor.process(_make_job())

        parts = harness.persisted()["parsed_parts"]
        assert [(p.page_start, p.page_end, p.synthesized) for p in parts] == [
            (0, 1, False),
            (2, 3, True),
        ]

    def test_short_score_without_instructions_becomes_one_part(self, tmp_path: Path) -> None:
        harness = _make_harness(tmp_path, _blank_pdf(3))
        harness.extractor.extract_metadata.return_value = _parsed(
            80, [], is_multi_part=False, file_type="FULL_SCORE"
        )

        harness.processor.process(_make_job())

        fields = harness.persisted()
        (part,) = fields["parsed_parts"]
        assert part.instrument == "Full Score"
        assert (part.page_start, part.page_end) == (0, 2)
        assert fields["extracted_metadata"]["isMultiPart"] is False

    def test_multi_part_without_instructions_is_retried(self, tmp_path: Path) -> None:
        harness = _make_harness(tmp_path, _blank_pdf(3))
        harness.extractor.extract_metadata.side_effect = [
            _parsed(80, []),
            _parsed(85, THREE_PARTS),
        ]

        harness.processor.process(_make_job())

        assert harness.extractor.extract_metadata.call_count == 2
        assert harness.persisted()["extraction_confidence"] == 85
        assert len(harness.persisted()["parsed_parts"]) == 3

    def test_metadata_records_model_and_prompt_version(self, tmp_path: Path) -> None:
        harness = _make_harness(tmp_path, _blank_pdf(3))
        harness.extractor.extract_metadata.return_value = _parsed(92, THREE_PARTS)

        harness.processor.process(_make_job())

        metadata = harness.persisted()["extracted_metadata"]
        assert metadata["title"] == "American Patrol"
        assert metadata["model"] == "vision-model"
        assert "promptVersion" in metadata

    def test_trusted_segmentation_overrides_model_instructions(
        self, tmp_path: Path, part_headers_pdf_bytes: bytes
    ) -> None:
        harness = _make_harness(tmp_path, part_headers_pdf_bytes)
        harness.extractor.extract_metadata.return_value = _parsed(
            90, [_instruction("Piccolo", 0, 5)]
        )

        context = harness.processor.process(_make_job())

        assert context.segmentation_trusted
        assert [p.instrument for p in harness.persisted()["parsed_parts"]] == [
            "Flute", "1st Bb Clarinet", "Tuba",
        ]
        harness.extractor.label_headers.assert_not_called()

    def test_ocr_first_skips_vision_call(
        self, tmp_path: Path, part_headers_pdf_bytes: bytes
    ) -> None:
        settings = _make_settings(ocr_first_enabled=True)
        harness = _make_harness(tmp_path, part_headers_pdf_bytes, settings)

        harness.processor.process(_make_job())

        harness.extractor.extract_metadata.assert_not_called()
        fields = harness.persisted()
        assert fields["extraction_confidence"] == 100
        assert fields["extracted_metadata"]["title"] == "American Patrol"
        assert fields["extracted_metadata"]["composer"] == "Meacham"
        assert fields["extracted_metadata"]["source"] == "ocr_first"
        assert len(fields["parsed_parts"]) == 3

    def test_header_label_pass_seeds_extraction(self, tmp_path: Path) -> None:
        settings = _make_settings(header_label_pass_enabled=True)
        harness = _make_harness(tmp_path, _blank_pdf(3), settings)
        harness.extractor.label_headers.return_value = [
            HeaderLabel(page_index=0, label="Flute", confidence=90),
            HeaderLabel(page_index=1, label=None, confidence=0),
            HeaderLabel(page_index=2, label="Tuba", confidence=90),
        ]
        harness.extractor.extract_metadata.return_value = _parsed(92, THREE_PARTS)

        context = harness.processor.process(_make_job())

        crops = harness.extractor.label_headers.call_args.args[0]
        assert [crop.page_index for crop in crops] == [0, 1, 2]
        seed = harness.extractor.extract_metadata.call_args.kwargs["seed_instructions"]
        assert seed[0].instrument == "Flute"
        assert seed[-1].instrument == "Tuba"
        assert context.segmentation_confidence is None

    def test_malformed_response_raises_retryable_error(self, tmp_path: Path) -> None:
        harness = _make_harness(tmp_path, _blank_pdf(3))
        harness.extractor.extract_metadata.return_value = MalformedExtraction(
            reason="no JSON", raw_response="sorry"
        )

        with pytest.raises(ExtractionMalformedError):
            harness.processor.process(_make_job(attempts=0))

        harness.sessions_repo.update.assert_called_once()
        assert "malformed" in harness.persisted()["error_message"]
        harness.job_repo.enqueue.assert_not_called()

    def test_malformed_response_on_final_attempt_uses_file_name(self, tmp_path: Path) -> None:
        harness = _make_harness(tmp_path, _blank_pdf(3))
        harness.extractor.extract_metadata.return_value = MalformedExtraction(
            reason="no JSON", raw_response="sorry"
        )

        harness.processor.process(_make_job(attempts=2))

        fields = harness.persisted()
        assert fields["extraction_confidence"] == 0
        assert fields["routing_decision"] is RoutingDecision.NO_PARSE_SECOND_PASS
        assert fields["extracted_metadata"]["title"] == "American Patrol"
        assert fields["extracted_metadata"]["source"] == "filename"
        assert harness.enqueued_types() == [JobType.SECOND_PASS]


class TestDocumentRejection:
    def test_missing_source_is_rejected(self, tmp_path: Path) -> None:
        harness = _make_harness(tmp_path, _blank_pdf(1))
        (tmp_path / SOURCE_KEY).unlink()

        with pytest.raises(DocumentRejectedError, match="not found"):
            harness.processor.process(_make_job())

        harness.sessions_repo.update.assert_called_once()
        fields = harness.persisted()
        assert fields["parse_status"] is ParseStatus.NOT_PARSED
        assert fields["requires_human_review"] is True
        assert "not found" in fields["error_message"]
        harness.extractor.extract_metadata.assert_not_called()

    def test_oversized_file_is_rejected(self, tmp_path: Path) -> None:
        harness = _make_harness(tmp_path, _blank_pdf(1), _make_settings(max_file_size_mb=0))

        with pytest.raises(DocumentRejectedError, match="size limit"):
            harness.processor.process(_make_job())

    def test_invalid_pdf_is_rejected(self, tmp_path: Path) -> None:
        harness = _make_harness(tmp_path, b"not a pdf at all")

        with pytest.raises(DocumentRejectedError, match="Not a readable PDF"):
            harness.processor.process(_make_job())


class TestModelCallBudget:
    def test_multi_part_retry_skipped_when_budget_spent(self, tmp_path: Path) -> None:
        settings = _make_settings(max_llm_calls_per_session=1)
        harness = _make_harness(tmp_path, _blank_pdf(3), settings)
        harness.extractor.extract_metadata.return_value = _parsed(40, [])

        context = harness.processor.process(_make_job())

        harness.extractor.extract_metadata.assert_called_once()
        assert context.budget.calls == 1

    def test_multi_part_retry_runs_within_budget(self, tmp_path: Path) -> None:
        settings = _make_settings(max_llm_calls_per_session=2)
        harness = _make_harness(tmp_path, _blank_pdf(3), settings)
        harness.extractor.extract_metadata.side_effect = [
            _parsed(92, []),
            _parsed(92, THREE_PARTS),
        ]

        context = harness.processor.process(_make_job())

        assert harness.extractor.extract_metadata.call_count == 2
        assert context.budget.calls == 2
        assert len(harness.persisted()["parsed_parts"]) == 3

    def test_header_labels_stop_early_and_keep_extraction_call(self, tmp_path: Path) -> None:
        settings = _make_settings(header_label_pass_enabled=True, max_llm_calls_per_session=2)
        harness = _make_harness(tmp_path, _blank_pdf(HEADER_LABEL_BATCH_SIZE + 5), settings)
        harness.extractor.label_headers.return_value = [
            HeaderLabel(page_index=0, label="Flute", confidence=90),
        ]
        harness.extractor.extract_metadata.return_value = _parsed(40, THREE_PARTS)

        context = harness.processor.process(_make_job())

        harness.extractor.label_headers.assert_called_once()
        crops = harness.extractor.label_headers.call_args.args[0]
        assert len(crops) == HEADER_LABEL_BATCH_SIZE
        harness.extractor.extract_metadata.assert_called_once()
        assert context.seed_instructions[0].instrument == "Flute"
        assert context.budget.calls == 2

    def test_header_labels_batched_without_limit(self, tmp_path: Path) -> None:
        settings = _make_settings(header_label_pass_enabled=True, max_llm_calls_per_session=0)
        harness = _make_harness(tmp_path, _blank_pdf(HEADER_LABEL_BATCH_SIZE + 5), settings)
        harness.extractor.extract_metadata.return_value = _parsed(40, THREE_PARTS)

        context = harness.processor.process(_make_job())

        batches = [c.args[0] for c in harness.extractor.label_headers.call_args_list]
        assert [len(batch) for batch in batches] == [HEADER_LABEL_BATCH_SIZE, 5]
        assert batches[1][0].page_index == HEADER_LABEL_BATCH_SIZE
        assert context.budget.calls == 3


class _RecordingStep(PipelineStep):
    state = PipelineState.EXTRACTING

    def __init__(
        self,
        calls: list[str],
        name: str,
        action: Callable[[PipelineContext], None] | None = None,
    ) -> None:
        self._calls = calls
        self._name = name
        self._action = action

    def run(self, context: PipelineContext) -> PipelineContext:
        self._calls.append(self._name)
        if self._action is not None:
            self._action(context)
        return context


def _raise(context: PipelineContext) -> None:
    raise RuntimeError("step exploded")


def _raise_db_down(context: PipelineContext) -> None:
    raise OSError("db down")


def _halt(context: PipelineContext) -> None:
    context.halted = True


class TestProcessor:
    def test_runs_steps_in_order(self) -> None:
        calls: list[str] = []
        processor = Processor(
            steps=[_RecordingStep(calls, "a"), _RecordingStep(calls, "b")]
        )

        context = processor.process(_make_job())

        assert calls == ["a", "b"]
        assert context.session_id == "sess-1"

    def test_failure_runs_failed_step_and_reraises(self) -> None:
        calls: list[str] = []
        seen: list[PipelineContext] = []
        processor = Processor(
            steps=[_RecordingStep(calls, "a", _raise), _RecordingStep(calls, "b")],
            failed_step=_RecordingStep(calls, "failed", seen.append),
        )

        with pytest.raises(RuntimeError, match="step exploded"):
            processor.process(_make_job())

        assert calls == ["a", "failed"]
        assert seen[0].error_message == "step exploded"

    def test_failed_step_error_does_not_mask_original(self) -> None:
        calls: list[str] = []
        processor = Processor(
            steps=[_RecordingStep(calls, "a", _raise)],
            failed_step=_RecordingStep(calls, "failed", _raise_db_down),
        )

        with pytest.raises(RuntimeError, match="step exploded"):
            processor.process(_make_job())

    def test_halt_stops_remaining_steps(self) -> None:
        calls: list[str] = []
        processor = Processor(
            steps=[_RecordingStep(calls, "a", _halt), _RecordingStep(calls, "b")]
        )

        context = processor.process(_make_job())

        assert calls == ["a"]
        assert context.halted

    def test_render_cache_released_on_success(self) -> None:
        context = Processor(steps=[]).process(_make_job())

        assert context.render_cache is not None
        assert context.render_cache.released

    def test_render_cache_released_on_failure(self) -> None:
        seen: list[PipelineContext] = []
        processor = Processor(
            steps=[_RecordingStep([], "a", seen.append), _RecordingStep([], "b", _raise)]
        )

        with pytest.raises(RuntimeError):
            processor.process(_make_job())

        assert seen[0].render_cache is not None
        assert seen[0].render_cache.released

    def test_budget_sized_from_constructor(self) -> None:
        context = Processor(steps=[], max_model_calls=4).process(_make_job())

        assert context.budget.max_calls == 4
        assert context.budget.session_id == "sess-1"
        assert context.budget.calls == 0
