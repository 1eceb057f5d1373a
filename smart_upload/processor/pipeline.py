from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from smart_upload.database.models import JobRecord
from smart_upload.extraction.models import ExtractedMetadata
from smart_upload.parts.models import CuttingInstruction, PartDescriptor
from smart_upload.pdf.models import HeaderExtraction, PageImage
from smart_upload.pdf.render_cache import RenderCache
from smart_upload.processor.budget import SessionBudget
from smart_upload.processor.gates import GateResult
from smart_upload.processor.models import PipelineState, RoutingDecision, UploadSession
from smart_upload.segmentation.models import SegmentationResult


@dataclass(slots=True)
class PipelineContext:
    job: JobRecord
    render_cache: RenderCache | None = None
    budget: SessionBudget = field(default_factory=SessionBudget)
    session: UploadSession | None = None
    pdf_bytes: bytes = b""
    total_pages: int = 0
    page_images: list[PageImage] = field(default_factory=list)
    header_extraction: HeaderExtraction | None = None
    segmentation: SegmentationResult | None = None
    segmentation_trusted: bool = False
    seed_instructions: list[CuttingInstruction] = field(default_factory=list)
    metadata: ExtractedMetadata | None = None
    metadata_extras: dict[str, Any] = field(default_factory=dict)
    disagreements: list[str] = field(default_factory=list)
    instructions: list[CuttingInstruction] = field(default_factory=list)
    extraction_confidence: int = 0
    segmentation_confidence: int | None = None
    final_confidence: int = 0
    routing_decision: RoutingDecision | None = None
    split_required: bool = False
    parts: list[PartDescriptor] = field(default_factory=list)
    gate_results: list[GateResult] = field(default_factory=list)
    requires_human_review: bool = True
    auto_commit_eligible: bool = False
    halted: bool = False
    error: Exception | None = None
    error_message: str = ""

    @property
    def session_id(self) -> str:
        return self.job.session_id

    @property
    def segmentation_attempted(self) -> bool:
        return self.segmentation is not None and not self.segmentation.is_empty

    def require_session(self) -> UploadSession:
        if self.session is None:
            raise ValueError("PipelineContext.session must be loaded first")
        return self.session


class PipelineStep(ABC):
    state: PipelineState

    @abstractmethod
    def run(self, context: PipelineContext) -> PipelineContext:
        raise NotImplementedError
