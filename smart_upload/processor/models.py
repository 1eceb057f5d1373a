from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from smart_upload.parts.models import PartDescriptor


class ParseStatus(str, Enum):
    PENDING = "PENDING"
    PARSED = "PARSED"
    NOT_PARSED = "NOT_PARSED"


class SecondPassStatus(str, Enum):
    NONE = "NONE"
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    DONE = "DONE"
    FAILED = "FAILED"


class RoutingDecision(str, Enum):
    AUTO_PARSE_AUTO_APPROVE = "auto_parse_auto_approve"
    AUTO_PARSE_SECOND_PASS = "auto_parse_second_pass"
    NO_PARSE_SECOND_PASS = "no_parse_second_pass"


class PipelineState(str, Enum):
    """States a job run moves through; each pipeline step declares one."""

    DOWNLOADING = "DOWNLOADING"
    RENDERING = "RENDERING"
    SEGMENTING = "SEGMENTING"
    EXTRACTING = "EXTRACTING"
    VERIFYING = "VERIFYING"
    SPLITTING = "SPLITTING"
    GATING = "GATING"
    PERSISTING = "PERSISTING"
    QUEUEING_SECOND_PASS = "QUEUEING_SECOND_PASS"
    QUEUEING_AUTO_COMMIT = "QUEUEING_AUTO_COMMIT"
    COMMITTING = "COMMITTING"
    DONE = "DONE"


@dataclass(frozen=True)
class UploadSession:
    """Domain model for a row of smart_upload_sessions."""

    id: str
    file_name: str
    storage_key: str
    file_id: str | None = None
    uploaded_by: str | None = None
    file_size_bytes: int | None = None
    mime_type: str = "application/pdf"
    parse_status: ParseStatus = ParseStatus.PENDING
    second_pass_status: SecondPassStatus = SecondPassStatus.NONE
    routing_decision: RoutingDecision | None = None
    requires_human_review: bool = False
    auto_committed_at: datetime | None = None
    extraction_confidence: int | None = None
    segmentation_confidence: int | None = None
    final_confidence: int | None = None
    total_pages: int | None = None
    extracted_metadata: dict[str, Any] = field(default_factory=dict)
    parsed_parts: list[PartDescriptor] = field(default_factory=list)
    error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
