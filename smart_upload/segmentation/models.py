from dataclasses import dataclass, field

from smart_upload.parts.models import CuttingInstruction


@dataclass(frozen=True)
class PageLabel:
    """Normalized part label assigned to one page (0-based index)."""

    page_index: int
    label: str
    confidence: int
    raw_header: str = ""


@dataclass(frozen=True)
class Segment:
    label: str
    page_start: int
    page_end: int

    @property
    def page_count(self) -> int:
        return self.page_end - self.page_start + 1


@dataclass(frozen=True)
class SegmentationResult:
    """Output of a segmentation pass. An empty result carries confidence 0."""

    segments: list[Segment] = field(default_factory=list)
    instructions: list[CuttingInstruction] = field(default_factory=list)
    page_labels: list[PageLabel] = field(default_factory=list)
    confidence: int = 0
    from_text_layer: bool = True

    @property
    def is_empty(self) -> bool:
        return not self.segments
