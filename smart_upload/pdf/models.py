from dataclasses import dataclass, field

from smart_upload.parts.models import CuttingInstruction


@dataclass(frozen=True)
class PageImage:
    """A rendered page (or page header crop). page_index is 0-based."""

    page_index: int
    data: bytes
    mime_type: str = "image/png"

    @property
    def label(self) -> str:
        return f"Page {self.page_index + 1}"


@dataclass(frozen=True)
class PageHeader:
    """Text found in the header band of one page, plus a bounded slice of its full text."""

    page_index: int
    header_text: str = ""
    full_text: str = ""
    has_text: bool = False


@dataclass(frozen=True)
class HeaderExtraction:
    """Text-layer scan of a document."""

    has_text_layer: bool
    page_headers: list[PageHeader] = field(default_factory=list)
    coverage: float = 0.0


@dataclass(frozen=True)
class PartResult:
    """One split output: the instruction, its PDF bytes and the realized page count."""

    instruction: CuttingInstruction
    data: bytes
    page_count: int
