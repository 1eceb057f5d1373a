from abc import ABC, abstractmethod

from smart_upload.extraction.models import ExtractedMetadata, ExtractionOutcome, HeaderLabel
from smart_upload.parts.models import CuttingInstruction
from smart_upload.pdf.models import PageImage


class BaseExtractor(ABC):
    """Contract for all metadata extraction adapters."""

    @abstractmethod
    def extract_metadata(
        self,
        images: list[PageImage],
        *,
        total_pages: int,
        seed_instructions: list[CuttingInstruction] | None = None,
    ) -> ExtractionOutcome:
        """Read title-level metadata and cutting instructions from page images.

        Returns:
            ParsedExtraction, or MalformedExtraction if the model answer could
            not be parsed.

        Raises:
            ExtractionNetworkError: when the provider cannot be reached.
        """

    @abstractmethod
    def label_headers(self, crops: list[PageImage]) -> list[HeaderLabel]:
        """Read the instrument label printed in each header crop."""

    @abstractmethod
    def verify(
        self,
        images: list[PageImage],
        *,
        total_pages: int,
        previous_metadata: ExtractedMetadata,
        previous_instructions: list[CuttingInstruction],
    ) -> ExtractionOutcome:
        """Re-check an earlier extraction against the pages with the verification model."""
