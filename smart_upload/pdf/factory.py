from smart_upload.config.settings import Settings
from smart_upload.pdf.base import BaseDocumentRenderer
from smart_upload.pdf.pdfplumber_adapter import PdfPlumberRenderer
from smart_upload.pdf.pymupdf_adapter import PyMuPdfRenderer


class DocumentRendererFactory:
    """Creates the correct document renderer based on settings."""

    ADAPTERS: dict[str, type[BaseDocumentRenderer]] = {
        "pdfplumber": PdfPlumberRenderer,
        "pymupdf": PyMuPdfRenderer,
    }

    @classmethod
    def create(cls, settings: Settings) -> BaseDocumentRenderer:
        engine = settings.pdf_engine.lower()
        adapter_cls = cls.ADAPTERS.get(engine)
        if adapter_cls is None:
            raise ValueError(
                f"Unknown PDF engine '{engine}'. Choose from: {list(cls.ADAPTERS)}"
            )
        return adapter_cls(dpi=settings.render_dpi, header_dpi=settings.header_crop_dpi)
