from unittest.mock import patch

import pytest

from smart_upload.pdf.factory import DocumentRendererFactory
from smart_upload.pdf.pdfplumber_adapter import PdfPlumberRenderer
from smart_upload.pdf.pymupdf_adapter import PyMuPdfRenderer


def _make_settings(pdf_engine: str):  # type: ignore[no-untyped-def]
    """Create a minimal Settings-like object with only the renderer fields."""
    with patch("smart_upload.config.settings.Settings") as mock_cls:
        settings = mock_cls.return_value
        settings.pdf_engine = pdf_engine
        settings.render_dpi = 110
        settings.header_crop_dpi = 150
        return settings


class TestDocumentRendererFactory:
    def test_creates_pdfplumber_renderer(self) -> None:
        renderer = DocumentRendererFactory.create(_make_settings("pdfplumber"))
        assert isinstance(renderer, PdfPlumberRenderer)

    def test_creates_pymupdf_renderer(self) -> None:
        renderer = DocumentRendererFactory.create(_make_settings("pymupdf"))
        assert isinstance(renderer, PyMuPdfRenderer)

    def test_is_case_insensitive(self) -> None:
        renderer = DocumentRendererFactory.create(_make_settings("PyMuPDF"))
        assert isinstance(renderer, PyMuPdfRenderer)

    def test_raises_for_unknown_engine(self) -> None:
        with pytest.raises(ValueError, match="Unknown PDF engine"):
            DocumentRendererFactory.create(_make_settings("unknown"))
