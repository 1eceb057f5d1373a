import io

import pdfplumber

from smart_upload.pdf.base import BaseDocumentRenderer, header_band_height, make_page_header
from smart_upload.pdf.engine_lock import pdf_engine_lock
from smart_upload.pdf.exceptions import PdfRenderError
from smart_upload.pdf.models import PageHeader, PageImage


class PdfPlumberRenderer(BaseDocumentRenderer):
    """Renders pages and reads the text layer using pdfplumber."""

    def page_count(self, pdf_bytes: bytes) -> int:
        try:
            with pdf_engine_lock, pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
                return len(pdf.pages)
        except Exception as exc:
            raise PdfRenderError(f"pdfplumber could not open document: {exc}") from exc

    def _render(self, pdf_bytes: bytes, page_indices: list[int], *, header_only: bool) -> list[PageImage]:
        dpi = self._header_dpi if header_only else self._dpi
        try:
            images: list[PageImage] = []
            with pdf_engine_lock, pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
                for index in page_indices:
                    page = pdf.pages[index]
                    if header_only:
                        page = page.crop((0, 0, page.width, header_band_height(page.height)))
                    buf = io.BytesIO()
                    page.to_image(resolution=dpi).original.save(buf, format="PNG")
                    images.append(PageImage(page_index=index, data=buf.getvalue()))
            return images
        except Exception as exc:
            raise PdfRenderError(f"pdfplumber rendering failed: {exc}") from exc

    def _scan_text(self, pdf_bytes: bytes) -> list[PageHeader]:
        try:
            headers: list[PageHeader] = []
            with pdf_engine_lock, pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
                for index, page in enumerate(pdf.pages):
                    band = page.crop((0, 0, page.width, header_band_height(page.height)))
                    headers.append(
                        make_page_header(
                            index,
                            band.extract_text() or "",
                            page.extract_text() or "",
                        )
                    )
            return headers
        except Exception as exc:
            raise PdfRenderError(f"pdfplumber text scan failed: {exc}") from exc
