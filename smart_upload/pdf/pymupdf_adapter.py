import pymupdf

from smart_upload.pdf.base import BaseDocumentRenderer, header_band_height, make_page_header
from smart_upload.pdf.engine_lock import pdf_engine_lock
from smart_upload.pdf.exceptions import PdfRenderError
from smart_upload.pdf.models import PageHeader, PageImage


class PyMuPdfRenderer(BaseDocumentRenderer):
    """Renders pages and reads the text layer using PyMuPDF."""

    def page_count(self, pdf_bytes: bytes) -> int:
        try:
            with pdf_engine_lock, pymupdf.open(stream=pdf_bytes, filetype="pdf") as doc:  # type: ignore[no-untyped-call]
                return int(doc.page_count)
        except Exception as exc:
            raise PdfRenderError(f"pymupdf could not open document: {exc}") from exc

    def _render(self, pdf_bytes: bytes, page_indices: list[int], *, header_only: bool) -> list[PageImage]:
        dpi = self._header_dpi if header_only else self._dpi
        try:
            images: list[PageImage] = []
            with pdf_engine_lock, pymupdf.open(stream=pdf_bytes, filetype="pdf") as doc:  # type: ignore[no-untyped-call]
                for index in page_indices:
                    page = doc[index]
                    clip = None
                    if header_only:
                        rect = page.rect
                        clip = pymupdf.Rect(
                            rect.x0, rect.y0, rect.x1, rect.y0 + header_band_height(rect.height)
                        )
                    pixmap = page.get_pixmap(dpi=dpi, clip=clip)
                    images.append(PageImage(page_index=index, data=pixmap.tobytes("png")))
            return images
        except Exception as exc:
            raise PdfRenderError(f"pymupdf rendering failed: {exc}") from exc

    def _scan_text(self, pdf_bytes: bytes) -> list[PageHeader]:
        try:
            headers: list[PageHeader] = []
            with pdf_engine_lock, pymupdf.open(stream=pdf_bytes, filetype="pdf") as doc:  # type: ignore[no-untyped-call]
                for index, page in enumerate(doc):
                    rect = page.rect
                    band = pymupdf.Rect(
                        rect.x0, rect.y0, rect.x1, rect.y0 + header_band_height(rect.height)
                    )
                    headers.append(
                        make_page_header(index, page.get_text(clip=band), page.get_text())
                    )
            return headers
        except Exception as exc:
            raise PdfRenderError(f"pymupdf text scan failed: {exc}") from exc
