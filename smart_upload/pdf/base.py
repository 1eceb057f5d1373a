from abc import ABC, abstractmethod

from smart_upload.pdf.models import HeaderExtraction, PageHeader, PageImage
from smart_upload.pdf.render_cache import RenderCache

HEADER_BAND_FRACTION = 0.2
HEADER_BAND_PADDING_PT = 50.0
MIN_TEXT_CHARS = 10
MAX_FULL_TEXT_CHARS = 500
TEXT_LAYER_COVERAGE_THRESHOLD = 0.6


class BaseDocumentRenderer(ABC):
    """Contract for all PDF rendering and text-layer adapters.

    Page indices are 0-based throughout.
    """

    def __init__(self, *, dpi: int = 110, header_dpi: int = 150) -> None:
        self._dpi = dpi
        self._header_dpi = header_dpi

    @abstractmethod
    def page_count(self, pdf_bytes: bytes) -> int:
        """Return the number of pages.

        Raises:
            PdfRenderError: if the bytes are not a readable PDF.
        """

    @abstractmethod
    def _render(self, pdf_bytes: bytes, page_indices: list[int], *, header_only: bool) -> list[PageImage]:
        """Rasterize the given pages (or only their header band) to PNG."""

    @abstractmethod
    def _scan_text(self, pdf_bytes: bytes) -> list[PageHeader]:
        """Read header-band text and bounded full text for every page."""

    def render_pages(
        self,
        pdf_bytes: bytes,
        page_indices: list[int],
        cache: RenderCache | None = None,
    ) -> list[PageImage]:
        """Render full pages to images, reusing anything already in the cache."""
        return self._render_cached(pdf_bytes, page_indices, cache, kind="page")

    def render_header_crops(
        self,
        pdf_bytes: bytes,
        page_indices: list[int],
        cache: RenderCache | None = None,
    ) -> list[PageImage]:
        """Render the top band of each page, where part names are printed."""
        return self._render_cached(pdf_bytes, page_indices, cache, kind="header")

    def extract_headers(self, pdf_bytes: bytes) -> HeaderExtraction:
        """Scan the text layer and report per-page header text and coverage.

        Coverage is the fraction of pages carrying at least MIN_TEXT_CHARS
        characters of text. The layer counts as usable at
        TEXT_LAYER_COVERAGE_THRESHOLD or above.
        """
        headers = self._scan_text(pdf_bytes)
        if not headers:
            return HeaderExtraction(has_text_layer=False, page_headers=[], coverage=0.0)
        with_text = sum(1 for header in headers if header.has_text)
        coverage = with_text / len(headers)
        return HeaderExtraction(
            has_text_layer=coverage >= TEXT_LAYER_COVERAGE_THRESHOLD,
            page_headers=headers,
            coverage=coverage,
        )

    def _render_cached(
        self,
        pdf_bytes: bytes,
        page_indices: list[int],
        cache: RenderCache | None,
        *,
        kind: str,
    ) -> list[PageImage]:
        dpi = self._header_dpi if kind == "header" else self._dpi
        missing = [
            index for index in page_indices
            if cache is None or cache.get(kind, index, dpi) is None
        ]
        rendered: dict[int, PageImage] = {}
        if missing:
            for image in self._render(pdf_bytes, missing, header_only=kind == "header"):
                rendered[image.page_index] = image
                if cache is not None:
                    cache.put(kind, image.page_index, dpi, image)
        images: list[PageImage] = []
        for index in page_indices:
            image = rendered.get(index)
            if image is None and cache is not None:
                image = cache.get(kind, index, dpi)
            if image is not None:
                images.append(image)
        return images


def header_band_height(page_height: float) -> float:
    return min(page_height, page_height * HEADER_BAND_FRACTION + HEADER_BAND_PADDING_PT)


def make_page_header(page_index: int, header_text: str, full_text: str) -> PageHeader:
    header = " ".join(header_text.split())
    full = " ".join(full_text.split())
    return PageHeader(
        page_index=page_index,
        header_text=header,
        full_text=full[:MAX_FULL_TEXT_CHARS],
        has_text=len(full) >= MIN_TEXT_CHARS,
    )
