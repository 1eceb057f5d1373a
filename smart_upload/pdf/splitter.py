import pymupdf

from smart_upload.logging.logger import Log
from smart_upload.parts.models import CuttingInstruction
from smart_upload.pdf.engine_lock import pdf_engine_lock
from smart_upload.pdf.exceptions import PdfRenderError, SplitError
from smart_upload.pdf.models import PartResult


class PdfSplitter:
    """Cuts a PDF into one document per cutting instruction using PyMuPDF."""

    def split(
        self,
        pdf_bytes: bytes,
        instructions: list[CuttingInstruction],
    ) -> list[PartResult]:
        """Produce one PDF buffer per instruction, in instruction order.

        Raises:
            SplitError: if a range falls outside the document or a produced part
                does not hold exactly the requested number of pages.
            PdfRenderError: if the source cannot be opened.
        """
        with pdf_engine_lock:
            return self._split(pdf_bytes, instructions)

    @staticmethod
    def _split(pdf_bytes: bytes, instructions: list[CuttingInstruction]) -> list[PartResult]:
        try:
            source = pymupdf.open(stream=pdf_bytes, filetype="pdf")  # type: ignore[no-untyped-call]
        except Exception as exc:
            raise PdfRenderError(f"pymupdf could not open document for split: {exc}") from exc

        results: list[PartResult] = []
        with source:
            total_pages = source.page_count
            for instruction in instructions:
                if instruction.page_start < 0 or instruction.page_end >= total_pages:
                    raise SplitError(
                        f"Part '{instruction.part_name}' range "
                        f"{instruction.page_start}-{instruction.page_end} is outside "
                        f"a {total_pages}-page document"
                    )
                with pymupdf.open() as part_doc:  # type: ignore[no-untyped-call]
                    part_doc.insert_pdf(
                        source,
                        from_page=instruction.page_start,
                        to_page=instruction.page_end,
                    )
                    page_count = part_doc.page_count
                    data = part_doc.tobytes(garbage=3, deflate=True)
                if page_count != instruction.page_count:
                    raise SplitError(
                        f"Part '{instruction.part_name}' has {page_count} pages, "
                        f"expected {instruction.page_count}"
                    )
                results.append(
                    PartResult(instruction=instruction, data=data, page_count=page_count)
                )

        Log.debug(f"Split document into {len(results)} parts")
        return results
