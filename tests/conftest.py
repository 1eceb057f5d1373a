import io
from collections.abc import Callable

import pytest
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas


def build_pdf(headers: list[str | None], body: str = "Allegro moderato, measures 1 to 32") -> bytes:
    """Build a letter-size PDF with one page per entry.

    A string entry is drawn in the header band with body text further down;
    None produces a blank page with no text layer.
    """
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    for header in headers:
        if header is not None:
            c.setFont("Helvetica-Bold", 14)
            c.drawString(72, 740, header)
            c.setFont("Helvetica", 10)
            c.drawString(72, 400, body)
        c.showPage()
    c.save()
    return buf.getvalue()


@pytest.fixture()
def make_pdf() -> Callable[..., bytes]:
    return build_pdf


@pytest.fixture()
def sample_pdf_bytes() -> bytes:
    """Generate a minimal single-page PDF with a part header."""
    return build_pdf(["Flute"])


@pytest.fixture()
def part_headers_pdf_bytes() -> bytes:
    """Six pages: two each of Flute, 1st Clarinet and Tuba."""
    return build_pdf(["Flute", "Flute", "1st Clarinet", "1st Clarinet", "Tuba", "Tuba"])


@pytest.fixture()
def blank_pdf_bytes() -> bytes:
    """Three pages with no text layer, as a scanned document would have."""
    return build_pdf([None, None, None])
