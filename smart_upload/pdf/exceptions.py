class PdfError(Exception):
    """Base exception for PDF rendering and splitting."""


class PdfRenderError(PdfError):
    """Raised when a PDF cannot be opened, rendered or read."""


class SplitError(PdfError):
    """Raised when a split part does not contain exactly the requested pages."""
