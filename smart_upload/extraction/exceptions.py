class ExtractionError(Exception):
    """Raised when metadata extraction fails."""


class ExtractionValidationError(ExtractionError):
    """Raised when a parsed model response does not have the required shape."""


class ExtractionNetworkError(ExtractionError):
    """Raised when the AI provider call fails due to network/infrastructure issues."""
