class ProcessorError(Exception):
    """Base exception for all processor-related errors."""


class NonRetryableError(ProcessorError):
    """Raised when retrying the job cannot change the outcome."""


class SessionNotFoundError(NonRetryableError):
    """Raised when an upload session cannot be found in the database."""


class DocumentRejectedError(NonRetryableError):
    """Raised when the uploaded file is too large or not a readable PDF."""


class ExtractionMalformedError(ProcessorError):
    """Raised when the vision model answered with output that could not be parsed."""


class BudgetExhaustedError(NonRetryableError):
    """Raised when a job has used up its allowance of model calls."""
