class StorageError(Exception):
    """Raised when the blob store cannot be reached or rejects an operation."""


class StorageObjectNotFoundError(StorageError):
    """Raised when no object exists under the requested key."""
