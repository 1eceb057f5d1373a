from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO


@dataclass
class StoredObject:
    """An object fetched from the blob store. The caller closes the stream."""

    stream: BinaryIO
    content_type: str
    size: int

    def read_all(self) -> bytes:
        try:
            return self.stream.read()
        finally:
            self.stream.close()


class BaseStorageGateway(ABC):
    """Contract for blob store adapters."""

    @abstractmethod
    def download(self, key: str) -> StoredObject:
        """Open the object stored under key.

        Raises:
            StorageObjectNotFoundError: if nothing is stored under key.
            StorageError: on any other storage failure.
        """

    @abstractmethod
    def upload(self, key: str, data: bytes, content_type: str = "application/pdf") -> str:
        """Store data under key, replacing any existing object.

        Returns:
            The etag of the stored object.

        Raises:
            StorageError: on any storage failure.
        """


def part_storage_key(namespace: str, session_id: str, part_index: int) -> str:
    """Build the key a split part is stored under: <namespace>/<sessionId>/<partIndex>."""
    return f"{namespace.strip('/')}/{session_id}/{part_index}"
