import hashlib
import mimetypes
import os
import tempfile
from pathlib import Path

from smart_upload.storage.base import BaseStorageGateway, StoredObject
from smart_upload.storage.exceptions import StorageError, StorageObjectNotFoundError


class LocalStorageGateway(BaseStorageGateway):
    """Stores objects as files below a root directory, one file per key."""

    FILES_ROOT = Path("/app/files")

    def __init__(self, files_root: Path | None = None) -> None:
        self._files_root = files_root if files_root is not None else self.FILES_ROOT

    def download(self, key: str) -> StoredObject:
        path = self._resolve_path(key)
        if not path.is_file():
            raise StorageObjectNotFoundError(f"Object not found: {key}")
        try:
            size = path.stat().st_size
            stream = path.open("rb")
        except OSError as exc:
            raise StorageError(f"Failed to open {key}: {exc}") from exc
        content_type = mimetypes.guess_type(path.name)[0] or "application/pdf"
        return StoredObject(stream=stream, content_type=content_type, size=size)

    def upload(self, key: str, data: bytes, content_type: str = "application/pdf") -> str:
        path = self._resolve_path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Readers never observe a partially written object.
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".upload-")
        except OSError as exc:
            raise StorageError(f"Failed to write {key}: {exc}") from exc
        try:
            with os.fdopen(fd, "wb") as tmp:
                tmp.write(data)
            os.replace(tmp_name, path)
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise StorageError(f"Failed to write {key}: {exc}") from exc
        return hashlib.md5(data).hexdigest()  # noqa: S324

    def _resolve_path(self, key: str) -> Path:
        root = self._files_root.resolve()
        path = (root / key.lstrip("/")).resolve()
        if not path.is_relative_to(root):
            raise StorageError(f"Key escapes storage root: {key}")
        return path
