from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from smart_upload.storage.base import BaseStorageGateway, StoredObject
from smart_upload.storage.exceptions import StorageError, StorageObjectNotFoundError

_MISSING_CODES = frozenset({"NoSuchKey", "404", "NotFound"})


class S3StorageGateway(BaseStorageGateway):
    """Stores objects in an S3-compatible bucket (AWS S3, MinIO)."""

    def __init__(self, *, bucket: str, client: Any | None = None, **client_kwargs: Any) -> None:
        if not bucket:
            raise ValueError("s3_bucket is required for storage_driver=s3")
        self._bucket = bucket
        self._client = client if client is not None else boto3.client("s3", **client_kwargs)

    def download(self, key: str) -> StoredObject:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_CODES:
                raise StorageObjectNotFoundError(f"Object not found: {key}") from exc
            raise StorageError(f"S3 download failed for {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"S3 download failed for {key}: {exc}") from exc
        return StoredObject(
            stream=response["Body"],
            content_type=response.get("ContentType") or "application/octet-stream",
            size=int(response.get("ContentLength") or 0),
        )

    def upload(self, key: str, data: bytes, content_type: str = "application/pdf") -> str:
        try:
            response = self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"S3 upload failed for {key}: {exc}") from exc
        return str(response.get("ETag", "")).strip('"')
