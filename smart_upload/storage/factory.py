from pathlib import Path

from smart_upload.config.settings import Settings
from smart_upload.storage.base import BaseStorageGateway
from smart_upload.storage.local_adapter import LocalStorageGateway
from smart_upload.storage.s3_adapter import S3StorageGateway


class StorageGatewayFactory:
    """Creates the configured storage gateway."""

    DRIVERS = ("local", "s3")

    @classmethod
    def create(cls, settings: Settings, files_root: Path | None = None) -> BaseStorageGateway:
        driver = settings.storage_driver.lower()
        if driver == "local":
            return LocalStorageGateway(files_root=files_root or Path(settings.storage_root))
        if driver == "s3":
            client_kwargs: dict[str, str] = {"region_name": settings.s3_region}
            if settings.s3_endpoint_url:
                client_kwargs["endpoint_url"] = settings.s3_endpoint_url
            if settings.s3_access_key_id:
                client_kwargs["aws_access_key_id"] = settings.s3_access_key_id
                client_kwargs["aws_secret_access_key"] = settings.s3_secret_access_key
            return S3StorageGateway(bucket=settings.s3_bucket, **client_kwargs)
        raise ValueError(
            f"Unknown storage driver '{driver}'. Choose from: {list(cls.DRIVERS)}"
        )
