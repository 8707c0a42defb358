# storefront/storage.py
from pathlib import Path
from typing import Protocol

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings
from .errors import StorageError

logger = structlog.get_logger(__name__)


class StorageBackend(Protocol):
    def upload_file(self, content: bytes, path: str) -> str: ...

    def delete_file(self, path: str) -> None: ...


class LocalStorage:
    """Files under ``base_path``, served back as ``/uploads/<path>``."""

    def __init__(self, base_path: str):
        self.base_path = Path(base_path).resolve()

    def _full_path(self, path: str) -> Path:
        full = (self.base_path / path.lstrip("/")).resolve()
        if self.base_path not in full.parents:
            raise StorageError("invalid upload path")
        return full

    def upload_file(self, content: bytes, path: str) -> str:
        full = self._full_path(path)
        try:
            full.parent.mkdir(parents=True, exist_ok=True, mode=0o750)
            full.write_bytes(content)
        except OSError as exc:
            raise StorageError() from exc
        return f"/uploads/{path.lstrip('/')}"

    def delete_file(self, path: str) -> None:
        if path.startswith("/uploads/"):
            path = path[len("/uploads/"):]
        try:
            self._full_path(path).unlink()
        except OSError as exc:
            raise StorageError() from exc


class S3Storage:
    def __init__(self, client, bucket: str):
        self.client = client
        self.bucket = bucket

    def upload_file(self, content: bytes, path: str) -> str:
        key = path.lstrip("/")
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=content)
        except (BotoCoreError, ClientError) as exc:
            logger.error("S3 upload failed", bucket=self.bucket, key=key, error=str(exc))
            raise StorageError() from exc
        return key

    def delete_file(self, path: str) -> None:
        key = path.lstrip("/")
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError() from exc


def build_storage(settings: Settings) -> StorageBackend:
    if settings.upload_provider == "s3":
        client = boto3.client(
            "s3",
            region_name=settings.aws_region,
            endpoint_url=settings.s3_endpoint,
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
        )
        return S3Storage(client, settings.s3_bucket)
    return LocalStorage(settings.upload_path)
