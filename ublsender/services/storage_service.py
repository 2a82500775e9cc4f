"""Storage service for the raw documents and CDRs (S3 or local filesystem)."""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ublsender.config import Settings, settings as default_settings
from ublsender.exceptions import StorageError
from ublsender.logging_config import get_logger
from ublsender.models.delivery import FileType

logger = get_logger(component="storage")


class FileStorage(ABC):
    """
    Blob store used by the scheduler (upload) and the worker (download).

    Implementations only do the blocking I/O; timeouts and error wrapping are
    handled here so every backend fails with StorageError.
    """

    def __init__(self, timeout: float):
        self.timeout = timeout

    @abstractmethod
    def _put(self, content: bytes, key: str, file_type: FileType) -> str | None:
        """Store content under key and return its file id."""

    @abstractmethod
    def _get(self, file_id: str) -> bytes:
        """Read content back by file id."""

    async def upload(self, content: bytes, key: str, file_type: FileType) -> str:
        """
        Upload content under key.

        Returns:
            Opaque file id

        Raises:
            StorageError: backend failure, timeout or empty file id
        """
        try:
            file_id = await asyncio.wait_for(
                asyncio.to_thread(self._put, content, key, file_type),
                timeout=self.timeout,
            )
        except StorageError:
            raise
        except asyncio.TimeoutError as e:
            logger.error("upload_timeout", key=key, timeout=self.timeout)
            raise StorageError(f"Upload of {key} timed out after {self.timeout}s") from e
        except (OSError, BotoCoreError, ClientError) as e:
            logger.error("upload_failed", key=key, error=str(e))
            raise StorageError(f"Could not save {key} in storage: {e}") from e

        if not file_id:
            raise StorageError(f"Could not save {key} in storage")

        logger.info("upload_completed", key=key, file_id=file_id)
        return file_id

    async def download(self, file_id: str) -> bytes:
        """Download content by file id; failures raise StorageError."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._get, file_id),
                timeout=self.timeout,
            )
        except StorageError:
            raise
        except asyncio.TimeoutError as e:
            raise StorageError(f"Download of {file_id} timed out after {self.timeout}s") from e
        except (OSError, BotoCoreError, ClientError) as e:
            logger.error("download_failed", file_id=file_id, error=str(e))
            raise StorageError(f"Could not read {file_id} from storage: {e}") from e


class S3FileStorage(FileStorage):
    """Stores files in an S3 (or S3-compatible) bucket; the file id is the object key."""

    def __init__(self, settings: Settings = default_settings):
        super().__init__(timeout=settings.STORAGE_TIMEOUT_SECONDS)
        self.bucket_name = settings.S3_BUCKET_NAME
        kwargs = {
            "region_name": settings.S3_REGION,
            "aws_access_key_id": settings.S3_ACCESS_KEY,
            "aws_secret_access_key": settings.S3_SECRET_KEY,
        }
        if settings.S3_ENDPOINT_URL:
            kwargs["endpoint_url"] = settings.S3_ENDPOINT_URL
        self.s3_client = boto3.client("s3", **kwargs)

    def _put(self, content: bytes, key: str, file_type: FileType) -> str | None:
        self.s3_client.put_object(
            Bucket=self.bucket_name,
            Key=key,
            Body=content,
            ContentType=file_type.value,
        )
        return key

    def _get(self, file_id: str) -> bytes:
        response = self.s3_client.get_object(Bucket=self.bucket_name, Key=file_id)
        return response["Body"].read()


class FilesystemFileStorage(FileStorage):
    """Stores files under a local directory; the file id is the relative path."""

    def __init__(self, base_dir: str | Path, timeout: float = 10.0):
        super().__init__(timeout=timeout)
        self.base_dir = Path(base_dir)

    def _path(self, file_id: str) -> Path:
        path = (self.base_dir / file_id).resolve()
        if self.base_dir.resolve() not in path.parents:
            raise StorageError(f"Invalid file id: {file_id}")
        return path

    def _put(self, content: bytes, key: str, file_type: FileType) -> str | None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return key

    def _get(self, file_id: str) -> bytes:
        return self._path(file_id).read_bytes()


def create_storage(settings: Settings = default_settings) -> FileStorage:
    """Build the configured storage backend."""
    if settings.STORAGE_BACKEND == "s3":
        return S3FileStorage(settings)
    return FilesystemFileStorage(settings.STORAGE_DIR, timeout=settings.STORAGE_TIMEOUT_SECONDS)
