"""
Document Storage

Raw uploaded bytes live outside the database. Two backends share one
interface:

  LocalDocumentStorage   files under ``upload_dir`` (development, single host)
  S3DocumentStorage      objects under s3://<bucket>/documents/<stored_filename>
                         with SSE on every PutObject

``save`` returns a storage location string (a path or an s3:// URI) that
is persisted on the Document row and handed back to ``load`` / ``delete``.
Locations are always built server-side from the generated stored filename;
nothing the client sends becomes part of a path or key.

A missing object raises FileNotFoundError on load; delete is idempotent.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path

import aioboto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


class DocumentStorage(ABC):
    @abstractmethod
    async def save(self, stored_filename: str, content: bytes, media_type: str) -> str:
        """Persist bytes and return the storage location."""

    @abstractmethod
    async def load(self, location: str) -> bytes:
        ...

    @abstractmethod
    async def delete(self, location: str) -> None:
        ...


def _safe_name(stored_filename: str) -> str:
    return stored_filename.replace("/", "_").replace("\\", "_").replace("..", "_")


# ---------------------------------------------------------------------------
# Local filesystem
# ---------------------------------------------------------------------------

class LocalDocumentStorage(DocumentStorage):
    """Blocking file I/O runs in a worker thread so the event loop never stalls."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    def _path_for(self, location: str) -> Path:
        path = Path(location).resolve()
        if self._root not in path.parents:
            raise FileNotFoundError(f"Location outside storage root: {location}")
        return path

    def _write(self, path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    async def save(self, stored_filename: str, content: bytes, media_type: str) -> str:
        path = self._root / _safe_name(stored_filename)
        await asyncio.to_thread(self._write, path, content)
        logger.info("Storage save | backend=local path=%s size=%d", path, len(content))
        return str(path)

    async def load(self, location: str) -> bytes:
        return await asyncio.to_thread(self._path_for(location).read_bytes)

    async def delete(self, location: str) -> None:
        path = self._path_for(location)
        await asyncio.to_thread(path.unlink, True)
        logger.info("Storage delete | backend=local path=%s", path)


# ---------------------------------------------------------------------------
# S3
# ---------------------------------------------------------------------------

class S3DocumentStorage(DocumentStorage):
    PREFIX = "documents"

    def __init__(
        self,
        bucket:      str,
        region:      str,
        session:     aioboto3.Session | None = None,
        kms_key_arn: str | None = None,
    ) -> None:
        self._bucket      = bucket
        self._region      = region
        self._session     = session or aioboto3.Session()
        self._kms_key_arn = kms_key_arn

    def _client(self):
        """Return a scoped async S3 client context manager."""
        return self._session.client("s3", region_name=self._region)

    def _sse_params(self) -> dict:
        if self._kms_key_arn:
            return {"ServerSideEncryption": "aws:kms", "SSEKMSKeyId": self._kms_key_arn}
        return {"ServerSideEncryption": "AES256"}

    def _key_from_location(self, location: str) -> str:
        prefix = f"s3://{self._bucket}/"
        if not location.startswith(prefix):
            raise FileNotFoundError(f"Location not in bucket {self._bucket}: {location}")
        return location[len(prefix):]

    async def save(self, stored_filename: str, content: bytes, media_type: str) -> str:
        key = f"{self.PREFIX}/{_safe_name(stored_filename)}"
        async with self._client() as s3:
            await s3.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=content,
                ContentType=media_type,
                **self._sse_params(),
            )
        logger.info("Storage save | backend=s3 key=%s size=%d", key, len(content))
        return f"s3://{self._bucket}/{key}"

    async def load(self, location: str) -> bytes:
        key = self._key_from_location(location)
        async with self._client() as s3:
            try:
                resp = await s3.get_object(Bucket=self._bucket, Key=key)
                return await resp["Body"].read()
            except ClientError as exc:
                code = exc.response["Error"]["Code"]
                if code in ("NoSuchKey", "404"):
                    raise FileNotFoundError(f"Object not found: {key}") from exc
                raise

    async def delete(self, location: str) -> None:
        key = self._key_from_location(location)
        async with self._client() as s3:
            await s3.delete_object(Bucket=self._bucket, Key=key)
        logger.info("Storage delete | backend=s3 key=%s", key)


def build_storage(settings) -> DocumentStorage:
    if settings.storage_backend == "s3":
        return S3DocumentStorage(bucket=settings.s3_bucket, region=settings.aws_region)
    return LocalDocumentStorage(settings.upload_dir)
