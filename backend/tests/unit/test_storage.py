"""
Unit Tests: document storage backends
═════════════════════════════════════
Tests for compliance/storage/documents.py

Coverage:
  ✅ Local: save / load / delete round trip under the storage root
  ✅ Local: path separators in the stored name never escape the root
  ✅ Local: locations outside the root are refused; delete is idempotent
  ✅ S3: PutObject carries SSE-S3 by default, SSE-KMS when a key is set
  ✅ S3: NoSuchKey → FileNotFoundError, other ClientErrors propagate
  ✅ S3: foreign bucket locations are refused
  ✅ build_storage picks the backend from settings
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from botocore.exceptions import ClientError

from compliance.storage.documents import LocalDocumentStorage, S3DocumentStorage, build_storage


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "test"}}, "operation")


def _build_s3_mock(body: bytes = b"%PDF-1.4") -> AsyncMock:
    """Build a mock S3 client usable as an async context manager."""
    s3 = AsyncMock()
    s3.__aenter__ = AsyncMock(return_value=s3)
    s3.__aexit__  = AsyncMock(return_value=None)

    stream = AsyncMock()
    stream.read = AsyncMock(return_value=body)
    s3.put_object    = AsyncMock(return_value={"ETag": '"etag-123"'})
    s3.get_object    = AsyncMock(return_value={"Body": stream})
    s3.delete_object = AsyncMock(return_value={})
    return s3


def _s3_storage(s3: AsyncMock, kms_key_arn: str | None = None) -> S3DocumentStorage:
    session = MagicMock()
    session.client.return_value = s3
    return S3DocumentStorage("test-bucket", "us-east-1", session=session, kms_key_arn=kms_key_arn)


# ─────────────────────────────────────────────────────────────────────────────
# Local
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestLocalDocumentStorage:

    async def test_round_trip(self, storage, tmp_path, sample_pdf_bytes):
        location = await storage.save("1700000000-abc.pdf", sample_pdf_bytes, "application/pdf")

        assert location == str((tmp_path / "uploads" / "1700000000-abc.pdf").resolve())
        assert await storage.load(location) == sample_pdf_bytes

        await storage.delete(location)

        with pytest.raises(FileNotFoundError):
            await storage.load(location)

    async def test_separators_in_name_stay_inside_root(self, storage, tmp_path):
        location = await storage.save("../../etc/passwd", b"x", "text/plain")

        assert location.startswith(str((tmp_path / "uploads").resolve()))
        assert await storage.load(location) == b"x"

    async def test_outside_location_is_refused(self, storage, tmp_path):
        outside = tmp_path / "secret.txt"
        outside.write_bytes(b"secret")

        with pytest.raises(FileNotFoundError):
            await storage.load(str(outside))

    async def test_delete_is_idempotent(self, storage):
        location = await storage.save("a.txt", b"x", "text/plain")

        await storage.delete(location)
        await storage.delete(location)


# ─────────────────────────────────────────────────────────────────────────────
# S3
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestS3DocumentStorage:

    async def test_save_uses_sse_s3_by_default(self, sample_pdf_bytes):
        s3 = _build_s3_mock()

        location = await _s3_storage(s3).save("1700-abc.pdf", sample_pdf_bytes, "application/pdf")

        assert location == "s3://test-bucket/documents/1700-abc.pdf"
        s3.put_object.assert_awaited_once_with(
            Bucket="test-bucket",
            Key="documents/1700-abc.pdf",
            Body=sample_pdf_bytes,
            ContentType="application/pdf",
            ServerSideEncryption="AES256",
        )

    async def test_save_uses_kms_when_configured(self):
        s3 = _build_s3_mock()
        kms = "arn:aws:kms:us-east-1:000:key/test"

        await _s3_storage(s3, kms_key_arn=kms).save("a.pdf", b"x", "application/pdf")

        kwargs = s3.put_object.await_args.kwargs
        assert kwargs["ServerSideEncryption"] == "aws:kms"
        assert kwargs["SSEKMSKeyId"] == kms

    async def test_load_reads_body(self):
        s3 = _build_s3_mock(body=b"content")

        data = await _s3_storage(s3).load("s3://test-bucket/documents/a.pdf")

        assert data == b"content"
        s3.get_object.assert_awaited_once_with(Bucket="test-bucket", Key="documents/a.pdf")

    async def test_missing_object_is_file_not_found(self):
        s3 = _build_s3_mock()
        s3.get_object.side_effect = _client_error("NoSuchKey")

        with pytest.raises(FileNotFoundError):
            await _s3_storage(s3).load("s3://test-bucket/documents/a.pdf")

    async def test_other_client_errors_propagate(self):
        s3 = _build_s3_mock()
        s3.get_object.side_effect = _client_error("AccessDenied")

        with pytest.raises(ClientError):
            await _s3_storage(s3).load("s3://test-bucket/documents/a.pdf")

    async def test_foreign_bucket_is_refused(self):
        s3 = _build_s3_mock()

        with pytest.raises(FileNotFoundError):
            await _s3_storage(s3).delete("s3://other-bucket/documents/a.pdf")

        s3.delete_object.assert_not_awaited()

    async def test_delete(self):
        s3 = _build_s3_mock()

        await _s3_storage(s3).delete("s3://test-bucket/documents/a.pdf")

        s3.delete_object.assert_awaited_once_with(Bucket="test-bucket", Key="documents/a.pdf")


@pytest.mark.unit
def test_build_storage_selects_backend(settings):
    assert isinstance(build_storage(settings), LocalDocumentStorage)

    s3_settings = settings.model_copy(update={"storage_backend": "s3", "s3_bucket": "b"})
    assert isinstance(build_storage(s3_settings), S3DocumentStorage)
