"""Tests for the S3 client wrapper: presigned PUT URLs and bucket probe.

boto3 calls are mocked except where noted.
"""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from app.config import settings
from app.utils import s3


@pytest.fixture(autouse=True)
def _reset_s3_client():
    """Reset the singleton S3 client before each test."""
    s3.reset_client()
    yield
    s3.reset_client()


@pytest.fixture()
def mock_s3():
    """Provide a mocked boto3 S3 client."""
    with patch.object(s3, "_build_client") as mock_build:
        mock_client = MagicMock()
        mock_build.return_value = mock_client
        yield mock_client


class TestGenerateUploadUrl:
    def test_presigns_put_for_exact_key(self, mock_s3):
        """Verifies a PUT URL is signed for the key with image/jpeg content type."""
        mock_s3.generate_presigned_url.return_value = "https://s3.example.com/signed"

        url = s3.generate_upload_url("user-1/1700000000000.jpg", 10)

        assert url == "https://s3.example.com/signed"
        mock_s3.generate_presigned_url.assert_called_once_with(
            "put_object",
            Params={
                "Bucket": settings.s3_bucket_name,
                "Key": "user-1/1700000000000.jpg",
                "ContentType": "image/jpeg",
            },
            ExpiresIn=10,
            HttpMethod="PUT",
        )

    def test_logs_client_error(self, mock_s3):
        """Verifies presign failures are logged before re-raising."""
        mock_s3.generate_presigned_url.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "nope"}},
            "PutObject",
        )

        with patch.object(s3, "logger") as mock_logger, pytest.raises(ClientError):
            s3.generate_upload_url("user-1/1.jpg", 10)

        mock_logger.error.assert_called_once()
        assert mock_logger.error.call_args[0][0] == "s3_presign_failed"
        assert mock_logger.error.call_args[1]["key"] == "user-1/1.jpg"

    def test_real_presign_contains_expiry(self):
        """Presigning is local; with dummy credentials the URL carries X-Amz-Expires."""
        url = s3.generate_upload_url("user-1/1700000000000.jpg", 7)
        assert "X-Amz-Expires=7" in url
        assert "user-1/1700000000000.jpg" in url


class TestHeadBucket:
    def test_probes_configured_bucket(self, mock_s3):
        s3.head_bucket()
        mock_s3.head_bucket.assert_called_once_with(Bucket=settings.s3_bucket_name)

    def test_propagates_errors(self, mock_s3):
        mock_s3.head_bucket.side_effect = ClientError(
            {"Error": {"Code": "403", "Message": "Forbidden"}}, "HeadBucket"
        )
        with pytest.raises(ClientError):
            s3.head_bucket()


class TestClientSingleton:
    def test_client_is_reused(self, mock_s3):
        s3.generate_upload_url("a/1.jpg", 10)
        s3.generate_upload_url("a/2.jpg", 10)
        assert mock_s3.generate_presigned_url.call_count == 2

    def test_reset_forces_rebuild(self):
        with patch.object(s3, "_build_client") as mock_build:
            mock_build.return_value = MagicMock()
            s3.head_bucket()
            s3.reset_client()
            s3.head_bucket()
            assert mock_build.call_count == 2
