"""Tests for the Textract extraction activity."""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError
from temporalio.exceptions import ApplicationError

from app.activities import extract_text as mod
from app.models.contracts import ExtractTextInput, StoredImageRef

IMAGE = StoredImageRef(
    bucket="shopping-list-images",
    key="user-1/1700000000000.jpg",
    subject_id="user-1",
    captured_at_ms=1700000000000,
)

TEXTRACT_RESPONSE = {
    "Blocks": [
        {"BlockType": "PAGE", "Confidence": 99.9},
        {"BlockType": "LINE", "Text": "mjölk", "Confidence": 93.5},
        {"BlockType": "WORD", "Text": "mjölk", "Confidence": 93.5},
    ]
}


def _client_error(code: str, status: int = 400) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "DetectDocumentText",
    )


@pytest.fixture(autouse=True)
def _reset_textract_client():
    mod.reset_client()
    yield
    mod.reset_client()


@pytest.fixture()
def mock_textract():
    with patch.object(mod, "_build_client") as mock_build:
        client = MagicMock()
        mock_build.return_value = client
        yield client


class TestBlocksFromResponse:
    def test_maps_blocks_in_service_order(self):
        blocks = mod.blocks_from_response(TEXTRACT_RESPONSE)
        assert [b.block_type for b in blocks] == ["PAGE", "LINE", "WORD"]
        assert blocks[1].text == "mjölk"
        assert blocks[1].confidence == 93.5

    def test_page_block_has_empty_text(self):
        blocks = mod.blocks_from_response(TEXTRACT_RESPONSE)
        assert blocks[0].text == ""

    def test_empty_response(self):
        assert mod.blocks_from_response({}) == []


class TestDetectText:
    def test_reads_image_from_storage_reference(self, mock_textract):
        """Textract is pointed at the stored object; no bytes are sent."""
        mock_textract.detect_document_text.return_value = TEXTRACT_RESPONSE

        result = mod.detect_text(IMAGE)

        mock_textract.detect_document_text.assert_called_once_with(
            Document={
                "S3Object": {"Bucket": "shopping-list-images", "Name": "user-1/1700000000000.jpg"}
            }
        )
        assert len(result.blocks) == 3


class TestIsRetryable:
    @pytest.mark.parametrize(
        "exc",
        [
            _client_error("ThrottlingException"),
            _client_error("ProvisionedThroughputExceededException"),
            _client_error("InternalServerError", 500),
            _client_error("SomethingNew", 503),
            ReadTimeoutError(endpoint_url="https://textract.eu-north-1.amazonaws.com"),
            EndpointConnectionError(endpoint_url="https://textract.eu-north-1.amazonaws.com"),
        ],
    )
    def test_transient_errors(self, exc):
        assert mod.is_retryable(exc) is True

    @pytest.mark.parametrize(
        "exc",
        [
            _client_error("InvalidS3ObjectException"),
            _client_error("UnsupportedDocumentException"),
            _client_error("AccessDeniedException", 403),
            ValueError("boom"),
        ],
    )
    def test_permanent_errors(self, exc):
        assert mod.is_retryable(exc) is False


class TestExtractTextActivity:
    @pytest.mark.asyncio
    async def test_returns_extraction(self, mock_textract):
        mock_textract.detect_document_text.return_value = TEXTRACT_RESPONSE
        result = await mod.extract_text(ExtractTextInput(image=IMAGE))
        assert [b.text for b in result.blocks if b.block_type == "LINE"] == ["mjölk"]

    @pytest.mark.asyncio
    async def test_throttling_is_retryable_application_error(self, mock_textract):
        mock_textract.detect_document_text.side_effect = _client_error("ThrottlingException")
        with pytest.raises(ApplicationError) as exc_info:
            await mod.extract_text(ExtractTextInput(image=IMAGE))
        assert exc_info.value.non_retryable is False

    @pytest.mark.asyncio
    async def test_timeout_is_retryable_application_error(self, mock_textract):
        mock_textract.detect_document_text.side_effect = ReadTimeoutError(
            endpoint_url="https://textract.eu-north-1.amazonaws.com"
        )
        with pytest.raises(ApplicationError) as exc_info:
            await mod.extract_text(ExtractTextInput(image=IMAGE))
        assert exc_info.value.non_retryable is False

    @pytest.mark.asyncio
    async def test_bad_document_is_non_retryable(self, mock_textract):
        mock_textract.detect_document_text.side_effect = _client_error(
            "UnsupportedDocumentException"
        )
        with pytest.raises(ApplicationError) as exc_info:
            await mod.extract_text(ExtractTextInput(image=IMAGE))
        assert exc_info.value.non_retryable is True
