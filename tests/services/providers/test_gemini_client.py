"""Tests for the Gemini client. The SDK is always mocked."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, PropertyMock, patch

import pytest

from aiscrape.exceptions import (
    OperationTimeoutError,
    ParsingError,
    ProviderAuthError,
    ProviderError,
    ProviderForbiddenError,
    ProviderRateLimitError,
    ProviderUnavailableError,
)
from aiscrape.services.providers import GeminiClient, GenerationOptions
from aiscrape.services.providers.gemini_client import classify_gemini_error


API_KEY = "AIzaTestKey123"
SCHEMA = {"title": "string", "tags": "array<string>", "meta": "object"}


def sdk_response(text: str) -> MagicMock:
    response = MagicMock()
    response.text = text
    return response


@pytest.fixture()
def mock_genai():
    with patch("aiscrape.services.providers.gemini_client.genai") as genai:
        model = MagicMock()
        model.generate_content_async = AsyncMock(
            return_value=sdk_response('{"title": "Widget", "tags": ["a", "null"]}')
        )
        genai.GenerativeModel.return_value = model
        yield genai


class TestGeminiMetadata:
    """Test suite for client metadata."""

    def test_metadata(self) -> None:
        client = GeminiClient(API_KEY, model="gemini-2.5-flash")

        assert client.provider_id == "gemini:gemini-2.5-flash"
        assert client.provider_name == "Gemini"
        assert client.max_content_length == 100_000

    @pytest.mark.parametrize(("key", "valid"), [(API_KEY, True), ("AIshort", False), ("sk-0123456789", False)])
    def test_validate_api_key(self, key: str, valid: bool) -> None:
        assert GeminiClient(key).validate_api_key() is valid

    def test_generation_config_carries_schema(self) -> None:
        """Test the response schema and JSON mime type are configured."""
        client = GeminiClient(API_KEY)

        config = client.build_generation_config(SCHEMA, GenerationOptions(top_k=40))

        assert config["response_mime_type"] == "application/json"
        assert config["response_schema"]["required"] == ["title", "tags", "meta"]
        assert config["response_schema"]["properties"]["meta"]["type"] == "STRING"
        assert config["top_k"] == 40
        assert "top_p" not in config


class TestGeminiExtract:
    """Test suite for GeminiClient.extract."""

    @pytest.mark.asyncio
    async def test_extract_success(self, mock_genai) -> None:
        """Test the SDK is called once and the result normalized."""
        client = GeminiClient(API_KEY)

        response = await client.extract("<h1>Widget</h1>", SCHEMA)

        assert response.data == {"title": "Widget", "tags": ["a", None], "meta": None}
        mock_genai.configure.assert_called_once_with(api_key=API_KEY)
        model = mock_genai.GenerativeModel.return_value
        prompt = model.generate_content_async.await_args.args[0]
        assert "<h1>Widget</h1>" in prompt
        assert "Schema to extract" not in prompt
        config = model.generate_content_async.await_args.kwargs["generation_config"]
        assert set(config["response_schema"]["properties"]) == set(SCHEMA)

    @pytest.mark.asyncio
    async def test_model_is_reused(self, mock_genai) -> None:
        client = GeminiClient(API_KEY)

        await client.extract("<html/>", SCHEMA)
        await client.extract("<html/>", SCHEMA)

        mock_genai.GenerativeModel.assert_called_once()

    @pytest.mark.asyncio
    async def test_salvages_wrapped_json(self, mock_genai) -> None:
        model = mock_genai.GenerativeModel.return_value
        model.generate_content_async.return_value = sdk_response(
            '```json\n{"title": "Widget"}\n```'
        )

        response = await GeminiClient(API_KEY).extract("<html/>", SCHEMA)

        assert response.data["title"] == "Widget"

    @pytest.mark.asyncio
    async def test_unparseable_response(self, mock_genai) -> None:
        model = mock_genai.GenerativeModel.return_value
        model.generate_content_async.return_value = sdk_response("not json at all")

        with pytest.raises(ParsingError):
            await GeminiClient(API_KEY).extract("<html/>", SCHEMA)

    @pytest.mark.asyncio
    async def test_empty_response(self, mock_genai) -> None:
        model = mock_genai.GenerativeModel.return_value
        model.generate_content_async.return_value = sdk_response("  ")

        with pytest.raises(ProviderError, match="Empty response"):
            await GeminiClient(API_KEY).extract("<html/>", SCHEMA)

    @pytest.mark.asyncio
    async def test_blocked_response(self, mock_genai) -> None:
        """Test a candidate without parts (SDK raises on .text) is reported."""
        blocked = MagicMock()
        type(blocked).text = PropertyMock(side_effect=ValueError("no parts, finish_reason=SAFETY"))
        model = mock_genai.GenerativeModel.return_value
        model.generate_content_async.return_value = blocked

        with pytest.raises(ProviderError, match="blocked") as exc_info:
            await GeminiClient(API_KEY).extract("<html/>", SCHEMA)

        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_sdk_error_is_classified(self, mock_genai) -> None:
        model = mock_genai.GenerativeModel.return_value
        model.generate_content_async.side_effect = RuntimeError("Resource exhausted: quota")

        with pytest.raises(ProviderRateLimitError):
            await GeminiClient(API_KEY).extract("<html/>", SCHEMA)

    @pytest.mark.asyncio
    async def test_deadline(self, mock_genai) -> None:
        async def hang(*args, **kwargs):
            await asyncio.sleep(1)

        model = mock_genai.GenerativeModel.return_value
        model.generate_content_async.side_effect = hang

        with pytest.raises(OperationTimeoutError):
            await GeminiClient(API_KEY, timeout_seconds=0.01).extract("<html/>", SCHEMA)

    @pytest.mark.asyncio
    async def test_model_init_failure(self, mock_genai) -> None:
        mock_genai.GenerativeModel.side_effect = RuntimeError("bad model")

        with pytest.raises(ProviderError, match="initialize"):
            await GeminiClient(API_KEY).extract("<html/>", SCHEMA)


class SDKError(Exception):
    """Stand-in for google.api_core errors, which carry a ``code``."""

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class TestClassifyGeminiError:
    """Test suite for classify_gemini_error."""

    @pytest.mark.parametrize(
        ("error", "expected", "status"),
        [
            (SDKError("denied", 401), ProviderAuthError, 401),
            (SDKError("service down", 503), ProviderUnavailableError, 503),
            (SDKError("API key not valid"), ProviderAuthError, 401),
            (SDKError("Rate limit reached"), ProviderRateLimitError, 429),
            (SDKError("Response blocked by safety settings"), ProviderError, 400),
            (SDKError("User location is not supported"), ProviderForbiddenError, 403),
            (SDKError("something odd"), ProviderError, None),
        ],
    )
    def test_classification(self, error, expected, status) -> None:
        """Test status codes win, then message keywords."""
        result = classify_gemini_error(error)

        assert type(result) is expected
        assert result.status_code == status
        assert result.provider == "Gemini"
