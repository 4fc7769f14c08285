"""Completion-style provider client for the OpenAI chat completions API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from aiscrape.core.config import settings
from aiscrape.exceptions import OperationTimeoutError, ProviderError
from aiscrape.services.providers.base import GenerationOptions, ProviderResponse
from aiscrape.services.providers.models import AIModel, AIProvider
from aiscrape.services.providers.prompt_builder import build_chat_messages
from aiscrape.services.providers.response_parser import (
    normalize_response,
    parse_json_object,
)

logger = logging.getLogger(__name__)

OPENAI_MAX_CONTENT_LENGTH = 50_000
OPENAI_USER_AGENT = "aiscrape/1.0"

# Optional generation parameters forwarded only when set
_OPTIONAL_PARAMS = ("top_p", "frequency_penalty", "presence_penalty")


class OpenAIClient:
    """Extract structured data with OpenAI chat completions.

    The request asks for ``response_format: json_object``; the message
    content is parsed as JSON, with a salvage pass for wrapped output.
    """

    provider = AIProvider.OPENAI

    def __init__(
        self,
        api_key: str,
        model: str | AIModel = AIModel.GPT_4O_MINI,
        timeout_seconds: float | None = None,
        options: GenerationOptions | None = None,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: OpenAI API key (sent as a bearer token).
            model: Model identifier.
            timeout_seconds: Deadline for one completion call.
            options: Default generation options.
            base_url: API root, e.g. for a compatible proxy.
            client: Optional preconfigured HTTP client (not closed by close()).
        """
        self.api_key = api_key
        self.model = str(model)
        self.timeout_seconds = timeout_seconds or settings.request_timeout_seconds
        self.options = options or GenerationOptions.from_settings()
        self.base_url = (base_url or settings.openai_base_url).rstrip("/")
        self._client = client
        self._owns_client = client is None

    @property
    def provider_id(self) -> str:
        return f"{self.provider.value}:{self.model}"

    @property
    def provider_name(self) -> str:
        return "OpenAI"

    @property
    def max_content_length(self) -> int:
        return OPENAI_MAX_CONTENT_LENGTH

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    def validate_api_key(self) -> bool:
        return self.api_key.startswith("sk-") and len(self.api_key) >= 20

    def build_request_body(
        self,
        messages: list[dict[str, str]],
        options: GenerationOptions,
    ) -> dict[str, Any]:
        """Build the chat completions JSON body."""
        body: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "response_format": {"type": "json_object"},
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }
        for name in _OPTIONAL_PARAMS:
            value = getattr(options, name)
            if value is not None:
                body[name] = value
        return body

    async def extract(
        self,
        html: str,
        schema: dict[str, str],
        options: GenerationOptions | None = None,
    ) -> ProviderResponse:
        opts = options or self.options
        messages = build_chat_messages(
            html,
            schema,
            instructions=opts.instructions,
            max_length=self.max_content_length,
        )
        body = self.build_request_body(messages, opts)
        logger.debug("Requesting OpenAI completion with model %s", self.model)

        payload = await self._post(body)
        content = self._message_content(payload)
        parsed = parse_json_object(content, self.provider_name)
        return ProviderResponse(
            data=normalize_response(parsed, schema),
            raw_response=content,
            model=payload.get("model", self.model),
            usage=payload.get("usage") or {},
        )

    async def _post(self, body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "User-Agent": OPENAI_USER_AGENT,
        }
        try:
            response = await asyncio.wait_for(
                self.client.post(url, json=body, headers=headers),
                self.timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise OperationTimeoutError(
                f"OpenAI request timed out after {self.timeout_seconds}s",
                timeout=self.timeout_seconds,
                operation="OpenAI chat completion",
            ) from e
        except httpx.RequestError as e:
            raise ProviderError(
                f"Network error: Unable to connect to OpenAI API: {e}",
                self.provider_name,
            ) from e

        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> dict[str, Any]:
        status = response.status_code
        try:
            payload = response.json()
        except ValueError as e:
            if status == 200:
                raise ProviderError(
                    f"Failed to parse OpenAI response as JSON: {e}",
                    self.provider_name,
                    status,
                ) from e
            payload = None

        if status == 200:
            if not isinstance(payload, dict):
                raise ProviderError(
                    "Unexpected response structure from OpenAI", self.provider_name, status
                )
            return payload

        error = payload.get("error") if isinstance(payload, dict) else None
        detail = error.get("message") if isinstance(error, dict) else None

        if status == 401:
            message = "Authentication failed: Invalid API key"
        elif status == 403:
            message = "Access forbidden: Check your API key permissions"
        elif status == 429:
            message = f"Rate limit exceeded: {detail or 'Rate limit exceeded'}"
        elif status in (500, 502, 503, 504):
            message = f"OpenAI service unavailable ({status})"
        else:
            message = f"OpenAI API error ({status}): {detail or 'Unknown error'}"

        logger.warning("OpenAI request failed with status %d", status)
        raise ProviderError.from_status(message, self.provider_name, status)

    def _message_content(self, payload: dict[str, Any]) -> str:
        choices = payload.get("choices")
        if not choices:
            raise ProviderError("No choices returned in OpenAI response", self.provider_name)

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if not message:
            raise ProviderError(
                "No message found in OpenAI response choice", self.provider_name
            )

        content = message.get("content")
        if not isinstance(content, str) or not content.strip():
            raise ProviderError("Empty content in OpenAI response", self.provider_name)
        return content.strip()

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

