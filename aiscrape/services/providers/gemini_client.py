"""Schema-constrained provider client for Google Gemini.

The field schema is converted into a ``response_schema`` and sent out of
band, so the prompt itself only carries the page content and instructions.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import google.generativeai as genai
from google.generativeai.types import HarmBlockThreshold, HarmCategory

from aiscrape.core.config import settings
from aiscrape.exceptions import OperationTimeoutError, ProviderError
from aiscrape.services.providers.base import GenerationOptions, ProviderResponse
from aiscrape.services.providers.models import AIModel, AIProvider
from aiscrape.services.providers.prompt_builder import build_schema_constrained_prompt
from aiscrape.services.providers.response_parser import (
    normalize_response,
    parse_json_object,
)
from aiscrape.services.schema import to_structured_schema

logger = logging.getLogger(__name__)

GEMINI_MAX_CONTENT_LENGTH = 100_000
RESPONSE_MIME_TYPE = "application/json"

SAFETY_SETTINGS = {
    HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_NONE,
    HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_NONE,
    HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_NONE,
    HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_NONE,
}

# (keywords, status, message prefix), checked in order when the SDK error
# carries no usable status code
_MESSAGE_RULES: tuple[tuple[tuple[str, ...], int, str], ...] = (
    (("api key",), 401, "Invalid API key"),
    (("quota", "rate limit"), 429, "Quota exceeded"),
    (("blocked", "safety"), 400, "Content blocked by safety filters"),
    (("location", "region"), 403, "Unsupported user location"),
)


def classify_gemini_error(error: Exception, provider: str = "Gemini") -> ProviderError:
    """Translate an SDK exception into a ProviderError.

    The status code attached to the exception wins; otherwise the message
    is matched against known keywords.
    """
    message = str(getattr(error, "message", "") or error)
    code = getattr(error, "code", None)
    status = code if isinstance(code, int) and 400 <= code < 600 else None

    if status is not None:
        return ProviderError.from_status(f"Gemini API error: {message}", provider, status)

    lowered = message.lower()
    for keywords, rule_status, prefix in _MESSAGE_RULES:
        if any(keyword in lowered for keyword in keywords):
            return ProviderError.from_status(f"{prefix}: {message}", provider, rule_status)

    return ProviderError(f"Gemini API error: {message}", provider)


class GeminiClient:
    """Extract structured data with Gemini structured generation."""

    provider = AIProvider.GEMINI

    def __init__(
        self,
        api_key: str,
        model: str | AIModel = AIModel.GEMINI_20_FLASH,
        timeout_seconds: float | None = None,
        options: GenerationOptions | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = str(model)
        self.timeout_seconds = timeout_seconds or settings.request_timeout_seconds
        self.options = options or GenerationOptions.from_settings()
        self._model: Any = None

    @property
    def provider_id(self) -> str:
        return f"{self.provider.value}:{self.model}"

    @property
    def provider_name(self) -> str:
        return "Gemini"

    @property
    def max_content_length(self) -> int:
        return GEMINI_MAX_CONTENT_LENGTH

    def validate_api_key(self) -> bool:
        return self.api_key.startswith("AI") and len(self.api_key) >= 10

    @property
    def generative_model(self) -> Any:
        """Lazily configured SDK model."""
        if self._model is None:
            try:
                genai.configure(api_key=self.api_key)
                self._model = genai.GenerativeModel(
                    model_name=self.model,
                    safety_settings=SAFETY_SETTINGS,
                )
            except Exception as e:
                raise ProviderError(
                    f"Failed to initialize Gemini model: {e}", self.provider_name
                ) from e
        return self._model

    def build_generation_config(
        self,
        schema: dict[str, str],
        options: GenerationOptions,
    ) -> dict[str, Any]:
        """Build the generation config including the response schema."""
        config: dict[str, Any] = {
            "temperature": options.temperature,
            "max_output_tokens": options.max_tokens,
            "response_mime_type": RESPONSE_MIME_TYPE,
            "response_schema": to_structured_schema(schema),
        }
        if options.top_p is not None:
            config["top_p"] = options.top_p
        if options.top_k is not None:
            config["top_k"] = options.top_k
        return config

    async def extract(
        self,
        html: str,
        schema: dict[str, str],
        options: GenerationOptions | None = None,
    ) -> ProviderResponse:
        opts = options or self.options
        prompt = build_schema_constrained_prompt(
            html,
            instructions=opts.instructions,
            max_length=self.max_content_length,
        )
        logger.debug(
            "Requesting Gemini generation with model %s (%d prompt chars)",
            self.model,
            len(prompt),
        )

        response = await self._generate(prompt, self.build_generation_config(schema, opts))
        text = self._response_text(response)
        parsed = parse_json_object(text, self.provider_name)
        return ProviderResponse(
            data=normalize_response(parsed, schema),
            raw_response=text,
            model=self.model,
        )

    async def _generate(self, prompt: str, generation_config: dict[str, Any]) -> Any:
        model = self.generative_model
        try:
            return await asyncio.wait_for(
                model.generate_content_async(prompt, generation_config=generation_config),
                self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise OperationTimeoutError(
                f"Gemini request timed out after {self.timeout_seconds}s",
                timeout=self.timeout_seconds,
                operation="Gemini generate_content",
            ) from e
        except Exception as e:
            error = classify_gemini_error(e, self.provider_name)
            logger.warning("Gemini request failed: %s", error)
            raise error from e

    def _response_text(self, response: Any) -> str:
        try:
            text = response.text
        except ValueError as e:
            # The SDK raises when the candidate was blocked and has no parts
            raise ProviderError(
                f"Content blocked by safety filters: {e}", self.provider_name, 400
            ) from e

        if not text or not text.strip():
            raise ProviderError("Empty response from Gemini API", self.provider_name)
        return text.strip()

    async def close(self) -> None:
        self._model = None
