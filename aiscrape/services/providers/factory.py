"""Factory for selecting the AI client that serves a model."""

from __future__ import annotations

from aiscrape.exceptions import InvalidApiKeyError, UnsupportedProviderError
from aiscrape.services.providers.base import AIClient, GenerationOptions
from aiscrape.services.providers.gemini_client import GeminiClient
from aiscrape.services.providers.models import AIModel, AIProvider
from aiscrape.services.providers.openai_client import OpenAIClient


_REGISTRY: dict[AIProvider, type] = {
    AIProvider.OPENAI: OpenAIClient,
    AIProvider.GEMINI: GeminiClient,
}


def supported_providers() -> list[AIProvider]:
    """Return the providers with a client implementation."""
    return list(_REGISTRY)


def is_provider_supported(provider: AIProvider | str) -> bool:
    try:
        return AIProvider(provider) in _REGISTRY
    except ValueError:
        return False


def create_client(
    model: AIModel | str,
    api_key: str,
    *,
    timeout_seconds: float | None = None,
    options: GenerationOptions | None = None,
) -> AIClient:
    """Return an instantiated client for the provider serving ``model``.

    Raises:
        ValueError: If api_key is empty or the model is unknown.
        UnsupportedProviderError: If the model's provider has no client.
    """
    if not api_key or not api_key.strip():
        raise ValueError("API key cannot be empty")

    ai_model = AIModel.from_name(model)
    cls = _REGISTRY.get(ai_model.provider)
    if cls is None:
        raise UnsupportedProviderError(
            f"Unsupported AI provider: {ai_model.provider.value}",
            ai_model.provider.value,
        )
    return cls(
        api_key=api_key,
        model=ai_model,
        timeout_seconds=timeout_seconds,
        options=options,
    )


def create_client_with_validation(
    model: AIModel | str,
    api_key: str,
    *,
    timeout_seconds: float | None = None,
    options: GenerationOptions | None = None,
) -> AIClient:
    """Like create_client(), but also checks the API key format.

    Raises:
        InvalidApiKeyError: If the key does not look like one issued by the
            model's provider.
    """
    client = create_client(
        model, api_key, timeout_seconds=timeout_seconds, options=options
    )
    if not client.validate_api_key():
        raise InvalidApiKeyError(
            f"API key format is invalid for provider {client.provider.value}",
            client.provider_name,
        )
    return client
