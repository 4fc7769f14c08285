"""AI provider clients.

Two providers sit behind the AIClient protocol:
1. OpenAI (completion-style): schema described in the prompt, JSON mode
2. Gemini (schema-constrained): schema sent as a response_schema

Usage:
    from aiscrape.services.providers import AIModel, create_client

    client = create_client(AIModel.GPT_4O_MINI, api_key)
    response = await client.extract(html, {"title": "string"})
"""

from aiscrape.services.providers.base import AIClient, GenerationOptions, ProviderResponse
from aiscrape.services.providers.factory import (
    create_client,
    create_client_with_validation,
    is_provider_supported,
    supported_providers,
)
from aiscrape.services.providers.gemini_client import GeminiClient
from aiscrape.services.providers.models import AIModel, AIProvider
from aiscrape.services.providers.openai_client import OpenAIClient

__all__ = [
    # Catalogue
    "AIModel",
    "AIProvider",
    # Clients
    "AIClient",
    "GeminiClient",
    "OpenAIClient",
    "GenerationOptions",
    "ProviderResponse",
    # Factory
    "create_client",
    "create_client_with_validation",
    "is_provider_supported",
    "supported_providers",
]
