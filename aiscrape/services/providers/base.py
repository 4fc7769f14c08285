"""Base types shared by the AI provider clients."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

from aiscrape.core.config import Settings, settings as default_settings
from aiscrape.services.providers.models import AIProvider


@dataclass(frozen=True)
class GenerationOptions:
    """Generation settings sent with every extraction request.

    Only non-null values are forwarded to the provider. ``to_dict()`` is the
    canonical form used in cache keys.
    """

    instructions: str | None = None
    temperature: float = 0.1
    max_tokens: int = 1000
    top_p: float | None = None
    top_k: int | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None

    @classmethod
    def from_settings(
        cls,
        source: Settings | None = None,
        instructions: str | None = None,
    ) -> GenerationOptions:
        s = source or default_settings
        return cls(
            instructions=instructions,
            temperature=s.temperature,
            max_tokens=s.max_output_tokens,
        )

    def with_instructions(self, instructions: str | None) -> GenerationOptions:
        """Return a copy carrying ``instructions`` (kept if None is given)."""
        if instructions is None:
            return self
        return GenerationOptions(**{**asdict(self), "instructions": instructions})

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class ProviderResponse:
    """Normalized extraction output plus the provider's raw text."""

    data: dict[str, Any]
    raw_response: str = ""
    model: str = ""
    usage: dict[str, Any] = field(default_factory=dict)


class AIClient(Protocol):
    """Protocol every AI provider client implements."""

    provider: AIProvider
    model: str

    @property
    def provider_id(self) -> str:
        """Stable ``provider:model`` identifier used in results and cache keys."""
        ...

    @property
    def provider_name(self) -> str:
        ...

    @property
    def max_content_length(self) -> int:
        """Maximum page characters sent to the model."""
        ...

    def validate_api_key(self) -> bool:
        """Check the API key format without calling the service."""
        ...

    async def extract(
        self,
        html: str,
        schema: dict[str, str],
        options: GenerationOptions | None = None,
    ) -> ProviderResponse:
        """Extract ``schema`` fields from ``html``.

        Raises:
            ProviderError: If the service call fails.
            OperationTimeoutError: If the call exceeds its deadline.
            ParsingError: If the response is not salvageable JSON.
        """
        ...

    async def close(self) -> None:
        ...
