"""AI provider and model catalogue."""

from __future__ import annotations

from enum import Enum


class AIProvider(str, Enum):
    """Supported AI providers."""

    OPENAI = "openai"
    GEMINI = "gemini"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def default_model(self) -> AIModel:
        return _DEFAULT_MODELS[self]

    @property
    def supports_json_mode(self) -> bool:
        """True when the provider accepts a generic JSON-output flag.

        Gemini constrains output with a response schema instead.
        """
        return self is AIProvider.OPENAI


class AIModel(str, Enum):
    """Concrete model identifiers, each served by one provider."""

    # OpenAI
    GPT_4O = "gpt-4o"
    GPT_4O_MINI = "gpt-4o-mini"
    GPT_4_TURBO = "gpt-4-turbo"
    GPT_4 = "gpt-4"
    GPT_35_TURBO = "gpt-3.5-turbo"

    # Google Gemini
    GEMINI_25_PRO = "gemini-2.5-pro"
    GEMINI_25_FLASH = "gemini-2.5-flash"
    GEMINI_20_FLASH = "gemini-2.0-flash"
    GEMINI_25_FLASH_LITE = "gemini-2.5-flash-lite"
    GEMINI_20_FLASH_LITE = "gemini-2.0-flash-lite"

    @property
    def model_name(self) -> str:
        return self.value

    @property
    def provider(self) -> AIProvider:
        if self.value.startswith("gemini"):
            return AIProvider.GEMINI
        return AIProvider.OPENAI

    @classmethod
    def for_provider(cls, provider: AIProvider) -> list[AIModel]:
        """Return every model served by ``provider``, in catalogue order."""
        return [model for model in cls if model.provider is provider]

    @classmethod
    def from_name(cls, name: str | AIModel) -> AIModel:
        """Look up a model by its identifier (case-insensitive).

        Raises:
            ValueError: If no model has that identifier.
        """
        if isinstance(name, AIModel):
            return name
        normalized = name.strip().lower()
        for model in cls:
            if model.value == normalized:
                return model
        known = ", ".join(model.value for model in cls)
        raise ValueError(f"Unknown model '{name}'. Known models: {known}")

    def __str__(self) -> str:
        return self.value


_DISPLAY_NAMES = {
    AIProvider.OPENAI: "OpenAI GPT",
    AIProvider.GEMINI: "Google Gemini",
}

_DEFAULT_MODELS = {
    AIProvider.OPENAI: AIModel.GPT_4O_MINI,
    AIProvider.GEMINI: AIModel.GEMINI_20_FLASH,
}
