"""Library configuration using Pydantic Settings.

Loads settings from environment variables (prefixed ``AISCRAPE_``) and an
optional .env file. All settings have sensible defaults for local use; every
component also accepts explicit constructor arguments that take precedence.
"""

from __future__ import annotations

import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Valid Python logging levels
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

DEFAULT_USER_AGENT = "aiscrape/1.0 (+structured-extraction)"
DEFAULT_BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    """Process-wide configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="AISCRAPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Logging ---
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level to uppercase.

        Falls back to INFO if an invalid level is provided.
        """
        normalized = v.upper().strip()
        if normalized not in VALID_LOG_LEVELS:
            # Logging may not be configured yet, so warn on stderr
            import sys

            print(
                f"WARNING: Invalid AISCRAPE_LOG_LEVEL '{v}'. "
                f"Valid levels are: {', '.join(sorted(VALID_LOG_LEVELS))}. "
                "Falling back to INFO.",
                file=sys.stderr,
            )
            return "INFO"
        return normalized

    def get_log_level_int(self) -> int:
        """Return the integer value of the configured log level."""
        return getattr(logging, self.log_level, logging.INFO)

    # --- Timeouts & Retries ---
    request_timeout_seconds: float = 30.0
    max_retries: int = 2
    retry_base_delay_ms: int = 1000
    retry_multiplier: float = 2.0

    # --- Retrieval ---
    prefer_rendered: bool = False  # Try the headless browser before plain HTTP
    follow_redirects: bool = True
    max_redirects: int = 5
    user_agent: str = DEFAULT_USER_AGENT

    # --- Headless Browser ---
    browser_headless: bool = True
    browser_user_agent: str = DEFAULT_BROWSER_USER_AGENT
    viewport_width: int = 1366
    viewport_height: int = 768
    block_images: bool = False
    render_settle_ms: int = 2000  # Extra wait after load for late JS

    # --- Batch Processing ---
    batch_concurrency: int = 3
    continue_on_error: bool = True

    # --- Response Cache ---
    cache_enabled: bool = True
    cache_ttl_seconds: int = 3600
    cache_max_entries: int = 1000
    cache_file_path: str | None = None

    # --- AI Providers ---
    default_model: str = "gpt-4o-mini"
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    gemini_api_key: str | None = None
    temperature: float = 0.1
    max_output_tokens: int = 1000

    @field_validator("batch_concurrency", "cache_max_entries")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Reject non-positive limits."""
        if v < 1:
            raise ValueError("must be at least 1")
        return v


settings = Settings()
