"""Pydantic v2 models for extraction requests and results."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

JsonValue = Any  # str | int | float | bool | None | list[JsonValue] | dict[str, JsonValue]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExtractionRequest(BaseModel):
    """A single-URL extraction request. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(..., description="Page to extract from")
    field_schema: dict[str, str] = Field(
        ..., description="Output field name -> type token"
    )
    custom_instructions: str | None = Field(
        None, description="Extra instructions appended to the AI prompt"
    )
    prefer_rendered: bool | None = Field(
        None,
        description="Try the headless browser first; None uses the pipeline default",
    )
    max_retries: int = Field(2, ge=0, description="Retries after the first attempt")


class ExtractionResult(BaseModel):
    """Outcome of one pipeline run.

    ``data`` is present iff ``success``; ``error`` is present iff not.
    Results are never mutated; use ``model_copy(update=...)`` to derive one.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    data: dict[str, JsonValue] | None = None
    error: str | None = None
    error_type: str | None = None
    elapsed: timedelta = timedelta(0)
    provider_id: str
    url: str
    timestamp: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def check_outcome(self) -> ExtractionResult:
        if self.success and self.data is None:
            raise ValueError("successful result requires data")
        if not self.success and self.error is None:
            raise ValueError("failed result requires an error message")
        return self

    @classmethod
    def succeeded(
        cls,
        *,
        data: dict[str, JsonValue],
        elapsed: timedelta,
        provider_id: str,
        url: str,
    ) -> ExtractionResult:
        """Build a successful result."""
        return cls(
            success=True,
            data=data,
            elapsed=elapsed,
            provider_id=provider_id,
            url=url,
        )

    @classmethod
    def failed(
        cls,
        *,
        error: str,
        elapsed: timedelta,
        provider_id: str,
        url: str,
        error_type: str | None = None,
    ) -> ExtractionResult:
        """Build a failed result."""
        return cls(
            success=False,
            error=error,
            error_type=error_type,
            elapsed=elapsed,
            provider_id=provider_id,
            url=url,
        )

    @property
    def has_data(self) -> bool:
        """True when the run succeeded with at least one field."""
        return self.success and bool(self.data)

    @property
    def has_error(self) -> bool:
        return not self.success and self.error is not None

    @property
    def field_count(self) -> int:
        return len(self.data) if self.data else 0

    @property
    def field_names(self) -> list[str]:
        return list(self.data) if self.data else []

    @property
    def elapsed_ms(self) -> float:
        return self.elapsed.total_seconds() * 1000

    def get_field(self, name: str, default: JsonValue = None) -> JsonValue:
        """Return one extracted value, or ``default`` when absent."""
        if not self.data:
            return default
        return self.data.get(name, default)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict with a metadata block."""
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "metadata": {
                "error_type": self.error_type,
                "elapsed_ms": self.elapsed_ms,
                "provider_id": self.provider_id,
                "url": self.url,
                "timestamp": self.timestamp.isoformat(),
                "field_count": self.field_count,
                "field_names": self.field_names,
            },
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ExtractionResult:
        """Inverse of to_dict()."""
        metadata = payload.get("metadata", {})
        return cls(
            success=payload["success"],
            data=payload.get("data"),
            error=payload.get("error"),
            error_type=metadata.get("error_type"),
            elapsed=timedelta(milliseconds=metadata.get("elapsed_ms", 0)),
            provider_id=metadata["provider_id"],
            url=metadata["url"],
            timestamp=datetime.fromisoformat(metadata["timestamp"]),
        )
