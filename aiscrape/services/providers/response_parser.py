"""Parsing and normalization of AI provider responses.

Both providers hand back text that should be a JSON object. The parser
accepts it directly, or salvages the outermost ``{...}`` block when the
model wrapped the JSON in prose or markdown fences. Normalization is
provider independent: string ``"null"`` literals become real nulls and every
schema field is present in the result.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from typing import Any

from aiscrape.exceptions import ParsingError

logger = logging.getLogger(__name__)

JSON_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)


def parse_json_object(text: str, provider: str = "provider") -> dict[str, Any]:
    """Parse provider text into a JSON object.

    Args:
        text: Raw response text.
        provider: Provider name used in error messages.

    Returns:
        The decoded JSON object.

    Raises:
        ParsingError: If neither the text nor its first ``{...}`` block is a
            JSON object.
    """
    stripped = text.strip()
    try:
        parsed = json.loads(stripped)
    except ValueError as e:
        logger.debug("Direct JSON parse failed, trying to salvage object: %s", e)
        match = JSON_OBJECT_PATTERN.search(stripped)
        if match is None:
            raise ParsingError(
                f"Failed to parse {provider} response as JSON: {e}", text
            ) from e
        try:
            parsed = json.loads(match.group(0))
        except ValueError as inner:
            raise ParsingError(
                f"Failed to parse {provider} response as JSON: {inner}", text
            ) from inner

    if not isinstance(parsed, dict):
        raise ParsingError(
            f"{provider} response is {type(parsed).__name__}, expected a JSON object",
            text,
        )
    return parsed


def _is_null_string(value: Any) -> bool:
    return isinstance(value, str) and value.strip().lower() == "null"


def clean_value(value: Any) -> Any:
    """Recursively replace ``"null"`` string literals with None."""
    if _is_null_string(value):
        return None
    if isinstance(value, list):
        return [clean_value(item) for item in value]
    if isinstance(value, dict):
        return {key: clean_value(item) for key, item in value.items()}
    return value


def normalize_response(
    data: Mapping[str, Any],
    schema: Mapping[str, str],
) -> dict[str, Any]:
    """Clean a parsed response and ensure every schema field is present.

    Fields the model omitted are added with a null value, so the output
    shape is stable regardless of what the model returned.
    """
    cleaned = {key: clean_value(value) for key, value in data.items()}
    for field_name in schema:
        cleaned.setdefault(field_name, None)

    null_fields = [key for key, value in cleaned.items() if value is None]
    if null_fields:
        logger.debug("Fields resolved to null: %s", null_fields)
    return cleaned
