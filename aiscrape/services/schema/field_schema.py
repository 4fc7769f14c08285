"""Validation and normalization of caller-supplied field schemas.

A field schema maps an output field name to a type token, for example
``{"title": "string", "tags": "array<string>"}``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping

from aiscrape.exceptions import SchemaValidationError

logger = logging.getLogger(__name__)

# Type tokens accepted for a field (array<T> is accepted for any T below)
SUPPORTED_TYPES: frozenset[str] = frozenset({
    "string",
    "text",
    "number",
    "integer",
    "boolean",
    "array",
    "object",
    "date",
    "url",
    "email",
})

ARRAY_TYPE_PATTERN = re.compile(r"^array\s*<\s*(.+?)\s*>$")

FieldSchema = dict[str, str]


def _allowed_types_text() -> str:
    return ", ".join(sorted(SUPPORTED_TYPES)) + ", array<T>"


def array_item_type(type_token: str) -> str | None:
    """Return T for an ``array<T>`` token, or None for any other token."""
    match = ARRAY_TYPE_PATTERN.match(type_token)
    if match is None:
        return None
    return match.group(1)


def is_type_supported(type_token: str) -> bool:
    """Check whether a type token (any case, untrimmed) is supported."""
    token = type_token.strip().lower()
    if not token:
        return False
    item_type = array_item_type(token)
    if item_type is not None:
        return is_type_supported(item_type)
    return token in SUPPORTED_TYPES


def normalize_field_schema(schema: Mapping[str, str]) -> FieldSchema:
    """Trim field names and trim + lower-case type tokens.

    Field name case is preserved. No validation is performed.
    """
    return {
        str(name).strip(): str(type_token).strip().lower()
        for name, type_token in schema.items()
    }


def validate_field_schema(schema: Mapping[str, str]) -> None:
    """Validate a field schema.

    Args:
        schema: Mapping of field name to type token.

    Raises:
        SchemaValidationError: If the schema is empty, a field name or type
            is blank, two names collide after trimming, or a type token is
            not supported.
    """
    if not schema:
        raise SchemaValidationError("Schema cannot be empty")

    seen: set[str] = set()
    for raw_name, raw_type in schema.items():
        name = str(raw_name).strip()
        if not name:
            raise SchemaValidationError("Schema field names cannot be empty")
        if name in seen:
            raise SchemaValidationError(
                f'Duplicate schema field "{name}" after trimming', field=name
            )
        seen.add(name)

        if raw_type is None or not str(raw_type).strip():
            raise SchemaValidationError(
                f'Schema field type cannot be empty for field "{name}"',
                field=name,
            )

        if not is_type_supported(str(raw_type)):
            raise SchemaValidationError(
                f'Unsupported schema type "{raw_type}" for field "{name}". '
                f"Supported types: {_allowed_types_text()}",
                field=name,
            )


def validate_and_normalize(schema: Mapping[str, str]) -> FieldSchema:
    """Validate a schema and return its normalized form."""
    validate_field_schema(schema)
    normalized = normalize_field_schema(schema)
    logger.debug("Normalized schema fields: %s", list(normalized))
    return normalized
