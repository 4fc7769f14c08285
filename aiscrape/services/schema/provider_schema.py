"""Conversion of field schemas into structured-generation schemas.

The output is the OpenAPI-subset dictionary accepted as ``response_schema``
by schema-constrained providers (upper-case type names).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from aiscrape.services.schema.field_schema import array_item_type

logger = logging.getLogger(__name__)

OBJECT_FIELD_DESCRIPTION = "Complex object data as JSON string or structured text"

_PRIMITIVE_SCHEMAS: dict[str, dict[str, Any]] = {
    "string": {"type": "STRING"},
    "text": {"type": "STRING"},
    "number": {"type": "NUMBER"},
    "integer": {"type": "INTEGER"},
    "boolean": {"type": "BOOLEAN"},
    "date": {"type": "STRING", "description": "Date in ISO 8601 format"},
    "url": {"type": "STRING", "description": "Valid URL"},
    "email": {"type": "STRING", "description": "Valid email address"},
    # Providers reject object schemas without enumerated properties, so
    # object output is an opaque string for downstream consumers.
    "object": {"type": "STRING", "description": OBJECT_FIELD_DESCRIPTION},
}


def schema_for_type(type_token: str) -> dict[str, Any]:
    """Build the structured-generation schema for a single type token.

    Args:
        type_token: Normalized type token, e.g. ``"number"`` or
            ``"array<array<string>>"``.

    Returns:
        Schema dictionary for the token. Every value is nullable.
    """
    token = type_token.strip().lower()

    item_type = array_item_type(token)
    if item_type is not None:
        return {"type": "ARRAY", "items": schema_for_type(item_type), "nullable": True}

    if token == "array":
        return {"type": "ARRAY", "items": {"type": "STRING"}, "nullable": True}

    primitive = _PRIMITIVE_SCHEMAS.get(token)
    if primitive is None:
        logger.warning("Unknown field type %r, defaulting to string", token)
        primitive = {"type": "STRING"}
    return {**primitive, "nullable": True}


def to_structured_schema(schema: Mapping[str, str]) -> dict[str, Any]:
    """Convert a normalized field schema to a structured-generation schema.

    Every field is listed as required so the provider always emits the key,
    using null rather than omitting it.
    """
    properties = {name: schema_for_type(type_token) for name, type_token in schema.items()}
    structured = {
        "type": "OBJECT",
        "properties": properties,
        "required": list(properties),
    }
    logger.debug("Structured schema required fields: %s", structured["required"])
    return structured
