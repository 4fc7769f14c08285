"""Field schema model and provider schema conversion."""

from aiscrape.services.schema.field_schema import (
    SUPPORTED_TYPES,
    FieldSchema,
    is_type_supported,
    normalize_field_schema,
    validate_and_normalize,
    validate_field_schema,
)
from aiscrape.services.schema.provider_schema import schema_for_type, to_structured_schema

__all__ = [
    "SUPPORTED_TYPES",
    "FieldSchema",
    "is_type_supported",
    "normalize_field_schema",
    "validate_and_normalize",
    "validate_field_schema",
    "schema_for_type",
    "to_structured_schema",
]
