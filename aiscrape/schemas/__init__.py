"""Pydantic schemas package."""

from aiscrape.schemas.extraction import ExtractionRequest, ExtractionResult  # noqa: F401
