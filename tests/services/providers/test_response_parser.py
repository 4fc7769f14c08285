"""Tests for provider response parsing and normalization."""

from __future__ import annotations

import pytest

from aiscrape.exceptions import ParsingError
from aiscrape.services.providers.response_parser import (
    clean_value,
    normalize_response,
    parse_json_object,
)


class TestParseJsonObject:
    """Test suite for parse_json_object."""

    def test_direct_json(self) -> None:
        assert parse_json_object(' {"title": "Widget"} ') == {"title": "Widget"}

    def test_salvages_wrapped_object(self) -> None:
        """Test JSON inside prose or markdown fences is recovered."""
        text = 'Here you go:\n```json\n{"title": "Widget", "tags": {"a": 1}}\n```\nThanks!'

        assert parse_json_object(text) == {"title": "Widget", "tags": {"a": 1}}

    def test_no_object_raises_with_raw_payload(self) -> None:
        """Test unrecoverable text raises ParsingError carrying the raw text."""
        with pytest.raises(ParsingError) as exc_info:
            parse_json_object("I could not find anything", provider="OpenAI")

        assert exc_info.value.raw_data == "I could not find anything"
        assert "OpenAI" in str(exc_info.value)

    def test_broken_object_raises(self) -> None:
        with pytest.raises(ParsingError):
            parse_json_object('prefix {"title": } suffix')

    def test_non_object_json_raises(self) -> None:
        """Test a JSON array is not accepted as an extraction result."""
        with pytest.raises(ParsingError, match="expected a JSON object"):
            parse_json_object("[1, 2, 3]")


class TestNormalizeResponse:
    """Test suite for normalization."""

    def test_null_strings_become_none(self) -> None:
        """Test "null" literals are replaced at any depth, case-insensitively."""
        data = {"a": "null", "b": " NULL ", "c": ["x", "Null"], "d": {"e": "null", "f": 1}}

        assert clean_value(data) == {"a": None, "b": None, "c": ["x", None], "d": {"e": None, "f": 1}}

    def test_other_values_untouched(self) -> None:
        assert clean_value("nullable") == "nullable"
        assert clean_value(0) == 0
        assert clean_value(False) is False

    def test_missing_schema_fields_default_to_none(self) -> None:
        """Test every schema field is present in the output."""
        result = normalize_response({"title": "Widget"}, {"title": "string", "price": "number"})

        assert result == {"title": "Widget", "price": None}

    def test_extra_fields_are_kept(self) -> None:
        result = normalize_response({"title": "Widget", "extra": 1}, {"title": "string"})

        assert result == {"title": "Widget", "extra": 1}
