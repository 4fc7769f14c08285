"""Prompt construction for AI extraction requests."""

from __future__ import annotations

import math
from collections.abc import Mapping

DEFAULT_MAX_LENGTH = 50_000
TRUNCATION_MARKER = "\n\n[Content truncated...]"
# A boundary cut is used only if it keeps at least this share of the limit
MIN_BOUNDARY_RATIO = 0.8
CHARS_PER_TOKEN = 4

DEFAULT_SYSTEM_PROMPT = """\
You are a professional web scraping assistant. Your task is to extract structured data from HTML content and return it as valid JSON.

Guidelines:
1. Extract only the requested data fields
2. Return valid JSON that matches the provided schema
3. If a field is not found, use null for the value
4. For arrays, return empty arrays if no items are found
5. Preserve data types as specified in the schema
6. Do not include any explanatory text, only return the JSON
"""

SCHEMA_CONSTRAINED_PROMPT = """\
You are a professional web scraping assistant. Extract structured data from the HTML and return ONLY valid JSON.

Instructions:
1. Only output the JSON object (no markdown, no prose).
2. Use the response schema provided out-of-band (DO NOT restate it in text).
3. Extract ALL fields defined in the schema - return the complete structure.
4. Use real values from the HTML; never hallucinate.
5. If a value is absent: output null (unquoted). Never use the string "null", "N/A" or placeholders.
6. For arrays: list real items; if none, use []. Never include ["null"].
7. Preserve data types (string/number/boolean/array) exactly.
8. For object fields: extract structured content as a JSON string or formatted text.
9. Dates: prefer ISO 8601 if present; partial dates allowed if that's all that's available.
10. Do not invent URLs, emails or prices; use null if missing.
11. Trim surrounding whitespace.
12. Include ALL schema fields in the response, even if some are null.
"""


def truncate_content(content: str, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Shorten ``content`` to ``max_length`` characters plus a marker.

    Cuts after the last closing tag or sentence end when that keeps more
    than 80% of the limit; otherwise cuts hard at the limit.
    """
    if len(content) <= max_length:
        return content

    truncated = content[:max_length]
    last_tag_end = truncated.rfind(">")
    last_sentence_end = truncated.rfind(".")
    cut_point = max(last_tag_end, last_sentence_end) + 1

    if cut_point > max_length * MIN_BOUNDARY_RATIO:
        return truncated[:cut_point] + TRUNCATION_MARKER
    return truncated + TRUNCATION_MARKER


def describe_schema(schema: Mapping[str, str]) -> str:
    """Render a field schema as a JSON-like block for the prompt."""
    lines = ["{"]
    entries = list(schema.items())
    for index, (name, type_token) in enumerate(entries):
        comma = "," if index < len(entries) - 1 else ""
        lines.append(f'  "{name}": "{type_token}"{comma}')
    lines.append("}")
    return "\n".join(lines) + "\n"


def build_extraction_prompt(
    html: str,
    schema: Mapping[str, str],
    instructions: str | None = None,
    max_length: int = DEFAULT_MAX_LENGTH,
) -> str:
    """Build the user prompt that lists the schema inline."""
    custom = f"\nAdditional Instructions:\n{instructions}\n" if instructions else ""
    return (
        f"{DEFAULT_SYSTEM_PROMPT}{custom}\n"
        f"Schema to extract:\n{describe_schema(schema)}\n"
        f"HTML Content:\n{truncate_content(html, max_length)}\n\n"
        "Return only valid JSON matching the schema above.\n"
    )


def build_chat_messages(
    html: str,
    schema: Mapping[str, str],
    instructions: str | None = None,
    max_length: int = DEFAULT_MAX_LENGTH,
    system_prompt: str | None = None,
) -> list[dict[str, str]]:
    """Build the system + user message pair for chat completion APIs."""
    return [
        {"role": "system", "content": system_prompt or DEFAULT_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": build_extraction_prompt(html, schema, instructions, max_length),
        },
    ]


def build_schema_constrained_prompt(
    html: str,
    instructions: str | None = None,
    max_length: int = DEFAULT_MAX_LENGTH,
) -> str:
    """Build a prompt for providers that receive the schema out of band."""
    custom = (
        "\nAdditional Instructions (follow but do NOT restate schema):\n"
        f"{instructions}\n"
        if instructions
        else ""
    )
    return (
        f"{SCHEMA_CONSTRAINED_PROMPT}{custom}\n"
        "HTML CONTENT START\n"
        f"{truncate_content(html, max_length)}\n"
        "HTML CONTENT END\n\n"
        "Return ONLY the complete JSON object with all schema fields now.\n"
    )


def estimate_token_count(content: str) -> int:
    """Rough token estimate (about four characters per token)."""
    return math.ceil(len(content) / CHARS_PER_TOKEN)
