"""Deterministic mock values for providers in mock execution mode.

Nothing here touches a vendor client. The same inputs always produce the same
outputs, so tests can assert on exact values.
"""

from __future__ import annotations

from collections.abc import Sequence
import hashlib
import re
from typing import Any

from modelgate.providers.models import Message
from modelgate.result import EmbeddingResponse, TextChunk, TextGenerationResponse, TokenUsage

MOCK_USAGE = TokenUsage(prompt_tokens=10, completion_tokens=20, total_tokens=30)
MOCK_EMBEDDING_DIMENSIONS = 8
MOCK_TOKENS_PER_EMBEDDING_INPUT = 5

_FORMAT_SAMPLES: dict[str, str] = {
    "date-time": "2024-01-01T00:00:00Z",
    "date": "2024-01-01",
    "time": "00:00:00",
    "email": "user@example.com",
    "uri": "https://example.com",
    "url": "https://example.com",
    "uuid": "00000000-0000-4000-8000-000000000000",
    "ipv4": "127.0.0.1",
    "ipv6": "::1",
    "duration": "P1D",
}


def mock_text(messages: Sequence[Message]) -> str:
    last_user = next(
        (m.content for m in reversed(messages) if m.role == "user"), ""
    )
    return f"This is a mock response for: {last_user}"


def mock_text_response(messages: Sequence[Message], model: str) -> TextGenerationResponse:
    return TextGenerationResponse(
        content=mock_text(messages),
        model=model,
        usage=MOCK_USAGE,
    )


def mock_text_chunks(messages: Sequence[Message], model: str) -> list[TextChunk]:
    """Split the mock reply into word chunks; the last one carries usage."""
    words = re.findall(r"\S+\s*", mock_text(messages))
    chunks = [TextChunk(content=word, model=model) for word in words[:-1]]
    chunks.append(TextChunk(content=words[-1], model=model, usage=MOCK_USAGE))
    return chunks


def mock_embedding(text: str, dimensions: int = MOCK_EMBEDDING_DIMENSIONS) -> list[float]:
    """Derive a vector in ``[-1, 1]`` from the SHA-256 of ``text``."""
    values: list[float] = []
    counter = 0
    while len(values) < dimensions:
        digest = hashlib.sha256(f"{counter}:{text}".encode()).digest()
        values.extend(byte / 127.5 - 1.0 for byte in digest)
        counter += 1
    return values[:dimensions]


def mock_embedding_response(
    inputs: Sequence[str], model: str, dimensions: int | None = None
) -> EmbeddingResponse:
    dims = dimensions or MOCK_EMBEDDING_DIMENSIONS
    tokens = MOCK_TOKENS_PER_EMBEDDING_INPUT * len(inputs)
    return EmbeddingResponse(
        embeddings=[mock_embedding(text, dims) for text in inputs],
        model=model,
        usage=TokenUsage(prompt_tokens=tokens, completion_tokens=0, total_tokens=tokens),
    )


def mock_value_from_schema(schema: dict[str, Any], root: dict[str, Any] | None = None) -> Any:
    """Build a value that satisfies a JSON Schema as produced by pydantic.

    Covers ``$ref``/``$defs``, ``anyOf``/``oneOf``/``allOf``, ``enum``,
    ``const``, defaults, common string formats and minimum constraints.
    Patterns are not honored.
    """
    root = schema if root is None else root

    ref = schema.get("$ref")
    if isinstance(ref, str):
        return mock_value_from_schema(_resolve_ref(ref, root), root)

    if "const" in schema:
        return schema["const"]
    if schema.get("enum"):
        return schema["enum"][0]
    if "default" in schema:
        return schema["default"]

    for key in ("anyOf", "oneOf"):
        options = schema.get(key)
        if options:
            non_null = [o for o in options if o.get("type") != "null"]
            return mock_value_from_schema((non_null or options)[0], root)
    all_of = schema.get("allOf")
    if all_of:
        merged: dict[str, Any] = {}
        for part in all_of:
            merged.update(_resolve_ref(part["$ref"], root) if "$ref" in part else part)
        return mock_value_from_schema(merged, root)

    schema_type = schema.get("type")
    if isinstance(schema_type, list):
        schema_type = next((t for t in schema_type if t != "null"), "null")
    if schema_type is None and "properties" in schema:
        schema_type = "object"

    if schema_type == "object":
        return _mock_object(schema, root)
    if schema_type == "array":
        return _mock_array(schema, root)
    if schema_type == "string":
        return _mock_string(schema)
    if schema_type == "integer":
        return int(_mock_number(schema, integer=True))
    if schema_type == "number":
        return float(_mock_number(schema, integer=False))
    if schema_type == "boolean":
        return True
    return None


def _resolve_ref(ref: str, root: dict[str, Any]) -> dict[str, Any]:
    if not ref.startswith("#/"):
        raise ValueError(f"Unsupported schema reference: {ref}")
    node: Any = root
    for segment in ref[2:].split("/"):
        node = node[segment.replace("~1", "/").replace("~0", "~")]
    return node


def _mock_object(schema: dict[str, Any], root: dict[str, Any]) -> dict[str, Any]:
    properties = schema.get("properties", {})
    value = {name: mock_value_from_schema(sub, root) for name, sub in properties.items()}
    additional = schema.get("additionalProperties")
    min_properties = schema.get("minProperties", 0)
    if not properties and isinstance(additional, dict):
        for i in range(max(min_properties, 1)):
            value[f"key{i}"] = mock_value_from_schema(additional, root)
    return value


def _mock_array(schema: dict[str, Any], root: dict[str, Any]) -> list[Any]:
    prefix = schema.get("prefixItems")
    if prefix:
        return [mock_value_from_schema(item, root) for item in prefix]
    items = schema.get("items")
    if not isinstance(items, dict):
        return []
    count = max(schema.get("minItems", 0), 1)
    if schema.get("maxItems") is not None:
        count = min(count, schema["maxItems"])
    value = mock_value_from_schema(items, root)
    if schema.get("uniqueItems") and count > 1:
        count = 1
    return [value] * count


def _mock_string(schema: dict[str, Any]) -> str:
    value = _FORMAT_SAMPLES.get(schema.get("format", ""), "mock")
    min_length = schema.get("minLength", 0)
    if len(value) < min_length:
        value = value + "x" * (min_length - len(value))
    max_length = schema.get("maxLength")
    if max_length is not None and len(value) > max_length:
        value = value[:max_length]
    return value


def _mock_number(schema: dict[str, Any], *, integer: bool) -> float:
    step = 1 if integer else 0.5
    value: float = 0
    if "minimum" in schema:
        value = schema["minimum"]
    elif "exclusiveMinimum" in schema:
        value = schema["exclusiveMinimum"] + step
    if "maximum" in schema and value > schema["maximum"]:
        value = schema["maximum"]
    elif "exclusiveMaximum" in schema and value >= schema["exclusiveMaximum"]:
        value = schema["exclusiveMaximum"] - step
    multiple = schema.get("multipleOf")
    if multiple:
        value = -(-value // multiple) * multiple
    if integer:
        value = -(-value // 1)
    return value
