"""Shared utilities for provider implementations."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

if TYPE_CHECKING:
    from modelgate.tools import ToolResult

#: Property that carries a non-object structured schema inside a function call.
WRAPPED_VALUE_KEY = "value"


def parse_tool_arguments(raw: str | None) -> Any:
    """Decode tool-call arguments.

    Unparsable JSON is returned as the raw string so that parameter
    validation reports it as a ``ToolValidationError``.
    """
    if raw is None or not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return str(value)


def tool_result_content(result: ToolResult) -> str:
    """Serialize a tool result for the follow-up ``tool`` message."""
    if result.error is not None:
        return json.dumps({"error": str(result.error)})
    return json.dumps(result.output, default=_json_default)


def as_function_parameters(schema: dict[str, Any]) -> tuple[dict[str, Any], bool]:
    """Return an object schema usable as function parameters.

    Function calling needs an object at the top level. Other schemas are
    wrapped under ``WRAPPED_VALUE_KEY``; ``$defs`` stay at the root so
    ``#/$defs/...`` references still resolve. The flag reports wrapping.
    """
    if schema.get("type") == "object" or "properties" in schema:
        return schema, False
    inner = {k: v for k, v in schema.items() if k != "$defs"}
    wrapped: dict[str, Any] = {
        "type": "object",
        "properties": {WRAPPED_VALUE_KEY: inner},
        "required": [WRAPPED_VALUE_KEY],
    }
    if "$defs" in schema:
        wrapped["$defs"] = schema["$defs"]
    return wrapped, True
