"""Per-call options for provider operations.

Unset fields (``None``) fall back to the provider's validated config.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from modelgate.errors import ConfigurationError

if TYPE_CHECKING:
    from modelgate.tools import ToolRegistry


def _check_generation_overrides(
    temperature: float | None, max_tokens: int | None
) -> None:
    if temperature is not None and (
        isinstance(temperature, bool)
        or not isinstance(temperature, (int, float))
        or not 0 <= temperature <= 1
    ):
        raise ConfigurationError(
            "Temperature must be between 0 and 1",
            hint=f"Got temperature={temperature!r}.",
        )
    if max_tokens is not None and (
        isinstance(max_tokens, bool)
        or not isinstance(max_tokens, int)
        or not 1 <= max_tokens <= 100_000
    ):
        raise ConfigurationError(
            "Max tokens must be between 1 and 100000",
            hint=f"Got max_tokens={max_tokens!r}.",
        )


@dataclass(frozen=True)
class TextGenerationOptions:
    """Options for ``generate_text``."""

    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    #: Prepended as the first system message.
    system_message: str | None = None
    #: Extra function definitions: ``{"name", "description", "parameters"}``.
    tools: list[dict[str, Any]] | None = None
    #: Registry whose tools are advertised and executed on tool calls.
    tool_registry: ToolRegistry | None = None
    #: Overrides the config's ``stream`` when set.
    stream: bool | None = None
    #: Call the vendor client even when the provider is in mock mode.
    bypass_mock: bool = False

    def __post_init__(self) -> None:
        _check_generation_overrides(self.temperature, self.max_tokens)
        if self.stream is not None and not isinstance(self.stream, bool):
            raise ConfigurationError(
                "stream must be a boolean",
                hint=f"Got stream={self.stream!r}.",
            )
        if self.system_message is not None and not isinstance(self.system_message, str):
            raise ConfigurationError(
                "system_message must be a string",
                hint="Pass system_message='You are a concise assistant.'",
            )
        if self.tools is not None:
            if not isinstance(self.tools, list):
                raise ConfigurationError(
                    "tools must be a list of function definitions",
                    hint="Pass tools=[{'name': ..., 'description': ..., 'parameters': {...}}].",
                )
            for item in self.tools:
                if not isinstance(item, dict) or not isinstance(item.get("name"), str):
                    raise ConfigurationError(
                        "tools items must be dicts with a string 'name' field",
                        hint="Each item needs at least {'name': 'my_tool'}.",
                    )


@dataclass(frozen=True)
class StructuredDataOptions:
    """Options for ``generate_structured``.

    ``schema`` is any type pydantic can build a ``TypeAdapter`` for: a
    ``BaseModel`` subclass, a dataclass, a ``TypedDict`` or a generic such as
    ``list[int]``.
    """

    function_name: str
    schema: Any
    function_description: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    system_message: str | None = None
    bypass_mock: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.function_name, str) or not self.function_name.strip():
            raise ConfigurationError(
                "function_name must be a non-empty string",
                hint="Pass function_name='extract_person'.",
            )
        if self.schema is None:
            raise ConfigurationError(
                "schema is required for structured generation",
                hint="Pass a pydantic BaseModel subclass or another pydantic-compatible type.",
            )
        _check_generation_overrides(self.temperature, self.max_tokens)


@dataclass(frozen=True)
class EmbeddingOptions:
    model: str | None = None
    #: Requested vector size, for models that support truncation.
    dimensions: int | None = None
    #: Overrides the config's ``normalize_embeddings`` when set.
    normalize: bool | None = None
    bypass_mock: bool = False

    def __post_init__(self) -> None:
        if self.dimensions is not None and (
            isinstance(self.dimensions, bool)
            or not isinstance(self.dimensions, int)
            or self.dimensions <= 0
        ):
            raise ConfigurationError(
                "dimensions must be a positive integer",
                hint="Pass dimensions=256 or omit it for the model's default size.",
            )
