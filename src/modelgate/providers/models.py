"""Domain models for the provider transport layer."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from modelgate.errors import ConfigurationError
from modelgate.result import TokenUsage

MessageRole = Literal["user", "assistant", "system", "function", "tool"]
MESSAGE_ROLES: frozenset[str] = frozenset(
    {"user", "assistant", "system", "function", "tool"}
)

ToolChoice = Literal["auto", "none"] | dict[str, Any]


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model.

    ``arguments`` is the raw JSON string returned by the vendor.
    """

    id: str
    name: str
    arguments: str


@dataclass(frozen=True)
class Message:
    """A conversational message turn."""

    role: MessageRole
    content: str = ""
    #: Tool or function name for ``function``/``tool`` messages.
    name: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None

    def __post_init__(self) -> None:
        if self.role not in MESSAGE_ROLES:
            raise ConfigurationError(
                f"Unsupported message role: {self.role!r}",
                hint=f"Use one of: {', '.join(sorted(MESSAGE_ROLES))}.",
            )
        if not isinstance(self.content, str):
            raise ConfigurationError(
                "Message content must be a string",
                hint="Pass Message(role='user', content='...').",
            )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Message:
        tool_calls = data.get("tool_calls")
        if tool_calls is not None:
            tool_calls = [
                tc if isinstance(tc, ToolCall) else ToolCall(**tc) for tc in tool_calls
            ]
        return cls(
            role=data.get("role"),  # type: ignore[arg-type]
            content=data.get("content") or "",
            name=data.get("name"),
            tool_calls=tool_calls,
            tool_call_id=data.get("tool_call_id"),
        )


@dataclass(frozen=True)
class CompletionRequest:
    """A vendor-neutral chat request.

    ``messages`` holds no system messages; they are hoisted into ``system``.
    """

    model: str
    messages: list[Message]
    system: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    #: Function definitions: ``{"name", "description", "parameters"}``.
    tools: list[dict[str, Any]] | None = None
    #: ``"auto"``, ``"none"`` or ``{"name": ...}`` to force one function.
    tool_choice: ToolChoice | None = None


@dataclass(frozen=True)
class Completion:
    """A normalized vendor chat response."""

    content: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    tool_calls: list[ToolCall] | None = None
