"""Response records returned by provider operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from modelgate.providers.models import ToolCall
    from modelgate.tools import ToolResult

T = TypeVar("T")


@dataclass(frozen=True)
class TokenUsage:
    """Token accounting for one or more vendor requests.

    Zero-filled when a vendor does not report usage. Supports ``+`` so the
    initial and follow-up requests of a tool round can be reported together.
    """

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: object) -> TokenUsage:
        if not isinstance(other, TokenUsage):
            return NotImplemented
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    @classmethod
    def from_counts(
        cls,
        prompt_tokens: int | None,
        completion_tokens: int | None,
        total_tokens: int | None = None,
    ) -> TokenUsage:
        """Build usage from vendor counts, treating ``None`` as zero."""
        prompt = int(prompt_tokens or 0)
        completion = int(completion_tokens or 0)
        total = int(total_tokens) if total_tokens is not None else prompt + completion
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


@dataclass(frozen=True)
class TextGenerationResponse:
    content: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    #: Tool calls the model requested in the first round, if any.
    tool_calls: list[ToolCall] | None = None
    #: Results of executing ``tool_calls``, in the same order.
    tool_results: list[ToolResult] | None = None


@dataclass(frozen=True)
class TextChunk:
    """One increment of a streamed text reply.

    ``usage`` is set only on the last chunk of a stream, whose ``content``
    may be empty.
    """

    content: str
    model: str
    usage: TokenUsage | None = None


@dataclass(frozen=True)
class StructuredDataResponse(Generic[T]):
    """Schema-validated output of ``generate_structured``."""

    content: T
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass(frozen=True)
class EmbeddingResponse:
    """One vector per input, in input order."""

    embeddings: list[list[float]]
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)

    def __len__(self) -> int:
        return len(self.embeddings)
