"""Exception hierarchy for modelgate."""

from __future__ import annotations

import builtins
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator


class ModelGateError(Exception):
    """Base exception for all modelgate errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(ModelGateError):
    """Configuration validation or resolution failed."""


class APIError(ModelGateError):
    """A vendor API call failed.

    Carries the HTTP status and vendor context when the SDK exposed them.
    modelgate never retries; ``retry_after_s`` is informational for hosts
    that implement their own backoff.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase


class AuthenticationError(APIError):
    """Credentials were rejected (HTTP 401)."""


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429)."""


class RequestTimeoutError(APIError, builtins.TimeoutError):
    """The vendor request timed out."""


class EmbeddingsError(ModelGateError):
    """Embedding generation or vector math failed."""


class StructuredDataError(ModelGateError):
    """Model output did not parse or did not match the requested schema."""


class UnsupportedFeatureError(ModelGateError):
    """The provider does not support the requested operation."""


class TemplateValidationError(ModelGateError):
    """A prompt template was compiled with missing variables."""

    def __init__(
        self, message: str, variables: list[str], *, hint: str | None = None
    ) -> None:
        super().__init__(message, hint=hint)
        self.variables = variables


class ToolExecutionError(ModelGateError):
    """A tool raised while executing. The original error is ``__cause__``."""

    def __init__(self, message: str, *, tool_name: str, hint: str | None = None):
        super().__init__(message, hint=hint)
        self.tool_name = tool_name
        #: Wall-clock time of the failed call, set by the executor.
        self.execution_time_ms: float | None = None


class ToolValidationError(ModelGateError):
    """Tool input did not match the tool's parameter schema."""

    def __init__(
        self,
        message: str,
        *,
        tool_name: str,
        errors: list[dict[str, Any]] | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.tool_name = tool_name
        self.execution_time_ms: float | None = None
        self.errors = errors or []


class ToolTimeoutError(ModelGateError, builtins.TimeoutError):
    """A tool did not finish within its timeout."""

    def __init__(
        self,
        message: str,
        *,
        tool_name: str,
        timeout_ms: float,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.tool_name = tool_name
        self.execution_time_ms: float | None = None
        self.timeout_ms = timeout_ms


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
