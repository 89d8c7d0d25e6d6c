"""Tool registry and timeout-bounded tool executor.

Tools are named callables with a pydantic parameter model. The registry
validates input, runs the handler against a timer and classifies every
failure into a ``ToolResult`` (or raises it with ``throw_on_error=True``).

Cancellation is cooperative: each call gets a ``CancellationToken`` that is
set when the call times out. Async handlers are also ``Task.cancel()``ed.
Sync handlers run in a worker thread and only stop if they poll the token;
a handler that ignores it keeps running after its timeout is reported.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
import enum
import functools
import inspect
import logging
import threading
import time
from typing import Any, get_args

from pydantic import BaseModel, ValidationError

from modelgate.errors import (
    ConfigurationError,
    ModelGateError,
    ToolExecutionError,
    ToolTimeoutError,
    ToolValidationError,
)

logger = logging.getLogger(__name__)

ToolHandler = Callable[..., Any]

CANCEL_TOKEN_PARAM = "cancel_token"


class CancellationToken:
    """Cooperative cancellation signal shared with a running tool.

    Backed by ``threading.Event`` so handlers in worker threads can poll or
    block on it as well as coroutines.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError("tool call cancelled")

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or ``timeout`` seconds pass. Returns ``cancelled``."""
        return self._event.wait(timeout)


class ToolCallState(enum.Enum):
    PENDING = "pending"
    VALIDATING = "validating"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    VALIDATION_FAILED = "validation_failed"
    EXECUTION_FAILED = "execution_failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {
        ToolCallState.SUCCEEDED,
        ToolCallState.VALIDATION_FAILED,
        ToolCallState.EXECUTION_FAILED,
        ToolCallState.TIMED_OUT,
    }
)

_TRANSITIONS: dict[ToolCallState, frozenset[ToolCallState]] = {
    ToolCallState.PENDING: frozenset({ToolCallState.VALIDATING}),
    ToolCallState.VALIDATING: frozenset(
        {ToolCallState.EXECUTING, ToolCallState.VALIDATION_FAILED}
    ),
    ToolCallState.EXECUTING: frozenset(
        {
            ToolCallState.SUCCEEDED,
            ToolCallState.EXECUTION_FAILED,
            ToolCallState.TIMED_OUT,
        }
    ),
}


class ToolCallLifecycle:
    """Tracks one tool call through its states.

    ``PENDING -> VALIDATING -> EXECUTING -> terminal``; validation failure
    ends the call from ``VALIDATING``. Terminal states never transition.
    """

    def __init__(self, tool_name: str) -> None:
        self.tool_name = tool_name
        self.state = ToolCallState.PENDING

    def advance(self, new_state: ToolCallState) -> None:
        if self.state.is_terminal:
            raise RuntimeError(
                f"Tool call '{self.tool_name}' is already {self.state.value}; "
                f"cannot move to {new_state.value}"
            )
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid tool call transition {self.state.value} -> {new_state.value}"
            )
        logger.debug(
            "tool %s: %s -> %s", self.tool_name, self.state.value, new_state.value
        )
        self.state = new_state


@dataclass(frozen=True)
class Tool:
    """A named, schema-typed callable the model may ask the host to run.

    ``handler`` receives the validated ``parameters`` instance. Handlers that
    take a second required positional argument (or an optional one annotated
    ``CancellationToken``), or a ``cancel_token`` keyword, also receive the
    call's ``CancellationToken``. Handlers may be sync or async.
    """

    name: str
    description: str
    parameters: type[BaseModel]
    handler: ToolHandler

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ConfigurationError(
                "Tool name must be a non-empty string",
                hint="Pass Tool(name='add', ...).",
            )
        if not (
            isinstance(self.parameters, type) and issubclass(self.parameters, BaseModel)
        ):
            raise ConfigurationError(
                f"Tool '{self.name}' parameters must be a pydantic BaseModel subclass",
                hint="Define class AddParams(BaseModel): a: int; b: int",
            )
        if not callable(self.handler):
            raise ConfigurationError(f"Tool '{self.name}' handler must be callable")


@dataclass(frozen=True)
class ToolRegistryConfig:
    max_tool_calls: int = 10
    tool_timeout_ms: float = 30_000
    allow_parallel: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.max_tool_calls, bool) or not isinstance(
            self.max_tool_calls, int
        ) or self.max_tool_calls < 0:
            raise ConfigurationError(
                "max_tool_calls must be a non-negative integer",
                hint=f"Got max_tool_calls={self.max_tool_calls!r}.",
            )
        if isinstance(self.tool_timeout_ms, bool) or not isinstance(
            self.tool_timeout_ms, (int, float)
        ) or self.tool_timeout_ms <= 0:
            raise ConfigurationError(
                "tool_timeout_ms must be a positive number",
                hint=f"Got tool_timeout_ms={self.tool_timeout_ms!r}.",
            )


@dataclass(frozen=True)
class ToolInvocation:
    name: str
    input: Any = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one tool call. ``output`` is ``None`` when ``error`` is set."""

    tool_name: str
    output: Any
    execution_time_ms: float
    error: ModelGateError | None = None
    state: ToolCallState = ToolCallState.SUCCEEDED

    @property
    def ok(self) -> bool:
        return self.error is None


class ToolRegistry:
    """Holds tools by unique name and executes them.

    Registration is configuration-time only: ``register`` and ``unregister``
    raise while any call is executing.
    """

    def __init__(self, config: ToolRegistryConfig | None = None) -> None:
        self._config = config or ToolRegistryConfig()
        self._tools: dict[str, Tool] = {}
        self._lock = threading.RLock()
        self._in_flight = 0

    @property
    def config(self) -> ToolRegistryConfig:
        return self._config

    @property
    def tools(self) -> list[Tool]:
        with self._lock:
            return list(self._tools.values())

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._tools

    def __len__(self) -> int:
        with self._lock:
            return len(self._tools)

    def register(self, tool: Tool) -> None:
        with self._lock:
            self._ensure_idle("register")
            if tool.name in self._tools:
                raise ConfigurationError(
                    f"Tool with name '{tool.name}' is already registered",
                    hint="Unregister the existing tool first or choose another name.",
                )
            self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        with self._lock:
            self._ensure_idle("unregister")
            if name not in self._tools:
                raise ConfigurationError(f"Tool with name '{name}' is not registered")
            del self._tools[name]

    def get_tool(self, name: str) -> Tool | None:
        with self._lock:
            return self._tools.get(name)

    def get_function_definitions(self) -> list[dict[str, Any]]:
        """Export tools as ``{"name", "description", "parameters"}`` JSON Schema."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters.model_json_schema(),
            }
            for tool in self.tools
        ]

    async def execute_tool(
        self,
        name: str,
        input: Any,  # noqa: A002
        *,
        timeout_ms: float | None = None,
        throw_on_error: bool = False,
    ) -> ToolResult:
        """Validate ``input`` and run tool ``name`` against a timer.

        Raises:
            ConfigurationError: If no tool named ``name`` is registered.
            ToolValidationError, ToolExecutionError, ToolTimeoutError: Only
                when ``throw_on_error`` is true; otherwise the error is
                returned in ``ToolResult.error``.
        """
        tool = self._require(name)
        timeout = self._config.tool_timeout_ms if timeout_ms is None else timeout_ms
        with self._executing():
            return await self._run_call(tool, input, timeout, throw_on_error)

    async def execute_tools(
        self,
        calls: Sequence[ToolInvocation | Mapping[str, Any]],
        *,
        timeout_ms: float | None = None,
        throw_on_error: bool = False,
    ) -> list[ToolResult]:
        """Run a batch of calls; results are in input order.

        Sequential unless ``allow_parallel`` is configured. With
        ``throw_on_error`` in parallel mode every call finishes and the error
        of the lowest-index failing call is raised.
        """
        invocations = [_as_invocation(call) for call in calls]
        limit = self._config.max_tool_calls
        if len(invocations) > limit:
            raise ConfigurationError(
                f"Cannot execute more than {limit} tools in a single request "
                f"(got {len(invocations)})",
                hint="Raise ToolRegistryConfig.max_tool_calls or split the batch.",
            )
        tools = [self._require(invocation.name) for invocation in invocations]
        timeout = self._config.tool_timeout_ms if timeout_ms is None else timeout_ms

        with self._executing():
            if not self._config.allow_parallel:
                results = []
                for tool, invocation in zip(tools, invocations):
                    results.append(
                        await self._run_call(tool, invocation.input, timeout, throw_on_error)
                    )
                return results

            outcomes = await asyncio.gather(
                *(
                    self._run_call(tool, invocation.input, timeout, throw_on_error)
                    for tool, invocation in zip(tools, invocations)
                ),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome
            return list(outcomes)

    def _require(self, name: str) -> Tool:
        tool = self.get_tool(name)
        if tool is None:
            raise ConfigurationError(
                f"Tool with name '{name}' is not registered",
                hint=f"Registered tools: {', '.join(sorted(self._tools)) or 'none'}",
            )
        return tool

    def _ensure_idle(self, action: str) -> None:
        if self._in_flight:
            raise ConfigurationError(
                f"Cannot {action} tools while tool calls are executing",
                hint="Register tools before generating or executing.",
            )

    @contextmanager
    def _executing(self) -> Iterator[None]:
        with self._lock:
            self._in_flight += 1
        try:
            yield
        finally:
            with self._lock:
                self._in_flight -= 1

    async def _run_call(
        self, tool: Tool, raw_input: Any, timeout_ms: float, throw_on_error: bool
    ) -> ToolResult:
        lifecycle = ToolCallLifecycle(tool.name)
        start = time.perf_counter()

        def finish(error: ModelGateError | None, output: Any = None) -> ToolResult:
            elapsed = (time.perf_counter() - start) * 1000
            if error is not None:
                error.execution_time_ms = elapsed  # type: ignore[attr-defined]
                if throw_on_error:
                    raise error
            return ToolResult(
                tool_name=tool.name,
                output=output,
                execution_time_ms=elapsed,
                error=error,
                state=lifecycle.state,
            )

        lifecycle.advance(ToolCallState.VALIDATING)
        try:
            params = tool.parameters.model_validate(raw_input)
        except ValidationError as e:
            lifecycle.advance(ToolCallState.VALIDATION_FAILED)
            error = ToolValidationError(
                f"Tool input validation failed for '{tool.name}'",
                tool_name=tool.name,
                errors=e.errors(include_url=False),
                hint=str(e),
            )
            error.__cause__ = e
            return finish(error)

        lifecycle.advance(ToolCallState.EXECUTING)
        token = CancellationToken()
        try:
            output = await _invoke_with_timeout(tool, params, token, timeout_ms)
        except ToolTimeoutError as e:
            lifecycle.advance(ToolCallState.TIMED_OUT)
            return finish(e)
        except ToolExecutionError as e:
            lifecycle.advance(ToolCallState.EXECUTION_FAILED)
            return finish(e)

        lifecycle.advance(ToolCallState.SUCCEEDED)
        return finish(None, output)


async def _invoke_with_timeout(
    tool: Tool, params: BaseModel, token: CancellationToken, timeout_ms: float
) -> Any:
    """Race the handler against ``timeout_ms``; the loser is not awaited."""
    loop = asyncio.get_running_loop()
    handler = tool.handler
    call = _bind_handler(handler, params, token)

    if _is_async_callable(handler):
        fut: asyncio.Future[Any] = asyncio.ensure_future(call())
    else:
        fut = loop.run_in_executor(None, call)

    try:
        done, _ = await asyncio.wait({fut}, timeout=timeout_ms / 1000)
    except asyncio.CancelledError:
        token.cancel()
        fut.cancel()
        fut.add_done_callback(_consume_outcome)
        raise

    if fut not in done:
        logger.debug("tool %s timed out after %sms", tool.name, timeout_ms)
        token.cancel()
        fut.cancel()
        fut.add_done_callback(_consume_outcome)
        raise ToolTimeoutError(
            f"Tool execution timed out after {timeout_ms}ms",
            tool_name=tool.name,
            timeout_ms=timeout_ms,
            hint="Raise timeout_ms, or make the tool poll its cancel_token.",
        )

    try:
        return fut.result()
    except (Exception, asyncio.CancelledError) as e:
        raise ToolExecutionError(
            f"Tool execution failed for '{tool.name}': {e}",
            tool_name=tool.name,
        ) from e


def _bind_handler(
    handler: ToolHandler, params: BaseModel, token: CancellationToken
) -> Callable[[], Any]:
    mode = _token_mode(handler)
    if mode == "keyword":
        return functools.partial(handler, params, **{CANCEL_TOKEN_PARAM: token})
    if mode == "positional":
        return functools.partial(handler, params, token)
    return functools.partial(handler, params)


def _token_mode(handler: ToolHandler) -> str | None:
    """Return how ``handler`` accepts a cancellation token, if at all."""
    try:
        signature = inspect.signature(handler)
    except (TypeError, ValueError):
        return None
    params = list(signature.parameters.values())
    if any(p.name == CANCEL_TOKEN_PARAM for p in params):
        return "keyword"
    positional = [
        p
        for p in params
        if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    ]
    if len(positional) >= 2:
        second = positional[1]
        # Optional parameters only receive the token when annotated for it.
        if second.default is inspect.Parameter.empty or _is_token_annotation(
            second.annotation
        ):
            return "positional"
        return None
    if any(p.kind == inspect.Parameter.VAR_POSITIONAL for p in params):
        return "positional"
    return None


def _is_token_annotation(annotation: Any) -> bool:
    if annotation is CancellationToken or CancellationToken in get_args(annotation):
        return True
    # String annotations under ``from __future__ import annotations``.
    return isinstance(annotation, str) and annotation.split(".")[-1] in (
        "CancellationToken",
        "CancellationToken | None",
        "Optional[CancellationToken]",
    )


def _is_async_callable(handler: ToolHandler) -> bool:
    if inspect.iscoroutinefunction(handler):
        return True
    call = getattr(handler, "__call__", None)  # noqa: B004
    return inspect.iscoroutinefunction(call)


def _consume_outcome(fut: asyncio.Future[Any]) -> None:
    # Retrieve the late outcome so asyncio does not log it as unhandled.
    if not fut.cancelled():
        fut.exception()


def _as_invocation(call: ToolInvocation | Mapping[str, Any]) -> ToolInvocation:
    if isinstance(call, ToolInvocation):
        return call
    if isinstance(call, Mapping) and isinstance(call.get("name"), str):
        return ToolInvocation(name=call["name"], input=call.get("input", {}))
    raise ConfigurationError(
        "Tool calls must be ToolInvocation objects or mappings with 'name' and 'input'",
        hint="Pass [{'name': 'add', 'input': {'a': 1, 'b': 2}}].",
    )
