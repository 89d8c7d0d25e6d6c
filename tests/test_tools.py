"""Tool registry and executor behavior."""

from __future__ import annotations

import asyncio
import threading

from pydantic import BaseModel
import pytest

from modelgate.errors import (
    ConfigurationError,
    ToolExecutionError,
    ToolTimeoutError,
    ToolValidationError,
)
from modelgate.tools import (
    CancellationToken,
    Tool,
    ToolCallLifecycle,
    ToolCallState,
    ToolInvocation,
    ToolRegistry,
    ToolRegistryConfig,
)

pytestmark = pytest.mark.unit


class AddParams(BaseModel):
    a: int
    b: int


class EmptyParams(BaseModel):
    pass


def _add_tool() -> Tool:
    return Tool(
        name="add",
        description="Add two integers",
        parameters=AddParams,
        handler=lambda params: params.a + params.b,
    )


def _registry(**config: object) -> ToolRegistry:
    registry = ToolRegistry(ToolRegistryConfig(**config))  # type: ignore[arg-type]
    registry.register(_add_tool())
    return registry


# =============================================================================
# Registration
# =============================================================================


def test_duplicate_registration_is_rejected() -> None:
    registry = _registry()

    with pytest.raises(ConfigurationError, match="already registered"):
        registry.register(_add_tool())


def test_unregister_unknown_tool_is_rejected() -> None:
    with pytest.raises(ConfigurationError, match="not registered"):
        ToolRegistry().unregister("missing")


def test_unregister_removes_tool() -> None:
    registry = _registry()

    registry.unregister("add")

    assert "add" not in registry
    assert len(registry) == 0
    assert registry.get_tool("add") is None


def test_function_definitions_export_json_schema() -> None:
    definitions = _registry().get_function_definitions()

    assert len(definitions) == 1
    definition = definitions[0]
    assert definition["name"] == "add"
    assert definition["description"] == "Add two integers"
    assert definition["parameters"]["type"] == "object"
    assert set(definition["parameters"]["properties"]) == {"a", "b"}
    assert definition["parameters"]["required"] == ["a", "b"]


def test_tool_requires_pydantic_parameters() -> None:
    with pytest.raises(ConfigurationError, match="BaseModel"):
        Tool(name="bad", description="", parameters=dict, handler=print)  # type: ignore[arg-type]


def test_registry_config_validates_values() -> None:
    with pytest.raises(ConfigurationError, match="tool_timeout_ms"):
        ToolRegistryConfig(tool_timeout_ms=0)
    with pytest.raises(ConfigurationError, match="max_tool_calls"):
        ToolRegistryConfig(max_tool_calls=-1)


# =============================================================================
# execute_tool
# =============================================================================


@pytest.mark.asyncio
async def test_execute_tool_returns_output_and_timing() -> None:
    result = await _registry().execute_tool("add", {"a": 2, "b": 5})

    assert result.output == 7
    assert result.error is None
    assert result.ok
    assert result.state is ToolCallState.SUCCEEDED
    assert result.execution_time_ms >= 0


@pytest.mark.asyncio
async def test_execute_tool_runs_async_handlers() -> None:
    async def multiply(params: AddParams) -> int:
        await asyncio.sleep(0)
        return params.a * params.b

    registry = ToolRegistry()
    registry.register(Tool("multiply", "Multiply", AddParams, multiply))

    result = await registry.execute_tool("multiply", {"a": 3, "b": 4})

    assert result.output == 12


@pytest.mark.asyncio
async def test_unknown_tool_raises_regardless_of_input() -> None:
    registry = _registry()

    with pytest.raises(ConfigurationError, match="not registered"):
        await registry.execute_tool("missing", {"a": 1, "b": 2})
    with pytest.raises(ConfigurationError, match="not registered"):
        await registry.execute_tool("missing", "garbage", throw_on_error=True)


@pytest.mark.asyncio
async def test_validation_failure_is_returned_in_result() -> None:
    result = await _registry().execute_tool("add", {"a": "one"})

    assert isinstance(result.error, ToolValidationError)
    assert result.error.tool_name == "add"
    assert {tuple(e["loc"]) for e in result.error.errors} == {("a",), ("b",)}
    assert result.output is None
    assert result.state is ToolCallState.VALIDATION_FAILED
    assert result.execution_time_ms >= 0


@pytest.mark.asyncio
async def test_validation_failure_raises_with_throw_on_error() -> None:
    with pytest.raises(ToolValidationError):
        await _registry().execute_tool("add", {"a": 1}, throw_on_error=True)


@pytest.mark.asyncio
async def test_handler_exception_is_wrapped_with_cause() -> None:
    def explode(params: EmptyParams) -> None:
        raise KeyError("boom")

    registry = ToolRegistry()
    registry.register(Tool("explode", "Always fails", EmptyParams, explode))

    result = await registry.execute_tool("explode", {})

    assert isinstance(result.error, ToolExecutionError)
    assert isinstance(result.error.__cause__, KeyError)
    assert result.state is ToolCallState.EXECUTION_FAILED

    with pytest.raises(ToolExecutionError) as exc:
        await registry.execute_tool("explode", {}, throw_on_error=True)
    assert isinstance(exc.value.__cause__, KeyError)


# =============================================================================
# Timeouts and cancellation
# =============================================================================


@pytest.mark.asyncio
async def test_async_tool_timeout_cancels_token_and_task() -> None:
    seen: dict[str, object] = {}

    async def slow(params: EmptyParams, cancel_token: CancellationToken) -> str:
        seen["token"] = cancel_token
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            seen["task_cancelled"] = True
            raise
        return "late"

    registry = ToolRegistry()
    registry.register(Tool("slow", "Sleeps", EmptyParams, slow))

    result = await registry.execute_tool("slow", {}, timeout_ms=20)

    assert isinstance(result.error, ToolTimeoutError)
    assert result.error.timeout_ms == 20
    assert result.state is ToolCallState.TIMED_OUT
    assert result.execution_time_ms >= 20 * 0.5
    await asyncio.sleep(0.01)
    token = seen["token"]
    assert isinstance(token, CancellationToken)
    assert token.cancelled
    assert seen.get("task_cancelled") is True


@pytest.mark.asyncio
async def test_sync_tool_receives_token_positionally_and_can_stop() -> None:
    stopped = threading.Event()

    def poll(params: EmptyParams, token: CancellationToken) -> str:
        while not token.wait(0.005):
            pass
        stopped.set()
        return "stopped"

    registry = ToolRegistry()
    registry.register(Tool("poll", "Polls its token", EmptyParams, poll))

    with pytest.raises(ToolTimeoutError):
        await registry.execute_tool("poll", {}, timeout_ms=30, throw_on_error=True)

    assert await asyncio.to_thread(stopped.wait, 2.0)


@pytest.mark.asyncio
async def test_optional_second_parameter_keeps_its_default() -> None:
    def scaled(params: AddParams, scale=10) -> int:
        return (params.a + params.b) * scale

    registry = ToolRegistry()
    registry.register(Tool("scaled", "Scaled sum", AddParams, scaled))

    result = await registry.execute_tool("scaled", {"a": 1, "b": 2})

    assert result.output == 30


@pytest.mark.asyncio
async def test_optional_parameter_annotated_as_token_receives_it() -> None:
    def check(params: EmptyParams, token: CancellationToken | None = None) -> bool:
        return isinstance(token, CancellationToken)

    registry = ToolRegistry()
    registry.register(Tool("check", "Reports token", EmptyParams, check))

    result = await registry.execute_tool("check", {})

    assert result.output is True


@pytest.mark.asyncio
async def test_raised_errors_carry_execution_time() -> None:
    async def slow(params: EmptyParams) -> None:
        await asyncio.sleep(10)

    registry = _registry()
    registry.register(Tool("slow", "Sleeps", EmptyParams, slow))

    with pytest.raises(ToolTimeoutError) as timed_out:
        await registry.execute_tool("slow", {}, timeout_ms=20, throw_on_error=True)
    assert timed_out.value.execution_time_ms is not None
    assert timed_out.value.execution_time_ms >= 20 * 0.5

    with pytest.raises(ToolValidationError) as invalid:
        await registry.execute_tool("add", {"a": 1}, throw_on_error=True)
    assert invalid.value.execution_time_ms is not None
    assert invalid.value.execution_time_ms >= 0


@pytest.mark.asyncio
async def test_default_timeout_comes_from_registry_config() -> None:
    async def slow(params: EmptyParams) -> None:
        await asyncio.sleep(10)

    registry = ToolRegistry(ToolRegistryConfig(tool_timeout_ms=10))
    registry.register(Tool("slow", "Sleeps", EmptyParams, slow))

    result = await registry.execute_tool("slow", {})

    assert isinstance(result.error, ToolTimeoutError)
    assert result.error.timeout_ms == 10


def test_cancellation_token_raise_if_cancelled() -> None:
    token = CancellationToken()
    token.raise_if_cancelled()

    token.cancel()

    assert token.cancelled
    assert token.wait(0) is True
    with pytest.raises(asyncio.CancelledError):
        token.raise_if_cancelled()


# =============================================================================
# execute_tools
# =============================================================================


@pytest.mark.asyncio
@pytest.mark.parametrize("allow_parallel", [False, True])
async def test_batch_results_keep_input_order(allow_parallel: bool) -> None:
    registry = _registry(allow_parallel=allow_parallel)

    results = await registry.execute_tools(
        [
            {"name": "add", "input": {"a": 1, "b": 2}},
            ToolInvocation(name="add", input={"a": 3, "b": 4}),
        ]
    )

    assert [r.output for r in results] == [3, 7]


@pytest.mark.asyncio
async def test_parallel_batch_runs_concurrently() -> None:
    ready = asyncio.Event()

    async def waiter(params: EmptyParams) -> str:
        await ready.wait()
        return "waited"

    async def setter(params: EmptyParams) -> str:
        ready.set()
        return "set"

    registry = ToolRegistry(ToolRegistryConfig(allow_parallel=True, tool_timeout_ms=2000))
    registry.register(Tool("waiter", "Waits", EmptyParams, waiter))
    registry.register(Tool("setter", "Sets", EmptyParams, setter))

    results = await registry.execute_tools(
        [{"name": "waiter", "input": {}}, {"name": "setter", "input": {}}]
    )

    assert [r.output for r in results] == ["waited", "set"]


@pytest.mark.asyncio
async def test_too_many_calls_fail_before_any_tool_runs() -> None:
    calls: list[int] = []

    def record(params: AddParams) -> int:
        calls.append(params.a)
        return params.a

    registry = ToolRegistry(ToolRegistryConfig(max_tool_calls=2))
    registry.register(Tool("record", "Records", AddParams, record))

    with pytest.raises(ConfigurationError, match="more than 2"):
        await registry.execute_tools(
            [{"name": "record", "input": {"a": i, "b": 0}} for i in range(3)]
        )
    assert calls == []


@pytest.mark.asyncio
async def test_parallel_throw_raises_lowest_index_error() -> None:
    async def fail_fast(params: EmptyParams) -> None:
        raise ValueError("second")

    async def fail_slow(params: EmptyParams) -> None:
        await asyncio.sleep(0.02)
        raise ValueError("first")

    registry = ToolRegistry(ToolRegistryConfig(allow_parallel=True))
    registry.register(Tool("fail_slow", "", EmptyParams, fail_slow))
    registry.register(Tool("fail_fast", "", EmptyParams, fail_fast))

    with pytest.raises(ToolExecutionError) as exc:
        await registry.execute_tools(
            [{"name": "fail_slow", "input": {}}, {"name": "fail_fast", "input": {}}],
            throw_on_error=True,
        )
    assert exc.value.tool_name == "fail_slow"


@pytest.mark.asyncio
async def test_registry_mutation_during_execution_is_rejected() -> None:
    registry = ToolRegistry()

    def register_more(params: EmptyParams) -> None:
        registry.register(_add_tool())

    registry.register(Tool("register_more", "", EmptyParams, register_more))

    result = await registry.execute_tool("register_more", {})

    assert isinstance(result.error, ToolExecutionError)
    assert isinstance(result.error.__cause__, ConfigurationError)
    assert "add" not in registry

    # Idle again: registration works.
    registry.register(_add_tool())
    assert "add" in registry


# =============================================================================
# Lifecycle
# =============================================================================


def test_lifecycle_follows_allowed_transitions() -> None:
    lifecycle = ToolCallLifecycle("add")

    lifecycle.advance(ToolCallState.VALIDATING)
    lifecycle.advance(ToolCallState.EXECUTING)
    lifecycle.advance(ToolCallState.SUCCEEDED)

    assert lifecycle.state.is_terminal


def test_terminal_state_never_transitions() -> None:
    lifecycle = ToolCallLifecycle("add")
    lifecycle.advance(ToolCallState.VALIDATING)
    lifecycle.advance(ToolCallState.VALIDATION_FAILED)

    with pytest.raises(RuntimeError, match="already validation_failed"):
        lifecycle.advance(ToolCallState.EXECUTING)


def test_skipping_a_state_is_rejected() -> None:
    with pytest.raises(RuntimeError, match="Invalid tool call transition"):
        ToolCallLifecycle("add").advance(ToolCallState.EXECUTING)
