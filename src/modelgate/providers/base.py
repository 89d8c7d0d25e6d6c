"""Provider contract shared by every vendor adapter.

``BaseProvider`` owns the vendor-neutral flow of each operation: option
merging, system-message hoisting, mock mode, tool execution with a single
follow-up request, streaming, structured-output validation and embedding
post-processing. Adapters implement ``_create_client``, ``_complete`` and
optionally ``_stream`` and ``_embed``.
"""

from __future__ import annotations

import abc
import asyncio
from collections.abc import AsyncIterator, Mapping, Sequence
import dataclasses
from dataclasses import dataclass
import inspect
import json
import logging
from typing import Any, ClassVar

from pydantic import TypeAdapter, ValidationError

from modelgate.config import ProviderConfig, apply_defaults, validate_config
from modelgate.embeddings import normalize as normalize_vector
from modelgate.errors import (
    ConfigurationError,
    EmbeddingsError,
    ModelGateError,
    StructuredDataError,
    UnsupportedFeatureError,
)
from modelgate.options import (
    EmbeddingOptions,
    StructuredDataOptions,
    TextGenerationOptions,
)
from modelgate.providers import mock
from modelgate.providers._errors import map_provider_error
from modelgate.providers._utils import (
    WRAPPED_VALUE_KEY,
    as_function_parameters,
    parse_tool_arguments,
    tool_result_content,
)
from modelgate.providers.models import Completion, CompletionRequest, Message, ToolCall
from modelgate.result import (
    EmbeddingResponse,
    StructuredDataResponse,
    TextChunk,
    TextGenerationResponse,
    TokenUsage,
)
from modelgate.tools import ToolCallState, ToolInvocation, ToolRegistry, ToolResult

logger = logging.getLogger(__name__)

MessagesInput = str | Sequence[Message | Mapping[str, Any]]


@dataclass(frozen=True)
class ProviderCapabilities:
    """Feature flags exposed by providers."""

    embeddings: bool
    tools: bool = True
    structured_outputs: bool = True
    streaming: bool = True


class BaseProvider(abc.ABC):
    """Uniform text, structured and embedding operations over one vendor.

    The config is validated at construction, so configuration errors surface
    synchronously. ``client`` replaces the lazily created SDK client, for
    tests and custom transports.
    """

    provider_name: ClassVar[str]
    default_capabilities: ClassVar[ProviderCapabilities] = ProviderCapabilities(
        embeddings=True
    )

    def __init__(self, config: ProviderConfig | Mapping[str, Any], *, client: Any = None) -> None:
        validated = validate_config(config)
        if validated.provider != self.provider_name:
            raise ConfigurationError(
                f"{type(self).__name__} requires a '{self.provider_name}' config, "
                f"got '{validated.provider}'",
                hint="Use create_provider(config) to pick the adapter by provider.",
            )
        self._config = validated
        self._client: Any = client

    @property
    def name(self) -> str:
        return self.provider_name

    @property
    def config(self) -> ProviderConfig:
        """A copy of the validated config."""
        return dataclasses.replace(self._config)

    @property
    def capabilities(self) -> ProviderCapabilities:
        return self.default_capabilities

    @property
    def execution_mode(self) -> str:
        return self._config.execution_mode

    def _get_client(self) -> Any:
        """Lazily create and return the vendor SDK client."""
        if self._client is None:
            self._client = self._create_client()
        return self._client

    @abc.abstractmethod
    def _create_client(self) -> Any:
        """Build the vendor SDK client from ``self._config``."""

    @abc.abstractmethod
    async def _complete(self, request: CompletionRequest) -> Completion:
        """Send one chat request to the vendor and normalize the reply."""

    async def _embed(
        self, inputs: list[str], model: str, dimensions: int | None
    ) -> EmbeddingResponse:
        """Return one vector per input, in input order."""
        raise UnsupportedFeatureError(
            f"{self.provider_name} provider does not support embeddings"
        )

    def _stream(self, request: CompletionRequest) -> AsyncIterator[TextChunk]:
        """Send one chat request and yield text increments as they arrive.

        The last chunk carries the usage of the whole request.
        """
        raise UnsupportedFeatureError(
            f"{self.provider_name} provider does not support streaming"
        )

    def _request_model(self, override: str | None) -> str:
        return override or self._config.model  # type: ignore[return-value]

    async def aclose(self) -> None:
        """Close the underlying SDK client, if one was created."""
        client = self._client
        if client is None:
            return
        self._client = None
        close = getattr(client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result

    async def generate_text(
        self,
        messages: MessagesInput,
        options: TextGenerationOptions | None = None,
    ) -> TextGenerationResponse:
        """Generate free text, executing requested tools once if a registry is given.

        When the model asks for tools and ``options.tool_registry`` is set,
        the calls are executed, their results appended as ``tool`` messages,
        and exactly one follow-up request (tool choice ``none``) produces the
        returned content. Usage covers both requests.

        With ``stream`` enabled (option or config) and no tools attached, the
        reply is streamed from the vendor and collected into one response.
        """
        options = options or TextGenerationOptions()
        conversation = _coerce_messages(messages)
        if self._use_mock(options.bypass_mock):
            return mock.mock_text_response(conversation, self._request_model(options.model))

        registry = options.tool_registry
        tool_defs = list(registry.get_function_definitions()) if registry is not None else []
        tool_defs.extend(options.tools or [])
        request = self._text_request(conversation, options, tool_defs)

        should_stream = options.stream if options.stream is not None else self._config.stream
        if should_stream and not tool_defs and self.capabilities.streaming:
            return await self._collect_stream(request)

        first = await self._dispatch(request, phase="generate")
        if not first.tool_calls or registry is None:
            return TextGenerationResponse(
                content=first.content,
                model=first.model,
                usage=first.usage,
                tool_calls=first.tool_calls,
            )

        results = await _execute_tool_calls(registry, first.tool_calls)
        follow_up_turns = [
            *request.messages,
            Message(role="assistant", content=first.content, tool_calls=first.tool_calls),
        ]
        for call, result in zip(first.tool_calls, results):
            follow_up_turns.append(
                Message(
                    role="tool",
                    content=tool_result_content(result),
                    name=call.name,
                    tool_call_id=call.id,
                )
            )
        logger.debug(
            "%s: sending follow-up after %d tool call(s)",
            self.provider_name,
            len(results),
        )
        second = await self._dispatch(
            dataclasses.replace(request, messages=follow_up_turns, tool_choice="none"),
            phase="tool_follow_up",
        )
        return TextGenerationResponse(
            content=second.content,
            model=second.model,
            usage=first.usage + second.usage,
            tool_calls=first.tool_calls,
            tool_results=results,
        )

    async def stream_text(
        self,
        messages: MessagesInput,
        options: TextGenerationOptions | None = None,
    ) -> AsyncIterator[TextChunk]:
        """Yield the reply as it is generated.

        Joining the ``content`` of every chunk gives the full reply; the last
        chunk carries usage. Options are checked when iteration starts.

        Raises:
            UnsupportedFeatureError: If tools are attached, or the provider
                cannot stream.
        """
        options = options or TextGenerationOptions()
        if options.tools or options.tool_registry is not None:
            raise UnsupportedFeatureError(
                "Tools cannot be used with streaming",
                hint="Use generate_text() for tool calls.",
            )
        self._require_capability("streaming", "streaming")
        conversation = _coerce_messages(messages)

        if self._use_mock(options.bypass_mock):
            for chunk in mock.mock_text_chunks(conversation, self._request_model(options.model)):
                yield chunk
            return

        async for chunk in self._dispatch_stream(self._text_request(conversation, options, [])):
            yield chunk

    async def generate_structured(
        self,
        messages: MessagesInput,
        options: StructuredDataOptions,
    ) -> StructuredDataResponse[Any]:
        """Generate data matching ``options.schema`` via a forced function call.

        Raises:
            StructuredDataError: If the model does not call the function, the
                arguments are not JSON, or they fail schema validation.
        """
        self._require_capability("structured_outputs", "structured outputs")
        adapter, json_schema = _schema_adapter(options.schema)
        conversation = _coerce_messages(messages)

        if self._use_mock(options.bypass_mock):
            value = mock.mock_value_from_schema(json_schema)
            return StructuredDataResponse(
                content=_validate_structured(adapter, value, options.function_name),
                model=self._request_model(options.model),
                usage=mock.MOCK_USAGE,
            )

        settings = self._merge_settings(options.model, options.temperature, options.max_tokens)
        system, turns = _hoist_system(conversation, options.system_message)
        parameters, wrapped = as_function_parameters(json_schema)
        function = {
            "name": options.function_name,
            "description": options.function_description
            or f"Return structured data for {options.function_name}",
            "parameters": parameters,
        }
        request = CompletionRequest(
            model=settings["model"],
            messages=turns,
            system=system,
            temperature=settings["temperature"],
            max_tokens=settings["max_tokens"],
            tools=[function],
            tool_choice={"name": options.function_name},
        )
        completion = await self._dispatch(request, phase="structured")

        call = next(
            (c for c in completion.tool_calls or [] if c.name == options.function_name),
            None,
        )
        if call is None:
            raise StructuredDataError(
                f"Model did not call function '{options.function_name}'",
                hint="Check that the model supports function calling.",
            )
        try:
            data = json.loads(call.arguments)
        except ValueError as e:
            raise StructuredDataError(
                f"Function '{options.function_name}' arguments are not valid JSON",
                hint=call.arguments[:200],
            ) from e
        if wrapped:
            if not isinstance(data, dict) or WRAPPED_VALUE_KEY not in data:
                raise StructuredDataError(
                    f"Function '{options.function_name}' arguments are missing "
                    f"'{WRAPPED_VALUE_KEY}'"
                )
            data = data[WRAPPED_VALUE_KEY]

        return StructuredDataResponse(
            content=_validate_structured(adapter, data, options.function_name),
            model=completion.model,
            usage=completion.usage,
        )

    async def generate_embeddings(
        self,
        input: str | Sequence[str],  # noqa: A002
        options: EmbeddingOptions | None = None,
    ) -> EmbeddingResponse:
        """Embed one string or a batch; vectors come back in input order."""
        options = options or EmbeddingOptions()
        self._require_capability("embeddings", "embeddings")

        inputs = [input] if isinstance(input, str) else list(input)
        if not inputs:
            raise EmbeddingsError(
                "Embedding input must not be empty",
                hint="Pass a string or a non-empty list of strings.",
            )
        if not all(isinstance(item, str) for item in inputs):
            raise EmbeddingsError("Embedding inputs must be strings")

        model = options.model or self._config.embedding_model or ""
        if self._use_mock(options.bypass_mock):
            response = mock.mock_embedding_response(inputs, model, options.dimensions)
        else:
            logger.debug(
                "%s: embedding %d input(s) with %s", self.provider_name, len(inputs), model
            )
            try:
                response = await self._embed(inputs, model, options.dimensions)
            except asyncio.CancelledError:
                raise
            except ModelGateError:
                raise
            except Exception as e:
                raise map_provider_error(
                    e, provider=self.provider_name, phase="embeddings"
                ) from e

        if len(response.embeddings) != len(inputs):
            raise EmbeddingsError(
                f"Expected {len(inputs)} embeddings, got {len(response.embeddings)}"
            )

        should_normalize = (
            options.normalize
            if options.normalize is not None
            else self._config.normalize_embeddings
        )
        if should_normalize:
            response = dataclasses.replace(
                response,
                embeddings=[normalize_vector(vector) for vector in response.embeddings],
            )
        return response

    def _use_mock(self, bypass_mock: bool) -> bool:
        return self._config.execution_mode == "mock" and not bypass_mock

    def _require_capability(self, flag: str, feature: str) -> None:
        if not getattr(self.capabilities, flag):
            raise UnsupportedFeatureError(
                f"{self.provider_name} provider does not support {feature}",
                hint="Use a provider that supports this operation.",
            )

    def _merge_settings(
        self, model: str | None, temperature: float | None, max_tokens: int | None
    ) -> dict[str, Any]:
        return apply_defaults(
            {
                "model": self._request_model(None),
                "temperature": self._config.temperature,
                "max_tokens": self._config.max_tokens,
            },
            {
                "model": model,
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
        )

    def _text_request(
        self,
        conversation: list[Message],
        options: TextGenerationOptions,
        tool_defs: list[dict[str, Any]],
    ) -> CompletionRequest:
        settings = self._merge_settings(options.model, options.temperature, options.max_tokens)
        system, turns = _hoist_system(conversation, options.system_message)
        return CompletionRequest(
            model=settings["model"],
            messages=turns,
            system=system,
            temperature=settings["temperature"],
            max_tokens=settings["max_tokens"],
            tools=tool_defs or None,
            tool_choice="auto" if tool_defs else None,
        )

    async def _collect_stream(self, request: CompletionRequest) -> TextGenerationResponse:
        parts: list[str] = []
        model = request.model
        usage = TokenUsage()
        async for chunk in self._dispatch_stream(request):
            parts.append(chunk.content)
            model = chunk.model or model
            if chunk.usage is not None:
                usage = usage + chunk.usage
        return TextGenerationResponse(content="".join(parts), model=model, usage=usage)

    async def _dispatch_stream(self, request: CompletionRequest) -> AsyncIterator[TextChunk]:
        logger.debug(
            "%s stream: model=%s messages=%d",
            self.provider_name,
            request.model,
            len(request.messages),
        )
        try:
            async for chunk in self._stream(request):
                yield chunk
        except asyncio.CancelledError:
            raise
        except ModelGateError:
            raise
        except Exception as e:
            raise map_provider_error(e, provider=self.provider_name, phase="stream") from e

    async def _dispatch(self, request: CompletionRequest, *, phase: str) -> Completion:
        logger.debug(
            "%s %s: model=%s messages=%d tools=%d",
            self.provider_name,
            phase,
            request.model,
            len(request.messages),
            len(request.tools or []),
        )
        try:
            return await self._complete(request)
        except asyncio.CancelledError:
            raise
        except ModelGateError:
            raise
        except Exception as e:
            raise map_provider_error(e, provider=self.provider_name, phase=phase) from e


async def _execute_tool_calls(
    registry: ToolRegistry, calls: list[ToolCall]
) -> list[ToolResult]:
    """Run model-requested calls.

    Unknown tool names, and calls past ``max_tool_calls``, are not executed;
    they become error results that are reported back to the model.
    """
    limit = registry.config.max_tool_calls
    results: list[ToolResult | None] = [None] * len(calls)
    pending: list[tuple[int, ToolInvocation]] = []
    for index, call in enumerate(calls):
        if call.name not in registry:
            results[index] = _rejected_call(
                call.name, f"Tool with name '{call.name}' is not registered"
            )
        elif len(pending) >= limit:
            results[index] = _rejected_call(
                call.name,
                f"Cannot execute more than {limit} tools in a single request",
            )
        else:
            pending.append(
                (index, ToolInvocation(name=call.name, input=parse_tool_arguments(call.arguments)))
            )

    executed = await registry.execute_tools([invocation for _, invocation in pending])
    for (index, _), result in zip(pending, executed):
        results[index] = result
    if len(pending) < len(calls):
        logger.debug(
            "skipped %d of %d tool call(s)", len(calls) - len(pending), len(calls)
        )
    return [r for r in results if r is not None]


def _rejected_call(tool_name: str, message: str) -> ToolResult:
    return ToolResult(
        tool_name=tool_name,
        output=None,
        execution_time_ms=0.0,
        error=ConfigurationError(message),
        state=ToolCallState.VALIDATION_FAILED,
    )


def _coerce_messages(messages: MessagesInput) -> list[Message]:
    if isinstance(messages, str):
        return [Message(role="user", content=messages)]
    coerced = [
        m if isinstance(m, Message) else Message.from_mapping(m) for m in messages
    ]
    if not coerced:
        raise ConfigurationError(
            "At least one message is required",
            hint="Pass a prompt string or a list of Message objects.",
        )
    return coerced


def _hoist_system(
    messages: list[Message], system_message: str | None
) -> tuple[str | None, list[Message]]:
    """Split system messages out of the turn list into one system prompt."""
    system_parts = [system_message] if system_message else []
    turns = []
    for message in messages:
        if message.role == "system":
            if message.content:
                system_parts.append(message.content)
        else:
            turns.append(message)
    return ("\n\n".join(system_parts) if system_parts else None), turns


def _schema_adapter(schema: Any) -> tuple[TypeAdapter[Any], dict[str, Any]]:
    """Return the validating adapter and JSON Schema for ``schema``."""
    try:
        adapter: TypeAdapter[Any] = TypeAdapter(schema)
        return adapter, adapter.json_schema()
    except Exception as e:  # pydantic raises several error types for bad schemas
        raise ConfigurationError(
            f"Unsupported structured output schema: {schema!r}",
            hint="Pass a pydantic BaseModel subclass, dataclass, TypedDict or typing type.",
        ) from e


def _validate_structured(adapter: TypeAdapter[Any], data: Any, function_name: str) -> Any:
    try:
        return adapter.validate_python(data)
    except ValidationError as e:
        raise StructuredDataError(
            f"Output of '{function_name}' does not match the schema",
            hint=str(e),
        ) from e
