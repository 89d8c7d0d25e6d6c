"""OpenAI Chat Completions provider."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, ClassVar

from modelgate.errors import APIError
from modelgate.providers.base import BaseProvider, ProviderCapabilities
from modelgate.providers.models import Completion, CompletionRequest, Message, ToolCall
from modelgate.result import EmbeddingResponse, TextChunk, TokenUsage


class OpenAIProvider(BaseProvider):
    """OpenAI Chat Completions and Embeddings APIs."""

    provider_name = "openai"
    default_capabilities = ProviderCapabilities(embeddings=True)
    #: Ask for a final usage chunk when streaming.
    include_stream_usage: ClassVar[bool] = True

    def _create_client(self) -> Any:
        try:
            from openai import AsyncOpenAI
        except ImportError as e:
            raise APIError(
                "openai package not installed",
                hint="pip install openai",
            ) from e
        config = self._config
        return AsyncOpenAI(
            api_key=config.api_key,
            organization=getattr(config, "organization", None),
            base_url=config.base_url,
        )

    async def _complete(self, request: CompletionRequest) -> Completion:
        client = self._get_client()
        response = await client.chat.completions.create(**_chat_kwargs(request))
        return _parse_chat_completion(response, fallback_model=request.model)

    async def _stream(self, request: CompletionRequest) -> AsyncIterator[TextChunk]:
        client = self._get_client()
        create_kwargs = _chat_kwargs(request)
        create_kwargs["stream"] = True
        if self.include_stream_usage:
            create_kwargs["stream_options"] = {"include_usage": True}

        stream = await client.chat.completions.create(**create_kwargs)
        async for chunk in stream:
            choices = getattr(chunk, "choices", None) or []
            delta = getattr(choices[0], "delta", None) if choices else None
            text = getattr(delta, "content", None) or ""
            usage = _parse_usage(getattr(chunk, "usage", None))
            if text or usage is not None:
                yield TextChunk(
                    content=text,
                    model=getattr(chunk, "model", None) or request.model,
                    usage=usage,
                )

    async def _embed(
        self, inputs: list[str], model: str, dimensions: int | None
    ) -> EmbeddingResponse:
        client = self._get_client()
        create_kwargs: dict[str, Any] = {"model": model, "input": inputs}
        if dimensions is not None:
            create_kwargs["dimensions"] = dimensions
        response = await client.embeddings.create(**create_kwargs)

        data = sorted(getattr(response, "data", None) or [], key=lambda d: d.index)
        usage_raw = getattr(response, "usage", None)
        usage = TokenUsage()
        if usage_raw is not None:
            usage = TokenUsage.from_counts(
                getattr(usage_raw, "prompt_tokens", 0),
                0,
                getattr(usage_raw, "total_tokens", None),
            )
        return EmbeddingResponse(
            embeddings=[list(item.embedding) for item in data],
            model=getattr(response, "model", None) or model,
            usage=usage,
        )


def _chat_kwargs(request: CompletionRequest) -> dict[str, Any]:
    """Build Chat Completions request arguments."""
    create_kwargs: dict[str, Any] = {
        "model": request.model,
        "messages": _to_chat_messages(request),
    }
    if request.temperature is not None:
        create_kwargs["temperature"] = request.temperature
    if request.max_tokens is not None:
        create_kwargs["max_tokens"] = request.max_tokens

    if request.tools:
        create_kwargs["tools"] = [
            {
                "type": "function",
                "function": {
                    "name": t["name"],
                    "description": t.get("description", ""),
                    "parameters": t.get("parameters", {"type": "object"}),
                },
            }
            for t in request.tools
        ]
        tool_choice = request.tool_choice
        if isinstance(tool_choice, str):
            create_kwargs["tool_choice"] = tool_choice
        elif isinstance(tool_choice, dict) and "name" in tool_choice:
            create_kwargs["tool_choice"] = {
                "type": "function",
                "function": {"name": tool_choice["name"]},
            }
    return create_kwargs


def _to_chat_messages(request: CompletionRequest) -> list[dict[str, Any]]:
    """Convert neutral messages to Chat Completions message dicts."""
    out: list[dict[str, Any]] = []
    if request.system:
        out.append({"role": "system", "content": request.system})
    for message in request.messages:
        out.append(_to_chat_message(message))
    return out


def _to_chat_message(message: Message) -> dict[str, Any]:
    if message.role == "tool":
        return {
            "role": "tool",
            "tool_call_id": message.tool_call_id,
            "content": message.content,
        }
    if message.role == "function":
        return {"role": "function", "name": message.name, "content": message.content}
    if message.role == "assistant" and message.tool_calls:
        return {
            "role": "assistant",
            "content": message.content or None,
            "tool_calls": [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.arguments},
                }
                for tc in message.tool_calls
            ],
        }
    item: dict[str, Any] = {"role": message.role, "content": message.content}
    if message.name:
        item["name"] = message.name
    return item


def _parse_chat_completion(response: Any, *, fallback_model: str) -> Completion:
    choices = getattr(response, "choices", None) or []
    if not choices:
        raise APIError("OpenAI returned no choices")
    message = choices[0].message

    tool_calls = [
        ToolCall(
            id=tc.id,
            name=tc.function.name,
            arguments=tc.function.arguments or "{}",
        )
        for tc in getattr(message, "tool_calls", None) or []
    ]

    return Completion(
        content=getattr(message, "content", None) or "",
        model=getattr(response, "model", None) or fallback_model,
        usage=_parse_usage(getattr(response, "usage", None)) or TokenUsage(),
        tool_calls=tool_calls or None,
    )


def _parse_usage(usage_raw: Any) -> TokenUsage | None:
    if usage_raw is None:
        return None
    return TokenUsage.from_counts(
        getattr(usage_raw, "prompt_tokens", 0),
        getattr(usage_raw, "completion_tokens", 0),
        getattr(usage_raw, "total_tokens", None),
    )
