"""Anthropic Messages API provider. Anthropic has no embeddings endpoint."""

from __future__ import annotations

from collections.abc import AsyncIterator
import json
from typing import Any

from modelgate.errors import APIError
from modelgate.providers.base import BaseProvider, ProviderCapabilities
from modelgate.providers.models import Completion, CompletionRequest, Message, ToolCall
from modelgate.result import TextChunk, TokenUsage

# Messages API requires max_tokens on every request.
_ANTHROPIC_DEFAULT_MAX_TOKENS = 1000


class AnthropicProvider(BaseProvider):
    """Anthropic Messages API provider."""

    provider_name = "anthropic"
    default_capabilities = ProviderCapabilities(embeddings=False)

    def _create_client(self) -> Any:
        """Lazily initialize and return the async Anthropic client."""
        try:
            from anthropic import AsyncAnthropic
        except ImportError as e:
            raise APIError(
                "anthropic package not installed",
                hint="pip install anthropic",
            ) from e
        config = self._config
        return AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            default_headers={"anthropic-version": config.api_version},  # type: ignore[union-attr]
        )

    async def _complete(self, request: CompletionRequest) -> Completion:
        client = self._get_client()
        response = await client.messages.create(**_message_kwargs(request))
        return _parse_response(response, fallback_model=request.model)

    async def _stream(self, request: CompletionRequest) -> AsyncIterator[TextChunk]:
        client = self._get_client()
        async with client.messages.stream(**_message_kwargs(request)) as stream:
            async for text in stream.text_stream:
                if text:
                    yield TextChunk(content=text, model=request.model)
            final = await stream.get_final_message()
        parsed = _parse_response(final, fallback_model=request.model)
        yield TextChunk(content="", model=parsed.model, usage=parsed.usage)


def _message_kwargs(request: CompletionRequest) -> dict[str, Any]:
    """Build Messages API request arguments."""
    create_kwargs: dict[str, Any] = {
        "model": request.model,
        "messages": _build_messages(request.messages),
        "max_tokens": request.max_tokens or _ANTHROPIC_DEFAULT_MAX_TOKENS,
    }
    if request.system:
        create_kwargs["system"] = request.system
    if request.temperature is not None:
        create_kwargs["temperature"] = request.temperature

    if request.tools:
        create_kwargs["tools"] = [
            {
                "name": t["name"],
                "description": t.get("description", ""),
                "input_schema": t.get("parameters", {"type": "object"}),
            }
            for t in request.tools
        ]
        mapped = _map_tool_choice(request.tool_choice)
        if mapped is not None:
            create_kwargs["tool_choice"] = mapped
    return create_kwargs


def _map_tool_choice(tool_choice: Any) -> dict[str, str] | None:
    if tool_choice in ("auto", "none"):
        return {"type": tool_choice}
    if isinstance(tool_choice, dict) and "name" in tool_choice:
        return {"type": "tool", "name": tool_choice["name"]}
    return None


def _build_messages(history: list[Message]) -> list[dict[str, Any]]:
    """Convert neutral messages into alternating user/assistant turns.

    Tool results travel as ``tool_result`` blocks in a user turn and assistant
    tool calls as ``tool_use`` blocks.
    """
    messages: list[dict[str, Any]] = []
    for item in history:
        if item.role == "tool":
            _append_message(
                messages,
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": item.tool_call_id or "",
                            "content": item.content,
                        }
                    ],
                },
            )
        elif item.role == "assistant":
            blocks: list[dict[str, Any]] = []
            if item.content:
                blocks.append({"type": "text", "text": item.content})
            for tc in item.tool_calls or []:
                try:
                    args = json.loads(tc.arguments)
                except ValueError:
                    args = {}
                blocks.append(
                    {"type": "tool_use", "id": tc.id, "name": tc.name, "input": args}
                )
            if blocks:
                _append_message(messages, {"role": "assistant", "content": blocks})
        elif item.role == "function":
            prefix = f"[{item.name}] " if item.name else ""
            _append_message(messages, {"role": "user", "content": prefix + item.content})
        elif item.content:
            _append_message(messages, {"role": "user", "content": item.content})
    return messages


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match.

    Anthropic requires strict user/assistant alternation, so consecutive
    same-role turns (such as several tool results) become one message.
    """
    if messages and messages[-1]["role"] == msg["role"]:
        prev = messages[-1]
        prev_content = prev["content"]
        new_content = msg["content"]
        if isinstance(prev_content, str):
            prev_content = [{"type": "text", "text": prev_content}]
        if isinstance(new_content, str):
            new_content = [{"type": "text", "text": new_content}]
        prev["content"] = prev_content + new_content
    else:
        messages.append(msg)


def _parse_response(response: Any, *, fallback_model: str) -> Completion:
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    for block in getattr(response, "content", None) or []:
        block_type = getattr(block, "type", None)
        if block_type == "text":
            text_parts.append(getattr(block, "text", ""))
        elif block_type == "tool_use":
            tool_calls.append(
                ToolCall(
                    id=getattr(block, "id", ""),
                    name=getattr(block, "name", ""),
                    arguments=json.dumps(getattr(block, "input", None) or {}),
                )
            )

    usage = TokenUsage()
    usage_raw = getattr(response, "usage", None)
    if usage_raw is not None:
        usage = TokenUsage.from_counts(
            getattr(usage_raw, "input_tokens", 0),
            getattr(usage_raw, "output_tokens", 0),
        )

    return Completion(
        content="\n\n".join(text_parts),
        model=getattr(response, "model", None) or fallback_model,
        usage=usage,
        tool_calls=tool_calls or None,
    )
