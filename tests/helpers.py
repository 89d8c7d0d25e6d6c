"""Test helpers: fake vendor SDK clients and response builders.

The fakes expose only the attribute paths the adapters call, and record the
keyword arguments of every request for assertions.
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any


class _Recorder:
    """Async callable that records kwargs and replays queued responses."""

    def __init__(self, responses: list[Any] | None = None) -> None:
        self.calls: list[dict[str, Any]] = []
        self.responses = list(responses or [])

    async def __call__(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if not self.responses:
            raise AssertionError("No fake response queued")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class _AsyncStream:
    """Async iterator over queued chunks; exception items are raised in place."""

    def __init__(self, items: list[Any]) -> None:
        self._items = list(items)

    def __aiter__(self) -> _AsyncStream:
        return self

    async def __anext__(self) -> Any:
        if not self._items:
            raise StopAsyncIteration
        item = self._items.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class _FakeMessageStream:
    """Stands in for the async context manager of ``messages.stream``."""

    def __init__(self, texts: list[Any], final: Any) -> None:
        self.text_stream = _AsyncStream(texts)
        self._final = final

    async def __aenter__(self) -> _FakeMessageStream:
        return self

    async def __aexit__(self, *exc_info: Any) -> bool:
        return False

    async def get_final_message(self) -> Any:
        return self._final


class _StreamRecorder:
    """Sync callable that records kwargs and returns queued stream managers."""

    def __init__(self, streams: list[Any] | None = None) -> None:
        self.calls: list[dict[str, Any]] = []
        self.streams = list(streams or [])

    def __call__(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if not self.streams:
            raise AssertionError("No fake stream queued")
        stream = self.streams.pop(0)
        if isinstance(stream, BaseException):
            raise stream
        return stream


class FakeOpenAIClient:
    """Stands in for ``AsyncOpenAI``/``AsyncAzureOpenAI``."""

    def __init__(
        self,
        completions: list[Any] | None = None,
        embeddings: list[Any] | None = None,
    ) -> None:
        self.create = _Recorder(completions)
        self.embed = _Recorder(embeddings)
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self.create))
        self.embeddings = SimpleNamespace(create=self.embed)
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class FakeAnthropicClient:
    def __init__(
        self,
        responses: list[Any] | None = None,
        streams: list[Any] | None = None,
    ) -> None:
        self.create = _Recorder(responses)
        self.stream = _StreamRecorder(streams)
        self.messages = SimpleNamespace(create=self.create, stream=self.stream)


class FakeGeminiClient:
    def __init__(
        self,
        responses: list[Any] | None = None,
        embeddings: list[Any] | None = None,
        streams: list[Any] | None = None,
    ) -> None:
        self.generate = _Recorder(responses)
        self.embed = _Recorder(embeddings)
        self.generate_stream = _Recorder(streams)
        self.aio = SimpleNamespace(
            models=SimpleNamespace(
                generate_content=self.generate,
                generate_content_stream=self.generate_stream,
                embed_content=self.embed,
            )
        )


def openai_completion(
    content: str | None = "Hello!",
    *,
    tool_calls: list[tuple[str, str, str]] | None = None,
    model: str = "gpt-4",
    usage: tuple[int, int, int] = (10, 5, 15),
) -> Any:
    """Build a Chat Completions response shaped like the openai SDK's."""
    calls = None
    if tool_calls:
        calls = [
            SimpleNamespace(
                id=call_id,
                type="function",
                function=SimpleNamespace(name=name, arguments=arguments),
            )
            for call_id, name, arguments in tool_calls
        ]
    message = SimpleNamespace(role="assistant", content=content, tool_calls=calls)
    return SimpleNamespace(
        model=model,
        choices=[SimpleNamespace(index=0, message=message, finish_reason="stop")],
        usage=SimpleNamespace(
            prompt_tokens=usage[0], completion_tokens=usage[1], total_tokens=usage[2]
        ),
    )


def openai_embeddings(vectors: list[tuple[int, list[float]]], model: str = "emb") -> Any:
    return SimpleNamespace(
        model=model,
        data=[SimpleNamespace(index=i, embedding=v) for i, v in vectors],
        usage=SimpleNamespace(prompt_tokens=4, total_tokens=4),
    )


def anthropic_message(
    text: str | None = "Hello!",
    *,
    tool_uses: list[tuple[str, str, dict[str, Any]]] | None = None,
    model: str = "claude-3-opus-20240229",
) -> Any:
    blocks: list[Any] = []
    if text is not None:
        blocks.append(SimpleNamespace(type="text", text=text))
    for block_id, name, args in tool_uses or []:
        blocks.append(SimpleNamespace(type="tool_use", id=block_id, name=name, input=args))
    return SimpleNamespace(
        model=model,
        content=blocks,
        usage=SimpleNamespace(input_tokens=12, output_tokens=8),
    )


def gemini_response(
    text: str | None = "Hello!",
    *,
    function_calls: list[tuple[str, dict[str, Any]]] | None = None,
) -> Any:
    parts: list[Any] = []
    if text is not None:
        parts.append(SimpleNamespace(text=text, thought=None, function_call=None))
    for name, args in function_calls or []:
        parts.append(
            SimpleNamespace(
                text=None,
                thought=None,
                function_call=SimpleNamespace(id=None, name=name, args=args),
            )
        )
    return SimpleNamespace(
        model_version="gemini-pro",
        candidates=[SimpleNamespace(content=SimpleNamespace(parts=parts))],
        usage_metadata=SimpleNamespace(
            prompt_token_count=7, candidates_token_count=3, total_token_count=10
        ),
    )


def openai_stream(
    texts: list[Any],
    *,
    model: str = "gpt-4",
    usage: tuple[int, int, int] | None = (10, 5, 15),
) -> _AsyncStream:
    """Chat Completions chunks; a trailing chunk with no choices carries usage."""
    chunks: list[Any] = [
        text
        if isinstance(text, BaseException)
        else SimpleNamespace(
            model=model,
            choices=[SimpleNamespace(index=0, delta=SimpleNamespace(content=text))],
            usage=None,
        )
        for text in texts
    ]
    if usage is not None:
        chunks.append(
            SimpleNamespace(
                model=model,
                choices=[],
                usage=SimpleNamespace(
                    prompt_tokens=usage[0], completion_tokens=usage[1], total_tokens=usage[2]
                ),
            )
        )
    return _AsyncStream(chunks)


def anthropic_stream(
    texts: list[Any], *, model: str = "claude-3-opus-20240229"
) -> _FakeMessageStream:
    joined = "".join(t for t in texts if isinstance(t, str))
    return _FakeMessageStream(texts, anthropic_message(joined, model=model))


def gemini_stream(texts: list[str]) -> _AsyncStream:
    """Each chunk repeats the running usage, as the API does."""
    return _AsyncStream([gemini_response(text) for text in texts])


class FakeStatusError(Exception):
    """SDK-style error carrying an HTTP response."""

    def __init__(
        self, message: str, status_code: int, headers: dict[str, str] | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response = SimpleNamespace(status_code=status_code, headers=headers or {})

