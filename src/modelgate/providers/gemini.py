"""Google Gemini provider (google-genai SDK).

Authenticates with an API key, or with service-account credentials against
Vertex AI when ``service_account`` is configured.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
import json
from typing import Any
import uuid

from modelgate.errors import APIError
from modelgate.providers.base import BaseProvider, ProviderCapabilities
from modelgate.providers.models import Completion, CompletionRequest, Message, ToolCall
from modelgate.result import EmbeddingResponse, TextChunk, TokenUsage

_VERTEX_SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]
_GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"


class GeminiProvider(BaseProvider):
    """Google Gemini API provider."""

    provider_name = "google"
    default_capabilities = ProviderCapabilities(embeddings=True)

    def _create_client(self) -> Any:
        """Lazy-initialize the Gemini client."""
        try:
            from google import genai
            from google.genai import types
        except ImportError as e:
            raise APIError(
                "google-genai package not installed",
                hint="pip install google-genai",
            ) from e

        config = self._config
        client_kwargs: dict[str, Any] = {}
        if config.base_url:
            client_kwargs["http_options"] = types.HttpOptions(base_url=config.base_url)

        account = config.service_account  # type: ignore[union-attr]
        if account is None:
            return genai.Client(api_key=config.api_key, **client_kwargs)

        from google.oauth2 import service_account

        credentials = service_account.Credentials.from_service_account_info(
            {
                "type": "service_account",
                "client_email": account.client_email,
                "private_key": account.private_key,
                "project_id": account.project_id,
                "token_uri": _GOOGLE_TOKEN_URI,
            },
            scopes=_VERTEX_SCOPES,
        )
        return genai.Client(
            vertexai=True,
            project=account.project_id,
            location=config.location,  # type: ignore[union-attr]
            credentials=credentials,
            **client_kwargs,
        )

    async def _complete(self, request: CompletionRequest) -> Completion:
        client = self._get_client()
        from google.genai import types

        response = await client.aio.models.generate_content(
            model=request.model,
            contents=_build_contents(request.messages, types),
            config=_generate_config(request, types),
        )
        if not response:
            raise APIError("Gemini returned an empty response.")
        return _parse_response(response, fallback_model=request.model)

    async def _stream(self, request: CompletionRequest) -> AsyncIterator[TextChunk]:
        client = self._get_client()
        from google.genai import types

        stream = await client.aio.models.generate_content_stream(
            model=request.model,
            contents=_build_contents(request.messages, types),
            config=_generate_config(request, types),
        )
        model = request.model
        usage = None
        async for chunk in stream:
            parsed = _parse_response(chunk, fallback_model=model)
            model = parsed.model
            # Every chunk reports usage so far; the last report covers the request.
            if getattr(chunk, "usage_metadata", None) is not None:
                usage = parsed.usage
            if parsed.content:
                yield TextChunk(content=parsed.content, model=model)
        yield TextChunk(content="", model=model, usage=usage or TokenUsage())

    async def _embed(
        self, inputs: list[str], model: str, dimensions: int | None
    ) -> EmbeddingResponse:
        client = self._get_client()
        from google.genai import types

        embed_config = (
            types.EmbedContentConfig(output_dimensionality=dimensions)
            if dimensions is not None
            else None
        )
        response = await client.aio.models.embed_content(
            model=model, contents=inputs, config=embed_config
        )
        # Gemini returns embeddings in request order and reports no token usage.
        embeddings = [
            list(item.values or []) for item in getattr(response, "embeddings", None) or []
        ]
        return EmbeddingResponse(embeddings=embeddings, model=model, usage=TokenUsage())

    async def aclose(self) -> None:
        """Close the async transport of the SDK client."""
        client = self._client
        if client is None:
            return
        self._client = None
        aclose = getattr(getattr(client, "aio", None), "aclose", None)
        if aclose is not None:
            await aclose()


def _generate_config(request: CompletionRequest, types: Any) -> Any:
    config_kwargs: dict[str, Any] = {}
    if request.system:
        config_kwargs["system_instruction"] = request.system
    if request.temperature is not None:
        config_kwargs["temperature"] = request.temperature
    if request.max_tokens is not None:
        config_kwargs["max_output_tokens"] = request.max_tokens

    if request.tools:
        config_kwargs["tools"] = [
            types.Tool(
                function_declarations=[
                    types.FunctionDeclaration(
                        name=t["name"],
                        description=t.get("description", ""),
                        parameters_json_schema=t.get("parameters"),
                    )
                    for t in request.tools
                ]
            )
        ]
        tool_config = _map_tool_choice(request.tool_choice)
        if tool_config is not None:
            config_kwargs["tool_config"] = tool_config

    return types.GenerateContentConfig(**config_kwargs)


def _map_tool_choice(tool_choice: Any) -> dict[str, Any] | None:
    if isinstance(tool_choice, str) and tool_choice.upper() in ("AUTO", "NONE"):
        return {"function_calling_config": {"mode": tool_choice.upper()}}
    if isinstance(tool_choice, dict) and "name" in tool_choice:
        return {
            "function_calling_config": {
                "mode": "ANY",
                "allowed_function_names": [tool_choice["name"]],
            }
        }
    return None


def _build_contents(history: list[Message], types: Any) -> list[Any]:
    """Convert neutral messages to ``types.Content`` turns.

    Consecutive same-role turns are merged, so the results of several tool
    calls answer the model in one user turn.
    """
    contents: list[Any] = []
    call_id_to_name: dict[str, str] = {}

    def append(role: str, parts: list[Any]) -> None:
        if not parts:
            return
        if contents and contents[-1].role == role:
            contents[-1].parts.extend(parts)
        else:
            contents.append(types.Content(role=role, parts=parts))

    for item in history:
        if item.role in ("tool", "function"):
            name = item.name or call_id_to_name.get(item.tool_call_id or "", "unknown_tool")
            try:
                response = json.loads(item.content) if item.content else {}
            except ValueError:
                response = {"result": item.content}
            if not isinstance(response, dict):
                response = {"result": response}
            append("user", [types.Part.from_function_response(name=name, response=response)])
        elif item.role == "assistant":
            parts: list[Any] = []
            if item.content:
                parts.append(types.Part.from_text(text=item.content))
            for tc in item.tool_calls or []:
                call_id_to_name[tc.id] = tc.name
                try:
                    args = json.loads(tc.arguments)
                except ValueError:
                    args = {}
                parts.append(types.Part.from_function_call(name=tc.name, args=args))
            append("model", parts)
        elif item.content:
            append("user", [types.Part.from_text(text=item.content)])
    return contents


def _parse_response(response: Any, *, fallback_model: str) -> Completion:
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    candidates = getattr(response, "candidates", None) or []
    content = getattr(candidates[0], "content", None) if candidates else None
    for part in getattr(content, "parts", None) or []:
        text = getattr(part, "text", None)
        if isinstance(text, str) and text and not getattr(part, "thought", False):
            text_parts.append(text)
        fc = getattr(part, "function_call", None)
        if fc is not None:
            call_id = getattr(fc, "id", None) or f"call_{uuid.uuid4().hex[:8]}"
            tool_calls.append(
                ToolCall(
                    id=str(call_id),
                    name=str(fc.name),
                    arguments=json.dumps(getattr(fc, "args", None) or {}),
                )
            )

    usage = TokenUsage()
    um = getattr(response, "usage_metadata", None)
    if um is not None:
        usage = TokenUsage.from_counts(
            getattr(um, "prompt_token_count", 0),
            getattr(um, "candidates_token_count", 0),
            getattr(um, "total_token_count", None),
        )

    return Completion(
        content="".join(text_parts),
        model=getattr(response, "model_version", None) or fallback_model,
        usage=usage,
        tool_calls=tool_calls or None,
    )
