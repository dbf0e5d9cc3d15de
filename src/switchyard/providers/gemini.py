"""Gemini provider implementation."""

from __future__ import annotations

import json
import time
from typing import TYPE_CHECKING, Any

from switchyard.errors import ConfigurationError
from switchyard.providers._utils import (
    as_int,
    decode_data_uri,
    get_field,
    guess_image_mime,
    loads_object,
    require_http_url,
)
from switchyard.providers.base import BaseProvider, ProviderCapabilities, new_response_id
from switchyard.types import (
    Choice,
    ChunkChoice,
    CompletionResponse,
    Embedding,
    EmbeddingResponse,
    ImagePart,
    Message,
    MessageDelta,
    StreamChunk,
    TextPart,
    ToolCall,
    ToolCallDelta,
    ToolCallPart,
    ToolResultPart,
    Usage,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchyard.types import (
        CompletionRequest,
        EmbeddingRequest,
        FinishReason,
        ToolChoice,
    )

_FINISH_REASONS: dict[str, FinishReason] = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "content_filter",
    "RECITATION": "content_filter",
    "BLOCKLIST": "content_filter",
    "PROHIBITED_CONTENT": "content_filter",
    "SPII": "content_filter",
    "IMAGE_SAFETY": "content_filter",
}


class GeminiProvider(BaseProvider):
    """Google Gemini API provider."""

    name = "gemini"

    def _get_client(self) -> Any:
        """Lazy-initialize the Gemini client."""
        if self._client is None:
            try:
                from google import genai
                from google.genai import types
            except ImportError as e:
                raise ConfigurationError(
                    "google-genai package not installed",
                    hint="pip install google-genai",
                ) from e

            http_options = types.HttpOptions(
                base_url=self.config.base_url,
                headers=dict(self.config.headers) or None,
                timeout=int(self.config.timeout_s * 1000),
            )
            self._client = genai.Client(
                api_key=self.config.api_key, http_options=http_options
            )
        return self._client

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(embeddings=True, tools=True, vision=True)

    def build_request(self, request: CompletionRequest) -> dict[str, Any]:
        """Translate a unified request into ``generate_content`` kwargs."""
        from google.genai import types

        config_kwargs: dict[str, Any] = {}
        system_parts = [m.text for m in request.messages if m.role == "system" and m.text]
        if system_parts:
            config_kwargs["system_instruction"] = "\n\n".join(system_parts)
        if request.temperature is not None:
            config_kwargs["temperature"] = request.temperature
        if request.top_p is not None:
            config_kwargs["top_p"] = request.top_p
        if request.top_k is not None:
            config_kwargs["top_k"] = request.top_k
        if request.max_tokens is not None:
            config_kwargs["max_output_tokens"] = request.max_tokens
        if request.stop:
            config_kwargs["stop_sequences"] = list(request.stop)
        if request.frequency_penalty is not None:
            config_kwargs["frequency_penalty"] = request.frequency_penalty
        if request.presence_penalty is not None:
            config_kwargs["presence_penalty"] = request.presence_penalty

        if request.tools:
            config_kwargs["tools"] = [
                types.Tool(
                    function_declarations=[
                        types.FunctionDeclaration(
                            name=t.name,
                            description=t.description or "",
                            parameters_json_schema=t.parameters,
                        )
                        for t in request.tools
                    ]
                )
            ]
            if request.tool_choice is not None:
                config_kwargs["tool_config"] = {
                    "function_calling_config": _map_tool_choice(request.tool_choice)
                }

        return {
            "model": self._model_for(request),
            "contents": _build_contents(request.messages),
            "config": types.GenerateContentConfig(**config_kwargs),
        }

    async def _complete_once(self, request: CompletionRequest) -> CompletionResponse:
        client = self._get_client()
        response = await client.aio.models.generate_content(**self.build_request(request))
        return self._parse_response(response, model=self._model_for(request))

    def _parse_response(self, response: Any, *, model: str) -> CompletionResponse:
        """Parse a ``GenerateContentResponse`` into the unified response."""
        choices: list[Choice] = []
        for idx, candidate in enumerate(get_field(response, "candidates") or []):
            text, tool_calls = _candidate_output(candidate)
            choices.append(
                Choice(
                    index=as_int(get_field(candidate, "index")) or idx,
                    message=Message(
                        role="assistant",
                        content=text,
                        tool_calls=tuple(tool_calls) or None,
                    ),
                    finish_reason=_normalize_finish_reason(
                        get_field(candidate, "finish_reason"), bool(tool_calls)
                    ),
                )
            )
        if not choices:
            # The prompt itself was blocked; no candidate comes back.
            choices.append(
                Choice(
                    index=0,
                    message=Message(role="assistant", content=""),
                    finish_reason="content_filter",
                )
            )
        return CompletionResponse(
            id=get_field(response, "response_id") or new_response_id(self.name),
            created=int(time.time()),
            model=get_field(response, "model_version") or model,
            choices=tuple(choices),
            usage=_parse_usage(get_field(response, "usage_metadata")),
            provider=self.name,
        )

    async def _stream_events(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        client = self._get_client()
        built = self.build_request(request)
        stream = await client.aio.models.generate_content_stream(**built)
        stream_id = new_response_id(self.name)
        created = int(time.time())
        tool_count = 0
        first = True
        try:
            async for response in stream:
                choices: list[ChunkChoice] = []
                for idx, candidate in enumerate(get_field(response, "candidates") or []):
                    text, tool_calls = _candidate_output(candidate)
                    deltas = []
                    for call in tool_calls:
                        deltas.append(
                            ToolCallDelta(
                                index=tool_count,
                                id=call.id,
                                name=call.name,
                                arguments=call.arguments,
                            )
                        )
                        tool_count += 1
                    choices.append(
                        ChunkChoice(
                            index=as_int(get_field(candidate, "index")) or idx,
                            delta=MessageDelta(
                                role="assistant" if first else None,
                                content=text or None,
                                tool_calls=tuple(deltas) or None,
                            ),
                            finish_reason=_normalize_finish_reason(
                                get_field(candidate, "finish_reason"), tool_count > 0
                            ),
                        )
                    )
                if not choices:
                    continue
                first = False
                yield StreamChunk(
                    id=get_field(response, "response_id") or stream_id,
                    created=created,
                    model=get_field(response, "model_version") or built["model"],
                    choices=tuple(choices),
                    usage=_parse_usage(get_field(response, "usage_metadata")),
                    provider=self.name,
                )
        finally:
            aclose = getattr(stream, "aclose", None)
            if callable(aclose):
                await aclose()

    async def _embed_once(self, request: EmbeddingRequest) -> EmbeddingResponse:
        from google.genai import types

        client = self._get_client()
        model = request.model or self.config.resolved_embedding_model
        embed_kwargs: dict[str, Any] = {"model": model, "contents": list(request.inputs)}
        if request.dimensions is not None:
            embed_kwargs["config"] = types.EmbedContentConfig(
                output_dimensionality=request.dimensions
            )
        response = await client.aio.models.embed_content(**embed_kwargs)
        data = tuple(
            Embedding(index=idx, vector=tuple(get_field(item, "values") or ()))
            for idx, item in enumerate(get_field(response, "embeddings") or [])
        )
        return EmbeddingResponse(model=model, data=data, provider=self.name)


def _build_contents(messages: tuple[Message, ...]) -> list[Any]:
    """Build Gemini ``Content`` turns; assistant becomes ``model``.

    Function responses need the function *name*, which unified tool results
    only reference by call id, so names are resolved from earlier tool calls.
    """
    from google.genai import types

    contents: list[Any] = []
    call_id_to_name: dict[str, str] = {}

    def append(role: str, parts: list[Any]) -> None:
        if not parts:
            return
        if contents and contents[-1].role == role:
            contents[-1].parts.extend(parts)
        else:
            contents.append(types.Content(role=role, parts=parts))

    def function_response(call_id: str, content: str) -> Any:
        return types.Part.from_function_response(
            name=call_id_to_name.get(call_id, "unknown_tool"),
            response=loads_object(content),
        )

    for message in messages:
        if message.role == "system":
            continue
        if message.role == "tool":
            results = [p for p in message.parts if isinstance(p, ToolResultPart)]
            if results:
                parts = [function_response(r.tool_call_id, r.content) for r in results]
            else:
                parts = [function_response(message.tool_call_id or "", message.text)]
            append("user", parts)
            continue
        if message.role == "assistant":
            parts = [types.Part.from_text(text=message.text)] if message.text else []
            calls = list(message.tool_calls or ())
            calls.extend(
                ToolCall(id=p.id, name=p.name, arguments=p.arguments)
                for p in message.parts
                if isinstance(p, ToolCallPart)
            )
            for call in calls:
                call_id_to_name[call.id] = call.name
                parts.append(
                    types.Part.from_function_call(
                        name=call.name, args=loads_object(call.arguments)
                    )
                )
            append("model", parts)
            continue

        parts = []
        for part in message.parts:
            if isinstance(part, TextPart):
                parts.append(types.Part.from_text(text=part.text))
            elif isinstance(part, ImagePart):
                parts.append(_image_part(part))
            elif isinstance(part, ToolResultPart):
                parts.append(function_response(part.tool_call_id, part.content))
        append("user", parts)
    return contents


def _image_part(part: ImagePart) -> Any:
    """Inline data URIs as raw bytes; reference URLs as ``file_data``."""
    from google.genai import types

    if part.is_data_uri:
        mime_type, data = decode_data_uri(part.url)
        return types.Part.from_bytes(data=data, mime_type=mime_type)
    return types.Part.from_uri(
        file_uri=require_http_url(part.url, provider="gemini"),
        mime_type=guess_image_mime(part),
    )


def _candidate_output(candidate: Any) -> tuple[str, list[ToolCall]]:
    """Collect answer text and function calls, skipping thought parts."""
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    content = get_field(candidate, "content")
    for part in get_field(content, "parts") or []:
        if get_field(part, "thought"):
            continue
        function_call = get_field(part, "function_call")
        if function_call is not None:
            tool_calls.append(
                ToolCall(
                    id=get_field(function_call, "id") or new_response_id("call"),
                    name=str(get_field(function_call, "name") or ""),
                    arguments=json.dumps(get_field(function_call, "args") or {}),
                )
            )
            continue
        text = get_field(part, "text")
        if isinstance(text, str):
            text_parts.append(text)
    return "".join(text_parts), tool_calls


def _map_tool_choice(tool_choice: ToolChoice) -> dict[str, Any]:
    if isinstance(tool_choice, dict):
        return {"mode": "ANY", "allowed_function_names": [tool_choice["name"]]}
    if tool_choice == "required":
        return {"mode": "ANY"}
    return {"mode": tool_choice.upper()}


def _normalize_finish_reason(reason: Any, has_tool_calls: bool) -> FinishReason | None:
    if reason is None:
        return None
    name = getattr(reason, "value", reason)
    if not isinstance(name, str):
        return None
    mapped = _FINISH_REASONS.get(name.upper(), "stop")
    if mapped == "stop" and has_tool_calls:
        return "tool_calls"
    return mapped


def _parse_usage(usage_raw: Any) -> Usage | None:
    if usage_raw is None:
        return None
    prompt = as_int(get_field(usage_raw, "prompt_token_count"))
    completion = as_int(get_field(usage_raw, "candidates_token_count"))
    total = as_int(get_field(usage_raw, "total_token_count")) or prompt + completion
    return Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)
