"""OpenAI Chat Completions provider."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from switchyard.errors import ConfigurationError
from switchyard.providers._utils import as_int, get_field
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
        Tool,
        ToolChoice,
    )

logger = logging.getLogger(__name__)

_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": "stop",
    "length": "length",
    "tool_calls": "tool_calls",
    "function_call": "tool_calls",
    "content_filter": "content_filter",
}


class OpenAIProvider(BaseProvider):
    """OpenAI Chat Completions and Embeddings provider."""

    name = "openai"

    def _get_client(self) -> Any:
        """Lazily initialize and return the OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise ConfigurationError(
                    "openai package not installed",
                    hint="pip install openai",
                ) from e
            self._client = AsyncOpenAI(
                api_key=self.config.api_key,
                organization=self.config.organization,
                base_url=self.config.base_url,
                timeout=self.config.timeout_s,
                max_retries=0,
                default_headers=dict(self.config.headers) or None,
            )
        return self._client

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(embeddings=True, tools=True, vision=True)

    def build_request(self, request: CompletionRequest) -> dict[str, Any]:
        """Translate a unified request into ``chat.completions.create`` kwargs."""
        create_kwargs: dict[str, Any] = {
            "model": self._model_for(request),
            "messages": _convert_messages(request.messages),
        }
        if request.temperature is not None:
            create_kwargs["temperature"] = request.temperature
        if request.top_p is not None:
            create_kwargs["top_p"] = request.top_p
        if request.top_k is not None:
            logger.debug("OpenAI does not support top_k; dropping it")
        if request.max_tokens is not None:
            create_kwargs["max_completion_tokens"] = request.max_tokens
        if request.stop:
            create_kwargs["stop"] = list(request.stop)
        if request.frequency_penalty is not None:
            create_kwargs["frequency_penalty"] = request.frequency_penalty
        if request.presence_penalty is not None:
            create_kwargs["presence_penalty"] = request.presence_penalty
        if request.tools:
            create_kwargs["tools"] = [_convert_tool(t) for t in request.tools]
            if request.tool_choice is not None:
                create_kwargs["tool_choice"] = _map_tool_choice(request.tool_choice)
        if request.user is not None:
            create_kwargs["user"] = request.user
        return create_kwargs

    async def _complete_once(self, request: CompletionRequest) -> CompletionResponse:
        client = self._get_client()
        response = await client.chat.completions.create(**self.build_request(request))
        return self._parse_response(response)

    def _parse_response(self, response: Any) -> CompletionResponse:
        """Parse a ``ChatCompletion`` into the unified response."""
        choices: list[Choice] = []
        for idx, raw_choice in enumerate(get_field(response, "choices") or []):
            raw_message = get_field(raw_choice, "message")
            tool_calls = tuple(
                ToolCall(
                    id=get_field(tc, "id") or "",
                    name=get_field(get_field(tc, "function"), "name") or "",
                    arguments=get_field(get_field(tc, "function"), "arguments") or "{}",
                )
                for tc in (get_field(raw_message, "tool_calls") or [])
            )
            choices.append(
                Choice(
                    index=as_int(get_field(raw_choice, "index", idx)),
                    message=Message(
                        role="assistant",
                        content=get_field(raw_message, "content") or "",
                        tool_calls=tool_calls or None,
                    ),
                    finish_reason=_normalize_finish_reason(
                        get_field(raw_choice, "finish_reason")
                    ),
                )
            )
        return CompletionResponse(
            id=get_field(response, "id") or new_response_id(self.name),
            created=as_int(get_field(response, "created")) or int(time.time()),
            model=get_field(response, "model") or self.default_model,
            choices=tuple(choices),
            usage=_parse_usage(get_field(response, "usage")),
            provider=self.name,
        )

    async def _stream_events(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        client = self._get_client()
        stream = await client.chat.completions.create(
            **self.build_request(request), stream=True
        )
        try:
            async for event in stream:
                chunk = self._parse_chunk(event)
                if chunk is not None:
                    yield chunk
        finally:
            await stream.close()

    def _parse_chunk(self, event: Any) -> StreamChunk | None:
        """Translate one SSE ``ChatCompletionChunk``; skip choice-less events."""
        raw_choices = get_field(event, "choices") or []
        if not raw_choices:
            return None
        choices: list[ChunkChoice] = []
        for idx, raw_choice in enumerate(raw_choices):
            delta = get_field(raw_choice, "delta")
            tool_deltas = tuple(
                ToolCallDelta(
                    index=as_int(get_field(tc, "index")),
                    id=get_field(tc, "id"),
                    name=get_field(get_field(tc, "function"), "name"),
                    arguments=get_field(get_field(tc, "function"), "arguments"),
                )
                for tc in (get_field(delta, "tool_calls") or [])
            )
            choices.append(
                ChunkChoice(
                    index=as_int(get_field(raw_choice, "index", idx)),
                    delta=MessageDelta(
                        role=get_field(delta, "role"),
                        content=get_field(delta, "content"),
                        tool_calls=tool_deltas or None,
                    ),
                    finish_reason=_normalize_finish_reason(
                        get_field(raw_choice, "finish_reason")
                    ),
                )
            )
        return StreamChunk(
            id=get_field(event, "id") or "",
            created=as_int(get_field(event, "created")),
            model=get_field(event, "model") or "",
            choices=tuple(choices),
            usage=_parse_usage(get_field(event, "usage")),
            provider=self.name,
        )

    async def _embed_once(self, request: EmbeddingRequest) -> EmbeddingResponse:
        client = self._get_client()
        model = request.model or self.config.resolved_embedding_model
        create_kwargs: dict[str, Any] = {"model": model, "input": list(request.inputs)}
        if request.dimensions is not None:
            create_kwargs["dimensions"] = request.dimensions
        if request.user is not None:
            create_kwargs["user"] = request.user
        response = await client.embeddings.create(**create_kwargs)
        data = tuple(
            Embedding(
                index=as_int(get_field(item, "index", idx)),
                vector=tuple(get_field(item, "embedding") or ()),
            )
            for idx, item in enumerate(get_field(response, "data") or [])
        )
        usage_raw = get_field(response, "usage")
        usage = None
        if usage_raw is not None:
            prompt = as_int(get_field(usage_raw, "prompt_tokens"))
            usage = Usage(
                prompt_tokens=prompt,
                completion_tokens=0,
                total_tokens=as_int(get_field(usage_raw, "total_tokens")) or prompt,
            )
        return EmbeddingResponse(
            model=get_field(response, "model") or model,
            data=data,
            usage=usage,
            provider=self.name,
        )


def _convert_messages(messages: tuple[Message, ...]) -> list[dict[str, Any]]:
    converted: list[dict[str, Any]] = []
    for message in messages:
        if message.role == "tool":
            converted.extend(_tool_messages(message))
            continue

        results = [p for p in message.parts if isinstance(p, ToolResultPart)]
        for result in results:
            converted.append(
                {
                    "role": "tool",
                    "tool_call_id": result.tool_call_id,
                    "content": result.content,
                }
            )
        if results and all(isinstance(p, ToolResultPart) for p in message.parts):
            continue

        entry: dict[str, Any] = {"role": message.role}
        if message.name:
            entry["name"] = message.name

        if message.role == "assistant":
            calls = list(message.tool_calls or ())
            calls.extend(
                ToolCall(id=p.id, name=p.name, arguments=p.arguments)
                for p in message.parts
                if isinstance(p, ToolCallPart)
            )
            entry["content"] = message.text or None
            if calls:
                entry["tool_calls"] = [
                    {
                        "id": c.id,
                        "type": "function",
                        "function": {"name": c.name, "arguments": c.arguments},
                    }
                    for c in calls
                ]
        elif message.role == "system" or isinstance(message.content, str):
            entry["content"] = message.text
        else:
            entry["content"] = [
                block
                for block in (_convert_part(p) for p in message.parts)
                if block is not None
            ]
        converted.append(entry)
    return converted


def _tool_messages(message: Message) -> list[dict[str, Any]]:
    results = [p for p in message.parts if isinstance(p, ToolResultPart)]
    if results:
        return [
            {"role": "tool", "tool_call_id": r.tool_call_id, "content": r.content}
            for r in results
        ]
    return [
        {
            "role": "tool",
            "tool_call_id": message.tool_call_id or "",
            "content": message.text,
        }
    ]


def _convert_part(part: Any) -> dict[str, Any] | None:
    """Convert a user content part; OpenAI takes URLs and data URIs verbatim."""
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    if isinstance(part, ImagePart):
        image_url: dict[str, Any] = {"url": part.url}
        if part.detail is not None:
            image_url["detail"] = part.detail
        return {"type": "image_url", "image_url": image_url}
    return None


def _convert_tool(tool: Tool) -> dict[str, Any]:
    function: dict[str, Any] = {"name": tool.name, "parameters": tool.parameters}
    if tool.description:
        function["description"] = tool.description
    return {"type": "function", "function": function}


def _map_tool_choice(tool_choice: ToolChoice) -> str | dict[str, Any]:
    if isinstance(tool_choice, dict):
        return {"type": "function", "function": {"name": tool_choice["name"]}}
    return tool_choice


def _normalize_finish_reason(reason: Any) -> FinishReason | None:
    if not isinstance(reason, str):
        return None
    return _FINISH_REASONS.get(reason, "stop")


def _parse_usage(usage_raw: Any) -> Usage | None:
    if usage_raw is None:
        return None
    prompt = as_int(get_field(usage_raw, "prompt_tokens"))
    completion = as_int(get_field(usage_raw, "completion_tokens"))
    total = as_int(get_field(usage_raw, "total_tokens")) or prompt + completion
    return Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)
