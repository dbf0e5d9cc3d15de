"""Anthropic Messages API provider."""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from switchyard.errors import ConfigurationError, InvalidRequestError
from switchyard.providers._utils import (
    as_int,
    get_field,
    loads_object,
    require_http_url,
    split_data_uri,
)
from switchyard.providers.base import BaseProvider, ProviderCapabilities, new_response_id
from switchyard.types import (
    Choice,
    ChunkChoice,
    CompletionResponse,
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

    from switchyard.types import CompletionRequest, FinishReason, Tool, ToolChoice

logger = logging.getLogger(__name__)

# The Messages API rejects calls without an explicit positive max_tokens.
DEFAULT_MAX_TOKENS = 4096

_STOP_REASONS: dict[str, FinishReason] = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "pause_turn": "stop",
    "max_tokens": "length",
    "model_context_window_exceeded": "length",
    "tool_use": "tool_calls",
    "refusal": "content_filter",
}


class AnthropicProvider(BaseProvider):
    """Anthropic Messages API provider. Has no embeddings endpoint."""

    name = "anthropic"

    def _get_client(self) -> Any:
        """Lazily initialize and return the async Anthropic client."""
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError as e:
                raise ConfigurationError(
                    "anthropic package not installed",
                    hint="pip install anthropic",
                ) from e
            self._client = AsyncAnthropic(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout_s,
                max_retries=0,
                default_headers=dict(self.config.headers) or None,
            )
        return self._client

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(embeddings=False, tools=True, vision=True)

    def _effective_max_tokens(self, request: CompletionRequest) -> int:
        return request.max_tokens or DEFAULT_MAX_TOKENS

    def build_request(self, request: CompletionRequest) -> dict[str, Any]:
        """Translate a unified request into ``messages.create`` kwargs.

        System turns move to the top-level ``system`` field; the rest must
        alternate user/assistant, so same-role neighbours are merged.
        """
        if request.max_tokens == 0:
            raise InvalidRequestError(
                "Anthropic requires max_tokens > 0",
                provider=self.name,
                hint="Omit max_tokens to use the default or pass a positive value.",
            )
        system_parts = [m.text for m in request.messages if m.role == "system" and m.text]
        create_kwargs: dict[str, Any] = {
            "model": self._model_for(request),
            "messages": _build_messages(request.messages),
            "max_tokens": self._effective_max_tokens(request),
        }
        if system_parts:
            create_kwargs["system"] = "\n\n".join(system_parts)
        if request.temperature is not None:
            create_kwargs["temperature"] = request.temperature
        if request.top_p is not None:
            create_kwargs["top_p"] = request.top_p
        if request.top_k is not None:
            create_kwargs["top_k"] = request.top_k
        if request.stop:
            create_kwargs["stop_sequences"] = list(request.stop)
        if request.frequency_penalty is not None or request.presence_penalty is not None:
            logger.debug("Anthropic does not support penalties; dropping them")
        if request.tools:
            create_kwargs["tools"] = [_convert_tool(t) for t in request.tools]
            if request.tool_choice is not None:
                create_kwargs["tool_choice"] = _map_tool_choice(request.tool_choice)
        if request.user is not None:
            create_kwargs["metadata"] = {"user_id": request.user}
        return create_kwargs

    async def _complete_once(self, request: CompletionRequest) -> CompletionResponse:
        create_kwargs = self.build_request(request)
        client = self._get_client()
        response = await client.messages.create(**create_kwargs)
        return self._parse_response(response)

    def _parse_response(self, response: Any) -> CompletionResponse:
        """Parse an Anthropic ``Message`` into the unified response."""
        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in get_field(response, "content") or []:
            block_type = get_field(block, "type")
            if block_type == "text":
                text_parts.append(get_field(block, "text") or "")
            elif block_type == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=get_field(block, "id") or "",
                        name=get_field(block, "name") or "",
                        arguments=json.dumps(get_field(block, "input") or {}),
                    )
                )

        usage = None
        usage_raw = get_field(response, "usage")
        if usage_raw is not None:
            input_tokens = as_int(get_field(usage_raw, "input_tokens"))
            output_tokens = as_int(get_field(usage_raw, "output_tokens"))
            usage = Usage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            )

        return CompletionResponse(
            id=get_field(response, "id") or new_response_id(self.name),
            created=int(time.time()),
            model=get_field(response, "model") or self.default_model,
            choices=(
                Choice(
                    index=0,
                    message=Message(
                        role="assistant",
                        content="".join(text_parts),
                        tool_calls=tuple(tool_calls) or None,
                    ),
                    finish_reason=_normalize_stop_reason(
                        get_field(response, "stop_reason")
                    ),
                ),
            ),
            usage=usage,
            provider=self.name,
        )

    async def _stream_events(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        create_kwargs = self.build_request(request)
        client = self._get_client()
        stream = await client.messages.create(**create_kwargs, stream=True)
        state = _StreamState(
            id=new_response_id(self.name),
            created=int(time.time()),
            model=create_kwargs["model"],
        )
        try:
            async for event in stream:
                chunk = self._parse_event(event, state)
                if chunk is not None:
                    yield chunk
        finally:
            await stream.close()

    def _parse_event(self, event: Any, state: _StreamState) -> StreamChunk | None:
        """Translate one typed stream event; bookkeeping-only events yield None."""
        event_type = get_field(event, "type")

        if event_type == "message_start":
            message = get_field(event, "message")
            state.id = get_field(message, "id") or state.id
            state.model = get_field(message, "model") or state.model
            state.input_tokens = as_int(
                get_field(get_field(message, "usage"), "input_tokens")
            )
            return state.chunk(MessageDelta(role="assistant"), provider=self.name)

        if event_type == "content_block_start":
            block = get_field(event, "content_block")
            if get_field(block, "type") != "tool_use":
                return None
            tool_index = state.tool_index_for(as_int(get_field(event, "index")))
            return state.chunk(
                MessageDelta(
                    tool_calls=(
                        ToolCallDelta(
                            index=tool_index,
                            id=get_field(block, "id"),
                            name=get_field(block, "name"),
                            arguments="",
                        ),
                    )
                ),
                provider=self.name,
            )

        if event_type == "content_block_delta":
            delta = get_field(event, "delta")
            delta_type = get_field(delta, "type")
            if delta_type == "text_delta":
                return state.chunk(
                    MessageDelta(content=get_field(delta, "text") or ""),
                    provider=self.name,
                )
            if delta_type == "input_json_delta":
                tool_index = state.tool_index_for(as_int(get_field(event, "index")))
                return state.chunk(
                    MessageDelta(
                        tool_calls=(
                            ToolCallDelta(
                                index=tool_index,
                                arguments=get_field(delta, "partial_json") or "",
                            ),
                        )
                    ),
                    provider=self.name,
                )
            return None

        if event_type == "message_delta":
            reason = _normalize_stop_reason(
                get_field(get_field(event, "delta"), "stop_reason")
            )
            output_tokens = as_int(get_field(get_field(event, "usage"), "output_tokens"))
            usage = Usage(
                prompt_tokens=state.input_tokens,
                completion_tokens=output_tokens,
                total_tokens=state.input_tokens + output_tokens,
            )
            return state.chunk(
                MessageDelta(), provider=self.name, finish_reason=reason, usage=usage
            )

        # ping, content_block_stop, message_stop
        return None


class _StreamState:
    """Per-stream bookkeeping for Anthropic's typed event sequence."""

    def __init__(self, *, id: str, created: int, model: str) -> None:
        self.id = id
        self.created = created
        self.model = model
        self.input_tokens = 0
        self._tool_indexes: dict[int, int] = {}

    def tool_index_for(self, block_index: int) -> int:
        """Map a content-block index to a dense tool-call index."""
        if block_index not in self._tool_indexes:
            self._tool_indexes[block_index] = len(self._tool_indexes)
        return self._tool_indexes[block_index]

    def chunk(
        self,
        delta: MessageDelta,
        *,
        provider: str,
        finish_reason: FinishReason | None = None,
        usage: Usage | None = None,
    ) -> StreamChunk:
        return StreamChunk(
            id=self.id,
            created=self.created,
            model=self.model,
            choices=(ChunkChoice(index=0, delta=delta, finish_reason=finish_reason),),
            usage=usage,
            provider=provider,
        )


def _build_messages(messages: tuple[Message, ...]) -> list[dict[str, Any]]:
    built: list[dict[str, Any]] = []
    for message in messages:
        if message.role == "system":
            continue
        if message.role == "tool":
            blocks = [
                _tool_result_block(p)
                for p in message.parts
                if isinstance(p, ToolResultPart)
            ] or [
                {
                    "type": "tool_result",
                    "tool_use_id": message.tool_call_id or "",
                    "content": message.text,
                }
            ]
            _append_message(built, {"role": "user", "content": blocks})
            continue
        if message.role == "assistant":
            blocks = [{"type": "text", "text": message.text}] if message.text else []
            calls = list(message.tool_calls or ())
            calls.extend(
                ToolCall(id=p.id, name=p.name, arguments=p.arguments)
                for p in message.parts
                if isinstance(p, ToolCallPart)
            )
            blocks.extend(
                {
                    "type": "tool_use",
                    "id": c.id,
                    "name": c.name,
                    "input": loads_object(c.arguments),
                }
                for c in calls
            )
            if blocks:
                _append_message(built, {"role": "assistant", "content": blocks})
            continue
        if isinstance(message.content, str):
            _append_message(built, {"role": "user", "content": message.content})
            continue
        _append_message(
            built,
            {
                "role": "user",
                "content": [
                    block
                    for block in (_convert_part(p) for p in message.parts)
                    if block is not None
                ],
            },
        )
    return built


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match.

    Anthropic requires strict user/assistant alternation.
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


def _convert_part(part: Any) -> dict[str, Any] | None:
    """Convert a user content part into an Anthropic content block.

    Inline images must be raw base64 with the ``data:`` prefix stripped.
    """
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    if isinstance(part, ImagePart):
        if part.is_data_uri:
            media_type, payload = split_data_uri(part.url)
            return {
                "type": "image",
                "source": {"type": "base64", "media_type": media_type, "data": payload},
            }
        return {
            "type": "image",
            "source": {"type": "url", "url": require_http_url(part.url, provider="anthropic")},
        }
    if isinstance(part, ToolResultPart):
        return _tool_result_block(part)
    return None


def _tool_result_block(part: ToolResultPart) -> dict[str, Any]:
    block: dict[str, Any] = {
        "type": "tool_result",
        "tool_use_id": part.tool_call_id,
        "content": part.content,
    }
    if part.is_error:
        block["is_error"] = True
    return block


def _convert_tool(tool: Tool) -> dict[str, Any]:
    tool_def: dict[str, Any] = {"name": tool.name, "input_schema": tool.parameters}
    if tool.description:
        tool_def["description"] = tool.description
    return tool_def


def _map_tool_choice(tool_choice: ToolChoice) -> dict[str, str]:
    if isinstance(tool_choice, dict):
        return {"type": "tool", "name": tool_choice["name"]}
    if tool_choice == "required":
        return {"type": "any"}
    return {"type": tool_choice}


def _normalize_stop_reason(stop_reason: Any) -> FinishReason | None:
    if stop_reason is None:
        return None
    return _STOP_REASONS.get(str(stop_reason).lower(), "stop")
