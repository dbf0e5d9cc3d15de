"""Unified request/response model shared by every provider."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, TypeAlias

Role = Literal["system", "user", "assistant", "tool"]
FinishReason = Literal["stop", "length", "tool_calls", "content_filter"]
ToolChoice: TypeAlias = Literal["auto", "none", "required"] | dict[str, Any]

_ROLES = frozenset({"system", "user", "assistant", "tool"})
_TOOL_CHOICE_MODES = frozenset({"auto", "none", "required"})


@dataclass(frozen=True)
class TextPart:
    """Plain text content."""

    text: str


@dataclass(frozen=True)
class ImagePart:
    """An image referenced by ``http(s)`` URL or ``data:`` URI."""

    url: str
    mime_type: str | None = None
    detail: Literal["auto", "low", "high"] | None = None

    @property
    def is_data_uri(self) -> bool:
        return self.url.startswith("data:")


@dataclass(frozen=True)
class ToolCallPart:
    """A tool invocation embedded in assistant content."""

    id: str
    name: str
    arguments: str = "{}"


@dataclass(frozen=True)
class ToolResultPart:
    """The result of a tool invocation, sent back to the model."""

    tool_call_id: str
    content: str
    is_error: bool = False


ContentPart: TypeAlias = TextPart | ImagePart | ToolCallPart | ToolResultPart


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model."""

    id: str
    name: str
    arguments: str = "{}"


@dataclass(frozen=True)
class Tool:
    """A function the model may call."""

    name: str
    description: str | None = None
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


@dataclass(frozen=True)
class Message:
    """One conversational turn.

    ``content`` is either a string or a non-empty tuple of typed parts. Tool
    results are sent either as ``role="tool"`` with ``tool_call_id`` or as
    :class:`ToolResultPart` entries.
    """

    role: Role
    content: str | tuple[ContentPart, ...] = ""
    name: str | None = None
    tool_calls: tuple[ToolCall, ...] | None = None
    tool_call_id: str | None = None

    def __post_init__(self) -> None:
        if self.role not in _ROLES:
            raise ValueError(f"role: unknown role {self.role!r}")
        if self.content is None:
            raise ValueError("content: must be a string or a sequence of parts")
        if not isinstance(self.content, str):
            parts = tuple(self.content)
            if not parts:
                raise ValueError("content: typed content must not be empty")
            object.__setattr__(self, "content", parts)
        if self.tool_calls is not None:
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    @property
    def parts(self) -> tuple[ContentPart, ...]:
        """Content as a tuple of parts; string content becomes one TextPart."""
        if isinstance(self.content, str):
            return (TextPart(self.content),) if self.content else ()
        return self.content

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        if isinstance(self.content, str):
            return self.content
        return "".join(p.text for p in self.content if isinstance(p, TextPart))

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str | tuple[ContentPart, ...]) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def assistant(
        cls, content: str = "", *, tool_calls: tuple[ToolCall, ...] | None = None
    ) -> Message:
        return cls(role="assistant", content=content, tool_calls=tool_calls)

    @classmethod
    def tool(cls, tool_call_id: str, content: str) -> Message:
        return cls(role="tool", content=content, tool_call_id=tool_call_id)


@dataclass(frozen=True)
class CompletionRequest:
    """Input to a completion or streaming call."""

    messages: tuple[Message, ...]
    model: str | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    max_tokens: int | None = None
    stop: tuple[str, ...] | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    tools: tuple[Tool, ...] | None = None
    tool_choice: ToolChoice | None = None
    stream: bool = False
    user: str | None = None

    def __post_init__(self) -> None:
        messages = tuple(self.messages)
        if not messages:
            raise ValueError("messages: must not be empty")
        object.__setattr__(self, "messages", messages)
        if self.max_tokens is not None and self.max_tokens < 0:
            raise ValueError(f"max_tokens: must be >= 0, got {self.max_tokens}")
        if self.stop is not None:
            stop = (self.stop,) if isinstance(self.stop, str) else tuple(self.stop)
            object.__setattr__(self, "stop", stop)
        if self.tools is not None:
            object.__setattr__(self, "tools", tuple(self.tools))
        choice = self.tool_choice
        if isinstance(choice, str) and choice not in _TOOL_CHOICE_MODES:
            raise ValueError(f"tool_choice: unknown mode {choice!r}")
        if isinstance(choice, dict) and not choice.get("name"):
            raise ValueError("tool_choice: forced choice requires a 'name'")


@dataclass(frozen=True)
class Usage:
    """Token accounting reported by the vendor."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class Choice:
    index: int
    message: Message
    finish_reason: FinishReason | None = None


@dataclass(frozen=True)
class CompletionResponse:
    """Normalized completion result; always holds at least one choice."""

    id: str
    created: int
    model: str
    choices: tuple[Choice, ...]
    usage: Usage | None = None
    provider: str | None = None

    def __post_init__(self) -> None:
        choices = tuple(self.choices)
        if not choices:
            raise ValueError("choices: a successful response needs at least one")
        object.__setattr__(self, "choices", choices)

    @property
    def text(self) -> str:
        """Text of the first choice."""
        return self.choices[0].message.text


@dataclass(frozen=True)
class ToolCallDelta:
    """A fragment of a streamed tool call, keyed by its position."""

    index: int
    id: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass(frozen=True)
class MessageDelta:
    role: Role | None = None
    content: str | None = None
    tool_calls: tuple[ToolCallDelta, ...] | None = None


@dataclass(frozen=True)
class ChunkChoice:
    index: int
    delta: MessageDelta
    finish_reason: FinishReason | None = None


@dataclass(frozen=True)
class StreamChunk:
    """One increment of a streamed completion."""

    id: str
    created: int
    model: str
    choices: tuple[ChunkChoice, ...]
    usage: Usage | None = None
    provider: str | None = None

    @property
    def finish_reason(self) -> FinishReason | None:
        for choice in self.choices:
            if choice.finish_reason is not None:
                return choice.finish_reason
        return None

    @property
    def text(self) -> str:
        return "".join(c.delta.content or "" for c in self.choices)


@dataclass(frozen=True)
class EmbeddingRequest:
    """One or more strings to embed."""

    input: str | tuple[str, ...]
    model: str | None = None
    dimensions: int | None = None
    user: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.input, str):
            inputs = tuple(self.input)
            if not inputs:
                raise ValueError("input: must not be empty")
            object.__setattr__(self, "input", inputs)
        if self.dimensions is not None and self.dimensions <= 0:
            raise ValueError(f"dimensions: must be > 0, got {self.dimensions}")

    @property
    def inputs(self) -> tuple[str, ...]:
        return (self.input,) if isinstance(self.input, str) else self.input


@dataclass(frozen=True)
class Embedding:
    index: int
    vector: tuple[float, ...]


@dataclass(frozen=True)
class EmbeddingResponse:
    model: str
    data: tuple[Embedding, ...]
    usage: Usage | None = None
    provider: str | None = None
