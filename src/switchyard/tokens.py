"""Approximate token counting and context-window truncation.

These estimates use a fixed characters-per-token ratio. They are fast and
deterministic but NOT vendor tokenization: use them for budgeting and
admission control, never as an authoritative hard limit.
"""

from __future__ import annotations

import json
import math
from typing import TYPE_CHECKING

from switchyard.types import ImagePart, TextPart, ToolCallPart, ToolResultPart

if TYPE_CHECKING:
    from collections.abc import Sequence

    from switchyard.types import CompletionRequest, Message

CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD_TOKENS = 4
IMAGE_TOKENS = 85


def count_tokens(text: str) -> int:
    """Estimate tokens as ``ceil(len(text) / 4)``; empty text counts as 0."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def count_message_tokens(message: Message) -> int:
    """Estimate the tokens one message contributes to a prompt."""
    total = MESSAGE_OVERHEAD_TOKENS
    if message.name:
        total += count_tokens(message.name)
    for part in message.parts:
        if isinstance(part, TextPart):
            total += count_tokens(part.text)
        elif isinstance(part, ImagePart):
            total += IMAGE_TOKENS
        elif isinstance(part, ToolCallPart):
            total += count_tokens(part.name) + count_tokens(part.arguments)
        elif isinstance(part, ToolResultPart):
            total += count_tokens(part.content)
    for call in message.tool_calls or ():
        total += count_tokens(call.name) + count_tokens(call.arguments)
    return total


def count_request_tokens(request: CompletionRequest) -> int:
    """Estimate prompt tokens for a whole request, tool declarations included."""
    total = sum(count_message_tokens(m) for m in request.messages)
    for tool in request.tools or ():
        total += count_tokens(tool.name) + count_tokens(tool.description or "")
        total += count_tokens(json.dumps(tool.parameters, sort_keys=True))
    return total


def truncate_messages(
    messages: Sequence[Message],
    max_tokens: int,
    keep_system: bool = True,
) -> list[Message]:
    """Keep the most recent turns that fit within *max_tokens*.

    Returns the longest contiguous suffix of the conversation whose estimated
    size fits the budget, in original order. With *keep_system*, every system
    message is kept regardless of position and its size is charged against the
    budget first; the suffix is then taken from the remaining messages. If the
    system messages alone exceed the budget, only they are returned.
    """
    if max_tokens < 0:
        raise ValueError(f"max_tokens: must be >= 0, got {max_tokens}")

    indexed = list(enumerate(messages))
    pinned: list[tuple[int, Message]] = []
    candidates = indexed
    if keep_system:
        pinned = [(i, m) for i, m in indexed if m.role == "system"]
        candidates = [(i, m) for i, m in indexed if m.role != "system"]

    budget = max_tokens - sum(count_message_tokens(m) for _, m in pinned)
    kept: list[tuple[int, Message]] = []
    for i, message in reversed(candidates):
        cost = count_message_tokens(message)
        if cost > budget:
            break
        budget -= cost
        kept.append((i, message))

    return [m for _, m in sorted(pinned + kept, key=lambda item: item[0])]
