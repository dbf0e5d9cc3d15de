"""Token estimation and context-window truncation."""

from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st
import pytest

from switchyard.tokens import (
    IMAGE_TOKENS,
    MESSAGE_OVERHEAD_TOKENS,
    count_message_tokens,
    count_request_tokens,
    count_tokens,
    truncate_messages,
)
from switchyard.types import (
    CompletionRequest,
    ImagePart,
    Message,
    TextPart,
    Tool,
    ToolCall,
)

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("text", "expected"),
    [("", 0), ("a", 1), ("abcd", 1), ("abcde", 2), ("hello world", 3)],
)
def test_count_tokens_rounds_up(text: str, expected: int) -> None:
    assert count_tokens(text) == expected


@given(st.text(), st.text())
def test_count_tokens_is_monotone_under_concatenation(a: str, b: str) -> None:
    assert count_tokens(a + b) >= count_tokens(a)


def test_message_tokens_include_overhead_and_images() -> None:
    message = Message.user(
        (TextPart("describe this"), ImagePart("https://example.com/cat.png"))
    )

    expected = MESSAGE_OVERHEAD_TOKENS + count_tokens("describe this") + IMAGE_TOKENS
    assert count_message_tokens(message) == expected


def test_message_tokens_count_tool_calls() -> None:
    bare = Message.assistant("")
    with_call = Message.assistant(
        "", tool_calls=(ToolCall(id="c1", name="lookup", arguments='{"q": "x"}'),)
    )

    assert count_message_tokens(bare) == MESSAGE_OVERHEAD_TOKENS
    assert count_message_tokens(with_call) > count_message_tokens(bare)


def test_request_tokens_include_tool_declarations() -> None:
    messages = (Message.user("hi"),)
    plain = CompletionRequest(messages=messages)
    with_tools = CompletionRequest(
        messages=messages,
        tools=(
            Tool(
                name="get_weather",
                description="Weather for a city",
                parameters={"type": "object", "properties": {"city": {"type": "string"}}},
            ),
        ),
    )

    assert count_request_tokens(plain) == count_message_tokens(messages[0])
    assert count_request_tokens(with_tools) > count_request_tokens(plain)


# =============================================================================
# truncate_messages
# =============================================================================


def _conversation() -> list[Message]:
    return [
        Message.system("You are terse."),
        Message.user("first question " * 10),
        Message.assistant("first answer " * 10),
        Message.user("second question"),
        Message.assistant("second answer"),
        Message.user("third question"),
    ]


def test_everything_fits_returns_all_messages() -> None:
    messages = _conversation()

    assert truncate_messages(messages, 10_000) == messages


def test_keeps_system_and_most_recent_suffix() -> None:
    messages = _conversation()
    system_cost = count_message_tokens(messages[0])
    tail_cost = sum(count_message_tokens(m) for m in messages[3:])

    kept = truncate_messages(messages, system_cost + tail_cost)

    assert kept == [messages[0], *messages[3:]]


def test_suffix_is_contiguous() -> None:
    messages = [
        Message.user("a" * 400),
        Message.user("b"),
        Message.user("c" * 400),
        Message.user("d"),
    ]
    budget = count_message_tokens(messages[3]) + count_message_tokens(messages[1])

    kept = truncate_messages(messages, budget)

    # "b" would fit on its own but "c" blocks the way back to it.
    assert kept == [messages[3]]


def test_system_messages_alone_over_budget_returns_only_system() -> None:
    messages = _conversation()

    assert truncate_messages(messages, 1) == [messages[0]]


def test_keep_system_false_treats_system_like_any_turn() -> None:
    messages = _conversation()
    last_cost = count_message_tokens(messages[-1])

    assert truncate_messages(messages, last_cost, keep_system=False) == [messages[-1]]


def test_zero_budget_keeps_nothing_without_system() -> None:
    assert truncate_messages([Message.user("hi")], 0) == []


def test_negative_budget_is_rejected() -> None:
    with pytest.raises(ValueError):
        truncate_messages([Message.user("hi")], -1)


_roles = st.sampled_from(["system", "user", "assistant"])
_messages = st.lists(
    st.builds(Message, role=_roles, content=st.text(min_size=1, max_size=200)),
    max_size=12,
)


@given(_messages, st.integers(min_value=0, max_value=300), st.booleans())
def test_truncation_fits_budget_and_keeps_order(
    messages: list[Message], budget: int, keep_system: bool
) -> None:
    kept = truncate_messages(messages, budget, keep_system=keep_system)
    assert truncate_messages(messages, budget, keep_system=keep_system) == kept

    # Order is preserved: kept is a subsequence of the input.
    positions = [next(i for i, m in enumerate(messages) if m is k) for k in kept]
    assert positions == sorted(positions)

    system = [m for m in messages if m.role == "system"] if keep_system else []
    system_cost = sum(count_message_tokens(m) for m in system)
    if system_cost <= budget:
        assert sum(count_message_tokens(m) for m in kept) <= budget
    if keep_system:
        assert all(m in kept for m in system)


@given(_messages, st.integers(min_value=0, max_value=300))
def test_truncation_without_system_returns_a_suffix(
    messages: list[Message], budget: int
) -> None:
    kept = truncate_messages(messages, budget, keep_system=False)

    assert kept == messages[len(messages) - len(kept) :]
