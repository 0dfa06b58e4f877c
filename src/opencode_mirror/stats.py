"""Aggregated token and cost statistics for a session."""

from collections.abc import Sequence
from dataclasses import dataclass, field

from .core import AssistantMessage, Message


@dataclass(frozen=True)
class TokenStats:
    input: int = 0
    output: int = 0
    reasoning: int = 0
    cache_read: int = 0
    cache_write: int = 0
    total: int = 0  # input + output + reasoning
    cost: float = 0.0
    current_context: int = 0  # all tokens of the latest assistant reply


@dataclass(frozen=True)
class SessionStats:
    tokens: TokenStats = field(default_factory=TokenStats)
    message_count: int = 0
    assistant_message_count: int = 0


def session_stats(messages: Sequence[Message]) -> SessionStats:
    """Sum token usage and cost over a session's assistant messages."""
    replies = [m for m in messages if isinstance(m, AssistantMessage)]

    input_tokens = output = reasoning = cache_read = cache_write = 0
    cost = 0.0
    for reply in replies:
        cost += reply.cost
        if reply.tokens is None:
            continue
        input_tokens += reply.tokens.input
        output += reply.tokens.output
        reasoning += reply.tokens.reasoning
        cache_read += reply.tokens.cache_read
        cache_write += reply.tokens.cache_write

    latest = replies[-1] if replies else None
    current_context = latest.tokens.total if latest and latest.tokens else 0

    return SessionStats(
        tokens=TokenStats(
            input=input_tokens,
            output=output,
            reasoning=reasoning,
            cache_read=cache_read,
            cache_write=cache_write,
            total=input_tokens + output + reasoning,
            cost=cost,
            current_context=current_context,
        ),
        message_count=len(messages),
        assistant_message_count=len(replies),
    )
