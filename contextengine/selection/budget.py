"""Token budget enforcement shared by both assembly paths."""

from dataclasses import dataclass, field
from typing import Callable, List, Sequence, Tuple, TypeVar

from contextengine.core.interfaces import ConversationSegment, KeyFact, Message
from contextengine.memory.token_estimator import estimate_tokens

T = TypeVar("T")


def message_tokens(message: Message) -> int:
    return estimate_tokens(message.content)


def segment_tokens(segment: ConversationSegment) -> int:
    return estimate_tokens(segment.summary)


def fact_tokens(fact: KeyFact) -> int:
    return estimate_tokens(fact.fact_text)


def newest_tier_first(segments: Sequence[ConversationSegment]) -> List[ConversationSegment]:
    return sorted(segments, key=lambda s: (s.tier.rank, -s.id))


def take_prefix(items: Sequence[T], cost: Callable[[T], int], remaining: int) -> Tuple[List[T], int]:
    """Admit items in order until the first one that does not fit."""
    taken: List[T] = []
    used = 0
    for item in items:
        tokens = cost(item)
        if used + tokens > remaining:
            break
        taken.append(item)
        used += tokens
    return taken, used


def trim_recent(messages: Sequence[Message], max_tokens: int) -> Tuple[List[Message], int]:
    """Drop the oldest recent messages until they fit, always keeping the newest."""
    kept = list(messages)
    total = sum(message_tokens(m) for m in kept)
    while len(kept) > 1 and total > max_tokens:
        total -= message_tokens(kept.pop(0))
    return kept, total


@dataclass
class BudgetedContent:
    recent_messages: List[Message] = field(default_factory=list)
    relevant_history: List[Message] = field(default_factory=list)
    summaries: List[ConversationSegment] = field(default_factory=list)
    key_facts: List[KeyFact] = field(default_factory=list)
    total_tokens: int = 0


def fit_to_budget(
    max_tokens: int,
    recent: Sequence[Message],
    relevant: Sequence[Message],
    summaries: Sequence[ConversationSegment],
    facts: Sequence[KeyFact]
) -> BudgetedContent:
    """
    Fill the budget in priority order: recent messages, relevant history,
    summaries, key facts. Callers pass each category already in priority
    order.
    """
    kept_recent, used = trim_recent(recent, max_tokens)
    remaining = max(0, max_tokens - used)

    kept_relevant, spent = take_prefix(relevant, message_tokens, remaining)
    remaining -= spent
    used += spent

    kept_summaries, spent = take_prefix(summaries, segment_tokens, remaining)
    remaining -= spent
    used += spent

    kept_facts, spent = take_prefix(facts, fact_tokens, remaining)
    used += spent

    return BudgetedContent(
        recent_messages=kept_recent,
        relevant_history=kept_relevant,
        summaries=kept_summaries,
        key_facts=kept_facts,
        total_tokens=used,
    )
