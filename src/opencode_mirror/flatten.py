"""Flatten a session's message/part tree into a list of renderable items.

A turn is one user message plus the assistant messages replying to it.
Each turn becomes::

    user-message, user parts..., (assistant-header, assistant parts...)*

Invisible parts are filtered out, empty turns disappear, and every item
knows its position in the whole list and whether it opens or closes its
turn.

When a FlattenCache is passed in, turns whose messages and parts are
unchanged since the previous call return the very same item objects, so
a virtualized list can skip re-rendering them. Only ``index`` is patched
on reuse.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import ClassVar

from .core import (
    AssistantMessage,
    Message,
    Part,
    SnapshotPart,
    StepFinishPart,
    StepStartPart,
    TextPart,
    ToolPart,
    UserMessage,
)

HIDDEN_PART_TYPES = (StepStartPart, StepFinishPart, SnapshotPart)


@dataclass(eq=False, kw_only=True)
class FlatItem:
    type: ClassVar[str] = ""

    id: str
    turn_id: str
    index: int = 0
    is_first_in_turn: bool = False
    is_last_in_turn: bool = False


@dataclass(eq=False, kw_only=True)
class UserMessageItem(FlatItem):
    type: ClassVar[str] = "user-message"

    message: UserMessage


@dataclass(eq=False, kw_only=True)
class AssistantHeaderItem(FlatItem):
    type: ClassVar[str] = "assistant-header"

    message: AssistantMessage


@dataclass(eq=False, kw_only=True)
class PartItem(FlatItem):
    type: ClassVar[str] = "part"

    part: Part
    is_assistant: bool = False
    is_streaming: bool = False
    is_synthetic: bool = False  # system-injected text, collapsed by default


# ── Part predicates ──────────────────────────────────────────────


def is_part_visible(part: Part) -> bool:
    """Whether a part renders anything at all."""
    if isinstance(part, HIDDEN_PART_TYPES):
        return False
    if isinstance(part, TextPart):
        return not part.ignored and bool(part.text.strip())
    return True


def is_part_streaming(part: Part) -> bool:
    """Whether a part is still being produced.

    Tool parts stream while pending or running. Any other part streams until
    ``time.end`` is set; a part without a time record at all is treated as
    finished.
    """
    if isinstance(part, ToolPart):
        return part.is_running
    if part.time is None:
        return False
    return part.time.end is None


def is_part_synthetic(part: Part) -> bool:
    return isinstance(part, TextPart) and part.synthetic


# ── Incremental cache ────────────────────────────────────────────


@dataclass
class _CachedTurn:
    stamp: tuple
    items: list[FlatItem] = field(default_factory=list)


class FlattenCache:
    """Memo of built turns keyed by the turn's user message id.

    A turn's stamp is the tuple of its (frozen) messages and parts, so a
    turn is rebuilt exactly when one of them compares unequal.
    """

    def __init__(self) -> None:
        self._turns: dict[str, _CachedTurn] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._turns)

    def __contains__(self, turn_id: str) -> bool:
        return turn_id in self._turns

    def lookup(self, turn_id: str, stamp: tuple) -> list[FlatItem] | None:
        cached = self._turns.get(turn_id)
        if cached is None or cached.stamp != stamp:
            self.misses += 1
            return None
        self.hits += 1
        return cached.items

    def store(self, turn_id: str, stamp: tuple, items: list[FlatItem]) -> None:
        self._turns[turn_id] = _CachedTurn(stamp=stamp, items=items)

    def retain(self, turn_ids: set[str]) -> None:
        """Drop turns that no longer exist in the session."""
        for turn_id in [t for t in self._turns if t not in turn_ids]:
            del self._turns[turn_id]

    def clear(self) -> None:
        self._turns.clear()


# ── Flattening ───────────────────────────────────────────────────


def flatten_messages(
    messages: Sequence[Message],
    get_parts: Callable[[str], Sequence[Part]],
    cache: FlattenCache | None = None,
) -> list[FlatItem]:
    """Flatten ``messages`` (already in arrival order) into flat items.

    ``get_parts`` returns the current parts of a message id.
    """
    if not messages:
        return []

    user_messages: list[UserMessage] = []
    assistant_by_parent: dict[str, list[AssistantMessage]] = {}
    for message in messages:
        if isinstance(message, UserMessage):
            user_messages.append(message)
        elif isinstance(message, AssistantMessage) and message.parent_id:
            assistant_by_parent.setdefault(message.parent_id, []).append(message)

    flat_items: list[FlatItem] = []
    seen_turns: set[str] = set()

    for user_message in user_messages:
        user_parts = tuple(get_parts(user_message.id))
        replies = tuple(
            (reply, tuple(get_parts(reply.id)))
            for reply in assistant_by_parent.get(user_message.id, ())
        )

        turn_items = None
        if cache is not None:
            stamp = (user_message, user_parts, replies)
            seen_turns.add(user_message.id)
            turn_items = cache.lookup(user_message.id, stamp)
        if turn_items is None:
            turn_items = _build_turn(user_message, user_parts, replies)
            if cache is not None:
                cache.store(user_message.id, stamp, turn_items)

        for item in turn_items:
            item.index = len(flat_items)
            flat_items.append(item)

    if cache is not None:
        cache.retain(seen_turns)

    return flat_items


def _build_turn(
    user_message: UserMessage,
    user_parts: Sequence[Part],
    replies: Sequence[tuple[AssistantMessage, Sequence[Part]]],
) -> list[FlatItem]:
    turn_id = user_message.id
    items: list[FlatItem] = []

    visible_user_parts = [p for p in user_parts if is_part_visible(p)]
    if visible_user_parts:
        items.append(UserMessageItem(
            id=f"user-message-{user_message.id}",
            turn_id=turn_id,
            message=user_message,
        ))
        items.extend(_part_items(user_message.id, turn_id, visible_user_parts, is_assistant=False))

    for reply, parts in replies:
        visible_parts = [p for p in parts if is_part_visible(p)]
        if not visible_parts:
            continue
        items.append(AssistantHeaderItem(
            id=f"assistant-header-{reply.id}",
            turn_id=turn_id,
            message=reply,
        ))
        items.extend(_part_items(reply.id, turn_id, visible_parts, is_assistant=True))

    if items:
        items[0].is_first_in_turn = True
        items[-1].is_last_in_turn = True
    return items


def _part_items(
    message_id: str, turn_id: str, parts: Sequence[Part], is_assistant: bool
) -> list[PartItem]:
    return [
        PartItem(
            id=f"part-{message_id}-{part.id}",
            turn_id=turn_id,
            part=part,
            is_assistant=is_assistant,
            is_streaming=is_part_streaming(part),
            is_synthetic=is_part_synthetic(part),
        )
        for part in parts
    ]
