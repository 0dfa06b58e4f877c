"""Keyed in-memory store for mirrored session data.

Holds, per session key, the session's messages, their parts, and its file
diffs, plus a last-access timestamp per cached session. The store makes
no decisions: hydration and eviction policy live in their own modules and
the sync driver applies them.

Subscribers register per session key and are only notified about changes
to that key, so a view rendering one session never wakes up for another.

The store is not thread-safe. All reads and writes happen on the event
loop that owns it.
"""

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from .core import CacheEntry, DiffSummary, FileDiff, Message, Part, Session
from .errors import OpenCodeError
from .flatten import FlattenCache

logger = logging.getLogger(__name__)

Subscriber = Callable[[str], None]


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class SessionEntry:
    """Everything cached for one session."""

    messages: list[Message] = field(default_factory=list)
    messages_loaded: bool = False  # a full message list has been fetched
    parts: dict[str, list[Part]] = field(default_factory=dict)  # by message id
    diffs: list[FileDiff] | None = None  # None = never fetched
    diff_summary: DiffSummary | None = None
    last_error: OpenCodeError | None = None
    session_error: dict | None = None
    flatten_cache: FlattenCache = field(default_factory=FlattenCache)

    def get_parts(self, message_id: str) -> list[Part]:
        return self.parts.get(message_id, [])


class SessionStore:
    """Session key -> SessionEntry, with access timestamps and subscriptions."""

    def __init__(self, clock: Callable[[], int] = now_ms) -> None:
        self._clock = clock
        self._entries: dict[str, SessionEntry] = {}
        self._cache_entries: dict[str, CacheEntry] = {}
        self._needs_hydration: set[str] = set()
        self._sessions: dict[str, Session] = {}
        self._subscribers: dict[str, list[Subscriber]] = {}

    # ==================== Entries ====================

    def get(self, key: str) -> SessionEntry | None:
        return self._entries.get(key)

    def ensure(self, key: str) -> SessionEntry:
        """Return the entry for ``key``, creating an empty one if needed."""
        entry = self._entries.get(key)
        if entry is None:
            entry = SessionEntry()
            self._entries[key] = entry
            self._cache_entries.setdefault(key, CacheEntry(last_access=self._clock()))
        return entry

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> list[str]:
        return list(self._entries)

    def remove(self, key: str) -> bool:
        """Drop everything cached for ``key``. Returns False if nothing was cached."""
        entry = self._entries.pop(key, None)
        self._cache_entries.pop(key, None)
        self._needs_hydration.discard(key)
        if entry is None:
            return False
        self._notify(key)
        return True

    def clear(self) -> None:
        keys = list(self._entries)
        self._entries.clear()
        self._cache_entries.clear()
        self._needs_hydration.clear()
        self._sessions.clear()
        for key in keys:
            self._notify(key)

    # ==================== Messages & parts ====================

    def set_messages(self, key: str, messages: list[Message], parts: dict[str, list[Part]]) -> None:
        """Replace a session's messages and parts wholesale."""
        entry = self.ensure(key)
        entry.messages = list(messages)
        entry.messages_loaded = True
        entry.parts = {message_id: list(p) for message_id, p in parts.items()}
        self._notify(key)

    def upsert_message(self, key: str, message: Message) -> None:
        entry = self.ensure(key)
        for i, existing in enumerate(entry.messages):
            if existing.id == message.id:
                entry.messages[i] = message
                break
        else:
            entry.messages.append(message)
        self._notify(key)

    def remove_message(self, key: str, message_id: str) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.messages = [m for m in entry.messages if m.id != message_id]
        entry.parts.pop(message_id, None)
        self._notify(key)

    def upsert_part(self, key: str, part: Part) -> None:
        entry = self.ensure(key)
        parts = entry.parts.setdefault(part.message_id, [])
        for i, existing in enumerate(parts):
            if existing.id == part.id:
                parts[i] = part
                break
        else:
            parts.append(part)
        self._notify(key)

    def remove_part(self, key: str, message_id: str, part_id: str) -> None:
        entry = self._entries.get(key)
        if entry is None or message_id not in entry.parts:
            return
        entry.parts[message_id] = [p for p in entry.parts[message_id] if p.id != part_id]
        self._notify(key)

    # ==================== Diffs & errors ====================

    def set_diffs(self, key: str, diffs: list[FileDiff], summary: DiffSummary | None = None) -> None:
        entry = self.ensure(key)
        entry.diffs = list(diffs)
        if summary is not None:
            entry.diff_summary = summary
        self._notify(key)

    def set_diff_summary(self, key: str, summary: DiffSummary | None) -> None:
        entry = self.ensure(key)
        entry.diff_summary = summary
        self._notify(key)

    def set_last_error(self, key: str, error: OpenCodeError | None) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.last_error = error
        self._notify(key)

    def set_session_error(self, key: str, error: dict | None) -> None:
        entry = self.ensure(key)
        entry.session_error = error
        self._notify(key)

    # ==================== Hydration flags ====================

    def needs_hydration(self, key: str) -> bool:
        return key in self._needs_hydration

    def mark_needs_hydration(self, key: str) -> None:
        if key not in self._entries or key in self._needs_hydration:
            return
        self._needs_hydration.add(key)
        self._notify(key)

    def clear_needs_hydration(self, key: str) -> None:
        self._needs_hydration.discard(key)

    # ==================== Access tracking ====================

    def touch(self, key: str, now: int | None = None) -> CacheEntry:
        """Record that ``key`` was just viewed.

        Only cached sessions are tracked; an entry created later starts at
        the current clock.
        """
        entry = CacheEntry(last_access=self._clock() if now is None else now)
        if key in self._entries:
            self._cache_entries[key] = entry
        return entry

    def cache_entries(self) -> dict[str, CacheEntry]:
        """Access timestamps of every cached session."""
        return {key: self._cache_entries[key] for key in self._entries if key in self._cache_entries}

    # ==================== Session metadata ====================

    def upsert_session(self, session: Session) -> None:
        self._sessions[session.key] = session
        self._notify(session.key)

    def set_sessions(self, sessions: Iterable[Session]) -> None:
        self._sessions = {s.key: s for s in sessions}

    def remove_session(self, key: str) -> None:
        """Forget a deleted session entirely."""
        self._sessions.pop(key, None)
        self.remove(key)

    def get_session(self, key: str) -> Session | None:
        return self._sessions.get(key)

    def list_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    # ==================== Subscriptions ====================

    def subscribe(self, key: str, callback: Subscriber) -> Callable[[], None]:
        """Call ``callback(key)`` whenever ``key`` changes. Returns an unsubscribe function."""
        self._subscribers.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(key)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)
                if not callbacks:
                    del self._subscribers[key]

        return unsubscribe

    def _notify(self, key: str) -> None:
        for callback in list(self._subscribers.get(key, ())):
            try:
                callback(key)
            except Exception:
                logger.exception("Store subscriber failed for %s", key)
