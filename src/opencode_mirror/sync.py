"""Keep the store in step with the server.

Fetches go through the hydration gate, so an open session with trusted
cached data costs no network round trip. Concurrent requests for the same
session share one in-flight fetch. A fetch whose view was released while
it was running is dropped instead of written.

Push events are applied incrementally. Message and part events for a
session whose messages were never loaded only flag it for hydration, so
a partial message list is never mistaken for a full one.
"""

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable

from .core import (
    GlobalEvent,
    file_diff_from_dict,
    message_from_dict,
    part_from_dict,
    session_from_dict,
)
from .diffs import summarize_diffs
from .errors import OpenCodeError
from .hydration import should_fetch_session_diffs, should_fetch_session_messages
from .session_key import build_session_key
from .store import SessionStore
from .transport import SessionTransport

logger = logging.getLogger(__name__)

RECONNECT_DELAY_SECONDS = 5.0

# Events applied even for projects outside the current selection
BACKGROUND_EVENT_ALLOWLIST = frozenset({
    "session.created",
    "session.updated",
    "session.deleted",
    "session.status",
    "session.error",
})


class SyncResult(str, enum.Enum):
    FETCHED = "fetched"
    CACHED = "cached"  # gate said cached data is good
    DISCARDED = "discarded"  # view went away while fetching
    FAILED = "failed"


class SessionSync:
    """Sync driver between a SessionTransport and a SessionStore."""

    def __init__(
        self,
        store: SessionStore,
        transport: SessionTransport,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
    ) -> None:
        self.store = store
        self.transport = transport
        self.reconnect_delay = reconnect_delay
        self.is_connected = False
        # None means every directory is in the foreground
        self.foreground_directories: set[str] | None = None
        self._in_flight: dict[tuple[str, str], asyncio.Future] = {}
        self._generations: dict[str, int] = {}

    # ==================== Fetching ====================

    async def sync_session(self, session_key: str, force: bool = False) -> SyncResult:
        """Fetch a session's messages and parts unless the cache can be trusted."""
        entry = self.store.get(session_key)
        existing = entry.messages if entry is not None and entry.messages_loaded else None
        needs_hydration = self.store.needs_hydration(session_key)

        if not should_fetch_session_messages(existing, needs_hydration, force):
            logger.debug("Using cached messages for %s", session_key)
            return SyncResult.CACHED

        return await self._run_once(("messages", session_key), lambda: self._fetch_messages(session_key))

    async def sync_diffs(self, session_key: str, force: bool = False) -> SyncResult:
        """Fetch a session's file diffs unless the cached ones match the server summary."""
        return await self._run_once(("diffs", session_key), lambda: self._fetch_diffs(session_key, force))

    def invalidate(self, session_key: str) -> None:
        """Make any in-flight fetch for ``session_key`` drop its result.

        The fetch is also detached, so a caller arriving afterwards starts
        a fresh one instead of joining a fetch that will be discarded.
        """
        self._generations[session_key] = self._generations.get(session_key, 0) + 1
        for task_key in [k for k in self._in_flight if k[1] == session_key]:
            del self._in_flight[task_key]

    def is_fetching(self, session_key: str) -> bool:
        return any(key == session_key for _, key in self._in_flight)

    async def hydrate_sessions(self) -> bool:
        """Load the session list of every project into the store."""
        try:
            sessions = await self.transport.list_sessions()
        except OpenCodeError as e:
            logger.error("Failed to list sessions: %s", e)
            return False
        self.store.set_sessions(sessions)
        logger.info("Loaded %d sessions", len(sessions))
        return True

    async def _run_once(
        self, task_key: tuple[str, str], factory: Callable[[], Awaitable[SyncResult]]
    ) -> SyncResult:
        future = self._in_flight.get(task_key)
        if future is None:
            future = asyncio.ensure_future(factory())
            self._in_flight[task_key] = future

            def forget(done: asyncio.Future) -> None:
                if self._in_flight.get(task_key) is done:
                    del self._in_flight[task_key]

            future.add_done_callback(forget)
        else:
            logger.debug("Joining in-flight %s fetch for %s", *task_key)
        # a cancelled caller must not cancel the fetch other callers wait on
        return await asyncio.shield(future)

    async def _fetch_messages(self, session_key: str) -> SyncResult:
        generation = self._generations.get(session_key, 0)
        try:
            entries = await self.transport.fetch_session_messages(session_key)
        except OpenCodeError as e:
            logger.error("Failed to fetch messages for %s: %s", session_key, e)
            self._record_failure(session_key, e)
            return SyncResult.FAILED

        if self._generations.get(session_key, 0) != generation:
            logger.debug("Discarding messages for released session %s", session_key)
            return SyncResult.DISCARDED

        self.store.set_messages(
            session_key,
            [e.message for e in entries],
            {e.message.id: e.parts for e in entries},
        )
        self.store.clear_needs_hydration(session_key)
        self.store.set_last_error(session_key, None)
        return SyncResult.FETCHED

    async def _fetch_diffs(self, session_key: str, force: bool) -> SyncResult:
        generation = self._generations.get(session_key, 0)
        try:
            summary = await self.transport.fetch_session_diff_summary(session_key)
            entry = self.store.get(session_key)
            existing = entry.diffs if entry is not None else None

            if not should_fetch_session_diffs(existing, summary, force):
                if self._generations.get(session_key, 0) != generation:
                    return SyncResult.DISCARDED
                if existing is None:
                    # nothing changed on the server, so there is nothing to fetch
                    self.store.set_diffs(session_key, [], summary)
                else:
                    self.store.set_diff_summary(session_key, summary)
                return SyncResult.CACHED

            diffs = await self.transport.fetch_session_diffs(session_key)
        except OpenCodeError as e:
            logger.error("Failed to fetch diffs for %s: %s", session_key, e)
            self.store.set_last_error(session_key, e)
            return SyncResult.FAILED

        if self._generations.get(session_key, 0) != generation:
            logger.debug("Discarding diffs for released session %s", session_key)
            return SyncResult.DISCARDED

        self.store.set_diffs(session_key, diffs, summary or summarize_diffs(diffs))
        return SyncResult.FETCHED

    def _record_failure(self, session_key: str, error: OpenCodeError) -> None:
        self.store.mark_needs_hydration(session_key)
        self.store.set_last_error(session_key, error)

    # ==================== Push events ====================

    def mark_all_stale(self) -> None:
        """Flag every cached session for hydration (after a reconnect)."""
        for key in self.store.keys():
            self.store.mark_needs_hydration(key)

    def apply_event(self, event: GlobalEvent) -> None:
        """Apply one push event to the store."""
        directory = event.directory
        if not directory:
            return

        if not self._is_foreground(directory) and event.type not in BACKGROUND_EVENT_ALLOWLIST:
            session_id = _event_session_id(event)
            if session_id:
                self._flag(build_session_key(directory, session_id))
            return

        props = event.properties

        if event.type in ("session.created", "session.updated"):
            session = session_from_dict(props.get("info"), directory)
            if session is not None:
                self.store.upsert_session(session)

        elif event.type == "session.deleted":
            session_id = _event_session_id(event)
            if session_id:
                self.store.remove_session(build_session_key(directory, session_id))

        elif event.type == "session.diff":
            session_id = props.get("sessionID")
            raw_diffs = props.get("diff")
            if session_id and isinstance(raw_diffs, list):
                diffs = [d for d in (file_diff_from_dict(r) for r in raw_diffs) if d is not None]
                self.store.set_diffs(build_session_key(directory, session_id), diffs, summarize_diffs(diffs))

        elif event.type == "session.error":
            session_id = props.get("sessionID")
            key = build_session_key(directory, session_id) if session_id else None
            if key in self.store and isinstance(props.get("error"), dict):
                self.store.set_session_error(key, props["error"])

        elif event.type == "message.updated":
            message = message_from_dict(props.get("info"))
            if message is not None and message.session_id:
                key = build_session_key(directory, message.session_id)
                if self._is_loaded(key):
                    self.store.upsert_message(key, message)
                else:
                    self._flag(key)

        elif event.type == "message.removed":
            session_id, message_id = props.get("sessionID"), props.get("messageID")
            if session_id and message_id:
                self.store.remove_message(build_session_key(directory, session_id), message_id)

        elif event.type == "message.part.updated":
            part = part_from_dict(props.get("part"))
            if part is not None and part.session_id and part.message_id:
                key = build_session_key(directory, part.session_id)
                if self._is_loaded(key):
                    self.store.upsert_part(key, part)
                else:
                    self._flag(key)

        elif event.type == "message.part.removed":
            session_id = props.get("sessionID")
            message_id, part_id = props.get("messageID"), props.get("partID")
            if session_id and message_id and part_id:
                self.store.remove_part(build_session_key(directory, session_id), message_id, part_id)

    async def run_event_stream(self) -> None:
        """Consume the push channel forever, reconnecting after failures."""
        attempt = 0
        while True:
            if attempt:
                self.mark_all_stale()
            attempt += 1

            await self.hydrate_sessions()
            try:
                async for event in self.transport.stream_events():
                    if not self.is_connected:
                        self.is_connected = True
                        logger.info("Event stream connected")
                    self.apply_event(event)
            except OpenCodeError as e:
                logger.warning("Event stream failed: %s", e)

            self.is_connected = False
            logger.info("Event stream closed, reconnecting in %.0fs", self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)

    def _is_foreground(self, directory: str) -> bool:
        return self.foreground_directories is None or directory in self.foreground_directories

    def _is_loaded(self, session_key: str) -> bool:
        entry = self.store.get(session_key)
        return entry is not None and entry.messages_loaded

    def _flag(self, session_key: str) -> None:
        # uncached sessions are fetched on open anyway
        if session_key in self.store:
            self.store.mark_needs_hydration(session_key)


def _event_session_id(event: GlobalEvent) -> str | None:
    """The session an event is about, if any."""
    props = event.properties
    if event.type in ("session.created", "session.updated", "session.deleted"):
        info = props.get("info")
        return info.get("id") if isinstance(info, dict) else None
    if event.type == "message.updated":
        info = props.get("info")
        return info.get("sessionID") if isinstance(info, dict) else None
    if event.type == "message.part.updated":
        part = props.get("part")
        return part.get("sessionID") if isinstance(part, dict) else None
    session_id = props.get("sessionID")
    return session_id if isinstance(session_id, str) else None
