"""The mirror as seen by a UI: one object owning config, store and sync driver."""

import asyncio
import logging
from collections.abc import Callable

from .config import MirrorConfig
from .core import DiffSummary, FileDiff
from .diffs import summarize_diffs
from .eviction import select_session_evictions
from .flatten import FlatItem, flatten_messages
from .stats import SessionStats, session_stats
from .store import SessionStore, now_ms
from .sync import SessionSync, SyncResult
from .transport import SessionTransport

logger = logging.getLogger(__name__)


class SessionMirror:
    """Local mirror of a server's sessions, bounded by TTL and capacity.

    Sessions a view has touched (and not yet released) are active and are
    never evicted. Everything else is dropped after ``config.ttl_ms`` of
    inactivity, or earlier, least recently used first, once more than
    ``config.max_sessions`` sessions are cached.
    """

    def __init__(
        self,
        config: MirrorConfig,
        transport: SessionTransport,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.config = config
        self.transport = transport
        self.clock = clock
        self.store = SessionStore(clock=clock)
        self.sync = SessionSync(self.store, transport)
        if config.foreground_directories is not None:
            self.sync.foreground_directories = set(config.foreground_directories)
        self.active_sessions: set[str] = set()

    # ── Views ────────────────────────────────────────────────────────

    def touch(self, session_key: str) -> None:
        """Mark a session as active and record the access."""
        self.active_sessions.add(session_key)
        self.store.touch(session_key, self.clock())

    def release(self, session_key: str) -> None:
        """The view showing ``session_key`` went away."""
        self.active_sessions.discard(session_key)
        self.sync.invalidate(session_key)
        if session_key in self.store:
            self.store.touch(session_key, self.clock())

    async def open_session(self, session_key: str, force: bool = False) -> tuple[SyncResult, SyncResult]:
        """Touch a session and hydrate its messages and diffs as needed."""
        self.touch(session_key)
        messages_result, diffs_result = await asyncio.gather(
            self.sync.sync_session(session_key, force=force),
            self.sync.sync_diffs(session_key, force=force),
        )
        return messages_result, diffs_result

    # ── Reads ────────────────────────────────────────────────────────

    def get_flat_items(self, session_key: str) -> list[FlatItem]:
        entry = self.store.get(session_key)
        if entry is None:
            return []
        return flatten_messages(entry.messages, entry.get_parts, entry.flatten_cache)

    def get_diffs(self, session_key: str) -> list[FileDiff]:
        entry = self.store.get(session_key)
        if entry is None or entry.diffs is None:
            return []
        return list(entry.diffs)

    def get_diff_summary(self, session_key: str) -> DiffSummary | None:
        """Summary for header badges: server summary, else totals of cached diffs."""
        entry = self.store.get(session_key)
        if entry is not None:
            if entry.diff_summary is not None:
                return entry.diff_summary
            if entry.diffs is not None:
                return summarize_diffs(entry.diffs)
        session = self.store.get_session(session_key)
        return session.summary if session else None

    def get_stats(self, session_key: str) -> SessionStats:
        entry = self.store.get(session_key)
        return session_stats(entry.messages if entry else [])

    # ── Eviction ─────────────────────────────────────────────────────

    def run_eviction_sweep(self, now: int | None = None) -> list[str]:
        """Drop expired and excess inactive sessions; returns the evicted keys."""
        evicted = select_session_evictions(
            entries=self.store.cache_entries(),
            active_sessions=self.active_sessions,
            max_sessions=self.config.max_sessions,
            ttl_ms=self.config.ttl_ms,
            now=self.clock() if now is None else now,
        )
        for key in evicted:
            # an in-flight fetch must not resurrect the entry
            self.sync.invalidate(key)
            self.store.remove(key)
        if evicted:
            logger.info("Evicted %d cached sessions (%d remain)", len(evicted), len(self.store))
        return evicted

    async def run_eviction_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.sweep_seconds)
            self.run_eviction_sweep()

    async def aclose(self) -> None:
        await self.transport.aclose()
