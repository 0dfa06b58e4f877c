"""Abstract base class for the server transport."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from .core import DiffSummary, FileDiff, GlobalEvent, MessageWithParts, Session


class SessionTransport(ABC):
    """Narrow interface to the agent server.

    The mirror only ever reads through this interface. Implementations
    raise OpenCodeError subclasses for expected failures (network errors,
    missing sessions).
    """

    name: str

    @abstractmethod
    async def fetch_session_messages(self, session_key: str) -> list[MessageWithParts]:
        """Return a session's messages in arrival order, each with its parts."""
        ...

    @abstractmethod
    async def fetch_session_diff_summary(self, session_key: str) -> DiffSummary | None:
        """Return the session's cheap change counters, or None if unknown."""
        ...

    @abstractmethod
    async def fetch_session_diffs(self, session_key: str) -> list[FileDiff]:
        """Return the full per-file diffs of a session."""
        ...

    @abstractmethod
    async def list_sessions(self) -> list[Session]:
        """Return the sessions of every known project."""
        ...

    @abstractmethod
    def stream_events(self) -> AsyncIterator[GlobalEvent]:
        """Yield push events until the connection drops."""
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        return None
