"""Core data models for opencode-mirror.

Mirrors the OpenCode server's session -> message -> part graph.

All models are frozen. The store replaces an object whenever the server
sends a newer version of it, so comparing values is enough to know whether
anything changed.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .session_key import build_session_key

logger = logging.getLogger(__name__)

STREAMING_TOOL_STATUSES = frozenset({"pending", "running"})


@dataclass(frozen=True)
class DiffSummary:
    """Cheap change counters for a session, available without diff bodies."""

    additions: int = 0
    deletions: int = 0
    files: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.additions or self.deletions or self.files)


@dataclass(frozen=True)
class FileDiff:
    """One file touched by a session."""

    file: str
    before: str = ""
    after: str = ""
    additions: int = 0
    deletions: int = 0


@dataclass(frozen=True)
class Session:
    """A session (or subagent session) living in a project directory."""

    id: str
    directory: str
    title: str = ""
    parent_id: Optional[str] = None
    depth: int = 0
    created: Optional[int] = None  # epoch milliseconds
    updated: Optional[int] = None
    summary: Optional[DiffSummary] = None

    @property
    def key(self) -> str:
        return build_session_key(self.directory, self.id)


@dataclass(frozen=True)
class CacheEntry:
    """Bookkeeping for one cached session."""

    last_access: int  # epoch milliseconds


# ── Messages ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class TokenUsage:
    input: int = 0
    output: int = 0
    reasoning: int = 0
    cache_read: int = 0
    cache_write: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output + self.reasoning + self.cache_read + self.cache_write


@dataclass(frozen=True)
class UserMessage:
    id: str
    session_id: str = ""
    created: Optional[int] = None

    role = "user"


@dataclass(frozen=True)
class AssistantMessage:
    """An assistant reply; ``parent_id`` is the user message that triggered it."""

    id: str
    session_id: str = ""
    parent_id: Optional[str] = None
    created: Optional[int] = None
    completed: Optional[int] = None
    tokens: Optional[TokenUsage] = None
    cost: float = 0.0
    error: Optional[dict] = None

    role = "assistant"


Message = UserMessage | AssistantMessage


# ── Parts ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PartTime:
    start: Optional[int] = None
    end: Optional[int] = None


@dataclass(frozen=True, kw_only=True)
class Part:
    """Base of the part variants. ``type`` is the wire discriminant."""

    id: str
    message_id: str = ""
    session_id: str = ""
    time: Optional[PartTime] = None
    type: str = ""


@dataclass(frozen=True, kw_only=True)
class TextPart(Part):
    type: str = field(default="text", init=False)
    text: str = ""
    synthetic: bool = False
    ignored: bool = False


@dataclass(frozen=True, kw_only=True)
class ReasoningPart(Part):
    type: str = field(default="reasoning", init=False)
    text: str = ""


@dataclass(frozen=True)
class ToolState:
    status: str = ""
    input: dict = field(default_factory=dict)
    output: str = ""
    title: str = ""
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class ToolPart(Part):
    type: str = field(default="tool", init=False)
    tool: str = ""
    call_id: str = ""
    state: ToolState = field(default_factory=ToolState)

    @property
    def is_running(self) -> bool:
        return self.state.status in STREAMING_TOOL_STATUSES


@dataclass(frozen=True, kw_only=True)
class PatchPart(Part):
    type: str = field(default="patch", init=False)
    hash: str = ""
    files: tuple[str, ...] = ()


@dataclass(frozen=True, kw_only=True)
class FilePart(Part):
    type: str = field(default="file", init=False)
    mime: str = ""
    filename: str = ""
    url: str = ""


@dataclass(frozen=True, kw_only=True)
class AgentPart(Part):
    type: str = field(default="agent", init=False)
    name: str = ""


@dataclass(frozen=True, kw_only=True)
class SubtaskPart(Part):
    type: str = field(default="subtask", init=False)
    prompt: str = ""
    description: str = ""
    agent: str = ""


@dataclass(frozen=True, kw_only=True)
class CompactionPart(Part):
    type: str = field(default="compaction", init=False)
    auto: bool = False


@dataclass(frozen=True, kw_only=True)
class RetryPart(Part):
    type: str = field(default="retry", init=False)
    attempt: int = 0
    error: Optional[dict] = None


@dataclass(frozen=True, kw_only=True)
class StepStartPart(Part):
    type: str = field(default="step-start", init=False)
    snapshot: str = ""


@dataclass(frozen=True, kw_only=True)
class StepFinishPart(Part):
    type: str = field(default="step-finish", init=False)
    reason: str = ""
    cost: float = 0.0
    tokens: Optional[TokenUsage] = None


@dataclass(frozen=True, kw_only=True)
class SnapshotPart(Part):
    type: str = field(default="snapshot", init=False)
    snapshot: str = ""


@dataclass(frozen=True, kw_only=True)
class UnknownPart(Part):
    """A part type this client does not know; kept as raw data."""

    raw: dict = field(default_factory=dict)


@dataclass
class MessageWithParts:
    """A message together with its parts, as returned by the bulk endpoint."""

    message: Message
    parts: list[Part] = field(default_factory=list)


@dataclass(frozen=True)
class GlobalEvent:
    """One event from the server's push channel."""

    directory: str
    type: str
    properties: dict = field(default_factory=dict)


# ── Parsing ──────────────────────────────────────────────────────


def session_from_dict(data: Any, directory: str | None = None) -> Session | None:
    """Build a Session from the server's JSON, or None if unusable."""
    if not isinstance(data, dict) or not data.get("id"):
        return None
    time_data = _dict(data.get("time"))
    summary = data.get("summary")
    return Session(
        id=str(data["id"]),
        directory=directory or str(data.get("directory") or ""),
        title=str(data.get("title") or "Untitled"),
        parent_id=data.get("parentID") or None,
        depth=_int(data.get("depth")) or 0,
        created=_int(time_data.get("created")),
        updated=_int(time_data.get("updated")),
        summary=diff_summary_from_dict(summary) if isinstance(summary, dict) else None,
    )


def diff_summary_from_dict(data: Any) -> DiffSummary | None:
    if not isinstance(data, dict):
        return None
    return DiffSummary(
        additions=_int(data.get("additions")) or 0,
        deletions=_int(data.get("deletions")) or 0,
        files=_int(data.get("files")) or 0,
    )


def file_diff_from_dict(data: Any) -> FileDiff | None:
    if not isinstance(data, dict) or not data.get("file"):
        return None
    return FileDiff(
        file=str(data["file"]),
        before=str(data.get("before") or ""),
        after=str(data.get("after") or ""),
        additions=_int(data.get("additions")) or 0,
        deletions=_int(data.get("deletions")) or 0,
    )


def message_from_dict(data: Any) -> Message | None:
    """Build a user or assistant message; unknown roles yield None."""
    if not isinstance(data, dict) or not data.get("id"):
        return None

    time_data = _dict(data.get("time"))
    role = data.get("role")
    if role == "user":
        return UserMessage(
            id=str(data["id"]),
            session_id=str(data.get("sessionID") or ""),
            created=_int(time_data.get("created")),
        )
    if role == "assistant":
        return AssistantMessage(
            id=str(data["id"]),
            session_id=str(data.get("sessionID") or ""),
            parent_id=data.get("parentID") or None,
            created=_int(time_data.get("created")),
            completed=_int(time_data.get("completed")),
            tokens=_tokens(data.get("tokens")),
            cost=_float(data.get("cost")),
            error=data.get("error") if isinstance(data.get("error"), dict) else None,
        )

    logger.warning("Skipping message %s with unknown role %r", data.get("id"), role)
    return None


def part_from_dict(data: Any) -> Part | None:
    """Build the Part variant matching ``data["type"]``.

    Missing fields fall back to defaults; unrecognised types become
    UnknownPart so they still render.
    """
    if not isinstance(data, dict):
        return None

    common = {
        "id": str(data.get("id") or ""),
        "message_id": str(data.get("messageID") or ""),
        "session_id": str(data.get("sessionID") or ""),
        "time": _part_time(data.get("time")),
    }
    part_type = data.get("type")

    if part_type == "text":
        return TextPart(
            **common,
            text=_str(data.get("text")),
            synthetic=data.get("synthetic") is True,
            ignored=data.get("ignored") is True,
        )
    if part_type == "reasoning":
        return ReasoningPart(**common, text=_str(data.get("text")))
    if part_type == "tool":
        state = _dict(data.get("state"))
        return ToolPart(
            **common,
            tool=_str(data.get("tool")),
            call_id=_str(data.get("callID")),
            state=ToolState(
                status=_str(state.get("status")),
                input=_dict(state.get("input")),
                output=_str(state.get("output")),
                title=_str(state.get("title")),
                metadata=_dict(state.get("metadata")),
            ),
        )
    if part_type == "patch":
        files = data.get("files")
        return PatchPart(
            **common,
            hash=_str(data.get("hash")),
            files=tuple(str(f) for f in files) if isinstance(files, list) else (),
        )
    if part_type == "file":
        return FilePart(
            **common,
            mime=_str(data.get("mime")),
            filename=_str(data.get("filename")),
            url=_str(data.get("url")),
        )
    if part_type == "agent":
        return AgentPart(**common, name=_str(data.get("name")))
    if part_type == "subtask":
        return SubtaskPart(
            **common,
            prompt=_str(data.get("prompt")),
            description=_str(data.get("description")),
            agent=_str(data.get("agent")),
        )
    if part_type == "compaction":
        return CompactionPart(**common, auto=data.get("auto") is True)
    if part_type == "retry":
        error = data.get("error")
        return RetryPart(
            **common,
            attempt=_int(data.get("attempt")) or 0,
            error=error if isinstance(error, dict) else None,
        )
    if part_type == "step-start":
        return StepStartPart(**common, snapshot=_str(data.get("snapshot")))
    if part_type == "step-finish":
        return StepFinishPart(
            **common,
            reason=_str(data.get("reason")),
            cost=_float(data.get("cost")),
            tokens=_tokens(data.get("tokens")),
        )
    if part_type == "snapshot":
        return SnapshotPart(**common, snapshot=_str(data.get("snapshot")))

    return UnknownPart(**common, type=str(part_type or "unknown"), raw=dict(data))


def event_from_dict(data: Any) -> GlobalEvent | None:
    """Parse a global event envelope ``{directory, payload: {type, properties}}``."""
    if not isinstance(data, dict):
        return None
    payload = _dict(data.get("payload"))
    event_type = payload.get("type")
    if not isinstance(event_type, str):
        return None
    return GlobalEvent(
        directory=_str(data.get("directory")),
        type=event_type,
        properties=_dict(payload.get("properties")),
    )


def _tokens(data: Any) -> TokenUsage | None:
    if not isinstance(data, dict):
        return None
    cache = _dict(data.get("cache"))
    return TokenUsage(
        input=_int(data.get("input")) or 0,
        output=_int(data.get("output")) or 0,
        reasoning=_int(data.get("reasoning")) or 0,
        cache_read=_int(cache.get("read")) or 0,
        cache_write=_int(cache.get("write")) or 0,
    )


def _part_time(data: Any) -> PartTime | None:
    if not isinstance(data, dict):
        return None
    return PartTime(start=_int(data.get("start")), end=_int(data.get("end")))


def _dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def _float(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)
