"""OpenCode HTTP transport.

Talks to a running ``opencode serve`` instance:

- ``GET /project``                         -> projects (worktree paths)
- ``GET /session?directory=``              -> sessions of one project
- ``GET /session/{id}?directory=``         -> one session, incl. ``summary``
- ``GET /session/{id}/message?directory=`` -> ``[{info, parts}]``
- ``GET /session/{id}/diff?directory=``    -> ``FileDiff[]``
- ``GET /global/event``                    -> server-sent events, one JSON
  envelope ``{directory, payload}`` per ``data:`` line

Every request carries the session's directory because session ids are
only unique within a project.
"""

import asyncio
import json
import logging
import re
from collections.abc import AsyncIterator
from typing import Any

import httpx

from ..config import get_server_url
from ..core import (
    DiffSummary,
    FileDiff,
    GlobalEvent,
    MessageWithParts,
    Session,
    diff_summary_from_dict,
    event_from_dict,
    file_diff_from_dict,
    message_from_dict,
    part_from_dict,
    session_from_dict,
)
from ..errors import SessionNotFoundError, wrap_transport_error
from ..session_key import parse_session_key
from ..transport import SessionTransport

logger = logging.getLogger(__name__)

SESSION_LIST_CONCURRENCY = 3

# Temporary/sandbox worktrees hold hundreds of throwaway sessions
EXCLUDE_PATTERNS = [
    re.compile(r"/private/var/"),
    re.compile(r"/var/folders/"),
    re.compile(r"^/tmp/"),
    re.compile(r"^C:\\Users\\[^\\]+\\AppData\\Local\\Temp", re.IGNORECASE),
]


def is_junk_project(worktree: str) -> bool:
    return any(pattern.search(worktree) for pattern in EXCLUDE_PATTERNS)


class OpenCodeTransport(SessionTransport):
    """Transport for an OpenCode server reachable over HTTP."""

    name = "opencode"

    def __init__(self, base_url: str | None = None, client: httpx.AsyncClient | None = None) -> None:
        self.base_url = base_url or get_server_url()
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=30.0)

    async def fetch_session_messages(self, session_key: str) -> list[MessageWithParts]:
        directory, session_id = _split_key(session_key)
        payload = await self._get_json(f"/session/{session_id}/message", directory, session_id)
        if not isinstance(payload, list):
            return []

        entries = []
        for raw in payload:
            if not isinstance(raw, dict):
                continue
            message = message_from_dict(raw.get("info"))
            if message is None:
                continue
            raw_parts = raw.get("parts") if isinstance(raw.get("parts"), list) else []
            parts = [p for p in (part_from_dict(r) for r in raw_parts) if p is not None]
            entries.append(MessageWithParts(message=message, parts=parts))
        return entries

    async def fetch_session_diff_summary(self, session_key: str) -> DiffSummary | None:
        directory, session_id = _split_key(session_key)
        payload = await self._get_json(f"/session/{session_id}", directory, session_id)
        if not isinstance(payload, dict):
            return None
        return diff_summary_from_dict(payload.get("summary"))

    async def fetch_session_diffs(self, session_key: str) -> list[FileDiff]:
        directory, session_id = _split_key(session_key)
        payload = await self._get_json(f"/session/{session_id}/diff", directory, session_id)
        if not isinstance(payload, list):
            return []
        return [d for d in (file_diff_from_dict(raw) for raw in payload) if d is not None]

    async def list_sessions(self) -> list[Session]:
        projects = await self._get_json("/project")
        worktrees = [
            p["worktree"] for p in (projects if isinstance(projects, list) else [])
            if isinstance(p, dict) and p.get("worktree") and not is_junk_project(p["worktree"])
        ]

        semaphore = asyncio.Semaphore(SESSION_LIST_CONCURRENCY)

        async def list_project(worktree: str) -> list[Session]:
            async with semaphore:
                payload = await self._get_json("/session", worktree)
            raw_sessions = payload if isinstance(payload, list) else []
            return [s for s in (session_from_dict(r, worktree) for r in raw_sessions) if s is not None]

        results = await asyncio.gather(*(list_project(w) for w in worktrees))
        return [session for sessions in results for session in sessions]

    async def stream_events(self) -> AsyncIterator[GlobalEvent]:
        try:
            async with self._client.stream("GET", "/global/event", timeout=None) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    try:
                        data = json.loads(line[5:].strip())
                    except json.JSONDecodeError:
                        logger.warning("Skipping malformed event line: %s", line[:200])
                        continue
                    event = event_from_dict(data)
                    if event is not None:
                        yield event
        except httpx.HTTPError as e:
            raise wrap_transport_error(e) from e

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Private helpers ──────────────────────────────────────────────

    async def _get_json(self, path: str, directory: str | None = None, session_id: str | None = None) -> Any:
        params = {"directory": directory} if directory else None
        try:
            response = await self._client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404 and session_id:
                raise SessionNotFoundError(session_id) from e
            raise wrap_transport_error(e) from e
        except httpx.HTTPError as e:
            raise wrap_transport_error(e) from e
        except ValueError as e:
            logger.warning("Invalid JSON from %s: %s", path, e)
            raise wrap_transport_error(e) from e


def _split_key(session_key: str) -> tuple[str, str]:
    parsed = parse_session_key(session_key)
    if parsed is None:
        raise SessionNotFoundError(session_key)
    return parsed
