"""FastAPI web server exposing the session mirror to a browser UI.

Session keys contain ``/`` and ``:``, so clients percent-encode the whole
key into the path (``quote(key, safe="")``).
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict

from fastapi import FastAPI, HTTPException, Query

from . import __version__
from .backends import create_transport
from .config import load_config
from .core import DiffSummary, FileDiff, Session
from .diffs import format_unified_diff
from .errors import ClassifiedSessionError, classify_session_error, session_error_signature
from .flatten import FlatItem, PartItem
from .mirror import SessionMirror
from .session_key import parse_session_key
from .sync import SyncResult
from .tree import SessionTreeNode, build_session_tree

logger = logging.getLogger(__name__)

# Mirror instance (created on first request)
_mirror: SessionMirror | None = None


def _get_mirror() -> SessionMirror:
    """Lazily create and cache the mirror."""
    global _mirror
    if _mirror is None:
        config = load_config()
        _mirror = SessionMirror(config, create_transport(config))
        logger.info("Mirroring %s (max %d sessions)", config.server_url, config.max_sessions)
    return _mirror


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the push channel and the eviction sweep while the app is up."""
    mirror = _get_mirror()
    tasks = [
        asyncio.create_task(mirror.sync.run_event_stream()),
        asyncio.create_task(mirror.run_eviction_loop()),
    ]
    try:
        yield
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await mirror.aclose()


app = FastAPI(title="opencode-mirror", version=__version__, lifespan=lifespan)


def _check_key(session_key: str) -> str:
    if parse_session_key(session_key) is None:
        raise HTTPException(status_code=400, detail=f"Invalid session key: {session_key}")
    return session_key


def _session_to_dict(session: Session) -> dict:
    """Convert a Session dataclass to a JSON-serializable dict."""
    return {
        "key": session.key,
        "id": session.id,
        "directory": session.directory,
        "title": session.title,
        "parent_id": session.parent_id,
        "depth": session.depth,
        "created": session.created,
        "updated": session.updated,
        "summary": _summary_to_dict(session.summary),
    }


def _summary_to_dict(summary: DiffSummary | None) -> dict | None:
    return asdict(summary) if summary is not None else None


def _diff_to_dict(diff: FileDiff) -> dict:
    return asdict(diff)


def _item_to_dict(item: FlatItem) -> dict:
    """Convert a flat item to a JSON-serializable dict."""
    data = {
        "id": item.id,
        "type": item.type,
        "turn_id": item.turn_id,
        "index": item.index,
        "is_first_in_turn": item.is_first_in_turn,
        "is_last_in_turn": item.is_last_in_turn,
    }
    if isinstance(item, PartItem):
        data.update({
            "part": asdict(item.part),
            "is_assistant": item.is_assistant,
            "is_streaming": item.is_streaming,
            "is_synthetic": item.is_synthetic,
        })
    else:
        data["message"] = {"role": item.message.role, **asdict(item.message)}
    return data


def _error_to_dict(classified: ClassifiedSessionError) -> dict:
    # the UI remembers dismissed errors by signature
    return {**asdict(classified), "signature": session_error_signature(classified.error)}


def _tree_to_dict(node: SessionTreeNode) -> dict:
    return {
        "session": _session_to_dict(node.session),
        "depth": node.depth,
        "children": [_tree_to_dict(child) for child in node.children],
    }


# ── Routes ───────────────────────────────────────────────────────


@app.get("/api/status")
async def get_status():
    """Return connection and cache state."""
    mirror = _get_mirror()
    return {
        "connected": mirror.sync.is_connected,
        "server_url": mirror.config.server_url,
        "cached_sessions": len(mirror.store),
        "active_sessions": sorted(mirror.active_sessions),
        "max_sessions": mirror.config.max_sessions,
    }


@app.get("/api/sessions")
async def get_sessions(
    search: str | None = Query(None, description="Search in titles"),
    directory: str | None = Query(None, description="Filter by project directory"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    """Return known sessions, most recently updated first."""
    sessions = _get_mirror().store.list_sessions()

    if search:
        search_lower = search.lower()
        sessions = [s for s in sessions if search_lower in s.title.lower()]
    if directory:
        sessions = [s for s in sessions if s.directory == directory]

    sessions.sort(key=lambda s: s.updated or s.created or 0, reverse=True)
    total = len(sessions)
    sessions = sessions[offset: offset + limit]

    return {
        "total": total,
        "sessions": [_session_to_dict(s) for s in sessions],
    }


@app.get("/api/sessions/tree")
async def get_session_tree():
    """Return the session forest (subagents and forks nested under parents)."""
    tree = build_session_tree(_get_mirror().store.list_sessions())
    return {"roots": [_tree_to_dict(node) for node in tree]}


@app.post("/api/session/{session_key:path}/open")
async def open_session(session_key: str, force: bool = Query(False)):
    """Mark a session active and hydrate it if the cache can't be trusted."""
    _check_key(session_key)
    mirror = _get_mirror()
    messages_result, diffs_result = await mirror.open_session(session_key, force=force)

    if messages_result == SyncResult.FAILED:
        raise HTTPException(status_code=502, detail="Could not load session data")

    return {
        "session_key": session_key,
        "messages": messages_result.value,
        "diffs": diffs_result.value,
    }


@app.delete("/api/session/{session_key:path}/open")
async def close_session(session_key: str):
    """Release a session; it becomes eligible for eviction."""
    _check_key(session_key)
    _get_mirror().release(session_key)
    return {"session_key": session_key, "released": True}


@app.get("/api/session/{session_key:path}/items")
async def get_items(session_key: str):
    """Return the session's flat, render-ready items."""
    _check_key(session_key)
    mirror = _get_mirror()
    entry = mirror.store.get(session_key)
    if entry is None or not entry.messages_loaded:
        raise HTTPException(status_code=404, detail="Session not loaded")

    classified = classify_session_error(entry.session_error)
    return {
        "session_key": session_key,
        "items": [_item_to_dict(item) for item in mirror.get_flat_items(session_key)],
        "error": _error_to_dict(classified) if classified else None,
    }


@app.get("/api/session/{session_key:path}/diffs")
async def get_diffs(
    session_key: str,
    format: str = Query("json", description="Diff format: json or patch"),
):
    """Return the session's file diffs and their summary."""
    _check_key(session_key)
    mirror = _get_mirror()
    diffs = mirror.get_diffs(session_key)
    summary = _summary_to_dict(mirror.get_diff_summary(session_key))

    if format == "patch":
        return {
            "session_key": session_key,
            "summary": summary,
            "patches": [{"file": d.file, "patch": format_unified_diff(d)} for d in diffs],
        }
    return {
        "session_key": session_key,
        "summary": summary,
        "diffs": [_diff_to_dict(d) for d in diffs],
    }


@app.get("/api/session/{session_key:path}/stats")
async def get_stats(session_key: str):
    """Return token usage and cost for a session."""
    _check_key(session_key)
    return {"session_key": session_key, **asdict(_get_mirror().get_stats(session_key))}


@app.post("/api/evict")
async def evict():
    """Run an eviction sweep now."""
    return {"evicted": _get_mirror().run_eviction_sweep()}
