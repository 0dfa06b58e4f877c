"""Build the session forest (root sessions, subagents, forks) from parent ids."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from .core import Session
from .session_key import build_session_key

logger = logging.getLogger(__name__)


@dataclass
class SessionTreeNode:
    session: Session
    depth: int
    children: list["SessionTreeNode"] = field(default_factory=list)


def build_session_tree(sessions: Iterable[Session]) -> list[SessionTreeNode]:
    """Return root nodes, most recently updated first.

    Parent links are resolved within one directory. Sessions whose parent is
    unknown become roots. ``depth`` comes from the session when set, else
    from its position in the tree. Sessions caught in a parent cycle are
    unreachable from any root; they are promoted to roots and the cycle is
    cut.
    """
    sessions = sorted(sessions, key=_updated_at, reverse=True)
    by_key = {s.key: s for s in sessions}
    children: dict[str | None, list[Session]] = {}

    for session in sessions:
        parent_key = _parent_key(session)
        if parent_key not in by_key:
            parent_key = None
        children.setdefault(parent_key, []).append(session)

    visited: set[str] = set()

    def build(session: Session, parent_depth: int) -> SessionTreeNode:
        visited.add(session.key)
        depth = session.depth if session.depth else parent_depth + 1
        node = SessionTreeNode(session=session, depth=depth)
        for child in children.get(session.key, []):
            if child.key not in visited:
                node.children.append(build(child, depth))
        return node

    roots = [build(s, -1) for s in children.get(None, [])]

    for session in sessions:
        if session.key not in visited:
            logger.warning("Circular session parent reference at %s", session.key)
            roots.append(build(session, -1))

    return roots


def _parent_key(session: Session) -> str | None:
    if not session.parent_id:
        return None
    return build_session_key(session.directory, session.parent_id)


def _updated_at(session: Session) -> int:
    return session.updated or session.created or 0
