"""Decide whether a session's cached data can be trusted or must be refetched.

Both predicates are pure. They run before every network fetch, so a view
that is opened repeatedly does not re-transfer message or diff bodies it
already holds, while a session the driver has invalidated is always
refetched.
"""

from collections.abc import Sequence

from .core import DiffSummary, FileDiff, Message
from .diffs import summarize_diffs


def should_fetch_session_messages(
    existing_messages: Sequence[Message] | None,
    needs_hydration: bool,
    force: bool = False,
) -> bool:
    """Return True when a session's messages must be fetched from the server."""
    if force or needs_hydration:
        return True
    return not existing_messages


def should_fetch_session_diffs(
    existing_diffs: Sequence[FileDiff] | None,
    summary: DiffSummary | None,
    force: bool = False,
) -> bool:
    """Return True when a session's file diffs must be fetched.

    ``summary`` is the server's change counter. Without one there is no way
    to tell, so we fetch. A zero summary means nothing to fetch. Cached
    diffs are trusted as long as their totals still match the summary.
    """
    if force or summary is None:
        return True
    if summary.is_empty:
        return False
    if not existing_diffs:
        return True
    return summarize_diffs(existing_diffs) != summary
