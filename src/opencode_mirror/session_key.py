"""Composite session keys.

OpenCode session ids are only unique within a project directory, so every
session is addressed by ``<url-encoded directory>::<session id>``.
"""

from urllib.parse import quote, unquote

SESSION_KEY_SEPARATOR = "::"


def build_session_key(directory: str, session_id: str) -> str:
    """Return the session key for a session in ``directory``."""
    return f"{quote(directory, safe='')}{SESSION_KEY_SEPARATOR}{session_id}"


def parse_session_key(session_key: str) -> tuple[str, str] | None:
    """Split a session key into ``(directory, session_id)``.

    Returns None when the key is malformed (no separator, empty directory
    or empty session id).
    """
    encoded_directory, sep, session_id = session_key.partition(SESSION_KEY_SEPARATOR)
    if not sep or not encoded_directory or not session_id:
        return None
    return unquote(encoded_directory), session_id
