"""Environment-driven settings for the mirror."""

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "http://localhost:4096"
DEFAULT_MAX_SESSIONS = 20
DEFAULT_TTL_MS = 10 * 60 * 1000
DEFAULT_SWEEP_SECONDS = 60.0


@dataclass(frozen=True)
class MirrorConfig:
    """Settings threaded through the mirror's components."""

    server_url: str = DEFAULT_SERVER_URL
    max_sessions: int = DEFAULT_MAX_SESSIONS
    ttl_ms: int = DEFAULT_TTL_MS
    sweep_seconds: float = DEFAULT_SWEEP_SECONDS
    # None means every project directory is in the foreground
    foreground_directories: frozenset[str] | None = None


def get_server_url() -> str:
    """Return the base URL of the OpenCode server."""
    return os.environ.get("OPENCODE_MIRROR_SERVER_URL") or DEFAULT_SERVER_URL


def get_max_sessions() -> int:
    """Return how many sessions may stay cached at once."""
    return _env_number("OPENCODE_MIRROR_MAX_SESSIONS", DEFAULT_MAX_SESSIONS, int)


def get_ttl_ms() -> int:
    """Return how long an inactive session may stay cached, in milliseconds."""
    return _env_number("OPENCODE_MIRROR_TTL_MS", DEFAULT_TTL_MS, int)


def get_sweep_seconds() -> float:
    return _env_number("OPENCODE_MIRROR_SWEEP_SECONDS", DEFAULT_SWEEP_SECONDS, float)


def get_foreground_directories() -> frozenset[str] | None:
    """Return the project directories whose events are applied in full.

    Read from ``OPENCODE_MIRROR_FOREGROUND_DIRECTORIES``, separated by
    ``os.pathsep``. Unset or empty means all directories.
    """
    raw = os.environ.get("OPENCODE_MIRROR_FOREGROUND_DIRECTORIES", "")
    directories = frozenset(d for d in raw.split(os.pathsep) if d)
    return directories or None


def load_config(**overrides) -> MirrorConfig:
    """Read settings from the environment; keyword arguments win when not None."""
    values = {
        "server_url": get_server_url(),
        "max_sessions": get_max_sessions(),
        "ttl_ms": get_ttl_ms(),
        "sweep_seconds": get_sweep_seconds(),
        "foreground_directories": get_foreground_directories(),
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return MirrorConfig(**values)


def _env_number(name: str, default, cast):
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default
    if value < 0:
        logger.warning("Ignoring negative %s=%r, using %s", name, raw, default)
        return default
    return value
