"""Select which cached sessions to drop.

Two phases, in order:

1. TTL sweep: inactive entries idle for longer than ``ttl_ms``.
2. Capacity sweep: while more than ``max_sessions`` entries remain, the
   least recently accessed inactive entry goes next.

Sessions in ``active_sessions`` are never selected, even when they alone
exceed the capacity. The result depends only on the arguments; ties on
``last_access`` are broken by session key.
"""

from collections.abc import Iterable, Mapping

from .core import CacheEntry


def select_session_evictions(
    entries: Mapping[str, CacheEntry],
    active_sessions: Iterable[str],
    max_sessions: int,
    ttl_ms: int,
    now: int,
) -> list[str]:
    """Return the session keys to remove, oldest first within each phase."""
    active = set(active_sessions)
    inactive = sorted(
        (entry.last_access, key) for key, entry in entries.items() if key not in active
    )

    evicted = [key for last_access, key in inactive if now - last_access > ttl_ms]
    expired = set(evicted)

    remaining = len(entries) - len(evicted)
    for _, key in inactive:
        if remaining <= max_sessions:
            break
        if key in expired:
            continue
        evicted.append(key)
        remaining -= 1

    return evicted
