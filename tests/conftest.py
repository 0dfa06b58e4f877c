"""Shared test fixtures for opencode-mirror."""

import pytest

from factories import SESSION_KEY, FakeTransport, assistant, text, tool, step_start, user
from opencode_mirror.config import MirrorConfig
from opencode_mirror.core import MessageWithParts
from opencode_mirror.mirror import SessionMirror


class Clock:
    """Manually advanced millisecond clock."""

    def __init__(self, now: int = 1_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def transport():
    """A fake transport serving one session with two turns."""
    fake = FakeTransport()
    fake.messages[SESSION_KEY] = [
        MessageWithParts(user("msg_001", created=1), [text("prt_001", "msg_001", "Why is /api/users returning 500?")]),
        MessageWithParts(
            assistant("msg_002", "msg_001", created=2),
            [step_start("prt_002a", "msg_002"), text("prt_002b", "msg_002", "Let me check the logs.")],
        ),
        MessageWithParts(user("msg_003", created=3), [text("prt_003", "msg_003", "Fix it please")]),
        MessageWithParts(
            assistant("msg_004", "msg_003", created=4),
            [tool("prt_004", "msg_004", status="running")],
        ),
    ]
    return fake


@pytest.fixture
def config():
    return MirrorConfig(server_url="http://opencode.test", max_sessions=2, ttl_ms=100_000, sweep_seconds=60)


@pytest.fixture
def mirror(config, transport, clock):
    return SessionMirror(config, transport, clock=clock)


@pytest.fixture
def opencode_messages_payload():
    """``GET /session/{id}/message`` response of a v1.1+ OpenCode server."""
    return [
        {
            "info": {
                "id": "msg_001",
                "sessionID": "ses_001",
                "role": "user",
                "time": {"created": 1737532800000},
            },
            "parts": [
                {
                    "id": "prt_001",
                    "sessionID": "ses_001",
                    "messageID": "msg_001",
                    "type": "text",
                    "text": "Why is the /api/users endpoint returning 500?",
                },
            ],
        },
        {
            "info": {
                "id": "msg_002",
                "sessionID": "ses_001",
                "role": "assistant",
                "parentID": "msg_001",
                "time": {"created": 1737532830000, "completed": 1737532860000},
                "cost": 0.0123,
                "tokens": {"input": 1200, "output": 300, "reasoning": 50, "cache": {"read": 800, "write": 0}},
            },
            "parts": [
                {"id": "prt_002a", "sessionID": "ses_001", "messageID": "msg_002", "type": "step-start", "snapshot": "abc123"},
                {
                    "id": "prt_002b",
                    "sessionID": "ses_001",
                    "messageID": "msg_002",
                    "type": "tool",
                    "tool": "grep",
                    "callID": "call_1",
                    "state": {
                        "status": "completed",
                        "input": {"pattern": "SELECT.*FROM users", "include": "*.ts"},
                        "output": "Found 3 matches",
                        "metadata": {"matches": 3},
                    },
                },
                {"id": "prt_002c", "sessionID": "ses_001", "messageID": "msg_002", "type": "hologram", "mood": "curious"},
            ],
        },
    ]
