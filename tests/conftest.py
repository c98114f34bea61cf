import os
import sys
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("SESSION_SECRET", "test-session-secret")
os.environ.setdefault("DB_HOST", "localhost")
os.environ.setdefault("DB_USER", "user")
os.environ.setdefault("DB_PASSWORD", "password")
os.environ.setdefault("DB_NAME", "testdb")

from helpdesk.services.realtime import PushTransport  # noqa: E402


class RecordingTransport(PushTransport):
    """Collect pushes in order; connection ids listed in ``failing`` raise."""

    def __init__(self) -> None:
        self.pushes: list[tuple[str, str, Any]] = []
        self.failing: set[str] = set()

    async def push(self, connection_id: str, event: str, payload: Any) -> None:
        if connection_id in self.failing:
            raise ConnectionResetError(f"{connection_id} is gone")
        self.pushes.append((connection_id, event, payload))

    def events_for(self, connection_id: str) -> list[str]:
        return [event for target, event, _ in self.pushes if target == connection_id]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()
