"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest


def state_json(messages: list[dict[str, Any]], mode: str = "act", **extra: Any) -> str:
    """Serialize a Cline state document."""
    return json.dumps({"clineMessages": messages, "mode": mode, **extra})


class StateStream:
    """Async iterator over a fixed list of state documents that records aclose()."""

    def __init__(self, states: list[str]) -> None:
        self._states = list(states)
        self.closed = False

    def __aiter__(self) -> AsyncIterator[str]:
        return self

    async def __anext__(self) -> str:
        if self.closed or not self._states:
            raise StopAsyncIteration
        return self._states.pop(0)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_conn() -> MagicMock:
    """ACP client connection with recorded session_update calls."""
    conn = MagicMock()
    conn.session_update = AsyncMock()
    conn.request_permission = AsyncMock()
    return conn


@pytest.fixture
def fake_backend() -> MagicMock:
    """Cline backend with AsyncMock RPCs and an empty state."""
    backend = MagicMock()
    backend.new_task = AsyncMock(return_value="task-1")
    backend.ask_response = AsyncMock()
    backend.cancel_task = AsyncMock()
    backend.get_latest_state = AsyncMock(return_value=state_json([]))
    backend.toggle_plan_act_mode = AsyncMock()
    backend.update_settings = AsyncMock()
    backend.close = AsyncMock()
    backend.subscribe_to_state = MagicMock(return_value=StateStream([]))
    return backend


@pytest.fixture
def make_state():
    """Factory for Cline state JSON documents."""
    return state_json


@pytest.fixture
def make_stream():
    """Factory for recorded state streams."""
    return StateStream
