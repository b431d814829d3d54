"""Unit tests for ClineApprovalBridge.

Tests the bridge between Cline's approval asks and ACP's
session/request_permission method.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from cline_acp.acp.approval_bridge import ALLOW, ALLOW_ALWAYS, REJECT, ClineApprovalBridge
from cline_acp.cline.messages import AskResponseType, ClineMessage

# =============================================================================
# Test Fixtures
# =============================================================================


@dataclass
class MockPermissionResponse:
    """Mock response from ACP request_permission."""

    outcome: Any


@dataclass
class MockSelected:
    """Mock selected outcome with option_id."""

    option_id: str
    outcome: str = "selected"


@dataclass
class MockCancelled:
    """Mock cancelled outcome."""

    outcome: str = "cancelled"


def create_mock_client(response_option_id: str = ALLOW) -> MagicMock:
    """Create a mock ACP client with request_permission support."""
    client = MagicMock()
    client.session_update = AsyncMock()
    client.request_permission = AsyncMock(
        return_value=MockPermissionResponse(outcome=MockSelected(option_id=response_option_id))
    )
    return client


def tool_ask(ts: int = 1712000000000) -> ClineMessage:
    return ClineMessage(
        ts=ts,
        type="ask",
        ask="tool",
        text=json.dumps({"tool": "editedExistingFile", "path": "src/a.ts", "diff": "@@ -1 +1 @@"}),
    )


def command_ask(ts: int = 1712000000001) -> ClineMessage:
    return ClineMessage(ts=ts, type="ask", ask="command", text="rm -rf build")


def make_bridge(client: MagicMock | None, backend: MagicMock, **kwargs: Any) -> ClineApprovalBridge:
    return ClineApprovalBridge("sess-1", lambda: client, backend, **kwargs)


# =============================================================================
# TestPermissionRequest
# =============================================================================


class TestPermissionRequest:
    """Tests for the request sent to the client."""

    @pytest.mark.asyncio
    async def test_three_options(self, fake_backend: MagicMock) -> None:
        """Exactly allow-always, allow-once and reject-once are offered."""
        client = create_mock_client()
        await make_bridge(client, fake_backend).request_approval(tool_ask())

        options = client.request_permission.await_args.kwargs["options"]
        assert [(o.option_id, o.kind) for o in options] == [
            (ALLOW_ALWAYS, "allow_always"),
            (ALLOW, "allow_once"),
            (REJECT, "reject_once"),
        ]

    @pytest.mark.asyncio
    async def test_tool_call_context(self, fake_backend: MagicMock) -> None:
        """The tool call carries id, title, kind, input and resolved locations."""
        client = create_mock_client()
        await make_bridge(client, fake_backend).request_approval(tool_ask(), "/work")

        kwargs = client.request_permission.await_args.kwargs
        tool_call = kwargs["tool_call"]
        assert kwargs["session_id"] == "sess-1"
        assert tool_call.tool_call_id == "1712000000000"
        assert tool_call.title == "editedExistingFile src/a.ts"
        assert tool_call.kind == "edit"
        assert tool_call.status == "pending"
        assert tool_call.raw_input["path"] == "src/a.ts"
        assert tool_call.locations[0].path == "/work/src/a.ts"
        assert tool_call.content[0].type == "diff"

    @pytest.mark.asyncio
    async def test_command_context(self, fake_backend: MagicMock) -> None:
        """Command asks are titled with the command line."""
        client = create_mock_client()
        await make_bridge(client, fake_backend).request_approval(command_ask())

        tool_call = client.request_permission.await_args.kwargs["tool_call"]
        assert tool_call.title == "rm -rf build"
        assert tool_call.kind == "execute"
        assert tool_call.raw_input == {"command": "rm -rf build"}


# =============================================================================
# TestDecisions
# =============================================================================


class TestDecisions:
    """Tests for relaying the decision to Cline."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("option_id", [ALLOW, ALLOW_ALWAYS])
    async def test_allow(self, fake_backend: MagicMock, option_id: str) -> None:
        """Allow outcomes click yes and send no failure update."""
        client = create_mock_client(option_id)

        allowed = await make_bridge(client, fake_backend).request_approval(tool_ask())

        assert allowed is True
        fake_backend.ask_response.assert_awaited_once_with(AskResponseType.YES_BUTTON_CLICKED)
        client.session_update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reject(self, fake_backend: MagicMock) -> None:
        """Reject clicks no and marks the tool call failed under the same id."""
        client = create_mock_client(REJECT)

        allowed = await make_bridge(client, fake_backend).request_approval(tool_ask(42))

        assert allowed is False
        fake_backend.ask_response.assert_awaited_once_with(AskResponseType.NO_BUTTON_CLICKED)
        session_id, update = client.session_update.await_args.args
        assert session_id == "sess-1"
        assert update.session_update == "tool_call_update"
        assert update.tool_call_id == "42"
        assert update.status == "failed"

    @pytest.mark.asyncio
    async def test_cancelled_outcome_rejects(self, fake_backend: MagicMock) -> None:
        """A cancelled permission dialog counts as rejection."""
        client = create_mock_client()
        client.request_permission.return_value = MockPermissionResponse(outcome=MockCancelled())

        assert await make_bridge(client, fake_backend).request_approval(tool_ask()) is False
        fake_backend.ask_response.assert_awaited_once_with(AskResponseType.NO_BUTTON_CLICKED)

    @pytest.mark.asyncio
    async def test_client_error_rejects(self, fake_backend: MagicMock) -> None:
        """A failing permission request counts as rejection."""
        client = create_mock_client()
        client.request_permission.side_effect = RuntimeError("connection lost")

        assert await make_bridge(client, fake_backend).request_approval(tool_ask()) is False
        fake_backend.ask_response.assert_awaited_once_with(AskResponseType.NO_BUTTON_CLICKED)
        client.session_update.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_client_rejects(self, fake_backend: MagicMock) -> None:
        """Without a client Cline is told no and nothing is sent."""
        assert await make_bridge(None, fake_backend).request_approval(tool_ask()) is False
        fake_backend.ask_response.assert_awaited_once_with(AskResponseType.NO_BUTTON_CLICKED)

    @pytest.mark.asyncio
    async def test_timeout_rejects(self, fake_backend: MagicMock) -> None:
        """An unanswered request times out as rejection."""
        client = create_mock_client()

        async def never_answers(**kwargs: Any) -> Any:
            await asyncio.sleep(10)

        client.request_permission.side_effect = never_answers

        bridge = make_bridge(client, fake_backend, timeout=0.01)
        assert await bridge.request_approval(tool_ask()) is False
        fake_backend.ask_response.assert_awaited_once_with(AskResponseType.NO_BUTTON_CLICKED)

    @pytest.mark.asyncio
    async def test_backend_error_propagates(self, fake_backend: MagicMock) -> None:
        """Failures sending the decision to Cline are not swallowed."""
        fake_backend.ask_response.side_effect = ConnectionError("cline gone")

        with pytest.raises(ConnectionError):
            await make_bridge(create_mock_client(), fake_backend).request_approval(tool_ask())
