"""ACP Approval Bridge - relays Cline approval asks to ACP permission requests.

This module bridges Cline's approval asks (ask/tool, ask/command, ...) to
ACP's session/request_permission method, enabling native IDE permission
dialogs when Cline wants to run a tool.

Flow:
1. Differencer sees a new, complete approval ask as the last message
2. ClineApprovalBridge calls client.request_permission()
3. IDE shows native permission dialog
4. User selects option
5. Allow -> Cline yesButtonClicked
   Anything else -> Cline noButtonClicked + tool_call_update(status="failed")
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from acp.schema import (  # type: ignore[import-untyped]
    PermissionOption,
    ToolCallUpdate,
)

from ..cline.messages import AskResponseType, ClineMessage
from .event_mapper import ClineToAcpEventMapper, describe_approval, tool_call_id_for
from .tool_metadata import tool_call_content, tool_call_locations

if TYPE_CHECKING:
    from .protocols import ACPConnectionProtocol, ClineBackendProtocol

logger = logging.getLogger(__name__)

ALLOW_ALWAYS = "allow_always"
ALLOW = "allow"
REJECT = "reject"

# Option IDs that map to Cline's "yes" button
ALLOW_OPTION_IDS = frozenset({ALLOW_ALWAYS, ALLOW})


class ClineApprovalBridge:
    """Bridges Cline approval asks to ACP's request_permission.

    Every failure on the client side (no client, permission request error,
    cancelled outcome, timeout) is treated as a rejection so Cline never stays
    blocked on an unanswered ask. Backend errors propagate to the caller.
    """

    PERMISSION_OPTIONS = (
        PermissionOption(option_id=ALLOW_ALWAYS, name="Always Allow", kind="allow_always"),
        PermissionOption(option_id=ALLOW, name="Allow", kind="allow_once"),
        PermissionOption(option_id=REJECT, name="Reject", kind="reject_once"),
    )

    def __init__(
        self,
        session_id: str,
        get_client: Callable[[], ACPConnectionProtocol | None],
        backend: ClineBackendProtocol,
        mapper: ClineToAcpEventMapper | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the approval bridge.

        Args:
            session_id: The ACP session ID for permission requests
            get_client: Callable that returns the ACP Client (lazy access)
            backend: Cline backend that receives the decision
            mapper: Event mapper used to build the failure update
            timeout: Optional seconds to wait for the client; None waits indefinitely
        """
        self._session_id = session_id
        self._get_client = get_client
        self._backend = backend
        self._mapper = mapper or ClineToAcpEventMapper()
        self._timeout = timeout

    async def request_approval(self, message: ClineMessage, workspace_root: str | None = None) -> bool:
        """Run one approval round-trip for an approval ask.

        Args:
            message: The ask message awaiting approval
            workspace_root: Primary workspace root used to resolve tool paths

        Returns:
            True if the user allowed the action
        """
        tool_call_id = tool_call_id_for(message)
        client = self._get_client()

        allowed = False
        if client is None:
            logger.warning("No ACP client available, rejecting approval request")
        else:
            option_id = await self._ask_client(client, message, workspace_root)
            allowed = option_id in ALLOW_OPTION_IDS
            logger.info(f"Approval for tool call {tool_call_id}: {option_id or 'no selection'}")

        if allowed:
            await self._backend.ask_response(AskResponseType.YES_BUTTON_CLICKED)
            return True

        await self._backend.ask_response(AskResponseType.NO_BUTTON_CLICKED)
        if client is not None:
            await client.session_update(
                self._session_id,
                self._mapper.tool_call_status_update(tool_call_id, "failed"),
            )
        return False

    async def _ask_client(
        self,
        client: ACPConnectionProtocol,
        message: ClineMessage,
        workspace_root: str | None,
    ) -> str | None:
        """Send the permission request and return the selected option ID, if any."""
        try:
            response = await asyncio.wait_for(
                client.request_permission(
                    options=list(self.PERMISSION_OPTIONS),
                    session_id=self._session_id,
                    tool_call=self._build_tool_call(message, workspace_root),
                ),
                timeout=self._timeout,
            )
        except TimeoutError:
            logger.warning(f"ACP permission request timed out after {self._timeout}s")
            return None
        except Exception as e:
            logger.warning(f"ACP permission request failed: {e}")
            return None

        outcome: Any = getattr(response, "outcome", None)
        if outcome is None or getattr(outcome, "outcome", None) != "selected":
            return None
        return getattr(outcome, "option_id", None)

    def _build_tool_call(self, message: ClineMessage, workspace_root: str | None) -> ToolCallUpdate:
        """Build the toolCall context for the permission request."""
        descriptor = describe_approval(message, workspace_root)
        return ToolCallUpdate(
            tool_call_id=tool_call_id_for(message),
            title=descriptor.title,
            kind=descriptor.kind,
            status="pending",
            raw_input=descriptor.input,
            locations=tool_call_locations(descriptor),
            content=tool_call_content(descriptor),
        )
