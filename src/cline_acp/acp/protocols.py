"""Type protocols for ACP integration.

This module defines Protocol classes for the collaborators of the ACP layer:
the Cline backend on one side and the ACP client connection on the other.
The gRPC client and the acp SDK connection satisfy them in production; tests
satisfy them with AsyncMock fakes.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from acp.schema import (  # type: ignore[import-untyped]
        PermissionOption,
        RequestPermissionResponse,
        SessionUpdate,
        ToolCallUpdate,
    )

    from ..cline.messages import AskResponseType, ClineMessage, PlanActMode


@runtime_checkable
class ClineBackendProtocol(Protocol):
    """Interface the ACP layer needs from a Cline instance.

    Mirrors the subset of Cline's TaskService and StateService that the
    agent uses.
    """

    async def new_task(
        self,
        text: str,
        images: list[str] | None = None,
        files: list[str] | None = None,
    ) -> str:
        """Start a new task and return its ID."""
        ...

    async def ask_response(
        self,
        response_type: AskResponseType | str,
        text: str = "",
        images: list[str] | None = None,
        files: list[str] | None = None,
    ) -> None:
        """Answer the current ask (follow-up message or approval button)."""
        ...

    async def cancel_task(self) -> None:
        """Cancel the running task."""
        ...

    def subscribe_to_state(self) -> AsyncIterator[str]:
        """Stream full state JSON documents until the stream closes."""
        ...

    async def get_latest_state(self) -> str:
        """Fetch the current state JSON document."""
        ...

    async def toggle_plan_act_mode(self, mode: PlanActMode | str) -> None:
        """Switch Cline between Plan and Act mode."""
        ...

    async def update_settings(self, api_model_id: str) -> None:
        """Update the active model."""
        ...

    async def close(self) -> None:
        """Release the underlying channel."""
        ...


@runtime_checkable
class ACPConnectionProtocol(Protocol):
    """Protocol for ACP client connections.

    Defines the interface used to send updates and permission requests back
    to the ACP client.
    """

    async def session_update(self, session_id: str, update: SessionUpdate, **kwargs: Any) -> None:
        """Send a session update to the client.

        Args:
            session_id: The session to update
            update: The ACP session update to send
        """
        ...

    async def request_permission(
        self,
        options: list[PermissionOption],
        session_id: str,
        tool_call: ToolCallUpdate,
        **kwargs: Any,
    ) -> RequestPermissionResponse:
        """Ask the client to allow or reject a tool call.

        Args:
            options: Permission options to present
            session_id: The session requesting approval
            tool_call: The tool call needing approval

        Returns:
            The client's decision
        """
        ...


@runtime_checkable
class EventMapperProtocol(Protocol):
    """Protocol for event mappers.

    Defines the interface for mapping Cline messages to ACP updates.
    """

    def map_message(
        self,
        msg: ClineMessage,
        index: int,
        workspace_root: str | None = None,
    ) -> SessionUpdate | None:
        """Map a Cline message to an ACP update, or None."""
        ...


@runtime_checkable
class ApprovalHandlerProtocol(Protocol):
    """Protocol for approval handlers used by the differencer."""

    async def request_approval(self, message: ClineMessage, workspace_root: str | None = None) -> bool:
        """Run one approval round-trip. Returns True when allowed."""
        ...


@runtime_checkable
class ContentConverterProtocol(Protocol):
    """Protocol for content converters.

    Defines the interface for converting ACP content blocks to a Cline prompt.
    """

    def convert(self, blocks: list[Any]) -> Any:
        """Convert ACP content blocks to Cline format.

        Args:
            blocks: List of ACP content blocks

        Returns:
            ClinePrompt with text and file references
        """
        ...
