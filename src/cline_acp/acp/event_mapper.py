"""Cline to ACP message mapping.

This module classifies one Cline message into at most one ACP session update.
It is stateless: everything that depends on history (duplicate suppression,
partial tracking, approvals) lives in the differencer.

Message Mapping:
- say/text, say/<other> -> update_agent_message
- say/reasoning -> update_agent_thought
- say/tool -> ToolCallStart (status="completed")
- ask/tool, ask/command -> ToolCallStart (status="pending")
- ask/followup, ask/plan_mode_respond, ask/<other> -> update_agent_message
- say/task_progress -> AgentPlanUpdate (via plan_update)
- mode change -> CurrentModeUpdate (via mode_update)
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from acp import (  # type: ignore[import-untyped]
    text_block,
    update_agent_message,
    update_agent_thought,
)
from acp.schema import (  # type: ignore[import-untyped]
    AgentPlanUpdate,
    CurrentModeUpdate,
    PlanEntry,
    ToolCallProgress,
    ToolCallStart,
)

from ..cline.messages import ClineAsk, ClineMessage, ClineSay
from .tool_metadata import (
    ToolDescriptor,
    describe_command,
    parse_tool_descriptor,
    tool_call_content,
    tool_call_locations,
)

if TYPE_CHECKING:
    from acp.schema import SessionUpdate  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

_PENDING_ITEM = re.compile(r"^[-*]\s*\[\s*\]\s*(.+)$")
_COMPLETED_ITEM = re.compile(r"^[-*]\s*\[[xX]\]\s*(.+)$")

# Say kinds that are backend bookkeeping rather than conversation
_IGNORED_SAYS = frozenset(
    {
        ClineSay.CHECKPOINT_CREATED.value,
        ClineSay.USER_FEEDBACK.value,
        ClineSay.TASK_PROGRESS.value,
    }
)

# Ask kinds that are termination or resume signals rather than content
_IGNORED_ASKS = frozenset(
    {
        ClineAsk.RESUME_TASK.value,
        ClineAsk.RESUME_COMPLETED_TASK.value,
        ClineAsk.COMPLETION_RESULT.value,
    }
)


def tool_call_id_for(msg: ClineMessage) -> str:
    """ACP tool call id for a message: its timestamp."""
    return str(msg.ts)


def looks_like_tool_json(text: str | None) -> bool:
    """Detect tool payloads that leaked into a text or reasoning message.

    Matches a JSON object with a "tool" field, or with "path" plus either
    "content" or "operationIsLocatedInWorkspace".
    """
    if not text:
        return False
    stripped = text.strip()
    if not stripped.startswith("{"):
        return False
    try:
        data = json.loads(stripped)
    except ValueError:
        return False
    if not isinstance(data, dict):
        return False
    if "tool" in data:
        return True
    return "path" in data and ("content" in data or "operationIsLocatedInWorkspace" in data)


def parse_task_progress(text: str | None) -> list[PlanEntry]:
    """Parse a markdown checklist into plan entries.

    Example:
        - [x] Read the config
        - [ ] Update the parser

    Lines that are not checklist items are ignored.
    """
    entries: list[PlanEntry] = []
    for line in (text or "").splitlines():
        stripped = line.strip()
        if match := _PENDING_ITEM.match(stripped):
            status = "pending"
        elif match := _COMPLETED_ITEM.match(stripped):
            status = "completed"
        else:
            continue
        entries.append(
            PlanEntry(
                content=match.group(1).strip(),
                status=status,
                priority="medium",
            )
        )
    return entries


@dataclass
class ClineToAcpEventMapper:
    """Maps Cline messages to ACP session updates.

    Usage:
        mapper = ClineToAcpEventMapper()
        update = mapper.map_message(msg, index, snapshot.workspace_root)
        if update:
            await conn.session_update(session_id, update)
    """

    def map_message(
        self,
        msg: ClineMessage,
        index: int,
        workspace_root: str | None = None,
    ) -> SessionUpdate | None:
        """Map one complete Cline message to an ACP session update.

        Args:
            msg: The message to classify
            index: Position of the message within its snapshot
            workspace_root: Primary workspace root used to resolve tool paths

        Returns:
            The ACP update to send, or None if the message produces nothing
        """
        if msg.is_say:
            return self._map_say(msg, index, workspace_root)
        if msg.is_ask:
            return self._map_ask(msg, workspace_root)

        logger.debug(f"Unmapped message type: {msg.type!r} (ts={msg.ts})")
        return None

    # =========================================================================
    # Channel handlers
    # =========================================================================

    def _map_say(
        self, msg: ClineMessage, index: int, workspace_root: str | None
    ) -> SessionUpdate | None:
        if "api_req" in msg.say or msg.say in _IGNORED_SAYS:
            return None

        if msg.say == ClineSay.TOOL.value:
            descriptor = parse_tool_descriptor(msg.text, workspace_root)
            if descriptor.is_unknown:
                logger.debug(f"Skipping unparsable tool message (ts={msg.ts})")
                return None
            return self._tool_call(msg, descriptor, "completed")

        # The first text message of a task is the user's own prompt
        if msg.say == ClineSay.TEXT.value and index == 0:
            return None

        if msg.say == ClineSay.REASONING.value:
            text = msg.reasoning or msg.extract_text()
            if not text or looks_like_tool_json(text):
                return None
            return update_agent_thought(text_block(text))

        return self._text_chunk(msg)

    def _map_ask(self, msg: ClineMessage, workspace_root: str | None) -> SessionUpdate | None:
        if "api_req" in msg.ask or msg.ask in _IGNORED_ASKS:
            return None

        if msg.ask in (ClineAsk.TOOL.value, ClineAsk.COMMAND.value):
            return self.pending_tool_call(msg, workspace_root)

        return self._text_chunk(msg)

    def _text_chunk(self, msg: ClineMessage) -> SessionUpdate | None:
        text = msg.extract_text()
        if not text or looks_like_tool_json(text):
            return None
        return update_agent_message(text_block(text))

    # =========================================================================
    # Tool call builders
    # =========================================================================

    def pending_tool_call(self, msg: ClineMessage, workspace_root: str | None = None) -> ToolCallStart:
        """Tool call awaiting approval, from an ask/tool or ask/command message."""
        return self._tool_call(msg, describe_approval(msg, workspace_root), "pending")

    def in_progress_tool_call(self, msg: ClineMessage) -> ToolCallStart | None:
        """Tool call still streaming, from a partial say/tool message.

        Locations and content are left empty: the path may be truncated.
        Returns None while the payload cannot be parsed yet.
        """
        descriptor = parse_tool_descriptor(msg.text)
        if descriptor.is_unknown:
            return None
        return ToolCallStart(
            session_update="tool_call",
            tool_call_id=tool_call_id_for(msg),
            title=descriptor.title,
            kind=descriptor.kind,
            status="in_progress",
            locations=[],
            content=[],
            raw_input=descriptor.input,
        )

    def completed_tool_call(self, msg: ClineMessage, workspace_root: str | None = None) -> ToolCallStart | None:
        """Completed tool call, re-announced with its now-final locations and content.

        Returns None for an unparsable payload, like map_message().
        """
        descriptor = parse_tool_descriptor(msg.text, workspace_root)
        if descriptor.is_unknown:
            return None
        return self._tool_call(msg, descriptor, "completed")

    def tool_call_status_update(self, tool_call_id: str, status: str) -> ToolCallProgress:
        """Status-only transition for an already announced tool call."""
        return ToolCallProgress(
            session_update="tool_call_update",
            tool_call_id=tool_call_id,
            status=status,
        )

    def _tool_call(
        self, msg: ClineMessage, descriptor: ToolDescriptor, status: str
    ) -> ToolCallStart:
        return ToolCallStart(
            session_update="tool_call",
            tool_call_id=tool_call_id_for(msg),
            title=descriptor.title,
            kind=descriptor.kind,
            status=status,
            locations=tool_call_locations(descriptor),
            content=tool_call_content(descriptor),
            raw_input=descriptor.input,
        )

    # =========================================================================
    # Plan/mode builders
    # =========================================================================

    def plan_update(self, msg: ClineMessage) -> AgentPlanUpdate | None:
        """Replace the client's plan with the checklist in a task_progress message."""
        entries = parse_task_progress(msg.text)
        if not entries:
            return None
        return AgentPlanUpdate(
            session_update="plan",
            entries=entries,
        )

    def mode_update(self, mode: str) -> CurrentModeUpdate:
        return CurrentModeUpdate(
            session_update="current_mode_update",
            current_mode_id=mode,
        )


def describe_approval(msg: ClineMessage, workspace_root: str | None = None) -> ToolDescriptor:
    """Descriptor for an approval request: JSON tool payloads or raw command lines."""
    if msg.ask == ClineAsk.COMMAND.value:
        return describe_command(msg.text)
    return parse_tool_descriptor(msg.text, workspace_root)
