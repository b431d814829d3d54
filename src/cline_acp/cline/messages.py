"""Cline state model.

Cline's StateService re-sends its whole conversation as a JSON document on
every change. This module parses that document into typed snapshots and
provides the predicates the differencer uses on a snapshot's last message.

Note: Field aliases use camelCase to match Cline's state JSON.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


class ClineModel(BaseModel):
    """Base model for Cline state types with camelCase aliases."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
    )


# =============================================================================
# Enumerations
# =============================================================================


class MessageType(str, Enum):
    """Message channel: SAY is output, ASK is a request for input/approval."""

    SAY = "say"
    ASK = "ask"


class ClineAsk(str, Enum):
    """Ask kinds - Cline is requesting input or approval."""

    FOLLOWUP = "followup"
    PLAN_MODE_RESPOND = "plan_mode_respond"
    TOOL = "tool"
    COMMAND = "command"
    COMMAND_OUTPUT = "command_output"
    COMPLETION_RESULT = "completion_result"
    API_REQ_FAILED = "api_req_failed"
    BROWSER_ACTION_LAUNCH = "browser_action_launch"
    USE_MCP_SERVER = "use_mcp_server"
    RESUME_TASK = "resume_task"
    RESUME_COMPLETED_TASK = "resume_completed_task"
    MISTAKE_LIMIT_REACHED = "mistake_limit_reached"
    AUTO_APPROVAL_MAX_REQ_REACHED = "auto_approval_max_req_reached"


class ClineSay(str, Enum):
    """Say kinds - Cline is outputting information."""

    TEXT = "text"
    REASONING = "reasoning"
    TOOL = "tool"
    COMMAND = "command"
    COMMAND_OUTPUT = "command_output"
    COMPLETION_RESULT = "completion_result"
    API_REQ_STARTED = "api_req_started"
    API_REQ_FINISHED = "api_req_finished"
    API_REQ_RETRIED = "api_req_retried"
    BROWSER_ACTION = "browser_action"
    BROWSER_ACTION_RESULT = "browser_action_result"
    MCP_SERVER_REQUEST_STARTED = "mcp_server_request_started"
    MCP_SERVER_RESPONSE = "mcp_server_response"
    TASK_COMPLETION_SUGGESTION = "task_completion_suggestion"
    USER_FEEDBACK = "user_feedback"
    USER_FEEDBACK_DIFF = "user_feedback_diff"
    ERROR = "error"
    DIFF = "diff"
    CHECKPOINT_CREATED = "checkpoint_created"
    TASK_PROGRESS = "task_progress"


class PlanActMode(str, Enum):
    """Plan/Act mode as sent to togglePlanActModeProto (proto enum names)."""

    PLAN = "PLAN"
    ACT = "ACT"


class AskResponseType(str, Enum):
    """Response types accepted by TaskService.askResponse."""

    MESSAGE_RESPONSE = "messageResponse"
    YES_BUTTON_CLICKED = "yesButtonClicked"
    NO_BUTTON_CLICKED = "noButtonClicked"


# Ask kinds that block on a human decision before Cline proceeds
APPROVAL_ASKS = frozenset(
    {
        ClineAsk.TOOL.value,
        ClineAsk.COMMAND.value,
        ClineAsk.BROWSER_ACTION_LAUNCH.value,
        ClineAsk.USE_MCP_SERVER.value,
    }
)

# Ask kinds that hand the turn back to the user
WAITING_ASKS = frozenset(
    {
        ClineAsk.PLAN_MODE_RESPOND.value,
        ClineAsk.FOLLOWUP.value,
        ClineAsk.COMPLETION_RESULT.value,
    }
)


# =============================================================================
# Messages
# =============================================================================


class PlanModeResponse(ClineModel):
    """Structured plan-mode answer: {"response": "...", "options": [...]}."""

    response: str = ""
    options: list[str] = Field(default_factory=list)
    selected: str | None = None


class AskQuestion(ClineModel):
    """Structured follow-up question: {"question": "...", "options": [...]}."""

    question: str = ""
    options: list[str] = Field(default_factory=list)
    selected: str | None = None


class ClineMessage(ClineModel):
    """One entry of Cline's message history.

    The timestamp is the message identity: a message is re-sent in every
    snapshot, first with partial=True while streaming, then complete.
    """

    ts: int = 0
    type: str = ""
    ask: str = ""
    say: str = ""
    text: str | None = None
    reasoning: str | None = None
    partial: bool = False
    images: list[str] = Field(default_factory=list)
    plan_mode_response: PlanModeResponse | None = Field(default=None, alias="planModeResponse")
    ask_question: AskQuestion | None = Field(default=None, alias="askQuestion")

    @field_validator("type", "ask", "say", mode="before")
    @classmethod
    def _normalize_kind(cls, value: Any) -> str:
        # The proto stream uses SCREAMING_CASE, the state JSON lowercase
        return str(value or "").lower()

    @field_validator("ts", mode="before")
    @classmethod
    def _default_ts(cls, value: Any) -> Any:
        return value or 0

    @field_validator("partial", mode="before")
    @classmethod
    def _default_partial(cls, value: Any) -> bool:
        return bool(value)

    @field_validator("images", mode="before")
    @classmethod
    def _default_images(cls, value: Any) -> Any:
        return value or []

    @property
    def is_say(self) -> bool:
        return self.type == MessageType.SAY.value

    @property
    def is_ask(self) -> bool:
        return self.type == MessageType.ASK.value

    @property
    def kind(self) -> str:
        """The say or ask kind, whichever applies to this message's channel."""
        return self.ask if self.is_ask else self.say

    def is_say_kind(self, kind: ClineSay) -> bool:
        return self.is_say and self.say == kind.value

    def is_ask_kind(self, kind: ClineAsk) -> bool:
        return self.is_ask and self.ask == kind.value

    def extract_text(self) -> str:
        """Extract display text, preferring structured response/question fields."""
        if self.plan_mode_response and self.plan_mode_response.response:
            return self.plan_mode_response.response
        if self.ask_question and self.ask_question.question:
            return self.ask_question.question

        if self.text:
            # Nested proto messages sometimes arrive serialized into the text field
            try:
                parsed = json.loads(self.text)
            except ValueError:
                parsed = None
            if isinstance(parsed, dict):
                if isinstance(parsed.get("response"), str):
                    return parsed["response"]
                if isinstance(parsed.get("question"), str):
                    return parsed["question"]

        return self.text or ""


# =============================================================================
# Snapshots
# =============================================================================


class Snapshot(ClineModel):
    """The full message history as observed at one instant.

    Attributes:
        messages: Every message so far, in Cline's order
        mode: "plan" or "act"
        workspace_root: Primary workspace root path, used to resolve tool paths
    """

    messages: list[ClineMessage] = Field(default_factory=list)
    mode: str = "plan"
    workspace_root: str | None = None

    @classmethod
    def from_state_json(cls, state_json: str | None) -> Snapshot:
        """Parse Cline's state JSON. Malformed input yields an empty snapshot."""
        try:
            state = json.loads(state_json or "{}")
        except ValueError:
            logger.debug("Ignoring unparsable state JSON")
            return cls()
        if not isinstance(state, dict):
            return cls()

        return cls(
            messages=_parse_messages(state.get("clineMessages")),
            mode="act" if state.get("mode") == "act" else "plan",
            workspace_root=_primary_workspace_root(state),
        )

    @property
    def last_message(self) -> ClineMessage | None:
        return self.messages[-1] if self.messages else None

    def timestamps(self) -> set[int]:
        """Timestamps of every message in the snapshot."""
        return {msg.ts for msg in self.messages if msg.ts}


def _parse_messages(raw_messages: Any) -> list[ClineMessage]:
    if not isinstance(raw_messages, list):
        return []

    messages: list[ClineMessage] = []
    for raw in raw_messages:
        if not isinstance(raw, dict):
            continue
        try:
            messages.append(ClineMessage.model_validate(raw))
        except ValidationError as e:
            logger.debug(f"Skipping malformed Cline message: {e}")
    return messages


def _primary_workspace_root(state: dict[str, Any]) -> str | None:
    roots = state.get("workspaceRoots")
    if not isinstance(roots, list) or not roots:
        return None

    index = state.get("primaryRootIndex")
    if not isinstance(index, int) or not 0 <= index < len(roots):
        index = 0

    root = roots[index]
    if isinstance(root, dict) and isinstance(root.get("path"), str):
        return root["path"]
    return None


async def snapshot_stream(states: AsyncIterable[str]) -> AsyncIterator[Snapshot]:
    """Turn a stream of state JSON documents into a stream of snapshots.

    Closing this generator closes the underlying state stream.
    """
    try:
        async for state_json in states:
            yield Snapshot.from_state_json(state_json)
    finally:
        aclose = getattr(states, "aclose", None)
        if aclose is not None:
            await aclose()


# =============================================================================
# Cost telemetry
# =============================================================================


@dataclass(frozen=True)
class CostInfo:
    """Token and cost figures reported by one completed API request."""

    tokens_in: int = 0
    tokens_out: int = 0
    cache_writes: int = 0
    cache_reads: int = 0
    cost: float = 0.0


def extract_cost_info(msg: ClineMessage) -> CostInfo | None:
    """Extract cost info from a completed api_req_started message.

    The payload looks like:
        {"tokensIn": 1234, "tokensOut": 567, "cacheWrites": 0, "cacheReads": 100, "cost": 0.0123}

    Returns None until the request has finished (no "cost" key yet). A cost of
    exactly zero is a valid, completed request.
    """
    if msg.say != ClineSay.API_REQ_STARTED.value:
        return None

    try:
        data = json.loads(msg.text or "{}")
    except ValueError:
        return None
    if not isinstance(data, dict) or data.get("cost") is None:
        return None

    return CostInfo(
        tokens_in=_number(data.get("tokensIn"), int),
        tokens_out=_number(data.get("tokensOut"), int),
        cache_writes=_number(data.get("cacheWrites"), int),
        cache_reads=_number(data.get("cacheReads"), int),
        cost=_number(data.get("cost"), float),
    )


def _number(value: Any, cast: type) -> Any:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return cast(0)
    return cast(value)


# =============================================================================
# Last-message predicates
# =============================================================================


def needs_approval(messages: list[ClineMessage]) -> bool:
    """Whether the last message is a complete ask that needs approval.

    Cline ignores approval responses sent while the ask is still partial.
    """
    if not messages:
        return False
    last = messages[-1]
    return last.is_ask and not last.partial and last.ask in APPROVAL_ASKS


def is_waiting_for_user_input(messages: list[ClineMessage]) -> bool:
    """Whether Cline has handed the turn back to the user.

    Only a complete message counts: the full response must be processed
    before the turn ends.
    """
    if not messages:
        return False
    last = messages[-1]
    return last.is_ask and not last.partial and last.ask in WAITING_ASKS


def is_task_complete(messages: list[ClineMessage]) -> bool:
    """Whether the last message reports task completion."""
    if not messages:
        return False
    return messages[-1].is_ask_kind(ClineAsk.COMPLETION_RESULT)


def latest_task_progress(messages: list[ClineMessage]) -> ClineMessage | None:
    """Return the complete task_progress message with the latest timestamp."""
    progress = [
        msg for msg in messages if msg.is_say_kind(ClineSay.TASK_PROGRESS) and not msg.partial
    ]
    if not progress:
        return None
    return max(progress, key=lambda msg: msg.ts)
