"""Snapshot differencer - turns Cline's full-state snapshots into ACP updates.

Cline re-sends its entire message history on every state change. ACP clients
expect an incremental stream of session updates. The differencer bridges the
two for one prompt turn:

- diff() is a pure transition: one snapshot in, ordered updates plus a
  decision out. It touches only the turn tracker and the session's mode and
  telemetry, never the network.
- run() is the effect shell: it consumes the snapshot stream, sends the
  updates, runs approval round-trips and decides when the turn ends.

Identity of a message across snapshots is its timestamp.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from ..cline.messages import (
    ClineMessage,
    ClineSay,
    Snapshot,
    extract_cost_info,
    is_task_complete,
    is_waiting_for_user_input,
    latest_task_progress,
    needs_approval,
)
from ..session import SessionMode
from .event_mapper import ClineToAcpEventMapper

if TYPE_CHECKING:
    from acp.schema import SessionUpdate  # type: ignore[import-untyped]

    from ..session import ClineSession
    from .protocols import ACPConnectionProtocol, ApprovalHandlerProtocol

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    """Lifecycle of one prompt turn."""

    RUNNING = "running"
    AWAITING_APPROVAL = "awaiting_approval"
    TERMINATED_BY_WAIT = "terminated_by_wait"
    TERMINATED_BY_COMPLETION = "terminated_by_completion"
    TERMINATED_BY_CANCEL = "terminated_by_cancel"
    TERMINATED_BY_ERROR = "terminated_by_error"

    @property
    def is_terminal(self) -> bool:
        return self not in (TurnState.RUNNING, TurnState.AWAITING_APPROVAL)


class TurnDecision(str, Enum):
    """What the shell should do after applying one snapshot."""

    CONTINUE = "continue"
    APPROVE = "approve"
    WAIT = "wait"
    COMPLETE = "complete"


@dataclass
class TurnTracker:
    """Per-turn tracking state, keyed by message timestamp.

    Attributes:
        user_input: Text submitted for this turn, used to drop its echo
        existing_timestamps: Timestamps present before the turn started
        sent: Messages whose final update has been emitted
        in_progress_tool_calls: Tool calls announced as in_progress
        handled_approvals: Approval asks already round-tripped
        cost_processed: api_req_started messages folded into telemetry
        last_task_progress_ts: Task-progress message last turned into a plan
        last_mode: Mode observed in the previous snapshot
    """

    user_input: str = ""
    existing_timestamps: frozenset[int] = frozenset()
    sent: set[int] = field(default_factory=set)
    in_progress_tool_calls: set[int] = field(default_factory=set)
    handled_approvals: set[int] = field(default_factory=set)
    cost_processed: set[int] = field(default_factory=set)
    last_task_progress_ts: int | None = None
    last_mode: str | None = None
    _kinds: dict[int, str] = field(default_factory=dict, repr=False)
    _collisions: set[int] = field(default_factory=set, repr=False)

    @classmethod
    def for_turn(cls, user_input: str = "", existing_timestamps: Iterable[int] = ()) -> TurnTracker:
        """Start tracking a new turn.

        Messages from earlier turns are treated as already sent and already
        counted, so they are never re-emitted or double-billed.
        """
        existing = frozenset(existing_timestamps)
        return cls(
            user_input=user_input,
            existing_timestamps=existing,
            sent=set(existing),
            cost_processed=set(existing),
        )

    def is_new(self, msg: ClineMessage) -> bool:
        """Whether a message appeared after the turn started."""
        return bool(msg.ts) and msg.ts not in self.existing_timestamps

    def check_identity(self, msg: ClineMessage) -> None:
        """Warn when two different messages share one timestamp."""
        fingerprint = f"{msg.type}/{msg.kind}"
        known = self._kinds.setdefault(msg.ts, fingerprint)
        if known != fingerprint and msg.ts not in self._collisions:
            self._collisions.add(msg.ts)
            logger.warning(
                f"Timestamp collision at ts={msg.ts}: {known} vs {fingerprint}; "
                "the later message will not be emitted"
            )


@dataclass
class DiffResult:
    """Outcome of applying one snapshot.

    Attributes:
        updates: ACP updates to send, in order
        decision: What the shell should do next
        approval_message: The ask to round-trip when decision is APPROVE
    """

    updates: list[SessionUpdate] = field(default_factory=list)
    decision: TurnDecision = TurnDecision.CONTINUE
    approval_message: ClineMessage | None = None


class SnapshotDifferencer:
    """Computes the incremental ACP update stream for one prompt turn.

    Usage:
        tracker = TurnTracker.for_turn(text, existing_timestamps)
        differencer = SnapshotDifferencer(tracker)
        state = await differencer.run(session, snapshots, conn, approvals)
    """

    def __init__(
        self,
        tracker: TurnTracker | None = None,
        mapper: ClineToAcpEventMapper | None = None,
    ) -> None:
        self.tracker = tracker or TurnTracker()
        self.mapper = mapper or ClineToAcpEventMapper()
        self.state = TurnState.RUNNING

    # =========================================================================
    # Pure transition
    # =========================================================================

    def diff(self, snapshot: Snapshot, session: ClineSession) -> DiffResult:
        """Apply one snapshot and return the updates it produces.

        Args:
            snapshot: The full message history as of now
            session: The session whose mode and telemetry are updated

        Returns:
            DiffResult with the ordered updates and the next decision
        """
        result = DiffResult()
        self._apply_mode(snapshot, session, result)
        self._apply_cost(snapshot, session)
        self._apply_task_progress(snapshot, result)
        self._apply_messages(snapshot, result)
        self._decide(snapshot, result)
        return result

    def _apply_mode(self, snapshot: Snapshot, session: ClineSession, result: DiffResult) -> None:
        tracker = self.tracker
        if tracker.last_mode is not None and snapshot.mode != tracker.last_mode:
            logger.info(f"Session {session.session_id} mode changed: {tracker.last_mode} -> {snapshot.mode}")
            session.mode = SessionMode(snapshot.mode)
            result.updates.append(self.mapper.mode_update(snapshot.mode))
        tracker.last_mode = snapshot.mode

    def _apply_cost(self, snapshot: Snapshot, session: ClineSession) -> None:
        for msg in snapshot.messages:
            if msg.ts in self.tracker.cost_processed:
                continue
            info = extract_cost_info(msg)
            if info is None:
                continue
            session.telemetry.add(info)
            self.tracker.cost_processed.add(msg.ts)
            logger.debug(
                f"API request ts={msg.ts}: +${info.cost:.4f} "
                f"(session total ${session.telemetry.cost:.4f})"
            )

    def _apply_task_progress(self, snapshot: Snapshot, result: DiffResult) -> None:
        progress = latest_task_progress(snapshot.messages)
        if progress is None or progress.ts == self.tracker.last_task_progress_ts:
            return
        self.tracker.last_task_progress_ts = progress.ts
        plan = self.mapper.plan_update(progress)
        if plan is not None:
            result.updates.append(plan)

    def _apply_messages(self, snapshot: Snapshot, result: DiffResult) -> None:
        tracker = self.tracker
        root = snapshot.workspace_root

        for index, msg in enumerate(snapshot.messages):
            if msg.partial:
                # Only streaming tool output is announced early; everything
                # else waits until complete
                if (
                    msg.is_say_kind(ClineSay.TOOL)
                    and msg.ts not in tracker.in_progress_tool_calls
                    and msg.ts not in tracker.sent
                ):
                    started = self.mapper.in_progress_tool_call(msg)
                    # Unparsable so far; a later partial may still announce it
                    if started is not None:
                        tracker.in_progress_tool_calls.add(msg.ts)
                        result.updates.append(started)
                continue

            if msg.ts in tracker.sent:
                tracker.check_identity(msg)
                continue
            tracker.sent.add(msg.ts)
            tracker.check_identity(msg)

            if msg.is_say_kind(ClineSay.TEXT) and msg.text == tracker.user_input:
                logger.debug(f"Skipping echoed user input (ts={msg.ts})")
                continue
            if msg.is_say_kind(ClineSay.TASK_PROGRESS):
                continue

            if msg.ts in tracker.in_progress_tool_calls:
                # A fresh tool_call, not an update: only tool_call carries
                # the final locations and content
                tracker.in_progress_tool_calls.discard(msg.ts)
                completed = self.mapper.completed_tool_call(msg, root)
                if completed is not None:
                    result.updates.append(completed)
                continue

            update = self.mapper.map_message(msg, index, root)
            if update is not None:
                result.updates.append(update)

    def _decide(self, snapshot: Snapshot, result: DiffResult) -> None:
        last = snapshot.last_message
        if last is None or not self.tracker.is_new(last):
            return

        messages = snapshot.messages
        if needs_approval(messages):
            if last.ts not in self.tracker.handled_approvals:
                self.tracker.handled_approvals.add(last.ts)
                result.decision = TurnDecision.APPROVE
                result.approval_message = last
        elif is_waiting_for_user_input(messages):
            result.decision = TurnDecision.WAIT
        elif is_task_complete(messages):
            result.decision = TurnDecision.COMPLETE

    # =========================================================================
    # Effect shell
    # =========================================================================

    async def run(
        self,
        session: ClineSession,
        snapshots: AsyncIterable[Snapshot],
        client: ACPConnectionProtocol,
        approvals: ApprovalHandlerProtocol,
    ) -> TurnState:
        """Consume snapshots until the turn ends.

        Stream exhaustion and transport errors end the turn with
        TERMINATED_BY_ERROR; they are logged, not raised.

        Args:
            session: The session running this turn
            snapshots: Snapshot stream for the turn
            client: ACP connection receiving the updates
            approvals: Handler for approval round-trips

        Returns:
            The terminal TurnState
        """
        self.state = TurnState.RUNNING
        try:
            async for snapshot in snapshots:
                if session.cancelled:
                    self.state = TurnState.TERMINATED_BY_CANCEL
                    break

                result = self.diff(snapshot, session)
                for update in result.updates:
                    await client.session_update(session.session_id, update)

                if result.decision is TurnDecision.APPROVE and result.approval_message is not None:
                    self.state = TurnState.AWAITING_APPROVAL
                    await approvals.request_approval(result.approval_message, snapshot.workspace_root)
                    self.state = TurnState.RUNNING
                elif result.decision is TurnDecision.WAIT:
                    self.state = TurnState.TERMINATED_BY_WAIT
                    break
                elif result.decision is TurnDecision.COMPLETE:
                    self.state = TurnState.TERMINATED_BY_COMPLETION
                    break
            else:
                logger.info(f"State stream closed during turn for session {session.session_id}")
                self.state = TurnState.TERMINATED_BY_ERROR
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"State stream failed for session {session.session_id}: {e}")
            self.state = TurnState.TERMINATED_BY_ERROR
        finally:
            aclose = getattr(snapshots, "aclose", None)
            if aclose is not None:
                await aclose()

        logger.info(f"Turn ended for session {session.session_id}: {self.state.value}")
        return self.state
