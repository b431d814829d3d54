"""Session registry for the Cline ACP agent.

Holds per-session state across prompt turns:
- Cline task identity (assigned lazily on the first turn)
- Plan/Act mode
- Cancellation flag
- Cumulative token and cost telemetry

The registry is an explicitly owned object handed to the agent and the
differencer; there is no module-level session map. All operations are plain
dict access and never block.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .errors import SessionNotFoundError

if TYPE_CHECKING:
    from .cline.messages import CostInfo

logger = logging.getLogger(__name__)


class SessionMode(str, Enum):
    """Cline's Plan/Act modes, exposed to the client as ACP session modes."""

    PLAN = "plan"
    ACT = "act"


@dataclass
class Telemetry:
    """Cumulative token and cost usage for a session."""

    cost: float = 0.0
    tokens_in: int = 0
    tokens_out: int = 0
    cache_writes: int = 0
    cache_reads: int = 0

    def add(self, info: CostInfo) -> None:
        """Fold one completed API request into the totals."""
        self.cost += info.cost
        self.tokens_in += info.tokens_in
        self.tokens_out += info.tokens_out
        self.cache_writes += info.cache_writes
        self.cache_reads += info.cache_reads

    def to_dict(self) -> dict[str, Any]:
        return {
            "cost": self.cost,
            "tokens_in": self.tokens_in,
            "tokens_out": self.tokens_out,
            "cache_writes": self.cache_writes,
            "cache_reads": self.cache_reads,
        }


@dataclass
class ClineSession:
    """State for one ACP session bound to a Cline task."""

    session_id: str
    cwd: str = field(default_factory=lambda: str(Path.cwd()))
    task_id: str | None = None
    mode: SessionMode = SessionMode.PLAN
    cancelled: bool = False
    task_created: bool = False
    telemetry: Telemetry = field(default_factory=Telemetry)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    turn_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize session state."""
        return {
            "session_id": self.session_id,
            "cwd": self.cwd,
            "task_id": self.task_id,
            "mode": self.mode.value,
            "cancelled": self.cancelled,
            "task_created": self.task_created,
            "telemetry": self.telemetry.to_dict(),
            "created_at": self.created_at.isoformat(),
            "turn_count": self.turn_count,
        }


class SessionRegistry:
    """Registry of live ACP sessions.

    Usage:
        registry = SessionRegistry()
        session = registry.create(cwd="/work")
        registry.set_mode(session.session_id, SessionMode.ACT)
        registry.close(session.session_id)
    """

    def __init__(self) -> None:
        self._active: dict[str, ClineSession] = {}

    def create(self, cwd: str | None = None, mode: SessionMode = SessionMode.PLAN) -> ClineSession:
        """Create and register a new session.

        Args:
            cwd: Working directory reported by the client
            mode: Initial mode

        Returns:
            The new session with zeroed telemetry and no task yet
        """
        session_id = uuid.uuid4().hex
        session = ClineSession(
            session_id=session_id,
            cwd=cwd or str(Path.cwd()),
            mode=mode,
        )
        self._active[session_id] = session
        logger.info(f"Created session {session_id} (cwd={session.cwd}, mode={mode.value})")
        return session

    def get(self, session_id: str) -> ClineSession:
        """Get a session by ID.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        session = self._active.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def find(self, session_id: str) -> ClineSession | None:
        """Get a session by ID, or None if it does not exist."""
        return self._active.get(session_id)

    def set_mode(self, session_id: str, mode: SessionMode | str) -> ClineSession:
        """Record the session's mode. Does not contact Cline."""
        session = self.get(session_id)
        session.mode = SessionMode(mode)
        return session

    def set_cancelled(self, session_id: str, cancelled: bool = True) -> ClineSession:
        session = self.get(session_id)
        session.cancelled = cancelled
        return session

    def close(self, session_id: str) -> bool:
        """Drop a session. Returns False if it was not registered."""
        session = self._active.pop(session_id, None)
        if session is None:
            return False
        logger.info(f"Closed session {session_id} (turns={session.turn_count})")
        return True

    def list_sessions(self) -> list[dict[str, Any]]:
        return [session.to_dict() for session in self._active.values()]

    def __len__(self) -> int:
        return len(self._active)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._active
