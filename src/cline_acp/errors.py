"""Cline ACP exceptions."""

from __future__ import annotations


class ClineAcpError(Exception):
    """Base class for cline-acp errors."""


class SessionNotFoundError(ClineAcpError, KeyError):
    """Raised when an operation references an unknown session id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Session not found: {self.session_id}"


class ClineConnectionError(ClineAcpError):
    """Raised when the Cline gRPC services cannot be reached or loaded."""


class ClineProcessError(ClineAcpError):
    """Raised when a Cline instance cannot be discovered or started."""
