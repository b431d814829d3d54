"""Agent Client Protocol (ACP) surface for Cline.

ACP standardizes communication between code editors and AI coding agents.
This package exposes Cline as an ACP agent, so editors like Zed, JetBrains
AI Assistant or Neovim can drive it.

Protocol: JSON-RPC 2.0 over stdio

Types are re-exported from the official agent-client-protocol SDK.
See: https://agentclientprotocol.com
"""

from acp import PROTOCOL_VERSION  # type: ignore[import-untyped]
from acp.schema import (  # type: ignore[import-untyped]
    AgentPlanUpdate,
    CurrentModeUpdate,
    PermissionOption,
    PlanEntry,
    ToolCallProgress,
    ToolCallStart,
    ToolCallUpdate,
)

from .agent import ClineAgent, run_stdio_agent
from .approval_bridge import ClineApprovalBridge
from .content_converter import AcpToClineContentConverter, ClinePrompt
from .differencer import DiffResult, SnapshotDifferencer, TurnDecision, TurnState, TurnTracker
from .event_mapper import ClineToAcpEventMapper, parse_task_progress, tool_call_id_for
from .protocols import (
    ACPConnectionProtocol,
    ApprovalHandlerProtocol,
    ClineBackendProtocol,
    ContentConverterProtocol,
    EventMapperProtocol,
)
from .tool_metadata import (
    TOOL_KINDS,
    ToolDescriptor,
    get_tool_kind,
    parse_tool_descriptor,
    register_tool_kind,
)

__all__ = [
    # Agent
    "ClineAgent",
    "run_stdio_agent",
    # Protocol version
    "PROTOCOL_VERSION",
    # Session updates
    "AgentPlanUpdate",
    "CurrentModeUpdate",
    "PlanEntry",
    "ToolCallProgress",
    "ToolCallStart",
    "ToolCallUpdate",
    "PermissionOption",
    # Differencer
    "DiffResult",
    "SnapshotDifferencer",
    "TurnDecision",
    "TurnState",
    "TurnTracker",
    # Event Mapper
    "ClineToAcpEventMapper",
    "parse_task_progress",
    "tool_call_id_for",
    # Approvals
    "ClineApprovalBridge",
    # Content Converter
    "AcpToClineContentConverter",
    "ClinePrompt",
    # Protocols (type safety)
    "ACPConnectionProtocol",
    "ApprovalHandlerProtocol",
    "ClineBackendProtocol",
    "ContentConverterProtocol",
    "EventMapperProtocol",
    # Tool Metadata
    "TOOL_KINDS",
    "ToolDescriptor",
    "get_tool_kind",
    "parse_tool_descriptor",
    "register_tool_kind",
]
