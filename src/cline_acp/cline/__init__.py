"""Cline backend: state model, gRPC client and instance management."""

from .grpc_client import ClineGrpcClient, ProtoRegistry, find_proto_dir, wait_for_grpc_ready
from .messages import (
    AskResponseType,
    ClineAsk,
    ClineMessage,
    ClineSay,
    CostInfo,
    MessageType,
    PlanActMode,
    Snapshot,
    extract_cost_info,
    is_task_complete,
    is_waiting_for_user_input,
    latest_task_progress,
    needs_approval,
    snapshot_stream,
)
from .process_manager import ClineInstance, ClineProcessManager, InstanceInfo, parse_instance_list

__all__ = [
    # Messages
    "AskResponseType",
    "ClineAsk",
    "ClineMessage",
    "ClineSay",
    "CostInfo",
    "MessageType",
    "PlanActMode",
    "Snapshot",
    "extract_cost_info",
    "is_task_complete",
    "is_waiting_for_user_input",
    "latest_task_progress",
    "needs_approval",
    "snapshot_stream",
    # gRPC
    "ClineGrpcClient",
    "ProtoRegistry",
    "find_proto_dir",
    "wait_for_grpc_ready",
    # Process management
    "ClineInstance",
    "ClineProcessManager",
    "InstanceInfo",
    "parse_instance_list",
]
