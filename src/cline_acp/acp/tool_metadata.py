"""Shared tool metadata for ACP integration.

This module is the single source of truth for turning a Cline tool payload
into ACP display information (title, kind, locations, content). It is used by
both the event mapper and the approval bridge.

Cline serializes tool requests as JSON in the message text, e.g.:
    {"tool": "readFile", "path": "src/a.ts", "content": "/abs/src/a.ts"}
    {"tool": "editedExistingFile", "path": "a.ts", "diff": "@@ ..."}

The `content` field is overloaded: for some tools it is the resolved absolute
path, for others it is a content preview. Anything starting with "/" is
treated as a path.
"""

from __future__ import annotations

import json
import posixpath
from dataclasses import dataclass, field
from typing import Any

from acp.schema import (  # type: ignore[import-untyped]
    ContentToolCallContent,
    FileEditToolCallContent,
    TextContentBlock,
    ToolCallLocation,
)

UNKNOWN_TOOL = "unknown"
UNKNOWN_TOOL_TITLE = "Unknown Tool"


@dataclass(frozen=True)
class ToolDescriptor:
    """Structured view of a Cline tool payload.

    Attributes:
        type: Cline tool tag (readFile, execute_command, ...) or "unknown"
        title: Human-readable title for display in the IDE
        input: The parsed payload, forwarded as the ACP raw input
        path: Resolved target path, if any
        line: Target line, if any
        content: Inline content preview, if any
        diff: Unified diff text, if any
    """

    type: str
    title: str
    input: dict[str, Any] = field(default_factory=dict)
    path: str | None = None
    line: int | None = None
    content: str | None = None
    diff: str | None = None

    @property
    def is_unknown(self) -> bool:
        return self.type == UNKNOWN_TOOL

    @property
    def kind(self) -> str:
        return get_tool_kind(self.type)


# =============================================================================
# Tool Kind Registry
# =============================================================================

TOOL_KINDS: dict[str, str] = {
    # File reads
    "read_file": "read",
    "readFile": "read",
    # File edits
    "write_to_file": "edit",
    "writeToFile": "edit",
    "replace_in_file": "edit",
    "replaceInFile": "edit",
    "newFileCreated": "edit",
    "editedExistingFile": "edit",
    # Execution
    "execute_command": "execute",
    # Search and listing
    "search_files": "search",
    "searchFiles": "search",
    "list_files": "search",
    "listFilesTopLevel": "search",
    "listFilesRecursive": "search",
    "list_code_definition_names": "search",
    "listCodeDefinitionNames": "search",
    # Web
    "browser_action": "fetch",
    "web_fetch": "fetch",
    "webFetch": "fetch",
    # Interaction
    "ask_followup_question": "other",
}


def get_tool_kind(tool_type: str) -> str:
    """Get the ACP tool kind for a Cline tool tag.

    Example:
        >>> get_tool_kind("read_file")
        'read'
        >>> get_tool_kind("someNewTool")
        'other'
    """
    return TOOL_KINDS.get(tool_type, "other")


def register_tool_kind(tool_type: str, kind: str) -> None:
    """Register the ACP kind for a tool tag not covered by the built-in table."""
    TOOL_KINDS[tool_type] = kind


# =============================================================================
# Payload parsing
# =============================================================================


def parse_tool_descriptor(text: str | None, workspace_root: str | None = None) -> ToolDescriptor:
    """Parse a Cline tool payload into a ToolDescriptor.

    Never raises: unparsable payloads yield an "unknown" descriptor.

    Args:
        text: The message text, expected to be a JSON object
        workspace_root: Primary workspace root used to resolve relative paths

    Returns:
        The parsed descriptor
    """
    try:
        data = json.loads(text or "")
    except ValueError:
        return _unknown_descriptor()
    if not isinstance(data, dict):
        return _unknown_descriptor()

    tool_type = data.get("tool")
    if not isinstance(tool_type, str) or not tool_type:
        tool_type = UNKNOWN_TOOL

    raw_path = _str_field(data, "path")
    raw_content = _str_field(data, "content")
    command = _str_field(data, "command")

    if raw_path:
        title = f"{tool_type} {raw_path}"
    elif command:
        title = f"{tool_type}: {command}"
    else:
        title = tool_type

    line = data.get("line")
    if not _is_int(line):
        line = data.get("startLine")
    if not _is_int(line):
        line = None

    return ToolDescriptor(
        type=tool_type,
        title=title,
        input=data,
        path=_resolve_path(raw_path, raw_content, workspace_root),
        line=line,
        content=raw_content if raw_content and not _looks_absolute(raw_content) else None,
        diff=_str_field(data, "diff"),
    )


def describe_command(command_text: str | None) -> ToolDescriptor:
    """Build a descriptor for a command approval request.

    Command asks carry the raw command line rather than JSON.
    """
    command = command_text or ""
    return ToolDescriptor(
        type="execute_command",
        title=command or "command",
        input={"command": command},
    )


def _resolve_path(
    raw_path: str | None, raw_content: str | None, workspace_root: str | None
) -> str | None:
    # An absolute path in `content` is the resolved form of `path`
    if raw_content and _looks_absolute(raw_content):
        return raw_content
    if not raw_path:
        return None
    if _looks_absolute(raw_path) or not workspace_root:
        return raw_path

    root = workspace_root.rstrip("/") or "/"
    if raw_path == posixpath.basename(root):
        return root
    return posixpath.join(root, raw_path)


def _unknown_descriptor() -> ToolDescriptor:
    return ToolDescriptor(type=UNKNOWN_TOOL, title=UNKNOWN_TOOL_TITLE)


def _str_field(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    return value if isinstance(value, str) and value else None


def _looks_absolute(value: str) -> bool:
    return value.startswith("/")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


# =============================================================================
# ACP builders
# =============================================================================


def tool_call_locations(descriptor: ToolDescriptor) -> list[ToolCallLocation]:
    """Locations for a tool call: one entry when the target path is known."""
    if not descriptor.path:
        return []
    return [ToolCallLocation(path=descriptor.path, line=descriptor.line)]


def tool_call_content(
    descriptor: ToolDescriptor,
) -> list[ContentToolCallContent | FileEditToolCallContent]:
    """Content for a tool call: the diff (when resolvable) then the inline preview."""
    content: list[ContentToolCallContent | FileEditToolCallContent] = []

    if descriptor.diff and descriptor.path:
        content.append(
            FileEditToolCallContent(
                type="diff",
                path=descriptor.path,
                new_text=descriptor.diff,
            )
        )

    if descriptor.content:
        content.append(
            ContentToolCallContent(
                type="content",
                content=TextContentBlock(type="text", text=descriptor.content),
            )
        )

    return content
