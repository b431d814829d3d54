"""Tests for tool_metadata - Cline tool payload parsing and ACP builders."""

from __future__ import annotations

import json

import pytest

from cline_acp.acp.tool_metadata import (
    TOOL_KINDS,
    UNKNOWN_TOOL_TITLE,
    ToolDescriptor,
    describe_command,
    get_tool_kind,
    parse_tool_descriptor,
    register_tool_kind,
    tool_call_content,
    tool_call_locations,
)


def payload(**fields: object) -> str:
    return json.dumps(fields)


class TestToolKinds:
    """Tests for the tool kind table."""

    @pytest.mark.parametrize(
        ("tool", "kind"),
        [
            ("read_file", "read"),
            ("readFile", "read"),
            ("editedExistingFile", "edit"),
            ("newFileCreated", "edit"),
            ("execute_command", "execute"),
            ("searchFiles", "search"),
            ("listFilesRecursive", "search"),
            ("web_fetch", "fetch"),
        ],
    )
    def test_known_tools(self, tool: str, kind: str) -> None:
        """Known tool tags map to their ACP kind."""
        assert get_tool_kind(tool) == kind

    def test_unknown_tool_is_other(self) -> None:
        """Unknown tool tags map to "other"."""
        assert get_tool_kind("summonDragon") == "other"

    def test_register_tool_kind(self) -> None:
        """Registered tags are picked up by get_tool_kind."""
        register_tool_kind("fetchTicket", "fetch")
        try:
            assert get_tool_kind("fetchTicket") == "fetch"
        finally:
            TOOL_KINDS.pop("fetchTicket", None)


class TestParseToolDescriptor:
    """Tests for parse_tool_descriptor()."""

    def test_relative_path_without_root(self) -> None:
        """Without a workspace root the path is passed through."""
        descriptor = parse_tool_descriptor(payload(tool="read_file", path="a.ts"))
        assert descriptor.type == "read_file"
        assert descriptor.kind == "read"
        assert descriptor.path == "a.ts"
        assert descriptor.title == "read_file a.ts"

    def test_relative_path_with_root(self) -> None:
        """Relative paths are joined under the workspace root."""
        descriptor = parse_tool_descriptor(payload(tool="read_file", path="src/a.ts"), "/work/proj")
        assert descriptor.path == "/work/proj/src/a.ts"

    def test_trailing_slash_root(self) -> None:
        """A trailing slash on the root does not double up."""
        descriptor = parse_tool_descriptor(payload(tool="read_file", path="a.ts"), "/work/")
        assert descriptor.path == "/work/a.ts"

    def test_path_equal_to_root_basename(self) -> None:
        """A path naming the root directory itself resolves to the root."""
        descriptor = parse_tool_descriptor(payload(tool="listFilesTopLevel", path="proj"), "/work/proj")
        assert descriptor.path == "/work/proj"

    def test_absolute_path_passes_through(self) -> None:
        """Absolute paths are not re-rooted."""
        descriptor = parse_tool_descriptor(payload(tool="read_file", path="/etc/hosts"), "/work")
        assert descriptor.path == "/etc/hosts"

    def test_absolute_content_wins_over_path(self) -> None:
        """An absolute content value is the resolved path, not a preview."""
        descriptor = parse_tool_descriptor(
            payload(tool="readFile", path="a.ts", content="/abs/a.ts"), "/work"
        )
        assert descriptor.path == "/abs/a.ts"
        assert descriptor.content is None

    def test_content_preview(self) -> None:
        """A non-path content value is an inline preview."""
        descriptor = parse_tool_descriptor(
            payload(tool="newFileCreated", path="a.ts", content="export {}"), "/work"
        )
        assert descriptor.content == "export {}"
        assert descriptor.path == "/work/a.ts"

    def test_line_and_start_line(self) -> None:
        """line wins, startLine is the fallback, invalid values are dropped."""
        assert parse_tool_descriptor(payload(tool="t", line=3, startLine=9)).line == 3
        assert parse_tool_descriptor(payload(tool="t", startLine=9)).line == 9
        assert parse_tool_descriptor(payload(tool="t", line="4")).line is None
        assert parse_tool_descriptor(payload(tool="t", line=True)).line is None
        assert parse_tool_descriptor(payload(tool="t", line=-1)).line is None

    def test_diff(self) -> None:
        """The diff field is captured."""
        descriptor = parse_tool_descriptor(payload(tool="editedExistingFile", path="a.ts", diff="@@ -1 +1 @@"))
        assert descriptor.diff == "@@ -1 +1 @@"

    def test_command_title(self) -> None:
        """Payloads without a path are titled with their command."""
        descriptor = parse_tool_descriptor(payload(tool="execute_command", command="ls -la"))
        assert descriptor.title == "execute_command: ls -la"

    def test_bare_tool_title(self) -> None:
        """Payloads without path or command are titled with the tool tag."""
        assert parse_tool_descriptor(payload(tool="listCodeDefinitionNames")).title == "listCodeDefinitionNames"

    def test_raw_input_is_payload(self) -> None:
        """The parsed payload is kept as the raw input."""
        descriptor = parse_tool_descriptor(payload(tool="read_file", path="a.ts"))
        assert descriptor.input == {"tool": "read_file", "path": "a.ts"}

    @pytest.mark.parametrize("text", [None, "", "not json", "[1]", '"str"'])
    def test_malformed_payload_is_unknown(self, text: str | None) -> None:
        """Unparsable payloads yield an unknown descriptor, never an error."""
        descriptor = parse_tool_descriptor(text)
        assert descriptor.is_unknown
        assert descriptor.title == UNKNOWN_TOOL_TITLE
        assert descriptor.kind == "other"

    def test_missing_tool_field(self) -> None:
        """JSON without a tool tag is typed unknown but keeps its fields."""
        descriptor = parse_tool_descriptor(payload(path="a.ts"))
        assert descriptor.is_unknown
        assert descriptor.path == "a.ts"


class TestDescribeCommand:
    """Tests for describe_command()."""

    def test_command_descriptor(self) -> None:
        """Command asks are titled with the raw command line."""
        descriptor = describe_command("npm test")
        assert descriptor.title == "npm test"
        assert descriptor.kind == "execute"
        assert descriptor.input == {"command": "npm test"}

    def test_empty_command(self) -> None:
        """A missing or empty command falls back to a generic title."""
        assert describe_command(None).title == "command"
        assert describe_command("").title == "command"
        assert describe_command(None).input == {"command": ""}


class TestAcpBuilders:
    """Tests for tool_call_locations() and tool_call_content()."""

    def test_locations(self) -> None:
        """A known path yields one location carrying the line."""
        locations = tool_call_locations(ToolDescriptor(type="read_file", title="t", path="/a.ts", line=4))
        assert len(locations) == 1
        assert locations[0].path == "/a.ts"
        assert locations[0].line == 4

    def test_no_path_no_locations(self) -> None:
        """Without a path there are no locations."""
        assert tool_call_locations(ToolDescriptor(type="t", title="t")) == []

    def test_content_diff_then_text(self) -> None:
        """The diff comes first, then the inline preview."""
        content = tool_call_content(
            ToolDescriptor(type="t", title="t", path="/a.ts", diff="@@", content="preview")
        )
        assert [c.type for c in content] == ["diff", "content"]
        assert content[0].path == "/a.ts"
        assert content[0].new_text == "@@"
        assert content[1].content.text == "preview"

    def test_diff_without_path_is_dropped(self) -> None:
        """A diff cannot be shown without a target path."""
        assert tool_call_content(ToolDescriptor(type="t", title="t", diff="@@")) == []
