"""Tests for stdout isolation in stdio mode."""

from __future__ import annotations

import io
import json
import sys

import pytest

from cline_acp.stdio import FILTERED_PREFIX, JsonRpcStdoutFilter, install_stdout_filter, is_jsonrpc_frame


class TestIsJsonRpcFrame:
    """Tests for is_jsonrpc_frame()."""

    def test_request(self) -> None:
        """A JSON-RPC 2.0 object is a frame."""
        assert is_jsonrpc_frame(json.dumps({"jsonrpc": "2.0", "id": 1, "method": "initialize"}))

    @pytest.mark.parametrize(
        "line",
        [
            "INFO starting up",
            "{not json",
            json.dumps({"hello": "world"}),
            json.dumps({"jsonrpc": "1.0"}),
            "[1, 2]",
        ],
    )
    def test_non_frames(self, line: str) -> None:
        """Logs, plain JSON and other versions are not frames."""
        assert not is_jsonrpc_frame(line)


class TestJsonRpcStdoutFilter:
    """Tests for JsonRpcStdoutFilter routing."""

    @pytest.fixture
    def streams(self) -> tuple[io.StringIO, io.StringIO]:
        return io.StringIO(), io.StringIO()

    def test_frames_pass_through(self, streams: tuple[io.StringIO, io.StringIO]) -> None:
        """JSON-RPC frames reach stdout, stripped and newline-terminated."""
        out, err = streams
        stdout_filter = JsonRpcStdoutFilter(out, err)

        stdout_filter.write('  {"jsonrpc": "2.0", "id": 1}  \n')
        assert out.getvalue() == '{"jsonrpc": "2.0", "id": 1}\n'
        assert err.getvalue() == ""

    def test_noise_goes_to_stderr(self, streams: tuple[io.StringIO, io.StringIO]) -> None:
        """Non-frame lines are diverted to stderr with a marker."""
        out, err = streams
        stdout_filter = JsonRpcStdoutFilter(out, err)

        stdout_filter.write("hello from a library\n")
        assert out.getvalue() == ""
        assert err.getvalue() == f"{FILTERED_PREFIX} hello from a library\n"
        assert stdout_filter.filtered_lines == 1

    def test_lines_split_across_writes(self, streams: tuple[io.StringIO, io.StringIO]) -> None:
        """A frame written in pieces is forwarded once complete."""
        out, err = streams
        stdout_filter = JsonRpcStdoutFilter(out, err)

        stdout_filter.write('{"jsonrpc": ')
        assert out.getvalue() == ""
        stdout_filter.write('"2.0"}\nnoise\n')
        assert out.getvalue() == '{"jsonrpc": "2.0"}\n'
        assert "noise" in err.getvalue()

    def test_blank_lines_dropped(self, streams: tuple[io.StringIO, io.StringIO]) -> None:
        """Blank lines reach neither stream."""
        out, err = streams
        JsonRpcStdoutFilter(out, err).write("\n\n   \n")
        assert out.getvalue() == ""
        assert err.getvalue() == ""

    def test_flush_diverts_partial_line(self, streams: tuple[io.StringIO, io.StringIO]) -> None:
        """A pending partial line is never sent to stdout."""
        out, err = streams
        stdout_filter = JsonRpcStdoutFilter(out, err)

        stdout_filter.write("progress 50%")
        stdout_filter.flush()
        assert out.getvalue() == ""
        assert "progress 50%" in err.getvalue()


class TestInstallStdoutFilter:
    """Tests for install_stdout_filter()."""

    def test_skips_streams_without_buffer(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Captured or fake stdouts are left alone."""
        fake = io.StringIO()
        monkeypatch.setattr(sys, "stdout", fake)
        assert install_stdout_filter() is None
        assert sys.stdout is fake

    def test_installs_once(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The filter replaces a real text stream and is not stacked."""
        real = io.TextIOWrapper(io.BytesIO(), encoding="utf-8")
        monkeypatch.setattr(sys, "stdout", real)

        installed = install_stdout_filter()
        assert isinstance(installed, JsonRpcStdoutFilter)
        assert sys.stdout is installed
        assert install_stdout_filter() is None
