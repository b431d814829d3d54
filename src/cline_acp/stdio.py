"""stdout isolation for the stdio ACP transport.

In stdio mode stdout carries JSON-RPC frames and nothing else. Anything else
written there (a stray print, a library banner, a misconfigured logger)
corrupts the protocol stream on the client side. This module replaces
sys.stdout with a filter that forwards only JSON-RPC frames and diverts every
other line to stderr.

Install it before importing anything that might write to stdout:

    from cline_acp.stdio import isolate_stdio
    isolate_stdio()
"""

from __future__ import annotations

import io
import json
import sys
import threading
from pathlib import Path
from typing import TextIO

FILTERED_PREFIX = "[stdout-filtered]"


def is_jsonrpc_frame(line: str) -> bool:
    """Whether a line is a JSON-RPC 2.0 message."""
    if not line.startswith("{"):
        return False
    try:
        payload = json.loads(line)
    except ValueError:
        return False
    return isinstance(payload, dict) and payload.get("jsonrpc") == "2.0"


class JsonRpcStdoutFilter(io.TextIOBase):
    """A stdout replacement that only lets JSON-RPC frames through.

    Output is buffered until a newline; each complete line is either written
    to the real stdout (a JSON-RPC frame) or to stderr with a marker. Blank
    lines are dropped: clients parse stdout line by line.
    """

    def __init__(self, real_stdout: TextIO, stderr: TextIO) -> None:
        super().__init__()
        self._real_stdout = real_stdout
        self._stderr = stderr
        self._lock = threading.Lock()
        self._pending = ""
        self.filtered_lines = 0

    def writable(self) -> bool:
        return True

    def write(self, data: str) -> int:
        if not data:
            return 0
        with self._lock:
            self._pending += data
            *lines, self._pending = self._pending.split("\n")
            for line in lines:
                self._route(line)
        return len(data)

    def _route(self, line: str) -> None:
        stripped = line.strip()
        if not stripped:
            return
        if is_jsonrpc_frame(stripped):
            self._real_stdout.write(stripped + "\n")
            self._real_stdout.flush()
            return
        self.filtered_lines += 1
        self._stderr.write(f"{FILTERED_PREFIX} {line}\n")
        self._stderr.flush()

    def flush(self) -> None:
        # A trailing partial line is never a complete frame
        with self._lock:
            if self._pending.strip():
                self.filtered_lines += 1
                self._stderr.write(f"{FILTERED_PREFIX} {self._pending}\n")
            self._pending = ""
        self._real_stdout.flush()
        self._stderr.flush()

    def fileno(self) -> int:
        return self._real_stdout.fileno()

    @property
    def encoding(self) -> str:  # type: ignore[override]
        return getattr(self._real_stdout, "encoding", None) or "utf-8"


def install_stdout_filter() -> JsonRpcStdoutFilter | None:
    """Replace sys.stdout with a JsonRpcStdoutFilter.

    Returns:
        The installed filter, or None when stdout is not a real text stream
        or a filter is already installed
    """
    if isinstance(sys.stdout, JsonRpcStdoutFilter) or not hasattr(sys.stdout, "buffer"):
        return None
    stdout_filter = JsonRpcStdoutFilter(sys.stdout, sys.stderr)
    sys.stdout = stdout_filter  # type: ignore[assignment]
    return stdout_filter


def isolate_stdio(verbose: bool = False, log_file: Path | None = None) -> None:
    """Install the stdout filter and route all logging to stderr.

    Order matters: the filter goes in first so it catches anything written
    while logging is being reconfigured.
    """
    from .config import configure_logging

    install_stdout_filter()
    configure_logging(verbose=verbose, log_file=log_file)
