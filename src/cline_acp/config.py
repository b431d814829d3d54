"""Runtime configuration for the Cline ACP agent.

Values come from CLINE_ACP_* environment variables; CLI flags override them.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

ENV_PREFIX = "CLINE_ACP_"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _env(name: str) -> str | None:
    value = os.environ.get(f"{ENV_PREFIX}{name}")
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_flag(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    lowered = value.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean for {ENV_PREFIX}{name}: {value!r}")


@dataclass(frozen=True)
class AgentConfig:
    """Configuration for connecting the agent to a Cline instance.

    Attributes:
        cline_path: Path to the cline CLI binary (resolved from PATH by default)
        address: host:port of a running Cline instance; skips discovery when set
        proto_dir: Directory holding the Cline .proto files
        use_existing: Reuse a running Cline instance when one is available
        auto_start: Connect to (or start) Cline during initialize
        verbose: Enable debug logging
        log_file: Optional file that receives a copy of all log output
    """

    cline_path: str = "cline"
    address: str | None = None
    proto_dir: Path | None = None
    use_existing: bool = True
    auto_start: bool = True
    verbose: bool = False
    log_file: Path | None = None

    @classmethod
    def from_env(cls) -> AgentConfig:
        """Build a config from CLINE_ACP_* environment variables."""
        proto_dir = _env("PROTO_DIR")
        log_file = _env("LOG_FILE")
        return cls(
            cline_path=_env("CLINE_PATH") or "cline",
            address=_env("ADDRESS"),
            proto_dir=Path(proto_dir) if proto_dir else None,
            use_existing=_env_flag("USE_EXISTING", True),
            auto_start=_env_flag("AUTO_START", True),
            verbose=_env_flag("VERBOSE", False),
            log_file=Path(log_file) if log_file else None,
        )

    def with_overrides(self, **overrides: Any) -> AgentConfig:
        """Return a copy with every non-None override applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes)


def configure_logging(verbose: bool = False, log_file: Path | None = None) -> None:
    """Route all logging to stderr (and optionally a file).

    stdout is reserved for JSON-RPC frames in stdio mode, so no handler may
    ever write there.
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Loggers configured by earlier imports must propagate to root instead
    for name in list(logging.Logger.manager.loggerDict):
        named = logging.getLogger(name)
        for handler in named.handlers[:]:
            named.removeHandler(handler)
        named.propagate = True

    formatter = logging.Formatter(LOG_FORMAT)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(formatter)
    root_logger.addHandler(stderr_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
