"""Tests for configuration and logging setup."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from cline_acp.config import AgentConfig, configure_logging


class TestAgentConfig:
    """Tests for AgentConfig."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in (
            "CLINE_PATH",
            "ADDRESS",
            "PROTO_DIR",
            "USE_EXISTING",
            "AUTO_START",
            "VERBOSE",
            "LOG_FILE",
        ):
            monkeypatch.delenv(f"CLINE_ACP_{name}", raising=False)

    def test_defaults(self) -> None:
        """Defaults reuse instances and auto-start."""
        config = AgentConfig.from_env()
        assert config == AgentConfig()
        assert config.cline_path == "cline"
        assert config.use_existing is True
        assert config.auto_start is True

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """CLINE_ACP_* variables populate the config."""
        monkeypatch.setenv("CLINE_ACP_CLINE_PATH", "/opt/cline")
        monkeypatch.setenv("CLINE_ACP_ADDRESS", "127.0.0.1:50051")
        monkeypatch.setenv("CLINE_ACP_PROTO_DIR", "/protos")
        monkeypatch.setenv("CLINE_ACP_USE_EXISTING", "no")
        monkeypatch.setenv("CLINE_ACP_VERBOSE", "1")
        monkeypatch.setenv("CLINE_ACP_LOG_FILE", "/tmp/acp.log")

        config = AgentConfig.from_env()
        assert config.cline_path == "/opt/cline"
        assert config.address == "127.0.0.1:50051"
        assert config.proto_dir == Path("/protos")
        assert config.use_existing is False
        assert config.verbose is True
        assert config.log_file == Path("/tmp/acp.log")

    def test_blank_env_is_unset(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Blank variables are treated as unset."""
        monkeypatch.setenv("CLINE_ACP_ADDRESS", "   ")
        assert AgentConfig.from_env().address is None

    def test_invalid_flag_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Unrecognized booleans are rejected."""
        monkeypatch.setenv("CLINE_ACP_VERBOSE", "maybe")
        with pytest.raises(ValueError, match="CLINE_ACP_VERBOSE"):
            AgentConfig.from_env()

    def test_with_overrides_skips_none(self) -> None:
        """None overrides keep the existing value."""
        config = AgentConfig(address="127.0.0.1:1").with_overrides(address=None, verbose=True)
        assert config.address == "127.0.0.1:1"
        assert config.verbose is True


class TestConfigureLogging:
    """Tests for configure_logging()."""

    @pytest.fixture(autouse=True)
    def restore_root(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_stderr_only(self) -> None:
        """The root logger gets exactly one stderr handler."""
        configure_logging()
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.level == logging.INFO

    def test_verbose(self) -> None:
        """Verbose mode logs at DEBUG."""
        configure_logging(verbose=True)
        assert logging.getLogger().level == logging.DEBUG

    def test_named_loggers_propagate(self) -> None:
        """Handlers on named loggers are removed so output goes to stderr."""
        named = logging.getLogger("cline_acp.test.noisy")
        named.addHandler(logging.NullHandler())
        named.propagate = False

        configure_logging()
        assert named.handlers == []
        assert named.propagate is True

    def test_log_file(self, tmp_path: Path) -> None:
        """A log file handler is added, creating parent directories."""
        log_file = tmp_path / "logs" / "acp.log"
        configure_logging(log_file=log_file)

        logging.getLogger("cline_acp.test").warning("hello file")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "hello file" in log_file.read_text()
