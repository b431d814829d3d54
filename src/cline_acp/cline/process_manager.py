"""Cline instance discovery and lifecycle, via the cline CLI.

Instances are listed with `cline instance list --output-format plain`,
created with `cline instance new` and stopped with `cline instance kill`.
Pre-existing instances are reused when reachable and never killed.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..errors import ClineProcessError
from .grpc_client import wait_for_grpc_ready

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^(localhost|127\.0\.0\.1):\d+$")
_ADDRESS_IN_TEXT_RE = re.compile(r"(localhost|127\.0\.0\.1):\d+")

DEFAULT_MARKER = "✓"
PID_COLUMN = 4

EXISTING_READY_TIMEOUT = 5.0
NEW_READY_TIMEOUT = 30.0
CLI_TIMEOUT = 30.0
KILL_TIMEOUT = 10.0

ReadyCheck = Callable[[str, float], Awaitable[bool]]


@dataclass(frozen=True)
class InstanceInfo:
    """One row of `cline instance list`."""

    address: str
    pid: int
    is_default: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"address": self.address, "pid": self.pid, "is_default": self.is_default}


@dataclass(frozen=True)
class ClineInstance:
    """The instance the agent is connected to."""

    address: str
    pid: int
    existing: bool = False


def parse_instance_list(output: str) -> list[InstanceInfo]:
    """Parse the plain-text instance table.

    Example:
        ADDRESS          STATUS   VERSION  LAST SEEN  PID    PLATFORM  DEFAULT
        127.0.0.1:61397  SERVING  3.37.0   12:19:14   66268  CLI       ✓
    """
    instances: list[InstanceInfo] = []
    for line in output.strip().splitlines():
        if not line.strip() or line.startswith("ADDRESS"):
            continue

        parts = line.split()
        if len(parts) <= PID_COLUMN:
            continue

        address = parts[0]
        try:
            pid = int(parts[PID_COLUMN])
        except ValueError:
            continue
        if not _ADDRESS_RE.match(address):
            continue

        instances.append(InstanceInfo(address=address, pid=pid, is_default=DEFAULT_MARKER in line))
    return instances


class ClineProcessManager:
    """Finds, starts and stops the Cline instance backing the agent."""

    def __init__(
        self,
        cline_path: str = "cline",
        use_existing: bool = True,
        proto_dir: str | Path | None = None,
        ready_check: ReadyCheck | None = None,
    ) -> None:
        """Initialize the process manager.

        Args:
            cline_path: Path to the cline CLI binary
            use_existing: Reuse a reachable running instance when available
            proto_dir: Proto directory used by the default readiness check
            ready_check: Optional async (address, timeout) -> bool readiness probe
        """
        self.cline_path = cline_path
        self.use_existing = use_existing
        self._proto_dir = proto_dir
        self._ready_check = ready_check
        self._instance: ClineInstance | None = None

    @property
    def instance(self) -> ClineInstance | None:
        return self._instance

    @property
    def is_running(self) -> bool:
        return self._instance is not None

    @property
    def is_using_existing_instance(self) -> bool:
        return self._instance is not None and self._instance.existing

    async def get_existing_instances(self) -> list[InstanceInfo]:
        """List running instances. CLI failures yield an empty list."""
        try:
            output = await self._run_cline("instance", "list", "--output-format", "plain")
        except ClineProcessError as e:
            logger.debug(f"Could not list Cline instances: {e}")
            return []
        return parse_instance_list(output)

    async def start_instance(self) -> ClineInstance:
        """Connect to a running instance or create a new one.

        Raises:
            ClineProcessError: If a new instance cannot be created or never becomes ready
        """
        if self.use_existing:
            instance = await self._find_reachable_existing()
            if instance is not None:
                self._instance = instance
                return instance

        logger.info("Creating new Cline instance...")
        try:
            output = await self._run_cline("instance", "new", "--output-format", "plain")
        except ClineProcessError as e:
            raise ClineProcessError(f"Failed to create Cline instance: {e}") from e

        match = _ADDRESS_IN_TEXT_RE.search(output)
        if not match:
            raise ClineProcessError(f"Could not parse instance address from output: {output.strip()}")
        address = match.group(0)

        logger.info(f"Waiting for Cline services at {address} to start...")
        if not await self._is_ready(address, NEW_READY_TIMEOUT):
            raise ClineProcessError(
                f"Cline services at {address} failed to start within {NEW_READY_TIMEOUT:.0f} seconds"
            )

        pid = 0
        for info in await self.get_existing_instances():
            if info.address == address:
                pid = info.pid
                break

        self._instance = ClineInstance(address=address, pid=pid, existing=False)
        logger.info(f"Started Cline instance at {address} (pid={pid})")
        return self._instance

    async def stop_instance(self) -> None:
        """Stop the instance if this manager created it."""
        instance = self._instance
        if instance is None:
            return
        self._instance = None

        if instance.existing:
            logger.debug(f"Not stopping pre-existing instance at {instance.address}")
            return

        try:
            await self._run_cline("instance", "kill", instance.address, timeout=KILL_TIMEOUT)
            logger.info(f"Stopped Cline instance at {instance.address}")
        except ClineProcessError as e:
            logger.debug(f"Instance at {instance.address} may have already stopped: {e}")

    async def _find_reachable_existing(self) -> ClineInstance | None:
        instances = await self.get_existing_instances()
        if not instances:
            return None

        info = next((i for i in instances if i.is_default), instances[0])
        logger.info(f"Using existing Cline instance at {info.address}")
        if await self._is_ready(info.address, EXISTING_READY_TIMEOUT):
            return ClineInstance(address=info.address, pid=info.pid, existing=True)

        logger.info(f"Existing instance at {info.address} is not reachable, creating new one...")
        return None

    async def _is_ready(self, address: str, timeout: float) -> bool:
        if self._ready_check is not None:
            return await self._ready_check(address, timeout)
        return await wait_for_grpc_ready(address, timeout, proto_dir=self._proto_dir)

    async def _run_cline(self, *args: str, timeout: float = CLI_TIMEOUT) -> str:
        """Run the cline CLI and return its stdout.

        Raises:
            ClineProcessError: If the binary is missing, times out or exits non-zero
        """
        cmd = [self.cline_path, *args]
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ClineProcessError(f"Could not run {self.cline_path}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except TimeoutError as e:
            process.kill()
            await process.wait()
            raise ClineProcessError(f"{' '.join(cmd)} timed out after {timeout}s") from e

        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise ClineProcessError(f"{' '.join(cmd)} exited with {process.returncode}: {detail}")
        return stdout.decode("utf-8", errors="replace")
