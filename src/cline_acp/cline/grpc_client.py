"""gRPC client for a running Cline instance.

Cline's services are described by the .proto files shipped with Cline. They
are compiled at runtime with grpc_tools.protoc into a FileDescriptorSet and
loaded into a protobuf DescriptorPool, so no generated modules are needed.
Requests are built from plain dicts and responses read back as dicts through
protobuf's json_format.

Proto directory lookup order:
1. Explicit proto_dir argument
2. CLINE_ACP_PROTO_DIR environment variable
3. <package>/proto
4. ./proto
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

import grpc
from google.protobuf import descriptor_pb2, descriptor_pool, json_format, message_factory
from google.protobuf.message import Message

from ..errors import ClineConnectionError
from .messages import AskResponseType, PlanActMode

logger = logging.getLogger(__name__)

PROTO_PACKAGE = "cline"
PROTO_FILES = ("cline/task.proto", "cline/state.proto")
PROTO_DIR_ENV = "CLINE_ACP_PROTO_DIR"

TASK_SERVICE = "TaskService"
STATE_SERVICE = "StateService"

READY_POLL_INTERVAL = 0.5


# =============================================================================
# Proto loading
# =============================================================================


def find_proto_dir(explicit: str | Path | None = None) -> Path:
    """Locate the directory containing cline/task.proto.

    Raises:
        ClineConnectionError: If no candidate directory holds the proto files
    """
    candidates: list[Path] = []
    if explicit:
        candidates.append(Path(explicit))
    env_dir = os.environ.get(PROTO_DIR_ENV)
    if env_dir:
        candidates.append(Path(env_dir))
    candidates.append(Path(__file__).resolve().parent.parent / "proto")
    candidates.append(Path.cwd() / "proto")

    for candidate in candidates:
        if (candidate / PROTO_FILES[0]).is_file():
            return candidate

    searched = ", ".join(str(c) for c in candidates)
    raise ClineConnectionError(
        f"Cline proto files not found (searched: {searched}). "
        f"Point {PROTO_DIR_ENV} at the proto/ directory of the Cline repository."
    )


def compile_protos(proto_dir: Path, files: Sequence[str] = PROTO_FILES) -> descriptor_pb2.FileDescriptorSet:
    """Compile .proto files into a FileDescriptorSet with grpc_tools.protoc."""
    from grpc_tools import protoc

    well_known = resources.files("grpc_tools").joinpath("_proto")

    with tempfile.TemporaryDirectory(prefix="cline-acp-") as tmp:
        out = Path(tmp) / "cline.desc"
        args = [
            "grpc_tools.protoc",
            f"-I{proto_dir}",
            f"-I{well_known}",
            f"--descriptor_set_out={out}",
            "--include_imports",
            *files,
        ]
        exit_code = protoc.main(args)
        if exit_code != 0:
            raise ClineConnectionError(f"protoc failed with exit code {exit_code} for {proto_dir}")

        fds = descriptor_pb2.FileDescriptorSet()
        fds.ParseFromString(out.read_bytes())
        return fds


@dataclass(frozen=True)
class RpcMethod:
    """One resolved RPC: its wire path and message classes."""

    path: str
    request_cls: type[Message]
    response_cls: type[Message]
    server_streaming: bool = False


class ProtoRegistry:
    """Cline service descriptors loaded into a private DescriptorPool."""

    def __init__(self, pool: descriptor_pool.DescriptorPool, package: str = PROTO_PACKAGE) -> None:
        self._pool = pool
        self._package = package
        self._methods: dict[tuple[str, str], RpcMethod] = {}

    @classmethod
    def from_file_descriptor_set(
        cls, fds: descriptor_pb2.FileDescriptorSet, package: str = PROTO_PACKAGE
    ) -> ProtoRegistry:
        pool = descriptor_pool.DescriptorPool()
        for file_proto in fds.file:
            pool.AddSerializedFile(file_proto.SerializeToString())
        return cls(pool, package)

    @classmethod
    def from_proto_dir(cls, proto_dir: str | Path | None = None) -> ProtoRegistry:
        return _load_registry(str(find_proto_dir(proto_dir)))

    def method(self, service: str, name: str) -> RpcMethod:
        """Resolve a method of a Cline service.

        Raises:
            ClineConnectionError: If the service or method is not defined
        """
        key = (service, name)
        if key in self._methods:
            return self._methods[key]

        full_service = f"{self._package}.{service}"
        try:
            service_desc = self._pool.FindServiceByName(full_service)
        except KeyError as e:
            raise ClineConnectionError(f"Unknown gRPC service: {full_service}") from e

        method_desc = service_desc.methods_by_name.get(name)
        if method_desc is None:
            raise ClineConnectionError(f"Unknown gRPC method: {full_service}.{name}")

        rpc = RpcMethod(
            path=f"/{full_service}/{name}",
            request_cls=message_factory.GetMessageClass(method_desc.input_type),
            response_cls=message_factory.GetMessageClass(method_desc.output_type),
            server_streaming=method_desc.server_streaming,
        )
        self._methods[key] = rpc
        return rpc


@lru_cache(maxsize=4)
def _load_registry(proto_dir: str) -> ProtoRegistry:
    logger.debug(f"Loading Cline protos from {proto_dir}")
    return ProtoRegistry.from_file_descriptor_set(compile_protos(Path(proto_dir)))


# =============================================================================
# Client
# =============================================================================


class ClineGrpcClient:
    """Async client for Cline's TaskService and StateService.

    Usage:
        client = ClineGrpcClient.connect("127.0.0.1:50051")
        task_id = await client.new_task("Fix the failing test")
        async for state_json in client.subscribe_to_state():
            ...
        await client.close()
    """

    def __init__(
        self,
        address: str,
        registry: ProtoRegistry,
        channel: grpc.aio.Channel | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            address: host:port of the Cline instance
            registry: Loaded Cline service descriptors
            channel: Optional pre-built channel (insecure channel by default)
        """
        self.address = address
        self._registry = registry
        self._channel = channel if channel is not None else grpc.aio.insecure_channel(address)

    @classmethod
    def connect(cls, address: str, proto_dir: str | Path | None = None) -> ClineGrpcClient:
        """Create a client for address, loading the protos from proto_dir."""
        return cls(address, ProtoRegistry.from_proto_dir(proto_dir))

    # =========================================================================
    # TaskService
    # =========================================================================

    async def new_task(
        self,
        text: str,
        images: list[str] | None = None,
        files: list[str] | None = None,
    ) -> str:
        """Start a new task. Returns the task ID."""
        response = await self._unary(
            TASK_SERVICE,
            "newTask",
            {"metadata": {}, "text": text, "images": images or [], "files": files or []},
        )
        task_id = str(response.get("value", ""))
        logger.info(f"Created Cline task {task_id}")
        return task_id

    async def ask_response(
        self,
        response_type: AskResponseType | str,
        text: str = "",
        images: list[str] | None = None,
        files: list[str] | None = None,
    ) -> None:
        """Answer the current ask with a message or an approval button."""
        await self._unary(
            TASK_SERVICE,
            "askResponse",
            {
                "metadata": {},
                "responseType": AskResponseType(response_type).value,
                "text": text,
                "images": images or [],
                "files": files or [],
            },
        )

    async def cancel_task(self) -> None:
        await self._unary(TASK_SERVICE, "cancelTask", {"metadata": {}})

    # =========================================================================
    # StateService
    # =========================================================================

    async def subscribe_to_state(self) -> AsyncIterator[str]:
        """Stream Cline's full state JSON on every change.

        Closing the iterator cancels the underlying RPC.
        """
        rpc = self._registry.method(STATE_SERVICE, "subscribeToState")
        call = self._channel.unary_stream(
            rpc.path,
            request_serializer=rpc.request_cls.SerializeToString,
            response_deserializer=rpc.response_cls.FromString,
        )(_build_request(rpc, {"metadata": {}}))
        try:
            async for response in call:
                yield _state_json(response)
        finally:
            call.cancel()

    async def get_latest_state(self) -> str:
        response = await self._unary_message(STATE_SERVICE, "getLatestState", {"metadata": {}})
        return _state_json(response)

    async def toggle_plan_act_mode(self, mode: PlanActMode | str) -> None:
        """Switch between Plan and Act mode (proto enum names PLAN/ACT)."""
        await self._unary(
            STATE_SERVICE,
            "togglePlanActModeProto",
            {"metadata": {}, "mode": PlanActMode(mode).value},
        )

    async def update_settings(self, api_model_id: str) -> None:
        await self._unary(
            STATE_SERVICE,
            "updateSettings",
            {"metadata": {}, "apiConfiguration": {"apiModelId": api_model_id}},
        )

    async def get_process_info(self) -> dict[str, Any]:
        """Return {"pid": ..., "address": ...} for the connected instance."""
        response = await self._unary(STATE_SERVICE, "getProcessInfo", {"metadata": {}})
        return {"pid": response.get("processId"), "address": self.address}

    async def close(self) -> None:
        await self._channel.close()

    # =========================================================================
    # Transport helpers
    # =========================================================================

    async def _unary(self, service: str, name: str, request: dict[str, Any]) -> dict[str, Any]:
        response = await self._unary_message(service, name, request)
        return json_format.MessageToDict(response)

    async def _unary_message(self, service: str, name: str, request: dict[str, Any]) -> Message:
        rpc = self._registry.method(service, name)
        logger.debug(f"gRPC call {rpc.path}")
        call = self._channel.unary_unary(
            rpc.path,
            request_serializer=rpc.request_cls.SerializeToString,
            response_deserializer=rpc.response_cls.FromString,
        )
        try:
            return await call(_build_request(rpc, request))
        except grpc.aio.AioRpcError as e:
            raise ClineConnectionError(f"{rpc.path} failed: {e.code().name}: {e.details()}") from e


def _build_request(rpc: RpcMethod, request: dict[str, Any]) -> Message:
    # Field sets differ between Cline releases (e.g. metadata)
    return json_format.ParseDict(request, rpc.request_cls(), ignore_unknown_fields=True)


def _state_json(response: Message) -> str:
    return str(json_format.MessageToDict(response).get("stateJson", "") or "")


async def wait_for_grpc_ready(
    address: str,
    timeout: float = 30.0,
    proto_dir: str | Path | None = None,
) -> bool:
    """Poll getProcessInfo until the instance answers or timeout elapses."""
    registry = ProtoRegistry.from_proto_dir(proto_dir)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while loop.time() < deadline:
        client = ClineGrpcClient(address, registry)
        try:
            await client.get_process_info()
            return True
        except ClineConnectionError:
            await asyncio.sleep(READY_POLL_INTERVAL)
        finally:
            await client.close()

    logger.warning(f"Cline gRPC server at {address} not ready after {timeout}s")
    return False
