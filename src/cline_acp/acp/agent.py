"""ACP Agent implementation backed by a Cline instance.

This module provides an ACP-compliant agent that drives Cline over gRPC.
It uses the official ACP Python SDK's Agent interface for protocol handling.

Key pattern from SDK examples:
1. Agent stores connection via on_connect()
2. Agent uses conn.session_update() to stream updates
3. run_agent() handles transport setup for stdio

Each prompt turn submits the user's text to Cline, then feeds Cline's state
stream through the SnapshotDifferencer until Cline waits for the user,
completes, or the turn is cancelled.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from acp import (  # type: ignore[import-untyped]
    PROTOCOL_VERSION,
    Agent,
    Client,
    RequestError,
    text_block,
    update_agent_message,
)
from acp.schema import (  # type: ignore[import-untyped]
    AgentCapabilities,
    AudioContentBlock,
    AuthenticateResponse,
    AuthMethod,
    ClientCapabilities,
    EmbeddedResourceContentBlock,
    HttpMcpServer,
    ImageContentBlock,
    Implementation,
    InitializeResponse,
    McpServerStdio,
    ModelInfo,
    NewSessionResponse,
    PromptCapabilities,
    PromptResponse,
    ResourceContentBlock,
    SessionMode,
    SessionModelState,
    SessionModeState,
    SetSessionModelResponse,
    SetSessionModeResponse,
    SseMcpServer,
    TextContentBlock,
)

from .. import __version__
from ..cline.messages import AskResponseType, PlanActMode, Snapshot, snapshot_stream
from ..config import AgentConfig
from ..errors import SessionNotFoundError
from ..session import ClineSession, SessionMode as ClineMode, SessionRegistry
from .approval_bridge import ClineApprovalBridge
from .content_converter import AcpToClineContentConverter
from .differencer import SnapshotDifferencer, TurnState, TurnTracker
from .event_mapper import ClineToAcpEventMapper

if TYPE_CHECKING:
    from ..cline.process_manager import ClineProcessManager
    from .protocols import ClineBackendProtocol

logger = logging.getLogger(__name__)

AGENT_NAME = "cline-acp"

AUTH_METHOD_ID = "cline-api-key"

LIST_SESSIONS_METHOD = "cline/sessions"

AVAILABLE_MODES = [
    SessionMode(id="plan", name="Plan Mode", description="Plan and discuss before taking action"),
    SessionMode(id="act", name="Act Mode", description="Execute tools with manual approval"),
]

# Offered alongside the current model for OpenRouter-backed providers
COMMON_MODELS = (
    "anthropic/claude-sonnet-4",
    "anthropic/claude-3.5-sonnet",
    "openai/gpt-4o",
    "google/gemini-2.0-flash-exp",
    "x-ai/grok-3-mini-beta",
)

# Used when Cline's state cannot be read
DEFAULT_MODELS = (
    ("cline", "Cline (Default)"),
    ("anthropic/claude-sonnet-4", "Claude Sonnet 4"),
    ("anthropic/claude-3.5-sonnet", "Claude 3.5 Sonnet"),
)

PromptBlock = (
    TextContentBlock
    | ImageContentBlock
    | AudioContentBlock
    | ResourceContentBlock
    | EmbeddedResourceContentBlock
)


def format_model_name(model_id: str) -> str:
    """Turn "anthropic/claude-sonnet-4" into "Claude Sonnet 4"."""
    name = model_id.split("/")[-1]
    return " ".join(word[:1].upper() + word[1:] for word in name.split("-"))


def build_model_state(state_json: str) -> tuple[SessionModelState, str]:
    """Derive the model list and current mode from Cline's state JSON.

    Returns:
        Tuple of (model state, mode id)
    """
    state = json.loads(state_json or "{}")
    if not isinstance(state, dict):
        state = {}
    api_config = state.get("apiConfiguration") or {}

    provider = api_config.get("planModeApiProvider") or "cline"
    current = api_config.get("planModeOpenRouterModelId") or api_config.get("apiModelId") or provider

    model_ids = [current]
    if provider in ("openrouter", "cline"):
        model_ids.extend(m for m in COMMON_MODELS if m != current)

    models = SessionModelState(
        availableModels=[ModelInfo(modelId=m, name=format_model_name(m)) for m in model_ids],
        currentModelId=current,
    )
    mode = ClineMode.ACT.value if state.get("mode") == "act" else ClineMode.PLAN.value
    return models, mode


def default_model_state() -> SessionModelState:
    return SessionModelState(
        availableModels=[ModelInfo(modelId=m, name=name) for m, name in DEFAULT_MODELS],
        currentModelId=DEFAULT_MODELS[0][0],
    )


class ClineAgent(Agent):
    """ACP Agent implementation backed by a Cline instance.

    Usage:
        # For stdio transport
        from acp import run_agent
        await run_agent(ClineAgent())

        # With an injected backend (tests, embedding)
        agent = ClineAgent(backend=fake_backend)
    """

    def __init__(
        self,
        config: AgentConfig | None = None,
        backend: ClineBackendProtocol | None = None,
        process_manager: ClineProcessManager | None = None,
        registry: SessionRegistry | None = None,
    ) -> None:
        """Initialize the agent.

        Args:
            config: Agent configuration (environment defaults when omitted)
            backend: Pre-connected Cline backend; skips discovery when given
            process_manager: Process manager used to find or start Cline
            registry: Session registry (a fresh one when omitted)
        """
        self._config = config or AgentConfig.from_env()
        self._backend = backend
        self._owns_backend = False
        self._process_manager = process_manager
        self._sessions = registry or SessionRegistry()
        self._mapper = ClineToAcpEventMapper()
        self._converter = AcpToClineContentConverter()
        self._conn: Client | None = None
        self._client_capabilities: ClientCapabilities | None = None

    @property
    def sessions(self) -> SessionRegistry:
        return self._sessions

    def on_connect(self, conn: Client) -> None:
        """Store the connection for sending updates.

        This is called by the SDK when a client connects.
        """
        self._conn = conn
        logger.info("ACP client connected")

    async def initialize(
        self,
        protocol_version: int,
        client_capabilities: ClientCapabilities | None = None,
        client_info: Implementation | None = None,
        **kwargs: Any,
    ) -> InitializeResponse:
        """Handle initialize request from client.

        Connects to Cline (reusing or starting an instance) unless a backend
        was injected or auto-start is disabled.
        """
        self._client_capabilities = client_capabilities

        client_name = "unknown"
        if client_info:
            if isinstance(client_info, dict):
                client_name = client_info.get("name", "unknown")
            elif hasattr(client_info, "name"):
                client_name = client_info.name

        logger.info(f"ACP initialized: protocol_version={protocol_version}, client={client_name}")

        if self._backend is None and self._config.auto_start:
            await self._connect_backend()

        return InitializeResponse(
            protocolVersion=PROTOCOL_VERSION,
            agentInfo=Implementation(
                name=AGENT_NAME,
                version=__version__,
            ),
            agentCapabilities=AgentCapabilities(
                promptCapabilities=PromptCapabilities(
                    audio=False,
                    embeddedContext=True,
                    image=True,
                ),
            ),
            authMethods=[
                AuthMethod(
                    id=AUTH_METHOD_ID,
                    name="API Key",
                    description="Configure your API key for the AI provider",
                ),
            ],
        )

    async def _connect_backend(self) -> None:
        from ..cline.grpc_client import ClineGrpcClient
        from ..cline.process_manager import ClineProcessManager

        address = self._config.address
        if not address:
            if self._process_manager is None:
                self._process_manager = ClineProcessManager(
                    cline_path=self._config.cline_path,
                    use_existing=self._config.use_existing,
                    proto_dir=self._config.proto_dir,
                )
            instance = await self._process_manager.start_instance()
            address = instance.address

        self._backend = ClineGrpcClient.connect(address, self._config.proto_dir)
        self._owns_backend = True
        logger.info(f"Connected to Cline at {address}")

    async def new_session(
        self,
        cwd: str,
        mcp_servers: list[HttpMcpServer | SseMcpServer | McpServerStdio],
        **kwargs: Any,
    ) -> NewSessionResponse:
        """Create a new session.

        The Cline task is created lazily on the first prompt: an empty task
        makes Cline answer with a "task is empty" message.
        """
        models = default_model_state()
        mode = ClineMode.PLAN.value

        if self._backend is not None:
            try:
                models, mode = build_model_state(await self._backend.get_latest_state())
            except Exception as e:
                logger.warning(f"Could not read Cline state, using default models: {e}")

        session = self._sessions.create(cwd=cwd, mode=ClineMode(mode))

        return NewSessionResponse(
            sessionId=session.session_id,
            modes=SessionModeState(
                availableModes=AVAILABLE_MODES,
                currentModeId=mode,
            ),
            models=models,
        )

    async def prompt(
        self,
        prompt: list[PromptBlock],
        session_id: str,
        **kwargs: Any,
    ) -> PromptResponse:
        """Process a prompt and stream responses back.

        This is the main entry point for user prompts. It:
        1. Converts the prompt blocks to Cline's text + file format
        2. Starts the Cline task (first turn) or answers its ask (later turns)
        3. Streams the differenced state updates via conn.session_update()
        """
        session = self._require_session(session_id)
        converted = self._converter.convert(prompt)

        session.cancelled = False
        session.turn_count += 1

        state: TurnState | None = None
        if self._backend is not None:
            state = await self._run_turn(session, self._backend, converted.text, converted.images, converted.files)

        # Always send at least one update so the client sees the turn end
        if self._conn is not None:
            await self._conn.session_update(session_id, update_agent_message(text_block("")))

        cancelled = session.cancelled or state is TurnState.TERMINATED_BY_CANCEL
        return PromptResponse(stopReason="cancelled" if cancelled else "end_turn")

    async def _run_turn(
        self,
        session: ClineSession,
        backend: ClineBackendProtocol,
        text: str,
        images: list[str],
        files: list[str],
    ) -> TurnState:
        # Messages from earlier turns must not be replayed
        existing: set[int] = set()
        if session.task_created:
            existing = Snapshot.from_state_json(await backend.get_latest_state()).timestamps()

        if not session.task_created:
            session.task_id = await backend.new_task(text, images, files)
            session.task_created = True
        else:
            await backend.ask_response(AskResponseType.MESSAGE_RESPONSE, text, images, files)

        if self._conn is None:
            logger.warning(f"No ACP client connected, not streaming session {session.session_id}")
            return TurnState.TERMINATED_BY_ERROR

        conn = self._conn
        differencer = SnapshotDifferencer(TurnTracker.for_turn(text, existing), self._mapper)
        approvals = ClineApprovalBridge(
            session.session_id,
            lambda: self._conn,
            backend,
            self._mapper,
        )
        state = await differencer.run(
            session,
            snapshot_stream(backend.subscribe_to_state()),
            conn,
            approvals,
        )

        telemetry = session.telemetry
        logger.info(
            f"Session {session.session_id} totals: ${telemetry.cost:.4f}, "
            f"{telemetry.tokens_in} in / {telemetry.tokens_out} out tokens"
        )
        return state

    async def cancel(self, session_id: str, **kwargs: Any) -> None:
        """Cancel ongoing execution. Unknown sessions are ignored."""
        session = self._sessions.find(session_id)
        if session is None:
            return

        session.cancelled = True
        if self._backend is not None:
            await self._backend.cancel_task()
        logger.info(f"Cancelled session: {session_id}")

    async def set_session_mode(
        self,
        mode_id: str,
        session_id: str,
        **kwargs: Any,
    ) -> SetSessionModeResponse | None:
        """Switch Cline between Plan and Act mode."""
        self._require_session(session_id)
        try:
            mode = ClineMode(mode_id)
        except ValueError as e:
            raise RequestError.invalid_params({"modeId": mode_id, "message": f"Unknown mode: {mode_id}"}) from e

        if self._backend is not None:
            await self._backend.toggle_plan_act_mode(PlanActMode[mode.name])

        self._sessions.set_mode(session_id, mode)
        logger.info(f"Set mode to '{mode.value}' for session {session_id}")
        return SetSessionModeResponse()

    async def set_session_model(
        self,
        model_id: str,
        session_id: str,
        **kwargs: Any,
    ) -> SetSessionModelResponse | None:
        """Change the model used by Cline."""
        self._require_session(session_id)
        if self._backend is not None:
            await self._backend.update_settings(model_id)
        logger.info(f"Set model to '{model_id}' for session {session_id}")
        return SetSessionModelResponse()

    async def authenticate(
        self,
        method_id: str,
        **kwargs: Any,
    ) -> AuthenticateResponse | None:
        """Handle authentication.

        Credentials are configured in Cline itself (cline auth), so there is
        nothing to do here.
        """
        logger.info(f"Auth requested: {method_id}")
        return AuthenticateResponse()

    async def ext_method(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        """Handle extension methods.

        `cline/sessions` returns every active session with its mode, turn
        count and telemetry. Other methods return an empty result.
        """
        logger.info(f"Extension method: {method}")
        if method == LIST_SESSIONS_METHOD:
            return {"sessions": self._sessions.list_sessions()}
        return {}

    async def ext_notification(self, method: str, params: dict[str, Any]) -> None:
        """Handle extension notifications."""
        logger.info(f"Extension notification: {method}")

    async def shutdown(self) -> None:
        """Close the Cline channel and stop any instance this agent started."""
        if self._backend is not None and self._owns_backend:
            await self._backend.close()
            self._backend = None
        if self._process_manager is not None:
            await self._process_manager.stop_instance()

    def _require_session(self, session_id: str) -> ClineSession:
        try:
            return self._sessions.get(session_id)
        except SessionNotFoundError as e:
            logger.error(str(e))
            raise RequestError.invalid_params({"sessionId": session_id, "message": str(e)}) from e


# Entry point for stdio mode
async def run_stdio_agent(config: AgentConfig | None = None) -> None:
    """Run the Cline agent over stdio using the official SDK.

    Usage:
        python -m cline_acp
    """
    from acp import run_agent  # type: ignore[import-untyped]

    agent = ClineAgent(config)
    logger.info("Starting Cline ACP agent (stdio mode)")
    try:
        await run_agent(agent)
    finally:
        await agent.shutdown()
