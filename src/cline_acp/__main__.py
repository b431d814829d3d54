"""ACP agent entry point with stdio isolation.

stdout is reserved for JSON-RPC frames, so the stdout filter and stderr
logging are installed before the agent (and everything it imports) loads.

Usage:
    python -m cline_acp
"""

from __future__ import annotations

# =============================================================================
# Install stdout protection FIRST, before importing the agent
# =============================================================================
from .config import AgentConfig
from .stdio import isolate_stdio

_config = AgentConfig.from_env()
isolate_stdio(verbose=_config.verbose, log_file=_config.log_file)

# =============================================================================
# Now it's safe to import the agent module
# =============================================================================

import asyncio  # noqa: E402
import logging  # noqa: E402

from .acp.agent import run_stdio_agent  # noqa: E402


def main() -> None:
    """Run the ACP agent with stdio transport."""
    logging.getLogger(__name__).info("Starting Cline ACP agent (stdio mode)")
    try:
        asyncio.run(run_stdio_agent(_config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
