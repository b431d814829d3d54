"""Cline ACP - Agent Client Protocol bridge for the Cline coding agent."""

__version__ = "0.1.0"
