"""MCP surface for the session engine."""
from .server import WAKE_TOOL_NAMES, build_mcp_server, register_tools
from .tools import WakeTools

__all__ = [
    "WAKE_TOOL_NAMES",
    "WakeTools",
    "build_mcp_server",
    "register_tools",
]
