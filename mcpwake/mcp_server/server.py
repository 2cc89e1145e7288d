"""FastMCP server exposing the wake tools.

Tool handlers are closures over a WakeTools instance, so one process
can build several independent servers (tests do).
"""
from __future__ import annotations

from typing import Any

from mcp.server.fastmcp import FastMCP

from .tools import WakeTools

# Tool names exposed to MCP clients (must match @mcp.tool names)
WAKE_TOOL_NAMES = [
    "list_projects",
    "wake_session",
    "session_status",
    "list_sessions",
    "kill_session",
]


def _extract_text(result: dict[str, Any]) -> str:
    """Convert a WakeTools response to a plain string.

    If is_error is set, raise ValueError so FastMCP marks it as error.
    """
    text = result["content"][0]["text"]
    if result.get("is_error"):
        raise ValueError(text.removeprefix("ERROR: "))
    return text


def register_tools(mcp: FastMCP, tools: WakeTools) -> None:
    """Register all wake tools with the FastMCP instance."""

    @mcp.tool(
        name="list_projects",
        description="List the projects an agent session can be started in.",
    )
    async def list_projects() -> str:
        return _extract_text(await tools.list_projects())

    @mcp.tool(
        name="wake_session",
        description=(
            "Start a headless coding-agent session for a configured project. "
            "Returns immediately with the session id and a viewer URL where "
            "the live transcript can be watched. Use session_status to poll "
            "progress and the final result. 'timeout' (seconds) stops the "
            "session if it is still running after that long."
        ),
    )
    async def wake_session(
        project: str,
        task: str,
        timeout: float | None = None,
    ) -> str:
        return _extract_text(await tools.wake_session(project, task, timeout))

    @mcp.tool(
        name="session_status",
        description=(
            "Get a session's status and its normalized events. Pass "
            "fromIndex (the previous totalEvents) to fetch only new events."
        ),
    )
    async def session_status(sessionId: str, fromIndex: int = 0) -> str:
        return _extract_text(await tools.session_status(sessionId, fromIndex))

    @mcp.tool(
        name="list_sessions",
        description="List all known sessions, running and finished.",
    )
    async def list_sessions() -> str:
        return _extract_text(await tools.list_sessions())

    @mcp.tool(
        name="kill_session",
        description=(
            "Terminate a running session. Killing a session that already "
            "finished succeeds without changing it."
        ),
    )
    async def kill_session(sessionId: str) -> str:
        return _extract_text(await tools.kill_session(sessionId))


def build_mcp_server(
    tools: WakeTools,
    name: str = "mcp-wake",
    host: str = "127.0.0.1",
    port: int = 3000,
) -> FastMCP:
    """Create a FastMCP instance with the wake tools registered."""
    mcp = FastMCP(
        name=name,
        instructions=(
            "Tools for starting coding-agent sessions in configured "
            "projects and following their progress. Call list_projects "
            "first, then wake_session with a project and a task. Share "
            "the returned viewerUrl with the user to watch live."
        ),
        host=host,
        port=port,
    )
    register_tools(mcp, tools)
    return mcp
