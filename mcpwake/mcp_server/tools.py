"""MCP tool implementations for waking agent sessions.

WakeTools wraps a SessionRegistry. Each handler returns the MCP text
content shape; engine errors are converted to error results here so the
registry never has to know about the transport. Payloads are JSON text.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from ..engine.errors import WakeError
from ..engine.registry import SessionRegistry

logger = logging.getLogger(__name__)


def _text(text: str) -> dict[str, Any]:
    """Format a successful text response."""
    return {"content": [{"type": "text", "text": text}]}


def _json(payload: dict[str, Any]) -> dict[str, Any]:
    return _text(json.dumps(payload, indent=2))


def _error(text: str) -> dict[str, Any]:
    """Format an error response."""
    return {
        "content": [{"type": "text", "text": f"ERROR: {text}"}],
        "is_error": True,
    }


class WakeTools:
    """Tool handlers bound to one SessionRegistry."""

    def __init__(self, registry: SessionRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    async def list_projects(self) -> dict[str, Any]:
        projects = [p.to_dict() for p in self._registry.list_projects()]
        return _json({"projects": projects})

    async def wake_session(
        self,
        project: str,
        task: str,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        project = str(project or "").strip()
        task = str(task or "").strip()
        if not project:
            return _error("project is required")
        if not task:
            return _error("task is required")
        if timeout is not None and timeout < 0:
            return _error("timeout must be non-negative")

        try:
            session = await self._registry.spawn(project, task, timeout_seconds=timeout)
        except WakeError as exc:
            logger.warning("wake_session failed: project=%s error=%s", project, exc)
            return _error(str(exc))

        return _json({
            "status": "success",
            "sessionId": session.session_id,
            "viewerUrl": session.viewer_url,
            "project": session.project,
            "pid": session.pid,
        })

    async def session_status(
        self,
        session_id: str,
        from_index: int = 0,
    ) -> dict[str, Any]:
        try:
            snapshot = self._registry.get_events(session_id, from_index)
        except WakeError as exc:
            return _error(str(exc))
        return _json(snapshot.to_dict())

    async def list_sessions(self) -> dict[str, Any]:
        return _json({"sessions": self._registry.list_sessions()})

    async def kill_session(self, session_id: str) -> dict[str, Any]:
        try:
            self._registry.kill(session_id)
        except WakeError as exc:
            return _error(str(exc))
        return _json({"status": "success", "sessionId": session_id})
