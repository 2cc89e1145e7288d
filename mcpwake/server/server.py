"""HTTP + WebSocket server for session viewers.

Serves the static viewer page, a WebSocket push stream per session, and
a small JSON REST mirror of the MCP tools. Runs on its own port next to
the MCP transport.

Routes:
    GET  /health
    GET  /viewer                  static viewer page (?session=<id>)
    GET  /ws/sessions/{id}        live event stream
    GET  /projects
    GET  /sessions
    POST /sessions                {project, task, timeout?}
    GET  /sessions/{id}           ?fromIndex=N
    POST /sessions/{id}/kill
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from typing import Any

from aiohttp import WSMsgType, web

from ..engine.errors import (
    AdmissionError,
    ProjectNotFoundError,
    SessionNotFoundError,
    SpawnError,
    TunnelUnavailableError,
    WakeError,
)
from ..engine.registry import SessionRegistry
from ..engine.relay import Subscription
from .viewer import VIEWER_HTML

logger = logging.getLogger(__name__)

# Most specific first.
_ERROR_STATUS: list[tuple[type[WakeError], int]] = [
    (AdmissionError, 429),
    (ProjectNotFoundError, 400),
    (TunnelUnavailableError, 503),
    (SessionNotFoundError, 404),
    (SpawnError, 500),
]


def status_for_error(exc: WakeError) -> int:
    for error_type, status in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


def _error_response(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


class WakeServer:
    """aiohttp application bound to one SessionRegistry."""

    def __init__(
        self,
        registry: SessionRegistry,
        name: str = "mcp-wake",
        host: str = "127.0.0.1",
        port: int = 3001,
    ) -> None:
        self._registry = registry
        self._name = name
        self._host = host
        self._port = port
        self._started_at = time.monotonic()
        self._runner: web.AppRunner | None = None
        self._app = web.Application(middlewares=[self._request_logging_middleware])
        self._setup_routes()

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def port(self) -> int:
        return self._port

    # ── Middleware ──

    @web.middleware
    async def _request_logging_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        req_id = request.headers.get("x-request-id", str(uuid.uuid4())[:8])
        request["req_id"] = req_id
        start = time.monotonic()
        logger.info("HTTP %s %s req=%s from=%s", request.method, request.path_qs, req_id, request.remote)
        try:
            response = await handler(request)
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "HTTP %s %s req=%s status=%s duration_ms=%.1f",
                request.method, request.path_qs, req_id,
                getattr(response, "status", "?"), elapsed_ms,
            )
            return response
        except web.HTTPException:
            raise
        except Exception:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.exception("HTTP %s %s req=%s failed duration_ms=%.1f", request.method, request.path_qs, req_id, elapsed_ms)
            raise

    # ── Route setup ──

    def _setup_routes(self) -> None:
        r = self._app.router
        r.add_get("/health", self._handle_health)
        r.add_get("/viewer", self._handle_viewer)
        r.add_get("/ws/sessions/{id}", self._handle_ws)
        r.add_get("/projects", self._handle_list_projects)
        r.add_get("/sessions", self._handle_list_sessions)
        r.add_post("/sessions", self._handle_create_session)
        r.add_get("/sessions/{id}", self._handle_get_session)
        r.add_post("/sessions/{id}/kill", self._handle_kill_session)

    # ── Lifecycle ──

    async def start(self) -> None:
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        logger.info("Viewer server listening on http://%s:%d", self._host, self._port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Viewer server stopped")

    # ── Handlers ──

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "name": self._name,
            "activeSessions": self._registry.running_count(),
            "maxSessions": self._registry.max_sessions,
            "uptimeSeconds": round(max(0.0, time.monotonic() - self._started_at), 3),
        })

    async def _handle_viewer(self, request: web.Request) -> web.Response:
        return web.Response(text=VIEWER_HTML, content_type="text/html")

    async def _handle_list_projects(self, request: web.Request) -> web.Response:
        return web.json_response({
            "projects": [p.to_dict() for p in self._registry.list_projects()],
        })

    async def _handle_list_sessions(self, request: web.Request) -> web.Response:
        return web.json_response({"sessions": self._registry.list_sessions()})

    async def _handle_create_session(self, request: web.Request) -> web.Response:
        try:
            body = await request.json() if request.can_read_body else {}
        except json.JSONDecodeError:
            return _error_response("Request body must be JSON", 400)
        if not isinstance(body, dict):
            return _error_response("Request body must be a JSON object", 400)

        project = body.get("project")
        task = body.get("task")
        timeout = body.get("timeout")
        if not isinstance(project, str) or not project.strip():
            return _error_response("'project' is required", 400)
        if not isinstance(task, str) or not task.strip():
            return _error_response("'task' is required", 400)
        if timeout is not None and (
            isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout < 0
        ):
            return _error_response("'timeout' must be a non-negative number", 400)

        try:
            session = await self._registry.spawn(project.strip(), task.strip(), timeout_seconds=timeout)
        except WakeError as exc:
            logger.warning("Create session failed req=%s: %s", request.get("req_id", "unknown"), exc)
            return _error_response(str(exc), status_for_error(exc))

        return web.json_response(
            {
                "status": "success",
                "sessionId": session.session_id,
                "viewerUrl": session.viewer_url,
                "project": session.project,
                "pid": session.pid,
            },
            status=201,
        )

    async def _handle_get_session(self, request: web.Request) -> web.Response:
        session_id = request.match_info["id"]
        raw_index = request.query.get("fromIndex", "0")
        try:
            from_index = int(raw_index)
        except ValueError:
            return _error_response(f"Invalid fromIndex: {raw_index}", 400)
        try:
            snapshot = self._registry.get_events(session_id, from_index)
        except WakeError as exc:
            return _error_response(str(exc), status_for_error(exc))
        return web.json_response(snapshot.to_dict())

    async def _handle_kill_session(self, request: web.Request) -> web.Response:
        session_id = request.match_info["id"]
        try:
            self._registry.kill(session_id)
        except WakeError as exc:
            return _error_response(str(exc), status_for_error(exc))
        return web.json_response({"status": "success", "sessionId": session_id})

    # ── WebSocket ──

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        session_id = request.match_info["id"]
        ws = web.WebSocketResponse(heartbeat=30.0)
        await ws.prepare(request)

        try:
            sub = self._registry.subscribe(session_id)
        except WakeError as exc:
            await ws.send_json({"type": "error", "message": str(exc)})
            await ws.close()
            return ws

        logger.info("Viewer connected session=%s req=%s", session_id, request.get("req_id", "unknown"))
        reader = asyncio.create_task(self._read_client(ws, session_id, sub))
        try:
            async for message in sub:
                if ws.closed:
                    break
                await ws.send_json(message)
        except ConnectionResetError:
            logger.info("Viewer connection reset session=%s", session_id)
        finally:
            reader.cancel()
            self._registry.unsubscribe(session_id, sub)
            if not ws.closed:
                await ws.close()
            logger.info(
                "Viewer disconnected session=%s overflowed=%s",
                session_id, sub.overflowed,
            )
        return ws

    async def _read_client(
        self,
        ws: web.WebSocketResponse,
        session_id: str,
        sub: Subscription,
    ) -> None:
        # Viewers are passive; inbound frames only tell us when they leave.
        async for msg in ws:
            if msg.type == WSMsgType.ERROR:
                logger.warning("Viewer socket error session=%s: %s", session_id, ws.exception())
                break
        self._registry.unsubscribe(session_id, sub)
