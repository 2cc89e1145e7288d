"""Session registry: spawns, tracks, and kills agent sessions.

Central in-memory table of sessions keyed by generated id. Enforces the
concurrency limit, owns the per-session supervisor and relay, and serves
both consumption modes:

- poll:  get_events() returns normalized events from a raw index.
- push:  subscribe() returns a Subscription fed by the session's relay.

All mutation happens on the event loop. spawn() is the only operation
that suspends between checking and mutating state, so admission and
process creation share one lock.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from typing import Any

from .config import WakeConfig
from .errors import (
    AdmissionError,
    ProjectNotFoundError,
    SessionNotFoundError,
    SpawnError,
)
from .lifecycle import can_transition
from .models import Project, Session, SessionSnapshot, SessionStatus, make_session_id
from .normalizer import RecordKind, classify, normalize_events
from .relay import DEFAULT_MAX_PENDING, LiveRelay, Subscription
from .supervisor import ProcessSupervisor, build_agent_argv
from .tunnel import TunnelLocator

logger = logging.getLogger(__name__)


@dataclass
class _SessionEntry:
    session: Session
    supervisor: ProcessSupervisor
    relay: LiveRelay
    timeout_task: asyncio.Task | None = None


class SessionRegistry:
    """Creates, tracks, and tears down agent sessions.

    Enforces:
    - At most ``max_concurrent_sessions`` running sessions
    - Forward-only status transitions
    - Retention limits on finished sessions
    """

    def __init__(
        self,
        config: WakeConfig,
        tunnel: TunnelLocator | None = None,
        max_pending: int = DEFAULT_MAX_PENDING,
    ) -> None:
        self._config = config
        self._tunnel = tunnel or TunnelLocator(
            api_url=config.tunnel_api_url,
            public_url=config.public_url,
        )
        self._max_pending = max_pending
        self._entries: dict[str, _SessionEntry] = {}
        # Every id ever handed out, including evicted sessions.
        self._issued_ids: set[str] = set()
        self._spawn_lock = asyncio.Lock()
        self._retention_task: asyncio.Task | None = None
        self._shutting_down = False

    # ── Queries ──

    @property
    def config(self) -> WakeConfig:
        return self._config

    @property
    def max_sessions(self) -> int:
        return self._config.max_concurrent_sessions

    def running_count(self) -> int:
        return sum(1 for e in self._entries.values() if e.session.is_running)

    def session_count(self) -> int:
        return len(self._entries)

    def can_spawn(self) -> bool:
        return self.running_count() < self.max_sessions

    def list_projects(self) -> list[Project]:
        return list(self._config.projects)

    def get_session(self, session_id: str) -> Session | None:
        entry = self._entries.get(session_id)
        return entry.session if entry else None

    def list_sessions(self) -> list[dict[str, Any]]:
        return [e.session.summary() for e in self._entries.values()]

    def subscriber_count(self, session_id: str) -> int:
        return self._get_entry(session_id).relay.subscriber_count

    # ── Spawn ──

    async def spawn(
        self,
        project: str,
        task: str,
        timeout_seconds: float | None = None,
    ) -> Session:
        """Start an agent session for *task* in *project*.

        Raises:
            AdmissionError: the running-session limit is reached.
            ProjectNotFoundError: *project* is not configured.
            TunnelUnavailableError: no public viewer URL.
            SpawnError: the process could not be created.
        """
        async with self._spawn_lock:
            if self._shutting_down:
                raise SpawnError("registry is shutting down")
            self.prune()

            if not self.can_spawn():
                logger.warning(
                    "Spawn rejected: %d/%d sessions running",
                    self.running_count(), self.max_sessions,
                )
                raise AdmissionError(self.max_sessions)

            resolved = self._config.get_project(project)
            if resolved is None:
                raise ProjectNotFoundError(project, self._config.project_names)

            base_url = await self._tunnel.resolve()
            session_id = self._new_session_id()

            supervisor = await ProcessSupervisor.start(
                build_agent_argv(self._config.command, task, self._config.extra_args),
                cwd=resolved.path,
                label=session_id,
            )
            session = Session(
                session_id=session_id,
                project=resolved.name,
                project_path=resolved.path,
                task=task,
                pid=supervisor.pid,
                viewer_url=f"{base_url}/viewer?session={session_id}",
            )
            entry = _SessionEntry(
                session=session,
                supervisor=supervisor,
                relay=LiveRelay(session_id, self._max_pending),
            )
            self._entries[session_id] = entry
            supervisor.watch(
                partial(self._append_event, entry),
                partial(self._on_exit, entry),
            )
            if timeout_seconds is not None and timeout_seconds > 0:
                entry.timeout_task = asyncio.create_task(
                    self._timeout_after(entry, timeout_seconds),
                    name=f"timeout-{session_id}",
                )

        logger.info(
            "Session %s spawned: project=%s pid=%d running=%d/%d",
            session_id, resolved.name, session.pid,
            self.running_count(), self.max_sessions,
        )
        return session

    def _new_session_id(self) -> str:
        session_id = make_session_id()
        while session_id in self._issued_ids:
            session_id = make_session_id()
        self._issued_ids.add(session_id)
        return session_id

    # ── Process observers ──

    def _append_event(self, entry: _SessionEntry, raw: dict[str, Any]) -> None:
        session = entry.session
        index = len(session.events)
        session.events.append(raw)
        entry.relay.publish_event(index, raw)
        if session.is_running and classify(raw) is RecordKind.RESULT:
            self._apply_result(entry, raw)

    def _apply_result(self, entry: _SessionEntry, raw: dict[str, Any]) -> None:
        if raw.get("subtype") == "success":
            result = raw.get("result")
            self._transition(
                entry,
                SessionStatus.COMPLETE,
                result=result if isinstance(result, str) else "",
            )
        else:
            error = raw.get("error")
            self._transition(
                entry,
                SessionStatus.ERROR,
                error=str(error) if error else "Unknown error",
            )

    def _on_exit(
        self,
        entry: _SessionEntry,
        returncode: int | None,
        fault: str | None,
    ) -> None:
        session = entry.session
        session.exit_code = returncode
        if entry.timeout_task is not None:
            entry.timeout_task.cancel()
            entry.timeout_task = None

        if session.is_running:
            if fault is not None:
                self._transition(entry, SessionStatus.ERROR, error=fault)
            elif returncode == 0:
                self._transition(entry, SessionStatus.COMPLETE)
            else:
                self._transition(
                    entry,
                    SessionStatus.ERROR,
                    error=f"Process exited with code {returncode}",
                )

        entry.relay.close({
            "type": "disconnected",
            "sessionId": session.session_id,
            "status": session.status.value,
            "exitCode": session.exit_code,
            "error": session.error,
        })

    async def _timeout_after(self, entry: _SessionEntry, seconds: float) -> None:
        await asyncio.sleep(seconds)
        if entry.session.is_running:
            logger.info("Session %s timed out after %ss", entry.session.session_id, seconds)
            self._kill_entry(entry)

    def _transition(
        self,
        entry: _SessionEntry,
        target: SessionStatus,
        result: str | None = None,
        error: str | None = None,
    ) -> bool:
        session = entry.session
        if not can_transition(session.status, target):
            return False
        session.status = target
        session.ended_at = datetime.now(timezone.utc)
        if result is not None:
            session.result = result
        if error is not None:
            session.error = error
        logger.info(
            "Session %s: %s%s",
            session.session_id, target.value,
            f" ({error})" if error else "",
        )
        return True

    # ── Kill ──

    def kill(self, session_id: str) -> Session:
        """Stop a session. Idempotent for already-finished sessions.

        Raises:
            SessionNotFoundError: unknown id.
        """
        entry = self._get_entry(session_id)
        self._kill_entry(entry)
        return entry.session

    def _kill_entry(self, entry: _SessionEntry) -> None:
        session = entry.session
        # Signal even a terminal session: a result record may have
        # arrived before the process actually exited.
        entry.supervisor.terminate(self._config.kill_grace_seconds)
        if not self._transition(entry, SessionStatus.COMPLETE):
            logger.debug("Kill on finished session %s ignored", session.session_id)
            return
        session.killed = True
        entry.relay.broadcast({"type": "killed", "sessionId": session.session_id})

    # ── Consumption ──

    def get_events(self, session_id: str, from_index: int = 0) -> SessionSnapshot:
        """Poll a session. Events are normalized from raw index *from_index*.

        Raises:
            SessionNotFoundError: unknown id.
        """
        session = self._get_entry(session_id).session
        events = normalize_events(session.events, max(from_index, 0))
        return SessionSnapshot(
            session_id=session.session_id,
            project=session.project,
            status=session.status,
            total_events=len(session.events),
            events=[e.to_dict() for e in events],
            result=session.result,
            error=session.error,
        )

    def subscribe(self, session_id: str) -> Subscription:
        """Open a live stream: connected header, full replay, then live.

        Raises:
            SessionNotFoundError: unknown id.
        """
        entry = self._get_entry(session_id)
        session = entry.session
        header = {
            "type": "connected",
            "sessionId": session.session_id,
            "status": session.status.value,
            "totalEvents": len(session.events),
        }
        return entry.relay.subscribe(list(session.events), header)

    def unsubscribe(self, session_id: str, sub: Subscription) -> None:
        entry = self._entries.get(session_id)
        if entry is not None:
            entry.relay.remove(sub)
        else:
            sub.close()

    # ── Retention ──

    def prune(self, now: datetime | None = None) -> list[str]:
        """Evict finished sessions past the age or count limits.

        Sessions whose process is still alive, including killed ones inside
        their grace period, are never evicted. Returns the evicted ids.
        """
        now = now or datetime.now(timezone.utc)
        finished = sorted(
            (
                e for e in self._entries.values()
                if not e.session.is_running and not e.supervisor.is_alive
            ),
            key=lambda e: e.session.ended_at or e.session.started_at,
        )
        retention = self._config.session_retention_seconds
        evict = [
            e for e in finished
            if (now - (e.session.ended_at or e.session.started_at)).total_seconds() > retention
        ]
        evicted_ids = {e.session.session_id for e in evict}
        remaining = [e for e in finished if e.session.session_id not in evicted_ids]
        overflow = len(remaining) - self._config.max_retained_sessions
        if overflow > 0:
            evict.extend(remaining[:overflow])

        evicted: list[str] = []
        for entry in evict:
            session_id = entry.session.session_id
            self._entries.pop(session_id, None)
            entry.supervisor.close()
            entry.relay.close()
            evicted.append(session_id)
        if evicted:
            logger.info("Retention sweep evicted %d session(s)", len(evicted))
        return evicted

    async def run_retention_loop(self, interval_seconds: float | None = None) -> None:
        interval = interval_seconds or self._config.retention_sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            self.prune()

    def start_retention(self) -> None:
        if self._retention_task is None or self._retention_task.done():
            self._retention_task = asyncio.create_task(
                self.run_retention_loop(), name="retention-sweep",
            )

    # ── Shutdown ──

    def shutdown(self) -> None:
        """Terminate live children and drop all state. Does not wait."""
        self._shutting_down = True
        if self._retention_task is not None:
            self._retention_task.cancel()
            self._retention_task = None
        count = len(self._entries)
        for entry in self._entries.values():
            if entry.timeout_task is not None:
                entry.timeout_task.cancel()
            entry.supervisor.close()
            entry.relay.close()
        self._entries.clear()
        logger.info("Registry shut down (%d session(s) cleared)", count)

    def _get_entry(self, session_id: str) -> _SessionEntry:
        entry = self._entries.get(session_id)
        if entry is None:
            raise SessionNotFoundError(session_id)
        return entry
