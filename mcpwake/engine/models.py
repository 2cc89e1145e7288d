"""Core data models for the session engine.

Dataclasses and enums shared by the supervisor, registry and relay.
Kept free of engine imports to avoid circular dependencies.
"""
from __future__ import annotations

import os
import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class SessionStatus(str, Enum):
    """Session lifecycle states. See lifecycle.py for transition rules."""
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.RUNNING


_ID_ALPHABET = string.digits + string.ascii_lowercase


def make_session_id() -> str:
    """Time + random derived id, e.g. ``wake-1760700000-k3f9x2``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=6))
    return f"wake-{int(time.time())}-{suffix}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Project:
    """A configured project an agent session may run in."""
    name: str
    path: str
    description: str | None = None

    @property
    def exists(self) -> bool:
        return os.path.exists(self.path)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "description": self.description,
            "exists": self.exists,
        }


@dataclass
class Session:
    """One supervised agent run plus its captured output.

    Owned by SessionRegistry. The OS process handle is deliberately
    absent: ProcessSupervisor holds it privately.
    """
    session_id: str
    project: str
    project_path: str
    task: str
    pid: int
    viewer_url: str = ""
    status: SessionStatus = SessionStatus.RUNNING
    # Raw stream-json records, append-only. Index == position in stream.
    events: list[dict[str, Any]] = field(default_factory=list)
    result: str | None = None
    error: str | None = None
    exit_code: int | None = None
    killed: bool = False
    started_at: datetime = field(default_factory=_utcnow)
    ended_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self.status is SessionStatus.RUNNING

    def summary(self) -> dict[str, Any]:
        """Compact representation for session listings."""
        return {
            "sessionId": self.session_id,
            "project": self.project,
            "projectPath": self.project_path,
            "task": self.task,
            "pid": self.pid,
            "status": self.status.value,
            "startTime": self.started_at.isoformat(),
            "endTime": self.ended_at.isoformat() if self.ended_at else None,
            "totalEvents": len(self.events),
            "viewerUrl": self.viewer_url,
        }


@dataclass
class SessionSnapshot:
    """Point-in-time poll result for a session."""
    session_id: str
    project: str
    status: SessionStatus
    total_events: int
    events: list[dict[str, Any]]
    result: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "sessionId": self.session_id,
            "project": self.project,
            "status": self.status.value,
            "totalEvents": self.total_events,
            "events": self.events,
        }
        if self.result is not None:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error
        return data
