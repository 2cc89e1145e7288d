"""Exception hierarchy for the session engine.

Every failure a caller can act on has its own type. Post-spawn process
failures are never raised: they are recorded on the session as terminal
``error`` state.
"""
from __future__ import annotations


class WakeError(Exception):
    """Base exception for all session engine errors."""


class ConfigError(WakeError):
    """Configuration file is missing required values or is malformed."""


class AdmissionError(WakeError):
    """Concurrency limit reached. Retryable once a running session ends."""
    def __init__(self, max_sessions: int):
        self.max_sessions = max_sessions
        super().__init__(
            f"Max concurrent sessions ({max_sessions}) reached"
        )


class ResolutionError(WakeError):
    """A spawn precondition could not be resolved from config/environment."""


class ProjectNotFoundError(ResolutionError):
    """Requested project name is not configured."""
    def __init__(self, project: str, available: list[str]):
        self.project = project
        self.available = available
        avail_str = ", ".join(available) if available else "none"
        super().__init__(
            f"Project '{project}' not found. Available: {avail_str}"
        )


class TunnelUnavailableError(ResolutionError):
    """No public viewer base URL could be discovered."""
    def __init__(self, detail: str = ""):
        self.detail = detail
        message = "Ngrok tunnel not available. Check ngrok is running."
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class SpawnError(WakeError):
    """The OS failed to create the agent process. No session exists."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Failed to spawn agent process: {reason}")


class SessionNotFoundError(WakeError):
    """No session with the given id is known to the registry."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' not found")
