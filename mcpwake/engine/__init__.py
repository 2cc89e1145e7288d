"""Session engine: process supervision, event normalization and live relay."""
from .config import WakeConfig
from .errors import (
    AdmissionError,
    ConfigError,
    ProjectNotFoundError,
    ResolutionError,
    SessionNotFoundError,
    SpawnError,
    TunnelUnavailableError,
    WakeError,
)
from .models import Project, Session, SessionSnapshot, SessionStatus
from .registry import SessionRegistry
from .relay import LiveRelay, Subscription
from .tunnel import TunnelLocator

__all__ = [
    # Registry
    "SessionRegistry",
    "LiveRelay",
    "Subscription",
    "TunnelLocator",
    # Models
    "Project",
    "Session",
    "SessionSnapshot",
    "SessionStatus",
    # Config
    "WakeConfig",
    # Errors
    "AdmissionError",
    "ConfigError",
    "ProjectNotFoundError",
    "ResolutionError",
    "SessionNotFoundError",
    "SpawnError",
    "TunnelUnavailableError",
    "WakeError",
]
