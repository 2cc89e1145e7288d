"""Wake plugin configuration.

Settings come from the ``plugins.wake`` section of the YAML config
(see yaml_config.py) and can be overridden via WAKE_* env vars. All
settings have sensible defaults.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any

from .errors import ConfigError
from .models import Project
from .tunnel import DEFAULT_TUNNEL_API_URL

logger = logging.getLogger(__name__)


# camelCase spellings accepted in the YAML plugin section.
_CAMEL_KEYS = {
    "maxConcurrentSessions": "max_concurrent_sessions",
    "killGraceSeconds": "kill_grace_seconds",
    "sessionRetentionSeconds": "session_retention_seconds",
    "maxRetainedSessions": "max_retained_sessions",
    "retentionSweepIntervalSeconds": "retention_sweep_interval_seconds",
    "publicUrl": "public_url",
    "tunnelApiUrl": "tunnel_api_url",
    "extraArgs": "extra_args",
    "logLevel": "log_level",
}

_INT_FIELDS = ("max_concurrent_sessions", "max_retained_sessions")
_FLOAT_FIELDS = (
    "kill_grace_seconds",
    "session_retention_seconds",
    "retention_sweep_interval_seconds",
)


@dataclass
class WakeConfig:
    """Session engine configuration."""

    enabled: bool = True
    # Agent CLI binary. Resolved through PATH.
    command: str = "claude"
    # Appended after the fixed stream-json flags.
    extra_args: list[str] = field(default_factory=list)

    # Admission control
    max_concurrent_sessions: int = 3
    # SIGTERM -> SIGKILL escalation delay for kill and timeout.
    kill_grace_seconds: float = 5.0

    # Retention of finished sessions
    session_retention_seconds: float = 3600.0
    max_retained_sessions: int = 50
    retention_sweep_interval_seconds: float = 60.0

    # Viewer links. public_url skips ngrok discovery entirely.
    public_url: str | None = None
    tunnel_api_url: str = DEFAULT_TUNNEL_API_URL

    log_level: str = "INFO"

    projects: list[Project] = field(default_factory=list)

    @property
    def project_names(self) -> list[str]:
        return [p.name for p in self.projects]

    def get_project(self, name: str) -> Project | None:
        for project in self.projects:
            if project.name == name:
                return project
        return None

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> WakeConfig:
        """Build from a plugin section, accepting camelCase or snake_case keys.

        Raises:
            ConfigError: malformed values, duplicate or path-less projects,
                or non-positive limits.
        """
        raw = dict(raw or {})
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in raw.items():
            name = _CAMEL_KEYS.get(key, key)
            if name == "projects":
                continue
            if name not in known:
                logger.warning("Ignoring unknown wake config key: %s", key)
                continue
            values[name] = value

        for name in _INT_FIELDS:
            if name in values:
                values[name] = _as_int(name, values[name])
        for name in _FLOAT_FIELDS:
            if name in values:
                values[name] = _as_float(name, values[name])
        if "enabled" in values:
            values["enabled"] = _as_bool(values["enabled"])
        if "extra_args" in values:
            extra = values["extra_args"] or []
            if not isinstance(extra, list):
                raise ConfigError("wake.extra_args must be a list")
            values["extra_args"] = [str(a) for a in extra]
        if values.get("public_url") == "":
            values["public_url"] = None

        values["projects"] = _parse_projects(raw.get("projects"))
        config = cls(**values)
        config.validate()
        return config

    @classmethod
    def from_env(cls) -> WakeConfig:
        """Defaults with WAKE_* environment overrides applied."""
        return apply_env_overrides(cls())

    def validate(self) -> None:
        if self.max_concurrent_sessions < 1:
            raise ConfigError(
                f"max_concurrent_sessions must be positive, got {self.max_concurrent_sessions}"
            )
        if self.max_retained_sessions < 1:
            raise ConfigError(
                f"max_retained_sessions must be positive, got {self.max_retained_sessions}"
            )
        for name in _FLOAT_FIELDS:
            value = getattr(self, name)
            if value <= 0:
                raise ConfigError(f"{name} must be positive, got {value}")
        if not self.command:
            raise ConfigError("command must not be empty")


def apply_env_overrides(config: WakeConfig) -> WakeConfig:
    """Return a copy of *config* with WAKE_* env vars applied."""
    wake_vars = {k: v for k, v in os.environ.items() if k.startswith("WAKE_")}
    if wake_vars:
        logger.info(
            "WakeConfig: WAKE_* env overrides: %s",
            ", ".join(f"{k}={v}" for k, v in sorted(wake_vars.items())),
        )
    else:
        logger.debug("WakeConfig: no WAKE_* env vars set")

    overrides: dict[str, Any] = {}
    if "WAKE_MAX_SESSIONS" in os.environ:
        overrides["max_concurrent_sessions"] = _as_int(
            "WAKE_MAX_SESSIONS", os.environ["WAKE_MAX_SESSIONS"]
        )
    if os.getenv("WAKE_COMMAND"):
        overrides["command"] = os.environ["WAKE_COMMAND"]
    if "WAKE_PUBLIC_URL" in os.environ:
        overrides["public_url"] = os.environ["WAKE_PUBLIC_URL"] or None
    if os.getenv("WAKE_TUNNEL_API_URL"):
        overrides["tunnel_api_url"] = os.environ["WAKE_TUNNEL_API_URL"]
    if "WAKE_KILL_GRACE" in os.environ:
        overrides["kill_grace_seconds"] = _as_float(
            "WAKE_KILL_GRACE", os.environ["WAKE_KILL_GRACE"]
        )
    if "WAKE_RETENTION_SECONDS" in os.environ:
        overrides["session_retention_seconds"] = _as_float(
            "WAKE_RETENTION_SECONDS", os.environ["WAKE_RETENTION_SECONDS"]
        )
    if os.getenv("WAKE_LOG_LEVEL"):
        overrides["log_level"] = os.environ["WAKE_LOG_LEVEL"].upper()

    if not overrides:
        return config
    updated = replace(config, **overrides)
    updated.validate()
    return updated


def expand_path(path: str) -> str:
    """Expand ``~`` and make *path* absolute."""
    return os.path.abspath(os.path.expanduser(path))


def _parse_projects(raw: Any) -> list[Project]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConfigError("wake.projects must be a list")
    projects: list[Project] = []
    seen: set[str] = set()
    for i, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ConfigError(f"wake.projects[{i}] must be a mapping")
        name = entry.get("name")
        if not isinstance(name, str) or not name:
            raise ConfigError(f"wake.projects[{i}] has no name")
        path = entry.get("path")
        if not isinstance(path, str) or not path:
            raise ConfigError(f"Project '{name}' has no path")
        if name in seen:
            raise ConfigError(f"Duplicate project name: {name}")
        seen.add(name)
        description = entry.get("description")
        projects.append(Project(
            name=name,
            path=expand_path(path),
            description=str(description) if description is not None else None,
        ))
    return projects


def _as_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from exc


def _as_float(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)
