"""YAML configuration loader.

Example YAML:
    server:
      name: mcp-wake
      host: 127.0.0.1
      port: 3000          # MCP streamable-http
      viewer_port: 3001   # viewer page, WebSocket and REST

    plugins:
      wake:
        enabled: true
        command: claude
        max_concurrent_sessions: 3
        public_url: https://example.ngrok.app   # optional
        projects:
          - name: demo
            path: ~/code/demo
            description: Demo project

Only the ``wake`` plugin is served by this package. Other plugin
sections are reported and skipped.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .config import WakeConfig, _as_bool, apply_env_overrides
from .errors import ConfigError

logger = logging.getLogger(__name__)

KNOWN_PLUGINS = ("wake",)

_CONFIG_FILENAMES = ("config.local.yaml", "config.yaml")


@dataclass
class ServerConfig:
    """Top-level ``server`` section."""
    name: str = "mcp-wake"
    host: str = "127.0.0.1"
    port: int = 3000
    viewer_port: int = 3001


@dataclass
class AppConfig:
    """Fully parsed configuration."""
    server: ServerConfig = field(default_factory=ServerConfig)
    wake: WakeConfig = field(default_factory=WakeConfig)
    # Names of plugins that are both known and enabled.
    enabled_plugins: list[str] = field(default_factory=list)
    source: Path | None = None


def resolve_config_path(
    explicit: str | Path | None = None,
    cwd: str | Path | None = None,
) -> Path | None:
    """Pick the config file.

    Priority: *explicit* > CONFIG_PATH env > config.local.yaml >
    config.yaml. Returns None when nothing is found, in which case
    defaults apply.
    """
    if explicit:
        return Path(explicit).expanduser()
    env_path = os.getenv("CONFIG_PATH")
    if env_path:
        return Path(env_path).expanduser()
    base = Path(cwd) if cwd else Path.cwd()
    for name in _CONFIG_FILENAMES:
        candidate = base / name
        if candidate.is_file():
            return candidate
    return None


def load_yaml_config(path: str | Path) -> AppConfig:
    """Load and parse one YAML config file.

    Raises:
        ConfigError: unreadable file, invalid YAML, or invalid values.
    """
    path = Path(path)
    logger.info("Loading config from: %s", path)
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except yaml.YAMLError as exc:
        logger.error("YAML parse error in %s: %s", path, exc)
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read config {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"Config root in {path} must be a mapping")

    config = parse_config(raw)
    config.source = path
    return config


def parse_config(raw: dict[str, Any]) -> AppConfig:
    """Build an AppConfig from an already-decoded mapping."""
    server = _parse_server(raw.get("server"))

    plugins_raw = raw.get("plugins") or {}
    if not isinstance(plugins_raw, dict):
        raise ConfigError("'plugins' must be a mapping")

    enabled: list[str] = []
    wake = WakeConfig(enabled=False)
    for name, plugin_raw in plugins_raw.items():
        plugin_raw = plugin_raw or {}
        if not isinstance(plugin_raw, dict):
            raise ConfigError(f"Plugin '{name}' config must be a mapping")
        if name not in KNOWN_PLUGINS:
            logger.warning("Unknown plugin: %s", name)
            continue
        if not _as_bool(plugin_raw.get("enabled", False)):
            logger.info("Plugin %s is disabled, skipping", name)
            continue
        wake = WakeConfig.from_dict(plugin_raw)
        enabled.append(name)
        logger.info(
            "Plugin %s enabled: %d project(s), max_concurrent_sessions=%d",
            name, len(wake.projects), wake.max_concurrent_sessions,
        )

    return AppConfig(server=server, wake=wake, enabled_plugins=enabled)


def load_config(explicit: str | Path | None = None) -> AppConfig:
    """Resolve, load and apply WAKE_* overrides.

    With no config file the wake plugin runs enabled with defaults and
    no projects.
    """
    path = resolve_config_path(explicit)
    if path is None:
        logger.info("No config file found, using defaults")
        config = AppConfig(enabled_plugins=["wake"])
    else:
        config = load_yaml_config(path)
    config.wake = apply_env_overrides(config.wake)
    return config


def _parse_server(raw: Any) -> ServerConfig:
    if raw is None:
        return ServerConfig()
    if not isinstance(raw, dict):
        raise ConfigError("'server' must be a mapping")
    defaults = ServerConfig()
    try:
        server = ServerConfig(
            name=str(raw.get("name", defaults.name)),
            host=str(raw.get("host", defaults.host)),
            port=int(raw.get("port", defaults.port)),
            viewer_port=int(raw.get("viewer_port", raw.get("viewerPort", defaults.viewer_port))),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid server config: {exc}") from exc
    for label, port in (("port", server.port), ("viewer_port", server.viewer_port)):
        if not 0 < port < 65536:
            raise ConfigError(f"server.{label} out of range: {port}")
    return server
