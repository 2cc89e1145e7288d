from __future__ import annotations

import os
from pathlib import Path

import pytest

from mcpwake.engine.config import WakeConfig, apply_env_overrides
from mcpwake.engine.errors import ConfigError
from mcpwake.engine.yaml_config import (
    load_config,
    load_yaml_config,
    parse_config,
    resolve_config_path,
)


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults() -> None:
    config = WakeConfig()
    assert config.command == "claude"
    assert config.max_concurrent_sessions == 3
    assert config.kill_grace_seconds == 5.0
    assert config.session_retention_seconds == 3600.0
    assert config.max_retained_sessions == 50
    assert config.tunnel_api_url == "http://localhost:4040/api/tunnels"
    assert config.public_url is None


def test_from_dict_accepts_camel_and_snake_case() -> None:
    config = WakeConfig.from_dict({
        "enabled": True,
        "maxConcurrentSessions": 5,
        "kill_grace_seconds": 2,
        "publicUrl": "https://pub.example.test",
        "projects": [{"name": "api", "path": "/srv/api", "description": "API"}],
    })
    assert config.max_concurrent_sessions == 5
    assert config.kill_grace_seconds == 2.0
    assert config.public_url == "https://pub.example.test"
    assert config.get_project("api").path == os.path.abspath("/srv/api")
    assert config.get_project("missing") is None


def test_project_paths_expand_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    config = WakeConfig.from_dict({"projects": [{"name": "p", "path": "~/code/p"}]})
    assert config.projects[0].path == str(tmp_path / "code" / "p")


@pytest.mark.parametrize(
    "raw, message",
    [
        ({"projects": [{"name": "a", "path": "/a"}, {"name": "a", "path": "/b"}]}, "Duplicate project"),
        ({"projects": [{"name": "a"}]}, "has no path"),
        ({"projects": [{"path": "/a"}]}, "has no name"),
        ({"projects": "not a list"}, "must be a list"),
        ({"max_concurrent_sessions": 0}, "must be positive"),
        ({"kill_grace_seconds": -1}, "must be positive"),
        ({"max_concurrent_sessions": "lots"}, "must be an integer"),
    ],
)
def test_from_dict_rejects_invalid(raw: dict, message: str) -> None:
    with pytest.raises(ConfigError, match=message):
        WakeConfig.from_dict(raw)


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WAKE_MAX_SESSIONS", "7")
    monkeypatch.setenv("WAKE_COMMAND", "/opt/bin/claude")
    monkeypatch.setenv("WAKE_PUBLIC_URL", "https://env.example.test")
    monkeypatch.setenv("WAKE_KILL_GRACE", "1.5")
    monkeypatch.setenv("WAKE_RETENTION_SECONDS", "120")
    monkeypatch.setenv("WAKE_LOG_LEVEL", "debug")

    config = apply_env_overrides(WakeConfig(max_concurrent_sessions=2))
    assert config.max_concurrent_sessions == 7
    assert config.command == "/opt/bin/claude"
    assert config.public_url == "https://env.example.test"
    assert config.kill_grace_seconds == 1.5
    assert config.session_retention_seconds == 120.0
    assert config.log_level == "DEBUG"


def test_env_override_is_validated(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WAKE_MAX_SESSIONS", "0")
    with pytest.raises(ConfigError):
        WakeConfig.from_env()


def test_load_yaml_config(tmp_path: Path) -> None:
    path = _write(tmp_path / "config.yaml", (
        "server:\n"
        "  name: test-wake\n"
        "  port: 4000\n"
        "  viewer_port: 4001\n"
        "plugins:\n"
        "  wake:\n"
        "    enabled: true\n"
        "    max_concurrent_sessions: 4\n"
        "    projects:\n"
        "      - name: demo\n"
        f"        path: {tmp_path}\n"
        "  gtasks:\n"
        "    enabled: true\n"
    ))
    config = load_yaml_config(path)
    assert config.source == path
    assert config.server.name == "test-wake"
    assert config.server.port == 4000
    assert config.server.viewer_port == 4001
    assert config.enabled_plugins == ["wake"]
    assert config.wake.max_concurrent_sessions == 4
    assert config.wake.project_names == ["demo"]


def test_disabled_wake_plugin_is_skipped() -> None:
    config = parse_config({"plugins": {"wake": {"enabled": False, "max_concurrent_sessions": 0}}})
    assert config.enabled_plugins == []
    assert config.wake.enabled is False


@pytest.mark.parametrize("flag", ["false", "no", "0", "off"])
def test_string_false_disables_plugin(flag: str) -> None:
    config = parse_config({"plugins": {"wake": {"enabled": flag}}})
    assert config.enabled_plugins == []


def test_invalid_yaml_raises_config_error(tmp_path: Path) -> None:
    path = _write(tmp_path / "config.yaml", "plugins: [unclosed\n")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_yaml_config(path)


def test_missing_explicit_file_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_yaml_config(tmp_path / "absent.yaml")


def test_resolve_config_path_priority(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    assert resolve_config_path(cwd=tmp_path) is None

    base = _write(tmp_path / "config.yaml", "{}\n")
    assert resolve_config_path(cwd=tmp_path) == base

    local = _write(tmp_path / "config.local.yaml", "{}\n")
    assert resolve_config_path(cwd=tmp_path) == local

    monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "env.yaml"))
    assert resolve_config_path(cwd=tmp_path) == tmp_path / "env.yaml"

    assert resolve_config_path("explicit.yaml", cwd=tmp_path) == Path("explicit.yaml")


def test_load_config_without_file_uses_defaults(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("WAKE_MAX_SESSIONS", "9")
    config = load_config()
    assert config.source is None
    assert config.enabled_plugins == ["wake"]
    assert config.wake.max_concurrent_sessions == 9
    assert config.wake.projects == []
