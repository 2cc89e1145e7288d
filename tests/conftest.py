from __future__ import annotations

import asyncio
import os
import stat
import sys
from pathlib import Path

import pytest

from mcpwake.engine.config import WakeConfig
from mcpwake.engine.models import Project

# Stand-in for the agent CLI. Reads the task after -p and emits
# stream-json lines the way the real CLI does.
FAKE_AGENT_SOURCE = '''
import json
import signal
import subprocess
import sys
import time

task = sys.argv[sys.argv.index("-p") + 1]


def emit(obj):
    print(json.dumps(obj), flush=True)


emit({"type": "system", "subtype": "init", "cwd": "."})

if task.startswith("sleep:"):
    emit({"type": "assistant", "message": {"content": [{"type": "text", "text": "working"}]}})
    time.sleep(float(task.split(":", 1)[1]))
    emit({"type": "result", "subtype": "success", "result": "slept"})
elif task.startswith("stubborn:"):
    signal.signal(signal.SIGTERM, signal.SIG_IGN)
    emit({"type": "assistant", "message": {"content": [{"type": "text", "text": "ignoring SIGTERM"}]}})
    time.sleep(float(task.split(":", 1)[1]))
elif task.startswith("orphan:"):
    # Background child inherits stdout and stderr and outlives the agent.
    child = subprocess.Popen(["sleep", task.split(":", 1)[1]])
    emit({"type": "assistant", "message": {"content": [{"type": "text", "text": "spawned " + str(child.pid)}]}})
    sys.exit(3)
elif task == "fail":
    print("boom", file=sys.stderr, flush=True)
    sys.exit(3)
elif task == "error-result":
    emit({"type": "result", "subtype": "error_max_turns", "error": "too many turns"})
elif task == "noise":
    print("this is not json", flush=True)
    print("[1, 2, 3]", flush=True)
    emit({"type": "assistant", "message": {"content": [{"type": "text", "text": "after noise"}]}})
    emit({"type": "result", "subtype": "success", "result": "clean"})
else:
    emit({"type": "assistant", "message": {"content": [
        {"type": "text", "text": "Reading the file"},
        {"type": "tool_use", "id": "t1", "name": "Read", "input": {"file_path": "README.md"}},
    ]}})
    emit({"type": "user", "message": {"content": [
        {"type": "tool_result", "tool_use_id": "t1", "content": "hello world"},
    ]}})
    emit({"type": "result", "subtype": "success", "result": "done: " + task,
          "duration_ms": 1234, "total_cost_usd": 0.01})
'''


@pytest.fixture
def fake_agent(tmp_path: Path) -> str:
    """Executable script usable as the agent ``command``."""
    if sys.platform == "win32":
        pytest.skip("fake agent relies on a shebang script")
    script = tmp_path / "fake-agent"
    script.write_text(f"#!{sys.executable}\n{FAKE_AGENT_SOURCE}", encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(script)


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    path = tmp_path / "demo"
    path.mkdir()
    return path


@pytest.fixture
def wake_config(fake_agent: str, project_dir: Path) -> WakeConfig:
    return WakeConfig(
        command=fake_agent,
        max_concurrent_sessions=2,
        kill_grace_seconds=0.5,
        public_url="https://viewer.example.test",
        projects=[Project(name="demo", path=str(project_dir), description="Demo")],
    )


async def wait_for(predicate, timeout: float = 10.0, interval: float = 0.02) -> None:
    """Poll *predicate* until true or fail after *timeout* seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met within %.1fs" % timeout)
        await asyncio.sleep(interval)


@pytest.fixture(autouse=True)
def _clean_wake_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("WAKE_") or key == "CONFIG_PATH":
            monkeypatch.delenv(key, raising=False)
