"""OS process supervision for a single agent session.

ProcessSupervisor owns the child process end-to-end: it launches the
agent CLI with stream-json output, reads stdout line by line, drains
stderr into the log, and reports exit. The raw process handle never
leaves this class; callers only get signal and status operations.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from collections.abc import Callable
from typing import Any

from .errors import SpawnError

logger = logging.getLogger(__name__)

# stream-json lines carry whole tool results; the asyncio default (64 KiB)
# is far too small.
STREAM_LINE_LIMIT = 16 * 1024 * 1024

# Output still buffered when the process exits is read for at most this long.
EXIT_DRAIN_SECONDS = 1.0
EXIT_POLL_SECONDS = 0.05

RecordCallback = Callable[[dict[str, Any]], None]
# (returncode, fault): fault is set when reading failed rather than the
# process exiting on its own.
ExitCallback = Callable[[int | None, str | None], None]


def build_agent_argv(
    command: str,
    task: str,
    extra_args: list[str] | None = None,
    platform: str | None = None,
) -> list[str]:
    """Build the argv requesting line-delimited structured output.

    On Windows the CLI ships as a .cmd shim, so it is run through
    ``cmd.exe /c``. Behaviour is otherwise identical.
    """
    args = [
        "-p",
        task,
        "--output-format",
        "stream-json",
        "--verbose",
        "--dangerously-skip-permissions",
    ]
    if extra_args:
        args.extend(extra_args)
    if (platform or sys.platform) == "win32":
        return ["cmd.exe", "/c", command, *args]
    return [command, *args]


def decode_record(line: bytes) -> dict[str, Any] | None:
    """Decode one stdout line. Returns None for blank or malformed lines."""
    text = line.decode("utf-8", errors="replace").strip()
    if not text:
        return None
    try:
        record = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(record, dict):
        return None
    return record


class ProcessSupervisor:
    """Launches and watches one agent process."""

    def __init__(self, process: asyncio.subprocess.Process, label: str) -> None:
        self._process = process
        self._label = label
        self._reader_task: asyncio.Task | None = None
        self._escalation_task: asyncio.Task | None = None
        self._terminating = False

    @classmethod
    async def start(
        cls,
        argv: list[str],
        cwd: str,
        label: str,
        env: dict[str, str] | None = None,
    ) -> ProcessSupervisor:
        """Spawn *argv* in *cwd*.

        Raises:
            SpawnError: the OS could not create the process (missing
                binary, permission denied, bad cwd, no pid).
        """
        logger.info("Spawning session %s: %s", label, " ".join(argv))
        logger.info("Working directory: %s", cwd)
        try:
            # argv is passed as a list, never through a shell
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LINE_LIMIT,
            )
        except FileNotFoundError as exc:
            if not os.path.isdir(cwd):
                raise SpawnError(f"working directory not found: {cwd}") from exc
            raise SpawnError(f"'{argv[0]}' not found ({exc})") from exc
        except PermissionError as exc:
            raise SpawnError(f"permission denied ({exc})") from exc
        except OSError as exc:
            raise SpawnError(f"{type(exc).__name__}: {exc}") from exc

        if not process.pid:
            raise SpawnError("no pid")
        logger.info("Session %s started (pid=%d)", label, process.pid)
        return cls(process, label)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def is_alive(self) -> bool:
        return self._process.returncode is None

    def watch(self, on_record: RecordCallback, on_exit: ExitCallback) -> asyncio.Task:
        """Install the stdout, stderr and exit observers."""
        if self._reader_task is None:
            self._reader_task = asyncio.create_task(
                self._watch(on_record, on_exit),
                name=f"supervisor-{self._label}",
            )
        return self._reader_task

    async def _watch(self, on_record: RecordCallback, on_exit: ExitCallback) -> None:
        reader = asyncio.create_task(self._read_stdout(on_record))
        stderr_task = asyncio.create_task(self._drain_stderr())
        exited = asyncio.create_task(self._wait_exit())
        try:
            await asyncio.wait({reader, exited}, return_when=asyncio.FIRST_COMPLETED)
            fault = self._reader_fault(reader)
            if fault is None:
                await exited
                # A backgrounded grandchild can hold the pipes open long
                # after the agent itself exited.
                await asyncio.wait({reader, stderr_task}, timeout=EXIT_DRAIN_SECONDS)
                fault = self._reader_fault(reader)
        finally:
            for task in (reader, stderr_task, exited):
                if not task.done():
                    task.cancel()

        if fault is not None:
            self.terminate()
            on_exit(self._process.returncode, fault)
            return

        returncode = self._process.returncode
        logger.info("Session %s exited with code %s", self._label, returncode)
        on_exit(returncode, None)

    async def _wait_exit(self) -> int:
        # Process.wait() may also wait for the pipes to close; returncode
        # is set as soon as the child is reaped.
        while self._process.returncode is None:
            await asyncio.sleep(EXIT_POLL_SECONDS)
        return self._process.returncode

    def _reader_fault(self, reader: asyncio.Task) -> str | None:
        if not reader.done() or reader.cancelled():
            return None
        exc = reader.exception()
        if exc is None:
            return None
        logger.error("Session %s stdout reader failed", self._label, exc_info=exc)
        return f"{type(exc).__name__}: {exc}"

    async def _read_stdout(self, on_record: RecordCallback) -> None:
        stdout = self._process.stdout
        if stdout is None:
            return
        while True:
            try:
                line = await stdout.readline()
            except ValueError:
                # Line exceeded STREAM_LINE_LIMIT; the reader already
                # discarded it.
                logger.warning("Session %s: dropped oversized output line", self._label)
                continue
            if not line:
                break
            record = decode_record(line)
            if record is None:
                logger.debug("Session %s: skipping non-JSON line", self._label)
                continue
            on_record(record)

    async def _drain_stderr(self) -> None:
        stderr = self._process.stderr
        if stderr is None:
            return
        while True:
            try:
                line = await stderr.readline()
            except ValueError:
                continue
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                logger.warning("Session %s stderr: %s", self._label, text)

    def terminate(self, grace_seconds: float = 5.0) -> bool:
        """Send SIGTERM and schedule SIGKILL after *grace_seconds*.

        Safe to call repeatedly and against a process that already died.
        Returns True if a signal was delivered by this call.
        """
        if self._terminating or not self.is_alive:
            return False
        try:
            self._process.terminate()
        except ProcessLookupError:
            return False
        self._terminating = True
        logger.info("Session %s: sent SIGTERM (pid=%d)", self._label, self.pid)
        if grace_seconds > 0:
            self._escalation_task = asyncio.create_task(self._escalate(grace_seconds))
        return True

    async def _escalate(self, grace_seconds: float) -> None:
        try:
            await asyncio.wait_for(self._wait_exit(), timeout=grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "Session %s didn't exit within %.1fs, force killing",
                self._label, grace_seconds,
            )
            self.kill()

    def kill(self) -> bool:
        """Send SIGKILL. Returns False if the process was already gone."""
        if not self.is_alive:
            return False
        try:
            self._process.kill()
        except ProcessLookupError:
            return False
        return True

    def close(self) -> None:
        """Best-effort teardown: signal the child, stop watching, don't wait."""
        if self.is_alive and not self._terminating:
            try:
                self._process.terminate()
                self._terminating = True
            except ProcessLookupError:
                pass
        for task in (self._reader_task, self._escalation_task):
            if task is not None and not task.done():
                task.cancel()
