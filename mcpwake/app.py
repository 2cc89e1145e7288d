"""mcp-wake main application entry point."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from mcpwake.engine.errors import ConfigError
from mcpwake.engine.registry import SessionRegistry
from mcpwake.engine.yaml_config import AppConfig, load_config
from mcpwake.mcp_server import WakeTools, build_mcp_server
from mcpwake.server import WakeServer

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"


def configure_logging(level_name: str, log_dir: Path | None = None) -> Path:
    """Route logs to a rotating file and stderr.

    stdout is left alone: the stdio MCP transport owns it.
    """
    log_dir = log_dir or Path.home() / ".mcp-wake" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "mcp-wake.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(LOG_FORMAT)
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    return log_file


async def serve(config: AppConfig, transport: str = "stdio") -> None:
    """Run the MCP server and the viewer server until stopped."""
    registry = SessionRegistry(config.wake)
    tools = WakeTools(registry)
    mcp = build_mcp_server(
        tools,
        name=config.server.name,
        host=config.server.host,
        port=config.server.port,
    )
    viewer = WakeServer(
        registry,
        name=config.server.name,
        host=config.server.host,
        port=config.server.viewer_port,
    )

    await viewer.start()
    registry.start_retention()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still
            # raises KeyboardInterrupt out of asyncio.run().
            logger.debug("Signal handler for %s not supported", sig)

    if transport == "stdio":
        mcp_task = asyncio.create_task(mcp.run_stdio_async(), name="mcp-stdio")
    else:
        mcp_task = asyncio.create_task(mcp.run_streamable_http_async(), name="mcp-http")
    stop_task = asyncio.create_task(stop.wait(), name="stop-signal")

    logger.info(
        "%s ready: transport=%s mcp_port=%s viewer_port=%d max_sessions=%d projects=%d",
        config.server.name, transport,
        config.server.port if transport != "stdio" else "-",
        config.server.viewer_port,
        config.wake.max_concurrent_sessions, len(config.wake.projects),
    )

    try:
        done, _ = await asyncio.wait(
            {mcp_task, stop_task}, return_when=asyncio.FIRST_COMPLETED,
        )
        if mcp_task in done:
            # Propagate a transport crash; a clean return means the client left.
            mcp_task.result()
            logger.info("MCP transport closed")
        else:
            logger.info("Shutdown signal received")
    finally:
        registry.shutdown()
        for task in (mcp_task, stop_task):
            task.cancel()
        await asyncio.gather(mcp_task, stop_task, return_exceptions=True)
        await viewer.stop()
        logger.info("%s stopped", config.server.name)


def main(argv: list[str] | None = None) -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="mcp-wake",
        description="MCP server that wakes headless coding-agent sessions",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="Config file (default: CONFIG_PATH, config.local.yaml, config.yaml)",
    )
    parser.add_argument(
        "--transport", choices=["stdio", "streamable-http"], default="stdio",
        help="MCP transport (default: stdio)",
    )
    parser.add_argument(
        "--port", type=int,
        help="MCP streamable-http port (overrides server.port)",
    )
    parser.add_argument(
        "--viewer-port", type=int,
        help="Viewer/REST port (overrides server.viewer_port)",
    )
    parser.add_argument(
        "--host",
        help="Bind address for both servers (overrides server.host)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args(argv)

    level = "DEBUG" if args.verbose else os.getenv("WAKE_LOG_LEVEL", "INFO")
    log_file = configure_logging(level)
    logger.info("Starting mcp-wake (pid=%s, log=%s)", os.getpid(), log_file)

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(2)

    if "wake" not in config.enabled_plugins:
        logger.error("The wake plugin is disabled; nothing to serve")
        sys.exit(1)

    if not args.verbose:
        logging.getLogger().setLevel(
            getattr(logging, config.wake.log_level.upper(), logging.INFO)
        )
    if args.port is not None:
        config.server.port = args.port
    if args.viewer_port is not None:
        config.server.viewer_port = args.viewer_port
    if args.host:
        config.server.host = args.host

    try:
        asyncio.run(serve(config, args.transport))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
