"""mcp-wake: wake headless coding-agent sessions over MCP and watch them live."""

__version__ = "0.1.0"
