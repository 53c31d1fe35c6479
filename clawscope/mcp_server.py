#!/usr/bin/env python3
"""
MCP Server for ClawScope

Exposes sessions, scheduled tasks, activity and the offline memory store to
MCP clients over stdio. stdout carries the protocol; logs go to stderr.
"""

import asyncio
import logging
import os
import sys
import traceback
from typing import Optional

from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from . import __version__
from .config import ClawScopeConfig, setup_logging
from .mcp_tools import ToolContext, get_tool_definitions, handle_tool_call
from .storage import engine_factory_for

logger = logging.getLogger("clawscope.mcp")

SERVER_NAME = "clawscope"

app = Server(SERVER_NAME)
tool_context: Optional[ToolContext] = None


@app.list_tools()
async def handle_list_tools() -> list[Tool]:
    """List available ClawScope tools"""
    return get_tool_definitions()


@app.call_tool()
async def handle_call_tool(name: str, arguments: dict) -> list[TextContent]:
    return await handle_tool_call(name, arguments, tool_context)


def build_context(config: ClawScopeConfig) -> ToolContext:
    return ToolContext(config=config, engine_factory=engine_factory_for(config))


async def main(original_stdout_fd: Optional[int] = None):
    """Main entry point"""
    global tool_context

    try:
        config = ClawScopeConfig.from_env()
        logger.info(f"Initializing ClawScope tools (store: {config.db_path})")
        tool_context = build_context(config)

        # Restore stdout for MCP communication
        if original_stdout_fd is not None:
            os.dup2(original_stdout_fd, 1)
            sys.stdout = os.fdopen(original_stdout_fd, "w")

        logger.info("Starting MCP server...")
        async with stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                InitializationOptions(
                    server_name=SERVER_NAME,
                    server_version=__version__,
                    capabilities=app.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                ),
            )
    except KeyboardInterrupt:
        logger.info("Received interrupt signal")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        logger.error(traceback.format_exc())
        sys.exit(1)


def run():
    # Anything printed during startup must not reach the protocol stream
    original_stdout_fd = os.dup(1)
    os.dup2(2, 1)
    setup_logging(os.getenv("CLAWSCOPE_LOG_LEVEL", "INFO").upper())
    asyncio.run(main(original_stdout_fd))


if __name__ == "__main__":
    run()
