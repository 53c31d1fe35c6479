"""
MCP Tool Definitions and Handlers for ClawScope

All tool responses return JSON for AI consumption, not human-formatted text.
Sessions, tasks and activity come from the openclaw CLI; memory and graph
tools go straight to the memory store.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from mcp.types import Tool, TextContent

from .activity import classify_lines
from .config import ClawScopeConfig
from .graph_ops import FactGraph
from .models import serialize_list
from .providers import CliStrategy, normalize_task
from .search import SearchBackend, SearchRequest
from .storage import MemoryEngine

logger = logging.getLogger("clawscope.mcp-tools")


def _default_cli_factory(config: ClawScopeConfig) -> Callable[..., CliStrategy]:
    def factory(args: Sequence[str], json_lines: bool = False) -> CliStrategy:
        return CliStrategy(args, binary=config.openclaw_bin, timeout=config.cli_log_timeout, json_lines=json_lines)
    return factory


@dataclass
class ToolContext:
    """Everything the tool handlers need, built once by the server"""
    config: ClawScopeConfig
    engine_factory: Callable[..., MemoryEngine]
    cli_factory: Optional[Callable[..., Any]] = None
    search: SearchBackend = field(init=False)

    def __post_init__(self):
        if self.cli_factory is None:
            self.cli_factory = _default_cli_factory(self.config)
        self.search = SearchBackend(self.config, self.engine_factory)


def get_tool_definitions() -> List[Tool]:
    """Return list of available MCP tools"""
    return [
        Tool(
            name="list_sessions",
            description="List all OpenClaw sessions (main, sub-agents, isolated) as reported by `openclaw sessions --json`.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="list_tasks",
            description="List scheduled cron jobs, reminders and heartbeats with a human-readable schedule and next run time.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="get_activity",
            description="Get recent activity from the OpenClaw gateway logs, classified as tool, session, memory, cron or alert events.",
            inputSchema={
                "type": "object",
                "properties": {
                    "limit": {"type": "integer", "description": "Number of log entries to fetch", "default": 50},
                },
            },
        ),
        Tool(
            name="search_memory",
            description="Search the offline memory database. Lexical (full-text) by default; hybrid blends in embedding similarity.",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Search query"},
                    "limit": {"type": "integer", "description": "Max results", "default": 10},
                    "mode": {"type": "string", "description": "lexical|semantic|hybrid", "default": "lexical"},
                },
                "required": ["query"],
            },
        ),
        Tool(
            name="get_graph",
            description="Get knowledge graph data (entities as nodes, facts as edges). Optionally restricted to one entity.",
            inputSchema={
                "type": "object",
                "properties": {
                    "entity": {"type": "string", "description": "Filter by entity name"},
                },
            },
        ),
        Tool(
            name="get_graph_stats",
            description="Get knowledge graph statistics: fact, entity and predicate counts, top entities and predicates.",
            inputSchema={"type": "object", "properties": {}},
        ),
    ]


def _response(data: Any) -> List[TextContent]:
    return [TextContent(type="text", text=json.dumps(data, indent=2, default=str))]


def _with_engine(context: ToolContext, fn: Callable[[MemoryEngine], Any]) -> Any:
    with context.engine_factory() as engine:
        return fn(engine)


def _graph(engine: MemoryEngine, entity: Optional[str]) -> Dict[str, Any]:
    facts = engine.get_entity_facts(entity) if entity else engine.get_all_facts()
    return FactGraph(facts).to_json()


async def handle_tool_call(name: str, arguments: Optional[Dict[str, Any]], context: ToolContext) -> List[TextContent]:
    """
    Handle MCP tool calls with JSON responses

    Args:
        name: Tool name
        arguments: Tool arguments
        context: ToolContext with config, store factory and CLI runner

    Returns:
        List of TextContent with JSON-encoded responses
    """
    arguments = arguments or {}
    try:
        if name == "list_sessions":
            data = await context.cli_factory(["sessions", "--json"]).fetch()
            return _response(data)

        elif name == "list_tasks":
            data = await context.cli_factory(["cron", "list", "--json"]).fetch()
            jobs = data if isinstance(data, list) else data.get("jobs", [])
            tasks = [normalize_task(job) for job in jobs if isinstance(job, dict)]
            return _response(serialize_list(tasks))

        elif name == "get_activity":
            limit = int(arguments.get("limit", 50))
            lines = await context.cli_factory(["logs", "--json", "--limit", str(limit)], json_lines=True).fetch()
            events = classify_lines(lines)[:limit]
            return _response(serialize_list(events))

        elif name == "search_memory":
            request = SearchRequest(
                query=arguments["query"],
                mode=arguments.get("mode", "lexical"),
                limit=int(arguments.get("limit", 10)),
            )
            items = await context.search.search(request)
            return _response(serialize_list(items))

        elif name == "get_graph":
            entity = arguments.get("entity")
            graph = await asyncio.to_thread(_with_engine, context, lambda engine: _graph(engine, entity))
            return _response(graph)

        elif name == "get_graph_stats":
            stats = await asyncio.to_thread(_with_engine, context, lambda engine: engine.get_graph_stats())
            return _response(stats)

        else:
            return _response({"error": f"Unknown tool: {name}", "tool": name})

    except Exception as e:
        logger.error(f"Tool execution error: {name}: {e}", exc_info=True)
        return [TextContent(type="text", text=json.dumps({
            "error": str(e),
            "tool": name,
            "type": type(e).__name__,
        }, indent=2))]
