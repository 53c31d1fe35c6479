#!/usr/bin/env python3
"""
ClawScope Web Server
FastAPI server providing the dashboard pages and the JSON API behind them:
memory search, sessions, scheduled tasks, activity timeline and the fact graph.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response
from fastapi.templating import Jinja2Templates
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .cache import TTLCache
from .config import ClawScopeConfig, setup_logging
from .graph_ops import FactGraph, empty_stats
from .models import TimelineEvent, serialize_list
from .providers import build_providers
from .search import SearchBackend, SearchRequest
from .settings_store import SettingsStore
from .storage import MemoryEngine, engine_factory_for
from .timeline import DEFAULT_LIMIT, build_timeline, default_since
from .utils import parse_timestamp, utc_now

logger = logging.getLogger("clawscope.web")

TEMPLATES_DIR = Path(__file__).parent / "templates"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

PAGES = {
    "/": ("index.html", "search"),
    "/index.html": ("index.html", "search"),
    "/timeline": ("timeline.html", "timeline"),
    "/graph": ("graph.html", "graph"),
    "/db": ("db.html", "db"),
    "/settings": ("settings.html", "settings"),
}

ACTIVITY_LIMIT = 30
ITEMS_LIMIT = 50
GRAPH_LIMIT = 5000


def create_app(
    config: Optional[ClawScopeConfig] = None,
    engine_factory: Optional[Callable[..., MemoryEngine]] = None,
    providers: Optional[Dict[str, Any]] = None,
    session_cache: Optional[TTLCache] = None,
    settings_store: Optional[SettingsStore] = None,
) -> FastAPI:
    """Composition root: every collaborator can be injected for tests"""
    config = config or ClawScopeConfig.from_env()
    engine_factory = engine_factory or engine_factory_for(config)
    session_cache = session_cache or TTLCache(config.sessions_ttl)
    providers = providers or build_providers(config, session_cache)

    app = FastAPI(
        title="ClawScope",
        description="Dashboard and API over OpenClaw memory, sessions, tasks and activity",
        version=__version__,
    )
    app.state.config = config
    app.state.engine_factory = engine_factory
    app.state.search = SearchBackend(config, engine_factory)
    app.state.providers = providers
    app.state.session_cache = session_cache
    app.state.settings = settings_store or SettingsStore(config.settings_path)
    # Extraction time lives in process memory; the store belongs to the plugin
    app.state.last_extraction = None

    templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

    @app.middleware("http")
    async def cors_headers(request: Request, call_next):
        """Permissive CORS on every response; preflight is answered here"""
        if request.method == "OPTIONS":
            response = Response(status_code=200)
        else:
            response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return PlainTextResponse("Not found", status_code=404)
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code)

    # ===== PAGES =====

    def page_handler(template: str, active: str):
        async def render(request: Request):
            return templates.TemplateResponse(
                request, template, {"active": active, "version": __version__}
            )
        return render

    for path, (template, active) in PAGES.items():
        app.add_api_route(path, page_handler(template, active), methods=["GET"],
                          response_class=HTMLResponse, include_in_schema=False)

    # ===== MEMORY =====

    @app.get("/memory/search")
    async def memory_search(
        q: str = Query("", description="Search query"),
        mode: Optional[str] = Query(None, description="lexical | semantic | hybrid"),
        limit: Optional[int] = Query(None, ge=1, le=500),
        source: Optional[str] = Query(None, description="Keep only results from this source"),
        search: SearchBackend = Depends(get_search_backend),
        settings: SettingsStore = Depends(get_settings_store),
    ):
        """Search the offline memory store."""
        saved = settings.typed()
        search_request = SearchRequest(
            query=q,
            mode=mode or saved.mode,
            limit=limit or saved.topK,
            sources=[source] if source else None,
        )
        try:
            items = await search.search(search_request)
        except Exception as e:
            logger.error(f"Search failed for {q!r}: {e}")
            return JSONResponse({"error": str(e) or "search failed"}, status_code=500)
        return serialize_list(items)

    @app.get("/memory/categories")
    async def memory_categories(
        detailed: bool = Query(False, description="Return {tag, count} pairs"),
        search: SearchBackend = Depends(get_search_backend),
    ):
        try:
            categories = await search.get_categories()
        except Exception as e:
            logger.warning(f"Categories unavailable: {e}")
            return []
        if detailed:
            return categories
        return [c["tag"] for c in categories]

    @app.get("/memory/stats")
    async def memory_stats(request: Request):
        def _stats(engine: MemoryEngine):
            graph = engine.get_graph_stats()
            return {
                "totalItems": engine.count_items(),
                "totalFacts": graph["totalFacts"],
                "totalEntities": graph["totalEntities"],
                "totalPredicates": graph["totalPredicates"],
            }
        try:
            return await run_with_engine(request, _stats)
        except Exception as e:
            logger.warning(f"Memory stats unavailable: {e}")
            return {"totalItems": 0, "totalFacts": 0, "totalEntities": 0, "totalPredicates": 0, "error": str(e)}

    @app.get("/memory/items")
    async def memory_items(request: Request, limit: int = Query(ITEMS_LIMIT, ge=1, le=1000)):
        try:
            return await run_with_engine(request, lambda engine: engine.list_items(limit))
        except Exception as e:
            logger.warning(f"Memory items unavailable: {e}")
            return []

    # ===== SESSIONS / TASKS / ACTIVITY =====

    @app.get("/sessions")
    async def sessions(request: Request):
        return await request.app.state.providers["sessions"].list_sessions()

    @app.get("/tasks")
    async def tasks(request: Request):
        return serialize_list(await request.app.state.providers["tasks"].list_tasks())

    @app.get("/activity")
    async def activity(request: Request, limit: int = Query(ACTIVITY_LIMIT, ge=1, le=500)):
        events = await request.app.state.providers["activity"].list_activity()
        return serialize_list(newest_first(events)[:limit])

    @app.get("/timeline-data")
    async def timeline_data(
        request: Request,
        since: Optional[str] = Query(None, description="ISO lower bound, default now - 7 days"),
        limit: int = Query(DEFAULT_LIMIT, ge=1, le=1000),
    ):
        state = request.app.state
        since_dt = parse_timestamp(since) or default_since()
        try:
            session_list, task_list, activity_list = await asyncio.gather(
                state.providers["sessions"].list_sessions(),
                state.providers["tasks"].list_tasks(),
                state.providers["timeline_activity"].list_activity(limit=limit),
            )
            events = build_timeline(session_list, task_list, activity_list, since=since_dt, limit=limit)
        except Exception as e:
            logger.error(f"Timeline assembly failed: {e}")
            return []
        return serialize_list(events)

    # ===== KNOWLEDGE GRAPH =====

    @app.get("/graph-data")
    async def graph_data(
        request: Request,
        entity: Optional[str] = Query(None, description="Only facts touching this entity"),
        minConfidence: float = Query(0.0, ge=0.0, le=1.0),
        limit: int = Query(GRAPH_LIMIT, ge=1),
    ):
        def _graph(engine: MemoryEngine):
            if entity:
                facts = engine.get_entity_facts(entity, min_confidence=minConfidence)
            else:
                facts = engine.get_all_facts(min_confidence=minConfidence, limit=limit)
            data = FactGraph(facts).to_json()
            data["stats"] = engine.get_graph_stats()
            return data
        try:
            return await run_with_engine(request, _graph)
        except Exception as e:
            logger.warning(f"Graph data unavailable: {e}")
            return {"nodes": [], "edges": [], "stats": empty_stats(), "error": str(e)}

    @app.api_route("/extract-facts", methods=["GET", "POST"])
    async def extract_facts(request: Request, settings: SettingsStore = Depends(get_settings_store)):
        """Run fact extraction over the memory items and store new facts."""
        mode = settings.typed().extractionMode or "simple"
        try:
            facts = await run_with_engine(request, lambda engine: engine.extract_facts(mode))
        except Exception as e:
            logger.error(f"Fact extraction failed: {e}")
            return JSONResponse({"error": str(e)}, status_code=500)
        request.app.state.last_extraction = utc_now().isoformat()
        return {"success": True, "count": len(facts)}

    # ===== SETTINGS =====

    @app.get("/settings/config")
    async def settings_config(settings: SettingsStore = Depends(get_settings_store)):
        return settings.load()

    @app.post("/settings/save")
    async def settings_save(request: Request, settings: SettingsStore = Depends(get_settings_store)):
        try:
            body = await request.body()
            data = json.loads(body) if body.strip() else {}
            settings.save(data)
        except (ValueError, OSError) as e:
            logger.error(f"Rejected settings payload: {e}")
            return JSONResponse({"error": str(e)}, status_code=500)
        return {"ok": True}

    @app.get("/settings/status")
    async def settings_status(request: Request, settings: SettingsStore = Depends(get_settings_store)):
        def _status(engine: MemoryEngine):
            return {
                "memory": {"items": engine.count_items(), "facts": engine.count_facts()},
                "graph": engine.get_graph_stats(),
            }
        try:
            status = await run_with_engine(request, _status)
        except Exception as e:
            logger.error(f"Status unavailable: {e}")
            return JSONResponse({"error": str(e)}, status_code=500)
        status["lastExtraction"] = request.app.state.last_extraction
        status["settings"] = settings.load()
        return status

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": __version__}

    return app


def get_search_backend(request: Request) -> SearchBackend:
    return request.app.state.search


def get_settings_store(request: Request) -> SettingsStore:
    return request.app.state.settings


async def run_with_engine(request: Request, fn: Callable[[MemoryEngine], Any]) -> Any:
    """Open a store handle for this request and run fn on a worker thread"""
    factory = request.app.state.engine_factory

    def _run():
        with factory() as engine:
            return fn(engine)
    return await asyncio.to_thread(_run)


def newest_first(events):
    """Sort by timestamp, newest first; later input wins ties"""
    def key(event: TimelineEvent):
        ts = parse_timestamp(event.ts)
        return ts.timestamp() if ts else float("-inf")
    return sorted(reversed(list(events)), key=key, reverse=True)


def main():
    config = ClawScopeConfig.from_env()
    setup_logging(config.log_level)
    logger.info(f"ClawScope {__version__} on http://{config.host}:{config.port} (store: {config.db_path})")
    uvicorn.run(create_app(config), host=config.host, port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
