"""
Global search abstraction for ClawScope

SearchBackend turns a SearchRequest into normalized SearchItem lists on top of
the memory engine. Each engine result shape has its own normalizer.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .config import ClawScopeConfig
from .models import SearchItem
from .storage import MemoryEngine, LexicalHit, HybridHit
from .utils import build_snippet

logger = logging.getLogger("clawscope.search")

SEARCH_MODES = ("lexical", "semantic", "hybrid")
DEFAULT_MODE = "hybrid"
DEFAULT_SOURCE = "openclaw"


@dataclass
class SearchRequest:
    query: str
    mode: Optional[str] = None
    limit: Optional[int] = None
    candidates: Optional[int] = None
    sources: Optional[List[str]] = None


def normalize_mode(mode: Optional[str]) -> str:
    if mode in SEARCH_MODES:
        return mode
    if mode:
        logger.warning(f"Unknown search mode '{mode}', using {DEFAULT_MODE}")
    return DEFAULT_MODE


def _payload(item: Dict[str, Any], text: str) -> Dict[str, Any]:
    return {
        "memory_id": item.get("id"),
        "text": text,
        "tags": item.get("tags"),
        "source": item.get("source"),
        "source_id": item.get("source_id"),
    }


def normalize_lexical(hit: LexicalHit) -> SearchItem:
    item = hit.item
    text = str(item.get("text") or "")
    return SearchItem(
        id=str(item["id"]),
        kind="memory",
        source=item.get("source") or DEFAULT_SOURCE,
        title=item.get("title"),
        snippet=build_snippet(text),
        score=hit.score,
        score_fts=hit.score,
        score_embed=None,
        created_at=item.get("created_at"),
        payload=_payload(item, text),
    )


def normalize_hybrid(hit: HybridHit) -> SearchItem:
    item = hit.item
    text = str(item.get("text") or "")
    return SearchItem(
        id=str(item["id"]),
        kind="memory",
        source=item.get("source") or DEFAULT_SOURCE,
        title=item.get("title"),
        snippet=build_snippet(text),
        score=hit.score,
        score_fts=hit.lexical_score,
        score_embed=hit.semantic_score,
        created_at=item.get("created_at"),
        payload=_payload(item, text),
    )


def dedupe_ranked(items: List[SearchItem]) -> List[SearchItem]:
    """Keep the first occurrence of each id, then stable-sort by score"""
    seen = set()
    unique = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return sorted(unique, key=lambda item: -item.score)


class SearchBackend:
    """Offline-sqlite search backend.

    A fresh engine handle is opened for every search so concurrent requests
    never share a connection. Store and query errors propagate to the caller.
    """

    def __init__(self, config: ClawScopeConfig, engine_factory: Callable[..., MemoryEngine]):
        self.config = config
        self.engine_factory = engine_factory

    async def search(self, request: SearchRequest) -> List[SearchItem]:
        query = (request.query or "").strip()
        if not query:
            return []
        return await asyncio.to_thread(self._search_sync, query, request)

    def _search_sync(self, query: str, request: SearchRequest) -> List[SearchItem]:
        mode = normalize_mode(request.mode)
        limit = request.limit or self.config.default_limit
        candidates = request.candidates or self.config.default_candidates

        with self.engine_factory(read_only=True) as engine:
            if mode == "lexical":
                items = [normalize_lexical(hit) for hit in engine.search_lexical(query, limit)]
            else:
                # "semantic" runs through the hybrid path as well
                hits = engine.search_hybrid(query, limit, max(candidates, limit), self.config.semantic_weight)
                items = [normalize_hybrid(hit) for hit in hits]

        if request.sources:
            wanted = set(request.sources)
            items = [item for item in items if item.source in wanted]

        logger.debug(f"search mode={mode} query={query!r} -> {len(items)} items")
        return dedupe_ranked(items)

    async def get_categories(self) -> List[Dict[str, Any]]:
        def _categories():
            with self.engine_factory(read_only=True) as engine:
                return engine.list_categories()
        return await asyncio.to_thread(_categories)
