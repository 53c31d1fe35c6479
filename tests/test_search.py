"""Tests for the search backend adapter."""

import asyncio
import sqlite3

import pytest

from clawscope.config import ClawScopeConfig
from clawscope.search import SearchBackend, SearchRequest, dedupe_ranked, normalize_hybrid, normalize_lexical
from clawscope.storage import HybridHit, LexicalHit
from clawscope.models import SearchItem


def search(backend, **kwargs):
    return asyncio.run(backend.search(SearchRequest(**kwargs)))


def test_empty_query_never_opens_store(config):
    def factory(**kwargs):
        raise AssertionError("store must not be opened for an empty query")

    backend = SearchBackend(config, factory)
    assert search(backend, query="") == []
    assert search(backend, query="   \n\t") == []


def test_lexical_search(config, engine_factory):
    backend = SearchBackend(config, engine_factory)
    items = search(backend, query="hiking", mode="lexical")

    assert [item.id for item in items] == ["m2"]
    item = items[0]
    assert item.kind == "memory"
    assert item.source == "chat"
    assert item.score == item.score_fts
    assert item.score_embed is None
    assert item.snippet == "Bob loves hiking in the Alps during summer."
    assert item.payload["memory_id"] == "m2"
    assert item.payload["tags"] == "personal, travel"
    assert "score_embed" not in item.to_dict()


def test_missing_source_defaults_to_openclaw(config, engine_factory):
    backend = SearchBackend(config, engine_factory)
    items = search(backend, query="deployment", mode="lexical")
    assert items[0].id == "m4"
    assert items[0].source == "openclaw"


def test_hybrid_ranks_semantic_neighbour(config, engine_factory):
    backend = SearchBackend(config, engine_factory)
    # "mountains" has no lexical match; its vector equals the hiking memory's
    items = search(backend, query="mountains", mode="hybrid", limit=3)

    assert items[0].id == "m2"
    assert items[0].score_embed == pytest.approx(1.0)
    assert items[0].score == pytest.approx(0.7)
    assert len({item.id for item in items}) == len(items)


def test_hybrid_blends_both_components(config, engine_factory):
    backend = SearchBackend(config, engine_factory)
    items = search(backend, query="python", mode="semantic")

    top = items[0]
    assert top.id == "m1"
    assert top.score_fts == pytest.approx(1.0)
    assert top.score_embed == pytest.approx(1.0)
    assert top.score == pytest.approx(1.0)


def test_hybrid_without_embedding_service_uses_lexical_only(config, engine_factory):
    backend = SearchBackend(config, engine_factory)
    items = search(backend, query="grocery", mode="hybrid")
    assert [item.id for item in items] == ["m3"]
    assert items[0].score == pytest.approx(0.3)


def test_unknown_mode_falls_back_to_hybrid(config, engine_factory):
    backend = SearchBackend(config, engine_factory)
    items = search(backend, query="mountains", mode="fuzzy")
    assert items and items[0].id == "m2"


def test_limit_and_source_filter(config, engine_factory):
    backend = SearchBackend(config, engine_factory)
    items = search(backend, query="Alice Bob Grocery", mode="lexical", limit=2)
    assert len(items) == 2

    notes = search(backend, query="Alice Bob Grocery", mode="lexical", sources=["notes"])
    assert [item.id for item in notes] == ["m3"]


def test_results_sorted_by_descending_score(config, engine_factory):
    backend = SearchBackend(config, engine_factory)
    items = search(backend, query="Alice hiking milk", mode="hybrid")
    scores = [item.score for item in items]
    assert scores == sorted(scores, reverse=True)


def test_store_failure_propagates(config):
    def factory(**kwargs):
        raise sqlite3.OperationalError("unable to open database file")

    backend = SearchBackend(config, factory)
    with pytest.raises(sqlite3.OperationalError):
        search(backend, query="anything")


def test_categories(config, engine_factory):
    backend = SearchBackend(config, engine_factory)
    categories = asyncio.run(backend.get_categories())
    assert categories[0] == {"tag": "personal", "count": 2}
    assert {c["tag"] for c in categories} == {"personal", "work", "people", "travel"}


class TestNormalizers:
    ITEM = {"id": 7, "text": "a  b\nc", "source": None, "source_id": "s-7", "title": "T",
            "tags": None, "created_at": "2026-01-01T00:00:00Z"}

    def test_lexical_hit(self):
        item = normalize_lexical(LexicalHit(item=self.ITEM, score=2.5))
        assert item.id == "7"
        assert item.snippet == "a b c"
        assert (item.score, item.score_fts, item.score_embed) == (2.5, 2.5, None)
        assert item.payload["source_id"] == "s-7"

    def test_hybrid_hit(self):
        item = normalize_hybrid(HybridHit(item=self.ITEM, score=0.5, lexical_score=None, semantic_score=0.9))
        assert (item.score, item.score_fts, item.score_embed) == (0.5, None, 0.9)

    def test_dedupe_keeps_first_and_is_stable(self):
        items = [
            SearchItem(id="a", snippet="", score=0.5),
            SearchItem(id="b", snippet="", score=0.9),
            SearchItem(id="a", snippet="dup", score=0.99),
            SearchItem(id="c", snippet="", score=0.5),
        ]
        ranked = dedupe_ranked(items)
        assert [item.id for item in ranked] == ["b", "a", "c"]
        assert ranked[1].snippet == ""
