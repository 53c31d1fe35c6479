"""Tests for the ClawScope HTTP API and dashboard pages."""

import sqlite3

import pytest
from fastapi.testclient import TestClient

from clawscope import __version__
from clawscope.cache import TTLCache
from clawscope.providers import ActivityProvider, SessionProvider, TaskProvider
from clawscope.settings_store import SettingsStore
from clawscope.web_server import create_app

from conftest import FakeStrategy

SESSIONS = {"sessions": [
    {"key": "agent:main:main", "sessionId": "s1", "updatedAt": "2026-01-03T10:00:00Z", "displayName": "Main"},
]}
JOBS = {"jobs": [
    {"id": "j1", "name": "Digest", "schedule": {"kind": "every", "everyMs": 3600000},
     "state": {"lastRunAtMs": 1767348000000, "nextRunAtMs": 1767351600000}},
]}
ACTIVITY = [
    {"id": "a1", "ts": "2026-01-02T10:00:00Z", "kind": "tool", "summary": "▶ exec"},
    {"id": "a2", "ts": "2026-01-04T10:00:00Z", "kind": "alert", "summary": "rate limited", "level": "warn"},
    {"id": "a3", "ts": "2026-01-03T12:00:00Z", "kind": "memory", "summary": "recall"},
]


class Upstream:
    """Fake plugin strategies behind every provider"""

    def __init__(self, sessions=SESSIONS, jobs=JOBS, activity=ACTIVITY):
        self.sessions = FakeStrategy("plugin", result=sessions)
        self.tasks = FakeStrategy("plugin", result=jobs)
        self.activity = FakeStrategy("plugin", result=activity)

    def providers(self, cache):
        activity = ActivityProvider(self.activity, None)
        return {
            "sessions": SessionProvider([self.sessions], cache),
            "tasks": TaskProvider([self.tasks]),
            "activity": activity,
            "timeline_activity": activity,
        }


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
def settings_store(config):
    return SettingsStore(config.settings_path)


@pytest.fixture
def client(config, engine_factory, upstream, settings_store):
    cache = TTLCache(config.sessions_ttl)
    app = create_app(config, engine_factory=engine_factory, providers=upstream.providers(cache),
                     session_cache=cache, settings_store=settings_store)
    return TestClient(app)


@pytest.fixture
def broken_client(config, upstream, settings_store):
    def factory(**kwargs):
        raise sqlite3.OperationalError("unable to open database file")

    cache = TTLCache(config.sessions_ttl)
    app = create_app(config, engine_factory=factory, providers=upstream.providers(cache),
                     session_cache=cache, settings_store=settings_store)
    return TestClient(app)


class TestHttpBasics:
    def test_cors_headers_on_every_response(self, client):
        for path in ("/health", "/memory/search?q=hiking", "/no-such-page"):
            response = client.get(path)
            assert response.headers["access-control-allow-origin"] == "*"
            assert "POST" in response.headers["access-control-allow-methods"]

    def test_preflight(self, client):
        response = client.options("/memory/search")
        assert response.status_code == 200
        assert response.content == b""
        assert response.headers["access-control-allow-headers"] == "Content-Type"

    def test_unknown_path(self, client):
        response = client.get("/nope")
        assert response.status_code == 404
        assert response.text == "Not found"

    @pytest.mark.parametrize("path", ["/", "/index.html", "/timeline", "/graph", "/db", "/settings"])
    def test_pages_render(self, client, path):
        response = client.get(path)
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert "ClawScope" in response.text
        assert f"v{__version__}" in response.text

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok", "version": __version__}


class TestMemoryRoutes:
    def test_search(self, client):
        items = client.get("/memory/search", params={"q": "hiking", "mode": "lexical"}).json()
        assert [item["id"] for item in items] == ["m2"]
        assert items[0]["kind"] == "memory"
        assert items[0]["snippet"] == "Bob loves hiking in the Alps during summer."

    def test_empty_query(self, client):
        assert client.get("/memory/search").json() == []

    def test_source_filter(self, client):
        items = client.get("/memory/search", params={"q": "Alice Bob Grocery", "mode": "lexical",
                                                      "source": "notes"}).json()
        assert [item["id"] for item in items] == ["m3"]

    def test_saved_settings_supply_defaults(self, client, settings_store):
        settings_store.save({"mode": "lexical", "topK": 1})
        items = client.get("/memory/search", params={"q": "Alice Bob Grocery"}).json()
        assert len(items) == 1
        assert "score_embed" not in items[0]

    def test_invalid_limit(self, client):
        assert client.get("/memory/search", params={"q": "x", "limit": 0}).status_code == 422

    def test_store_failure(self, broken_client):
        response = broken_client.get("/memory/search", params={"q": "hiking"})
        assert response.status_code == 500
        assert "unable to open database file" in response.json()["error"]

    def test_categories(self, client):
        assert client.get("/memory/categories").json() == ["personal", "people", "travel", "work"]
        detailed = client.get("/memory/categories", params={"detailed": 1}).json()
        assert detailed[0] == {"tag": "personal", "count": 2}

    def test_categories_on_failure(self, broken_client):
        response = broken_client.get("/memory/categories")
        assert response.status_code == 200
        assert response.json() == []

    def test_stats(self, client):
        client.post("/extract-facts")
        assert client.get("/memory/stats").json() == {
            "totalItems": 4, "totalFacts": 2, "totalEntities": 4, "totalPredicates": 2,
        }

    def test_stats_on_failure(self, broken_client):
        data = broken_client.get("/memory/stats").json()
        assert data["totalItems"] == 0
        assert "error" in data

    def test_items(self, client):
        items = client.get("/memory/items", params={"limit": 2}).json()
        assert [item["id"] for item in items] == ["m4", "m3"]
        assert len(client.get("/memory/items").json()) == 4

    def test_items_on_failure(self, broken_client):
        assert broken_client.get("/memory/items").json() == []


class TestLiveRoutes:
    def test_sessions_are_cached(self, client, upstream):
        first = client.get("/sessions").json()
        second = client.get("/sessions").json()
        assert first == second == SESSIONS["sessions"]
        assert upstream.sessions.calls == 1

    def test_sessions_unavailable(self, config, engine_factory):
        upstream = Upstream()
        upstream.sessions = FakeStrategy("plugin", error="down")
        cache = TTLCache(config.sessions_ttl)
        client = TestClient(create_app(config, engine_factory=engine_factory, providers=upstream.providers(cache)))
        assert client.get("/sessions").json() == []

    def test_tasks(self, client):
        tasks = client.get("/tasks").json()
        assert tasks == [{
            "id": "j1", "kind": "cron_job", "name": "Digest", "schedule": "every 60min", "active": True,
            "source": "cron", "lastRunAt": "2026-01-02T10:00:00.000Z", "details": JOBS["jobs"][0],
            "nextRunAt": "2026-01-02T11:00:00.000Z",
        }]

    def test_activity_newest_first(self, client):
        events = client.get("/activity").json()
        assert [e["id"] for e in events] == ["a2", "a3", "a1"]
        assert events[0]["level"] == "warn"

    def test_activity_limit(self, client):
        assert [e["id"] for e in client.get("/activity", params={"limit": 1}).json()] == ["a2"]

    def test_timeline(self, client):
        events = client.get("/timeline-data", params={"since": "2026-01-01T00:00:00Z"}).json()
        assert [e["id"] for e in events] == ["a2", "a3", "s1", "j1", "a1"]
        assert [e["kind"] for e in events] == ["alert", "memory", "session", "cron", "tool"]

    def test_timeline_since_and_limit(self, client):
        events = client.get("/timeline-data", params={"since": "2026-01-03T00:00:00Z", "limit": 2}).json()
        assert [e["id"] for e in events] == ["a2", "a3"]

    def test_timeline_limit_reaches_log_window(self, config, engine_factory):
        windows = []

        def cli_for_limit(limit):
            windows.append(limit)
            return FakeStrategy("cli", result=[])

        upstream = Upstream()
        cache = TTLCache(config.sessions_ttl)
        providers = upstream.providers(cache)
        providers["timeline_activity"] = ActivityProvider(FakeStrategy("plugin", result=[]), None,
                                                          cli_for_limit=cli_for_limit)
        client = TestClient(create_app(config, engine_factory=engine_factory, providers=providers))
        client.get("/timeline-data", params={"limit": 300})
        assert windows == [300]


class TestGraphRoutes:
    def test_graph_data(self, client):
        assert client.post("/extract-facts").json() == {"success": True, "count": 2}
        data = client.get("/graph-data").json()
        assert len(data["nodes"]) == 4
        assert {"from": "Alice", "to": "Acme Corp", "label": "works_at", "confidence": 0.7} in data["edges"]
        assert data["stats"]["totalFacts"] == 2

    def test_graph_entity_filter(self, client):
        client.get("/extract-facts")
        data = client.get("/graph-data", params={"entity": "bob"}).json()
        assert [edge["from"] for edge in data["edges"]] == ["Bob"]

    def test_graph_min_confidence(self, client):
        client.post("/extract-facts")
        data = client.get("/graph-data", params={"minConfidence": 0.9}).json()
        assert data["edges"] == []

    def test_graph_on_failure(self, broken_client):
        response = broken_client.get("/graph-data")
        assert response.status_code == 200
        data = response.json()
        assert (data["nodes"], data["edges"]) == ([], [])
        assert data["stats"]["totalFacts"] == 0
        assert "error" in data

    def test_extract_is_idempotent(self, client):
        client.post("/extract-facts")
        assert client.post("/extract-facts").json() == {"success": True, "count": 0}

    def test_extract_on_failure(self, broken_client):
        assert broken_client.post("/extract-facts").status_code == 500


class TestSettingsRoutes:
    def test_save_and_read_back(self, client, config):
        assert client.get("/settings/config").json() == {}
        response = client.post("/settings/save", json={"mode": "hybrid", "topK": 15})
        assert response.json() == {"ok": True}
        assert client.get("/settings/config").json() == {"mode": "hybrid", "topK": 15}
        assert config.settings_path.exists()

    def test_empty_body_saves_empty_object(self, client):
        client.post("/settings/save", json={"mode": "lexical"})
        assert client.post("/settings/save", content=b"").json() == {"ok": True}
        assert client.get("/settings/config").json() == {}

    def test_invalid_payloads(self, client):
        assert client.post("/settings/save", content=b"{oops").status_code == 500
        assert client.post("/settings/save", json=[1, 2]).status_code == 500

    def test_status(self, client):
        client.post("/settings/save", json={"extractionMode": "simple"})
        assert client.get("/settings/status").json()["lastExtraction"] is None
        client.post("/extract-facts")
        status = client.get("/settings/status").json()
        assert status["memory"] == {"items": 4, "facts": 2}
        assert status["graph"]["totalEntities"] == 4
        assert status["lastExtraction"] is not None
        assert status["settings"] == {"extractionMode": "simple"}

    def test_status_on_failure(self, broken_client):
        assert broken_client.get("/settings/status").status_code == 500
