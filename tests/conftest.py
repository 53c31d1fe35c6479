"""Shared fixtures for ClawScope tests."""

import pytest

from clawscope.config import ClawScopeConfig
from clawscope.providers import UpstreamError
from clawscope.storage import MemoryEngine


class FakeEmbedder:
    """Returns fixed vectors per query text; unknown text means the service is down."""

    def __init__(self, vectors=None):
        self.vectors = vectors or {}
        self.calls = []

    def embed(self, text):
        self.calls.append(text)
        return self.vectors.get(text.strip())


class FakeStrategy:
    """Fetch strategy double that counts calls."""

    def __init__(self, name, result=None, error=None):
        self.name = name
        self.result = result
        self.error = error
        self.calls = 0

    async def fetch(self):
        self.calls += 1
        if self.error:
            raise UpstreamError(self.error)
        return self.result


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "offline.sqlite"


@pytest.fixture
def config(tmp_path, db_path):
    return ClawScopeConfig(
        db_path=db_path,
        settings_path=tmp_path / "clawscope.settings.json",
        plugin_base_url="http://plugin.test",
    )


@pytest.fixture
def engine(db_path):
    engine = MemoryEngine(db_path)
    yield engine
    engine.close()


@pytest.fixture
def populated_engine(engine):
    """Store with a handful of memories, embeddings and tags."""
    engine.add_item(
        "m1", "Alice works at Acme Corp. She writes Python every day.",
        source="chat", tags='["work", "people"]', created_at="2026-01-01T10:00:00Z",
        embedding=[0.0, 1.0, 0.0], model="bge-m3",
    )
    engine.add_item(
        "m2", "Bob loves hiking in the   Alps\nduring summer.",
        source="chat", tags="personal, travel", created_at="2026-01-02T10:00:00Z",
        embedding=[1.0, 0.0, 0.0], model="bge-m3",
    )
    engine.add_item(
        "m3", "Grocery list: milk, eggs, bread.",
        source="notes", tags="personal", created_at="2026-01-03T10:00:00Z",
        embedding=[0.0, 0.0, 1.0], model="bge-m3",
    )
    engine.add_item(
        "m4", "Weekly sync notes about the deployment pipeline.",
        source=None, tags=None, created_at="2026-01-04T10:00:00Z",
    )
    return engine


@pytest.fixture
def engine_factory(populated_engine, db_path):
    """Opens a fresh handle on the populated store, like the web server does per request."""
    embedder = FakeEmbedder({"mountains": [1.0, 0.0, 0.0], "python": [0.0, 1.0, 0.0]})

    def factory(read_only=False):
        return MemoryEngine(db_path, embedder=embedder, read_only=read_only)
    factory.embedder = embedder
    return factory
