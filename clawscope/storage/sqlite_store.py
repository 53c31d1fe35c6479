"""
SQLite access to the offline memory engine store for ClawScope

The store is owned by the memory-offline-sqlite plugin. This module opens it,
makes sure the schema exists, and runs the engine-level queries the dashboard
needs: lexical and hybrid search, categories, raw items and the fact graph.
"""

import json
import logging
import re
import sqlite3
import threading
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from ..graph_ops import FactGraph
from ..models import Fact
from .embeddings import EmbeddingClient

logger = logging.getLogger("clawscope.sqlite")

SCHEMA = """
    CREATE TABLE IF NOT EXISTS items (
        id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL,
        source TEXT,
        source_id TEXT,
        title TEXT,
        text TEXT NOT NULL,
        tags TEXT,
        meta TEXT
    );

    CREATE VIRTUAL TABLE IF NOT EXISTS items_fts USING fts5(
        id UNINDEXED,
        title,
        text,
        tags
    );

    CREATE TABLE IF NOT EXISTS item_embeddings (
        item_id TEXT PRIMARY KEY,
        model TEXT NOT NULL,
        dims INTEGER NOT NULL,
        vector BLOB NOT NULL,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS facts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        subject TEXT NOT NULL,
        predicate TEXT NOT NULL,
        object TEXT NOT NULL,
        confidence REAL NOT NULL DEFAULT 0.5,
        source_item_id TEXT,
        created_at TEXT NOT NULL,
        UNIQUE(subject, predicate, object)
    );

    CREATE INDEX IF NOT EXISTS idx_items_created ON items(created_at DESC);
    CREATE INDEX IF NOT EXISTS idx_facts_subject ON facts(subject);
    CREATE INDEX IF NOT EXISTS idx_facts_object ON facts(object);
"""

ITEM_COLUMNS = "i.id, i.created_at, i.source, i.source_id, i.title, i.text, i.tags"

# "Alice works at Acme", "I prefer dark mode", "Server is down"
FACT_PATTERN = re.compile(
    r"\b(?P<subject>I|[A-Z][\w\-]*(?: [A-Z][\w\-]*){0,3})\s+"
    r"(?P<predicate>works at|works on|lives in|is using|uses?|likes?|loves?|prefers?|owns?|knows?|wants?|needs?|is|has)\s+"
    r"(?P<object>[^.,;:!?\n]{2,60})"
)
PREDICATE_CONFIDENCE = {"is": 0.6, "has": 0.6}
DEFAULT_CONFIDENCE = 0.7
SUPPORTED_EXTRACTION_MODES = ("simple",)


@dataclass
class LexicalHit:
    """Engine lexical result: item row plus bm25-derived score"""
    item: Dict[str, Any]
    score: float


@dataclass
class HybridHit:
    """Engine hybrid result: blended score plus both components"""
    item: Dict[str, Any]
    score: float
    lexical_score: Optional[float]
    semantic_score: Optional[float]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _decode_vector(raw) -> np.ndarray:
    if isinstance(raw, (bytes, bytearray, memoryview)):
        return np.frombuffer(bytes(raw), dtype=np.float32)
    return np.asarray(json.loads(raw), dtype=np.float32)


def parse_tags(raw: Optional[str]) -> List[str]:
    """Tags are stored either as a JSON array or as a comma separated string"""
    if not raw:
        return []
    raw = raw.strip()
    if raw.startswith("["):
        try:
            return [str(t).strip() for t in json.loads(raw) if str(t).strip()]
        except ValueError:
            pass
    return [t.strip() for t in raw.split(",") if t.strip()]


class MemoryEngine:
    """Read-mostly handle on the offline memory store"""

    def __init__(self, db_path: Path, embedder: Optional[EmbeddingClient] = None, read_only: bool = False):
        self.db_path = Path(db_path)
        self.embedder = embedder
        self.read_only = read_only
        self._lock = threading.RLock()
        self.conn: Optional[sqlite3.Connection] = None
        self._open()

    def _open(self):
        try:
            if self.read_only:
                # Search never creates the store; a missing file is an error
                uri = self.db_path.expanduser().resolve().as_uri() + "?mode=ro"
                self.conn = sqlite3.connect(uri, uri=True, check_same_thread=False)
                self.conn.row_factory = sqlite3.Row
                return
            self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.executescript(SCHEMA)
            self.conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Cannot open memory store {self.db_path}: {e}")
            if self.conn:
                self.conn.close()
                self.conn = None
            raise

    def close(self):
        if self.conn:
            with self._lock:
                self.conn.close()
                self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ===== WRITES (capture path, used by fact extraction and fixtures) =====

    def add_item(self, item_id: str, text: str, source: Optional[str] = None, title: Optional[str] = None,
                 tags: Optional[str] = None, created_at: Optional[str] = None, source_id: Optional[str] = None,
                 embedding: Optional[List[float]] = None, model: Optional[str] = None):
        with self._lock:
            self.conn.execute(
                "INSERT OR REPLACE INTO items (id, created_at, source, source_id, title, text, tags) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (item_id, created_at or _utc_now_iso(), source, source_id, title, text, tags),
            )
            self.conn.execute("DELETE FROM items_fts WHERE id = ?", (item_id,))
            self.conn.execute(
                "INSERT INTO items_fts (id, title, text, tags) VALUES (?, ?, ?, ?)",
                (item_id, title or "", text, tags or ""),
            )
            if embedding is not None:
                vector = np.asarray(embedding, dtype=np.float32)
                self.conn.execute(
                    "INSERT OR REPLACE INTO item_embeddings (item_id, model, dims, vector, created_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (item_id, model or "unknown", int(vector.shape[0]), vector.tobytes(), _utc_now_iso()),
                )
            self.conn.commit()

    def add_fact(self, subject: str, predicate: str, obj: str, confidence: float = DEFAULT_CONFIDENCE,
                 source_item_id: Optional[str] = None) -> bool:
        """Insert a fact; returns False when the triple already exists"""
        with self._lock:
            cursor = self.conn.execute(
                "INSERT OR IGNORE INTO facts (subject, predicate, object, confidence, source_item_id, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (subject, predicate, obj, confidence, source_item_id, _utc_now_iso()),
            )
            self.conn.commit()
            return cursor.rowcount > 0

    # ===== SEARCH =====

    def sanitize_fts_query(self, query: str) -> str:
        """Quote each word and OR them so partial keyword overlap still matches"""
        if not query or not query.strip():
            return '""'
        words = query.strip().split()
        escaped_words = [f'"{word.replace(chr(34), chr(34) + chr(34))}"' for word in words]
        return " OR ".join(escaped_words)

    def search_lexical(self, query: str, limit: int) -> List[LexicalHit]:
        """FTS5 search ordered by bm25; score is the negated bm25 rank (higher is better)"""
        fts_query = self.sanitize_fts_query(query)
        with self._lock:
            rows = self.conn.execute(
                f"SELECT {ITEM_COLUMNS}, bm25(items_fts) AS bm25_score "
                "FROM items_fts JOIN items i ON i.id = items_fts.id "
                "WHERE items_fts MATCH ? ORDER BY bm25_score LIMIT ?",
                (fts_query, limit),
            ).fetchall()
        return [LexicalHit(item=self._row_to_item(row), score=-float(row["bm25_score"])) for row in rows]

    def search_hybrid(self, query: str, limit: int, candidates: int, semantic_weight: float) -> List[HybridHit]:
        """Blend normalized lexical scores with embedding cosine similarity"""
        lexical = self.search_lexical(query, candidates)
        items: Dict[str, Dict[str, Any]] = {}
        lexical_scores: Dict[str, float] = {}
        max_lexical = max((hit.score for hit in lexical), default=0.0)
        for hit in lexical:
            item_id = str(hit.item["id"])
            items[item_id] = hit.item
            lexical_scores[item_id] = hit.score / max_lexical if max_lexical > 0 else 0.0

        semantic_scores = self._semantic_scores(query, candidates, set(lexical_scores))
        missing = [item_id for item_id in semantic_scores if item_id not in items]
        items.update(self._get_items(missing))

        ranked = []
        for order, (item_id, item) in enumerate(items.items()):
            lex = lexical_scores.get(item_id, 0.0)
            sem = max(semantic_scores.get(item_id, 0.0), 0.0)
            combined = (1.0 - semantic_weight) * lex + semantic_weight * sem
            ranked.append((combined, order, HybridHit(
                item=item,
                score=combined,
                lexical_score=lexical_scores.get(item_id),
                semantic_score=semantic_scores.get(item_id),
            )))

        ranked.sort(key=lambda entry: (-entry[0], entry[1]))
        return [hit for _, _, hit in ranked[:limit]]

    def _semantic_scores(self, query: str, candidates: int, always_include: set) -> Dict[str, float]:
        """Cosine similarity for the top candidates plus every lexical candidate"""
        if not self.embedder:
            return {}
        query_vector = self.embedder.embed(query)
        if query_vector is None:
            logger.warning("Hybrid search running without semantic scores")
            return {}

        q = np.asarray(query_vector, dtype=np.float32)
        q_norm = float(np.linalg.norm(q))
        if q_norm == 0.0:
            return {}

        with self._lock:
            rows = self.conn.execute(
                "SELECT item_id, vector FROM item_embeddings WHERE dims = ?", (int(q.shape[0]),)
            ).fetchall()
        if not rows:
            return {}

        ids = [str(row["item_id"]) for row in rows]
        matrix = np.vstack([_decode_vector(row["vector"]) for row in rows])
        norms = np.linalg.norm(matrix, axis=1)
        norms[norms == 0.0] = 1.0
        similarities = (matrix @ q) / (norms * q_norm)

        top = np.argsort(-similarities, kind="stable")[:candidates]
        selected = {ids[i] for i in top} | (always_include & set(ids))
        return {ids[i]: float(similarities[i]) for i in range(len(ids)) if ids[i] in selected}

    def _get_items(self, item_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        if not item_ids:
            return {}
        placeholders = ",".join("?" for _ in item_ids)
        with self._lock:
            rows = self.conn.execute(
                f"SELECT {ITEM_COLUMNS} FROM items i WHERE i.id IN ({placeholders})", item_ids
            ).fetchall()
        by_id = {str(row["id"]): self._row_to_item(row) for row in rows}
        return {item_id: by_id[item_id] for item_id in item_ids if item_id in by_id}

    def _row_to_item(self, row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "created_at": row["created_at"],
            "source": row["source"],
            "source_id": row["source_id"],
            "title": row["title"],
            "text": row["text"],
            "tags": row["tags"],
        }

    # ===== BROWSING =====

    def list_categories(self) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self.conn.execute("SELECT tags FROM items WHERE tags IS NOT NULL AND tags != ''").fetchall()
        counts = Counter(tag for row in rows for tag in parse_tags(row["tags"]))
        return [{"tag": tag, "count": count} for tag, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))]

    def list_items(self, limit: int = 50) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT id, source, text, tags, created_at FROM items ORDER BY created_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [dict(row) for row in rows]

    def count_items(self) -> int:
        with self._lock:
            return self.conn.execute("SELECT COUNT(*) FROM items").fetchone()[0]

    def count_facts(self) -> int:
        with self._lock:
            return self.conn.execute("SELECT COUNT(*) FROM facts").fetchone()[0]

    # ===== FACT GRAPH =====

    def get_all_facts(self, min_confidence: float = 0.0, limit: Optional[int] = None) -> List[Fact]:
        sql = ("SELECT id, subject, predicate, object, confidence, source_item_id, created_at FROM facts "
               "WHERE confidence >= ? ORDER BY confidence DESC, id")
        params: List[Any] = [min_confidence]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._lock:
            rows = self.conn.execute(sql, params).fetchall()
        return [self._row_to_fact(row) for row in rows]

    def get_entity_facts(self, entity: str, min_confidence: float = 0.0) -> List[Fact]:
        """Facts where the entity appears as subject or object (case-insensitive)"""
        with self._lock:
            rows = self.conn.execute(
                "SELECT id, subject, predicate, object, confidence, source_item_id, created_at FROM facts "
                "WHERE (lower(subject) = lower(?) OR lower(object) = lower(?)) AND confidence >= ? "
                "ORDER BY confidence DESC, id",
                (entity, entity, min_confidence),
            ).fetchall()
        return [self._row_to_fact(row) for row in rows]

    def _row_to_fact(self, row) -> Fact:
        return Fact(
            id=row["id"],
            subject=row["subject"],
            predicate=row["predicate"],
            object=row["object"],
            confidence=float(row["confidence"]),
            source_item_id=row["source_item_id"],
            created_at=row["created_at"],
        )

    def get_graph_stats(self) -> Dict[str, Any]:
        return FactGraph(self.get_all_facts()).get_stats()

    def extract_facts(self, mode: str = "simple") -> List[Fact]:
        """Run regex fact extraction over every item and store new triples"""
        if mode not in SUPPORTED_EXTRACTION_MODES:
            logger.warning(f"Extraction mode '{mode}' not available, using simple")

        with self._lock:
            rows = self.conn.execute("SELECT id, text FROM items").fetchall()

        extracted: List[Fact] = []
        for row in rows:
            for fact in extract_simple_facts(row["text"] or "", source_item_id=row["id"]):
                if self.add_fact(fact.subject, fact.predicate, fact.object, fact.confidence, fact.source_item_id):
                    extracted.append(fact)

        logger.info(f"Extracted {len(extracted)} new facts from {len(rows)} items")
        return extracted


def extract_simple_facts(text: str, source_item_id: Optional[str] = None) -> List[Fact]:
    facts = []
    for match in FACT_PATTERN.finditer(text):
        subject = match.group("subject").strip()
        if subject == "I":
            subject = "user"
        predicate = match.group("predicate").strip().replace(" ", "_")
        obj = match.group("object").strip()
        if not obj:
            continue
        facts.append(Fact(
            subject=subject,
            predicate=predicate,
            object=obj,
            confidence=PREDICATE_CONFIDENCE.get(predicate, DEFAULT_CONFIDENCE),
            source_item_id=source_item_id,
        ))
    return facts


def engine_factory_for(config) -> Callable[..., MemoryEngine]:
    """Per-request engine opener sharing one embedding client and its cache"""
    embedder = EmbeddingClient(config.ollama_base_url, config.embedding_model, timeout=config.ollama_timeout)

    def factory(read_only: bool = False) -> MemoryEngine:
        return MemoryEngine(config.db_path, embedder=embedder, read_only=read_only)
    return factory
