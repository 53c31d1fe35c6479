"""
Storage backends for ClawScope
"""

from .embeddings import EmbeddingClient
from .sqlite_store import (
    MemoryEngine,
    LexicalHit,
    HybridHit,
    engine_factory_for,
    extract_simple_facts,
    parse_tags,
)

__all__ = [
    'EmbeddingClient',
    'MemoryEngine',
    'LexicalHit',
    'HybridHit',
    'engine_factory_for',
    'extract_simple_facts',
    'parse_tags',
]
