"""
Query embeddings for ClawScope hybrid search

Stored item vectors are written by the memory-offline-sqlite plugin through
Ollama, so query vectors have to come from the same Ollama model.
"""

import logging
import threading
from typing import List, Optional

import httpx

from ..cache import LRUCache

logger = logging.getLogger("clawscope.embeddings")


class EmbeddingClient:
    """Fetches embeddings from an Ollama server with caching"""

    def __init__(self, base_url: str, model: str, timeout: float = 3.0, cache_maxsize: int = 256,
                 transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._transport = transport
        self._cache: LRUCache = LRUCache(maxsize=cache_maxsize)
        self._lock = threading.Lock()

    def embed(self, text: str) -> Optional[List[float]]:
        """Return the embedding for text, or None when the service is unavailable"""
        key = text.strip()
        with self._lock:
            if key in self._cache:
                return self._cache[key]

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(
                    f"{self.base_url}/api/embeddings",
                    json={"model": self.model, "prompt": key},
                )
                response.raise_for_status()
                vector = response.json().get("embedding")
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Embedding request to {self.base_url} failed: {e}")
            return None

        if not vector:
            logger.warning(f"Embedding service returned no vector for model {self.model}")
            return None

        with self._lock:
            self._cache[key] = vector
        return vector
