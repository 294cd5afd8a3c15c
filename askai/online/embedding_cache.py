import logging
import threading
from typing import Dict, List, NamedTuple, Optional, Tuple

import numpy as np

from ..core.interfaces import EmbeddingProvider
from ..models import CacheEntry, CacheHit, EmbeddingVector
from .query_executor import scope_placeholders


class EmbeddingLookup(NamedTuple):
    vector: EmbeddingVector
    computed: bool


class EmbeddingCache:
    """Exact-text embedding memo plus a semantic cache of generated SQL.

    Entries are append-only. Writers serialize on a lock; readers scan a
    snapshot of the entry list taken when the scan starts, so an entry appended
    mid-scan may be missed. Lookup is a linear scan, which keeps the cache
    practical up to tens of thousands of entries.
    """

    def __init__(self, provider: EmbeddingProvider, max_entries: Optional[int] = None):
        """
        Args:
            provider: Embedding model used on exact-text misses
            max_entries: Optional FIFO bound on stored SQL entries (None = unbounded)
        """
        self.logger = logging.getLogger(__name__)
        self.provider = provider
        self.max_entries = max_entries
        self._embeddings: Dict[str, EmbeddingVector] = {}
        # (entries, normalized embeddings) replaced as a whole on every append
        self._state: Tuple[Tuple[CacheEntry, ...], Tuple[np.ndarray, ...]] = ((), ())
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._state[0])

    async def embed_with_status(self, text: str) -> EmbeddingLookup:
        """Return the embedding for ``text`` and whether the provider was called."""
        cached = self._embeddings.get(text)
        if cached is not None:
            self.logger.debug("Embedding cache hit (exact text)")
            return EmbeddingLookup(cached, False)

        vector = tuple(float(x) for x in await self.provider.embed(text))
        with self._lock:
            self._embeddings.setdefault(text, vector)
        return EmbeddingLookup(vector, True)

    async def embed(self, text: str) -> EmbeddingVector:
        """Return a cached embedding for ``text`` or compute and remember it."""
        return (await self.embed_with_status(text)).vector

    def find_similar(
        self,
        vector: EmbeddingVector,
        threshold: float = 0.95,
        application_id: Optional[int] = None,
        event_id: int = 0,
    ) -> Optional[CacheHit]:
        """
        Find the stored SQL whose query embedding is most similar to ``vector``.

        Only entries that may serve ``application_id`` and ``event_id`` are
        considered: event-scoped and tenant-wide SQL never stand in for each
        other, and SQL with a literal tenant or event stays with that scope.

        Args:
            vector: Query embedding
            threshold: Minimum cosine similarity for a hit
            application_id: Requesting tenant
            event_id: Requesting event, 0 for tenant-wide

        Returns:
            The best hit at or above ``threshold``, earliest entry on ties, else None
        """
        entries, rows = self._state
        if not entries:
            return None

        query = _normalize(vector)
        if query is None:
            return None

        eligible = np.array([entry.serves(application_id, event_id) for entry in entries])
        if not eligible.any():
            self.logger.debug("Semantic cache miss (no entry for this scope)")
            return None

        similarities = np.where(eligible, np.vstack(rows) @ query, -np.inf)
        best = int(np.argmax(similarities))
        similarity = float(similarities[best])
        if similarity < threshold:
            self.logger.debug(f"Semantic cache miss (best similarity {similarity:.4f})")
            return None

        self.logger.info(f"Semantic cache hit (similarity: {similarity:.4f})")
        return CacheHit(sql=entries[best].generated_sql, similarity=similarity)

    def store(
        self,
        text: str,
        vector: EmbeddingVector,
        sql: str,
        application_id: Optional[int] = None,
        event_id: int = 0,
    ) -> None:
        """Append a cache entry. Duplicates are fine: lookup keeps the best match.

        A tenant or event written into the SQL as a literal, rather than through
        its placeholder, pins the entry to that tenant or event.
        """
        normalized = _normalize(vector)
        if normalized is None:
            self.logger.warning("Not caching SQL for a zero-length embedding")
            return
        placeholders = scope_placeholders(sql)
        entry = CacheEntry(
            query_text=text,
            embedding=tuple(vector),
            generated_sql=sql,
            application_id=None if "application_id" in placeholders else application_id,
            event_id=None if event_id <= 0 or "event_id" in placeholders else event_id,
            event_scoped=event_id > 0,
        )
        with self._lock:
            entries, rows = self._state
            entries = entries + (entry,)
            rows = rows + (normalized,)
            if self.max_entries is not None and len(entries) > self.max_entries:
                overflow = len(entries) - self.max_entries
                entries = entries[overflow:]
                rows = rows[overflow:]
            self._state = (entries, rows)
        self.logger.debug(f"Cached SQL for query, {len(entries)} entries")

    def entries(self) -> List[CacheEntry]:
        return list(self._state[0])


def _normalize(vector: EmbeddingVector) -> Optional[np.ndarray]:
    array = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(array)
    if norm == 0:
        return None
    return array / norm


def cosine_similarity(a: EmbeddingVector, b: EmbeddingVector) -> float:
    """Cosine similarity in [-1, 1]; 0.0 when either vector has zero length."""
    left, right = _normalize(a), _normalize(b)
    if left is None or right is None:
        return 0.0
    return float(np.dot(left, right))
