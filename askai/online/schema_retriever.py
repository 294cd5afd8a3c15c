import logging
import re
from typing import List, Optional, Sequence, Set, Tuple

from ..core.interfaces import VectorIndex
from ..exceptions import IndexUnavailableError
from ..models import EmbeddingVector, SchemaFragment

_STOPWORDS = {
    "all", "and", "are", "for", "from", "how", "many", "show", "the", "their",
    "them", "what", "which", "who", "whose", "with", "list", "give", "get",
}


def _tokenize(text: str) -> Set[str]:
    return {
        token for token in re.findall(r"[a-z0-9]+", text.lower())
        if len(token) >= 3 and token not in _STOPWORDS
    }


class SchemaRetriever:
    """Retrieves relevant table schema fragments for a query embedding."""

    def __init__(self, index: VectorIndex, lexical_weight: float = 0.1):
        """
        Args:
            index: Vector index of schema fragments
            lexical_weight: Weight of the keyword-overlap boost when query text is given
        """
        self.logger = logging.getLogger(__name__)
        self.index = index
        self.lexical_weight = lexical_weight

    async def search(
        self,
        vector: EmbeddingVector,
        k: int = 5,
        query_text: Optional[str] = None,
    ) -> List[SchemaFragment]:
        """
        Return up to ``k`` fragments by descending relevance.

        Args:
            vector: Query embedding
            k: Maximum number of fragments
            query_text: Raw query, enables the hybrid keyword boost

        Returns:
            Fragments ordered by score, ties broken by table name
        """
        hybrid = bool(query_text) and self.lexical_weight > 0
        candidates_k = k * 2 if hybrid else k
        try:
            candidates = await self.index.search(vector, candidates_k, query_text)
        except IndexUnavailableError:
            raise
        except Exception as e:
            self.logger.error(f"Error retrieving schema: {e}")
            raise IndexUnavailableError(f"Schema retrieval failed: {e}") from e

        if hybrid:
            query_tokens = _tokenize(query_text)
            candidates = [
                (fragment, score + self.lexical_weight * self._lexical_score(query_tokens, fragment))
                for fragment, score in candidates
            ]

        ranked = self._rank(candidates)[:k]
        self.logger.info(
            f"Retrieved {len(ranked)} tables: {', '.join(f.table_name for f in ranked)}"
        )
        return ranked

    @staticmethod
    def _lexical_score(query_tokens: Set[str], fragment: SchemaFragment) -> float:
        """Share of query keywords that appear in the fragment text."""
        if not query_tokens:
            return 0.0
        fragment_tokens = _tokenize(fragment.searchable_text())
        return len(query_tokens & fragment_tokens) / len(query_tokens)

    @staticmethod
    def _rank(candidates: Sequence[Tuple[SchemaFragment, float]]) -> List[SchemaFragment]:
        """Sort by score descending, then table name; keep each table once."""
        ordered = sorted(candidates, key=lambda item: (-item[1], item[0].table_name))
        seen = set()
        unique = []
        for fragment, _ in ordered:
            if fragment.table_name not in seen:
                seen.add(fragment.table_name)
                unique.append(fragment)
        return unique
