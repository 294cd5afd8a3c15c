import asyncio
import logging
from typing import List

from sentence_transformers import SentenceTransformer

from ..config import settings
from ..exceptions import ProviderError
from ..models import EmbeddingVector


class SentenceTransformerEmbeddingProvider:
    """Embeds query and schema text with a local sentence-transformers model."""

    def __init__(self, model_name: str = None, device: str = None):
        """
        Initialize the embedding provider.

        Args:
            model_name: Model name or path (defaults to settings)
            device: Torch device, e.g. "cpu" or "cuda"
        """
        self.logger = logging.getLogger(__name__)
        self.model_name = model_name or settings.embedding_model_name
        self.device = device or settings.embedding_device
        self.model = self._initialize_model()

    def _initialize_model(self) -> SentenceTransformer:
        """Initialize the sentence transformer model."""
        try:
            model = SentenceTransformer(self.model_name, device=self.device)
            self.logger.info(f"Embedding model loaded: {self.model_name}")
            return model
        except Exception as e:
            self.logger.error(f"Failed to load embedding model: {e}")
            raise ProviderError(f"Failed to load embedding model {self.model_name}: {e}") from e

    def embed_documents(self, documents: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a list of documents.

        Args:
            documents: List of text documents

        Returns:
            List of embedding vectors
        """
        try:
            embeddings = self.model.encode(
                documents,
                convert_to_numpy=True,
                normalize_embeddings=True
            )
            return embeddings.tolist()
        except Exception as e:
            self.logger.error(f"Error generating embeddings: {e}")
            raise ProviderError(f"Embedding failed: {e}") from e

    def embed_query(self, query: str) -> EmbeddingVector:
        """Generate the embedding for a single query (blocking)."""
        try:
            embedding = self.model.encode(
                query,
                convert_to_numpy=True,
                normalize_embeddings=True
            )
            return tuple(float(x) for x in embedding)
        except Exception as e:
            self.logger.error(f"Error generating query embedding: {e}")
            raise ProviderError(f"Embedding failed: {e}") from e

    async def embed(self, text: str) -> EmbeddingVector:
        """Embed ``text`` on a worker thread so the event loop is not blocked."""
        return await asyncio.to_thread(self.embed_query, text)
