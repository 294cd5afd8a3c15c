"""
Core module initialization.
"""

from .datastore import SqlAlchemyDatastore
from .embedding import SentenceTransformerEmbeddingProvider
from .llm import OllamaCompletionProvider
from .token_ledger import SqlTokenLedger
from .vector_db import ChromaSchemaIndex

__all__ = [
    "SqlAlchemyDatastore",
    "SentenceTransformerEmbeddingProvider",
    "OllamaCompletionProvider",
    "SqlTokenLedger",
    "ChromaSchemaIndex",
]
