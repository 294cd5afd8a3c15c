"""
Online processing module initialization.
"""

from .embedding_cache import EmbeddingCache
from .schema_retriever import SchemaRetriever
from .prompt_builder import PromptBuilder
from .sql_generator import SqlGenerator, cleanup
from .sql_validator import SQLValidator
from .query_executor import QueryExecutor

__all__ = [
    "EmbeddingCache",
    "SchemaRetriever",
    "PromptBuilder",
    "SqlGenerator",
    "cleanup",
    "SQLValidator",
    "QueryExecutor",
]
