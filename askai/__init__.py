"""
AskAI: natural-language questions about event participants, answered with SQL.

A RAG-based Text-to-SQL pipeline with a semantic SQL cache, schema retrieval
over a vector index, a deterministic security-constrained prompt, a lexical
SQL safety validator and tenant-scoped execution with token accounting.
"""

__version__ = "0.1.0"
__author__ = "AskAI Team"
