"""
Offline processing module initialization.
"""

from .knowledge_base import SchemaIndexBuilder

__all__ = ["SchemaIndexBuilder"]
