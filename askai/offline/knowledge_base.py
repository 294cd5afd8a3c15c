import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

from pydantic import ValidationError as PydanticValidationError

from ..models import SchemaFragment


class SchemaIndexBuilder:
    """Loads schema fragment definitions and writes them into the schema index."""

    def __init__(self, index, embedding_provider):
        """
        Args:
            index: ChromaSchemaIndex (or anything with ``add_fragments``/``clear``/``list_fragments``)
            embedding_provider: Provider with a blocking ``embed_documents``
        """
        self.logger = logging.getLogger(__name__)
        self.index = index
        self.embedding_provider = embedding_provider

    def load_fragments(self, source: Union[str, Path]) -> List[SchemaFragment]:
        """
        Read fragments from a JSON file.

        The file holds either a list of fragments or ``{"tables": [...]}``.

        Args:
            source: Path to the JSON file

        Returns:
            Parsed fragments in file order
        """
        with open(source, "r", encoding="utf-8") as f:
            payload = json.load(f)

        raw_tables = payload.get("tables", []) if isinstance(payload, dict) else payload
        fragments = []
        for i, raw in enumerate(raw_tables):
            try:
                fragments.append(SchemaFragment.model_validate(raw))
            except PydanticValidationError as e:
                raise ValueError(f"Invalid schema fragment at position {i}: {e}") from e

        self.logger.info(f"Loaded {len(fragments)} schema fragments from {source}")
        return fragments

    def build(self, fragments: List[SchemaFragment], force_rebuild: bool = False) -> int:
        """
        Embed and index fragments.

        Args:
            fragments: Fragments to index
            force_rebuild: Clear the collection first

        Returns:
            Number of fragments indexed
        """
        if force_rebuild:
            self.index.clear()
        if not fragments:
            self.logger.warning("No schema fragments to index")
            return 0

        embeddings = self.embedding_provider.embed_documents(
            [fragment.searchable_text() for fragment in fragments]
        )
        self.index.add_fragments(fragments, embeddings)
        self.logger.info(f"Schema index built with {len(fragments)} tables")
        return len(fragments)

    def build_from_file(self, source: Union[str, Path], force_rebuild: bool = False) -> int:
        return self.build(self.load_fragments(source), force_rebuild=force_rebuild)

    def export(self, file_path: Union[str, Path]) -> int:
        """Write every indexed fragment to a JSON file, returns the count."""
        fragments = self.index.list_fragments()
        payload: Dict[str, Any] = {"tables": [fragment.model_dump() for fragment in fragments]}
        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        self.logger.info(f"Schema index exported to {file_path}")
        return len(fragments)
