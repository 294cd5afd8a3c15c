import asyncio
import json
import logging
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

import chromadb
from chromadb.config import Settings as ChromaSettings

from ..config import settings
from ..exceptions import IndexUnavailableError
from ..models import EmbeddingVector, SchemaColumn, SchemaFragment, SchemaRelationship


class FragmentParse(NamedTuple):
    """Either a parsed fragment or the reason it could not be parsed."""

    fragment: Optional[SchemaFragment] = None
    error: Optional[str] = None


def fragment_to_metadata(fragment: SchemaFragment) -> Dict[str, Any]:
    """Flatten a fragment into chroma metadata (scalar values only)."""
    return {
        "type": "table",
        "table_name": fragment.table_name,
        "description": fragment.description,
        "columns_json": json.dumps([column.model_dump() for column in fragment.columns]),
        "relationships_json": json.dumps([rel.model_dump() for rel in fragment.relationships]),
    }


def _column_from_dict(raw: Dict[str, Any]) -> SchemaColumn:
    return SchemaColumn(
        name=str(raw["name"]),
        data_type=str(raw["data_type"]),
        is_primary_key=bool(raw.get("is_primary_key", False)),
        is_foreign_key=bool(raw.get("is_foreign_key", False)),
        is_nullable=bool(raw.get("is_nullable", True)),
        is_identity=bool(raw.get("is_identity", False)),
        description=str(raw.get("description") or ""),
        business_context=str(raw.get("business_context") or ""),
    )


def _relationship_from_dict(raw: Dict[str, Any]) -> SchemaRelationship:
    return SchemaRelationship(
        from_table=str(raw["from_table"]),
        from_column=str(raw["from_column"]),
        to_table=str(raw["to_table"]),
        to_column=str(raw["to_column"]),
        description=str(raw.get("description") or ""),
    )


def fragment_from_metadata(metadata: Optional[Dict[str, Any]]) -> FragmentParse:
    """Map index metadata back to a SchemaFragment, field by field."""
    if not metadata:
        return FragmentParse(error="missing metadata")
    table_name = metadata.get("table_name")
    if not table_name:
        return FragmentParse(error="missing table_name")
    try:
        columns = tuple(
            _column_from_dict(raw) for raw in json.loads(metadata.get("columns_json") or "[]")
        )
        relationships = tuple(
            _relationship_from_dict(raw)
            for raw in json.loads(metadata.get("relationships_json") or "[]")
        )
    except (ValueError, KeyError, TypeError) as e:
        return FragmentParse(error=f"malformed fragment for table {table_name}: {e}")
    return FragmentParse(
        fragment=SchemaFragment(
            table_name=str(table_name),
            description=str(metadata.get("description") or ""),
            columns=columns,
            relationships=relationships,
        )
    )


class ChromaSchemaIndex:
    """Vector index of table schema fragments backed by ChromaDB."""

    def __init__(self, path: str = None, collection_name: str = None, client=None):
        """
        Initialize the schema index.

        Args:
            path: Directory for the persistent chroma store
            collection_name: Collection holding the schema fragments
            client: Pre-built chroma client (e.g. an in-memory one)
        """
        self.logger = logging.getLogger(__name__)
        self.path = path or settings.vector_db_path
        self.collection_name = collection_name or settings.vector_db_collection_name
        self.client = client or self._initialize_client()
        self.collection = self._get_or_create_collection()

    def _initialize_client(self):
        """Initialize ChromaDB client."""
        try:
            client = chromadb.PersistentClient(
                path=self.path,
                settings=ChromaSettings(
                    anonymized_telemetry=False,
                    allow_reset=True
                )
            )
            self.logger.info(f"ChromaDB client initialized at: {self.path}")
            return client
        except Exception as e:
            self.logger.error(f"Failed to initialize ChromaDB: {e}")
            raise IndexUnavailableError(f"Failed to initialize schema index: {e}") from e

    def _get_or_create_collection(self):
        """Get or create the collection for storing schema fragments."""
        try:
            collection = self.client.get_or_create_collection(
                name=self.collection_name,
                metadata={
                    "hnsw:space": "cosine",
                    "description": "Participant database schema fragments",
                }
            )
            self.logger.info(f"Collection ready: {self.collection_name}")
            return collection
        except Exception as e:
            self.logger.error(f"Failed to get/create collection: {e}")
            raise IndexUnavailableError(f"Schema collection unavailable: {e}") from e

    def add_fragments(
        self,
        fragments: Sequence[SchemaFragment],
        embeddings: Sequence[Sequence[float]],
    ) -> None:
        """
        Insert or replace fragments, one document per table.

        Args:
            fragments: Schema fragments to index
            embeddings: One embedding per fragment, same order
        """
        if len(fragments) != len(embeddings):
            raise ValueError("fragments and embeddings must have the same length")
        try:
            self.collection.upsert(
                ids=[f"table_{fragment.table_name}" for fragment in fragments],
                documents=[fragment.searchable_text() for fragment in fragments],
                metadatas=[fragment_to_metadata(fragment) for fragment in fragments],
                embeddings=[list(embedding) for embedding in embeddings],
            )
            self.logger.info(f"Indexed {len(fragments)} schema fragments")
        except Exception as e:
            self.logger.error(f"Error adding fragments: {e}")
            raise IndexUnavailableError(f"Could not write schema index: {e}") from e

    def query(self, vector: EmbeddingVector, k: int) -> List[Tuple[SchemaFragment, float]]:
        """
        Nearest-neighbour lookup (blocking).

        Returns:
            (fragment, cosine similarity) pairs in index order
        """
        try:
            available = self.collection.count()
            if available == 0:
                return []
            results = self.collection.query(
                query_embeddings=[list(vector)],
                n_results=min(k, available),
                where={"type": "table"},
                include=["metadatas", "distances"],
            )
        except Exception as e:
            self.logger.error(f"Error searching schema index: {e}")
            raise IndexUnavailableError(f"Schema index search failed: {e}") from e

        matches = []
        for metadata, distance in zip(results["metadatas"][0], results["distances"][0]):
            parsed = fragment_from_metadata(metadata)
            if parsed.error:
                self.logger.warning(f"Skipping schema document: {parsed.error}")
                continue
            matches.append((parsed.fragment, 1.0 - float(distance)))

        self.logger.info(f"Found {len(matches)} schema fragments")
        return matches

    async def search(
        self, vector: EmbeddingVector, k: int, query_text: Optional[str] = None
    ) -> List[Tuple[SchemaFragment, float]]:
        """Run ``query`` on a worker thread. ``query_text`` is ranked by the retriever."""
        return await asyncio.to_thread(self.query, vector, k)

    def get_fragment(self, table_name: str) -> Optional[SchemaFragment]:
        """Retrieve one table's fragment, or None if absent."""
        try:
            results = self.collection.get(ids=[f"table_{table_name}"], include=["metadatas"])
        except Exception as e:
            self.logger.error(f"Error retrieving fragment: {e}")
            raise IndexUnavailableError(f"Schema index read failed: {e}") from e
        if not results["ids"]:
            return None
        return fragment_from_metadata(results["metadatas"][0]).fragment

    def list_fragments(self, limit: int = 1000) -> List[SchemaFragment]:
        """List indexed fragments sorted by table name."""
        try:
            results = self.collection.get(limit=limit, include=["metadatas"])
        except Exception as e:
            self.logger.error(f"Error listing fragments: {e}")
            raise IndexUnavailableError(f"Schema index read failed: {e}") from e
        fragments = []
        for metadata in results["metadatas"]:
            parsed = fragment_from_metadata(metadata)
            if parsed.fragment is not None:
                fragments.append(parsed.fragment)
        return sorted(fragments, key=lambda fragment: fragment.table_name)

    def count(self) -> int:
        """Number of indexed fragments."""
        try:
            return self.collection.count()
        except Exception as e:
            self.logger.error(f"Error counting documents: {e}")
            raise IndexUnavailableError(f"Schema index read failed: {e}") from e

    def clear(self) -> None:
        """Drop and recreate the collection."""
        try:
            self.client.delete_collection(self.collection_name)
            self.collection = self._get_or_create_collection()
            self.logger.info("Collection cleared and recreated")
        except Exception as e:
            self.logger.error(f"Error clearing collection: {e}")
            raise IndexUnavailableError(f"Could not clear schema index: {e}") from e
