"""
Collaborator contracts consumed by the online pipeline.
"""

from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

from ..config import SamplingConfig
from ..models import (
    CompletionResponse,
    EmbeddingVector,
    QuotaDecision,
    SchemaFragment,
    UsageStats,
)


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> EmbeddingVector:
        """Raises ProviderError on transport or model failure."""


class CompletionProvider(Protocol):
    async def complete(
        self, system_prompt: str, user_prompt: str, sampling: SamplingConfig
    ) -> CompletionResponse:
        """Raises ProviderError on transport or model failure."""


class VectorIndex(Protocol):
    async def search(
        self, vector: EmbeddingVector, k: int, query_text: Optional[str] = None
    ) -> List[Tuple[SchemaFragment, float]]:
        """Return (fragment, similarity) pairs; raises IndexUnavailableError."""


class Datastore(Protocol):
    async def execute(
        self, sql: str, params: Optional[Mapping[str, Any]] = None
    ) -> Tuple[List[Dict[str, Any]], List[str]]:
        """Return (rows, column_names); raises DatastoreExecutionError."""


class TokenLedger(Protocol):
    async def record(
        self,
        application_id: int,
        event_id: int,
        user_id: str,
        tokens: int,
        event_type: str,
        success: bool,
        error: Optional[str],
        request_id: str,
    ) -> None: ...

    async def stats(self, application_id: int) -> UsageStats: ...

    async def check_quota(self, application_id: int) -> QuotaDecision: ...
