"""
Data model shared by the pipeline components.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import QuotaError, ValidationError

EmbeddingVector = Tuple[float, ...]


class PipelineStage(str, Enum):
    RECEIVED = "received"
    EMBEDDING = "embedding"
    CACHE_CHECK = "cache_check"
    CACHE_HIT = "cache_hit"
    SCHEMA_SEARCH = "schema_search"
    PROMPT_BUILD = "prompt_build"
    GENERATING = "generating"
    VALIDATING = "validating"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class QueryStatus(str, Enum):
    COMPLETED = "completed"
    QUOTA_EXCEEDED = "quota_exceeded"
    VALIDATION_FAILED = "validation_failed"
    EXECUTION_FAILED = "execution_failed"


class SqlSource(str, Enum):
    GENERATED = "generated"
    CACHE_HIT = "cache_hit"


class QueryRequest(BaseModel):
    """A single natural-language question scoped to a tenant and optionally an event."""

    model_config = ConfigDict(frozen=True)

    query: str
    application_id: int
    event_id: int = 0
    user_id: str = "anonymous-user"
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))


class CacheEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    query_text: str
    embedding: EmbeddingVector
    generated_sql: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    # None: the SQL uses the @ApplicationId/@EventId placeholder and serves any tenant/event
    application_id: Optional[int] = None
    event_id: Optional[int] = None
    event_scoped: bool = False

    def serves(self, application_id: Optional[int], event_id: int = 0) -> bool:
        """Whether this SQL may be reused for the given tenant and event."""
        if self.event_scoped != (event_id > 0):
            return False
        if self.application_id is not None and self.application_id != application_id:
            return False
        return self.event_id is None or self.event_id == event_id


class CacheHit(NamedTuple):
    sql: str
    similarity: float


class SchemaColumn(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    data_type: str
    is_primary_key: bool = False
    is_foreign_key: bool = False
    is_nullable: bool = True
    is_identity: bool = False
    description: str = ""
    business_context: str = ""


class SchemaRelationship(BaseModel):
    model_config = ConfigDict(frozen=True)

    from_table: str
    from_column: str
    to_table: str
    to_column: str
    description: str = ""


class SchemaFragment(BaseModel):
    """Schema description of one table as stored in the vector index."""

    model_config = ConfigDict(frozen=True)

    table_name: str
    description: str = ""
    columns: Tuple[SchemaColumn, ...] = ()
    relationships: Tuple[SchemaRelationship, ...] = ()

    def searchable_text(self) -> str:
        """Text that is embedded into the index and used for lexical ranking."""
        parts = [f"Table: {self.table_name}", self.description]
        for column in self.columns:
            parts.append(f"{column.name} {column.description} {column.business_context}".strip())
        for rel in self.relationships:
            parts.append(rel.description)
        return "\n".join(part for part in parts if part)


class TokenUsage(BaseModel):
    """Token counts reported by a completion provider."""

    model_config = ConfigDict(frozen=True)

    prompt: int = 0
    completion: int = 0
    total: int = 0


class CompletionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    usage: Optional[TokenUsage] = None


class GenerationOutcome(BaseModel):
    """Cleaned SQL and the tokens charged for one completion call."""

    model_config = ConfigDict(frozen=True)

    sql: str
    tokens_used: int
    usage_reported: bool = False


class GeneratedSqlResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    sql_text: str
    tokens_used: int = 0
    source: SqlSource = SqlSource.GENERATED


class ValidationResult(NamedTuple):
    is_valid: bool
    reason: Optional[str] = None


class ExecutionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    rows: List[Dict[str, Any]] = Field(default_factory=list)
    columns: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error_message is None


class UsageStats(BaseModel):
    total_tokens: int = 0
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    token_limit: int = 0
    remaining_tokens: Optional[int] = None


class QuotaDecision(NamedTuple):
    allowed: bool
    message: Optional[str] = None


class QueryResult(BaseModel):
    """Terminal outcome of one request."""

    query: str
    generated_sql: Optional[str] = None
    success: bool = False
    data: List[Dict[str, Any]] = Field(default_factory=list)
    columns: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    usage_stats: Optional[UsageStats] = None
    status: QueryStatus = QueryStatus.COMPLETED
    source: Optional[SqlSource] = None
    tokens_used: int = 0
    request_id: Optional[str] = None
    validation_reason: Optional[str] = None

    def raise_for_status(self) -> "QueryResult":
        """Raise QuotaError or ValidationError for a rejected request, else return self."""
        if self.status == QueryStatus.QUOTA_EXCEEDED:
            raise QuotaError(self.error)
        if self.status == QueryStatus.VALIDATION_FAILED:
            raise ValidationError(self.validation_reason)
        return self
