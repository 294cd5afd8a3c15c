from dataclasses import dataclass, field
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # LLM Configuration
    llm_model_name: str = Field(default="llama3.1:8b")
    llm_base_url: str = Field(default="http://localhost:11434")
    llm_temperature: float = Field(default=0.1)
    llm_top_p: float = Field(default=0.95)
    llm_max_tokens: int = Field(default=500)

    # Embedding Model Configuration
    embedding_model_name: str = Field(default="BAAI/bge-small-en-v1.5")
    embedding_device: str = Field(default="cpu")

    # Vector Database Configuration
    vector_db_path: str = Field(default="./chroma_db")
    vector_db_collection_name: str = Field(default="participant_schema")

    # Database Configuration
    database_url: str = Field(default="sqlite+aiosqlite:///./participants.db")
    ledger_database_url: str = Field(default="sqlite+aiosqlite:///./token_usage.db")
    db_echo: bool = Field(default=False)

    # Usage quota (0 disables the check)
    quota_max_tokens: int = Field(default=100000)

    # Application Configuration
    app_host: str = Field(default="0.0.0.0")
    app_port: int = Field(default=8000)
    debug: bool = Field(default=True)

    # RAG Configuration
    rag_top_k: int = Field(default=5)
    rag_lexical_weight: float = Field(default=0.1)

    # Semantic cache
    cache_similarity_threshold: float = Field(default=0.95)
    cache_max_entries: Optional[int] = Field(default=None)

    # Validation Configuration
    require_tenant_filter: bool = Field(default=False)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


# Global settings instance
settings = Settings()


@dataclass(frozen=True)
class SamplingConfig:
    """Sampling parameters sent with every completion request."""

    temperature: float = 0.1
    top_p: float = 0.95
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0
    max_tokens: int = 500


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable pipeline configuration handed to components at construction."""

    similarity_threshold: float = 0.95
    top_k: int = 5
    lexical_weight: float = 0.1
    require_tenant_filter: bool = False
    cache_max_entries: Optional[int] = None
    event_type: str = "ParticipantNQL"
    sampling: SamplingConfig = field(default_factory=SamplingConfig)

    @classmethod
    def from_settings(cls, source: Settings = None) -> "PipelineConfig":
        source = source or settings
        return cls(
            similarity_threshold=source.cache_similarity_threshold,
            top_k=source.rag_top_k,
            lexical_weight=source.rag_lexical_weight,
            require_tenant_filter=source.require_tenant_filter,
            cache_max_entries=source.cache_max_entries,
            sampling=SamplingConfig(
                temperature=source.llm_temperature,
                top_p=source.llm_top_p,
                max_tokens=source.llm_max_tokens,
            ),
        )
