"""
Text2SQL: orchestrates the participant NL-to-SQL pipeline.
"""

import logging
import math
from typing import Optional

from .config import PipelineConfig, Settings, settings
from .core.interfaces import (
    CompletionProvider,
    Datastore,
    EmbeddingProvider,
    TokenLedger,
    VectorIndex,
)
from .exceptions import (
    EmptyGenerationError,
    IndexUnavailableError,
    InputError,
    ProviderError,
    ValidationError,
)
from .models import (
    GeneratedSqlResult,
    PipelineStage,
    QueryRequest,
    QueryResult,
    QueryStatus,
    SqlSource,
    UsageStats,
)
from .online import (
    EmbeddingCache,
    PromptBuilder,
    QueryExecutor,
    SchemaRetriever,
    SqlGenerator,
    SQLValidator,
)


class Text2SQL:
    """Main Text2SQL orchestrator.

    Each request runs once, front to back:
    embed → semantic cache → (schema search → prompt → generate → validate) → execute.
    Cached SQL is reused only within its tenant/event scope and is
    validated again for the caller; a rejected hit counts as a miss.
    Nothing is retried. Provider and index failures abort the request;
    validation and execution failures come back as a QueryResult.
    """

    def __init__(
        self,
        embedding_provider: EmbeddingProvider,
        completion_provider: CompletionProvider,
        vector_index: VectorIndex,
        datastore: Datastore,
        token_ledger: TokenLedger,
        config: PipelineConfig = None,
        prompt_builder: PromptBuilder = None,
    ):
        """
        Initialize Text2SQL system.

        Args:
            embedding_provider: Embeds query text
            completion_provider: Generates SQL
            vector_index: Schema fragment index
            datastore: Participant database
            token_ledger: Usage accounting and quota
            config: Immutable pipeline configuration
            prompt_builder: Custom prompt builder (few-shot examples)
        """
        self.logger = logging.getLogger(__name__)
        self.config = config or PipelineConfig()
        self.token_ledger = token_ledger

        self.embedding_cache = EmbeddingCache(
            embedding_provider, max_entries=self.config.cache_max_entries
        )
        self.schema_retriever = SchemaRetriever(
            vector_index, lexical_weight=self.config.lexical_weight
        )
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.sql_generator = SqlGenerator(completion_provider, self.config.sampling)
        self.sql_validator = SQLValidator(require_tenant_filter=self.config.require_tenant_filter)
        self.query_executor = QueryExecutor(datastore)

    @classmethod
    def from_settings(cls, source: Settings = None) -> "Text2SQL":
        """Build the pipeline with the default providers configured from settings."""
        from .core import (
            ChromaSchemaIndex,
            OllamaCompletionProvider,
            SentenceTransformerEmbeddingProvider,
            SqlAlchemyDatastore,
            SqlTokenLedger,
        )

        source = source or settings
        return cls(
            embedding_provider=SentenceTransformerEmbeddingProvider(
                source.embedding_model_name, source.embedding_device
            ),
            completion_provider=OllamaCompletionProvider(source.llm_model_name, source.llm_base_url),
            vector_index=ChromaSchemaIndex(source.vector_db_path, source.vector_db_collection_name),
            datastore=SqlAlchemyDatastore(source.database_url),
            token_ledger=SqlTokenLedger(source.ledger_database_url, source.quota_max_tokens),
            config=PipelineConfig.from_settings(source),
        )

    async def query_to_sql(self, request: QueryRequest) -> QueryResult:
        """
        Answer a natural-language question with SQL and its results.

        Args:
            request: The question with tenant/event scope

        Returns:
            QueryResult for success, quota denial, validation failure or execution failure

        Raises:
            InputError: blank query, before any provider call
            ProviderError, IndexUnavailableError, EmptyGenerationError: pipeline aborted
        """
        query = request.query
        if not query or not query.strip():
            raise InputError("Query is required")

        self.logger.info("--------------------------------------------------------")
        self.logger.info(
            f"Processing query: {query} for ApplicationId: {request.application_id} "
            f"with EventId: {request.event_id} (request {request.request_id})"
        )

        quota = await self.token_ledger.check_quota(request.application_id)
        if not quota.allowed:
            self.logger.warning(f"Quota check failed: {quota.message}")
            await self._log_usage(request, 0, False, quota.message)
            return QueryResult(
                query=query,
                success=False,
                error=quota.message,
                status=QueryStatus.QUOTA_EXCEEDED,
                request_id=request.request_id,
            )

        tokens_used = 0
        stage = PipelineStage.RECEIVED
        try:
            stage = PipelineStage.EMBEDDING
            self.logger.info("Step 1: Generating query embedding...")
            lookup = await self.embedding_cache.embed_with_status(query)
            if lookup.computed:
                embedding_tokens = math.ceil(len(query) / 4)
                tokens_used += embedding_tokens
                self.logger.info(
                    f"Query embedding generated (size: {len(lookup.vector)}, tokens: {embedding_tokens})"
                )

            stage = PipelineStage.CACHE_CHECK
            cache_hit = self.embedding_cache.find_similar(
                lookup.vector,
                self.config.similarity_threshold,
                application_id=request.application_id,
                event_id=request.event_id,
            )
            if cache_hit is not None:
                verdict = self.sql_validator.validate(cache_hit.sql, request.application_id)
                if not verdict.is_valid:
                    self.logger.warning(f"Ignoring cached SQL for this request: {verdict.reason}")
                    cache_hit = None
            if cache_hit is not None:
                stage = PipelineStage.CACHE_HIT
                self.logger.info(
                    f"Semantic cache hit (similarity: {cache_hit.similarity:.4f}), reusing cached SQL"
                )
                generated = GeneratedSqlResult(sql_text=cache_hit.sql, source=SqlSource.CACHE_HIT)
            else:
                stage = PipelineStage.SCHEMA_SEARCH
                self.logger.info("Step 2: Searching for relevant schema...")
                fragments = await self.schema_retriever.search(
                    lookup.vector, self.config.top_k, query_text=query
                )

                stage = PipelineStage.PROMPT_BUILD
                self.logger.info("Step 3: Building prompt...")
                system_prompt = self.prompt_builder.render(
                    fragments, request.application_id, request.event_id
                )

                stage = PipelineStage.GENERATING
                self.logger.info("Step 4: Generating SQL...")
                try:
                    outcome = await self.sql_generator.generate(system_prompt, query)
                except EmptyGenerationError as e:
                    tokens_used += e.tokens_used
                    raise
                tokens_used += outcome.tokens_used

                stage = PipelineStage.VALIDATING
                self.logger.info("Step 5: Validating SQL...")
                verdict = self.sql_validator.validate(outcome.sql, request.application_id)
                if not verdict.is_valid:
                    error = str(ValidationError(verdict.reason))
                    await self._log_usage(request, tokens_used, False, error)
                    return QueryResult(
                        query=query,
                        success=False,
                        error=error,
                        status=QueryStatus.VALIDATION_FAILED,
                        validation_reason=verdict.reason,
                        source=SqlSource.GENERATED,
                        tokens_used=tokens_used,
                        usage_stats=await self._usage_stats(request.application_id),
                        request_id=request.request_id,
                    )
                generated = GeneratedSqlResult(
                    sql_text=outcome.sql, tokens_used=outcome.tokens_used, source=SqlSource.GENERATED
                )

            stage = PipelineStage.EXECUTING
            self.logger.info("Step 6: Executing SQL...")
            execution = await self.query_executor.run(
                request.application_id, request.event_id, generated.sql_text
            )
        except (ProviderError, IndexUnavailableError, EmptyGenerationError) as e:
            self.logger.error(f"Request failed during {stage.value}: {e}")
            await self._log_usage(request, tokens_used, False, str(e))
            raise

        if execution.succeeded and generated.source == SqlSource.GENERATED:
            self.embedding_cache.store(
                query,
                lookup.vector,
                generated.sql_text,
                application_id=request.application_id,
                event_id=request.event_id,
            )

        await self._log_usage(request, tokens_used, execution.succeeded, execution.error_message)
        self.logger.info(f"Query processed ({PipelineStage.COMPLETED.value}). Total tokens used: {tokens_used}")
        return QueryResult(
            query=query,
            generated_sql=generated.sql_text,
            success=execution.succeeded,
            data=execution.rows,
            columns=execution.columns,
            error=execution.error_message,
            status=QueryStatus.COMPLETED if execution.succeeded else QueryStatus.EXECUTION_FAILED,
            source=generated.source,
            tokens_used=tokens_used,
            usage_stats=await self._usage_stats(request.application_id),
            request_id=request.request_id,
        )

    def validate_sql(self, sql: str, tenant_id: Optional[int] = None):
        """Run the safety validator on arbitrary SQL."""
        return self.sql_validator.validate(sql, tenant_id)

    async def _log_usage(
        self, request: QueryRequest, tokens: int, success: bool, error: Optional[str]
    ) -> None:
        try:
            await self.token_ledger.record(
                application_id=request.application_id,
                event_id=request.event_id,
                user_id=request.user_id,
                tokens=tokens,
                event_type=self.config.event_type,
                success=success,
                error=error,
                request_id=request.request_id,
            )
        except Exception as e:
            self.logger.warning(f"Could not record token usage for {request.request_id}: {e}")

    async def _usage_stats(self, application_id: int) -> Optional[UsageStats]:
        try:
            return await self.token_ledger.stats(application_id)
        except Exception as e:
            self.logger.warning(f"Could not load usage stats for application {application_id}: {e}")
            return None


