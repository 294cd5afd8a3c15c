"""
Token usage ledger: one row per processed request, plus quota checks.
"""

import logging
from typing import Optional

from sqlalchemy import TIMESTAMP, Boolean, Column, Integer, String, Text, case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from ..config import settings
from ..models import QuotaDecision, UsageStats


class Base(DeclarativeBase):
    pass


class TokenUsageRecord(Base):
    __tablename__ = "token_usage"

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(Integer, nullable=False, index=True)
    event_id = Column(Integer, nullable=False, server_default="0")
    user_id = Column(String(128), nullable=False)
    tokens = Column(Integer, nullable=False, server_default="0")
    event_type = Column(String(64), nullable=False)
    success = Column(Boolean, nullable=False)
    error_message = Column(Text, nullable=True)
    request_id = Column(String(64), nullable=False, index=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())


def usage_stats_from_row(row, token_limit: int) -> UsageStats:
    """Map an aggregate (tokens, requests, successes) row to UsageStats."""
    total_tokens = int(row[0] or 0)
    total_requests = int(row[1] or 0)
    successful = int(row[2] or 0)
    remaining = max(token_limit - total_tokens, 0) if token_limit > 0 else None
    return UsageStats(
        total_tokens=total_tokens,
        total_requests=total_requests,
        successful_requests=successful,
        failed_requests=total_requests - successful,
        token_limit=token_limit,
        remaining_tokens=remaining,
    )


class SqlTokenLedger:
    """Persists token usage with SQLAlchemy and enforces a per-application quota."""

    def __init__(
        self,
        database_url: str = None,
        token_limit: int = None,
        engine: AsyncEngine = None,
    ):
        """
        Args:
            database_url: Async SQLAlchemy URL for the ledger database
            token_limit: Tokens allowed per application; 0 disables the quota
            engine: Pre-built async engine, takes precedence over the URL
        """
        self.logger = logging.getLogger(__name__)
        self.token_limit = settings.quota_max_tokens if token_limit is None else token_limit
        self.engine = engine or create_async_engine(
            database_url or settings.ledger_database_url, echo=settings.db_echo
        )
        self.session_factory = async_sessionmaker(
            bind=self.engine, class_=AsyncSession, expire_on_commit=False
        )
        self._tables_ready = False

    async def create_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self._tables_ready = True

    async def _ensure_tables(self) -> None:
        if not self._tables_ready:
            await self.create_tables()

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
    ) -> None:
        """Append one usage row."""
        entry = TokenUsageRecord(
            application_id=application_id,
            event_id=event_id,
            user_id=user_id,
            tokens=tokens,
            event_type=event_type,
            success=success,
            error_message=error,
            request_id=request_id,
        )
        await self._ensure_tables()
        async with self.session_factory() as session:
            session.add(entry)
            await session.commit()
        self.logger.info(
            f"Token usage logged: App={application_id}, Event={event_id}, User={user_id}, "
            f"Tokens={tokens}, Type={event_type}, Success={success}, RequestId={request_id}"
        )

    async def stats(self, application_id: int) -> UsageStats:
        """Aggregate usage for one application."""
        statement = select(
            func.coalesce(func.sum(TokenUsageRecord.tokens), 0),
            func.count(TokenUsageRecord.id),
            func.coalesce(func.sum(case((TokenUsageRecord.success.is_(True), 1), else_=0)), 0),
        ).where(TokenUsageRecord.application_id == application_id)
        await self._ensure_tables()
        async with self.session_factory() as session:
            row = (await session.execute(statement)).one()
        return usage_stats_from_row(row, self.token_limit)

    async def check_quota(self, application_id: int) -> QuotaDecision:
        """Deny once an application has used up its token limit."""
        if self.token_limit <= 0:
            return QuotaDecision(allowed=True)
        try:
            usage = await self.stats(application_id)
        except SQLAlchemyError as e:
            self.logger.error(f"Quota check failed for application {application_id}: {e}")
            return QuotaDecision(allowed=False, message="Token usage could not be verified")
        if usage.total_tokens >= self.token_limit:
            self.logger.warning(
                f"Quota exceeded for application {application_id}: "
                f"{usage.total_tokens}/{self.token_limit} tokens"
            )
            return QuotaDecision(
                allowed=False,
                message=f"Token quota exceeded ({usage.total_tokens}/{self.token_limit})",
            )
        return QuotaDecision(allowed=True)

    async def dispose(self) -> None:
        await self.engine.dispose()
