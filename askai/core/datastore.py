import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from ..config import settings
from ..exceptions import DatastoreExecutionError


class SqlAlchemyDatastore:
    """Runs read-only statements against the participant database."""

    def __init__(self, database_url: str = None, engine: AsyncEngine = None):
        """
        Initialize the datastore.

        Args:
            database_url: Async SQLAlchemy URL (uses settings if None)
            engine: Pre-built async engine, takes precedence over the URL
        """
        self.logger = logging.getLogger(__name__)
        self.database_url = database_url or settings.database_url
        self.engine = engine or create_async_engine(self.database_url, echo=settings.db_echo)
        self.logger.info(f"Datastore ready: {self._redacted_url()}")

    def _redacted_url(self) -> str:
        return self.database_url.split("@")[1] if "@" in self.database_url else self.database_url

    async def execute(
        self, sql: str, params: Optional[Mapping[str, Any]] = None
    ) -> Tuple[List[Dict[str, Any]], List[str]]:
        """
        Execute a statement and fetch every row.

        Args:
            sql: Statement text, binds written as ``:name``
            params: Bind values

        Returns:
            Tuple of (rows as dictionaries, column names in result order)
        """
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(text(sql), dict(params or {}))
                columns = list(result.keys())
                rows = [dict(zip(columns, row)) for row in result.fetchall()]
        except SQLAlchemyError as e:
            self.logger.error(f"Execution failed: {e}")
            raise DatastoreExecutionError(str(e)) from e

        self.logger.info(f"SQL executed successfully, returned {len(rows)} rows")
        return rows, columns

    async def dispose(self) -> None:
        await self.engine.dispose()
