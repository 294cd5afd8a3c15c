import logging
import re
from typing import Any, Dict, Set, Tuple

from ..core.interfaces import Datastore
from ..exceptions import DatastoreExecutionError
from ..models import ExecutionResult

# @ApplicationId / @EventId placeholders written by the model
_PARAMETERS = {
    "applicationid": "application_id",
    "eventid": "event_id",
}
_PLACEHOLDER = re.compile(r"@(ApplicationId|EventId)\b", re.IGNORECASE)


def scope_placeholders(sql: str) -> Set[str]:
    """Bind parameter names for the scope placeholders ``sql`` uses."""
    return {_PARAMETERS[name.lower()] for name in _PLACEHOLDER.findall(sql)}


def bind_scope_parameters(sql: str, tenant_id: int, event_id: int) -> Tuple[str, Dict[str, Any]]:
    """Rewrite scope placeholders to bind parameters and return their values."""
    values = {"application_id": tenant_id, "event_id": event_id}
    used: Dict[str, Any] = {}

    def replace(match: "re.Match") -> str:
        name = _PARAMETERS[match.group(1).lower()]
        used[name] = values[name]
        return f":{name}"

    return _PLACEHOLDER.sub(replace, sql), used


class QueryExecutor:
    """Runs validated SQL with the request's tenant and event bound in."""

    def __init__(self, datastore: Datastore):
        self.logger = logging.getLogger(__name__)
        self.datastore = datastore

    async def run(self, tenant_id: int, event_id: int, sql: str) -> ExecutionResult:
        """
        Execute an already-validated statement.

        Args:
            tenant_id: Application id bound to @ApplicationId
            event_id: Event id bound to @EventId
            sql: Validated SQL

        Returns:
            Rows and columns, or an error message with no rows
        """
        statement, params = bind_scope_parameters(sql, tenant_id, event_id)
        try:
            rows, columns = await self.datastore.execute(statement, params)
        except DatastoreExecutionError as e:
            self.logger.error(f"Query execution failed for application {tenant_id}: {e}")
            return ExecutionResult(error_message=str(e))

        self.logger.info(f"Query returned {len(rows)} rows for application {tenant_id}")
        return ExecutionResult(rows=rows, columns=columns)
