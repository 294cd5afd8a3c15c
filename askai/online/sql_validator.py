import logging
import re
from typing import Optional

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from ..models import ValidationResult

FORBIDDEN_KEYWORDS = (
    "INSERT", "UPDATE", "DELETE", "DROP", "CREATE", "ALTER",
    "TRUNCATE", "EXEC", "EXECUTE", "SP_", "XP_", "OPENROWSET",
    "BULK", "MERGE", "GRANT", "REVOKE", "DENY", "BACKUP",
    "RESTORE", "SHUTDOWN", "DBCC", "KILL", "WAITFOR",
)

COMMENT_MARKERS = ("--", "/*", "*/")


def _keyword_pattern(keyword: str) -> "re.Pattern":
    # SP_/XP_ are procedure-name prefixes, so only the leading boundary applies
    if keyword.endswith("_"):
        return re.compile(rf"\b{keyword}")
    return re.compile(rf"\b{keyword}\b")


_KEYWORD_PATTERNS = tuple((keyword, _keyword_pattern(keyword)) for keyword in FORBIDDEN_KEYWORDS)


class SQLValidator:
    """Lexical safety check for generated SQL.

    A blocklist, not a parser: it rejects non-SELECT statements, dangerous
    keywords and comment markers. It cannot prove a statement is harmless.
    """

    def __init__(self, require_tenant_filter: bool = False, dialect: str = "tsql"):
        """
        Args:
            require_tenant_filter: Also require an ApplicationId equality filter
            dialect: sqlglot dialect used by the tenant filter check
        """
        self.logger = logging.getLogger(__name__)
        self.require_tenant_filter = require_tenant_filter
        self.dialect = dialect

    def validate(self, sql: str, tenant_id: Optional[int] = None) -> ValidationResult:
        """
        Validate SQL for security compliance.

        Args:
            sql: SQL query to validate
            tenant_id: Application id, used by the optional tenant filter check

        Returns:
            ValidationResult with the first failing rule as the reason
        """
        result = self._validate(sql, tenant_id)
        if result.is_valid:
            self.logger.info("SQL validation passed all security checks")
        else:
            self.logger.warning(f"SQL validation failed: {result.reason}")
        return result

    def is_valid(self, sql: str) -> bool:
        return self.validate(sql).is_valid

    def _validate(self, sql: str, tenant_id: Optional[int]) -> ValidationResult:
        if sql is None or not sql.strip():
            return ValidationResult(False, "Empty query")

        sql_upper = sql.upper().strip()

        if not sql_upper.startswith("SELECT"):
            return ValidationResult(False, "Query must start with SELECT")

        for keyword, pattern in _KEYWORD_PATTERNS:
            if pattern.search(sql_upper):
                return ValidationResult(False, f"Forbidden keyword detected: {keyword}")

        for marker in COMMENT_MARKERS:
            if marker in sql_upper:
                return ValidationResult(False, f"SQL comment marker detected: {marker}")

        if self.require_tenant_filter and tenant_id is not None:
            return self.validate_tenant_filter(sql, tenant_id)

        return ValidationResult(True)

    def validate_tenant_filter(self, sql: str, tenant_id: int) -> ValidationResult:
        """
        Require ``ApplicationId = @ApplicationId`` or ``ApplicationId = <tenant_id>``
        as a top-level AND term of the WHERE clause of every outer SELECT.

        An equality under an OR, or only inside a subquery, does not count.
        """
        try:
            parsed = sqlglot.parse_one(sql, read=self.dialect)
        except SqlglotError as e:
            return ValidationResult(False, f"Tenant filter could not be verified: {e}")

        selects = list(_outer_selects(parsed))
        if selects and all(self._filters_tenant(select, tenant_id) for select in selects):
            return ValidationResult(True)

        return ValidationResult(False, f"Missing tenant filter ApplicationId = {tenant_id}")

    def _filters_tenant(self, select: exp.Select, tenant_id: int) -> bool:
        where = select.args.get("where")
        if where is None:
            return False

        condition = where.this.unnest()
        terms = condition.flatten() if isinstance(condition, exp.And) else (condition,)
        return any(self._is_tenant_equality(term, tenant_id) for term in terms)

    def _is_tenant_equality(self, term: exp.Expression, tenant_id: int) -> bool:
        if not isinstance(term, exp.EQ):
            return False

        accepted = {"@applicationid", str(tenant_id)}
        sides = (term.left, term.right)
        for column, other in (sides, sides[::-1]):
            if not isinstance(column, exp.Column) or column.name.lower() != "applicationid":
                continue
            rendered = other.sql(dialect=self.dialect).lower()
            if rendered in accepted or other.name.lower().lstrip("@") == "applicationid":
                return True
        return False


def _outer_selects(node: exp.Expression):
    """SELECTs of the statement itself, through UNION/INTERSECT/EXCEPT, not subqueries."""
    if isinstance(node, exp.Select):
        yield node
    elif isinstance(node, (exp.Union, exp.Intersect, exp.Except)):
        yield from _outer_selects(node.this)
        yield from _outer_selects(node.expression)
    elif isinstance(node, (exp.Subquery, exp.Paren)):
        yield from _outer_selects(node.this)
