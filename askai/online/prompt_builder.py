import logging
from typing import Any, Dict, List, Optional, Sequence

from ..models import SchemaColumn, SchemaFragment

USER_MESSAGE_TEMPLATE = """Convert this natural language query to SQL:

Query: "{query}"

Requirements:
1. Generate a secure SELECT-only query
2. Follow all participant system business rules
3. Use proper SQL Server syntax
4. Include appropriate filtering for soft-deleted records
5. Use meaningful aliases and proper formatting
6. Consider performance and include relevant ORDER BY clauses
7. Handle NULL values appropriately

Return only the SQL query."""

TABLE_PURPOSES = {
    "Participant": (
        "Stores individual participant information including personal details, "
        "contact info, and social media profiles"
    ),
    "Participant_ApplicationInstance": (
        "Links participants to specific application instances/events, "
        "tracks check-in status and platform usage"
    ),
}

COMMON_QUERY_PATTERNS = (
    "Use JOINs when querying across both tables",
    "Filter by IsDeleted = 0 for active records (if present)",
    "Use CheckInStatus for event attendance queries (if present)",
    "Platform tracking via JoinedByIOS, JoinedByAndroid, JoinedByPWA columns (if present)",
    "Social media queries use LinkedInPublicProfileUrl, etc. (if present)",
)

DEFAULT_EXAMPLES = (
    {
        "question": "How many active participants are registered?",
        "sql": (
            "SELECT COUNT(*) AS ParticipantCount FROM Participant p "
            "WHERE p.IsDeleted = 0 AND p.ApplicationId = @ApplicationId;"
        ),
    },
    {
        "question": "Show participants who checked in to the event",
        "sql": (
            "SELECT p.Id, p.FirstName, p.LastName, p.Email FROM Participant p "
            "JOIN Participant_ApplicationInstance pai ON p.Id = pai.ParticipantId "
            "WHERE p.IsDeleted = 0 AND pai.isDeleted = 0 AND p.ApplicationId = @ApplicationId "
            "AND pai.ApplicationInstanceId = @EventId AND pai.CheckInStatus = 1 "
            "ORDER BY p.LastName;"
        ),
    },
    {
        "question": "Which participants joined from the iOS app?",
        "sql": (
            "SELECT TOP 100 p.Id, p.FirstName, p.LastName FROM Participant p "
            "JOIN Participant_ApplicationInstance pai ON p.Id = pai.ParticipantId "
            "WHERE p.IsDeleted = 0 AND pai.isDeleted = 0 AND p.ApplicationId = @ApplicationId "
            "AND pai.JoinedByIOS = 1 ORDER BY p.FirstName;"
        ),
    },
    {
        "question": "List participants interested in marketing",
        "sql": (
            "SELECT DISTINCT p.Id, p.FirstName, p.LastName FROM Participant p "
            "JOIN ParticipantInterest pi ON p.Id = pi.ParticipantId "
            "WHERE p.IsDeleted = 0 AND p.ApplicationId = @ApplicationId "
            "AND pi.Interest LIKE '%marketing%' ORDER BY p.LastName;"
        ),
    },
)

SAMPLE_QA = (
    (
        "Who are the participants with a LinkedIn profile?",
        "SELECT p.Id, p.FirstName, p.LastName, p.LinkedInPublicProfileUrl FROM Participant p "
        "WHERE p.IsDeleted = 0 AND p.ApplicationId = @ApplicationId "
        "AND ISNULL(p.LinkedInPublicProfileUrl, '') <> '' ORDER BY p.LastName;",
    ),
    (
        "How many participants registered each month this year?",
        "SELECT MONTH(p.CreatedDate) AS RegistrationMonth, COUNT(*) AS ParticipantCount "
        "FROM Participant p WHERE p.IsDeleted = 0 AND p.ApplicationId = @ApplicationId "
        "AND YEAR(p.CreatedDate) = YEAR(GETDATE()) GROUP BY MONTH(p.CreatedDate) "
        "ORDER BY RegistrationMonth;",
    ),
)


class PromptBuilder:
    """Renders schema context and the security-constrained system prompt.

    Output depends only on the arguments: the same fragments and ids always
    produce the same string.
    """

    def __init__(self, few_shot_examples: Optional[Sequence[Dict[str, Any]]] = None):
        """Initialize prompt builder."""
        self.logger = logging.getLogger(__name__)
        self.few_shot_examples = tuple(few_shot_examples or DEFAULT_EXAMPLES)

    def build_schema_context(self, fragments: Sequence[SchemaFragment]) -> str:
        """
        Render retrieved fragments as schema documentation for the model.

        Args:
            fragments: Retrieved schema fragments, possibly with repeated tables

        Returns:
            Schema context text
        """
        tables: Dict[str, SchemaFragment] = {}
        for fragment in fragments:
            tables.setdefault(fragment.table_name, fragment)

        lines = [
            "Participant Database Schema Context:",
            "=====================================",
            "",
            "This database manages participants in various applications/events "
            "with the following structure:",
            "",
        ]

        for table_name in sorted(tables):
            lines.extend(self._build_table_section(tables[table_name]))

        lines.append("Table Relationships:")
        lines.append("-------------------")
        for fragment in fragments:
            for rel in fragment.relationships:
                edge = f"- {rel.from_table}.{rel.from_column} → {rel.to_table}.{rel.to_column}"
                lines.append(f"{edge} ({rel.description})" if rel.description else edge)
        lines.append("")

        lines.append("Common Query Patterns:")
        lines.append("---------------------")
        lines.extend(f"- {pattern}" for pattern in COMMON_QUERY_PATTERNS)

        return "\n".join(lines)

    def _build_table_section(self, fragment: SchemaFragment) -> List[str]:
        lines = [
            f"Table: {fragment.table_name}",
            "-" * (len(fragment.table_name) + 7),
            f"Purpose: {TABLE_PURPOSES.get(fragment.table_name, fragment.description)}",
            "Columns:",
        ]
        # sorted() is stable: original order is kept inside each group
        for column in sorted(fragment.columns, key=_column_rank):
            lines.append(f"  - {column.name}: {column.data_type}{_constraint_suffix(column)}")
            if column.description:
                lines.append(f"    Description: {column.description}")
            if column.business_context:
                lines.append(f"    Business Context: {column.business_context}")
        lines.append("")
        return lines

    def build_system_prompt(self, schema_context: str, tenant_id: int, event_id: int = 0) -> str:
        """
        Build the system prompt for SQL generation.

        Args:
            schema_context: Output of ``build_schema_context``
            tenant_id: Application id every query must be filtered on
            event_id: Event (application instance) id, 0 when unscoped

        Returns:
            Complete system prompt
        """
        event_scoped = event_id > 0
        prompt_parts = [self._build_role_instruction(tenant_id, event_id)]
        if event_scoped:
            prompt_parts.append(self._build_event_join_rule(event_id))
        prompt_parts.extend([
            self._build_security_rules(),
            self._build_syntax_rules(),
            self._build_soft_delete_rules(),
            self._build_scope_rules(event_scoped),
            self._build_output_format(),
            f"DATABASE SCHEMA CONTEXT:\n{schema_context}",
            self._build_system_instructions(),
            self._build_few_shot_examples(self.few_shot_examples),
            self._build_sample_qa(),
        ])

        complete_prompt = "\n\n".join(prompt_parts)
        self.logger.debug(f"Built prompt with {len(complete_prompt)} characters")
        return complete_prompt

    def render(self, fragments: Sequence[SchemaFragment], tenant_id: int, event_id: int = 0) -> str:
        """Schema context and system prompt in one call."""
        return self.build_system_prompt(self.build_schema_context(fragments), tenant_id, event_id)

    def _build_role_instruction(self, tenant_id: int, event_id: int) -> str:
        return f"""You are an expert SQL developer specializing in participant management systems. Your task is to convert natural language questions into precise, secure, and optimized SQL queries using the provided database schema.

INPUT PARAMETERS:
    @ApplicationId = {tenant_id}
    @EventId = {event_id}"""

    def _build_event_join_rule(self, event_id: int) -> str:
        return f"""MANDATORY EVENT SCOPE (@EventId = {event_id}):
YOU MUST join Participant with Participant_ApplicationInstance ON p.Id = pai.ParticipantId and include pai.ApplicationInstanceId = @EventId in the WHERE clause. This is mandatory for every query."""

    def _build_security_rules(self) -> str:
        return """CRITICAL SECURITY RULES (MANDATORY):
1. ONLY generate SELECT statements - absolutely NO INSERT, UPDATE, DELETE, DROP, CREATE, ALTER, TRUNCATE, EXEC, EXECUTE, or any DDL/DML operations.
2. Never include SQL comments of any kind.
3. Reference input parameters by name (@ApplicationId, @EventId) instead of building values into strings.
4. No dynamic SQL construction or EXEC statements.
5. No system stored procedures (sp_, xp_) or administrative functions."""

    def _build_syntax_rules(self) -> str:
        return """SQL SERVER SYNTAX REQUIREMENTS:
1. Use proper SQL Server T-SQL syntax and functions.
2. Use meaningful table aliases: 'p' for Participant, 'pai' for Participant_ApplicationInstance.
3. Use square brackets [TableName] for table names that contain special characters.
4. Use ISNULL() or COALESCE() for NULL handling.
5. Use DATEPART(), YEAR(), MONTH(), DAY() for date operations.
6. Use LEN() instead of LENGTH() for string length.
7. Use CHARINDEX() for string searching.
8. Use TOP N instead of LIMIT for result limiting."""

    def _build_soft_delete_rules(self) -> str:
        return """SOFT-DELETE RULES:
1. ALWAYS filter out soft-deleted records:
   - Use 'IsDeleted = 0' for the Participant table.
   - Use 'isDeleted = 0' for the Participant_ApplicationInstance table (note lowercase 'i').
   - Use 'isDeleted = 0' for the ApplicationInstance table.
2. When joining both tables, filter both: WHERE p.IsDeleted = 0 AND pai.isDeleted = 0."""

    def _build_scope_rules(self, event_scoped: bool) -> str:
        rules = [
            "TENANT AND EVENT SCOPE:",
            "1. ALWAYS include 'p.ApplicationId = @ApplicationId' in the WHERE clause of every query, "
            "regardless of other filters.",
        ]
        if event_scoped:
            rules.append(
                "2. ALWAYS join Participant (p) with Participant_ApplicationInstance (pai) "
                "ON p.Id = pai.ParticipantId, ALWAYS include pai.ApplicationInstanceId = @EventId, "
                "and apply all other relevant filters to both tables."
            )
        else:
            rules.append(
                "2. @EventId is not provided: do NOT join with Participant_ApplicationInstance "
                "for event scoping and do NOT include any EventId filter."
            )
        return "\n".join(rules)

    def _build_output_format(self) -> str:
        return """RESPONSE FORMAT:
- Return ONLY the SQL query without any explanations, markdown formatting, or additional text.
- Ensure the query is properly formatted and ready to execute.
- End with a semicolon."""

    def _build_system_instructions(self) -> str:
        return """SYSTEM INSTRUCTIONS:
1. Use only tables and columns that appear in the schema context above; never invent columns.
2. Select explicit columns instead of SELECT * unless the user asks for every field.
3. Use TOP 100 when the question does not limit the number of rows.
4. Use LIKE with wildcards for free-text matches on names, interests and companies.
5. Use COUNT, SUM, AVG with GROUP BY for counting and aggregation questions.
6. Produce a single statement."""

    def _build_few_shot_examples(self, examples: Sequence[Dict[str, Any]]) -> str:
        """Build few-shot examples section."""
        examples_text = ["EXAMPLES:"]
        for i, example in enumerate(examples, 1):
            examples_text.append(f"\nExample {i}:")
            examples_text.append(f"Question: {example['question']}")
            examples_text.append(f"SQL: {example['sql']}")
            if "context" in example:
                examples_text.append(f"Note: {example['context']}")
        return "\n".join(examples_text)

    def _build_sample_qa(self) -> str:
        lines = ["SAMPLE QUESTIONS AND ANSWERS:"]
        for question, answer in SAMPLE_QA:
            lines.append(f"Q: {question}")
            lines.append(f"A: {answer}")
        return "\n".join(lines)


def _column_rank(column: SchemaColumn) -> int:
    if column.is_primary_key:
        return 0
    if column.is_foreign_key:
        return 1
    return 2


def _constraint_suffix(column: SchemaColumn) -> str:
    constraints = []
    if column.is_primary_key:
        constraints.append("PK")
    if column.is_foreign_key:
        constraints.append("FK")
    if not column.is_nullable:
        constraints.append("NOT NULL")
    if column.is_identity:
        constraints.append("IDENTITY")
    return f" ({', '.join(constraints)})" if constraints else ""
