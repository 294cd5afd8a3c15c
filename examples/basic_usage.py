"""
Example usage of AskAI.

Expects Ollama on ``LLM_BASE_URL`` and the schema index built with:

    askai build-index examples/schema_fragments.json
"""

import asyncio

from askai.text2sql import Text2SQL
from askai.exceptions import AskAIError
from askai.models import QueryRequest, QueryStatus


async def main():
    """Demonstrate AskAI usage."""

    # Connection settings come from .env
    text2sql = Text2SQL.from_settings()

    print("=== AskAI Example Usage ===\n")

    # 1. Validator on hand-written SQL
    print("1. Validating SQL...")
    for sql in (
        "SELECT * FROM Participant WHERE ApplicationId = 1",
        "DELETE FROM Participant",
        "SELECT 1; -- comment",
    ):
        verdict = text2sql.validate_sql(sql)
        print(f"  {'✓' if verdict.is_valid else '✗'} {sql}" + ("" if verdict.is_valid else f" ({verdict.reason})"))
    print()

    # 2. Query examples, tenant-wide and event-scoped
    requests = [
        QueryRequest(query="How many active participants are there?", application_id=1),
        QueryRequest(query="Show participants who checked in", application_id=1, event_id=42),
        QueryRequest(query="List participants interested in marketing", application_id=1),
        # Near-duplicate of the first question, answered from the semantic cache
        QueryRequest(query="How many active participants are there", application_id=1),
    ]

    print("2. Query examples:")
    for request in requests:
        print(f"\nQuery: {request.query} (event {request.event_id})")
        try:
            result = await text2sql.query_to_sql(request)
        except AskAIError as e:
            print(f"✗ Error: {e}")
            continue

        if result.status in (QueryStatus.QUOTA_EXCEEDED, QueryStatus.VALIDATION_FAILED):
            print(f"✗ {result.error}")
            continue

        print(f"SQL ({result.source.value}): {result.generated_sql}")
        if result.success:
            for i, row in enumerate(result.data[:3]):
                print(f"  {i+1}. {row}")
            if len(result.data) > 3:
                print(f"  ... and {len(result.data) - 3} more rows")
        else:
            print(f"✗ Execution failed: {result.error}")
        print(f"Tokens used: {result.tokens_used}")

    # 3. Usage
    stats = await text2sql.token_ledger.stats(1)
    print(f"\n3. Usage for application 1: {stats.total_tokens} tokens over {stats.total_requests} requests")


if __name__ == "__main__":
    asyncio.run(main())
