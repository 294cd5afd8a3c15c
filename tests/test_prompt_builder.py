from askai.models import SchemaFragment
from askai.online.prompt_builder import PromptBuilder

from .conftest import PARTICIPANT, PARTICIPANT_INSTANCE, column


def test_render_is_deterministic():
    builder = PromptBuilder()
    fragments = [PARTICIPANT, PARTICIPANT_INSTANCE]

    assert builder.render(fragments, 1, 42) == builder.render(fragments, 1, 42)
    assert PromptBuilder().render(fragments, 1, 0) == builder.render(fragments, 1, 0)


def test_duplicate_table_renders_first_fragment_only():
    duplicate = SchemaFragment(
        table_name="Participant",
        columns=(column("ShouldNotAppear", "int"),),
    )
    context = PromptBuilder().build_schema_context([PARTICIPANT, duplicate])

    assert context.count("Table: Participant\n") == 1
    assert "ShouldNotAppear" not in context
    assert "FirstName" in context


def test_columns_ordered_primary_then_foreign_then_rest():
    context = PromptBuilder().build_schema_context([PARTICIPANT])

    positions = [context.index(f"  - {name}:") for name in ("Id", "ApplicationId", "FirstName", "IsDeleted")]
    assert positions == sorted(positions)


def test_constraint_annotations():
    context = PromptBuilder().build_schema_context([PARTICIPANT])

    assert "  - Id: int (PK, NOT NULL, IDENTITY)" in context
    assert "  - ApplicationId: int (FK, NOT NULL)" in context
    assert "  - FirstName: nvarchar(100)\n" in context


def test_tables_sorted_by_name():
    context = PromptBuilder().build_schema_context([PARTICIPANT_INSTANCE, PARTICIPANT])

    assert context.index("Table: Participant\n") < context.index("Table: Participant_ApplicationInstance")


def test_relationships_and_query_patterns_listed():
    context = PromptBuilder().build_schema_context([PARTICIPANT, PARTICIPANT_INSTANCE])

    assert (
        "- Participant_ApplicationInstance.ParticipantId → Participant.Id "
        "(registration belongs to a participant)"
    ) in context
    assert context.index("Table Relationships:") < context.index("Common Query Patterns:")


def test_tenant_only_prompt_has_no_event_scope():
    prompt = PromptBuilder().render([PARTICIPANT], tenant_id=1, event_id=0)

    assert "@ApplicationId = 1" in prompt
    assert "@EventId = 0" in prompt
    assert "MANDATORY EVENT SCOPE" not in prompt
    assert "do NOT include any EventId filter" in prompt


def test_event_scoped_prompt_requires_event_join():
    prompt = PromptBuilder().render([PARTICIPANT, PARTICIPANT_INSTANCE], tenant_id=1, event_id=42)

    assert "@EventId = 42" in prompt
    assert "MANDATORY EVENT SCOPE (@EventId = 42)" in prompt
    assert "pai.ApplicationInstanceId = @EventId" in prompt


def test_prompt_section_order():
    prompt = PromptBuilder().render([PARTICIPANT], tenant_id=1, event_id=42)

    headings = [
        "INPUT PARAMETERS:",
        "MANDATORY EVENT SCOPE",
        "CRITICAL SECURITY RULES",
        "SQL SERVER SYNTAX REQUIREMENTS:",
        "SOFT-DELETE RULES:",
        "TENANT AND EVENT SCOPE:",
        "RESPONSE FORMAT:",
        "DATABASE SCHEMA CONTEXT:",
        "SYSTEM INSTRUCTIONS:",
        "EXAMPLES:",
        "SAMPLE QUESTIONS AND ANSWERS:",
    ]
    positions = [prompt.index(heading) for heading in headings]
    assert positions == sorted(positions)


def test_custom_examples_replace_defaults():
    builder = PromptBuilder(few_shot_examples=[{"question": "Custom?", "sql": "SELECT 42;"}])
    prompt = builder.render([PARTICIPANT], 1)

    assert "Question: Custom?" in prompt
    assert "interested in marketing" not in prompt
