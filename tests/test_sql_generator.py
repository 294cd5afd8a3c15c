import math

import pytest

from askai.config import SamplingConfig
from askai.exceptions import EmptyGenerationError, GenerationProviderError, ProviderError
from askai.models import TokenUsage
from askai.online.sql_generator import PROMPT_OVERHEAD_CHARS, SqlGenerator, cleanup, estimate_tokens

from .conftest import FakeCompletionProvider


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("```sql\nSELECT * FROM Participant\n```", "SELECT * FROM Participant;"),
        ("```\nSELECT 1;\n```", "SELECT 1;"),
        ('"SELECT a\\nFROM t"', "SELECT a FROM t;"),
        ("SELECT   a,\n\t b  FROM t", "SELECT a, b FROM t;"),
        ("  SELECT 1;  ", "SELECT 1;"),
        ("SELECT 'it''s' AS x", "SELECT 'it''s' AS x;"),
        ("'SELECT 1'", "SELECT 1;"),
    ],
)
def test_cleanup(raw, expected):
    assert cleanup(raw) == expected


def test_cleanup_keeps_inner_quotes():
    assert cleanup("SELECT * FROM p WHERE name = 'Ada'") == "SELECT * FROM p WHERE name = 'Ada';"


def test_cleanup_is_idempotent():
    for raw in (
        "```sql\n\"SELECT a\\tFROM t\"\n```",
        "'\"SELECT 1\"'",
        "SELECT x FROM y;",
        "SELECT 'a' + 'b'",
    ):
        once = cleanup(raw)
        assert cleanup(once) == once


def test_cleanup_of_blank_text_is_empty():
    assert cleanup("```sql\n```") == ""
    assert cleanup("") == ""


def test_estimate_tokens_rounds_up():
    assert estimate_tokens(1) == 1
    assert estimate_tokens(4) == 1
    assert estimate_tokens(5) == 2
    assert estimate_tokens(100, 20, PROMPT_OVERHEAD_CHARS, 37) == math.ceil(357 / 4)


@pytest.mark.asyncio
async def test_generate_estimates_tokens_without_provider_usage():
    provider = FakeCompletionProvider(text="SELECT 1")
    outcome = await SqlGenerator(provider).generate("system prompt", "how many?")

    assert outcome.sql == "SELECT 1;"
    assert outcome.usage_reported is False
    assert outcome.tokens_used == math.ceil((len("system prompt") + len("how many?") + 200 + len("SELECT 1")) / 4)


@pytest.mark.asyncio
async def test_generate_prefers_provider_usage():
    provider = FakeCompletionProvider(text="SELECT 1", usage=TokenUsage(prompt=40, completion=2, total=42))
    outcome = await SqlGenerator(provider).generate("system", "question")

    assert outcome.tokens_used == 42
    assert outcome.usage_reported is True


@pytest.mark.asyncio
async def test_generate_sends_system_and_user_messages_with_sampling():
    sampling = SamplingConfig(temperature=0.1, top_p=0.95)
    provider = FakeCompletionProvider(text="SELECT 1")
    await SqlGenerator(provider, sampling).generate("the system prompt", "list participants")

    system_prompt, user_prompt, sent_sampling = provider.calls[0]
    assert system_prompt == "the system prompt"
    assert 'Query: "list participants"' in user_prompt
    assert user_prompt.endswith("Return only the SQL query.")
    assert sent_sampling == sampling
    assert sent_sampling.frequency_penalty == 0.0
    assert sent_sampling.presence_penalty == 0.0


@pytest.mark.asyncio
async def test_blank_completion_raises_with_prompt_cost():
    provider = FakeCompletionProvider(text="   \n")

    with pytest.raises(EmptyGenerationError) as excinfo:
        await SqlGenerator(provider).generate("system", "question")

    assert excinfo.value.tokens_used == math.ceil((len("system") + len("question") + 200) / 4)


@pytest.mark.asyncio
async def test_provider_failure_raises_generation_error():
    provider = FakeCompletionProvider(error=ProviderError("timeout"))

    with pytest.raises(GenerationProviderError) as excinfo:
        await SqlGenerator(provider).generate("system", "question")

    assert excinfo.value.tokens_used == 0
    assert "timeout" in str(excinfo.value)
