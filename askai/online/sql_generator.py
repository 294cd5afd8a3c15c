import logging
import math
import re

from ..config import SamplingConfig
from ..core.interfaces import CompletionProvider
from ..exceptions import EmptyGenerationError, GenerationProviderError, ProviderError
from ..models import GenerationOutcome
from .prompt_builder import USER_MESSAGE_TEMPLATE

# characters of user-message scaffolding not covered by len(user_query)
PROMPT_OVERHEAD_CHARS = 200

_FENCE = re.compile(r"```(?:sql)?", re.IGNORECASE)
_ESCAPE = re.compile(r"\\([ntr\"'\\])")
_WHITESPACE = re.compile(r"\s+")
_QUOTES = ('"', "'")


def estimate_tokens(*lengths: int) -> int:
    """Roughly one token per four characters."""
    return math.ceil(sum(lengths) / 4)


def _unescape(match: "re.Match") -> str:
    char = match.group(1)
    if char in "ntr":
        return " "
    return char


def _normalize_once(sql: str) -> str:
    sql = _FENCE.sub("", sql)
    sql = _ESCAPE.sub(_unescape, sql)
    sql = _WHITESPACE.sub(" ", sql).strip()
    if len(sql) >= 2 and sql[0] in _QUOTES and sql[-1] == sql[0]:
        sql = sql[1:-1].strip()
    return sql


def cleanup(raw_text: str) -> str:
    """
    Turn raw model output into a single-line SQL statement.

    Strips markdown code fences and a wrapping pair of quotes, unescapes
    literal escape sequences, collapses whitespace runs to single spaces and
    appends a trailing semicolon. Applying it twice changes nothing.
    """
    sql = raw_text or ""
    while True:
        normalized = _normalize_once(sql)
        if normalized == sql:
            break
        sql = normalized
    if sql and not sql.endswith(";"):
        sql += ";"
    return sql


class SqlGenerator:
    """Generates SQL text with the completion model."""

    def __init__(self, provider: CompletionProvider, sampling: SamplingConfig = None):
        """
        Args:
            provider: Chat completion provider
            sampling: Sampling parameters, low temperature by default
        """
        self.logger = logging.getLogger(__name__)
        self.provider = provider
        self.sampling = sampling or SamplingConfig()

    async def generate(self, system_prompt: str, user_query: str) -> GenerationOutcome:
        """
        Generate SQL for ``user_query``.

        Args:
            system_prompt: Rendered system prompt
            user_query: The user's natural language question

        Returns:
            Cleaned SQL and the tokens charged

        Raises:
            GenerationProviderError: provider call failed (nothing charged)
            EmptyGenerationError: blank completion (prompt cost charged)
        """
        user_message = USER_MESSAGE_TEMPLATE.format(query=user_query)
        self.logger.info("Sending request to completion model for SQL generation...")
        try:
            response = await self.provider.complete(system_prompt, user_message, self.sampling)
        except ProviderError as e:
            self.logger.error(f"Failed to generate SQL: {e}")
            raise GenerationProviderError(str(e)) from e

        raw_text = response.text or ""
        if response.usage is not None and response.usage.total > 0:
            tokens_used = response.usage.total
            usage_reported = True
        else:
            tokens_used = estimate_tokens(
                len(system_prompt), len(user_query), PROMPT_OVERHEAD_CHARS, len(raw_text)
            )
            usage_reported = False

        if not raw_text.strip():
            prompt_tokens = (
                response.usage.prompt if usage_reported
                else estimate_tokens(len(system_prompt), len(user_query), PROMPT_OVERHEAD_CHARS)
            )
            self.logger.error("Completion model returned an empty SQL query")
            raise EmptyGenerationError(tokens_used=prompt_tokens)

        sql = cleanup(raw_text)
        if not sql:
            raise EmptyGenerationError(tokens_used=tokens_used)

        self.logger.info(f"SQL query generated successfully (tokens: {tokens_used})")
        self.logger.debug(f"Generated SQL: {sql}")
        return GenerationOutcome(sql=sql, tokens_used=tokens_used, usage_reported=usage_reported)
