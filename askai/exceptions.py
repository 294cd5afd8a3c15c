"""
Error taxonomy for the NL-to-SQL pipeline.

Provider and index errors abort a request. Validation and execution failures
are reported as values on ``QueryResult``; the exception types below exist for
callers that want to raise them at a boundary.
"""


class AskAIError(Exception):
    """Base class for all pipeline errors."""


class InputError(AskAIError):
    """The natural-language query is missing or blank."""


class QuotaError(AskAIError):
    """The tenant's token quota does not allow another request."""


class ProviderError(AskAIError):
    """An embedding or completion provider failed."""


class GenerationProviderError(ProviderError):
    """The completion provider call failed; no tokens are charged for it."""

    tokens_used = 0


class EmptyGenerationError(AskAIError):
    """The model returned blank text.

    ``tokens_used`` holds the prompt cost already incurred for the call.
    """

    def __init__(self, message: str = "Model returned an empty SQL query", tokens_used: int = 0):
        super().__init__(message)
        self.tokens_used = tokens_used


class IndexUnavailableError(AskAIError):
    """The schema vector index could not be searched."""


class ValidationError(AskAIError):
    """Generated SQL failed the safety blocklist."""

    def __init__(self, reason: str):
        super().__init__(f"Generated SQL failed validation: {reason}")
        self.reason = reason


class DatastoreExecutionError(AskAIError):
    """The datastore rejected or failed to run a statement."""
