import logging
from typing import Any, Dict, Optional

from langchain_community.chat_models import ChatOllama
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from ..config import SamplingConfig, settings
from ..exceptions import ProviderError
from ..models import CompletionResponse, TokenUsage


class OllamaCompletionProvider:
    """Chat completion through an Ollama server via langchain."""

    def __init__(self, model_name: str = None, base_url: str = None):
        """
        Initialize the completion provider.

        Args:
            model_name: Ollama model tag (defaults to settings)
            base_url: Ollama server URL (defaults to settings)
        """
        self.logger = logging.getLogger(__name__)
        self.model_name = model_name or settings.llm_model_name
        self.base_url = base_url or settings.llm_base_url
        self._models: Dict[SamplingConfig, ChatOllama] = {}

    def _get_llm(self, sampling: SamplingConfig) -> ChatOllama:
        """Return a chat model bound to the given sampling parameters.

        Ollama has no frequency/presence penalty; repeat_penalty=1.0 is the
        no-penalty setting.
        """
        llm = self._models.get(sampling)
        if llm is None:
            try:
                llm = ChatOllama(
                    model=self.model_name,
                    base_url=self.base_url,
                    temperature=sampling.temperature,
                    top_p=sampling.top_p,
                    repeat_penalty=1.0,
                    num_predict=sampling.max_tokens,
                )
            except Exception as e:
                self.logger.error(f"Failed to initialize LLM: {e}")
                raise ProviderError(f"Failed to initialize LLM {self.model_name}: {e}") from e
            self._models[sampling] = llm
            self.logger.info(f"LLM initialized with model: {self.model_name}")
        return llm

    async def complete(
        self, system_prompt: str, user_prompt: str, sampling: SamplingConfig
    ) -> CompletionResponse:
        """
        Send a system + user exchange and return the first completion.

        Args:
            system_prompt: Rendered system prompt
            user_prompt: User message
            sampling: Sampling parameters

        Returns:
            Completion text with token usage when the server reports it
        """
        llm = self._get_llm(sampling)
        messages = [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]
        try:
            response = await llm.ainvoke(messages)
        except Exception as e:
            self.logger.error(f"Error calling completion model: {e}")
            raise ProviderError(f"Completion request failed: {e}") from e

        text = response.content if isinstance(response.content, str) else str(response.content)
        return CompletionResponse(text=text, usage=self._extract_usage(response))

    @staticmethod
    def _extract_usage(response: AIMessage) -> Optional[TokenUsage]:
        """Read token counts from the message, if the server sent any."""
        usage: Optional[Dict[str, Any]] = getattr(response, "usage_metadata", None)
        if usage:
            return TokenUsage(
                prompt=usage.get("input_tokens", 0),
                completion=usage.get("output_tokens", 0),
                total=usage.get("total_tokens", 0),
            )

        metadata = response.response_metadata or {}
        prompt_tokens = metadata.get("prompt_eval_count")
        completion_tokens = metadata.get("eval_count")
        if prompt_tokens is None and completion_tokens is None:
            return None
        prompt_tokens = prompt_tokens or 0
        completion_tokens = completion_tokens or 0
        return TokenUsage(
            prompt=prompt_tokens,
            completion=completion_tokens,
            total=prompt_tokens + completion_tokens,
        )
