"""
brain/__init__.py — Signal Analyst LLM Brain

Provider clients are imported lazily inside LLMClientFactory.create() so the
package stays importable without every SDK installed, and so the Home
Assistant conversation client (which pulls in exceptions.py) is not loaded
while exceptions.py itself imports brain.llm_client.
"""

from __future__ import annotations

from typing import Optional

from brain.llm_client import (
    BaseLLMClient,
    ResilientLLMClient,
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
)
from brain.types import (
    FinishReason,
    LLMConfig,
    LLMResponse,
    Message,
    Provider,
    Role,
    TokenUsage,
)

__all__ = [
    "LLMClientFactory",
    "BaseLLMClient",
    "ResilientLLMClient",
    "LLMError",
    "LLMConnectionError",
    "LLMRateLimitError",
    "LLMContextError",
    "LLMInvalidRequestError",
    "Message",
    "LLMConfig",
    "LLMResponse",
    "TokenUsage",
    "Role",
    "Provider",
    "FinishReason",
]

# Default models per provider
_DEFAULT_MODELS: dict[str, str] = {
    "openai":       "gpt-4o",
    "anthropic":    "claude-3-5-sonnet-20241022",
    "ollama":       "llama3.1",
    "conversation": "default",
}

_VALID_PROVIDERS = tuple(_DEFAULT_MODELS)


class LLMClientFactory:

    @staticmethod
    def create(
        provider: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        **kwargs,
    ) -> BaseLLMClient:
        """
        Build one provider client.

        The conversation provider needs `ha_api` (a HomeAssistantAPI) and
        optionally `agent_id` in kwargs.
        """
        provider = provider.lower().strip()

        if provider == "openai":
            if not api_key:
                raise LLMConnectionError("OPENAI_API_KEY is required", provider="openai")
            from brain.openai_client import OpenAIClient
            return OpenAIClient(api_key=api_key, base_url=base_url)

        elif provider == "anthropic":
            if not api_key:
                raise LLMConnectionError("ANTHROPIC_API_KEY is required", provider="anthropic")
            from brain.anthropic_client import AnthropicClient
            return AnthropicClient(api_key=api_key, base_url=base_url)

        elif provider == "ollama":
            from brain.ollama_client import OllamaClient
            return OllamaClient(base_url=base_url or "http://localhost:11434/v1")

        elif provider == "conversation":
            ha_api = kwargs.get("ha_api")
            if ha_api is None:
                raise LLMConnectionError(
                    "HA_TOKEN and home_assistant.url are required for the conversation provider",
                    provider="conversation",
                )
            from brain.conversation_client import ConversationClient
            return ConversationClient(ha_api, agent_id=kwargs.get("agent_id"))

        else:
            raise ValueError(
                f"Unknown LLM provider: '{provider}'. "
                f"Valid options: {', '.join(_VALID_PROVIDERS)}"
            )

    @staticmethod
    def from_settings(settings, ha_api=None) -> BaseLLMClient:
        """
        Create an LLM client from Settings, wrapped in ResilientLLMClient.

        Reads settings.llm.retry (max_attempts, base_delay, max_delay) and
        settings.llm.fallback_providers to configure retry behaviour and the
        failover chain.

        Example config.yaml:
            llm:
              provider: conversation
              conversation_agent_id: conversation.claude_conversation
              retry:
                max_attempts: 3
              fallback_providers:
                - ollama      # tried if the HA agent exhausts retries
        """
        from observability.logger import get_logger
        log = get_logger(__name__)

        provider = settings.llm.provider

        api_key_map = {
            "openai":       settings.openai_api_key,
            "anthropic":    settings.anthropic_api_key,
            "ollama":       None,
            "conversation": None,
        }
        base_url_map = {
            "ollama": settings.ollama_base_url.rstrip("/") + "/v1",
        }
        extra = {
            "ha_api": ha_api,
            "agent_id": settings.llm.conversation_agent_id,
        }

        primary = LLMClientFactory.create(
            provider=provider,
            api_key=api_key_map.get(provider),
            base_url=base_url_map.get(provider),
            **extra,
        )

        fallbacks: list[BaseLLMClient] = []
        for fp in settings.llm.fallback_providers:
            fp = fp.lower().strip()
            if fp == provider:
                continue  # don't add primary as its own fallback
            try:
                fallbacks.append(LLMClientFactory.create(
                    provider=fp,
                    api_key=api_key_map.get(fp),
                    base_url=base_url_map.get(fp),
                    **extra,
                ))
            except (LLMError, ValueError) as e:
                log.warning("llm.fallback_skipped", provider=fp, error=str(e))

        retry = settings.llm.retry
        return ResilientLLMClient(
            primary=primary,
            fallbacks=fallbacks,
            max_attempts=retry.max_attempts,
            base_delay=retry.base_delay,
            max_delay=retry.max_delay,
        )

    @staticmethod
    def default_model(provider: str) -> str:
        return _DEFAULT_MODELS.get(provider.lower(), "gpt-4o")
