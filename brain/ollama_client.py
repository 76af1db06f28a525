"""
brain/ollama_client.py — Ollama Local LLM Client

Supports any model running in Ollama (llama3, mistral, qwen, gemma, etc.).
Uses the OpenAI-compatible endpoint Ollama exposes at /v1/, so the OpenAI
SDK is reused, pointed at localhost.
"""

from __future__ import annotations

import openai
from openai import AsyncOpenAI

from brain.llm_client import BaseLLMClient, LLMConnectionError
from brain.openai_client import OpenAIClient
from brain.types import LLMConfig, LLMResponse, Message, Provider
from observability.logger import get_logger

log = get_logger(__name__)

_DEFAULT_BASE_URL = "http://localhost:11434/v1"


class OllamaClient(BaseLLMClient):
    """
    Ollama client — runs local models via Ollama's OpenAI-compatible API.

    No API key required. Requires Ollama to be running locally.
    Set base_url if Ollama is on a non-standard host/port.
    """

    def __init__(self, base_url: str = _DEFAULT_BASE_URL):
        super().__init__(api_key="ollama", base_url=base_url)
        self._inner = OpenAIClient(api_key="ollama", base_url=base_url)
        # raw client for health check (models list)
        self._raw_client = AsyncOpenAI(api_key="ollama", base_url=base_url)

    async def generate(
        self,
        messages: list[Message],
        config: LLMConfig,
    ) -> LLMResponse:
        log.debug("ollama.generate.start", model=config.model)
        try:
            result = await self._inner.generate(messages, config)
        except LLMConnectionError as e:
            raise LLMConnectionError(
                f"Cannot reach Ollama at {self.base_url}. Is `ollama serve` running?",
                provider="ollama",
            ) from e
        result.provider = Provider.OLLAMA
        return result

    async def health_check(self) -> bool:
        """Check if Ollama is running and reachable."""
        try:
            models = await self._raw_client.models.list()
            log.debug("ollama.health_check.ok", available_models=[m.id for m in models.data])
            return True
        except (openai.APIError, OSError) as e:
            log.warning("ollama.health_check.failed", error=str(e))
            return False
