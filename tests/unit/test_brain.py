"""
tests/unit/test_brain.py — Brain Module Unit Tests

Tests the LLM client layer with mocked provider calls.
No real API keys or network calls required.

Covers:
  - Message / LLMResponse models
  - BaseLLMClient.complete() prompt-in / text-out contract
  - ResilientLLMClient retry + failover
  - LLMClientFactory.create() / from_settings()
  - ConversationClient against a mocked Home Assistant (httpx.MockTransport)
  - AnthropicClient message splitting

Run with:
    pytest tests/unit/test_brain.py -v
    pytest tests/unit/test_brain.py -v --tb=short
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from structlog.testing import capture_logs

from brain import (
    LLMClientFactory,
    LLMConfig,
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMRateLimitError,
    Message,
    ResilientLLMClient,
    Role,
)
from brain.conversation_client import ConversationClient, agent_label, pick_conversation_agent
from brain.llm_client import NO_RESPONSE, BaseLLMClient
from brain.types import FinishReason, LLMResponse, Provider, TokenUsage
from host.homeassistant import HomeAssistantAPI


# ─────────────────────────────────────────────────────────────────────────────
# Shared fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def basic_config() -> LLMConfig:
    return LLMConfig(model="test-model", temperature=0.2, max_tokens=100)


def _mock_client(*results) -> MagicMock:
    client = MagicMock(spec=BaseLLMClient)
    client.generate = AsyncMock(side_effect=list(results))
    client.health_check = AsyncMock(return_value=True)
    return client


def _ha_api(handler) -> HomeAssistantAPI:
    return HomeAssistantAPI(
        base_url="http://ha.test:8123",
        token="secret",
        transport=httpx.MockTransport(handler),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Models
# ─────────────────────────────────────────────────────────────────────────────


class TestMessage:
    def test_factories(self):
        assert Message.system("s").role == Role.SYSTEM
        assert Message.user("u").role == Role.USER
        assert Message.assistant("a").role == Role.ASSISTANT


class TestLLMResponse:
    def test_is_complete(self):
        assert LLMResponse(content="x").is_complete is True
        assert LLMResponse(content="x", finish_reason=FinishReason.LENGTH).is_complete is False

    def test_token_usage_total(self):
        assert TokenUsage(input_tokens=3, output_tokens=4).total_tokens == 7


# ─────────────────────────────────────────────────────────────────────────────
# complete()
# ─────────────────────────────────────────────────────────────────────────────


class _EchoClient(BaseLLMClient):
    def __init__(self, content, **response_fields):
        super().__init__()
        self.content = content
        self.response_fields = response_fields
        self.seen: list[Message] = []

    async def generate(self, messages, config):
        self.seen = messages
        return LLMResponse(content=self.content, **self.response_fields)

    async def health_check(self):
        return True


class TestComplete:
    @pytest.mark.asyncio
    async def test_prompt_sent_as_single_user_message(self, basic_config):
        client = _EchoClient("reply")
        assert await client.complete("full prompt", basic_config) == "reply"
        assert [(m.role, m.content) for m in client.seen] == [(Role.USER, "full prompt")]

    @pytest.mark.asyncio
    async def test_empty_content_placeholder(self, basic_config):
        assert await _EchoClient(None).complete("p", basic_config) == NO_RESPONSE

    @pytest.mark.asyncio
    async def test_usage_accumulates(self, basic_config):
        client = _EchoClient("r", usage=TokenUsage(input_tokens=10, output_tokens=2))
        await client.complete("a", basic_config)
        await client.complete("b", basic_config)
        assert client.usage.input_tokens == 20
        assert client.usage.total_tokens == 24

    @pytest.mark.asyncio
    async def test_truncated_reply_logged(self, basic_config):
        client = _EchoClient("partial", finish_reason=FinishReason.LENGTH)
        with capture_logs() as logs:
            assert await client.complete("p", basic_config) == "partial"
        [warning] = [e for e in logs if e["event"] == "llm.reply_truncated"]
        assert warning["log_level"] == "warning"
        assert warning["max_tokens"] == 100


# ─────────────────────────────────────────────────────────────────────────────
# ResilientLLMClient
# ─────────────────────────────────────────────────────────────────────────────


class TestResilientClient:
    @pytest.mark.asyncio
    async def test_retries_transient_errors(self, basic_config):
        primary = _mock_client(LLMConnectionError("blip"), LLMResponse(content="ok"))
        client = ResilientLLMClient(primary, max_attempts=3)
        with patch("brain.llm_client.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await client.generate([Message.user("hi")], basic_config)
        assert result.content == "ok"
        assert primary.generate.await_count == 2
        sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rate_limit_retry_after_respected(self, basic_config):
        primary = _mock_client(
            LLMRateLimitError("slow down", retry_after=2.5),
            LLMResponse(content="ok"),
        )
        client = ResilientLLMClient(primary, max_attempts=2)
        with patch("brain.llm_client.asyncio.sleep", new=AsyncMock()) as sleep:
            await client.generate([Message.user("hi")], basic_config)
        sleep.assert_awaited_once_with(2.5)

    @pytest.mark.asyncio
    async def test_fails_over_after_exhausting_primary(self, basic_config):
        primary = _mock_client(LLMConnectionError("a"), LLMConnectionError("b"))
        fallback = _mock_client(LLMResponse(content="from fallback"))
        client = ResilientLLMClient(primary, fallbacks=[fallback], max_attempts=2)
        with patch("brain.llm_client.asyncio.sleep", new=AsyncMock()):
            result = await client.generate([Message.user("hi")], basic_config)
        assert result.content == "from fallback"

    @pytest.mark.asyncio
    async def test_context_error_skips_failover(self, basic_config):
        primary = _mock_client(LLMContextError("too long"))
        fallback = _mock_client(LLMResponse(content="unused"))
        client = ResilientLLMClient(primary, fallbacks=[fallback])
        with pytest.raises(LLMContextError):
            await client.generate([Message.user("hi")], basic_config)
        fallback.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_all_clients_failing(self, basic_config):
        primary = _mock_client(LLMError("permanent"))
        client = ResilientLLMClient(primary, max_attempts=1)
        with pytest.raises(LLMError, match="All LLM clients failed"):
            await client.generate([Message.user("hi")], basic_config)

    @pytest.mark.asyncio
    async def test_complete_goes_through_retry(self, basic_config):
        primary = _mock_client(LLMConnectionError("blip"), LLMResponse(content="answer"))
        client = ResilientLLMClient(primary, max_attempts=2)
        with patch("brain.llm_client.asyncio.sleep", new=AsyncMock()):
            assert await client.complete("prompt", basic_config) == "answer"


# ─────────────────────────────────────────────────────────────────────────────
# LLMClientFactory
# ─────────────────────────────────────────────────────────────────────────────


class TestFactory:
    def test_openai_requires_key(self):
        with pytest.raises(LLMConnectionError, match="OPENAI_API_KEY"):
            LLMClientFactory.create("openai")

    def test_anthropic_requires_key(self):
        with pytest.raises(LLMConnectionError, match="ANTHROPIC_API_KEY"):
            LLMClientFactory.create("anthropic")

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown LLM provider"):
            LLMClientFactory.create("bytez")

    def test_openai_client(self):
        from brain.openai_client import OpenAIClient
        assert isinstance(LLMClientFactory.create("openai", api_key="sk-test"), OpenAIClient)

    def test_ollama_needs_no_key(self):
        from brain.ollama_client import OllamaClient
        client = LLMClientFactory.create("ollama")
        assert isinstance(client, OllamaClient)
        assert client.base_url == "http://localhost:11434/v1"

    def test_conversation_requires_ha_api(self):
        with pytest.raises(LLMConnectionError):
            LLMClientFactory.create("conversation")

    def test_conversation_client(self):
        api = _ha_api(lambda request: httpx.Response(200, json={}))
        client = LLMClientFactory.create("conversation", ha_api=api, agent_id="conversation.claude")
        assert isinstance(client, ConversationClient)
        assert client.agent_id == "conversation.claude"

    def test_from_settings_wraps_in_resilient_client(self):
        from config.settings import Settings
        settings = Settings(llm={"provider": "conversation", "retry": {"max_attempts": 5}})
        api = _ha_api(lambda request: httpx.Response(200, json={}))
        client = LLMClientFactory.from_settings(settings, ha_api=api)
        assert isinstance(client, ResilientLLMClient)
        assert isinstance(client.primary, ConversationClient)

    def test_from_settings_skips_unusable_fallback(self):
        from config.settings import Settings
        settings = Settings(llm={"provider": "ollama", "fallback_providers": ["openai", "ollama"]})
        client = LLMClientFactory.from_settings(settings)
        # openai has no key, ollama is the primary itself
        assert client._fallbacks == []

    def test_from_settings_ollama_url(self):
        from config.settings import Settings
        settings = Settings(llm={"provider": "ollama"}, OLLAMA_BASE_URL="http://gpu-box:11434/")
        client = LLMClientFactory.from_settings(settings)
        assert client.primary.base_url == "http://gpu-box:11434/v1"

    def test_default_model(self):
        assert LLMClientFactory.default_model("conversation") == "default"


# ─────────────────────────────────────────────────────────────────────────────
# ConversationClient
# ─────────────────────────────────────────────────────────────────────────────


class TestPickConversationAgent:
    def test_prefers_claude(self):
        ids = ["conversation.home_assistant", "conversation.openai", "conversation.claude_conversation"]
        assert pick_conversation_agent(ids) == "conversation.claude_conversation"

    def test_skips_builtin_agent(self):
        ids = ["conversation.home_assistant", "conversation.openai_conversation"]
        assert pick_conversation_agent(ids) == "conversation.openai_conversation"

    def test_builtin_as_last_resort(self):
        assert pick_conversation_agent(["light.a", "conversation.home_assistant"]) == "conversation.home_assistant"

    def test_none_available(self):
        assert pick_conversation_agent(["light.a"]) is None

    def test_agent_label(self):
        assert agent_label("conversation.google_generative_ai_conversation") == "google generative ai"
        assert agent_label(None) == "default"


class TestConversationClient:
    @pytest.mark.asyncio
    async def test_generate_discovers_agent_and_sends_prompt(self, basic_config):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.path == "/api/states":
                return httpx.Response(200, json=[
                    {"entity_id": "conversation.home_assistant"},
                    {"entity_id": "conversation.claude_conversation"},
                ])
            return httpx.Response(200, json={
                "response": {"speech": {"plain": {"speech": "3 lights are on."}}},
            })

        client = ConversationClient(_ha_api(handler))
        reply = await client.complete("How many lights?", basic_config)

        assert reply == "3 lights are on."
        body = json.loads(seen[-1].content)
        assert seen[-1].url.path == "/api/conversation/process"
        assert body == {"text": "How many lights?", "agent_id": "conversation.claude_conversation"}
        assert seen[-1].headers["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_forced_agent_skips_discovery(self, basic_config):
        paths: list[str] = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, json={"response": {"speech": {"plain": {"speech": "ok"}}}})

        client = ConversationClient(_ha_api(handler), agent_id="conversation.mine")
        await client.complete("p", basic_config)
        assert paths == ["/api/conversation/process"]

    @pytest.mark.asyncio
    async def test_missing_speech_is_placeholder(self, basic_config):
        client = ConversationClient(
            _ha_api(lambda r: httpx.Response(200, json={"response": {}})),
            agent_id="conversation.x",
        )
        assert await client.complete("p", basic_config) == NO_RESPONSE

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self, basic_config):
        client = ConversationClient(
            _ha_api(lambda r: httpx.Response(502, text="bad gateway")),
            agent_id="conversation.x",
        )
        with pytest.raises(LLMConnectionError):
            await client.generate([Message.user("p")], basic_config)

    @pytest.mark.asyncio
    async def test_client_error_is_permanent(self, basic_config):
        client = ConversationClient(
            _ha_api(lambda r: httpx.Response(400, text="bad agent")),
            agent_id="conversation.x",
        )
        with pytest.raises(LLMError) as exc_info:
            await client.generate([Message.user("p")], basic_config)
        assert not isinstance(exc_info.value, LLMConnectionError)
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_response_metadata(self, basic_config):
        client = ConversationClient(
            _ha_api(lambda r: httpx.Response(200, json={"response": {"speech": {"plain": {"speech": "hi"}}}})),
            agent_id="conversation.x",
        )
        response = await client.generate([Message.user("p")], basic_config)
        assert response.provider == Provider.CONVERSATION
        assert response.model == "conversation.x"

    @pytest.mark.asyncio
    async def test_health_check(self):
        ok = ConversationClient(_ha_api(lambda r: httpx.Response(200, json={"version": "2024.6"})))
        down = ConversationClient(_ha_api(lambda r: httpx.Response(401, text="unauthorized")))
        assert await ok.health_check() is True
        assert await down.health_check() is False


# ─────────────────────────────────────────────────────────────────────────────
# Provider SDK clients (SDK calls mocked)
# ─────────────────────────────────────────────────────────────────────────────


class TestAnthropicClient:
    def test_system_messages_split_off(self):
        from brain.anthropic_client import AnthropicClient
        client = AnthropicClient(api_key="sk-ant-test")
        system, messages = client._to_provider_messages([
            Message.system("a"), Message.system("b"), Message.user("q"),
        ])
        assert system == "a\n\nb"
        assert messages == [{"role": "user", "content": "q"}]

    @pytest.mark.asyncio
    async def test_generate_joins_text_blocks(self, basic_config):
        from brain.anthropic_client import AnthropicClient
        client = AnthropicClient(api_key="sk-ant-test")
        fake = SimpleNamespace(
            content=[SimpleNamespace(type="text", text="Hello "), SimpleNamespace(type="text", text="there")],
            stop_reason="max_tokens",
            usage=SimpleNamespace(input_tokens=5, output_tokens=2),
            model="claude-test",
        )
        client._client = MagicMock()
        client._client.messages.create = AsyncMock(return_value=fake)

        response = await client.generate([Message.user("hi")], basic_config)
        assert response.content == "Hello there"
        assert response.finish_reason == FinishReason.LENGTH
        assert response.provider == Provider.ANTHROPIC


class TestOpenAIClient:
    @pytest.mark.asyncio
    async def test_generate_maps_response(self, basic_config):
        from brain.openai_client import OpenAIClient
        client = OpenAIClient(api_key="sk-test")
        fake = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="answer"), finish_reason="stop")],
            usage=SimpleNamespace(prompt_tokens=10, completion_tokens=3),
            model="gpt-test",
        )
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(return_value=fake)

        response = await client.generate([Message.user("q")], basic_config)
        assert response.content == "answer"
        assert response.usage.total_tokens == 13
        kwargs = client._client.chat.completions.create.call_args.kwargs
        assert kwargs["messages"] == [{"role": "user", "content": "q"}]
        assert "tools" not in kwargs
