"""
brain/conversation_client.py — Home Assistant Conversation Agent Client

Uses whatever LLM the Home Assistant instance already has configured, via
POST /api/conversation/process. The endpoint is stateless per call, so the
caller sends the fully rendered conversation as one text.

Agent selection:
  1. agent_id given explicitly (llm.conversation_agent_id in config)
  2. a conversation.* entity whose id mentions claude / anthropic
  3. any conversation.* entity other than the built-in conversation.home_assistant
  4. the first conversation.* entity
  5. none → HA picks its default agent
"""

from __future__ import annotations

from typing import Any, Optional

from brain.llm_client import NO_RESPONSE, BaseLLMClient, LLMConnectionError, LLMError
from brain.types import FinishReason, LLMConfig, LLMResponse, Message, Provider
from exceptions import HomeAssistantError
from observability.logger import get_logger

log = get_logger(__name__)

_DEFAULT_AGENT = "conversation.home_assistant"
_PREFERRED_MARKERS = ("claude", "anthropic")


def pick_conversation_agent(entity_ids: list[str]) -> Optional[str]:
    """Choose the best conversation agent from a list of entity ids."""
    agents = [eid for eid in entity_ids if eid.startswith("conversation.")]
    for eid in agents:
        if any(marker in eid for marker in _PREFERRED_MARKERS):
            return eid
    for eid in agents:
        if eid != _DEFAULT_AGENT:
            return eid
    return agents[0] if agents else None


def agent_label(agent_id: Optional[str]) -> str:
    """conversation.google_generative_ai_conversation → 'google generative ai'."""
    if not agent_id:
        return "default"
    name = agent_id.removeprefix("conversation.").removesuffix("_conversation")
    return name.replace("_", " ")


class ConversationClient(BaseLLMClient):
    """
    LLM client backed by a Home Assistant conversation agent.

    The HA API object is injected so tests can hand in one built on an
    httpx.MockTransport.
    """

    def __init__(self, api, agent_id: Optional[str] = None):
        super().__init__(api_key=None, base_url=api.base_url)
        self._api = api
        self._forced_agent_id = agent_id
        self._resolved_agent_id: Optional[str] = agent_id

    @property
    def agent_id(self) -> Optional[str]:
        return self._resolved_agent_id

    async def resolve_agent(self) -> Optional[str]:
        """Discover the agent from /api/states unless one was forced."""
        if self._forced_agent_id:
            return self._forced_agent_id

        try:
            states = await self._api.states()
        except HomeAssistantError as e:
            raise LLMConnectionError(str(e), provider="conversation", status_code=e.status_code) from e

        entity_ids = [s.get("entity_id", "") for s in states if isinstance(s, dict)]
        self._resolved_agent_id = pick_conversation_agent(entity_ids)
        log.debug("conversation.agent_resolved", agent_id=self._resolved_agent_id)
        return self._resolved_agent_id

    async def generate(
        self,
        messages: list[Message],
        config: LLMConfig,
    ) -> LLMResponse:
        text = "\n\n---\n\n".join(m.content for m in messages if m.content)
        agent_id = self._resolved_agent_id or await self.resolve_agent()

        log.debug("conversation.generate.start", agent_id=agent_id, chars=len(text))

        try:
            response = await self._api.conversation_process(text, agent_id=agent_id)
        except HomeAssistantError as e:
            if e.status_code is not None and 400 <= e.status_code < 500 and e.status_code not in (401, 403):
                raise LLMError(str(e), provider="conversation", status_code=e.status_code) from e
            raise LLMConnectionError(str(e), provider="conversation", status_code=e.status_code) from e

        speech = _speech(response)
        log.debug("conversation.generate.complete", agent_id=agent_id, chars=len(speech))

        return LLMResponse(
            content=speech,
            finish_reason=FinishReason.STOP,
            model=agent_id or "default",
            provider=Provider.CONVERSATION,
        )

    async def health_check(self) -> bool:
        try:
            await self._api.config()
            return True
        except HomeAssistantError as e:
            log.warning("conversation.health_check.failed", error=str(e))
            return False

    def __repr__(self) -> str:
        return f"<ConversationClient agent={self._resolved_agent_id or 'auto'}>"


def _speech(response: Any) -> str:
    """Pull response.speech.plain.speech out of a conversation/process answer."""
    try:
        speech = response["response"]["speech"]["plain"]["speech"]
    except (KeyError, TypeError):
        return NO_RESPONSE
    return speech if isinstance(speech, str) and speech else NO_RESPONSE
