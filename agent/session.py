"""
agent/session.py — Analyst Session (the agent loop)

One AnalystSession exists per conversation. It owns the conversation
history and the repetition scratch state, and drives bounded
model → parse → execute → re-prompt iterations for each question.

Per run():
  1. append the question (first run: system prompt + question)
  2. thinking → model reply (failure: error event, run over)
  3. parse + sanitize, pick executable non-comment-only blocks
  4. message event (intermediate iff blocks follow)
  5. no blocks → done
  6. same code as last iteration → corrective message, or done on the 2nd repeat
  7. execute blocks in order, inject each result into the document
  8. append reply + annotated document + nudge, loop
  9. cap reached → max_iterations (resume() continues with a fresh budget)

Every event is appended to the list run() returns and, if a channel is
given, sent on it as it happens. The channel is closed when the run ends.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
import uuid
from typing import AsyncIterator, Optional

from agent.context import RunContext
from agent.events import (
    AnalystEvent,
    CodeResultEvent,
    CodeRunningEvent,
    DoneEvent,
    ErrorEvent,
    EventChannel,
    MaxIterationsEvent,
    MessageEvent,
    ThinkingEvent,
    is_terminal,
)
from agent.executor import BlockExecutor
from agent.parser import (
    get_executable_blocks,
    get_text,
    inject_result,
    is_comment_only,
    parse,
    relocate_block,
)
from agent.prompts import (
    CONTINUE_PROMPT,
    REPEAT_NUDGE,
    REPETITION_DONE,
    SYSTEM_PROMPT,
    max_iterations_text,
    select_nudge,
)
from brain.llm_client import BaseLLMClient
from brain.types import LLMConfig, Message, Role, TokenUsage
from observability.logger import get_logger
from observability.trace import TraceContext

log = get_logger(__name__)

DEFAULT_MAX_ITERATIONS = 6
DEFAULT_MAX_HISTORY_MESSAGES = 40

_DIVIDER = "\n\n---\n\n"

# repeats of the same code before the run gives up
_REPEAT_LIMIT = 2


class AnalystSession:
    """Conversation state plus the orchestration loop for one analyst conversation."""

    def __init__(
        self,
        llm_client: BaseLLMClient,
        llm_config: LLMConfig,
        executor: BlockExecutor,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        max_history_messages: int = DEFAULT_MAX_HISTORY_MESSAGES,
        system_prompt: str = SYSTEM_PROMPT,
        session_id: Optional[str] = None,
    ):
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        if max_history_messages < 1:
            raise ValueError("max_history_messages must be >= 1")
        self.id = session_id or f"sess_{uuid.uuid4().hex[:12]}"
        self.llm_client = llm_client
        self.llm_config = llm_config
        self.executor = executor
        self.max_iterations = max_iterations
        self.max_history_messages = max_history_messages
        self.system_prompt = system_prompt
        self.created_at = time.time()

        self.messages: list[Message] = []
        self.trace = TraceContext.for_session(self.id)

        # Repetition scratch, reset by every run()
        self._prev_code = ""
        self._repeat_count = 0

        # Metrics
        self.turn_count: int = 0
        self.blocks_executed: int = 0
        self.last_outcome: Optional[str] = None

        # Cooperative cancellation
        self._cancel_event = asyncio.Event()

        log.debug("session.created", session_id=self.id, max_iterations=max_iterations)

    # ── Factory ───────────────────────────────────────────────────────────────

    @classmethod
    def create(
        cls,
        llm_client: BaseLLMClient,
        llm_config: LLMConfig,
        executor: BlockExecutor,
        **kwargs,
    ) -> "AnalystSession":
        return cls(llm_client, llm_config, executor, **kwargs)

    @classmethod
    def from_settings(
        cls,
        settings,
        llm_client: Optional[BaseLLMClient] = None,
        executor: Optional[BlockExecutor] = None,
        ha_api=None,
    ) -> "AnalystSession":
        """Wire a session from Settings; explicit collaborators win over config."""
        if llm_client is None:
            from brain import LLMClientFactory
            llm_client = LLMClientFactory.from_settings(settings, ha_api=ha_api)
        llm_config = LLMConfig(
            model=settings.llm.model,
            temperature=settings.llm.temperature,
            max_tokens=settings.llm.max_tokens,
            timeout_seconds=settings.llm.timeout_seconds,
        )
        return cls(
            llm_client=llm_client,
            llm_config=llm_config,
            executor=executor or BlockExecutor.from_settings(settings),
            max_iterations=settings.agent.max_iterations,
            max_history_messages=settings.agent.max_history_messages,
        )

    # ── Public API ────────────────────────────────────────────────────────────

    async def run(
        self,
        question: str,
        context: Optional[RunContext] = None,
        channel: Optional[EventChannel] = None,
    ) -> list[AnalystEvent]:
        """Run the loop for one question. Returns every event emitted."""
        self._cancel_event.clear()
        self._prev_code = ""
        self._repeat_count = 0

        if not self.messages:
            self.messages = [Message.system(self.system_prompt), Message.user(question)]
        else:
            self.messages.append(Message.user(question))
        self.turn_count += 1

        events: list[AnalystEvent] = []
        try:
            with self.trace.turn():
                log.info(
                    "session.run_start",
                    session_id=self.id,
                    question=question[:120],
                    history=len(self.messages),
                )
                await self._loop(context or RunContext(), events, channel)
        finally:
            if channel is not None:
                channel.close()

        self.last_outcome = events[-1].type if events and is_terminal(events[-1]) else "cancelled"
        log.info("session.run_end", session_id=self.id, outcome=self.last_outcome, events=len(events))
        return events

    async def resume(
        self,
        context: Optional[RunContext] = None,
        channel: Optional[EventChannel] = None,
    ) -> list[AnalystEvent]:
        """Continue after max_iterations with a fresh iteration budget."""
        return await self.run(CONTINUE_PROMPT, context, channel)

    async def stream(
        self,
        question: str,
        context: Optional[RunContext] = None,
    ) -> AsyncIterator[AnalystEvent]:
        """
        Yield events while the loop runs in a background task.

        Breaking out of the iteration cancels the run.
        """
        channel = EventChannel()
        task = asyncio.create_task(self.run(question, context, channel))
        try:
            async for event in channel:
                yield event
            await task
        finally:
            if not task.done():
                self.cancel()
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    # ── Cancellation ─────────────────────────────────────────────────────────

    def cancel(self) -> None:
        self._cancel_event.set()
        log.info("session.cancel_requested", session_id=self.id)

    def is_cancelled(self) -> bool:
        return self._cancel_event.is_set()

    # ── Confirmation ──────────────────────────────────────────────────────────

    def resolve_confirmation(self, call_id: str, approved: bool) -> bool:
        """Answer a pending deferred confirmation (see ConfirmationGate.deferred_approver)."""
        return self.executor.bridge.gate.resolve(call_id, approved)

    # ── History ───────────────────────────────────────────────────────────────

    def clear_conversation(self) -> None:
        """Forget the conversation; the next run() starts with the system prompt again."""
        self.messages = []
        self._prev_code = ""
        self._repeat_count = 0
        log.info("session.cleared", session_id=self.id)

    def render_prompt(self) -> str:
        """The single text sent to the model: system prompt, then every turn."""
        if not self.messages:
            return self.system_prompt
        entries = [
            f"{'User' if m.role == Role.USER else 'Assistant'}: {m.content}"
            for m in self.messages
            if m.role != Role.SYSTEM
        ]
        return f"{self.messages[0].content}{_DIVIDER}{_DIVIDER.join(entries)}"

    def trim_history(self) -> None:
        """Keep the system message and the newest max_history_messages."""
        limit = self.max_history_messages
        if len(self.messages) > limit + 1:
            dropped = len(self.messages) - limit - 1
            self.messages = [self.messages[0], *self.messages[-limit:]]
            log.debug("session.history_trimmed", session_id=self.id, dropped=dropped)

    # ── Summary ───────────────────────────────────────────────────────────────

    def status_summary(self) -> dict:
        return {
            "session_id": self.id,
            "turns": self.turn_count,
            "messages": len(self.messages),
            "blocks_executed": self.blocks_executed,
            "max_iterations": self.max_iterations,
            "last_outcome": self.last_outcome,
            "model": self.llm_config.model,
            "tokens": _total_tokens(self.llm_client),
            "cancelled": self.is_cancelled(),
            "uptime_seconds": round(time.time() - self.created_at, 1),
        }

    def __repr__(self) -> str:
        return f"<AnalystSession id={self.id} turns={self.turn_count} messages={len(self.messages)}>"

    # ── Loop ──────────────────────────────────────────────────────────────────

    async def _loop(
        self,
        context: RunContext,
        events: list[AnalystEvent],
        channel: Optional[EventChannel],
    ) -> None:
        async def emit(event: AnalystEvent) -> None:
            events.append(event)
            if channel is not None:
                await channel.send(event)

        for iteration in range(1, self.max_iterations + 1):
            if self.is_cancelled():
                return

            await emit(ThinkingEvent(iteration=iteration))

            try:
                reply = await self._call_llm()
            except Exception as e:
                log.error("session.llm_failed", session_id=self.id, iteration=iteration,
                          error=str(e), error_type=type(e).__name__)
                await emit(ErrorEvent(iteration=iteration, text=f"LLM error: {e}"))
                return

            if self.is_cancelled():
                return

            doc = parse(reply)
            executable = [b for b in get_executable_blocks(doc) if not is_comment_only(b.code)]

            await emit(MessageEvent(
                iteration=iteration,
                text=reply,
                document=get_text(doc),
                intermediate=bool(executable),
            ))

            if not executable:
                await emit(DoneEvent(iteration=iteration, document=get_text(doc)))
                return

            # ── Repetition guard ──────────────────────────────────────────────
            current_code = "\n".join(b.code.strip() for b in executable)
            if current_code == self._prev_code:
                self._repeat_count += 1
                log.warning("session.repeated_code", session_id=self.id,
                            iteration=iteration, repeat_count=self._repeat_count)
                if self._repeat_count >= _REPEAT_LIMIT:
                    await emit(DoneEvent(
                        iteration=iteration,
                        text=REPETITION_DONE,
                        document=get_text(doc),
                    ))
                    return
                self.messages.append(Message.assistant(reply))
                self.messages.append(Message.user(REPEAT_NUDGE))
                continue
            self._prev_code = current_code
            self._repeat_count = 0

            # ── Execute ───────────────────────────────────────────────────────
            updated = doc
            last_error = last_empty = False
            for block in executable:
                if self.is_cancelled():
                    return

                await emit(CodeRunningEvent(iteration=iteration, code=block.code))

                result = await self.executor.execute(block.code, context, self.is_cancelled)
                if result is None:
                    return
                self.blocks_executed += 1
                last_error, last_empty = result.is_error, result.is_empty

                await emit(CodeResultEvent(
                    iteration=iteration,
                    code=block.code,
                    output_text=result.output_text,
                    spec=result.spec,
                    is_error=result.is_error,
                    is_empty=result.is_empty,
                    denied=result.denied,
                ))

                target = relocate_block(updated, block)
                if target is not None:
                    updated = inject_result(updated, target, result.output_text)

            # ── Re-prompt ─────────────────────────────────────────────────────
            self.messages.append(Message.assistant(reply))
            self.messages.append(Message.user(get_text(updated) + select_nudge(last_error, last_empty)))

        await emit(MaxIterationsEvent(
            iteration=self.max_iterations,
            text=max_iterations_text(self.max_iterations),
        ))

    async def _call_llm(self) -> str:
        self.trim_history()
        prompt = self.render_prompt()
        log.debug("session.llm_call", session_id=self.id, prompt_chars=len(prompt),
                  messages=len(self.messages))
        return await self.llm_client.complete(prompt, self.llm_config)


def _total_tokens(client) -> Optional[int]:
    usage = getattr(client, "usage", None)
    return usage.total_tokens if isinstance(usage, TokenUsage) else None
