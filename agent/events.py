"""
agent/events.py — Analyst Event Stream

Every observable step of the analyst loop is one AnalystEvent. The session
appends each event to the list run() returns and, when given a channel,
pushes it onto an EventChannel that a UI or test drains concurrently.

Event types:
  thinking        → a model call is about to start
  message         → the model's raw reply (intermediate=True if blocks follow)
  code_running    → one executable block is about to run
  code_result     → that block's plain-text result + structured spec
  error           → the model call failed; the run is over
  done            → the run finished (final answer, or repetition stop)
  max_iterations  → the iteration cap was hit; the caller may resume()
"""

from __future__ import annotations

import asyncio
from typing import Annotated, AsyncIterator, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from render.spec import RenderSpec


# ─────────────────────────────────────────────────────────────────────────────
# Events
# ─────────────────────────────────────────────────────────────────────────────


class _Event(BaseModel):
    iteration: int


class ThinkingEvent(_Event):
    type: Literal["thinking"] = "thinking"


class MessageEvent(_Event):
    type: Literal["message"] = "message"
    text: str
    document: str = ""
    intermediate: bool = False


class CodeRunningEvent(_Event):
    type: Literal["code_running"] = "code_running"
    code: str


class CodeResultEvent(_Event):
    type: Literal["code_result"] = "code_result"
    code: str
    output_text: str
    spec: RenderSpec
    is_error: bool = False
    is_empty: bool = False
    denied: bool = False


class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    text: str


class DoneEvent(_Event):
    type: Literal["done"] = "done"
    text: Optional[str] = None
    document: str = ""


class MaxIterationsEvent(_Event):
    type: Literal["max_iterations"] = "max_iterations"
    text: str


AnalystEvent = Annotated[
    Union[
        ThinkingEvent,
        MessageEvent,
        CodeRunningEvent,
        CodeResultEvent,
        ErrorEvent,
        DoneEvent,
        MaxIterationsEvent,
    ],
    Field(discriminator="type"),
]

TERMINAL_TYPES = frozenset({"error", "done", "max_iterations"})

_adapter: TypeAdapter = TypeAdapter(AnalystEvent)


def event_from_dict(data: dict) -> AnalystEvent:
    """Rebuild an event from its JSON-able dict form (model_dump output)."""
    return _adapter.validate_python(data)


def is_terminal(event: AnalystEvent) -> bool:
    return event.type in TERMINAL_TYPES


# ─────────────────────────────────────────────────────────────────────────────
# Channel
# ─────────────────────────────────────────────────────────────────────────────

_CLOSED = object()


class EventChannel:
    """
    Single-producer, single-consumer event queue.

    maxsize=0 means unbounded; with a bound, send() waits for the consumer,
    which gives the consumer backpressure over the loop.

    Usage:
        channel = EventChannel()
        task = asyncio.create_task(session.run(question, context, channel))
        async for event in channel:
            render(event)
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._close_task: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: AnalystEvent) -> None:
        if self._closed:
            raise RuntimeError("send() on a closed EventChannel")
        await self._queue.put(event)

    def close(self) -> None:
        """Signal end-of-stream. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # bounded and full: the sentinel lands once the consumer drains a slot
            self._close_task = asyncio.get_running_loop().create_task(self._queue.put(_CLOSED))

    async def receive(self) -> Optional[AnalystEvent]:
        """Next event, or None once the channel is closed and drained."""
        item = await self._queue.get()
        if item is _CLOSED:
            # keep the sentinel for any later receive()
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    async def __aiter__(self) -> AsyncIterator[AnalystEvent]:
        while True:
            event = await self.receive()
            if event is None:
                return
            yield event
