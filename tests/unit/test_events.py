"""
tests/unit/test_events.py — AnalystEvent + EventChannel Unit Tests

Run with:
    pytest tests/unit/test_events.py -v
"""

from __future__ import annotations

import asyncio

import pytest

from agent.events import (
    CodeResultEvent,
    DoneEvent,
    EventChannel,
    MaxIterationsEvent,
    MessageEvent,
    ThinkingEvent,
    event_from_dict,
    is_terminal,
)
from render.spec import TableSpec


class TestEvents:
    def test_type_discriminator(self):
        assert ThinkingEvent(iteration=1).type == "thinking"
        assert DoneEvent(iteration=2).text is None

    def test_terminal_types(self):
        assert is_terminal(DoneEvent(iteration=1)) is True
        assert is_terminal(MaxIterationsEvent(iteration=6, text="cap")) is True
        assert is_terminal(MessageEvent(iteration=1, text="hi")) is False

    def test_code_result_dict_round_trip(self):
        event = CodeResultEvent(
            iteration=1,
            code="states('light')",
            output_text="entity_id\nlight.a",
            spec=TableSpec(headers=["entity_id"], rows=[["light.a"]]),
        )
        rebuilt = event_from_dict(event.model_dump())
        assert isinstance(rebuilt, CodeResultEvent)
        assert isinstance(rebuilt.spec, TableSpec)
        assert rebuilt == event


class TestEventChannel:
    @pytest.mark.asyncio
    async def test_send_then_iterate(self):
        channel = EventChannel()
        await channel.send(ThinkingEvent(iteration=1))
        await channel.send(DoneEvent(iteration=1))
        channel.close()

        received = [e.type async for e in channel]
        assert received == ["thinking", "done"]

    @pytest.mark.asyncio
    async def test_receive_after_close_keeps_returning_none(self):
        channel = EventChannel()
        channel.close()
        assert await channel.receive() is None
        assert await channel.receive() is None

    @pytest.mark.asyncio
    async def test_close_idempotent(self):
        channel = EventChannel()
        channel.close()
        channel.close()
        assert channel.closed is True

    @pytest.mark.asyncio
    async def test_send_after_close_raises(self):
        channel = EventChannel()
        channel.close()
        with pytest.raises(RuntimeError):
            await channel.send(ThinkingEvent(iteration=1))

    @pytest.mark.asyncio
    async def test_bounded_channel_applies_backpressure(self):
        channel = EventChannel(maxsize=1)
        await channel.send(ThinkingEvent(iteration=1))

        blocked = asyncio.create_task(channel.send(ThinkingEvent(iteration=2)))
        await asyncio.sleep(0)
        assert not blocked.done()

        assert (await channel.receive()).iteration == 1
        await blocked
        assert (await channel.receive()).iteration == 2

    @pytest.mark.asyncio
    async def test_close_on_full_channel_delivers_end_after_drain(self):
        channel = EventChannel(maxsize=1)
        await channel.send(ThinkingEvent(iteration=1))
        channel.close()

        assert (await channel.receive()).iteration == 1
        assert await channel.receive() is None

    @pytest.mark.asyncio
    async def test_concurrent_producer_consumer(self):
        channel = EventChannel()

        async def produce():
            for i in range(1, 4):
                await channel.send(ThinkingEvent(iteration=i))
                await asyncio.sleep(0)
            channel.close()

        producer = asyncio.create_task(produce())
        received = [e.iteration async for e in channel]
        await producer
        assert received == [1, 2, 3]
