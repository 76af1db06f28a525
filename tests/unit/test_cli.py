"""
tests/unit/test_cli.py — CLI Interface Unit Tests

Renders into a recording rich Console; the LLM is mocked and no Home
Assistant is contacted.

Run with:
    pytest tests/unit/test_cli.py -v
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from rich.console import Console

from agent.context import RunContext
from agent.events import (
    CodeResultEvent,
    ErrorEvent,
    MaxIterationsEvent,
    MessageEvent,
)
from agent.executor import BlockExecutor
from agent.session import AnalystSession
from brain.types import LLMConfig
from config.settings import Settings
from host.bridge import HostCallBridge
from host.types import HostCallRequest
from interfaces.cli import CLIInterface
from render.spec import ErrorSpec, TextSpec
from sandbox.interpreter import Interpreter


def _cli(replies=None) -> CLIInterface:
    console = Console(record=True, width=100, force_terminal=False, color_system=None)
    cli = CLIInterface(Settings(), console=console)
    llm = MagicMock()
    llm.complete = AsyncMock(side_effect=list(replies or []))
    cli._session = AnalystSession(
        llm, LLMConfig(model="test"),
        BlockExecutor(Interpreter(timeout_seconds=5), HostCallBridge()),
    )
    cli._context = RunContext()
    return cli


def _output(cli: CLIInterface) -> str:
    return cli.console.export_text()


class TestRenderEvent:
    def test_final_answer_panel(self):
        cli = _cli()
        cli._render_event(MessageEvent(iteration=1, text="All **quiet**."))
        out = _output(cli)
        assert "answer" in out
        assert "All quiet." in out

    def test_intermediate_message_panel(self):
        cli = _cli()
        cli._render_event(MessageEvent(iteration=1, text="Checking.", intermediate=True))
        assert "investigating" in _output(cli)

    def test_denied_result(self):
        cli = _cli()
        cli._render_event(CodeResultEvent(
            iteration=1, code="call_service(...)", output_text="denied: True",
            spec=TextSpec(content="denied: True"), denied=True,
        ))
        assert "refused" in _output(cli)

    def test_error_result(self):
        cli = _cli()
        cli._render_event(CodeResultEvent(
            iteration=1, code="1/0", output_text="Error: ZeroDivisionError",
            spec=ErrorSpec(message="ZeroDivisionError: division by zero"), is_error=True,
        ))
        out = _output(cli)
        assert "error" in out
        assert "ZeroDivisionError" in out

    def test_llm_error(self):
        cli = _cli()
        cli._render_event(ErrorEvent(iteration=2, text="LLM error: boom"))
        assert "LLM error: boom" in _output(cli)

    def test_max_iterations_hint(self):
        cli = _cli()
        cli._render_event(MaxIterationsEvent(iteration=6, text="Reached the limit."))
        assert "/continue" in _output(cli)


class TestDispatch:
    @pytest.mark.asyncio
    async def test_unknown_command(self):
        cli = _cli()
        await cli._dispatch("/frobnicate")
        assert "Unknown command: /frobnicate" in _output(cli)

    @pytest.mark.asyncio
    async def test_question_runs_session(self):
        cli = _cli(["The sun is up."])
        await cli._dispatch("is the sun up?")
        assert "The sun is up." in _output(cli)
        assert cli._session.last_outcome == "done"

    @pytest.mark.asyncio
    async def test_continue_when_nothing_pending(self):
        cli = _cli()
        await cli._dispatch("/continue")
        assert "Nothing to continue" in _output(cli)
        cli._session.llm_client.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reset_clears_sandbox_variables(self):
        cli = _cli()
        cli._session.executor.interpreter.namespace["x"] = 5
        await cli._dispatch("/reset")
        assert "x" not in cli._session.executor.interpreter.namespace
        assert cli._session.messages == []

    @pytest.mark.asyncio
    async def test_status_table(self):
        cli = _cli()
        await cli._dispatch("/status")
        assert cli._session.id in _output(cli)

    @pytest.mark.asyncio
    async def test_empty_history(self):
        cli = _cli()
        await cli._dispatch("/history")
        assert "No conversation yet." in _output(cli)


class TestApprove:
    @pytest.mark.asyncio
    async def test_shows_call_and_returns_answer(self):
        cli = _cli()
        request = HostCallRequest(
            call_id="c1",
            method="call_service",
            params={"domain": "light", "service": "turn_on", "service_data": {"entity_id": "light.kitchen"}},
        )
        with patch("interfaces.cli.Confirm.ask", return_value=True) as ask:
            assert await cli._approve(request) is True

        out = _output(cli)
        assert "light.turn_on" in out
        assert "light.kitchen" in out
        assert "Approved" in out
        assert ask.call_args.kwargs["default"] is False

    @pytest.mark.asyncio
    async def test_refusal(self):
        cli = _cli()
        request = HostCallRequest(call_id="c2", method="call_service", params={"domain": "lock", "service": "unlock"})
        with patch("interfaces.cli.Confirm.ask", return_value=False):
            assert await cli._approve(request) is False
        assert "Refused" in _output(cli)
