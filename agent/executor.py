"""
agent/executor.py — Block Executor

Runs one executable block through the sandbox interpreter, resolving every
host call the code makes through the HostCallBridge, and produces the
ExecutionResult the session folds back into the document.

Flow:
  code → interpreter.eval() (worker thread)
    → HostCallRequest? → bridge.fulfill() → interpreter.fulfill_host_call()
    → ... until a RenderSpec comes back
  → plain-text projection + hint → ExecutionResult

Usage:
    executor = BlockExecutor(Interpreter(), HostCallBridge(ConfirmationGate()))
    result = await executor.execute(code, context, session.is_cancelled)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional

from agent.context import RunContext
from agent.prompts import EMPTY_HINT, ERROR_HINT
from exceptions import InterpreterBusyError
from host.bridge import HostCallBridge
from host.types import HostCallRequest
from observability.logger import get_logger
from render.spec import ErrorSpec, RenderSpec
from render.text import is_empty_result, is_error_result, spec_to_text, truncate
from sandbox.interpreter import Interpreter

log = get_logger(__name__)


@dataclass(frozen=True)
class ExecutionResult:
    """One executed block: model-facing text plus the structured spec for display."""
    output_text: str
    spec: RenderSpec
    is_error: bool = False
    is_empty: bool = False
    # a host call in this block was refused at the confirmation gate
    denied: bool = False


class BlockExecutor:
    """
    Drives the interpreter ↔ bridge loop for one block at a time.

    The interpreter keeps mutable state (variables, history), so evaluations
    are serialised with an asyncio.Lock. Sessions sharing one executor take
    turns; a second interpreter user outside this executor is reported as an
    ErrorSpec rather than an exception.
    """

    def __init__(self, interpreter: Interpreter, bridge: HostCallBridge) -> None:
        self.interpreter = interpreter
        self.bridge = bridge
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings) -> "BlockExecutor":
        return cls(Interpreter.from_settings(settings), HostCallBridge.from_settings(settings))

    async def execute(
        self,
        code: str,
        context: Optional[RunContext] = None,
        is_cancelled: Callable[[], bool] = lambda: False,
    ) -> Optional[ExecutionResult]:
        """
        Execute `code`. Returns None if cancellation was observed mid-chain;
        the interpreter's pending evaluation is abandoned in that case and
        host calls already dispatched are not rolled back.
        """
        context = context or RunContext()
        async with self._lock:
            outcome = await self._drive(code, context, is_cancelled)
        if outcome is None:
            return None

        spec, denied = outcome
        result = self._to_result(spec, denied)
        if context.shell_callback is not None:
            try:
                context.shell_callback(code, spec)
            except Exception as e:
                # a broken view must not break the loop
                log.warning("executor.shell_callback_failed", error=str(e))
        return result

    # ── Private helpers ───────────────────────────────────────────────────────

    async def _drive(
        self,
        code: str,
        context: RunContext,
        is_cancelled: Callable[[], bool],
    ) -> Optional[tuple[RenderSpec, bool]]:
        denied = False
        host_calls = 0
        try:
            try:
                step = await asyncio.to_thread(self.interpreter.eval, code)
            except InterpreterBusyError as e:
                log.warning("executor.interpreter_busy")
                return ErrorSpec(message=f"InterpreterBusyError: {e}"), False

            while isinstance(step, HostCallRequest):
                if is_cancelled():
                    self._abandon("before_host_call", step.method)
                    return None

                host_calls += 1
                result = await self.bridge.fulfill(step, context)
                denied = denied or result.is_denied

                if is_cancelled():
                    self._abandon("after_host_call", step.method)
                    return None

                step = await asyncio.to_thread(
                    self.interpreter.fulfill_host_call, step.call_id, result.data
                )
        except asyncio.CancelledError:
            self._abandon("task_cancelled", None)
            raise
        except Exception as e:
            log.error("executor.unexpected_error", error=str(e), exc_info=True)
            self.interpreter.abandon()
            return ErrorSpec(message=f"{type(e).__name__}: {e}"), denied

        if is_cancelled():
            log.info("executor.cancelled", stage="after_result")
            return None

        log.debug("executor.block_done", host_calls=host_calls, spec_type=step.type)
        return step, denied

    def _abandon(self, stage: str, method: Optional[str]) -> None:
        log.info("executor.cancelled", stage=stage, method=method)
        self.interpreter.abandon()

    def _to_result(self, spec: RenderSpec, denied: bool) -> ExecutionResult:
        output = spec_to_text(spec)
        is_error = is_error_result(spec)
        is_empty = not is_error and is_empty_result(spec, output)

        if is_error:
            output += ERROR_HINT
        elif is_empty:
            output += EMPTY_HINT

        return ExecutionResult(
            output_text=truncate(output),
            spec=spec,
            is_error=is_error,
            is_empty=is_empty,
            denied=denied,
        )
