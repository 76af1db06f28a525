"""
sandbox/interpreter.py — Threaded Sandboxed Interpreter

Runs validated Python snippets against a persistent namespace that holds
only the sandbox API and a restricted set of builtins. Each evaluation gets
its own daemon worker thread so that a host call can pause it mid-flight:

    step = interp.eval(code)
    while isinstance(step, HostCallRequest):
        data = ...                                  # host resolves the call
        step = interp.fulfill_host_call(step.call_id, data)
    # step is now a RenderSpec

The calling side never blocks for longer than `timeout_seconds` per step;
a worker that runs past that is abandoned and the step returns an
ErrorSpec. Abandoning is cooperative: a trace hook raises
ExecutionAbandoned at the next line the worker executes, and a worker
blocked on a host reply is woken with a sentinel. A worker stuck inside a
single long builtin call is left to finish on its own (it is a daemon
thread, and nothing reads its output).

At most one evaluation is in flight per interpreter. eval() while another
is pending raises InterpreterBusyError.
"""

from __future__ import annotations

import ast
import builtins
import itertools
import queue
import statistics
import sys
import threading
import traceback
from typing import Any, Optional, Union

from exceptions import (
    ExecutionAbandoned,
    HostCallError,
    InterpreterBusyError,
    SandboxError,
    SandboxViolationError,
)
from host.types import HostCallRequest
from observability.logger import get_logger
from render.spec import ErrorSpec, RenderSpec, TextSpec, vstack
from sandbox.api import SandboxAPI
from sandbox.display import value_to_spec
from sandbox.validator import parse_and_validate

log = get_logger(__name__)

SANDBOX_FILENAME = "<sandbox>"

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_HOST_CALL_TIMEOUT_SECONDS = 300.0

_SAFE_BUILTIN_NAMES = (
    "abs", "all", "any", "bin", "bool", "callable", "chr", "dict", "divmod",
    "enumerate", "filter", "float", "frozenset", "hash", "hex", "int",
    "isinstance", "issubclass", "iter", "len", "list", "map", "max", "min",
    "next", "oct", "ord", "pow", "range", "repr", "reversed", "round", "set",
    "slice", "sorted", "str", "sum", "tuple", "zip",
    # exceptions sandboxed code may raise or catch
    "Exception", "ArithmeticError", "AttributeError", "IndexError", "KeyError",
    "LookupError", "RuntimeError", "StopIteration", "TypeError", "ValueError",
    "ZeroDivisionError",
)

# woken-worker marker: the evaluation was abandoned while awaiting a host reply
_ABANDON = object()

Step = Union[HostCallRequest, RenderSpec]


class _Execution:
    """State of one in-flight evaluation, shared by caller and worker."""

    def __init__(self, code: str) -> None:
        self.code = code
        self.outbox: queue.Queue = queue.Queue()   # worker → caller
        self.inbox: queue.Queue = queue.Queue()    # caller → worker
        self.abandoned = threading.Event()
        self.pending_call_id: Optional[str] = None
        self.stdout: list[str] = []
        self.specs: list[RenderSpec] = []

    def flush_stdout(self) -> None:
        text = "".join(self.stdout).rstrip("\n")
        self.stdout.clear()
        if text:
            self.specs.append(TextSpec(content=text))

    def abandon(self) -> None:
        self.abandoned.set()
        self.inbox.put(_ABANDON)


class Interpreter:
    """
    Capability-limited Python REPL.

    The namespace persists across evaluations (variables, functions, `_` for
    the last non-None value); `history` records every evaluated snippet that
    completed.
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        host_call_timeout_seconds: float = DEFAULT_HOST_CALL_TIMEOUT_SECONDS,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.host_call_timeout_seconds = host_call_timeout_seconds
        self.history: list[str] = []
        self.api = SandboxAPI(self._host_call, self._emit)
        self.namespace: dict[str, Any] = {}

        self._lock = threading.Lock()
        self._local = threading.local()
        self._current: Optional[_Execution] = None
        self._call_ids = itertools.count(1)

        self.reset()

    @classmethod
    def from_settings(cls, settings) -> "Interpreter":
        return cls(
            timeout_seconds=settings.sandbox.timeout_seconds,
            host_call_timeout_seconds=settings.sandbox.host_call_timeout_seconds,
        )

    def reset(self) -> None:
        """Forget all variables and history."""
        self.namespace.clear()
        self.namespace.update(self.api.bindings())
        self.namespace["__builtins__"] = self._safe_builtins()
        self.namespace["_"] = None
        self.history.clear()

    @property
    def busy(self) -> bool:
        return self._current is not None

    # ── Caller side ───────────────────────────────────────────────────────────

    def eval(self, code: str) -> Step:
        """Start evaluating `code`. Returns a RenderSpec or the first HostCallRequest."""
        with self._lock:
            if self._current is not None:
                raise InterpreterBusyError("Another evaluation is still in progress")
            try:
                tree = parse_and_validate(code, SANDBOX_FILENAME)
            except SyntaxError as e:
                return ErrorSpec(message=f"SyntaxError: {e.msg} (line {e.lineno})")
            except SandboxViolationError as e:
                log.info("interpreter.rejected", construct=e.construct, lineno=e.lineno)
                return ErrorSpec(message=f"SandboxViolationError: {e}")
            except (ValueError, MemoryError, RecursionError) as e:
                # pathological source (null bytes, deep nesting) fails inside ast itself
                log.info("interpreter.unparseable", error_type=type(e).__name__)
                return ErrorSpec(message=f"{type(e).__name__}: {str(e) or 'source too complex to parse'}")
            execution = _Execution(code)
            self._current = execution

        worker = threading.Thread(
            target=self._run,
            args=(execution, tree),
            name="sandbox-worker",
            daemon=True,
        )
        worker.start()
        return self._wait(execution)

    def fulfill_host_call(self, call_id: str, data: str) -> Step:
        """Resume the evaluation waiting on `call_id` with the host's JSON payload."""
        with self._lock:
            execution = self._current
            if execution is None or execution.pending_call_id != call_id:
                log.warning("interpreter.unknown_call_id", call_id=call_id)
                return ErrorSpec(message=f"No pending host call with id {call_id}")
            execution.pending_call_id = None
        execution.inbox.put(data)
        return self._wait(execution)

    def abandon(self) -> None:
        """Give up on the in-flight evaluation, if any."""
        with self._lock:
            execution, self._current = self._current, None
        if execution is not None:
            execution.abandon()
            log.info("interpreter.abandoned", pending_call_id=execution.pending_call_id)

    def _wait(self, execution: _Execution) -> Step:
        try:
            kind, item = execution.outbox.get(timeout=self.timeout_seconds)
        except queue.Empty:
            log.warning("interpreter.timeout", timeout_seconds=self.timeout_seconds)
            self._finish(execution)
            execution.abandon()
            return ErrorSpec(
                message=f"TimeoutError: execution exceeded {self.timeout_seconds:g}s"
            )

        if kind == "call":
            execution.pending_call_id = item.call_id
            return item

        self._finish(execution)
        return item

    def _finish(self, execution: _Execution) -> None:
        with self._lock:
            if self._current is execution:
                self._current = None

    # ── Worker side ───────────────────────────────────────────────────────────

    def _run(self, execution: _Execution, tree: ast.Module) -> None:
        self._local.execution = execution
        sys.settrace(_make_tracer(execution))
        try:
            spec = self._execute(execution, tree)
        except ExecutionAbandoned:
            log.debug("interpreter.worker_unwound")
            return
        except Exception as e:
            execution.flush_stdout()
            spec = vstack([*execution.specs, ErrorSpec(message=_describe(e))])
        finally:
            sys.settrace(None)
            self._local.execution = None

        if not execution.abandoned.is_set():
            execution.outbox.put(("done", spec))

    def _execute(self, execution: _Execution, tree: ast.Module) -> RenderSpec:
        body = list(tree.body)
        last: Optional[ast.Expression] = None
        if body and isinstance(body[-1], ast.Expr):
            last = ast.Expression(body=body.pop().value)

        if body:
            module = ast.Module(body=body, type_ignores=[])
            exec(compile(module, SANDBOX_FILENAME, "exec"), self.namespace)

        value = None
        if last is not None:
            value = eval(compile(last, SANDBOX_FILENAME, "eval"), self.namespace)

        execution.flush_stdout()
        if value is not None:
            self.namespace["_"] = value
            execution.specs.append(value_to_spec(value))

        self.history.append(execution.code)
        return vstack(execution.specs)

    def _host_call(self, method: str, params: dict) -> str:
        execution: Optional[_Execution] = getattr(self._local, "execution", None)
        if execution is None:
            raise SandboxError("Host functions can only be called from sandboxed code")
        if execution.abandoned.is_set():
            raise ExecutionAbandoned()

        request = HostCallRequest(
            call_id=f"hc_{next(self._call_ids)}",
            method=method,
            params=params,
        )
        execution.outbox.put(("call", request))

        try:
            data = execution.inbox.get(timeout=self.host_call_timeout_seconds)
        except queue.Empty:
            raise HostCallError(
                method,
                f"{method} got no answer within {self.host_call_timeout_seconds:g}s",
            )
        if data is _ABANDON:
            raise ExecutionAbandoned()
        return data

    def _emit(self, value: Any) -> None:
        execution: Optional[_Execution] = getattr(self._local, "execution", None)
        if execution is None:
            return
        execution.flush_stdout()
        execution.specs.append(value_to_spec(value))

    def _print(self, *args, sep: str = " ", end: str = "\n", **_ignored) -> None:
        execution: Optional[_Execution] = getattr(self._local, "execution", None)
        if execution is not None:
            execution.stdout.append(sep.join(str(a) for a in args) + end)

    def _safe_builtins(self) -> dict[str, Any]:
        safe = {name: getattr(builtins, name) for name in _SAFE_BUILTIN_NAMES}
        safe.update({
            "print": self._print,
            "mean": statistics.mean,
            "median": statistics.median,
            "stdev": statistics.stdev,
            "HostCallError": HostCallError,
        })
        return safe


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _make_tracer(execution: _Execution):
    """Trace hook that unwinds sandboxed frames once the execution is abandoned."""
    def local(frame, event, arg):
        if execution.abandoned.is_set():
            raise ExecutionAbandoned()
        return local

    def tracer(frame, event, arg):
        if frame.f_code.co_filename != SANDBOX_FILENAME:
            return None
        return local(frame, event, arg)

    return tracer


def _describe(exc: BaseException) -> str:
    """`Type: message (line N)` with N the innermost sandboxed line."""
    lineno = None
    for frame in traceback.extract_tb(exc.__traceback__):
        if frame.filename == SANDBOX_FILENAME:
            lineno = frame.lineno
    where = f" (line {lineno})" if lineno else ""
    return f"{type(exc).__name__}: {exc}{where}"
