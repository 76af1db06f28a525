"""
observability/trace.py — Trace Context for Signal Analyst runs

Attaches trace_id (one per AnalystSession) and turn_id (one per run or
resume) to every structured log line, through structlog's contextvars.

Usage (session):
    trace = TraceContext.for_session(session.id)

    with trace.turn():
        ...   # every log line here carries trace_id + turn_id
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Optional

import structlog.contextvars as _scv


def _short_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


@dataclass
class TraceContext:
    trace_id: str = field(default_factory=lambda: _short_id("trc"))
    turn_id: Optional[str] = None
    turns: int = 0

    @classmethod
    def for_session(cls, session_id: Optional[str] = None) -> "TraceContext":
        # sess_abcdef123456 → trc_abcdef12
        if session_id:
            return cls(trace_id=f"trc_{session_id.removeprefix('sess_')[:8]}")
        return cls()

    def new_turn(self) -> str:
        self.turns += 1
        self.turn_id = _short_id("trn")
        return self.turn_id

    def bind(self) -> None:
        if self.turn_id is not None:
            _scv.bind_contextvars(trace_id=self.trace_id, turn_id=self.turn_id)
        else:
            _scv.bind_contextvars(trace_id=self.trace_id)

    def unbind(self) -> None:
        self.turn_id = None
        _scv.unbind_contextvars("trace_id", "turn_id")

    @contextmanager
    def turn(self) -> Iterator[str]:
        """Bind a fresh turn_id for the duration of one run."""
        turn_id = self.new_turn()
        self.bind()
        try:
            yield turn_id
        finally:
            self.unbind()

    def as_dict(self) -> dict:
        data = {"trace_id": self.trace_id}
        if self.turn_id is not None:
            data["turn_id"] = self.turn_id
        return data
