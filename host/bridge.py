"""
host/bridge.py — Host Call Bridge

The only path from sandboxed code to the outside world. The interpreter
surfaces a HostCallRequest; the bridge resolves it and hands back a
HostCallResult whose JSON payload is fed into the interpreter.

Flow:
  HostCallRequest → HostCallBridge.fulfill()
    → call_id check (single use)
    → effectful method? → ConfirmationGate (deny by default)
    → fulfiller present?
    → fulfiller(method, params) with timeout
    → HostCallResult (success, error or denial payload)

fulfill() never raises (cancellation aside). Whatever goes wrong ends up as
an {"error": ...} payload the sandboxed code can inspect and react to.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Iterable, Optional

from host.types import HostCallRequest, HostCallResult
from observability.logger import get_logger
from safety.confirmation import ConfirmationGate

if TYPE_CHECKING:
    from agent.context import RunContext

log = get_logger(__name__)

DEFAULT_EFFECTFUL_METHODS = frozenset({"call_service"})

DEFAULT_TIMEOUT_SECONDS = 30.0


class HostCallBridge:
    """
    Resolves host calls for one session.

    Usage:
        bridge = HostCallBridge(ConfirmationGate())
        result = await bridge.fulfill(request, context)
        interpreter.fulfill_host_call(request.call_id, result.data)
    """

    def __init__(
        self,
        gate: Optional[ConfirmationGate] = None,
        effectful_methods: Iterable[str] = DEFAULT_EFFECTFUL_METHODS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.gate = gate or ConfirmationGate()
        self.effectful_methods = frozenset(effectful_methods)
        self.timeout_seconds = timeout_seconds
        self._used_call_ids: set[str] = set()

    @classmethod
    def from_settings(cls, settings) -> "HostCallBridge":
        return cls(
            gate=ConfirmationGate(settings.safety.confirmation_timeout_seconds),
            effectful_methods=settings.safety.effectful_methods,
            timeout_seconds=settings.safety.host_call_timeout_seconds,
        )

    def is_effectful(self, method: str) -> bool:
        return method in self.effectful_methods

    async def fulfill(
        self,
        request: HostCallRequest,
        context: Optional["RunContext"] = None,
    ) -> HostCallResult:
        start_ms = time.monotonic() * 1000

        log.info(
            "bridge.request",
            method=request.method,
            call_id=request.call_id,
        )

        # ── Step 1: single-use call_id ────────────────────────────────────────
        if request.call_id in self._used_call_ids:
            log.warning("bridge.call_id_reused", call_id=request.call_id)
            return HostCallResult.error(f"call_id already fulfilled: {request.call_id}")
        self._used_call_ids.add(request.call_id)

        # ── Step 2: confirmation for effectful methods ────────────────────────
        # a denial takes precedence over a missing host connection
        if self.is_effectful(request.method):
            approver = context.approver if context else None
            decision = await self.gate.request(request, approver)
            if not decision.approved:
                log.info("bridge.denied", method=request.method, reason=decision.reason)
                return HostCallResult.denied(decision.reason)

        fulfiller = context.fulfiller if context else None
        if fulfiller is None:
            log.warning("bridge.no_fulfiller", method=request.method)
            return HostCallResult.error(
                f"No host connection available for {request.method}"
            )

        # ── Step 3: fulfil with timeout ───────────────────────────────────────
        try:
            raw = await asyncio.wait_for(
                fulfiller(request.method, request.params),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            log.error(
                "bridge.timeout",
                method=request.method,
                timeout_seconds=self.timeout_seconds,
            )
            return HostCallResult.error(
                f"{request.method} timed out after {self.timeout_seconds:g}s"
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(
                "bridge.fulfiller_error",
                method=request.method,
                error=str(e),
                exc_info=True,
            )
            return HostCallResult.error(f"{request.method} failed: {type(e).__name__}: {e}")

        result = HostCallResult.ok(raw)
        log.info(
            "bridge.fulfilled",
            method=request.method,
            call_id=request.call_id,
            is_error=result.is_error,
            duration_ms=round(time.monotonic() * 1000 - start_ms, 1),
            payload_chars=len(result.data),
        )
        return result
