"""
safety/confirmation.py — Confirmation Gate

Every effectful host call (call_service by default) stops here until a human
says yes. The gate never approves on its own:

  - no approver configured          → denied
  - approver returns False          → denied
  - approver raises or times out    → denied
  - approver returns True           → approved

Denials are decisions, not failures. The bridge folds them back into the
sandbox as {"error": ..., "denied": true} so the loop does not treat a "no"
as a bug to retry.

Two ways to supply an approver:
  - a plain async callable (the CLI asks inline with rich's Confirm)
  - deferred_approver(): the gate parks a Future per call_id and some other
    task (a UI button, a chat reply) answers later via resolve()
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from host.types import Approver, HostCallRequest
from observability.logger import get_logger

log = get_logger(__name__)

DEFAULT_CONFIRMATION_TIMEOUT = 120.0

NO_APPROVER_REASON = "Service calls require user confirmation (no callback configured)"
REFUSED_REASON = "Service call cancelled by user"


@dataclass(frozen=True)
class ConfirmationDecision:
    approved: bool
    reason: str = ""


class ConfirmationGate:
    """
    Suspends effectful host calls until an external approver decides.

    Usage:
        gate = ConfirmationGate(timeout_seconds=120)
        decision = await gate.request(request, approver)
        if not decision.approved:
            return HostCallResult.denied(decision.reason)
    """

    def __init__(self, timeout_seconds: float = DEFAULT_CONFIRMATION_TIMEOUT) -> None:
        self.timeout_seconds = timeout_seconds
        # call_id → Future[bool] for approvals answered out-of-band
        self._pending: dict[str, asyncio.Future] = {}

    async def request(
        self,
        request: HostCallRequest,
        approver: Optional[Approver],
    ) -> ConfirmationDecision:
        """Ask `approver` about `request`. Never raises."""
        if approver is None:
            log.warning(
                "confirmation.no_approver",
                method=request.method,
                call_id=request.call_id,
            )
            return ConfirmationDecision(approved=False, reason=NO_APPROVER_REASON)

        log.info(
            "confirmation.requested",
            method=request.method,
            call_id=request.call_id,
            params=request.params,
        )

        try:
            approved = await asyncio.wait_for(approver(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            log.warning(
                "confirmation.timeout",
                call_id=request.call_id,
                timeout_seconds=self.timeout_seconds,
            )
            return ConfirmationDecision(
                approved=False,
                reason=f"Confirmation timed out after {self.timeout_seconds:g}s",
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("confirmation.approver_error", call_id=request.call_id, error=str(e))
            return ConfirmationDecision(
                approved=False,
                reason=f"Confirmation failed: {type(e).__name__}: {e}",
            )

        if approved is True:
            log.info("confirmation.approved", call_id=request.call_id)
            return ConfirmationDecision(approved=True)

        log.info("confirmation.denied", call_id=request.call_id)
        return ConfirmationDecision(approved=False, reason=REFUSED_REASON)

    # ── Deferred approvals ───────────────────────────────────────────────────

    def register(self, call_id: str) -> "asyncio.Future[bool]":
        loop = asyncio.get_running_loop()
        future: asyncio.Future[bool] = loop.create_future()
        self._pending[call_id] = future
        return future

    def resolve(self, call_id: str, approved: bool) -> bool:
        future = self._pending.pop(call_id, None)
        if future is None or future.done():
            return False
        future.set_result(approved)
        log.info("confirmation.resolved", call_id=call_id, approved=approved)
        return True

    def pending(self) -> list[str]:
        return [cid for cid, fut in self._pending.items() if not fut.done()]

    def deferred_approver(
        self,
        on_prompt: Callable[[HostCallRequest], Awaitable[None]],
    ) -> Approver:
        """
        Build an approver that announces the request via `on_prompt` and then
        waits for resolve(call_id, ...) from elsewhere.
        """
        async def approver(request: HostCallRequest) -> bool:
            future = self.register(request.call_id)
            try:
                await on_prompt(request)
                return await future
            finally:
                self._pending.pop(request.call_id, None)

        return approver
