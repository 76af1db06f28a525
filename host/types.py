"""
host/types.py — Host Call Wire Types

The request/response shapes exchanged between the sandboxed interpreter and
the privileged host. Payloads are JSON strings on the wire: either the
method's success shape, {"error": "..."} for a failure, or
{"error": "...", "denied": true} when a human refused the call.
"""

from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Union

from pydantic import BaseModel, Field


class HostCallRequest(BaseModel):
    """A host function call surfaced by the interpreter. call_id is single-use."""
    call_id: str
    method: str
    params: dict[str, Any] = Field(default_factory=dict)


class HostCallResult(BaseModel):
    """Fulfilment of a HostCallRequest. `data` is a JSON-encoded payload."""
    data: str

    @classmethod
    def ok(cls, payload: Any) -> "HostCallResult":
        if isinstance(payload, str):
            return cls(data=payload)
        return cls(data=json.dumps(payload, default=str))

    @classmethod
    def error(cls, message: str) -> "HostCallResult":
        return cls(data=json.dumps({"error": message}))

    @classmethod
    def denied(cls, reason: str) -> "HostCallResult":
        return cls(data=json.dumps({"error": reason, "denied": True}))

    @property
    def payload(self) -> Any:
        """Decoded payload; undecodable data comes back as a plain string."""
        try:
            return json.loads(self.data)
        except (TypeError, ValueError):
            return self.data

    @property
    def is_error(self) -> bool:
        p = self.payload
        return isinstance(p, dict) and "error" in p

    @property
    def is_denied(self) -> bool:
        p = self.payload
        return isinstance(p, dict) and p.get("denied") is True


# Fulfiller: async (method, params) -> JSON payload string (or a JSON-able value)
Fulfiller = Callable[[str, dict[str, Any]], Awaitable[Union[str, Any]]]

# Approver: async (request) -> True to allow, False to refuse
Approver = Callable[[HostCallRequest], Awaitable[bool]]
