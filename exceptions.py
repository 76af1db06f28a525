"""
exceptions.py — Signal Analyst Unified Error Hierarchy

All project-specific exceptions live here. Layers below the AnalystSession
convert these into typed payloads (ErrorSpec, error-shaped host responses,
denials) instead of letting them escape; the classes exist so that the
conversion points can catch precisely what they mean to.

Import from here, not from individual modules:
    from exceptions import HostCallError, InterpreterBusyError

Hierarchy:
    SignalAnalystError
    ├── SandboxError
    │   ├── SandboxViolationError
    │   ├── InterpreterBusyError
    │   ├── HostCallError
    │   └── ExecutionAbandoned
    ├── HostError
    │   ├── UnknownHostMethodError
    │   └── HomeAssistantError
    └── LLMError  (re-exported from brain for convenience)
        ├── LLMConnectionError
        ├── LLMRateLimitError
        ├── LLMContextError
        └── LLMInvalidRequestError
"""

from __future__ import annotations

from brain.llm_client import (  # noqa: F401 — re-export
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
)


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class SignalAnalystError(Exception):
    """Base class for all Signal Analyst exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Sandbox layer
# ─────────────────────────────────────────────────────────────────────────────

class SandboxError(SignalAnalystError):
    """Base for sandboxed interpreter errors."""


class SandboxViolationError(SandboxError):
    """Code uses a construct the sandbox does not allow (imports, dunders, …)."""

    def __init__(self, construct: str, lineno: int | None = None) -> None:
        self.construct = construct
        self.lineno = lineno
        where = f" (line {lineno})" if lineno else ""
        super().__init__(f"{construct} is not allowed in the sandbox{where}")


class InterpreterBusyError(SandboxError):
    """eval() was called while another evaluation is still in flight."""


class HostCallError(SandboxError):
    """A host call came back with an error payload. Raised inside sandboxed code."""

    def __init__(self, method: str, message: str) -> None:
        self.method = method
        super().__init__(message)


class ExecutionAbandoned(SandboxError):
    """The evaluation was abandoned (timeout or cancellation); the worker unwinds."""


# ─────────────────────────────────────────────────────────────────────────────
# Host layer
# ─────────────────────────────────────────────────────────────────────────────

class HostError(SignalAnalystError):
    """Base for host function (fulfiller) errors."""


class UnknownHostMethodError(HostError):
    """No handler is registered for the requested host method."""

    def __init__(self, method: str) -> None:
        self.method = method
        super().__init__(f"Unknown host method: {method}")


class HomeAssistantError(HostError):
    """Home Assistant answered with an unexpected status or body."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


# ─────────────────────────────────────────────────────────────────────────────
# Convenience: all public names
# ─────────────────────────────────────────────────────────────────────────────

__all__ = [
    "SignalAnalystError",
    # Sandbox
    "SandboxError",
    "SandboxViolationError",
    "InterpreterBusyError",
    "HostCallError",
    "ExecutionAbandoned",
    # Host
    "HostError",
    "UnknownHostMethodError",
    "HomeAssistantError",
    # LLM (re-exported)
    "LLMError",
    "LLMConnectionError",
    "LLMRateLimitError",
    "LLMContextError",
    "LLMInvalidRequestError",
]
