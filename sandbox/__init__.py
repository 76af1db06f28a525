"""
sandbox/ — Capability-limited Python interpreter for analyst code blocks.
"""

from sandbox.api import EntityState, SandboxAPI
from sandbox.display import value_to_spec
from sandbox.interpreter import SANDBOX_FILENAME, Interpreter
from sandbox.validator import parse_and_validate, validate

__all__ = [
    "Interpreter",
    "SandboxAPI",
    "EntityState",
    "value_to_spec",
    "validate",
    "parse_and_validate",
    "SANDBOX_FILENAME",
]
