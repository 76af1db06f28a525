"""
safety/__init__.py — Signal Analyst Safety Module
"""

from safety.confirmation import ConfirmationDecision, ConfirmationGate

__all__ = [
    "ConfirmationGate",
    "ConfirmationDecision",
]
