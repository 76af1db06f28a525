"""
agent/ — Signal Analyst Agent Core

Public API:
    from agent import AnalystSession, RunContext, EventChannel

Component overview:
    parser          Fenced-block document parser (sanitize, extract, inject)
    AnalystSession  The loop: model → parse → execute → re-prompt
    BlockExecutor   One block through the interpreter and the host call bridge
    RunContext      Per-run collaborators (fulfiller, approver, shell view)
    events          AnalystEvent union + EventChannel
    prompts         System prompt, nudges, continue prompt
"""

from agent.context import RunContext
from agent.events import AnalystEvent, EventChannel, is_terminal
from agent.executor import BlockExecutor, ExecutionResult
from agent.parser import CodeBlock, ParsedDocument
from agent.session import AnalystSession

__all__ = [
    "AnalystSession",
    "BlockExecutor",
    "ExecutionResult",
    "RunContext",
    "AnalystEvent",
    "EventChannel",
    "is_terminal",
    "CodeBlock",
    "ParsedDocument",
]
