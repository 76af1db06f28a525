"""
agent/context.py — Per-Run Context

An immutable snapshot of the collaborators a single run needs. Front-ends
build one and pass it to AnalystSession.run(); nothing on the session is
mutated to swap a fulfiller or approver mid-flight.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from host.types import Approver, Fulfiller


@dataclass(frozen=True)
class RunContext:
    # host data / effects; None means reads fail with an error payload and effectful calls are denied
    fulfiller: Optional[Fulfiller] = None
    # asked before effectful calls; None means they are all denied
    approver: Optional[Approver] = None
    # mirrors each executed block: (code, render_spec) -> None
    shell_callback: Optional[Callable[[str, Any], None]] = None
