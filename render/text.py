"""
render/text.py — Plain-Text Projection of RenderSpecs

What the model sees of a result. Rich specs are flattened to a compact text
form and long lists are cut to MAX_TEXT_ROWS so the conversation stays small;
the full spec is still available to the UI through the code_result event.

Also home of the "empty result" heuristic used to pick the next nudge. It is
best-effort: a false negative costs nothing, a false positive costs a turn.
"""

from __future__ import annotations

import re
from typing import Optional, assert_never

from render.spec import (
    CalendarEventsSpec,
    EntityCardSpec,
    ErrorSpec,
    HelpSpec,
    KeyValueSpec,
    LogbookSpec,
    RenderSpec,
    SparklineSpec,
    SummarySpec,
    TableSpec,
    TextSpec,
    TimelineSpec,
    VStackSpec,
)

# Max rows / children / entries per list-shaped result fed back to the model
MAX_TEXT_ROWS = 20

# Max size of the final text fed back to the model
MAX_RESULT_CHARS = 8_000

_EMPTY_LITERALS = frozenset({"[]", "()", "None"})
_ZERO_COUNT = re.compile(r"\b0\s+(entit|item|result)", re.IGNORECASE)


def spec_to_text(spec: RenderSpec) -> str:
    """Flatten a spec to the text injected into the document."""
    match spec:
        case TextSpec():
            return spec.content
        case ErrorSpec():
            return f"Error: {spec.message}"
        case TableSpec():
            return _table_text(spec)
        case VStackSpec():
            return _vstack_text(spec)
        case HelpSpec():
            return spec.content
        case SummarySpec():
            return spec.content
        case KeyValueSpec():
            return "\n".join(f"{k}: {v}" for k, v in spec.pairs)
        case EntityCardSpec():
            return f"{spec.name} ({spec.entity_id}): {spec.state}{_unit(spec.unit)}"
        case SparklineSpec():
            unit = _unit(spec.unit)
            return (
                f"📈 {spec.name} ({spec.entity_id}): "
                f"min={_num(spec.min)}{unit}, current={_num(spec.current)}{unit}, "
                f"max={_num(spec.max)}{unit} ({len(spec.points)} points)"
            )
        case TimelineSpec():
            states = list(dict.fromkeys(seg[2] for seg in spec.segments))
            return (
                f"📊 {spec.name} ({spec.entity_id}): states=[{', '.join(states)}] "
                f"({len(spec.segments)} segments)"
            )
        case LogbookSpec():
            return _logbook_text(spec)
        case CalendarEventsSpec():
            return _calendar_text(spec)
        case _:
            assert_never(spec)


def is_empty_result(spec: RenderSpec, text: str) -> bool:
    """Heuristic: did this result come back with nothing in it?"""
    match spec:
        case TextSpec():
            return text.strip() in _EMPTY_LITERALS
        case TableSpec():
            return len(spec.rows) == 0
        case VStackSpec():
            return len(spec.children) == 0
        case SummarySpec():
            return bool(_ZERO_COUNT.search(text))
        case _:
            return False


def is_error_result(spec: RenderSpec) -> bool:
    """An ErrorSpec, or printed output followed by one (a raise after print())."""
    if isinstance(spec, ErrorSpec):
        return True
    return isinstance(spec, VStackSpec) and bool(spec.children) and isinstance(spec.children[-1], ErrorSpec)


def truncate(text: str, max_chars: int = MAX_RESULT_CHARS) -> str:
    """Truncate result if too long, with a notice."""
    if len(text) <= max_chars:
        return text
    return (
        text[:max_chars]
        + f"\n\n[Output truncated — {len(text) - max_chars} chars omitted. "
        f"Total: {len(text)} chars]"
    )


# ─────────────────────────────────────────────────────────────────────────────
# Per-kind helpers
# ─────────────────────────────────────────────────────────────────────────────


def _unit(unit: Optional[str]) -> str:
    return f" {unit}" if unit else ""


def _num(value: float) -> str:
    """Render 21.0 as 21 and keep real fractions as-is."""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def _table_text(spec: TableSpec) -> str:
    header = " | ".join(spec.headers)
    shown = spec.rows[:MAX_TEXT_ROWS]
    body = "\n".join(" | ".join(row) for row in shown)
    hidden = len(spec.rows) - MAX_TEXT_ROWS
    if hidden > 0:
        return (
            f"{header}\n{body}\n... ({hidden} more rows hidden — "
            f"use slicing or filtering to see more)"
        )
    return f"{header}\n{body}"


def _vstack_text(spec: VStackSpec) -> str:
    shown = "\n".join(spec_to_text(child) for child in spec.children[:MAX_TEXT_ROWS])
    hidden = len(spec.children) - MAX_TEXT_ROWS
    if hidden > 0:
        return (
            f"{shown}\n... ({hidden} more items hidden — "
            f"use slicing or filtering to see more)"
        )
    return shown


def _logbook_text(spec: LogbookSpec) -> str:
    lines = []
    for e in spec.entries[:MAX_TEXT_ROWS]:
        state = f" → {e.state}" if e.state else ""
        if e.context_domain and e.context_service:
            ctx = f" (via {e.context_domain}.{e.context_service})"
        elif e.context_entity_name:
            ctx = f" (by {e.context_entity_name})"
        else:
            ctx = ""
        lines.append(f"{e.when}: {e.name}{state}{ctx}")

    total = len(spec.entries)
    text = f"📋 Logbook for {spec.entity_id} ({total} entries):\n" + "\n".join(lines)
    if total > MAX_TEXT_ROWS:
        text += f"\n... ({total - MAX_TEXT_ROWS} more entries hidden)"
    return text


def _calendar_text(spec: CalendarEventsSpec) -> str:
    lines = []
    for e in spec.entries[:MAX_TEXT_ROWS]:
        when = "all-day" if e.all_day else (e.start or "")
        loc = f" 📍{e.location}" if e.location else ""
        lines.append(f"{when}: {e.summary}{loc}")

    total = len(spec.entries)
    text = f"📅 {total} events for {spec.entity_id}:\n" + "\n".join(lines)
    if total > MAX_TEXT_ROWS:
        text += f"\n... ({total - MAX_TEXT_ROWS} more hidden)"
    return text
