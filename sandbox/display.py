"""
sandbox/display.py — Python Values → RenderSpec

Decides how the final value of a block (and anything passed to show()) is
displayed. Home Assistant values get rich kinds: entity cards, entity
tables, sparklines or timelines for history, logbooks, calendars and
service tables. Plain dicts become key/value lists, strings stay text and
anything else is shown as its repr.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Any, Optional

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
from sandbox.api import (
    CalendarEvents,
    EntityState,
    HelpText,
    History,
    Logbook,
    Now,
    ServiceList,
    StateDiff,
)

_SPEC_TYPES = (
    TextSpec,
    ErrorSpec,
    TableSpec,
    VStackSpec,
    HelpSpec,
    EntityCardSpec,
    KeyValueSpec,
    SummarySpec,
    SparklineSpec,
    TimelineSpec,
    LogbookSpec,
    CalendarEventsSpec,
)

_TIMELINE_COLOURS = {
    **dict.fromkeys(("on", "home", "open", "playing", "active"), "#44b556"),
    **dict.fromkeys(("off", "not_home", "closed", "idle", "paused", "standby"), "#969696"),
    "unavailable": "#c74848",
    "unknown": "#606060",
}
_DEFAULT_COLOUR = "#2196f3"

ENTITY_TABLE_HEADERS = [" ", "entity_id", "state", "last_changed"]
SERVICE_TABLE_HEADERS = ["domain", "service", "name", "fields"]


def value_to_spec(value: Any) -> RenderSpec:
    """Pick the richest display for `value`."""
    if isinstance(value, _SPEC_TYPES):
        return value
    if isinstance(value, EntityState):
        return entity_card(value)
    if isinstance(value, History):
        return history_spec(value)
    if isinstance(value, StateDiff):
        return diff_spec(value)
    if isinstance(value, Logbook):
        if not value:
            return TextSpec(content="No logbook entries.")
        return VStackSpec(children=[
            SummarySpec(content=f"{len(value)} logbook entries for {value.entity_id}"),
            LogbookSpec(entity_id=value.entity_id, entries=list(value)),
        ])
    if isinstance(value, CalendarEvents):
        if not value:
            return TextSpec(content="No upcoming events.")
        return CalendarEventsSpec(entity_id=value.entity_id, entries=list(value))
    if isinstance(value, ServiceList):
        return services_spec(value)
    if isinstance(value, HelpText):
        return HelpSpec(content=str(value))
    if isinstance(value, Now):
        return KeyValueSpec(title="now", pairs=[
            ("date", value.date),
            ("time", value.time),
            ("day", value.day),
            ("timezone", value.timezone),
            ("iso", value.iso),
        ])
    if isinstance(value, list) and value and all(isinstance(v, EntityState) for v in value):
        return entity_table(value)
    if isinstance(value, str):
        return TextSpec(content=value)
    if isinstance(value, dict) and value:
        return KeyValueSpec(pairs=[(str(k), _short(v)) for k, v in value.items()])
    return TextSpec(content=repr(value))


# ─────────────────────────────────────────────────────────────────────────────
# Entities
# ─────────────────────────────────────────────────────────────────────────────


def entity_card(entity: EntityState) -> EntityCardSpec:
    return EntityCardSpec(
        entity_id=entity.entity_id,
        name=entity.name,
        state=entity.state,
        unit=entity.unit,
        domain=entity.domain,
        device_class=entity.device_class,
        last_changed=short_time(entity.last_changed),
        attributes=entity.display_attributes(),
    )


def entity_table(entities: list[EntityState]) -> VStackSpec:
    """Summary line with per-domain counts, then one row per entity."""
    rows = []
    for e in entities:
        state = f"{e.state} {e.unit}" if e.unit and e.value is not None else e.state
        rows.append([state_indicator(e.state), e.entity_id, state, short_time(e.last_changed)])

    counts = Counter(e.domain for e in entities)
    breakdown = ", ".join(f"{d}: {n}" for d, n in sorted(counts.items()))
    return VStackSpec(children=[
        SummarySpec(content=f"{len(entities)} entities  ({breakdown})"),
        TableSpec(headers=list(ENTITY_TABLE_HEADERS), rows=rows),
    ])


def diff_spec(diff: StateDiff) -> VStackSpec:
    return VStackSpec(children=[
        SummarySpec(content=f"Comparing {diff.a.entity_id} ↔ {diff.b.entity_id}"),
        TableSpec(
            headers=["attribute", diff.a.entity_id, diff.b.entity_id],
            rows=[list(row) for row in diff.rows()],
        ),
    ])


def state_indicator(state: str) -> str:
    if state in ("on", "home", "open", "playing", "active"):
        return "●"
    if state in ("unavailable", "unknown"):
        return "✕"
    return "○"


# ─────────────────────────────────────────────────────────────────────────────
# History
# ─────────────────────────────────────────────────────────────────────────────


def history_spec(history: History) -> RenderSpec:
    """Sparkline if any of the first five states is numeric, else a timeline."""
    if not history:
        return TextSpec(content="No history data.")

    numeric = any(p.value is not None for p in history[:5])
    if numeric:
        points = [
            (iso_to_ms(p.last_changed) or 0.0, p.value)
            for p in history
            if p.value is not None
        ]
        values = [v for _, v in points]
        return SparklineSpec(
            entity_id=history.entity_id,
            name=history.name,
            unit=history.unit,
            points=points,
            min=min(values),
            max=max(values),
            current=values[-1],
        )

    start_time = iso_to_ms(history[0].last_changed) or 0.0
    end_time = iso_to_ms(history[-1].last_changed) or start_time
    segments = []
    for i, point in enumerate(history):
        seg_start = iso_to_ms(point.last_changed) or start_time
        if i + 1 < len(history):
            seg_end = iso_to_ms(history[i + 1].last_changed) or end_time
        else:
            seg_end = end_time
        state = point.state or "unknown"
        segments.append((seg_start, seg_end, state, _TIMELINE_COLOURS.get(state, _DEFAULT_COLOUR)))

    return TimelineSpec(
        entity_id=history.entity_id,
        name=history.name,
        segments=segments,
        start_time=start_time,
        end_time=end_time,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Services
# ─────────────────────────────────────────────────────────────────────────────


def services_spec(services: ServiceList) -> RenderSpec:
    if not services:
        return TextSpec(content="No services found.")

    rows = [
        [
            s.get("domain", "-"),
            s.get("service", "-"),
            s.get("name", "-"),
            ", ".join(s.get("fields") or []),
        ]
        for s in services
    ]
    counts = Counter(s.get("domain", "-") for s in services)
    breakdown = ", ".join(f"{d}: {n}" for d, n in sorted(counts.items()))
    return VStackSpec(children=[
        SummarySpec(content=f"{len(services)} services  ({breakdown})"),
        TableSpec(headers=list(SERVICE_TABLE_HEADERS), rows=rows),
    ])


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def iso_to_ms(ts: str) -> Optional[float]:
    if not ts:
        return None
    try:
        return datetime.fromisoformat(ts).timestamp() * 1000
    except ValueError:
        return None


def short_time(ts: str) -> str:
    """HH:MM:SS out of an ISO timestamp; anything else unchanged."""
    if "T" in ts:
        return ts.split("T", 1)[1][:8]
    return ts


def _short(value: Any) -> str:
    return value if isinstance(value, str) else repr(value)
