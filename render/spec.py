"""
render/spec.py — Structured Result Types

Every evaluation in the sandbox ends in exactly one RenderSpec. The union is
closed: the `type` field is the discriminator, and each consumer (the text
projection in render/text.py, the CLI renderer) matches on it exhaustively,
so adding a kind means touching every consumer.

Specs are plain pydantic models and serialise to the JSON shape
{"type": "...", ...} that UIs and tests depend on.
"""

from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


# ─────────────────────────────────────────────────────────────────────────────
# Leaf kinds
# ─────────────────────────────────────────────────────────────────────────────


class TextSpec(BaseModel):
    type: Literal["text"] = "text"
    content: str


class ErrorSpec(BaseModel):
    type: Literal["error"] = "error"
    message: str


class TableSpec(BaseModel):
    type: Literal["table"] = "table"
    headers: list[str]
    rows: list[list[str]] = Field(default_factory=list)


class HelpSpec(BaseModel):
    type: Literal["help"] = "help"
    content: str


class SummarySpec(BaseModel):
    type: Literal["summary"] = "summary"
    content: str


class KeyValueSpec(BaseModel):
    type: Literal["key_value"] = "key_value"
    title: Optional[str] = None
    pairs: list[tuple[str, str]] = Field(default_factory=list)


class EntityCardSpec(BaseModel):
    """A single entity's state, rendered as a card."""
    type: Literal["entity_card"] = "entity_card"
    entity_id: str
    name: str
    state: str
    unit: Optional[str] = None
    domain: str = ""
    device_class: Optional[str] = None
    last_changed: str = ""
    attributes: list[tuple[str, str]] = Field(default_factory=list)


class SparklineSpec(BaseModel):
    """Numeric history. points are (timestamp_ms, value)."""
    type: Literal["sparkline"] = "sparkline"
    entity_id: str
    name: str
    unit: Optional[str] = None
    points: list[tuple[float, float]]
    min: float
    max: float
    current: float


class TimelineSpec(BaseModel):
    """Discrete-state history. segments are (start_ms, end_ms, state, colour)."""
    type: Literal["timeline"] = "timeline"
    entity_id: str
    name: str
    segments: list[tuple[float, float, str, str]]
    start_time: float
    end_time: float


class LogbookEntry(BaseModel):
    when: str
    name: str
    state: Optional[str] = None
    message: Optional[str] = None
    entity_id: Optional[str] = None
    context_user: Optional[str] = None
    context_event: Optional[str] = None
    context_domain: Optional[str] = None
    context_service: Optional[str] = None
    context_entity: Optional[str] = None
    context_entity_name: Optional[str] = None


class LogbookSpec(BaseModel):
    type: Literal["logbook"] = "logbook"
    entity_id: str
    entries: list[LogbookEntry] = Field(default_factory=list)


class CalendarEventEntry(BaseModel):
    summary: str
    start: Optional[str] = None
    end: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    all_day: bool = False


class CalendarEventsSpec(BaseModel):
    type: Literal["calendar_events"] = "calendar_events"
    entity_id: str
    entries: list[CalendarEventEntry] = Field(default_factory=list)


# ─────────────────────────────────────────────────────────────────────────────
# Composite kind + the union
# ─────────────────────────────────────────────────────────────────────────────


class VStackSpec(BaseModel):
    type: Literal["vstack"] = "vstack"
    children: list["RenderSpec"] = Field(default_factory=list)


RenderSpec = Annotated[
    Union[
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
    ],
    Field(discriminator="type"),
]

VStackSpec.model_rebuild()

_ADAPTER: TypeAdapter = TypeAdapter(RenderSpec)


def spec_from_dict(data: dict) -> RenderSpec:
    """Validate a {"type": ...} dict back into the matching spec model."""
    return _ADAPTER.validate_python(data)


def vstack(specs: list[RenderSpec]) -> RenderSpec:
    """Collapse a list of specs: none → empty text, one → itself, more → vstack."""
    if not specs:
        return TextSpec(content="")
    if len(specs) == 1:
        return specs[0]
    return VStackSpec(children=specs)
