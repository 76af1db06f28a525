"""
render/ — Structured results and their plain-text projection.
"""

from render.spec import (
    CalendarEventEntry,
    CalendarEventsSpec,
    EntityCardSpec,
    ErrorSpec,
    HelpSpec,
    KeyValueSpec,
    LogbookEntry,
    LogbookSpec,
    RenderSpec,
    SparklineSpec,
    SummarySpec,
    TableSpec,
    TextSpec,
    TimelineSpec,
    VStackSpec,
    spec_from_dict,
    vstack,
)
from render.text import MAX_TEXT_ROWS, is_empty_result, is_error_result, spec_to_text, truncate

__all__ = [
    "RenderSpec",
    "TextSpec",
    "ErrorSpec",
    "TableSpec",
    "VStackSpec",
    "HelpSpec",
    "SummarySpec",
    "KeyValueSpec",
    "EntityCardSpec",
    "SparklineSpec",
    "TimelineSpec",
    "LogbookEntry",
    "LogbookSpec",
    "CalendarEventEntry",
    "CalendarEventsSpec",
    "spec_from_dict",
    "vstack",
    "spec_to_text",
    "is_empty_result",
    "is_error_result",
    "truncate",
    "MAX_TEXT_ROWS",
]
