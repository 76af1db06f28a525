"""
tests/unit/test_render.py — RenderSpec + Text Projection Unit Tests

Run with:
    pytest tests/unit/test_render.py -v
"""

from __future__ import annotations

import pytest

from render import (
    CalendarEventEntry,
    CalendarEventsSpec,
    EntityCardSpec,
    ErrorSpec,
    KeyValueSpec,
    LogbookEntry,
    LogbookSpec,
    MAX_TEXT_ROWS,
    SparklineSpec,
    SummarySpec,
    TableSpec,
    TextSpec,
    TimelineSpec,
    VStackSpec,
    is_empty_result,
    is_error_result,
    spec_from_dict,
    spec_to_text,
    truncate,
    vstack,
)


class TestSpecToText:
    def test_text(self):
        assert spec_to_text(TextSpec(content="hello")) == "hello"

    def test_error(self):
        assert spec_to_text(ErrorSpec(message="NameError: x")) == "Error: NameError: x"

    def test_table(self):
        spec = TableSpec(headers=["a", "b"], rows=[["1", "2"], ["3", "4"]])
        assert spec_to_text(spec) == "a | b\n1 | 2\n3 | 4"

    def test_table_rows_capped(self):
        rows = [[str(i)] for i in range(MAX_TEXT_ROWS + 5)]
        text = spec_to_text(TableSpec(headers=["n"], rows=rows))
        assert "\n19\n" in text
        assert "\n20\n" not in text
        assert "5 more rows hidden" in text

    def test_key_value(self):
        spec = KeyValueSpec(pairs=[("date", "2024-01-01"), ("day", "Monday")])
        assert spec_to_text(spec) == "date: 2024-01-01\nday: Monday"

    def test_entity_card_with_unit(self):
        spec = EntityCardSpec(
            entity_id="sensor.temp", name="Temperature", state="21.5", unit="°C",
        )
        assert spec_to_text(spec) == "Temperature (sensor.temp): 21.5 °C"

    def test_sparkline(self):
        spec = SparklineSpec(
            entity_id="sensor.temp", name="Temp", unit="°C",
            points=[(0, 20.0), (1, 21.5)], min=20.0, max=21.5, current=21.5,
        )
        assert spec_to_text(spec) == (
            "📈 Temp (sensor.temp): min=20 °C, current=21.5 °C, max=21.5 °C (2 points)"
        )

    def test_timeline_dedupes_states(self):
        spec = TimelineSpec(
            entity_id="light.k", name="Kitchen",
            segments=[(0, 1, "on", "#0f0"), (1, 2, "off", "#999"), (2, 3, "on", "#0f0")],
            start_time=0, end_time=3,
        )
        assert spec_to_text(spec) == "📊 Kitchen (light.k): states=[on, off] (3 segments)"

    def test_logbook_context(self):
        spec = LogbookSpec(entity_id="light.k", entries=[
            LogbookEntry(when="10:00", name="Kitchen", state="on",
                         context_domain="automation", context_service="trigger"),
        ])
        text = spec_to_text(spec)
        assert text.startswith("📋 Logbook for light.k (1 entries):")
        assert "10:00: Kitchen → on (via automation.trigger)" in text

    def test_calendar_all_day(self):
        spec = CalendarEventsSpec(entity_id="calendar.home", entries=[
            CalendarEventEntry(summary="Bins", start="2024-01-02", all_day=True, location="Street"),
        ])
        assert "all-day: Bins 📍Street" in spec_to_text(spec)

    def test_vstack_joins_children(self):
        spec = VStackSpec(children=[TextSpec(content="a"), TextSpec(content="b")])
        assert spec_to_text(spec) == "a\nb"

    def test_vstack_children_capped(self):
        spec = VStackSpec(children=[TextSpec(content=str(i)) for i in range(25)])
        assert "5 more items hidden" in spec_to_text(spec)


class TestIsEmptyResult:
    @pytest.mark.parametrize("text", ["[]", "()", "None", "  []  "])
    def test_empty_literals(self, text):
        assert is_empty_result(TextSpec(content=text), text) is True

    def test_non_empty_text(self):
        assert is_empty_result(TextSpec(content="[1]"), "[1]") is False

    def test_table_without_rows(self):
        spec = TableSpec(headers=["a"])
        assert is_empty_result(spec, spec_to_text(spec)) is True

    def test_empty_vstack(self):
        spec = VStackSpec()
        assert is_empty_result(spec, "") is True

    def test_zero_count_summary(self):
        spec = SummarySpec(content="0 entities found")
        assert is_empty_result(spec, spec.content) is True

    def test_non_zero_summary(self):
        spec = SummarySpec(content="10 entities found")
        assert is_empty_result(spec, spec.content) is False

    def test_entity_card_never_empty(self):
        spec = EntityCardSpec(entity_id="sun.sun", name="Sun", state="")
        assert is_empty_result(spec, spec_to_text(spec)) is False


class TestIsErrorResult:
    def test_error_spec(self):
        assert is_error_result(ErrorSpec(message="x")) is True

    def test_output_then_error(self):
        spec = VStackSpec(children=[TextSpec(content="partial"), ErrorSpec(message="boom")])
        assert is_error_result(spec) is True

    def test_error_not_last(self):
        spec = VStackSpec(children=[ErrorSpec(message="boom"), TextSpec(content="later")])
        assert is_error_result(spec) is False

    def test_plain_text(self):
        assert is_error_result(TextSpec(content="Error: looks like one")) is False


class TestHelpers:
    def test_truncate_short_text_unchanged(self):
        assert truncate("abc", max_chars=10) == "abc"

    def test_truncate_long_text(self):
        out = truncate("x" * 30, max_chars=10)
        assert out.startswith("x" * 10)
        assert "20 chars omitted" in out

    def test_vstack_collapse(self):
        assert vstack([]) == TextSpec(content="")
        single = TextSpec(content="one")
        assert vstack([single]) is single
        assert isinstance(vstack([single, single]), VStackSpec)

    def test_spec_from_dict_nested(self):
        original = VStackSpec(children=[
            SummarySpec(content="2 entities"),
            TableSpec(headers=["id"], rows=[["light.a"], ["light.b"]]),
        ])
        rebuilt = spec_from_dict(original.model_dump())
        assert rebuilt == original
        assert isinstance(rebuilt.children[1], TableSpec)
