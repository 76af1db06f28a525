"""
tests/unit/test_sandbox.py — Sandboxed Interpreter Unit Tests

Covers:
  - validator: rejected constructs (imports, dunders, dangerous builtins, format)
  - Interpreter: persistent namespace, print capture, errors with line numbers,
    host call suspension/resumption, busy guard, abandon, timeout, reset
  - SandboxAPI: payload decoding, HostCallError on error payloads, denial
    passthrough for call_service, ago() parsing, diff() rows
  - display: value → RenderSpec selection

Run with:
    pytest tests/unit/test_sandbox.py -v
"""

from __future__ import annotations

import ast
import json

import pytest

from exceptions import HostCallError, InterpreterBusyError, SandboxViolationError
from host.types import HostCallRequest, HostCallResult
from render.spec import (
    EntityCardSpec,
    ErrorSpec,
    HelpSpec,
    KeyValueSpec,
    SparklineSpec,
    SummarySpec,
    TableSpec,
    TextSpec,
    TimelineSpec,
    VStackSpec,
)
from sandbox.api import EntityState, History, HistoryPoint, SandboxAPI, ServiceList, StateDiff
from sandbox.display import value_to_spec
from sandbox.interpreter import Interpreter
from sandbox.validator import validate


SUN = {
    "entity_id": "sun.sun",
    "state": "above_horizon",
    "attributes": {"friendly_name": "Sun", "elevation": 32.1},
    "last_changed": "2024-06-01T08:15:00+00:00",
}


@pytest.fixture
def interp() -> Interpreter:
    return Interpreter(timeout_seconds=5, host_call_timeout_seconds=5)


# ─────────────────────────────────────────────────────────────────────────────
# Validator
# ─────────────────────────────────────────────────────────────────────────────


class TestValidator:
    @pytest.mark.parametrize("code", [
        "import os",
        "from os import path",
        "class A:\n    pass",
        "async def f():\n    pass",
        "def f():\n    global x",
        "().__class__",
        "x.__dict__",
        "_private = 1",
        "eval('1')",
        "open('/etc/passwd')",
        "getattr(x, 'y')",
        "'{0.__class__}'.format(1)",
        "gen.gi_frame",
        "def f(__a):\n    return __a",
    ])
    def test_rejected(self, code):
        with pytest.raises(SandboxViolationError):
            validate(ast.parse(code))

    @pytest.mark.parametrize("code", [
        "x = [s for s in states() if s.is_on]",
        "_",
        "f = lambda e: e.state",
        "def on(es):\n    return [e for e in es if e.is_on]",
        "try:\n    state('a.b')\nexcept HostCallError as e:\n    pass",
        "f'{len([1])} items'",
    ])
    def test_allowed(self, code):
        validate(ast.parse(code))

    def test_violation_carries_line(self):
        with pytest.raises(SandboxViolationError) as exc_info:
            validate(ast.parse("x = 1\nimport os"))
        assert exc_info.value.lineno == 2


# ─────────────────────────────────────────────────────────────────────────────
# Interpreter
# ─────────────────────────────────────────────────────────────────────────────


class TestInterpreterBasics:
    def test_expression_value(self, interp):
        assert interp.eval("1 + 1") == TextSpec(content="2")

    def test_statement_only_block_is_empty_text(self, interp):
        assert interp.eval("x = 5") == TextSpec(content="")

    def test_namespace_persists(self, interp):
        interp.eval("x = 5")
        assert interp.eval("x * 2") == TextSpec(content="10")

    def test_underscore_holds_last_value(self, interp):
        interp.eval("21 * 2")
        assert interp.eval("_") == TextSpec(content="42")

    def test_print_captured(self, interp):
        assert interp.eval('print("hello", "world")') == TextSpec(content="hello world")

    def test_print_then_value(self, interp):
        spec = interp.eval('print("a")\n"b"')
        assert isinstance(spec, VStackSpec)
        assert [c.content for c in spec.children] == ["a", "b"]

    def test_history_records_completed_snippets(self, interp):
        interp.eval("a = 1")
        interp.eval("1/0")
        assert interp.history == ["a = 1"]

    def test_reset_forgets_variables(self, interp):
        interp.eval("x = 5")
        interp.reset()
        spec = interp.eval("x")
        assert isinstance(spec, ErrorSpec)
        assert spec.message.startswith("NameError")

    def test_helpers_available(self, interp):
        assert interp.eval("mean([1, 2, 3])") == TextSpec(content="2")
        assert interp.eval("ago('2d')") == TextSpec(content="48")


class TestInterpreterErrors:
    def test_runtime_error_with_line(self, interp):
        spec = interp.eval("x = 1\ny = x / 0")
        assert spec == ErrorSpec(message="ZeroDivisionError: division by zero (line 2)")

    def test_output_kept_before_error(self, interp):
        spec = interp.eval('print("partial")\nraise ValueError("bad")')
        assert isinstance(spec, VStackSpec)
        assert spec.children[0] == TextSpec(content="partial")
        assert spec.children[-1].message.startswith("ValueError: bad")

    def test_syntax_error(self, interp):
        spec = interp.eval("def (")
        assert isinstance(spec, ErrorSpec)
        assert spec.message.startswith("SyntaxError")

    def test_sandbox_violation(self, interp):
        spec = interp.eval("import os")
        assert isinstance(spec, ErrorSpec)
        assert spec.message.startswith("SandboxViolationError")
        assert interp.busy is False

    def test_pathologically_nested_source(self, interp):
        spec = interp.eval("x = " + "-" * 100_000 + "1")
        assert isinstance(spec, ErrorSpec)
        assert spec.message.split(":")[0] in ("MemoryError", "RecursionError", "SyntaxError")
        assert interp.busy is False
        assert interp.eval("1 + 1") == TextSpec(content="2")

    def test_null_byte_in_source(self, interp):
        spec = interp.eval("x = 1\x00")
        assert isinstance(spec, ErrorSpec)
        assert interp.busy is False

    def test_blocked_builtin_missing_at_runtime(self, interp):
        # not rejected statically, but absent from the builtins
        spec = interp.eval("hasattr(1, 'real')")
        assert isinstance(spec, ErrorSpec)
        assert "NameError" in spec.message

    def test_timeout(self):
        interp = Interpreter(timeout_seconds=0.2)
        spec = interp.eval("while True:\n    x = 1")
        assert isinstance(spec, ErrorSpec)
        assert spec.message.startswith("TimeoutError")
        assert interp.busy is False


class TestInterpreterHostCalls:
    def test_host_call_suspends_and_resumes(self, interp):
        step = interp.eval('state("sun.sun")')
        assert isinstance(step, HostCallRequest)
        assert step.method == "get_state"
        assert step.params == {"entity_id": "sun.sun"}
        assert interp.busy is True

        spec = interp.fulfill_host_call(step.call_id, json.dumps(SUN))
        assert isinstance(spec, EntityCardSpec)
        assert spec.name == "Sun"
        assert ("elevation", "32.1") in spec.attributes
        assert interp.busy is False

    def test_call_ids_unique(self, interp):
        first = interp.eval("state('a.b')")
        interp.abandon()
        second = interp.eval("state('a.b')")
        assert first.call_id != second.call_id
        interp.abandon()

    def test_error_payload_raises_in_sandbox(self, interp):
        step = interp.eval('state("light.nope")')
        spec = interp.fulfill_host_call(step.call_id, HostCallResult.error("Entity not found: light.nope").data)
        assert isinstance(spec, ErrorSpec)
        assert spec.message.startswith("HostCallError: Entity not found: light.nope")

    def test_error_payload_can_be_caught(self, interp):
        code = (
            "try:\n"
            "    s = state('light.nope')\n"
            "except HostCallError:\n"
            "    s = 'missing'\n"
            "s"
        )
        step = interp.eval(code)
        spec = interp.fulfill_host_call(step.call_id, HostCallResult.error("nope").data)
        assert spec == TextSpec(content="missing")

    def test_denied_service_call_is_a_value(self, interp):
        step = interp.eval('call_service("light", "turn_on", {"entity_id": "light.k"})')
        assert step.method == "call_service"
        assert step.params == {
            "domain": "light",
            "service": "turn_on",
            "service_data": {"entity_id": "light.k"},
        }
        spec = interp.fulfill_host_call(step.call_id, HostCallResult.denied("refused").data)
        assert isinstance(spec, KeyValueSpec)
        assert ("error", "refused") in spec.pairs

    def test_several_host_calls_in_one_block(self, interp):
        step = interp.eval("a = state('sun.sun')\nb = state('sun.sun')\n[a.state, b.state]")
        step = interp.fulfill_host_call(step.call_id, json.dumps(SUN))
        assert isinstance(step, HostCallRequest)
        spec = interp.fulfill_host_call(step.call_id, json.dumps(SUN))
        assert spec == TextSpec(content="['above_horizon', 'above_horizon']")

    def test_busy_while_host_call_pending(self, interp):
        interp.eval("state('sun.sun')")
        with pytest.raises(InterpreterBusyError):
            interp.eval("1")
        interp.abandon()
        assert interp.eval("1") == TextSpec(content="1")

    def test_unknown_call_id(self, interp):
        spec = interp.fulfill_host_call("hc_999", "{}")
        assert isinstance(spec, ErrorSpec)

    def test_abandoned_block_leaves_no_history(self, interp):
        interp.eval("x = state('sun.sun')")
        interp.abandon()
        assert interp.history == []


# ─────────────────────────────────────────────────────────────────────────────
# SandboxAPI (direct, without threads)
# ─────────────────────────────────────────────────────────────────────────────


class _FakeHost:
    def __init__(self, payloads: dict):
        self.payloads = payloads
        self.calls: list[tuple[str, dict]] = []

    def __call__(self, method: str, params: dict) -> str:
        self.calls.append((method, params))
        return json.dumps(self.payloads[method])


class TestSandboxAPI:
    def test_states_with_domain(self):
        host = _FakeHost({"get_states": [SUN]})
        api = SandboxAPI(host, lambda v: None)
        result = api.states("sun")
        assert host.calls == [("get_states", {"domain": "sun"})]
        assert result[0].entity_id == "sun.sun"
        assert result[0].domain == "sun"

    def test_room_unwraps_entities(self):
        host = _FakeHost({"get_area_entities": {"area_id": "kitchen", "entities": [SUN]}})
        assert SandboxAPI(host, lambda v: None).room("Kitchen")[0].name == "Sun"

    def test_history_hours_from_string(self):
        host = _FakeHost({"get_history": [[
            {"state": "20.5", "last_changed": "2024-06-01T08:00:00+00:00",
             "attributes": {"friendly_name": "Temp", "unit_of_measurement": "°C"}},
            {"state": "21.0", "last_changed": "2024-06-01T09:00:00+00:00"},
        ]]})
        history = SandboxAPI(host, lambda v: None).history("sensor.t", "2d")
        assert host.calls[0][1]["hours"] == 48
        assert history.values == [20.5, 21.0]
        assert history.unit == "°C"

    def test_diff_rows_cover_both_attribute_sets(self):
        host = _FakeHost({"get_diff": {
            "entity_a": {"entity_id": "sensor.temp", "state": "22.5",
                         "attributes": {"friendly_name": "Temp", "unit_of_measurement": "°C", "device_class": "temperature"}},
            "entity_b": {"entity_id": "sensor.humidity", "state": "45",
                         "attributes": {"unit_of_measurement": "%", "battery": 80}},
        }})
        diff = SandboxAPI(host, lambda v: None).diff("sensor.temp", "sensor.humidity")
        assert host.calls == [("get_diff", {"entity_a": "sensor.temp", "entity_b": "sensor.humidity"})]
        assert diff.rows() == [
            ("state", "22.5", "45"),
            ("battery", "—", "80"),
            ("device_class", "temperature", "—"),
            ("unit_of_measurement", "°C", "%"),
        ]

    def test_diff_missing_entity_raises(self):
        api = SandboxAPI(lambda m, p: HostCallResult.error("Entity not found: x.y").data, lambda v: None)
        with pytest.raises(HostCallError, match="Entity not found"):
            api.diff("x.y", "sun.sun")

    def test_unparseable_payload(self):
        api = SandboxAPI(lambda m, p: "not json", lambda v: None)
        with pytest.raises(HostCallError, match="Failed to parse"):
            api.state("sun.sun")

    def test_denial_raises_for_reads(self):
        api = SandboxAPI(lambda m, p: HostCallResult.denied("no").data, lambda v: None)
        with pytest.raises(HostCallError):
            api.states()

    def test_service_call_error_still_raises(self):
        api = SandboxAPI(lambda m, p: HostCallResult.error("HTTP 500").data, lambda v: None)
        with pytest.raises(HostCallError, match="HTTP 500"):
            api.call_service("light", "turn_on")

    def test_template(self):
        host = _FakeHost({"render_template": {"result": "3"}})
        assert SandboxAPI(host, lambda v: None).template("{{ 1 + 2 }}") == "3"

    @pytest.mark.parametrize("spec, hours", [
        ("30m", 1),
        ("90m", 2),
        ("6h", 6),
        ("2d", 48),
        ("1w", 168),
        ("12", 12),
        (3, 3),
        ("bogus", 6),
        ("", 6),
        (True, 6),
    ])
    def test_ago(self, spec, hours):
        assert SandboxAPI(lambda m, p: "{}", lambda v: None).ago(spec) == hours


# ─────────────────────────────────────────────────────────────────────────────
# display.value_to_spec
# ─────────────────────────────────────────────────────────────────────────────


def _entity(entity_id: str, state: str, **attrs) -> EntityState:
    return EntityState.from_payload({"entity_id": entity_id, "state": state, "attributes": attrs})


class TestValueToSpec:
    def test_entity_list_is_summary_plus_table(self):
        spec = value_to_spec([_entity("light.a", "on"), _entity("switch.b", "off")])
        assert isinstance(spec, VStackSpec)
        summary, table = spec.children
        assert isinstance(summary, SummarySpec)
        assert summary.content == "2 entities  (light: 1, switch: 1)"
        assert isinstance(table, TableSpec)
        assert table.rows[0][:3] == ["●", "light.a", "on"]

    def test_diff_is_summary_plus_comparison_table(self):
        diff = StateDiff(_entity("light.a", "on"), _entity("light.b", "off"))
        spec = value_to_spec(diff)
        summary, table = spec.children
        assert summary.content == "Comparing light.a ↔ light.b"
        assert table.headers == ["attribute", "light.a", "light.b"]
        assert table.rows[0] == ["state", "on", "off"]

    def test_numeric_history_is_sparkline(self):
        history = History("sensor.t", "Temp", "°C", [
            HistoryPoint("20", "2024-06-01T08:00:00+00:00"),
            HistoryPoint("22", "2024-06-01T09:00:00+00:00"),
        ])
        spec = value_to_spec(history)
        assert isinstance(spec, SparklineSpec)
        assert (spec.min, spec.max, spec.current) == (20.0, 22.0, 22.0)

    def test_state_history_is_timeline(self):
        history = History("light.k", "Kitchen", None, [
            HistoryPoint("on", "2024-06-01T08:00:00+00:00"),
            HistoryPoint("off", "2024-06-01T09:00:00+00:00"),
        ])
        spec = value_to_spec(history)
        assert isinstance(spec, TimelineSpec)
        assert [s[2] for s in spec.segments] == ["on", "off"]

    def test_empty_history(self):
        assert value_to_spec(History("x.y", "x", None, [])) == TextSpec(content="No history data.")

    def test_services(self):
        spec = value_to_spec(ServiceList([{"domain": "light", "service": "turn_on", "fields": ["brightness"]}]))
        assert isinstance(spec, VStackSpec)
        assert spec.children[1].rows[0] == ["light", "turn_on", "-", "brightness"]

    def test_dict_is_key_value(self):
        assert value_to_spec({"a": 1, "b": "x"}) == KeyValueSpec(pairs=[("a", "1"), ("b", "x")])

    def test_empty_containers_are_repr(self):
        assert value_to_spec([]) == TextSpec(content="[]")
        assert value_to_spec({}) == TextSpec(content="{}")

    def test_help_text(self):
        from sandbox.api import HelpText
        assert isinstance(value_to_spec(HelpText("usage")), HelpSpec)

    def test_specs_pass_through(self):
        spec = ErrorSpec(message="x")
        assert value_to_spec(spec) is spec
