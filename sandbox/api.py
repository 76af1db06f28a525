"""
sandbox/api.py — Functions Visible to Sandboxed Code

Everything the model's code can call lives here. Each function that needs
live data turns into a host call: the worker thread blocks, the request
surfaces from Interpreter.eval(), and the answer comes back through
Interpreter.fulfill_host_call(). From the sandboxed code's point of view the
call is simply synchronous.

Return values are small typed wrappers (EntityState, History, Logbook, ...)
so that the final value of a block can be displayed richly by
sandbox/display.py while staying easy to filter and slice in code.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from exceptions import HostCallError
from render.spec import CalendarEventEntry, LogbookEntry

ON_STATES = frozenset({"on", "home", "open", "playing", "active"})

_SKIP_ATTRIBUTES = frozenset({
    "friendly_name",
    "icon",
    "entity_picture",
    "supported_features",
    "attribution",
})

# Hours default for ago() when the duration text can't be parsed
DEFAULT_AGO_HOURS = 6


# ─────────────────────────────────────────────────────────────────────────────
# Value types
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EntityState:
    entity_id: str
    state: str
    name: str
    domain: str
    device_class: Optional[str] = None
    unit: Optional[str] = None
    last_changed: str = ""
    last_updated: str = ""
    attributes: dict = field(default_factory=dict, hash=False, compare=False)

    @classmethod
    def from_payload(cls, data: dict) -> "EntityState":
        entity_id = data.get("entity_id", "")
        attrs = dict(data.get("attributes") or {})
        return cls(
            entity_id=entity_id,
            state=str(data.get("state", "")),
            name=attrs.get("friendly_name") or entity_id,
            domain=entity_id.split(".", 1)[0],
            device_class=attrs.get("device_class"),
            unit=attrs.get("unit_of_measurement"),
            last_changed=data.get("last_changed", ""),
            last_updated=data.get("last_updated", ""),
            attributes=attrs,
        )

    @property
    def is_on(self) -> bool:
        return self.state in ON_STATES

    @property
    def value(self) -> Optional[float]:
        """The state as a number, or None if it isn't numeric."""
        return _to_float(self.state)

    def display_attributes(self) -> list[tuple[str, str]]:
        return [(k, str(v)) for k, v in self.attributes.items() if k not in _SKIP_ATTRIBUTES]

    def __str__(self) -> str:
        unit = f" {self.unit}" if self.unit else ""
        return f"{self.entity_id}: {self.state}{unit}"


@dataclass(frozen=True)
class HistoryPoint:
    state: str
    last_changed: str

    @property
    def value(self) -> Optional[float]:
        return _to_float(self.state)


class History(list):
    """State changes of one entity, oldest first."""

    def __init__(self, entity_id: str, name: str, unit: Optional[str], points):
        super().__init__(points)
        self.entity_id = entity_id
        self.name = name
        self.unit = unit

    @property
    def values(self) -> list[float]:
        return [p.value for p in self if p.value is not None]


class Logbook(list):
    def __init__(self, entity_id: str, entries):
        super().__init__(entries)
        self.entity_id = entity_id


class CalendarEvents(list):
    def __init__(self, entity_id: str, entries):
        super().__init__(entries)
        self.entity_id = entity_id


@dataclass(frozen=True)
class StateDiff:
    """Two entities side by side: state first, then the union of their attributes."""
    a: EntityState
    b: EntityState

    def rows(self) -> list[tuple[str, str, str]]:
        keys = sorted(
            (set(self.a.attributes) | set(self.b.attributes)) - _SKIP_ATTRIBUTES
        )
        rows = [("state", self.a.state, self.b.state)]
        for key in keys:
            rows.append((key, _cell(self.a.attributes, key), _cell(self.b.attributes, key)))
        return rows

    def __str__(self) -> str:
        return f"{self.a.entity_id} vs {self.b.entity_id}"


class ServiceList(list):
    """Flat list of {domain, service, name, description, fields} dicts."""


class HelpText(str):
    pass


@dataclass(frozen=True)
class Now:
    iso: str
    date: str
    time: str
    day: str
    timezone: str
    epoch_ms: int = 0

    def __str__(self) -> str:
        return f"{self.date} {self.time} ({self.day}, {self.timezone})"


HELP_TEXT = """\
Signal Analyst sandbox — Python API

State & entities:
  state(id)                  One entity as EntityState (.state .name .unit .attributes .is_on .value)
  states([domain])           All entities, optionally one domain
  find(pattern)              Glob search on entity_id, e.g. find("*kitchen*")
  diff(a, b)                 Compare two entities: state and every attribute
  room(name)                 Entities in an area/room
  rooms()                    All areas/rooms

History & diagnostics:
  history(id, [hours])       State history (default 6h); .values gives the numbers
  logbook(id, [hours])       Logbook entries with the reason for each change
  events(id, [hours])        Calendar events ahead (default 14 days)
  error_log()                Last 50 lines of the HA error log
  check_config()             Validate the HA configuration

Services:
  services([domain])         Available services
  call_service(d, s, {data}) Call a service (asks the user first)

Utilities:
  template(tpl)              Render a Jinja2 template
  now()                      Current date and time
  ago("6h")                  Hours for "30m", "6h", "2d", "1w"
  show(value)                Display a value (rich for entities)
  print(...)                 Plain output
"""


# ─────────────────────────────────────────────────────────────────────────────
# API
# ─────────────────────────────────────────────────────────────────────────────


class SandboxAPI:
    """
    The callable surface bound into the interpreter namespace.

    host_call: (method, params) -> JSON payload string. Blocks the calling
               worker thread until the host answers.
    emit:      receives show() values for display.
    """

    def __init__(
        self,
        host_call: Callable[[str, dict], str],
        emit: Callable[[Any], None],
    ) -> None:
        self._host_call = host_call
        self._emit = emit

    def bindings(self) -> dict[str, Callable]:
        return {
            "state": self.state,
            "states": self.states,
            "find": self.find,
            "diff": self.diff,
            "history": self.history,
            "logbook": self.logbook,
            "events": self.events,
            "template": self.template,
            "services": self.services,
            "call_service": self.call_service,
            "room": self.room,
            "rooms": self.rooms,
            "now": self.now,
            "ago": self.ago,
            "show": self.show,
            "help": self.help,
            "check_config": self.check_config,
            "error_log": self.error_log,
        }

    def _call(self, method: str, allow_denied: bool = False, **params) -> Any:
        data = self._host_call(method, params)
        try:
            payload = json.loads(data)
        except (TypeError, ValueError):
            raise HostCallError(method, f"Failed to parse host response for {method}")
        if isinstance(payload, dict) and "error" in payload:
            if allow_denied and payload.get("denied") is True:
                return payload
            raise HostCallError(method, str(payload["error"]))
        return payload

    # ── State ─────────────────────────────────────────────────────────────────

    def state(self, entity_id: str) -> EntityState:
        return EntityState.from_payload(self._call("get_state", entity_id=entity_id))

    def states(self, domain: Optional[str] = None) -> list[EntityState]:
        params = {"domain": domain} if domain else {}
        return [EntityState.from_payload(s) for s in self._call("get_states", **params)]

    def find(self, pattern: str) -> list[EntityState]:
        return [EntityState.from_payload(s) for s in self._call("find_entities", pattern=pattern)]

    def diff(self, entity_a: str, entity_b: str) -> StateDiff:
        payload = self._call("get_diff", entity_a=entity_a, entity_b=entity_b)
        return StateDiff(
            EntityState.from_payload(payload.get("entity_a") or {}),
            EntityState.from_payload(payload.get("entity_b") or {}),
        )

    def room(self, name: str) -> list[EntityState]:
        payload = self._call("get_area_entities", area=name)
        return [EntityState.from_payload(s) for s in payload.get("entities", [])]

    def rooms(self) -> list[dict]:
        return self._call("get_areas")

    # ── History ───────────────────────────────────────────────────────────────

    def history(self, entity_id: str, hours: Any = 6) -> History:
        payload = self._call("get_history", entity_id=entity_id, hours=self._hours(hours, 6))
        rows = payload[0] if payload and isinstance(payload[0], list) else []
        attrs = (rows[0].get("attributes") or {}) if rows else {}
        return History(
            entity_id=entity_id,
            name=attrs.get("friendly_name") or entity_id,
            unit=attrs.get("unit_of_measurement"),
            points=[
                HistoryPoint(state=str(r.get("state", "")), last_changed=r.get("last_changed", ""))
                for r in rows
            ],
        )

    def logbook(self, entity_id: str, hours: Any = 6) -> Logbook:
        payload = self._call("get_logbook", entity_id=entity_id, hours=self._hours(hours, 6))
        return Logbook(entity_id, [
            LogbookEntry(**{"when": "", "name": "", **_known(LogbookEntry, e)})
            for e in payload
        ])

    def events(self, entity_id: str, hours: Any = 24 * 14) -> CalendarEvents:
        payload = self._call("get_events", entity_id=entity_id, hours=self._hours(hours, 24 * 14))
        entries = []
        for e in payload:
            start = e.get("start")
            entries.append(CalendarEventEntry(
                summary=e.get("summary") or "",
                start=start,
                end=e.get("end"),
                description=e.get("description"),
                location=e.get("location"),
                # date-only starts (no "T") are all-day events
                all_day=bool(start) and "T" not in start,
            ))
        return CalendarEvents(entity_id, entries)

    # ── Templates / services ──────────────────────────────────────────────────

    def template(self, text: str) -> str:
        return str(self._call("render_template", template=text).get("result", ""))

    def services(self, domain: Optional[str] = None) -> ServiceList:
        params = {"domain": domain} if domain else {}
        return ServiceList(self._call("get_services", **params))

    def call_service(self, domain: str, service: str, data: Optional[dict] = None) -> dict:
        return self._call(
            "call_service",
            allow_denied=True,
            domain=domain,
            service=service,
            service_data=dict(data or {}),
        )

    # ── Diagnostics ───────────────────────────────────────────────────────────

    def check_config(self) -> dict:
        return self._call("check_config")

    def error_log(self) -> str:
        return str(self._call("get_error_log").get("log", ""))

    # ── Local helpers (no host call) ──────────────────────────────────────────

    def now(self) -> Now:
        p = self._call("get_datetime")
        return Now(
            iso=p.get("iso", ""),
            date=p.get("date", ""),
            time=p.get("time", ""),
            day=p.get("day_of_week", ""),
            timezone=p.get("ha_timezone") or p.get("timezone", ""),
            epoch_ms=int(p.get("epoch_ms") or 0),
        )

    def ago(self, spec: Any = "6h") -> int:
        """Hours for a relative spec: "30m", "6h", "2d", "1w" (bare numbers are hours)."""
        if isinstance(spec, bool):
            return DEFAULT_AGO_HOURS
        if isinstance(spec, (int, float)):
            return int(spec)
        if not isinstance(spec, str) or not spec.strip():
            return DEFAULT_AGO_HOURS

        text = spec.strip().lower()
        if text[-1].isalpha():
            num_str, suffix = text[:-1], text[-1]
        else:
            num_str, suffix = text, "h"

        try:
            num = float(num_str)
        except ValueError:
            return DEFAULT_AGO_HOURS

        if suffix == "m":
            hours = max(num / 60.0, 1.0)
        elif suffix == "d":
            hours = num * 24
        elif suffix == "w":
            hours = num * 168
        else:
            hours = num
        return int(round(hours))

    def show(self, value: Any) -> None:
        self._emit(value)

    def help(self) -> HelpText:
        return HelpText(HELP_TEXT)

    def _hours(self, hours: Any, default: int) -> float:
        if isinstance(hours, str):
            return self.ago(hours)
        if isinstance(hours, (int, float)) and not isinstance(hours, bool) and hours > 0:
            return hours
        return default


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _to_float(text: str) -> Optional[float]:
    try:
        return float(text)
    except (TypeError, ValueError):
        return None


def _known(model, data: dict) -> dict:
    """Keep only keys the model declares, dropping None so defaults apply."""
    return {k: v for k, v in data.items() if k in model.model_fields and v is not None}


def _cell(attrs: dict, key: str) -> str:
    if key not in attrs:
        return "—"
    value = attrs[key]
    return value if isinstance(value, str) else json.dumps(value, default=str)
