"""
host/homeassistant.py — Home Assistant Host Functions

The concrete fulfiller behind the sandbox API. Every read goes through the
Home Assistant REST API with a long-lived access token; the sandbox never
sees the token or the URL.

Registered host methods:
  - get_states        → all states, optionally one domain
  - get_state         → one entity
  - find_entities     → glob match on entity_id (case-insensitive)
  - get_history       → state history for the last N hours
  - get_logbook       → logbook entries for the last N hours
  - get_events        → calendar events for the next N hours
  - render_template   → Jinja2 template rendered by HA
  - get_services      → flat service list, optionally one domain
  - call_service      → EFFECTFUL, only reached after confirmation
  - get_datetime      → current date/time in the HA timezone
  - check_config      → HA configuration check
  - get_error_log     → last 50 lines of the HA error log
  - get_areas         → areas (rooms), via template rendering
  - get_area_entities → entities of one area, via template rendering

Each handler returns the method's success shape or {"error": "..."}; an HTTP
failure never escapes as an exception.
"""

from __future__ import annotations

import json
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx

from exceptions import HomeAssistantError
from host.registry import HostFunctionRegistry
from observability.logger import get_logger

log = get_logger(__name__)

_DEFAULT_URL = "http://homeassistant.local:8123"
_TIMEOUT = 20.0
_ERROR_LOG_LINES = 50

_AREAS_TEMPLATE = (
    "[{% for a in areas() %}"
    '{"area_id": {{ a | tojson }}, "name": {{ area_name(a) | tojson }}}'
    "{% if not loop.last %},{% endif %}{% endfor %}]"
)
_AREA_ENTITIES_TEMPLATE = "{{ area_entities(%s) | list | tojson }}"


# ─────────────────────────────────────────────────────────────────────────────
# REST client
# ─────────────────────────────────────────────────────────────────────────────


class HomeAssistantAPI:
    """
    Thin async wrapper over the HA REST API.

    Raises HomeAssistantError for transport failures and non-2xx answers;
    callers above (HomeAssistantHost, ConversationClient) turn those into
    payloads or LLM errors.
    """

    def __init__(
        self,
        base_url: str = _DEFAULT_URL,
        token: Optional[str] = None,
        timeout_seconds: float = _TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token = token
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        body: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Call /api/<path>. Returns decoded JSON, or text for non-JSON bodies."""
        url = f"{self.base_url}/api/{path.lstrip('/')}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                headers=self._headers(),
                transport=self._transport,
            ) as client:
                resp = await client.request(method, url, params=params, json=body)
                resp.raise_for_status()
        except httpx.TimeoutException:
            raise HomeAssistantError(f"Request timed out after {self.timeout_seconds:g}s")
        except httpx.HTTPStatusError as e:
            raise HomeAssistantError(
                f"HTTP {e.response.status_code}: {e.response.text[:200]}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise HomeAssistantError(f"Network error: {e}") from e

        log.debug("ha.request", method=method, path=path, status=resp.status_code)

        if "application/json" in resp.headers.get("content-type", ""):
            return resp.json()
        return resp.text

    async def get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, body: Optional[dict[str, Any]] = None) -> Any:
        return await self.request("POST", path, body=body)

    # ── Convenience ───────────────────────────────────────────────────────────

    async def states(self) -> list[dict]:
        return await self.get("states")

    async def render_template(self, template: str) -> str:
        result = await self.post("template", {"template": template})
        return result if isinstance(result, str) else json.dumps(result)

    async def config(self) -> dict:
        return await self.get("config")

    async def conversation_process(self, text: str, agent_id: Optional[str] = None) -> dict:
        body: dict[str, Any] = {"text": text}
        if agent_id:
            body["agent_id"] = agent_id
        return await self.post("conversation/process", body)


# ─────────────────────────────────────────────────────────────────────────────
# Host functions
# ─────────────────────────────────────────────────────────────────────────────


class HomeAssistantHost:
    """
    Registers every Home Assistant host method on a HostFunctionRegistry.

    Usage:
        host = HomeAssistantHost(HomeAssistantAPI(url, token))
        context = RunContext(fulfiller=host.fulfill, approver=...)
    """

    def __init__(
        self,
        api: HomeAssistantAPI,
        registry: Optional[HostFunctionRegistry] = None,
    ) -> None:
        self.api = api
        self.registry = registry or HostFunctionRegistry()
        self._register_all()

    @classmethod
    def from_settings(cls, settings) -> "HomeAssistantHost":
        api = HomeAssistantAPI(
            base_url=settings.home_assistant.url,
            token=settings.ha_token,
            timeout_seconds=settings.home_assistant.timeout_seconds,
        )
        return cls(api)

    async def fulfill(self, method: str, params: dict[str, Any]) -> str:
        return await self.registry.fulfill(method, params)

    def _register_all(self) -> None:
        r = self.registry.register_method
        r("get_states", self.get_states, "All entity states, optionally one domain")
        r("get_state", self.get_state, "One entity's state")
        r("find_entities", self.find_entities, "Glob search over entity ids")
        r("get_diff", self.get_diff, "Two entity states side by side")
        r("get_history", self.get_history, "State history for the last N hours")
        r("get_logbook", self.get_logbook, "Logbook entries for the last N hours")
        r("get_events", self.get_events, "Calendar events for the next N hours")
        r("render_template", self.render_template, "Render a Jinja2 template")
        r("get_services", self.get_services, "Available services")
        r("call_service", self.call_service, "Call a service", effectful=True)
        r("get_datetime", self.get_datetime, "Current date and time")
        r("check_config", self.check_config, "Validate HA configuration")
        r("get_error_log", self.get_error_log, "Recent HA error log lines")
        r("get_areas", self.get_areas, "All areas")
        r("get_area_entities", self.get_area_entities, "Entities in one area")

    # ── States ────────────────────────────────────────────────────────────────

    async def get_states(self, domain: Optional[str] = None) -> Any:
        try:
            states = await self.api.states()
        except HomeAssistantError as e:
            return {"error": f"States fetch failed: {e}"}
        if domain:
            states = [s for s in states if s.get("entity_id", "").startswith(f"{domain}.")]
        return sorted(states, key=lambda s: s.get("entity_id", ""))

    async def get_state(self, entity_id: str) -> Any:
        try:
            return await self.api.get(f"states/{entity_id}")
        except HomeAssistantError as e:
            if e.status_code == 404:
                return {"error": f"Entity not found: {entity_id}"}
            return {"error": f"State fetch failed: {e}"}

    async def find_entities(self, pattern: str) -> Any:
        try:
            states = await self.api.states()
        except HomeAssistantError as e:
            return {"error": f"States fetch failed: {e}"}
        regex = _glob_to_regex(pattern)
        matches = [s for s in states if regex.match(s.get("entity_id", ""))]
        return sorted(matches, key=lambda s: s.get("entity_id", ""))

    async def get_diff(self, entity_a: str, entity_b: str) -> Any:
        a = await self.get_state(entity_a)
        if "error" in a:
            return a
        b = await self.get_state(entity_b)
        if "error" in b:
            return b
        return {"entity_a": a, "entity_b": b}

    # ── History / logbook / calendar ──────────────────────────────────────────

    async def get_history(self, entity_id: str, hours: float = 6) -> Any:
        start = _utcnow() - timedelta(hours=hours or 6)
        try:
            return await self.api.get(
                f"history/period/{_iso(start)}",
                params={
                    "filter_entity_id": entity_id,
                    "minimal_response": "",
                    "no_attributes": "",
                },
            )
        except HomeAssistantError as e:
            return {"error": f"History fetch failed: {e}"}

    async def get_logbook(self, entity_id: str, hours: float = 6) -> Any:
        end = _utcnow()
        start = end - timedelta(hours=hours or 6)
        try:
            raw = await self.api.get(
                f"logbook/{_iso(start)}",
                params={"entity": entity_id, "end_time": _iso(end)},
            )
        except HomeAssistantError as e:
            return {"error": f"Logbook fetch failed: {e}"}

        return [
            {
                "when": e.get("when"),
                "name": e.get("name"),
                "state": e.get("state"),
                "message": e.get("message"),
                "entity_id": e.get("entity_id"),
                # context says WHY the change happened
                "context_user": e.get("context_name") or e.get("context_user_id"),
                "context_event": e.get("context_event_type"),
                "context_domain": e.get("context_domain"),
                "context_service": e.get("context_service"),
                "context_entity": e.get("context_entity_id"),
                "context_entity_name": e.get("context_entity_id_name"),
            }
            for e in (raw or [])
        ]

    async def get_events(self, entity_id: str, hours: float = 24 * 14) -> Any:
        start = _utcnow()
        end = start + timedelta(hours=hours or 24 * 14)
        try:
            raw = await self.api.get(
                f"calendars/{entity_id}",
                params={"start": _iso(start), "end": _iso(end)},
            )
        except HomeAssistantError as e:
            return {"error": f"Calendar events fetch failed: {e}"}

        return [
            {
                "summary": ev.get("summary", ""),
                "start": _flatten_when(ev.get("start")),
                "end": _flatten_when(ev.get("end")),
                "description": ev.get("description"),
                "location": ev.get("location"),
            }
            for ev in (raw or [])
        ]

    # ── Templates / services ──────────────────────────────────────────────────

    async def render_template(self, template: str) -> Any:
        try:
            return {"result": await self.api.render_template(template)}
        except HomeAssistantError as e:
            return {"error": f"Template render failed: {e}"}

    async def get_services(self, domain: Optional[str] = None) -> Any:
        try:
            raw = await self.api.get("services")
        except HomeAssistantError as e:
            return {"error": f"Services fetch failed: {e}"}

        entries = []
        for block in sorted(raw or [], key=lambda b: b.get("domain", "")):
            d = block.get("domain", "")
            if domain and d != domain:
                continue
            for name, definition in (block.get("services") or {}).items():
                definition = definition or {}
                entries.append({
                    "domain": d,
                    "service": name,
                    "name": definition.get("name") or name,
                    "description": definition.get("description") or "",
                    "fields": sorted((definition.get("fields") or {}).keys()),
                })
        return entries

    async def call_service(
        self,
        domain: Optional[str] = None,
        service: Optional[str] = None,
        service_data: Optional[dict] = None,
        data: Optional[dict] = None,
    ) -> Any:
        if not domain or not service:
            return {"error": "call_service requires domain and service"}

        body = dict(service_data or data or {})
        log.info("ha.call_service", domain=domain, service=service, data=body)
        try:
            await self.api.post(f"services/{domain}/{service}", body)
        except HomeAssistantError as e:
            return {"error": f"Service call failed: {e}", "domain": domain, "service": service}
        return {"success": True, "domain": domain, "service": service, "service_data": body}

    # ── Diagnostics ───────────────────────────────────────────────────────────

    async def get_datetime(self) -> Any:
        tz_name = "UTC"
        try:
            tz_name = (await self.api.config()).get("time_zone") or "UTC"
        except HomeAssistantError as e:
            log.warning("ha.config_unavailable", error=str(e))

        try:
            tz = ZoneInfo(tz_name)
        except ZoneInfoNotFoundError:
            tz_name, tz = "UTC", timezone.utc

        now = datetime.now(tz)
        return {
            "iso": now.isoformat(),
            "local": now.strftime("%Y-%m-%d %H:%M:%S"),
            "date": now.strftime("%Y-%m-%d"),
            "time": now.strftime("%H:%M:%S"),
            "timezone": tz_name,
            "day_of_week": now.strftime("%A"),
            "epoch_ms": int(time.time() * 1000),
            "ha_timezone": tz_name,
        }

    async def check_config(self) -> Any:
        try:
            return await self.api.post("config/core/check_config")
        except HomeAssistantError as e:
            return {"error": f"Config check failed: {e}"}

    async def get_error_log(self) -> Any:
        try:
            text = await self.api.get("error_log")
        except HomeAssistantError as e:
            return {"error": f"Error log fetch failed: {e}"}
        lines = (text if isinstance(text, str) else json.dumps(text)).split("\n")
        return {"log": "\n".join(lines[-_ERROR_LOG_LINES:]), "total_lines": len(lines)}

    # ── Areas ─────────────────────────────────────────────────────────────────

    async def get_areas(self) -> Any:
        try:
            return await self._areas()
        except (HomeAssistantError, ValueError) as e:
            return {"error": f"Failed to fetch areas: {e}"}

    async def get_area_entities(self, area: str) -> Any:
        try:
            areas = await self._areas()
            match = _match_area(areas, area or "")
            if match is None:
                available = ", ".join(a["name"] for a in areas)
                return {"error": f'Area not found: "{area}". Available areas: {available}'}

            rendered = await self.api.render_template(
                _AREA_ENTITIES_TEMPLATE % json.dumps(match["area_id"])
            )
            entity_ids = set(json.loads(rendered))
            states = await self.api.states()
        except (HomeAssistantError, ValueError) as e:
            return {"error": f"Failed to fetch area entities: {e}"}

        entities = sorted(
            (s for s in states if s.get("entity_id") in entity_ids),
            key=lambda s: s["entity_id"],
        )
        return {"area_id": match["area_id"], "area_name": match["name"], "entities": entities}

    async def _areas(self) -> list[dict]:
        rendered = await self.api.render_template(_AREAS_TEMPLATE)
        areas = json.loads(rendered)
        return sorted(areas, key=lambda a: (a.get("name") or "").lower())


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def _glob_to_regex(pattern: str) -> re.Pattern:
    body = re.escape(pattern).replace(r"\*", ".*").replace(r"\?", ".")
    return re.compile(f"^{body}$", re.IGNORECASE)


def _flatten_when(value: Any) -> Optional[str]:
    """HA calendars give {"dateTime": ...} or {"date": ...}; keep just the string."""
    if isinstance(value, dict):
        return value.get("dateTime") or value.get("date")
    return value


def _match_area(areas: list[dict], query: str) -> Optional[dict]:
    """Exact id, exact name, name substring, then id substring."""
    q = query.lower().replace("_", " ").replace("-", " ")
    for predicate in (
        lambda a: a["area_id"] == query,
        lambda a: a["name"].lower() == q,
        lambda a: q in a["name"].lower(),
        lambda a: q in a["area_id"].replace("_", " "),
    ):
        for a in areas:
            if predicate(a):
                return a
    return None
