"""
host/registry.py — Host Function Registry

Maps host method names (what the sandbox asks for) to async handlers (what
the host actually does). The registry is itself a valid fulfiller: pass
`registry.fulfill` wherever a Fulfiller is expected.

Handlers register via the decorator or programmatically:

    registry = HostFunctionRegistry()

    @registry.register("get_state", description="One entity's state")
    async def get_state(entity_id: str) -> dict:
        ...

    payload = await registry.fulfill("get_state", {"entity_id": "sun.sun"})

fulfill() never raises: an unknown method, bad parameters, or a handler
exception all come back as {"error": "..."} payloads.
"""

from __future__ import annotations

import functools
import json
from dataclasses import dataclass
from typing import Any, Callable, Optional

from exceptions import UnknownHostMethodError
from observability.logger import get_logger

log = get_logger(__name__)


@dataclass
class HostMethod:
    name: str
    handler: Callable
    description: str = ""
    effectful: bool = False


class HostFunctionRegistry:
    """
    Registry of async host handlers keyed by method name.

    Thread-safe for reads (dict lookups). Not designed for concurrent writes.
    """

    def __init__(self) -> None:
        self._methods: dict[str, HostMethod] = {}

    def register(
        self,
        name: str,
        description: str = "",
        effectful: bool = False,
    ) -> Callable:
        """Decorator to register an async handler under `name`."""
        def decorator(fn: Callable) -> Callable:
            self.register_method(name, fn, description=description, effectful=effectful)

            @functools.wraps(fn)
            async def wrapper(*args, **kwargs):
                return await fn(*args, **kwargs)

            return wrapper

        return decorator

    def register_method(
        self,
        name: str,
        handler: Callable,
        description: str = "",
        effectful: bool = False,
    ) -> None:
        """Programmatic registration (alternative to decorator)."""
        self._methods[name] = HostMethod(
            name=name,
            handler=handler,
            description=description,
            effectful=effectful,
        )
        log.debug("host.registered", method=name, effectful=effectful)

    def get(self, name: str) -> Optional[HostMethod]:
        return self._methods.get(name)

    def is_registered(self, name: str) -> bool:
        return name in self._methods

    def list_names(self) -> list[str]:
        return sorted(self._methods)

    def effectful_methods(self) -> set[str]:
        return {m.name for m in self._methods.values() if m.effectful}

    async def fulfill(self, method: str, params: dict[str, Any]) -> str:
        """Run the handler for `method` and return its JSON payload."""
        entry = self._methods.get(method)
        if entry is None:
            err = UnknownHostMethodError(method)
            log.warning("host.unknown_method", method=method)
            return json.dumps({"error": str(err)})

        try:
            raw = await entry.handler(**(params or {}))
        except TypeError as e:
            log.warning("host.bad_params", method=method, error=str(e))
            return json.dumps({"error": f"Invalid parameters for {method}: {e}"})
        except Exception as e:
            log.error("host.handler_error", method=method, error=str(e), exc_info=True)
            return json.dumps({"error": f"{method} failed: {type(e).__name__}: {e}"})

        return _normalise_payload(raw)

    def __len__(self) -> int:
        return len(self._methods)

    def __repr__(self) -> str:
        return f"<HostFunctionRegistry methods={self.list_names()}>"


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _normalise_payload(result: Any) -> str:
    """Convert any handler return value to a JSON string."""
    if result is None:
        return "null"
    if isinstance(result, str):
        # handlers may return pre-encoded JSON; anything else is a JSON string
        try:
            json.loads(result)
            return result
        except ValueError:
            return json.dumps(result)
    return json.dumps(result, default=str)
