"""
host/ — Host Call Bridge and the functions it fulfils.

The bridge itself lives in host.bridge and is imported from there; it
depends on safety/, which in turn depends on the wire types below.
"""

from host.homeassistant import HomeAssistantAPI, HomeAssistantHost
from host.registry import HostFunctionRegistry
from host.types import Approver, Fulfiller, HostCallRequest, HostCallResult

__all__ = [
    "HostFunctionRegistry",
    "HomeAssistantAPI",
    "HomeAssistantHost",
    "HostCallRequest",
    "HostCallResult",
    "Fulfiller",
    "Approver",
]
