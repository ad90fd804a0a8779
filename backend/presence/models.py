"""Pydantic models for presence detection."""

from enum import Enum

from pydantic import BaseModel, field_validator

from config import DEFAULT_PROBE_COUNT, DEFAULT_PROBE_TIMEOUT


class PresenceEvent(str, Enum):
    """Events emitted by the presence service."""
    PING_RESULT = "ping-result"
    PRESENT = "present"
    NOT_PRESENT = "not-present"


class ServiceState(str, Enum):
    """Lifecycle states of the scan scheduler."""
    IDLE = "idle"
    CHECKING_AVAILABILITY = "checking-availability"
    SCANNING = "scanning"
    STOPPING = "stopping"


class PingOptions(BaseModel):
    """Parameters passed to every probe invocation."""
    count: int = DEFAULT_PROBE_COUNT
    timeout_secs: float = DEFAULT_PROBE_TIMEOUT

    # Falsy values fall back to the defaults, never to a previous value.
    # No range check: negative numbers pass through.
    @field_validator("count", mode="before")
    @classmethod
    def _default_count(cls, value):
        return value or DEFAULT_PROBE_COUNT

    @field_validator("timeout_secs", mode="before")
    @classmethod
    def _default_timeout(cls, value):
        return value or DEFAULT_PROBE_TIMEOUT


class PingResult(BaseModel):
    """Outcome of a single probe against one device."""
    address: str
    is_present: bool


class PresenceStatus(BaseModel):
    """Snapshot of the service, exposed to the API."""
    running: bool
    state: ServiceState
    is_present: bool
    present_devices: list[str]
    devices: list[str]
    interval_seconds: float
    ping_options: PingOptions
