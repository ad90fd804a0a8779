"""REST API routes for the presence monitor."""

import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from presence.errors import PresenceError
from presence.models import PingOptions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# This will be injected by main.py at startup
_presence_service = None


def init_routes(presence_service) -> None:
    """Inject service dependencies into the routes module."""
    global _presence_service
    _presence_service = presence_service


# --- Devices ---

class DevicesBody(BaseModel):
    devices: list[str]


@router.get("/devices")
async def list_devices():
    """Return the addresses being scanned."""
    return {"devices": _presence_service.get_devices()}


@router.post("/devices")
async def add_devices(body: DevicesBody):
    _presence_service.add_devices(body.devices)
    return {"devices": _presence_service.get_devices()}


@router.put("/devices")
async def set_devices(body: DevicesBody):
    """Replace the whole device list."""
    _presence_service.set_devices(body.devices)
    return {"devices": _presence_service.get_devices()}


@router.post("/devices/remove")
async def remove_devices(body: DevicesBody):
    _presence_service.remove_devices(body.devices)
    return {"devices": _presence_service.get_devices()}


# --- Settings ---

class PingOptionsBody(BaseModel):
    count: int | None = None
    timeout_secs: float | None = None


class IntervalBody(BaseModel):
    seconds: float


@router.get("/ping-options")
async def get_ping_options():
    return _presence_service.get_ping_options().model_dump()


@router.put("/ping-options")
async def set_ping_options(body: PingOptionsBody):
    """Replace the probe options; omitted fields revert to defaults."""
    _presence_service.set_ping_options(body.model_dump())
    return _presence_service.get_ping_options().model_dump()


@router.get("/interval")
async def get_interval():
    return {"seconds": _presence_service.get_interval_seconds()}


@router.put("/interval")
async def set_interval(body: IntervalBody):
    _presence_service.set_interval_seconds(body.seconds)
    return {"seconds": _presence_service.get_interval_seconds()}


# --- Scanning ---

class StartBody(BaseModel):
    report_first_result: bool = True


@router.post("/start")
async def start_scan(body: StartBody | None = None):
    report_first_result = body.report_first_result if body else True
    try:
        await _presence_service.start(report_first_result=report_first_result)
    except PresenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"status": "started"}


@router.post("/stop")
async def stop_scan():
    await _presence_service.stop()
    return {"status": "stopped"}


@router.get("/status")
async def get_status():
    return _presence_service.status().model_dump(mode="json")
