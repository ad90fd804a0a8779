"""Tests for the REST API and WebSocket broadcasting."""

import json
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from api.routes import init_routes
from api.websocket import PresenceBroadcaster
from main import app, presence_service
from presence.errors import ProbeToolUnavailableError
from presence.models import PresenceEvent
from presence.service import PresenceService


@pytest.fixture
def service():
    """Fresh service injected into the routes for each test."""
    svc = PresenceService(scan_interval=15)
    init_routes(svc)
    yield svc
    init_routes(presence_service)


@pytest.fixture
def client(service):
    # No context manager: lifespan (autostart, device loading) stays off
    return TestClient(app)


class TestDeviceRoutes:

    def test_list_empty(self, client):
        response = client.get("/api/devices")

        assert response.status_code == 200
        assert response.json() == {"devices": []}

    def test_add_normalizes(self, client):
        response = client.post(
            "/api/devices", json={"devices": ["AA:BB:CC:DD:EE:FF", "aa:bb:cc:dd:ee:ff"]}
        )

        assert response.json() == {"devices": ["aa:bb:cc:dd:ee:ff"]}

    def test_put_replaces(self, client, service):
        service.add_devices(["bb:bb:bb:bb:bb:bb"])

        response = client.put("/api/devices", json={"devices": ["AA:AA:AA:AA:AA:AA"]})

        assert response.json() == {"devices": ["aa:aa:aa:aa:aa:aa"]}

    def test_remove(self, client, service):
        service.add_devices(["aa:aa:aa:aa:aa:aa", "bb:bb:bb:bb:bb:bb"])

        response = client.post("/api/devices/remove", json={"devices": ["AA:AA:AA:AA:AA:AA"]})

        assert response.json() == {"devices": ["bb:bb:bb:bb:bb:bb"]}

    def test_invalid_body_rejected(self, client):
        response = client.post("/api/devices", json={"devices": "aa:aa"})

        assert response.status_code == 422


class TestSettingsRoutes:

    def test_get_ping_options(self, client):
        response = client.get("/api/ping-options")

        assert response.json() == {"count": 1, "timeout_secs": 5}

    def test_put_ping_options_defaults_missing_fields(self, client):
        client.put("/api/ping-options", json={"count": 3, "timeout_secs": 8})
        response = client.put("/api/ping-options", json={"count": 0})

        assert response.json() == {"count": 1, "timeout_secs": 5}

    def test_interval_round_trip(self, client, service):
        response = client.put("/api/interval", json={"seconds": 30})

        assert response.json() == {"seconds": 30}
        assert service.get_interval_seconds() == 30
        assert client.get("/api/interval").json() == {"seconds": 30}


class TestScanRoutes:

    def test_start_passes_flag(self, client, service):
        service.start = AsyncMock()

        response = client.post("/api/start", json={"report_first_result": False})

        assert response.json() == {"status": "started"}
        service.start.assert_awaited_once_with(report_first_result=False)

    def test_start_without_body_reports_first_result(self, client, service):
        service.start = AsyncMock()

        client.post("/api/start")

        service.start.assert_awaited_once_with(report_first_result=True)

    def test_start_unavailable_tool(self, client, service):
        service.start = AsyncMock(side_effect=ProbeToolUnavailableError("l2ping missing"))

        response = client.post("/api/start")

        assert response.status_code == 503
        assert "l2ping missing" in response.json()["detail"]

    def test_stop(self, client, service):
        service.stop = AsyncMock()

        response = client.post("/api/stop")

        assert response.json() == {"status": "stopped"}
        service.stop.assert_awaited_once()

    def test_status(self, client, service):
        service.add_devices(["aa:aa:aa:aa:aa:aa"])

        body = client.get("/api/status").json()

        assert body["state"] == "idle"
        assert body["running"] is False
        assert body["is_present"] is False
        assert body["devices"] == ["aa:aa:aa:aa:aa:aa"]
        assert body["ping_options"] == {"count": 1, "timeout_secs": 5}


class TestPresenceBroadcaster:

    @pytest.mark.asyncio
    async def test_connect_sends_status_snapshot(self):
        service = PresenceService(scan_interval=15)
        service.add_devices(["aa:aa:aa:aa:aa:aa"])
        broadcaster = PresenceBroadcaster(service)
        ws = AsyncMock()

        await broadcaster.connect(ws)

        ws.accept.assert_awaited_once()
        message = json.loads(ws.send_text.await_args.args[0])
        assert message["event"] == "status"
        assert message["data"]["state"] == "idle"
        assert message["data"]["devices"] == ["aa:aa:aa:aa:aa:aa"]
        assert "timestamp" in message
        assert broadcaster.client_count == 1

    @pytest.mark.asyncio
    async def test_presence_change_carries_collective_state(self):
        broadcaster = PresenceBroadcaster(PresenceService())
        ws = AsyncMock()
        await broadcaster.connect(ws)

        await broadcaster.handle_event(PresenceEvent.PRESENT, {"address": "aa:aa:aa:aa:aa:aa"})
        await broadcaster.handle_event(PresenceEvent.NOT_PRESENT, {"address": "aa:aa:aa:aa:aa:aa"})

        frames = [json.loads(call.args[0]) for call in ws.send_text.await_args_list[1:]]
        assert [(f["event"], f["data"]) for f in frames] == [
            ("present", {"address": "aa:aa:aa:aa:aa:aa", "is_present": True}),
            ("not-present", {"address": "aa:aa:aa:aa:aa:aa", "is_present": False}),
        ]

    @pytest.mark.asyncio
    async def test_ping_result_forwarded_as_is(self):
        broadcaster = PresenceBroadcaster(PresenceService())
        ws = AsyncMock()
        await broadcaster.connect(ws)

        data = {"address": "bb:bb:bb:bb:bb:bb", "is_present": False}
        await broadcaster.handle_event(PresenceEvent.PING_RESULT, data)

        frame = json.loads(ws.send_text.await_args.args[0])
        assert frame["event"] == "ping-result"
        assert frame["data"] == data

    @pytest.mark.asyncio
    async def test_dead_clients_dropped(self):
        broadcaster = PresenceBroadcaster(PresenceService())
        alive = AsyncMock()
        dead = AsyncMock()
        await broadcaster.connect(alive)
        await broadcaster.connect(dead)
        dead.send_text.side_effect = RuntimeError("closed")

        await broadcaster.handle_event(PresenceEvent.NOT_PRESENT, {"address": "aa:aa:aa:aa:aa:aa"})

        assert broadcaster.client_count == 1
        assert alive.send_text.await_count == 2

    @pytest.mark.asyncio
    async def test_disconnect_unknown_client_is_noop(self):
        broadcaster = PresenceBroadcaster(PresenceService())

        broadcaster.disconnect(AsyncMock())

        assert broadcaster.client_count == 0

    def test_websocket_endpoint_sends_status(self, client):
        with client.websocket_connect("/ws") as websocket:
            message = websocket.receive_json()

        assert message["event"] == "status"
        assert "is_present" in message["data"]
