"""Tests for the plugin-facing webhook (plugin_bridge.py).

Verifies that:
- /health, /plugin/register, /commands/{fileKey}, /results speak the plugin's protocol
- polling with nothing queued is a normal empty response
- stale results are acknowledged with 200
- malformed requests are rejected with 400 and leave the relay untouched
- a full submit -> poll -> result cycle works over HTTP
- the uvicorn server is configured to keep stdout clean
"""

import asyncio
import os
import sys

import httpx
import pytest
from starlette.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
from command_relay import RemoteExecutionError
from conftest import run_pending
from plugin_bridge import build_webhook_app, create_webhook_server


@pytest.fixture
def client(relay):
    return TestClient(build_webhook_app(relay, public_url="http://localhost:3456"))


def asgi_client(relay):
    transport = httpx.ASGITransport(app=build_webhook_app(relay))
    return httpx.AsyncClient(transport=transport, base_url="http://relay")


# ============================================================
# Simple endpoints
# ============================================================


class TestEndpoints:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert "timestamp" in body

    def test_register(self, client, relay):
        resp = client.post("/plugin/register", json={"fileKey": "fileA", "pluginVersion": "2.0.0"})
        assert resp.status_code == 200
        assert resp.json() == {
            "accepted": True,
            "registered": True,
            "webhookUrl": "http://localhost:3456",
        }
        assert relay.snapshot()["hosts"]["fileA"]["version"] == "2.0.0"

    def test_register_requires_file_key(self, client, relay):
        resp = client.post("/plugin/register", json={"pluginVersion": "2.0.0"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "bad_request"
        assert relay.snapshot()["hosts"] == {}

    def test_empty_poll(self, client):
        """Polling with nothing queued returns an empty list, repeatedly."""
        for _ in range(3):
            resp = client.get("/commands/fileA")
            assert resp.status_code == 200
            assert resp.json() == {"commands": []}

    def test_stale_result_acknowledged(self, client):
        resp = client.post("/results", json={"operationId": "gone", "success": True, "data": {}})
        assert resp.status_code == 200
        assert resp.json() == {"acknowledged": True, "received": True}

    def test_result_requires_operation_id(self, client, relay):
        resp = client.post("/results", json={"success": True})
        assert resp.status_code == 400
        assert relay.snapshot()["stats"]["stale"] == 0

    def test_invalid_json(self, client):
        resp = client.post("/results", content=b"{not json", headers={"Content-Type": "application/json"})
        assert resp.status_code == 400
        assert "Invalid JSON" in resp.json()["detail"]

    def test_non_object_body(self, client):
        resp = client.post("/plugin/register", json=["fileA"])
        assert resp.status_code == 400

    def test_cors_preflight(self, client):
        """The plugin iframe (null origin) can reach the webhook."""
        resp = client.options(
            "/results",
            headers={"Origin": "null", "Access-Control-Request-Method": "POST"},
        )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] in ("*", "null")


# ============================================================
# Round trips over HTTP
# ============================================================


class TestRoundTrip:
    @pytest.mark.asyncio
    async def test_submit_poll_result(self, relay):
        task = asyncio.create_task(
            relay.submit("fileA", "CREATE_FRAME", {"width": 100, "height": 50}, 30))
        await run_pending()
        async with asgi_client(relay) as http:
            resp = await http.get("/commands/fileA")
            (command,) = resp.json()["commands"]
            assert command["action"] == "CREATE_FRAME"
            assert command["data"] == {"width": 100, "height": 50}
            assert "enqueuedAt" in command

            resp = await http.post("/results", json={
                "operationId": command["operationId"],
                "success": True,
                "data": {"nodeId": "1:23"},
                "error": None,
            })
            assert resp.json()["acknowledged"] is True
            assert (await http.get("/commands/fileA")).json() == {"commands": []}
        assert await task == {"nodeId": "1:23"}

    @pytest.mark.asyncio
    async def test_failure_result(self, relay):
        task = asyncio.create_task(relay.submit("fileA", "CREATE_TEXT", {"text": "x"}, 30))
        await run_pending()
        async with asgi_client(relay) as http:
            (command,) = (await http.get("/commands/fileA")).json()["commands"]
            await http.post("/results", json={
                "operationId": command["operationId"],
                "success": False,
                "error": "Font not loaded",
            })
        with pytest.raises(RemoteExecutionError, match="Font not loaded"):
            await task

    @pytest.mark.asyncio
    async def test_duplicate_result_over_http(self, relay):
        task = asyncio.create_task(relay.submit("fileA", "CREATE_BUTTON", {"label": "Go"}, 30))
        await run_pending()
        async with asgi_client(relay) as http:
            (command,) = (await http.get("/commands/fileA")).json()["commands"]
            body = {"operationId": command["operationId"], "success": True, "data": "once"}
            first = await http.post("/results", json=body)
            second = await http.post("/results", json=body)
        assert first.status_code == second.status_code == 200
        assert second.json()["acknowledged"] is True
        assert await task == "once"


# ============================================================
# Server construction
# ============================================================


class TestWebhookServer:
    def test_server_config(self, relay):
        server = create_webhook_server(relay, "127.0.0.1", 4567)
        assert server.config.host == "127.0.0.1"
        assert server.config.port == 4567
        assert server.config.access_log is False
