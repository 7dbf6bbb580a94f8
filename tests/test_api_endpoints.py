import asyncio
import json
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from fastapi.testclient import TestClient

from app.database import get_db
from app.main import app
from app.runtime import get_channel_registry, get_event_log, get_gateway_client, get_orchestrator
from app.services.channel_service import ChannelRegistry
from app.services.event_log import EventLog
from app.services.gateway_client import GatewayClient
from app.services.orchestrator import WorkflowOrchestrator, WorkflowToggles
from app.services.session_store import SessionStore

QR_BASE64 = "iVBORw0KGgo" + "A" * 200
EVO = {"baseUrl": "https://evo.example.com", "apiKey": "key"}


class GatewayStub:
    """Routes MockTransport requests by path; unknown paths answer 404."""

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404)
        status, body = route
        return httpx.Response(status, json=body)


@pytest.fixture
def registry():
    return ChannelRegistry()


@pytest.fixture
def gateway_stub():
    return GatewayStub()


@pytest.fixture
def client(registry, gateway_stub, session_factory):
    gateway = GatewayClient(timeout=1.0, transport=httpx.MockTransport(gateway_stub))
    orchestrator = WorkflowOrchestrator(
        SessionStore(), channels=registry, gateway=gateway, toggles=WorkflowToggles(), session_factory=session_factory
    )

    def _db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_channel_registry] = lambda: registry
    app.dependency_overrides[get_gateway_client] = lambda: gateway
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_event_log] = lambda: EventLog()
    app.dependency_overrides[get_db] = _db
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestGatewayEndpoints:
    def test_connect_returns_qr_data_uri(self, client, gateway_stub):
        gateway_stub.routes["/instance/connect/crm"] = (200, {"base64": QR_BASE64})

        response = client.post("/api/evolution/instance/connect", json={**EVO, "instance": "crm"})

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["qr"] == f"data:image/png;base64,{QR_BASE64}"
        assert gateway_stub.requests[0].headers["apikey"] == "key"

    def test_connect_falls_back_to_next_path(self, client, gateway_stub):
        gateway_stub.routes["/instance/qrcode/crm"] = (200, {"qrcode": {"base64": "data:image/png;base64,abc"}})

        body = client.post("/api/evolution/instance/connect", json={**EVO, "instance": "crm"}).json()

        assert body["qr"] == "data:image/png;base64,abc"
        assert body["path"] == "/instance/qrcode/crm"

    def test_missing_instance_is_bad_request(self, client, gateway_stub):
        response = client.post("/api/evolution/instance/connect", json=EVO)

        assert response.status_code == 400
        assert gateway_stub.requests == []

    def test_status_updates_configured_connection(self, client, registry, gateway_stub):
        asyncio.run(registry.configure("whatsapp", EVO["baseUrl"], "key", "crm"))
        gateway_stub.routes["/instance/connectionState/crm"] = (200, {"instance": {"state": "open"}})

        response = client.post("/api/evolution/instance/status", json={})

        assert response.status_code == 200
        assert response.json()["state"] == "open"
        assert registry.is_connected("whatsapp") is True

    def test_status_for_other_instance_leaves_flag(self, client, registry, gateway_stub):
        asyncio.run(registry.configure("whatsapp", EVO["baseUrl"], "key", "crm"))
        gateway_stub.routes["/instance/connectionState/outra"] = (200, {"state": "open"})

        client.post("/api/evolution/instance/status", json={"instance": "outra"})

        assert registry.is_connected("whatsapp") is False

    def test_send_text_requires_number_and_text(self, client):
        response = client.post(
            "/api/evolution/message/sendText", json={**EVO, "instance": "crm", "number": "", "text": "oi"}
        )
        assert response.status_code == 400

        response = client.post(
            "/api/evolution/message/sendText", json={**EVO, "instance": "crm", "number": "5511", "text": "  "}
        )
        assert response.status_code == 400

    def test_send_text_normalizes_number(self, client, gateway_stub):
        gateway_stub.routes["/message/sendText/crm"] = (201, {"key": {"id": "out"}})

        response = client.post(
            "/api/evolution/message/sendText",
            json={**EVO, "instance": "crm", "number": "5511987654321@s.whatsapp.net", "text": "Olá"},
        )

        assert response.status_code == 200
        assert json.loads(gateway_stub.requests[0].content) == {"number": "5511987654321", "text": "Olá"}

    def test_gateway_failure_is_bad_gateway(self, client, gateway_stub):
        gateway_stub.routes["/message/sendText/crm"] = (500, {"error": "boom"})

        response = client.post(
            "/api/evolution/message/sendText", json={**EVO, "instance": "crm", "number": "5511", "text": "oi"}
        )

        assert response.status_code == 502
        assert response.json()["error_code"] == "http_error"
        assert len(gateway_stub.requests) == 1

    def test_create_instance_payload(self, client, gateway_stub):
        gateway_stub.routes["/instance/create"] = (201, {"instance": {"instanceName": "crm"}})

        response = client.post(
            "/api/evolution/instance/create",
            json={**EVO, "instance": "crm", "webhookUrl": "https://crm/api/evolution/webhook", "webhookToken": "t"},
        )

        assert response.status_code == 200
        payload = json.loads(gateway_stub.requests[0].content)
        assert payload["instanceName"] == "crm"
        assert payload["token"] == "key"
        assert payload["webhook"] == {"url": "https://crm/api/evolution/webhook", "byEvents": True, "token": "t"}


class TestChannelEndpoints:
    def test_list_channels(self, client):
        body = client.get("/api/channels").json()
        assert [channel["channel"] for channel in body["channels"]] == ["whatsapp", "instagram", "facebook"]

    def test_configure_and_clear(self, client, registry):
        response = client.put("/api/channels/whatsapp", json={**EVO, "instance": "crm"})

        assert response.status_code == 200
        body = response.json()
        assert body["channel"]["configured"] is True
        assert body["channel"]["hasApiKey"] is True
        assert "apiKey" not in body["channel"]
        assert body["polling"] is False

        response = client.delete("/api/channels/whatsapp")
        assert response.json()["channel"]["configured"] is False
        assert registry.get("whatsapp").is_configured is False

    def test_configure_reports_polling(self, client, registry):
        poller = Mock()
        poller.running = True
        poller.cursor = 0
        poller.stop = AsyncMock()
        registry.poller_factory = Mock(return_value=poller)

        body = client.put("/api/channels/whatsapp", json={**EVO, "instance": "crm"}).json()

        assert body["polling"] is True
        poller.start.assert_called_once()

    def test_unknown_channel(self, client):
        assert client.put("/api/channels/telegram", json=EVO).status_code == 404

    def test_refresh_requires_configuration(self, client):
        assert client.post("/api/channels/whatsapp/refresh").status_code == 400

    def test_refresh_reads_state(self, client, registry, gateway_stub):
        asyncio.run(registry.configure("whatsapp", EVO["baseUrl"], "key", "crm"))
        gateway_stub.routes["/instance/connectionState/crm"] = (200, {"state": "close"})

        body = client.post("/api/channels/whatsapp/refresh").json()

        assert body["state"] == "close"
        assert body["channel"]["connected"] is False


class TestManualMessageEndpoint:
    def test_message_runs_workflow_without_reply(self, client, gateway_stub):
        response = client.post(
            "/api/ai/messages",
            json={"text": "Meu nome é Ana, quero comprar um apartamento em Pinheiros, orçamento 500 mil"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["stage"] == "qualified"
        assert body["score"] == 75
        assert body["lead_created"] is True
        assert body["deal_created"] is True
        assert body["draft"]["budget"] == 500000
        assert gateway_stub.requests == []

    def test_history_lists_exchange(self, client):
        client.post("/api/ai/messages", json={"text": "oi", "peer": "5511"})

        rows = client.get("/api/ai/messages?peer=5511").json()

        assert [row["role"] for row in rows][:2] == ["user", "agent"]
        assert rows[0]["text"] == "oi"
        assert rows[0]["source"] == "test"

    def test_unknown_channel_is_rejected(self, client):
        response = client.post("/api/ai/messages", json={"channel": "telegram", "text": "oi"})
        assert response.status_code == 400

    def test_blank_text_is_rejected(self, client):
        assert client.post("/api/ai/messages", json={"text": ""}).status_code == 422
        assert client.post("/api/ai/messages", json={"text": "   "}).status_code == 400


class TestHealth:
    def test_health(self, client):
        body = client.get("/api/health").json()
        assert body["ok"] is True
        assert "lastSeq" in body
