"""Tests for relay_core.endpoints."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
from websockets.datastructures import Headers
from websockets.http11 import Request

from relay_core.broker.registry import ConnectionRegistry
from relay_core.endpoints import HttpEndpoints
from relay_core.history import HistoryBuffer
from relay_core.protocol import ChatMessage
from relay_core.storage.audit import AuditLog
from relay_core.transport import WebSocketConnection

SECRET = "s3cret"


def _request(path: str) -> Request:
    return Request(path, Headers([("Host", "localhost")]))


def _body(response) -> dict:
    return json.loads(response.body)


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def history():
    return HistoryBuffer()


@pytest.fixture
def audit(tmp_path):
    log_file = tmp_path / "connections.log"
    log_file.write_text(
        "".join(f"t{i} | CONNECTED | 10.0.0.{i} | Anonymous\n" for i in range(60)),
        encoding="utf-8",
    )
    return AuditLog(log_file)


@pytest.fixture
def endpoints(registry, history, audit):
    return HttpEndpoints(registry, history, audit, SECRET, recent_limit=50)


class TestHealth:
    async def test_counts(self, endpoints, registry, history):
        registry.register(MagicMock(spec=WebSocketConnection), "10.0.0.1")
        history.append(ChatMessage.create("ana", "hi"))
        history.append(ChatMessage.create("ana", "again"))

        response = await endpoints.handle(_request("/health"))
        assert response.status_code == 200
        assert response.headers["Content-Type"] == "application/json"
        body = _body(response)
        assert body["status"] == "healthy"
        assert body["activeClients"] == 1
        assert body["chatHistory"] == 2
        assert body["timestamp"].endswith("Z")


class TestOwnerLogs:
    async def test_correct_code(self, endpoints, registry):
        entry = registry.register(MagicMock(spec=WebSocketConnection), "10.0.0.7")
        registry.set_display_name(entry.conn_id, "ana")

        response = await endpoints.handle(_request(f"/owner/logs?code={SECRET}"))
        assert response.status_code == 200
        body = _body(response)
        assert len(body["logs"]) == 50
        assert body["logs"][0]["ip"] == "10.0.0.10"
        assert body["logs"][-1]["ip"] == "10.0.0.59"
        assert body["activeConnections"] == [{
            "ip": "10.0.0.7",
            "username": "ana",
            "connectTime": entry.connected_at,
        }]

    async def test_wrong_code(self, endpoints):
        response = await endpoints.handle(_request("/owner/logs?code=guess"))
        assert response.status_code == 403
        assert _body(response) == {"error": "Access denied"}

    async def test_missing_code(self, endpoints):
        response = await endpoints.handle(_request("/owner/logs"))
        assert response.status_code == 403

    async def test_disabled_without_secret(self, registry, history, audit):
        endpoints = HttpEndpoints(registry, history, audit, "")
        response = await endpoints.handle(_request("/owner/logs?code="))
        assert response.status_code == 403


class TestNotFound:
    async def test_unknown_path(self, endpoints):
        response = await endpoints.handle(_request("/nowhere"))
        assert response.status_code == 404
