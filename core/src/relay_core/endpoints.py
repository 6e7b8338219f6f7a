"""Plain HTTP endpoints served alongside the WebSocket: health and owner logs."""

from __future__ import annotations

import asyncio
import json
import logging
from http import HTTPStatus
from typing import Any
from urllib.parse import parse_qs, urlsplit

from websockets.datastructures import Headers
from websockets.http11 import Request, Response

from .broker.auth import secret_matches
from .broker.registry import ConnectionRegistry
from .history import HistoryBuffer
from .protocol import utc_timestamp
from .storage.audit import AuditLog

log = logging.getLogger(__name__)

HEALTH_PATH = "/health"
OWNER_LOGS_PATH = "/owner/logs"


def json_response(status: HTTPStatus, body: dict[str, Any]) -> Response:
    payload = json.dumps(body).encode("utf-8")
    headers = Headers([
        ("Content-Type", "application/json"),
        ("Content-Length", str(len(payload))),
        ("Connection", "close"),
    ])
    return Response(status.value, status.phrase, headers, payload)


class HttpEndpoints:
    """Answers non-WebSocket requests on the relay port."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        history: HistoryBuffer,
        audit: AuditLog,
        owner_code: str,
        recent_limit: int = 50,
    ) -> None:
        self._registry = registry
        self._history = history
        self._audit = audit
        self._owner_code = owner_code
        self._recent_limit = recent_limit

    async def handle(self, request: Request) -> Response:
        url = urlsplit(request.path)
        if url.path == HEALTH_PATH:
            return self.health()
        if url.path == OWNER_LOGS_PATH:
            code = parse_qs(url.query).get("code", [""])[0]
            return await self.owner_logs(code)
        return json_response(HTTPStatus.NOT_FOUND, {"error": "Not found"})

    def health(self) -> Response:
        return json_response(HTTPStatus.OK, {
            "status": "healthy",
            "activeClients": len(self._registry),
            "chatHistory": len(self._history),
            "timestamp": utc_timestamp(),
        })

    async def owner_logs(self, code: str) -> Response:
        if not secret_matches(self._owner_code, code):
            log.warning("denied owner log request")
            return json_response(HTTPStatus.FORBIDDEN, {"error": "Access denied"})

        events = await asyncio.to_thread(self._audit.recent, self._recent_limit)
        return json_response(HTTPStatus.OK, {
            "logs": [e.to_dict() for e in events],
            "activeConnections": self._registry.snapshot(),
            "timestamp": utc_timestamp(),
        })
