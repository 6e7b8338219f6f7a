"""WebSocket transport for the relay: server, connection wrapper, client."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

import websockets
from websockets.asyncio.client import ClientConnection, connect
from websockets.asyncio.server import Server as WsServer, ServerConnection, serve
from websockets.http11 import Request, Response
from websockets.protocol import State

from .protocol import encode_frame

if TYPE_CHECKING:
    from .broker.lifecycle import LifecycleHooks
    from .broker.router import MessageRouter
    from .endpoints import HttpEndpoints

log = logging.getLogger(__name__)

WS_PATH = "/ws"

Frame = dict[str, Any]


# ── WebSocket Connection ────────────────────────────────────────────


class WebSocketConnection:
    """Wraps a websockets connection for sending frames.

    Every send goes through a per-connection lock so frames reach the
    peer in the order they were sent. Callers that need several frames
    to go out back to back hold `send_lock` and call `send_locked`.
    """

    def __init__(self, ws: ServerConnection) -> None:
        self._ws = ws
        self._send_lock = asyncio.Lock()

    @property
    def send_lock(self) -> asyncio.Lock:
        return self._send_lock

    @property
    def is_open(self) -> bool:
        return self._ws.protocol.state is State.OPEN

    @property
    def origin_address(self) -> str:
        """Client address, preferring the first X-Forwarded-For hop."""
        request = self._ws.request
        if request is not None:
            forwarded = request.headers.get("X-Forwarded-For", "")
            first = forwarded.split(",")[0].strip()
            if first:
                return first
        remote = self._ws.remote_address
        if remote:
            return str(remote[0])
        return "unknown"

    async def send(self, frame: Frame | str) -> None:
        async with self._send_lock:
            await self.send_locked(frame)

    async def send_locked(self, frame: Frame | str) -> None:
        """Send without taking the lock. The caller must hold `send_lock`."""
        text = frame if isinstance(frame, str) else encode_frame(frame)
        await self._ws.send(text)


# ── WebSocket Server ────────────────────────────────────────────────


class RelayServer:
    """WebSocket server for chat clients, with HTTP endpoints on the side."""

    def __init__(
        self,
        hooks: LifecycleHooks,
        router: MessageRouter,
        endpoints: HttpEndpoints | None = None,
        host: str = "0.0.0.0",
        port: int = 10000,
        path: str = WS_PATH,
    ) -> None:
        self._hooks = hooks
        self._router = router
        self._endpoints = endpoints
        self._host = host
        self._port = port
        self._path = path
        self._server: WsServer | None = None

    @property
    def port(self) -> int:
        """Bound port (useful when started with port 0)."""
        if self._server is None:
            raise RuntimeError("call start() first")
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        self._server = await serve(
            self._ws_handler,
            self._host,
            self._port,
            process_request=self._process_request,
        )
        log.info("chat relay running on http://%s:%d", self._host, self.port)
        log.info("WebSocket listening on ws://%s:%d%s", self._host, self.port, self._path)

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def serve_forever(self) -> None:
        if self._server is None:
            raise RuntimeError("call start() first")
        await self._server.serve_forever()

    async def _process_request(
        self, ws: ServerConnection, request: Request,
    ) -> Response | None:
        """Let the handshake through on the chat path; answer HTTP elsewhere."""
        if urlsplit(request.path).path == self._path:
            return None
        if self._endpoints is not None:
            return await self._endpoints.handle(request)
        return ws.respond(404, "Not found\n")

    async def _ws_handler(self, ws: ServerConnection) -> None:
        conn = WebSocketConnection(ws)
        conn_id = await self._hooks.on_connect(conn, conn.origin_address)
        try:
            async for raw in ws:
                try:
                    await self._router.handle(raw, conn_id)
                except Exception:
                    log.exception("handler error for connection %s", conn_id)
        except websockets.exceptions.ConnectionClosedError as exc:
            log.debug("connection %s closed abruptly: %s", conn_id, exc)
        finally:
            await self._hooks.on_disconnect(conn_id)


# ── WebSocket Client ────────────────────────────────────────────────


class RelayClient:
    """Minimal WebSocket client that speaks relay frames.

    Usage:
        async with RelayClient("ws://127.0.0.1:10000/ws") as client:
            await client.send({"type": "chat", "username": "ana", "content": "hi"})
            frame = await client.recv()
    """

    def __init__(self, uri: str) -> None:
        self._uri = uri
        self._ws: ClientConnection | None = None

    async def connect(self) -> None:
        self._ws = await connect(self._uri)

    def _require_ws(self) -> ClientConnection:
        if self._ws is None:
            raise RuntimeError("call connect() first")
        return self._ws

    async def send(self, frame: Frame | str) -> None:
        text = frame if isinstance(frame, str) else encode_frame(frame)
        await self._require_ws().send(text)

    async def recv(self, timeout: float = 5.0) -> Frame:
        raw = await asyncio.wait_for(self._require_ws().recv(), timeout=timeout)
        return json.loads(raw)

    async def recv_until(self, frame_type: str, timeout: float = 5.0) -> Frame:
        """Receive frames until one of *frame_type* arrives."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise TimeoutError(f"no {frame_type} frame within {timeout}s")
            frame = await self.recv(timeout=remaining)
            if frame.get("type") == frame_type:
                return frame

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    async def __aenter__(self) -> RelayClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
