"""Connection open/close sequencing."""

from __future__ import annotations

import asyncio
import logging

import websockets

from ..history import HistoryBuffer
from ..protocol import WELCOME_TEXT, history_frame, system_frame
from ..storage.audit import ACTION_CONNECTED, ACTION_DISCONNECTED, AuditLog
from ..transport import WebSocketConnection
from .registry import ConnectionRegistry

log = logging.getLogger(__name__)


class LifecycleHooks:
    """Registers connections on open and tears them down on close."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        history: HistoryBuffer,
        audit: AuditLog,
    ) -> None:
        self._registry = registry
        self._history = history
        self._audit = audit

    async def on_connect(self, conn: WebSocketConnection, origin_address: str) -> str:
        """Register *conn*, then send history and the welcome notice.

        The connection's send lock is held from registration until the
        welcome is out, so any broadcast aimed at it queues behind them.
        Returns the new connection id.
        """
        async with conn.send_lock:
            entry = self._registry.register(conn, origin_address)
            messages = self._history.snapshot()
            self._audit.record(ACTION_CONNECTED, origin_address)
            log.info(
                "new client connected from %s (active: %d)",
                origin_address, len(self._registry),
            )
            try:
                if messages:
                    await conn.send_locked(history_frame(messages))
                await conn.send_locked(system_frame(WELCOME_TEXT))
            except (websockets.exceptions.ConnectionClosed, OSError) as exc:
                log.debug("client %s left before greeting: %s", origin_address, exc)
            except asyncio.CancelledError:
                # The caller never gets the id, so tear down here.
                await self.on_disconnect(entry.conn_id)
                raise
        return entry.conn_id

    async def on_disconnect(self, conn_id: str) -> None:
        """Audit and unregister. Safe to call more than once."""
        entry = self._registry.get(conn_id)
        if entry is None:
            return
        self._audit.record(ACTION_DISCONNECTED, entry.origin_address, entry.display_name)
        self._registry.unregister(conn_id)
        log.info(
            "client %s disconnected (active: %d)",
            entry.origin_address, len(self._registry),
        )
