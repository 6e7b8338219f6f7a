"""Message router: classify inbound frames, update state, fan out."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import websockets

from ..history import HistoryBuffer
from ..protocol import (
    CMD_IPS,
    ChatMessage,
    INVALID_CODE_TEXT,
    INVALID_FORMAT_TEXT,
    MSG_CHAT,
    MSG_OWNER_COMMAND,
    OWNER_GRANTED_TEXT,
    ProtocolError,
    decode_frame,
    encode_frame,
    error_frame,
    owner_data_frame,
    owner_status_frame,
)
from ..storage.audit import ACTION_USERNAME_SET, AuditLog
from .auth import AuthorizationGate
from .registry import ConnectionEntry, ConnectionRegistry

log = logging.getLogger(__name__)

Frame = dict[str, Any]

# Send failures that only mean the receiver is gone.
_SEND_ERRORS = (websockets.exceptions.ConnectionClosed, ConnectionError, OSError)


class MessageRouter:
    """Dispatch inbound frames by type and broadcast chat messages."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        history: HistoryBuffer,
        gate: AuthorizationGate,
        audit: AuditLog,
    ) -> None:
        self._registry = registry
        self._history = history
        self._gate = gate
        self._audit = audit

    async def handle(self, raw: str | bytes, conn_id: str) -> None:
        """Main dispatch: route by frame type."""
        entry = self._registry.get(conn_id)
        if entry is None:
            log.debug("dropping frame for unregistered connection %s", conn_id)
            return

        try:
            frame = decode_frame(raw)
        except ProtocolError as exc:
            log.warning("malformed frame from %s: %s", entry.origin_address, exc)
            await self._send_error(entry, INVALID_FORMAT_TEXT)
            return

        match frame["type"]:
            case "chat":
                await self._on_chat(frame, entry)
            case "owner_auth":
                await self._on_owner_auth(frame, entry)
            case "owner_command":
                await self._on_owner_command(frame, entry)
            case other:
                log.debug("ignoring frame of type %r from %s", other, entry.origin_address)

    # ── Handlers ─────────────────────────────────────────────────────

    async def _on_chat(self, frame: Frame, entry: ConnectionEntry) -> None:
        username = frame.get("username")
        content = frame.get("content")
        if not isinstance(username, str) or not isinstance(content, str):
            log.warning("rejected %s frame from %s: bad fields", MSG_CHAT, entry.origin_address)
            await self._send_error(entry, INVALID_FORMAT_TEXT)
            return

        message = ChatMessage.create(username, content, is_owner=entry.is_owner)
        self._history.append(message)

        if self._registry.set_display_name(entry.conn_id, message.username):
            self._audit.record(ACTION_USERNAME_SET, entry.origin_address, message.username)

        log.info("message from %s: %s", message.username, message.content)
        await self.broadcast(message.to_frame())

    async def _on_owner_auth(self, frame: Frame, entry: ConnectionEntry) -> None:
        if "code" not in frame:
            await self._send_error(entry, INVALID_FORMAT_TEXT)
            return

        if not self._gate.authorize(entry.conn_id, frame["code"]):
            log.warning("failed owner authentication from %s", entry.origin_address)
            await self._send_error(entry, INVALID_CODE_TEXT)
            return

        log.info("owner access granted to %s", entry.origin_address)
        await self._send(entry, owner_status_frame(True, OWNER_GRANTED_TEXT))

    async def _on_owner_command(self, frame: Frame, entry: ConnectionEntry) -> None:
        # Non-owners get no reply at all, not even an error.
        if not entry.is_owner:
            log.debug("ignoring %s from non-owner %s", MSG_OWNER_COMMAND, entry.origin_address)
            return

        command = frame.get("command")
        if command != CMD_IPS:
            log.debug("ignoring unknown owner command %r", command)
            return

        await self._send(entry, owner_data_frame(CMD_IPS, self._registry.snapshot()))

    # ── Fan-out ──────────────────────────────────────────────────────

    async def broadcast(self, frame: Frame) -> None:
        """Push *frame* to every open connection, best effort.

        The frame is encoded once so every recipient gets the same bytes.
        A failed send only affects its own recipient.
        """
        text = encode_frame(frame)
        recipients = [e for e in self._registry.members() if e.conn.is_open]
        await asyncio.gather(*(self._deliver(e, text) for e in recipients))

    async def _deliver(self, entry: ConnectionEntry, text: str) -> None:
        try:
            await entry.conn.send(text)
        except _SEND_ERRORS as exc:
            log.debug("skipped send to %s: %s", entry.origin_address, exc)

    # ── Helpers ──────────────────────────────────────────────────────

    async def _send(self, entry: ConnectionEntry, frame: Frame) -> None:
        try:
            await entry.conn.send(frame)
        except _SEND_ERRORS:
            log.warning("failed to reply to %s", entry.origin_address)

    async def _send_error(self, entry: ConnectionEntry, message: str) -> None:
        await self._send(entry, error_frame(message))
