"""Chat relay wire protocol: frame types, chat messages, and serialization."""

from __future__ import annotations

import json
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

# ── Frame type constants ────────────────────────────────────────────

# Client -> server
MSG_CHAT = "chat"
MSG_OWNER_AUTH = "owner_auth"
MSG_OWNER_COMMAND = "owner_command"

# Server -> client only
MSG_HISTORY = "history"
MSG_SYSTEM = "system"
MSG_ERROR = "error"
MSG_OWNER_STATUS = "owner_status"
MSG_OWNER_DATA = "owner_data"

# Owner commands
CMD_IPS = "ips"

# ── Limits and fixed texts ──────────────────────────────────────────

MAX_USERNAME_LENGTH = 20
MAX_CONTENT_LENGTH = 500

ANONYMOUS = "Anonymous"
WELCOME_TEXT = "Welcome to the chatroom! You are now connected."
INVALID_FORMAT_TEXT = "Invalid message format"
INVALID_CODE_TEXT = "Invalid owner code"
OWNER_GRANTED_TEXT = "Owner access granted"

# ── Errors ──────────────────────────────────────────────────────────


class ProtocolError(ValueError):
    """Raised when a frame cannot be decoded."""


# ── Helpers ─────────────────────────────────────────────────────────


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return now.replace("+00:00", "Z")


def generate_message_id() -> float:
    """Display id: epoch milliseconds plus a random fraction.

    Not a dedup key; collisions are never checked.
    """
    return time.time() * 1000 + random.random()


# ── Chat message ────────────────────────────────────────────────────


@dataclass(frozen=True)
class ChatMessage:
    """One accepted chat message. The server is the only writer."""

    username: str
    content: str
    timestamp: str
    id: float
    is_owner: bool = False

    @classmethod
    def create(cls, username: str, content: str, is_owner: bool = False) -> ChatMessage:
        """Build a message with limits applied and a fresh timestamp and id."""
        return cls(
            username=username[:MAX_USERNAME_LENGTH],
            content=content[:MAX_CONTENT_LENGTH],
            timestamp=utc_timestamp(),
            id=generate_message_id(),
            is_owner=is_owner,
        )

    def to_frame(self) -> dict[str, Any]:
        return {
            "type": MSG_CHAT,
            "username": self.username,
            "content": self.content,
            "timestamp": self.timestamp,
            "id": self.id,
            "isOwner": self.is_owner,
        }


# ── Frame builders ──────────────────────────────────────────────────


def history_frame(messages: list[ChatMessage]) -> dict[str, Any]:
    return {"type": MSG_HISTORY, "messages": [m.to_frame() for m in messages]}


def system_frame(message: str) -> dict[str, Any]:
    return {"type": MSG_SYSTEM, "message": message, "timestamp": utc_timestamp()}


def error_frame(message: str) -> dict[str, Any]:
    return {"type": MSG_ERROR, "message": message, "timestamp": utc_timestamp()}


def owner_status_frame(is_owner: bool, message: str) -> dict[str, Any]:
    return {
        "type": MSG_OWNER_STATUS,
        "isOwner": is_owner,
        "message": message,
        "timestamp": utc_timestamp(),
    }


def owner_data_frame(command: str, data: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "type": MSG_OWNER_DATA,
        "command": command,
        "data": data,
        "timestamp": utc_timestamp(),
    }


# ── Serialization ───────────────────────────────────────────────────


def encode_frame(frame: dict[str, Any]) -> str:
    """Serialize *frame* to a compact JSON string."""
    return json.dumps(frame, separators=(",", ":"))


def decode_frame(raw: str | bytes) -> dict[str, Any]:
    """Parse an inbound frame into a dict with a string ``type``.

    Raises `ProtocolError` on invalid input. Field checks beyond ``type``
    are left to the handler for that type.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError(f"invalid UTF-8: {exc}") from exc

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"invalid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise ProtocolError("frame must be a JSON object")

    if not isinstance(data.get("type"), str):
        raise ProtocolError("missing required key: type")

    return data
