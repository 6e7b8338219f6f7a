"""Append-only audit log of connect, username and disconnect events.

One line per event, pipe-delimited:

    2024-01-01T00:00:00.000Z | CONNECTED | 10.0.0.1 | Anonymous
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path

from ..protocol import ANONYMOUS, utc_timestamp

log = logging.getLogger(__name__)

ACTION_CONNECTED = "CONNECTED"
ACTION_USERNAME_SET = "USERNAME_SET"
ACTION_DISCONNECTED = "DISCONNECTED"

ACTIONS = (ACTION_CONNECTED, ACTION_USERNAME_SET, ACTION_DISCONNECTED)

SEPARATOR = " | "

_UNSAFE = re.compile(r"[|\r\n]")


def _clean(field: str) -> str:
    # Lone surrogates from JSON cannot be written as UTF-8; escape them.
    field = field.encode("utf-8", "backslashreplace").decode("utf-8")
    return _UNSAFE.sub(" ", field).strip()


@dataclass(frozen=True)
class AuditEvent:
    """A single audit log line."""

    timestamp: str
    action: str
    origin_address: str
    display_name: str = ANONYMOUS

    def to_line(self) -> str:
        return SEPARATOR.join((
            self.timestamp,
            self.action,
            _clean(self.origin_address),
            _clean(self.display_name) or ANONYMOUS,
        ))

    @classmethod
    def from_line(cls, line: str) -> AuditEvent | None:
        """Parse one log line. Returns None for lines that don't fit."""
        parts = line.split(SEPARATOR, 3)
        if len(parts) != 4:
            return None
        timestamp, action, origin, name = (p.strip() for p in parts)
        if action not in ACTIONS:
            return None
        return cls(timestamp, action, origin, name or ANONYMOUS)

    def to_dict(self) -> dict[str, str]:
        return {
            "timestamp": self.timestamp,
            "action": self.action,
            "ip": self.origin_address,
            "username": self.display_name,
        }


def parse_audit_log(path: Path) -> list[AuditEvent]:
    """Parse an audit log file. Returns [] if missing."""
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return []
    events = []
    for line in content.splitlines():
        if not line.strip():
            continue
        event = AuditEvent.from_line(line)
        if event is not None:
            events.append(event)
    return events


class AuditLog:
    """Fire-and-forget writer for audit events.

    Usage:
        audit = AuditLog(paths.audit_log)
        asyncio.create_task(audit.run())
        audit.record(ACTION_CONNECTED, "10.0.0.1")
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._queue: asyncio.Queue[AuditEvent] = asyncio.Queue()

    @property
    def path(self) -> Path:
        return self._path

    def record(
        self,
        action: str,
        origin_address: str,
        display_name: str | None = None,
    ) -> AuditEvent:
        """Queue an event for writing and return immediately."""
        event = AuditEvent(
            timestamp=utc_timestamp(),
            action=action,
            origin_address=origin_address,
            display_name=display_name or ANONYMOUS,
        )
        self._queue.put_nowait(event)
        return event

    async def run(self) -> None:
        """Write queued events in order. Run this as a background task."""
        while True:
            event = await self._queue.get()
            try:
                await asyncio.to_thread(self._append, event.to_line())
            except Exception:
                log.exception("failed to write audit event to %s", self._path)
            finally:
                self._queue.task_done()

    async def flush(self) -> None:
        """Wait until every queued event has been handled by `run`."""
        await self._queue.join()

    def recent(self, limit: int = 50) -> list[AuditEvent]:
        """Return the last *limit* events from the persisted log."""
        if limit <= 0:
            return []
        return parse_audit_log(self._path)[-limit:]

    def _append(self, line: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
