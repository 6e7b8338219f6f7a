"""Connection registry: live connections and their metadata."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from ..protocol import ANONYMOUS, MAX_USERNAME_LENGTH, utc_timestamp
from ..transport import WebSocketConnection


@dataclass
class ConnectionEntry:
    """A live connection tracked by the relay."""

    conn_id: str
    conn: WebSocketConnection
    origin_address: str
    connected_at: str = field(default_factory=utc_timestamp)
    display_name: str | None = None
    is_owner: bool = False

    @property
    def name_or_anonymous(self) -> str:
        return self.display_name or ANONYMOUS


class ConnectionRegistry:
    """Tracks live connections by an opaque connection id.

    All methods are synchronous and run on the event loop, so no caller
    ever sees a half-added or half-removed entry. Iteration helpers work
    on a copy, so entries may come and go while a broadcast is in flight.
    """

    def __init__(self) -> None:
        self._entries: dict[str, ConnectionEntry] = {}

    def register(self, conn: WebSocketConnection, origin_address: str) -> ConnectionEntry:
        """Assign a fresh id, store the connection, and return the entry."""
        entry = ConnectionEntry(
            conn_id=uuid.uuid4().hex,
            conn=conn,
            origin_address=origin_address,
        )
        self._entries[entry.conn_id] = entry
        return entry

    def unregister(self, conn_id: str) -> ConnectionEntry | None:
        """Remove a connection by id. Returns the entry or None."""
        entry = self._entries.pop(conn_id, None)
        if entry is not None:
            entry.is_owner = False
        return entry

    def get(self, conn_id: str) -> ConnectionEntry | None:
        return self._entries.get(conn_id)

    def members(self) -> list[ConnectionEntry]:
        """Return a snapshot list of all live entries."""
        return list(self._entries.values())

    def for_each(self, fn: Callable[[ConnectionEntry], Any]) -> None:
        """Apply *fn* to every live entry. Order is unspecified."""
        for entry in self.members():
            fn(entry)

    def set_display_name(self, conn_id: str, name: str) -> bool:
        """Lock in *name* for a connection.

        Returns True only when this call set the name. Empty names and
        connections that already have a name are left alone.
        """
        entry = self._entries.get(conn_id)
        name = name[:MAX_USERNAME_LENGTH]
        if entry is None or entry.display_name is not None or not name:
            return False
        entry.display_name = name
        return True

    def set_owner(self, conn_id: str, is_owner: bool) -> bool:
        """Set the owner flag. Returns False if the connection is gone."""
        entry = self._entries.get(conn_id)
        if entry is None:
            return False
        entry.is_owner = is_owner
        return True

    def snapshot(self) -> list[dict[str, str]]:
        """Build the active-connection listing for owner queries."""
        return [
            {
                "ip": e.origin_address,
                "username": e.name_or_anonymous,
                "connectTime": e.connected_at,
            }
            for e in self._entries.values()
        ]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, conn_id: object) -> bool:
        return conn_id in self._entries
