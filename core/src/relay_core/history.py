"""Bounded FIFO buffer of recent chat messages, replayed on join."""

from __future__ import annotations

from collections import deque

from .protocol import ChatMessage

DEFAULT_CAPACITY = 100


class HistoryBuffer:
    """Most recent chat messages in arrival order.

    Appending past capacity drops the oldest message. The deque does the
    eviction and the append in one step, so the length never exceeds
    *capacity*.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self._messages: deque[ChatMessage] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._messages.maxlen

    def append(self, message: ChatMessage) -> None:
        self._messages.append(message)

    def snapshot(self) -> list[ChatMessage]:
        """Return the buffered messages, oldest first."""
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)
