# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

from collections import deque
from collections.abc import Iterator

from ..protocol.messages import TelemetryMessage


class ReceiveBuffer:
    """Most recent inbound telemetry, newest first, bounded by eviction."""

    def __init__(self, capacity: int = 10):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._items: deque[TelemetryMessage] = deque(maxlen=capacity)

    def push(self, message: TelemetryMessage) -> None:
        """Insert at the front; the oldest entry falls off the back when full."""
        self._items.appendleft(message)

    @property
    def latest(self) -> TelemetryMessage | None:
        return self._items[0] if self._items else None

    def items(self) -> list[TelemetryMessage]:
        return list(self._items)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[TelemetryMessage]:
        return iter(list(self._items))

    def __getitem__(self, index: int) -> TelemetryMessage:
        return self._items[index]
