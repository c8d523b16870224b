# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any
import logging

from ..protocol.messages import Role


ReceiveHandler = Callable[[bytes], None]
CloseHandler = Callable[[Exception | None], None]


class ConnectedChannel(ABC):
    """Reliable, ordered, bidirectional channel between two paired devices.

    Frames are opaque bytes. Inbound frames are delivered to the receive
    handler one at a time, in arrival order. Close handlers fire once when the
    channel goes away for a reason other than our own close().
    """

    def __init__(self, pairing_code: str, role: Role):
        self.pairing_code = pairing_code
        self.role = role
        self._receive_handler: ReceiveHandler | None = None
        self._close_handlers: list[CloseHandler] = []
        self._closed = False

    @abstractmethod
    async def send(self, data: bytes) -> None:
        """Send one frame to the peer."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the channel and release its resources. Idempotent."""
        pass

    def on_receive(self, handler: ReceiveHandler) -> None:
        """Set the inbound frame handler and start delivering."""
        self._receive_handler = handler
        self._start_delivery()

    def on_close(self, handler: CloseHandler) -> None:
        """Register a handler for remote close or transport failure."""
        self._close_handlers.append(handler)

    @property
    def closed(self) -> bool:
        return self._closed

    def _start_delivery(self) -> None:
        """Hook for subclasses that pump frames from a queue or socket."""
        pass

    def _deliver(self, data: bytes) -> None:
        handler = self._receive_handler
        if handler is None or self._closed:
            return
        try:
            handler(data)
        except Exception as e:
            logging.getLogger('transport').error(f"receive handler error on {self.pairing_code}/{self.role.value}: {e!r}")

    def _notify_closed(self, exc: Exception | None = None) -> None:
        if self._closed:
            return
        self._closed = True
        for handler in list(self._close_handlers):
            try:
                handler(exc)
            except Exception as e:
                logging.getLogger('transport').error(f"close handler error: {e!r}")


class Transport(ABC):
    """Abstract base class for pairing transports (loopback, WebSocket relay, etc.)."""

    @abstractmethod
    async def connect(self, pairing_code: str, role: Role) -> ConnectedChannel:
        """Pair with the peer holding the same code.

        Raises PairingTimeout or PairingCodeMismatch when pairing fails.
        """
        pass


class TransportFactory:
    """Factory for creating transport instances by name."""

    _transports: dict[str, type[Transport]] = {}

    @classmethod
    def register(cls, name: str, transport_class: type[Transport]) -> None:
        """Register a new transport."""
        cls._transports[name] = transport_class

    @classmethod
    def create(cls, name: str, **kwargs: Any) -> Transport:
        """Create a transport instance."""
        transport_class = cls._transports.get(name)
        if not transport_class:
            raise ValueError(f"Unknown transport: {name}")

        return transport_class(**kwargs)

    @classmethod
    def list_transports(cls) -> list[str]:
        """List available transport names."""
        return list(cls._transports.keys())
