# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Transports that yield a connected channel between two paired devices."""

# Import specific implementations to register them
from .loopback import LoopbackChannel, LoopbackHub, LoopbackTransport
from .protocol import ConnectedChannel, Transport, TransportFactory
from .websocket import WebSocketChannel, WebSocketTransport


__all__ = [
    # Base protocols
    "ConnectedChannel",
    # Implementations
    "LoopbackChannel",
    "LoopbackHub",
    "LoopbackTransport",
    "Transport",
    # Factory
    "TransportFactory",
    "WebSocketChannel",
    "WebSocketTransport",
]
