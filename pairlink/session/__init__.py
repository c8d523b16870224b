# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Pairing session engine.

This module handles:
- Session lifecycle and message send/receive over a transport channel
- Permission negotiation between parent and child
- Periodic and event-driven telemetry from the child
- Command dispatch on the child
"""

from .buffer import ReceiveBuffer
from .dispatcher import CommandDispatcher
from .negotiator import PermissionNegotiator
from .options import SessionOptions
from .permissions import PermissionSet
from .session import ConnectionState, PairingSession, generate_pairing_code, validate_pairing_code
from .streamer import TelemetryStreamer


__all__ = [
    "CommandDispatcher",
    "ConnectionState",
    "PairingSession",
    "PermissionNegotiator",
    "PermissionSet",
    "ReceiveBuffer",
    "SessionOptions",
    "TelemetryStreamer",
    "generate_pairing_code",
    "validate_pairing_code",
]
