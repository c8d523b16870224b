# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Parent/child device pairing with permission negotiation and telemetry streaming."""

from .capabilities import CapabilityProvider, SimulatedCapabilityProvider
from .exceptions import (
    InvalidCodeFormat,
    MessageFormatError,
    NotConnected,
    PairingCodeMismatch,
    PairingError,
    PairingTimeout,
    PairLinkError,
    PermissionDenied,
    RoleViolation,
    UnknownCommand,
    UnknownPermissionKind,
)
from .protocol import Role
from .session import ConnectionState, PairingSession, SessionOptions, generate_pairing_code
from .transport import LoopbackHub, LoopbackTransport, TransportFactory, WebSocketTransport


__version__ = "1.0.0"

__all__ = [
    "CapabilityProvider",
    "ConnectionState",
    "InvalidCodeFormat",
    "LoopbackHub",
    "LoopbackTransport",
    "MessageFormatError",
    "NotConnected",
    "PairLinkError",
    "PairingCodeMismatch",
    "PairingError",
    "PairingSession",
    "PairingTimeout",
    "PermissionDenied",
    "Role",
    "RoleViolation",
    "SessionOptions",
    "SimulatedCapabilityProvider",
    "TransportFactory",
    "UnknownCommand",
    "UnknownPermissionKind",
    "WebSocketTransport",
    "generate_pairing_code",
]
