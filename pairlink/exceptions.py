# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Pairing-layer exceptions.

Every error the session layer raises derives from PairLinkError so callers can
catch the whole family at once, while the concrete classes keep the protocol
violation, capability failure and transport failure cases apart.

Design Pattern:
    Diagnostic information (pairing codes, roles, permission kinds) is logged
    immediately before raising. The exception attributes carry the same data
    in structured form for callers that need to branch on it.
"""


class PairLinkError(Exception):
    """Base exception for pairing and session errors."""


class InvalidCodeFormat(PairLinkError, ValueError):
    """Pairing code is not exactly six decimal digits.

    Attributes:
        pairing_code: The rejected code, as supplied
    """

    def __init__(self, pairing_code):
        super().__init__(f"pairing code must be exactly 6 digits, got {pairing_code!r}")
        self.pairing_code = pairing_code


class NotConnected(PairLinkError):
    """Operation requires a Connected session."""

    def __init__(self, message: str = "session is not connected", state: str | None = None):
        super().__init__(message)
        self.state = state


class RoleViolation(PairLinkError):
    """Operation is not allowed for the session's role.

    Raised for:
    - Permission requests from the child
    - Commands sent by the child
    """

    def __init__(self, operation: str, role: str | None):
        super().__init__(f"{operation} is not allowed in role {role}")
        self.operation = operation
        self.role = role


class UnknownPermissionKind(PairLinkError, ValueError):
    """Permission kind outside the fixed enumerated set."""

    def __init__(self, permission):
        super().__init__(f"unknown permission kind: {permission!r}")
        self.permission = permission


class PermissionDenied(PairLinkError):
    """Capability operation attempted without the matching grant."""

    def __init__(self, permission: str):
        super().__init__(f"{permission} permission not granted")
        self.permission = permission


class PairingError(PairLinkError):
    """Transport failed to establish a paired channel.

    Attributes:
        pairing_code: Code the pairing was attempted with
        role: Role of the device that attempted it
    """

    def __init__(self, message: str, pairing_code: str | None = None, role: str | None = None):
        super().__init__(message)
        self.pairing_code = pairing_code
        self.role = role


class PairingTimeout(PairingError):
    """No peer completed the pairing in time."""


class PairingCodeMismatch(PairingError):
    """Pairing code is unknown to the transport or already taken for the role."""


class UnknownCommand(PairLinkError):
    """Command name not understood by the child. Logged, never raised to callers."""

    def __init__(self, command):
        super().__init__(f"unknown command: {command!r}")
        self.command = command


class MessageFormatError(PairLinkError, ValueError):
    """Inbound frame could not be decoded into a known message."""
