# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""WebSocket relay that pairs a parent and a child by pairing code."""

from .server import PairingRelay, create_app, start_relay_server


__all__ = ["PairingRelay", "create_app", "start_relay_server"]
