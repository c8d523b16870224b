# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Device capability providers consumed by the child session."""

from .protocol import CapabilityProvider, LocationCallback, PermissionChangeCallback
from .simulated import SimulatedCapabilityProvider


__all__ = ["CapabilityProvider", "LocationCallback", "PermissionChangeCallback", "SimulatedCapabilityProvider"]
