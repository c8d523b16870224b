# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import time

import pytest

from pairlink.capabilities import SimulatedCapabilityProvider
from pairlink.protocol import Role
from pairlink.session import PairingSession, SessionOptions
from pairlink.transport import LoopbackHub, LoopbackTransport


CODE = "123456"


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> bool:
    """Poll ``predicate`` until it holds or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


@pytest.fixture
def options():
    return SessionOptions(
        buffer_capacity=10,
        negotiation_delay_ms=20,
        response_timeout_ms=2000,
        telemetry_frequency_ms=5000,
        recent_photos=5,
    )


@pytest.fixture
def hub():
    return LoopbackHub()


@pytest.fixture
def make_transport(hub):
    def factory(**kwargs):
        kwargs.setdefault("connect_delay_s", 0.01)
        return LoopbackTransport(hub, **kwargs)
    return factory


@pytest.fixture
def provider():
    return SimulatedCapabilityProvider(seed=7, screen_projection_approval=1.0, location_interval_s=3600)


@pytest.fixture
async def pair(make_transport, provider, options):
    """A connected parent/child pair over one loopback hub."""
    parent = PairingSession(make_transport(), options=options)
    child = PairingSession(make_transport(), capabilities=provider, options=options)

    await parent.begin(Role.PARENT, CODE)
    await child.begin(Role.CHILD, CODE)
    assert await parent.wait_connected(timeout=2.0)
    assert await child.wait_connected(timeout=2.0)

    yield parent, child

    await child.disconnect()
    await parent.disconnect()
