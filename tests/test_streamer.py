# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio

import pytest

from pairlink.capabilities import SimulatedCapabilityProvider
from pairlink.protocol import ComprehensiveUpdate, EmergencyAlert, LocationUpdate, PermissionUpdate, Role
from pairlink.session import PairingSession, PermissionNegotiator, TelemetryStreamer
from pairlink.session.permissions import PermissionSet

from .conftest import CODE, wait_until


class BrokenDeviceInfoProvider(SimulatedCapabilityProvider):
    def get_device_info(self):
        raise RuntimeError("battery service unavailable")


def make_streamer(provider=None, permissions=None, frequency_ms=5000):
    provider = provider or SimulatedCapabilityProvider(seed=11, location_interval_s=3600)
    negotiator = PermissionNegotiator(Role.CHILD, lambda m: None, provider, permissions, negotiation_delay_ms=0)
    return TelemetryStreamer(provider, negotiator, frequency_ms=frequency_ms, recent_photos=5), provider


def updates(sent):
    return [m for m in sent if isinstance(m, ComprehensiveUpdate)]


async def test_start_emits_immediately_then_periodically():
    streamer, _ = make_streamer(frequency_ms=40)
    sent = []

    streamer.start(sent.append)
    assert streamer.is_running
    assert await wait_until(lambda: len(updates(sent)) >= 1, timeout=0.2)
    assert await wait_until(lambda: len(updates(sent)) >= 3, timeout=1.0)

    streamer.stop()


async def test_comprehensive_update_without_grants_omits_extras():
    streamer, _ = make_streamer()
    sent = []

    streamer.start(sent.append)
    assert await wait_until(lambda: updates(sent))
    streamer.stop()

    update = updates(sent)[0]
    assert update.location is None
    assert update.recent_photos is None
    assert set(update.permissions) == {"camera", "location", "notifications", "gallery", "screenProjection"}
    assert {"battery", "storage", "memory", "network"} <= set(update.device_info)
    spent = [entry["timeSpent"] for entry in update.app_usage]
    assert spent == sorted(spent, reverse=True)


async def test_granted_location_and_gallery_are_included():
    streamer, provider = make_streamer()
    await provider.request_permission("location")
    await provider.request_permission("gallery")
    sent = []

    streamer.start(sent.append)
    assert await wait_until(lambda: updates(sent))
    streamer.stop()

    update = updates(sent)[0]
    assert set(update.location) == {"latitude", "longitude", "accuracy", "timestamp"}
    assert 0 < len(update.recent_photos) <= 5


async def test_capability_read_failures_are_swallowed():
    # granted in the shared set but not by the provider, so reads raise PermissionDenied
    streamer, _ = make_streamer(permissions=PermissionSet({"location": True, "gallery": True}))
    sent = []

    streamer.start(sent.append)
    assert await wait_until(lambda: updates(sent))
    streamer.stop()

    update = updates(sent)[0]
    assert update.location is None
    assert update.recent_photos is None
    assert update.permissions["location"] is True


async def test_collection_failure_skips_the_cycle():
    streamer, _ = make_streamer(provider=BrokenDeviceInfoProvider(seed=1))
    sent = []

    streamer.start(sent.append)
    await asyncio.sleep(0.05)
    assert streamer.is_running
    assert updates(sent) == []
    streamer.stop()


async def test_second_start_is_ignored():
    streamer, _ = make_streamer()
    first, second = [], []

    streamer.start(first.append)
    streamer.start(second.append)
    assert await wait_until(lambda: updates(first))
    await asyncio.sleep(0.02)
    streamer.stop()

    assert len(updates(first)) == 1
    assert second == []


async def test_stop_is_idempotent_and_silences_emitters():
    streamer, _ = make_streamer(frequency_ms=20)
    sent = []

    streamer.start(sent.append)
    assert await wait_until(lambda: updates(sent))
    streamer.stop()
    streamer.stop()
    count = len(sent)

    streamer.send_location_update({"latitude": 0})
    streamer.send_emergency_alert("panic", "help")
    await asyncio.sleep(0.1)

    assert not streamer.is_running
    assert len(sent) == count


async def test_set_frequency_restarts_timer():
    streamer, _ = make_streamer(frequency_ms=60_000)
    sent = []

    streamer.start(sent.append)
    assert await wait_until(lambda: len(updates(sent)) == 1)

    streamer.set_frequency(30)
    assert streamer.status() == {"streaming": True, "frequency": 30}
    assert await wait_until(lambda: len(updates(sent)) >= 3, timeout=1.0)
    streamer.stop()


@pytest.mark.parametrize("frequency", [0, -5])
def test_set_frequency_rejects_non_positive(frequency):
    streamer, _ = make_streamer()
    with pytest.raises(ValueError):
        streamer.set_frequency(frequency)
    assert streamer.frequency_ms == 5000


async def test_event_emitters_shape_payloads():
    streamer, _ = make_streamer()
    sent = []
    streamer.start(sent.append)

    streamer.send_emergency_alert("location_alert", "left school zone")
    streamer.send_notification_received({"title": "Hi", "body": "there", "app": "Messages", "extra": 1})
    streamer.stop()

    alert = next(m for m in sent if isinstance(m, EmergencyAlert))
    assert alert.alert == {"type": "location_alert", "message": "left school zone", "priority": "high"}
    notification = next(m for m in sent if m.TYPE == "notification_received")
    assert notification.notification == {"title": "Hi", "body": "there", "app": "Messages"}


async def test_permission_flip_while_running_sends_update():
    streamer, provider = make_streamer()
    sent = []
    streamer.start(sent.append)

    await provider.request_permission("notifications")
    provider.revoke("notifications")
    streamer.stop()

    flips = [m.permission for m in sent if isinstance(m, PermissionUpdate)]
    assert flips == [{"type": "notifications", "granted": True}, {"type": "notifications", "granted": False}]


async def test_watched_location_fixes_are_forwarded():
    provider = SimulatedCapabilityProvider(seed=5, location_interval_s=0.02)
    streamer, _ = make_streamer(provider=provider)
    sent = []
    streamer.start(sent.append)

    await provider.request_permission("location")
    assert await wait_until(lambda: any(isinstance(m, LocationUpdate) for m in sent))
    streamer.stop()

    count = len(sent)
    await asyncio.sleep(0.1)
    assert len(sent) == count


async def test_streamed_session_delivers_periodic_updates(make_transport, provider, options):
    fast = options.__class__(telemetry_frequency_ms=50)
    parent = PairingSession(make_transport(), options=fast)
    child = PairingSession(make_transport(), capabilities=provider, options=fast)
    received = []
    parent.on_message_received(received.append)

    await parent.begin(Role.PARENT, CODE)
    await child.begin(Role.CHILD, CODE)
    assert await parent.wait_connected(timeout=2.0) and await child.wait_connected(timeout=2.0)

    assert await wait_until(lambda: len(updates(received)) >= 1, timeout=0.5)
    assert await wait_until(lambda: len(updates(received)) >= 4, timeout=2.0)

    await child.disconnect()
    await asyncio.sleep(0.05)
    count = len(updates(received))
    await asyncio.sleep(0.2)
    assert len(updates(received)) == count
    await parent.disconnect()
