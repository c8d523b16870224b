# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio

import pytest

from pairlink.capabilities import SimulatedCapabilityProvider
from pairlink.exceptions import NotConnected, RoleViolation, UnknownPermissionKind
from pairlink.protocol import PermissionGranted, PermissionRequest, PermissionResult, PermissionUpdate, Role
from pairlink.session import PairingSession, PermissionNegotiator

from .conftest import CODE, wait_until


class FailingPromptProvider(SimulatedCapabilityProvider):
    async def request_permission(self, kind):
        raise RuntimeError("platform prompt crashed")


async def test_location_request_grants_and_announces(pair):
    parent, child = pair
    received = []
    parent.on_message_received(received.append)

    granted = await parent.request_permission("location")

    assert granted is True
    assert child.permissions["location"] is True
    assert await wait_until(lambda: any(isinstance(m, PermissionGranted) for m in received))
    announcement = next(m for m in received if isinstance(m, PermissionGranted))
    assert announcement.permission == "location"
    assert parent.permissions["location"] is True


async def test_grant_surfaces_permission_update_while_streaming(pair):
    parent, _ = pair
    received = []
    parent.on_message_received(received.append)

    await parent.request_permission("camera")

    assert await wait_until(lambda: any(isinstance(m, PermissionUpdate) for m in received))
    update = next(m for m in received if isinstance(m, PermissionUpdate))
    assert update.permission == {"type": "camera", "granted": True}


async def test_denied_request_resolves_false_without_announcement(make_transport, options):
    provider = SimulatedCapabilityProvider(seed=1, deny=["gallery"], location_interval_s=3600)
    parent = PairingSession(make_transport(), options=options)
    child = PairingSession(make_transport(), capabilities=provider, options=options)
    await parent.begin(Role.PARENT, CODE)
    await child.begin(Role.CHILD, CODE)
    assert await parent.wait_connected(timeout=2.0) and await child.wait_connected(timeout=2.0)

    received = []
    parent.on_message_received(received.append)
    assert await parent.request_permission("gallery") is False

    await asyncio.sleep(0.05)
    assert not any(isinstance(m, PermissionGranted) for m in received)
    assert child.permissions["gallery"] is False

    await child.disconnect()
    await parent.disconnect()


async def test_capability_failure_collapses_to_false(make_transport, options):
    parent = PairingSession(make_transport(), options=options)
    child = PairingSession(make_transport(), capabilities=FailingPromptProvider(), options=options)
    await parent.begin(Role.PARENT, CODE)
    await child.begin(Role.CHILD, CODE)
    assert await parent.wait_connected(timeout=2.0) and await child.wait_connected(timeout=2.0)

    assert await parent.request_permission("camera") is False

    await child.disconnect()
    await parent.disconnect()


async def test_rerequesting_a_granted_permission_reruns_negotiation(pair):
    parent, child = pair
    assert await parent.request_permission("notifications") is True
    assert await parent.request_permission("notifications") is True
    assert child.permissions["notifications"] is True


async def test_concurrent_same_kind_requests_resolve_independently(pair):
    parent, _ = pair
    results = await asyncio.gather(
        parent.request_permission("camera"),
        parent.request_permission("camera"),
        parent.request_permission("location"),
    )
    assert results == [True, True, True]


async def test_child_cannot_request_permissions(pair):
    _, child = pair
    with pytest.raises(RoleViolation):
        await child.request_permission("camera")


async def test_unknown_kind_is_rejected_without_mutation(pair):
    parent, child = pair
    before_parent, before_child = parent.permissions, child.permissions

    with pytest.raises(UnknownPermissionKind):
        await parent.request_permission("microphone")

    assert parent.permissions == before_parent
    assert child.permissions == before_child


async def test_unknown_kind_checked_before_connection(make_transport, options):
    session = PairingSession(make_transport(), options=options)
    with pytest.raises(UnknownPermissionKind):
        await session.request_permission("microphone")
    with pytest.raises(NotConnected):
        await session.request_permission("camera")


async def test_disconnect_while_pending_resolves_false_and_stays_quiet(make_transport, options, provider):
    slow = options.__class__(negotiation_delay_ms=500, response_timeout_ms=5000)
    parent = PairingSession(make_transport(), options=slow)
    child = PairingSession(make_transport(), capabilities=provider, options=slow)
    await parent.begin(Role.PARENT, CODE)
    await child.begin(Role.CHILD, CODE)
    assert await parent.wait_connected(timeout=2.0) and await child.wait_connected(timeout=2.0)

    pending = asyncio.create_task(parent.request_permission("location"))
    assert await wait_until(lambda: len(child.negotiator._tasks) == 1)

    await child.disconnect()
    await parent.disconnect()

    assert await pending is False
    await asyncio.sleep(0.6)
    assert provider.is_granted("location") is False


async def test_unanswered_request_times_out_false(make_transport, options):
    quick = options.__class__(response_timeout_ms=50)
    parent = PairingSession(make_transport(), options=quick)
    await parent.begin(Role.PARENT, CODE)
    assert await parent.wait_connected(timeout=2.0)

    # nobody is on the other end to answer
    assert await parent.request_permission("camera") is False
    await parent.disconnect()


async def test_child_negotiator_replies_with_result():
    provider = SimulatedCapabilityProvider(seed=3)
    sent = []
    negotiator = PermissionNegotiator(Role.CHILD, sent.append, provider, negotiation_delay_ms=0)

    task = negotiator.handle_request(PermissionRequest(request_id="r1", permission="gallery"))
    await task

    assert [type(m) for m in sent] == [PermissionGranted, PermissionResult]
    assert sent[1].request_id == "r1" and sent[1].granted is True
    assert negotiator.get_status()["gallery"] is True


async def test_external_revocation_reaches_change_listener():
    provider = SimulatedCapabilityProvider(seed=3)
    negotiator = PermissionNegotiator(Role.CHILD, lambda m: None, provider, negotiation_delay_ms=0)
    changes = []
    negotiator.set_change_listener(lambda kind, granted: changes.append((kind, granted)))

    await provider.request_permission("camera")
    provider.revoke("camera")

    assert changes == [("camera", True), ("camera", False)]
    assert negotiator.get_status()["camera"] is False


def test_parent_mirror_tracks_inbound_updates():
    negotiator = PermissionNegotiator(Role.PARENT, lambda m: None)
    negotiator.observe(PermissionGranted(permission="camera"))
    negotiator.observe(PermissionUpdate(permission={"type": "location", "granted": True}))
    assert negotiator.get_status()["camera"] is True
    assert negotiator.get_status()["location"] is True

    negotiator.observe(PermissionUpdate(permission={"type": "camera", "granted": False}))
    assert negotiator.get_status()["camera"] is False
