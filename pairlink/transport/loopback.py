# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""
In-process transport pairing two sessions that share a LoopbackHub.

Rooms are keyed by pairing code. Frames sent before the peer joins are held
for it. When either side leaves, the remaining side's channel is closed as if
the remote end hung up, and the room goes away with its held frames. A fixed
connect delay stands in for real handshake latency.
"""

import asyncio
import contextlib
import logging

from ..exceptions import PairingCodeMismatch, PairingError, PairingTimeout
from ..protocol.messages import Role
from .protocol import ConnectedChannel, Transport, TransportFactory


def _peer_of(role: Role) -> Role:
    return Role.CHILD if role is Role.PARENT else Role.PARENT


class _Room:
    def __init__(self, code: str):
        self.code = code
        self.endpoints: dict[Role, "LoopbackChannel"] = {}
        self.pending: dict[Role, list[bytes]] = {Role.PARENT: [], Role.CHILD: []}
        self.joined: dict[Role, asyncio.Event] = {Role.PARENT: asyncio.Event(), Role.CHILD: asyncio.Event()}


class LoopbackHub:
    """Rendezvous point for loopback channels; share one per simulated pair."""

    def __init__(self):
        self._rooms: dict[str, _Room] = {}

    def has_room(self, code: str) -> bool:
        return code in self._rooms

    def is_attached(self, code: str, role: Role) -> bool:
        room = self._rooms.get(code)
        return room is not None and role in room.endpoints

    def _attach(self, channel: "LoopbackChannel") -> _Room:
        room = self._rooms.get(channel.pairing_code)
        if room is None:
            room = self._rooms[channel.pairing_code] = _Room(channel.pairing_code)
        if channel.role in room.endpoints:
            raise PairingCodeMismatch(
                f"code {channel.pairing_code} already has a {channel.role.value}",
                channel.pairing_code, channel.role.value,
            )

        room.endpoints[channel.role] = channel
        room.joined[channel.role].set()
        for data in room.pending[channel.role]:
            channel._inbox.put_nowait(data)
        room.pending[channel.role].clear()
        logging.getLogger('transport').debug(f"loopback {channel.role.value} joined {room.code}")
        return room

    def _detach(self, channel: "LoopbackChannel") -> None:
        room = self._rooms.get(channel.pairing_code)
        if room is None or room.endpoints.get(channel.role) is not channel:
            return
        del room.endpoints[channel.role]
        room.joined[channel.role].clear()
        logging.getLogger('transport').debug(f"loopback {channel.role.value} left {room.code}")

        peer = room.endpoints.get(_peer_of(channel.role))
        if peer is None:
            del self._rooms[room.code]
            return

        # the remaining side sees the departure as a remote hang-up
        logging.getLogger('transport').info(f"loopback {room.code}: {channel.role.value} left, closing {peer.role.value}")
        peer._teardown()
        peer._notify_closed(ConnectionResetError(f"{channel.role.value} left pairing {room.code}"))

    def _route(self, channel: "LoopbackChannel", data: bytes) -> None:
        room = self._rooms.get(channel.pairing_code)
        if room is None:
            return
        peer = _peer_of(channel.role)
        target = room.endpoints.get(peer)
        if target is not None:
            target._inbox.put_nowait(data)
        else:
            room.pending[peer].append(data)

    def sever(self, code: str, exc: Exception | None = None) -> None:
        """Simulate a transport failure: every channel on ``code`` goes away."""
        room = self._rooms.pop(code, None)
        if room is None:
            return
        failure = exc or ConnectionResetError(f"loopback room {code} severed")
        for channel in list(room.endpoints.values()):
            channel._teardown()
            channel._notify_closed(failure)


class LoopbackChannel(ConnectedChannel):
    """One end of a loopback pairing."""

    def __init__(self, hub: LoopbackHub, pairing_code: str, role: Role):
        super().__init__(pairing_code, role)
        self._hub = hub
        self._inbox: asyncio.Queue[bytes] = asyncio.Queue()
        self._pump_task: asyncio.Task | None = None

    async def send(self, data: bytes) -> None:
        if self._closed:
            raise ConnectionError("loopback channel closed")
        self._hub._route(self, bytes(data))

    def _start_delivery(self) -> None:
        if self._pump_task is None and not self._closed:
            self._pump_task = asyncio.create_task(self._pump())

    async def _pump(self) -> None:
        while True:
            data = await self._inbox.get()
            self._deliver(data)

    def _teardown(self) -> None:
        self._hub._detach(self)
        if self._pump_task and not self._pump_task.done():
            self._pump_task.cancel()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._teardown()
        task = self._pump_task
        if task is not None and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task


class LoopbackTransport(Transport):
    """Transport whose peers live in the same process."""

    def __init__(
        self,
        hub: LoopbackHub,
        connect_delay_s: float = 2.0,
        require_peer: bool = False,
        pairing_timeout_s: float = 30.0,
    ):
        self.hub = hub
        self.connect_delay_s = connect_delay_s
        self.require_peer = require_peer
        self.pairing_timeout_s = pairing_timeout_s

    async def connect(self, pairing_code: str, role: Role) -> ConnectedChannel:
        role = Role(role)
        peer = _peer_of(role)

        if self.require_peer and role is Role.CHILD and not self.hub.is_attached(pairing_code, Role.PARENT):
            logging.getLogger('transport').warning(f"loopback: no parent waiting on code {pairing_code}")
            raise PairingCodeMismatch(f"no parent is waiting on code {pairing_code}", pairing_code, role.value)

        channel = LoopbackChannel(self.hub, pairing_code, role)
        room = self.hub._attach(channel)

        paired = False
        try:
            await asyncio.sleep(self.connect_delay_s)
            if self.require_peer:
                try:
                    await asyncio.wait_for(room.joined[peer].wait(), timeout=self.pairing_timeout_s)
                except asyncio.TimeoutError:
                    logging.getLogger('transport').warning(
                        f"loopback: {peer.value} did not join {pairing_code} within {self.pairing_timeout_s}s"
                    )
                    raise PairingTimeout(f"no {peer.value} joined code {pairing_code}", pairing_code, role.value)
            if channel.closed:
                raise PairingError(f"{peer.value} left code {pairing_code} during pairing", pairing_code, role.value)
            paired = True
        finally:
            if not paired:
                await channel.close()

        logging.getLogger('transport').info(f"loopback channel ready: {role.value} on {pairing_code}")
        return channel


TransportFactory.register("loopback", LoopbackTransport)
