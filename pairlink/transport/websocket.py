# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import contextlib
import json
import logging

import aiohttp
from aiohttp import WSMsgType

from ..exceptions import PairingCodeMismatch, PairingError, PairingTimeout
from ..protocol.messages import Role
from .protocol import ConnectedChannel, Transport, TransportFactory


# Frames the relay itself produces; never handed to the session.
RELAY_FRAME_TYPES = frozenset({"hello_ack", "peer_joined", "peer_left", "error"})


def relay_frame_type(text: str) -> str | None:
    """Return the relay frame type of ``text``, or None for application frames."""
    if '"type"' not in text:
        return None
    try:
        data = json.loads(text)
    except ValueError:
        return None
    if isinstance(data, dict) and data.get("type") in RELAY_FRAME_TYPES:
        return data["type"]
    return None


class WebSocketChannel(ConnectedChannel):
    """Channel relayed through the pairing relay over an aiohttp WebSocket."""

    def __init__(self, pairing_code: str, role: Role, client: aiohttp.ClientSession,
                 ws: aiohttp.ClientWebSocketResponse):
        super().__init__(pairing_code, role)
        self._client = client
        self._ws = ws
        self._pump_task: asyncio.Task | None = None

    async def send(self, data: bytes) -> None:
        if self._closed or self._ws.closed:
            raise ConnectionError("websocket channel closed")
        await self._ws.send_str(data.decode("utf-8"))

    def _start_delivery(self) -> None:
        if self._pump_task is None and not self._closed:
            self._pump_task = asyncio.create_task(self._pump())

    async def _pump(self) -> None:
        ws = self._ws
        failure: Exception | None = None
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    frame_type = relay_frame_type(msg.data)
                    if frame_type is None:
                        self._deliver(msg.data.encode("utf-8"))
                    elif frame_type == "peer_left":
                        logging.getLogger('transport').info(f"relay: peer left {self.pairing_code}")
                        failure = ConnectionResetError(f"peer left pairing {self.pairing_code}")
                        break
                    elif frame_type == "error":
                        logging.getLogger('transport').warning(f"relay error on {self.pairing_code}: {msg.data}")
                    else:
                        logging.getLogger('transport').info(f"relay: {frame_type} on {self.pairing_code}")
                elif msg.type == WSMsgType.BINARY:
                    self._deliver(msg.data)
                elif msg.type == WSMsgType.ERROR:
                    failure = ws.exception() or ConnectionError("websocket error")
                    logging.getLogger('transport').warning(f"WebSocket error: {failure!r}")
                    break
        except (aiohttp.ClientError, ConnectionResetError, OSError) as e:
            failure = e
            logging.getLogger('transport').warning(f"WebSocket receive failed on {self.pairing_code}: {e!r}")

        if not self._closed:
            logging.getLogger('transport').info(f"relay connection lost for {self.role.value} on {self.pairing_code}")
            self._notify_closed(failure or ConnectionResetError("relay closed the connection"))
            await self._release()

    async def _release(self) -> None:
        with contextlib.suppress(aiohttp.ClientError, OSError):
            await self._ws.close()
        await self._client.close()

    async def close(self) -> None:
        task = self._pump_task
        running = task is not None and task is not asyncio.current_task() and not task.done()
        if self._closed:
            # lost remotely; the pump is finishing its own release
            if running:
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            return
        self._closed = True
        if running:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._release()


class WebSocketTransport(Transport):
    """Pairs through the relay server: ``hello`` handshake, then relayed frames."""

    def __init__(
        self,
        relay_url: str,
        require_peer: bool = False,
        pairing_timeout_s: float = 30.0,
        heartbeat_s: float = 20.0,
    ):
        self.relay_url = relay_url
        self.require_peer = require_peer
        self.pairing_timeout_s = pairing_timeout_s
        self.heartbeat_s = heartbeat_s

    async def connect(self, pairing_code: str, role: Role) -> ConnectedChannel:
        role = Role(role)
        client = aiohttp.ClientSession()
        paired = False
        try:
            try:
                ws = await client.ws_connect(self.relay_url, heartbeat=self.heartbeat_s)
            except aiohttp.ClientError as e:
                logging.getLogger('transport').warning(f"relay {self.relay_url} unreachable: {e!r}")
                raise PairingError(f"relay unreachable: {e}", pairing_code, role.value) from e

            await ws.send_str(json.dumps({"type": "hello", "code": pairing_code, "role": role.value},
                                         separators=(",", ":")))
            try:
                await asyncio.wait_for(self._handshake(ws, pairing_code, role), timeout=self.pairing_timeout_s)
            except asyncio.TimeoutError:
                logging.getLogger('transport').warning(f"pairing on {pairing_code} timed out after {self.pairing_timeout_s}s")
                raise PairingTimeout(f"pairing on code {pairing_code} timed out", pairing_code, role.value)

            paired = True
        finally:
            if not paired:
                await client.close()

        logging.getLogger('transport').info(f"relay channel ready: {role.value} on {pairing_code}")
        return WebSocketChannel(pairing_code, role, client, ws)

    async def _handshake(self, ws: aiohttp.ClientWebSocketResponse, pairing_code: str, role: Role) -> None:
        ack = await self._receive_json(ws, pairing_code, role)
        if ack.get("type") == "error":
            if ack.get("code") == "mismatch":
                raise PairingCodeMismatch(ack.get("message", "pairing code mismatch"), pairing_code, role.value)
            raise PairingError(ack.get("message", "relay refused pairing"), pairing_code, role.value)
        if ack.get("type") != "hello_ack":
            raise PairingError(f"unexpected relay reply {ack.get('type')!r}", pairing_code, role.value)

        if self.require_peer and not ack.get("peer"):
            while True:
                frame = await self._receive_json(ws, pairing_code, role)
                if frame.get("type") == "peer_joined":
                    return

    async def _receive_json(self, ws: aiohttp.ClientWebSocketResponse, pairing_code: str, role: Role) -> dict:
        msg = await ws.receive()
        if msg.type != WSMsgType.TEXT:
            raise PairingError(f"relay closed during handshake ({msg.type.name})", pairing_code, role.value)
        try:
            data = json.loads(msg.data)
        except ValueError as e:
            raise PairingError(f"invalid relay frame: {e}", pairing_code, role.value) from e
        if not isinstance(data, dict):
            raise PairingError("invalid relay frame", pairing_code, role.value)
        return data


TransportFactory.register("websocket", WebSocketTransport)
