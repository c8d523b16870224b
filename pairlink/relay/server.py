# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""
Pairing relay: joins a parent and a child WebSocket that present the same code.

Protocol:
- Client sends ``{"type": "hello", "code": "123456", "role": "parent"}`` first
- Relay answers ``{"type": "hello_ack", "peer": bool}`` or an ``error`` frame
- Every later text frame is forwarded verbatim to the peer, held until the
  peer joins, or dropped once the peer has left
- ``peer_joined`` / ``peer_left`` frames tell a member about the other side
"""

import contextlib
import json
import logging
import re
from typing import Any

from aiohttp import WSMsgType, web
from aiohttp.web_ws import WebSocketResponse


PAIRING_CODE_RE = re.compile(r"^[0-9]{6}$")
ROLES = ("parent", "child")


def is_benign_disconnect(exc: BaseException) -> bool:
    """Check if an exception represents a benign disconnection."""
    if isinstance(exc, OSError) and getattr(exc, "winerror", None) in (64, 121):
        return True
    if isinstance(exc, ConnectionResetError):
        return True
    return False


def _frame(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"))


class RelayRoom:
    """Members and held frames for one pairing code."""

    def __init__(self, code: str):
        self.code = code
        self.members: dict[str, WebSocketResponse] = {}
        self.backlog: dict[str, list[str]] = {role: [] for role in ROLES}
        self.departed: set[str] = set()

    @staticmethod
    def peer_of(role: str) -> str:
        return "child" if role == "parent" else "parent"


class PairingRelay:
    """Tracks rooms and relays frames between paired WebSockets."""

    def __init__(self, require_parent: bool = False):
        self.require_parent = require_parent
        self.rooms: dict[str, RelayRoom] = {}

    async def send_frame(self, ws: WebSocketResponse, payload: dict[str, Any]) -> bool:
        """Send a relay-generated frame. Returns True if successful."""
        if ws.closed:
            return False
        try:
            await ws.send_str(_frame(payload))
            return True
        except (ConnectionResetError, OSError):
            return False

    async def send_error(self, ws: WebSocketResponse, code: str, message: str) -> bool:
        return await self.send_frame(ws, {"type": "error", "code": code, "message": message})

    async def handle_websocket(self, ws: WebSocketResponse, request) -> None:
        """Handle one member connection from hello to disconnect."""
        remote = request.remote or "unknown"
        joined = await self._handle_handshake(ws, remote)
        if joined is None:
            return

        room, role = joined
        try:
            await self._announce_join(ws, room, role)
            await self._handle_message_loop(ws, room, role, remote)
        except Exception as exc:
            if is_benign_disconnect(exc):
                logging.getLogger('relay').info(f"disconnect {remote} ({type(exc).__name__})")
            else:
                logging.getLogger('relay').warning(f"websocket error from {remote}: {exc!r}")
        finally:
            await self._leave(room, role, ws)

    async def _handle_handshake(self, ws: WebSocketResponse, remote: str) -> tuple[RelayRoom, str] | None:
        try:
            msg = await ws.receive()
            if msg.type != WSMsgType.TEXT:
                await self.send_error(ws, "proto", "expected text message")
                await ws.close(code=4001, message=b"protocol")
                return None
            hello = json.loads(msg.data)
        except Exception as e:
            await self.send_error(ws, "proto", f"invalid hello: {e}")
            with contextlib.suppress(Exception):
                await ws.close(code=4001, message=b"protocol")
            return None

        if not isinstance(hello, dict) or hello.get("type") != "hello":
            await self.send_error(ws, "proto", "expect 'hello' first")
            await ws.close(code=4001, message=b"protocol")
            return None

        code = str(hello.get("code", ""))
        role = hello.get("role")
        if not PAIRING_CODE_RE.match(code) or role not in ROLES:
            await self.send_error(ws, "proto", "hello requires a 6-digit code and a role")
            await ws.close(code=4001, message=b"protocol")
            return None

        room = self.rooms.get(code)
        if role == "child" and self.require_parent and (room is None or "parent" not in room.members):
            logging.getLogger('relay').info(f"{remote}: child on unknown code {code}")
            await self.send_error(ws, "mismatch", f"no parent is waiting on code {code}")
            await ws.close(code=4003, message=b"mismatch")
            return None

        if room is None:
            room = self.rooms[code] = RelayRoom(code)
        if role in room.members:
            await self.send_error(ws, "mismatch", f"code {code} already has a {role}")
            await ws.close(code=4003, message=b"mismatch")
            return None

        room.members[role] = ws
        room.departed.discard(role)
        logging.getLogger('relay').info(
            f"{role} from {remote} joined {code} (peer present: {room.peer_of(role) in room.members})"
        )
        return room, role

    async def _announce_join(self, ws: WebSocketResponse, room: RelayRoom, role: str) -> None:
        """Acknowledge the hello, flush held frames, then tell the peer."""
        peer_ws = room.members.get(room.peer_of(role))
        await self.send_frame(ws, {"type": "hello_ack", "peer": peer_ws is not None})
        held = room.backlog[role]
        room.backlog[role] = []
        for text in held:
            await ws.send_str(text)
        if peer_ws is not None:
            await self.send_frame(peer_ws, {"type": "peer_joined", "role": role})

    async def _handle_message_loop(self, ws: WebSocketResponse, room: RelayRoom, role: str, remote: str) -> None:
        peer = room.peer_of(role)
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                peer_ws = room.members.get(peer)
                if peer_ws is not None and not peer_ws.closed:
                    await peer_ws.send_str(msg.data)
                elif peer in room.departed:
                    logging.getLogger('relay').debug(f"{room.code}: {peer} has left, dropping frame")
                else:
                    room.backlog[peer].append(msg.data)
            elif msg.type == WSMsgType.ERROR:
                logging.getLogger('relay').warning(f"WebSocket error: {ws.exception()}")
                break
            else:
                logging.getLogger('relay').debug(f"ignoring {msg.type} from {remote}")

    async def _leave(self, room: RelayRoom, role: str, ws: WebSocketResponse) -> None:
        if room.members.get(role) is not ws:
            return
        del room.members[role]
        room.departed.add(role)
        room.backlog[role] = []
        logging.getLogger('relay').info(f"{role} left {room.code}")
        if not room.members:
            self.rooms.pop(room.code, None)
            return
        peer_ws = room.members.get(room.peer_of(role))
        if peer_ws is not None:
            await self.send_frame(peer_ws, {"type": "peer_left", "role": role})


RELAY_KEY = web.AppKey("relay", PairingRelay)


async def websocket_handler(request):
    """Handle WebSocket upgrade requests on /pair."""
    ws = WebSocketResponse(heartbeat=20.0, autoping=True)
    await ws.prepare(request)

    await request.app[RELAY_KEY].handle_websocket(ws, request)
    return ws


async def health_check_handler(request):
    """Simple health check endpoint."""
    relay = request.app[RELAY_KEY]
    return web.json_response({"status": "ok", "service": "pairlink-relay", "rooms": len(relay.rooms)})


def create_app(require_parent: bool = False) -> web.Application:
    """Create the relay application."""
    app = web.Application()
    app[RELAY_KEY] = PairingRelay(require_parent=require_parent)
    app.router.add_get('/pair', websocket_handler)
    app.router.add_get('/api/health', health_check_handler)
    return app


async def start_relay_server(host: str = "0.0.0.0", port: int = 8080, require_parent: bool = False) -> web.AppRunner:
    """Start the relay and return its runner (call ``runner.cleanup()`` to stop)."""
    runner = web.AppRunner(create_app(require_parent=require_parent))
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    logging.getLogger('relay').info(f"Relay on http://{host}:{port}/ (WebSocket: /pair)")
    return runner
