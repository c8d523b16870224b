# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import contextlib
import logging
import re
import secrets
from collections.abc import Callable
from enum import Enum
from typing import Any

from ..capabilities.protocol import CapabilityProvider
from ..exceptions import InvalidCodeFormat, MessageFormatError, NotConnected, PairingError, RoleViolation
from ..protocol.codec import decode_message, encode_message
from ..protocol.messages import Command, Message, PermissionRequest, Role, TelemetryMessage
from ..transport.protocol import ConnectedChannel, Transport
from .buffer import ReceiveBuffer
from .dispatcher import CommandDispatcher
from .negotiator import PermissionNegotiator
from .options import SessionOptions
from .permissions import PermissionSet
from .streamer import TelemetryStreamer


PAIRING_CODE_RE = re.compile(r"[0-9]{6}")


def validate_pairing_code(code: Any) -> str:
    """Return ``code`` if it is exactly six ASCII digits, else raise InvalidCodeFormat."""
    if not isinstance(code, str) or not PAIRING_CODE_RE.fullmatch(code):
        logging.getLogger('session').warning(f"rejecting pairing code {code!r}")
        raise InvalidCodeFormat(code)
    return code


def generate_pairing_code() -> str:
    """Random six-digit code with no leading zero."""
    return str(100000 + secrets.randbelow(900000))


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"

    @property
    def connected(self) -> bool:
        return self is ConnectionState.CONNECTED


StateHandler = Callable[[ConnectionState], None]
MessageHandler = Callable[[TelemetryMessage], None]


class PairingSession:
    """One device's side of a parent/child pairing.

    Owns the connection lifecycle (idle -> connecting -> connected ->
    disconnected), a FIFO outbound queue drained by a single writer task, and
    on the parent a bounded receive buffer. Role-specific collaborators (the
    negotiator, and on the child the streamer and dispatcher) are rebuilt for
    each begin() cycle.
    """

    def __init__(
        self,
        transport: Transport,
        capabilities: CapabilityProvider | None = None,
        options: SessionOptions | None = None,
    ):
        self.transport = transport
        self.capabilities = capabilities
        self.options = options or SessionOptions()
        self.state = ConnectionState.IDLE
        self.last_error: Exception | None = None
        self.buffer = ReceiveBuffer(self.options.buffer_capacity)

        self.negotiator: PermissionNegotiator | None = None
        self.streamer: TelemetryStreamer | None = None
        self.dispatcher: CommandDispatcher | None = None

        self._role: Role | None = None
        self._pairing_code: str | None = None
        self._permissions = PermissionSet()  # child grants outlive a single cycle
        self._state_handlers: list[StateHandler] = []
        self._message_handlers: list[MessageHandler] = []
        self._channel: ConnectedChannel | None = None
        self._outbound: asyncio.Queue[Message] | None = None
        self._connect_task: asyncio.Task | None = None
        self._writer_task: asyncio.Task | None = None
        self._release_task: asyncio.Task | None = None
        self._settled = asyncio.Event()
        self._cycle = 0

    def __repr__(self):
        role = self._role.value if self._role else None
        return f"PairingSession(role={role}, code={self._pairing_code}, state={self.state.value})"

    @property
    def role(self) -> Role | None:
        return self._role

    @property
    def pairing_code(self) -> str | None:
        return self._pairing_code

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def permissions(self) -> dict[str, bool]:
        """Owned grant state on the child, mirrored view on the parent."""
        if self.negotiator is not None:
            return self.negotiator.get_status()
        return self._permissions.snapshot()

    def status(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "connected": self.connected,
            "role": self._role.value if self._role else None,
            "pairingCode": self._pairing_code,
        }

    # Observers

    def on_connection_state_changed(self, handler: StateHandler) -> None:
        self._state_handlers.append(handler)

    def on_message_received(self, handler: MessageHandler) -> None:
        self._message_handlers.append(handler)

    def _set_state(self, state: ConnectionState) -> None:
        previous, self.state = self.state, state
        logging.getLogger('session').info(f"{self._describe()} {previous.value} -> {state.value}")
        if state in (ConnectionState.CONNECTED, ConnectionState.DISCONNECTED):
            self._settled.set()
        for handler in list(self._state_handlers):
            try:
                handler(state)
            except Exception as e:
                logging.getLogger('session').error(f"connection state handler failed: {e!r}")

    def _notify_message(self, message: TelemetryMessage) -> None:
        for handler in list(self._message_handlers):
            try:
                handler(message)
            except Exception as e:
                logging.getLogger('session').error(f"message handler failed on {message.TYPE}: {e!r}")

    def _describe(self) -> str:
        role = self._role.value if self._role else "-"
        return f"[{role} {self._pairing_code or '------'}]"

    # Lifecycle

    async def begin(self, role: Role | str, pairing_code: str) -> "PairingSession":
        """Start a pairing cycle; an active cycle is disconnected first.

        Returns once the session is Connecting. Use wait_connected() to wait
        for the transport.
        """
        code = validate_pairing_code(pairing_code)
        role = Role(role)
        if role is Role.CHILD and self.capabilities is None:
            raise ValueError("child sessions require a capability provider")

        if self.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            logging.getLogger('session').info(f"{self._describe()} implicit disconnect before new pairing")
            await self.disconnect()
        if self._release_task is not None:
            await self._release_task

        if self.negotiator is not None:
            self.negotiator.detach()

        self._cycle += 1
        self._role = role
        self._pairing_code = code
        self.last_error = None
        self.buffer.clear()
        self._settled = asyncio.Event()
        self.state = ConnectionState.IDLE
        self._build_components(role)
        self.options.log_info(f"{role.value} code={code}")

        self._set_state(ConnectionState.CONNECTING)
        self._connect_task = asyncio.create_task(self._connect(self._cycle, role, code))
        return self

    def _build_components(self, role: Role) -> None:
        opts = self.options
        if role is Role.PARENT:
            self.negotiator = PermissionNegotiator(
                role, self.send,
                negotiation_delay_ms=opts.negotiation_delay_ms,
                response_timeout_ms=opts.response_timeout_ms,
            )
            self.streamer = None
            self.dispatcher = None
        else:
            self.negotiator = PermissionNegotiator(
                role, self._emit, self.capabilities, self._permissions,
                negotiation_delay_ms=opts.negotiation_delay_ms,
                response_timeout_ms=opts.response_timeout_ms,
            )
            self.streamer = TelemetryStreamer(
                self.capabilities, self.negotiator,
                frequency_ms=opts.telemetry_frequency_ms,
                recent_photos=opts.recent_photos,
            )
            self.dispatcher = CommandDispatcher(role, self.capabilities, self._emit)

    async def _connect(self, cycle: int, role: Role, code: str) -> None:
        try:
            channel = await self.transport.connect(code, role)
        except PairingError as e:
            logging.getLogger('session').warning(f"{self._describe()} pairing failed: {e}")
            self.last_error = e
            if cycle == self._cycle and self._begin_teardown():
                await self._release()
            return
        except Exception as e:
            logging.getLogger('session').error(f"{self._describe()} transport error: {e!r}")
            self.last_error = e
            if cycle == self._cycle and self._begin_teardown():
                await self._release()
            return

        if cycle != self._cycle or self.state is not ConnectionState.CONNECTING:
            await channel.close()
            return

        self._channel = channel
        self._outbound = asyncio.Queue()
        channel.on_close(self._on_channel_closed)
        self._writer_task = asyncio.create_task(self._writer_loop(channel, self._outbound))

        self._set_state(ConnectionState.CONNECTED)
        channel.on_receive(self._on_frame)

        if role is Role.CHILD and self.state is ConnectionState.CONNECTED:
            self.streamer.start(self._emit)

    async def wait_connected(self, timeout: float | None = None) -> bool:
        """Wait until the cycle connects or ends. Returns True if Connected."""
        if self.state is ConnectionState.IDLE:
            return False
        try:
            await asyncio.wait_for(self._settled.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return self.connected

    async def disconnect(self) -> None:
        """Tear down the current cycle. Idempotent, safe before connection completes."""
        if self._begin_teardown():
            await self._release()

    def _begin_teardown(self) -> bool:
        if self.state not in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            return False

        if self.streamer:
            self.streamer.stop()
        if self.negotiator:
            self.negotiator.cancel_pending()
        if self.dispatcher:
            self.dispatcher.cancel_pending()

        self._set_state(ConnectionState.DISCONNECTED)
        return True

    async def _release(self) -> None:
        current = asyncio.current_task()

        for attr in ("_connect_task", "_writer_task"):
            task = getattr(self, attr)
            setattr(self, attr, None)
            if task is None or task is current or task.done():
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        channel, self._channel = self._channel, None
        self._outbound = None
        if channel is not None:
            try:
                await channel.close()
            except Exception as e:
                logging.getLogger('session').warning(f"{self._describe()} channel close error: {e!r}")
        logging.getLogger('session').info(f"{self._describe()} released")

    def _on_channel_closed(self, exc: Exception | None) -> None:
        if self.state is not ConnectionState.CONNECTED:
            return
        logging.getLogger('session').warning(f"{self._describe()} channel lost: {exc!r}")
        self.last_error = exc
        if self._begin_teardown():
            self._release_task = asyncio.create_task(self._release())
            self._release_task.add_done_callback(self._clear_release_task)

    def _clear_release_task(self, task: asyncio.Task) -> None:
        if self._release_task is task:
            self._release_task = None

    # Outbound

    def send(self, message: Message) -> None:
        """Queue ``message`` for the peer. Raises NotConnected unless Connected."""
        if self.state is not ConnectionState.CONNECTED or self._outbound is None:
            raise NotConnected(f"cannot send {message.TYPE}: session is {self.state.value}", self.state.value)
        if message.SENDER is not self._role:
            raise RoleViolation(f"sending {message.TYPE}", self._role.value)
        self._outbound.put_nowait(message)

    def _emit(self, message: Message) -> None:
        """Internal send path; silently drops once the cycle is torn down."""
        if self.state is not ConnectionState.CONNECTED or self._outbound is None:
            logging.getLogger('session').debug(f"{self._describe()} dropping {message.TYPE} after teardown")
            return
        self._outbound.put_nowait(message)

    def send_command(self, command: str, params: dict[str, Any] | None = None) -> Command:
        """Send a command to the child. Parent only."""
        if self._role is Role.CHILD:
            raise RoleViolation("send_command", self._role.value)
        message = Command(command=command, params=dict(params or {}))
        self.send(message)
        return message

    async def request_permission(self, kind: str) -> bool:
        """Ask the child to grant ``kind``. Parent only."""
        if self._role is Role.CHILD:
            raise RoleViolation("request_permission", self._role.value)
        PermissionSet.validate_kind(kind)
        if self.negotiator is None:
            raise NotConnected("cannot request permissions before begin()", self.state.value)
        return await self.negotiator.request_permission(kind)

    async def _writer_loop(self, channel: ConnectedChannel, queue: asyncio.Queue) -> None:
        while True:
            message = await queue.get()
            try:
                await channel.send(encode_message(message))
            except Exception as e:
                logging.getLogger('session').error(f"{self._describe()} send {message.TYPE} failed: {e!r}")
                self._on_channel_closed(e)
                return

    # Inbound

    def _on_frame(self, data: bytes) -> None:
        if self.state is not ConnectionState.CONNECTED:
            return
        try:
            message = decode_message(data)
        except MessageFormatError as e:
            logging.getLogger('session').warning(f"{self._describe()} dropping frame: {e}")
            return

        if message.SENDER is self._role:
            logging.getLogger('session').warning(f"{self._describe()} unexpected {message.TYPE} from peer, dropping")
            return

        if self._role is Role.PARENT:
            self.negotiator.observe(message)
            if isinstance(message, TelemetryMessage):
                self.buffer.push(message)
                self._notify_message(message)
        elif isinstance(message, Command):
            self.dispatcher.handle(message)
        elif isinstance(message, PermissionRequest):
            self.negotiator.handle_request(message)
