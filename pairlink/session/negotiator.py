# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""
Permission negotiation across a paired session.

The parent sends a ``permission_request`` and waits for the matching
``permission_result``. The child waits the negotiation delay, prompts through
its capability provider, records the outcome, announces grants with
``permission_granted`` and replies. Every request runs independently; two
requests for the same kind are not merged.
"""

import asyncio
import logging
import uuid
from collections.abc import Callable

from ..capabilities.protocol import CapabilityProvider
from ..exceptions import RoleViolation
from ..protocol.messages import (
    ComprehensiveUpdate,
    Message,
    PermissionGranted,
    PermissionRequest,
    PermissionResult,
    PermissionUpdate,
    Role,
)
from .permissions import PermissionSet


ChangeListener = Callable[[str, bool], None]


class PermissionNegotiator:
    """Mediates permission requests for one side of a session.

    On the child it owns the authoritative PermissionSet, kept in step with
    the capability provider. On the parent it keeps a mirrored view built from
    received telemetry.
    """

    def __init__(
        self,
        role: Role,
        send: Callable[[Message], None],
        capabilities: CapabilityProvider | None = None,
        permissions: PermissionSet | None = None,
        negotiation_delay_ms: int = 1500,
        response_timeout_ms: int = 10000,
    ):
        self.role = Role(role)
        self._send = send
        self._capabilities = capabilities
        self._permissions = permissions if permissions is not None else PermissionSet()
        self.negotiation_delay_ms = negotiation_delay_ms
        self.response_timeout_ms = response_timeout_ms
        self._waiters: dict[str, asyncio.Future] = {}
        self._tasks: set[asyncio.Task] = set()
        self._change_listener: ChangeListener | None = None

        if self.role is Role.CHILD:
            if capabilities is None:
                raise ValueError("child negotiator requires a capability provider")
            capabilities.set_permission_change_callback(self._on_provider_change)

    def get_status(self) -> dict[str, bool]:
        """Snapshot of the grant state; no side effects."""
        return self._permissions.snapshot()

    def set_change_listener(self, listener: ChangeListener | None) -> None:
        """Register (or clear) the sink for permission flips on this side."""
        self._change_listener = listener

    # Parent side

    async def request_permission(self, kind: str) -> bool:
        """Ask the child for ``kind``. Resolves to the grant state, never raises on denial."""
        if self.role is not Role.PARENT:
            logging.getLogger('negotiator').warning(f"request_permission({kind!r}) called on the child")
            raise RoleViolation("request_permission", self.role.value)
        PermissionSet.validate_kind(kind)

        request = PermissionRequest(request_id=uuid.uuid4().hex, permission=kind)
        self._send(request)  # NotConnected propagates to the caller

        future = asyncio.get_running_loop().create_future()
        self._waiters[request.request_id] = future
        logging.getLogger('negotiator').info(f"requesting {kind} permission from child (id={request.request_id})")

        try:
            return await asyncio.wait_for(future, timeout=self.response_timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            logging.getLogger('negotiator').warning(
                f"{kind} permission request timed out after {self.response_timeout_ms}ms"
            )
            return False
        finally:
            self._waiters.pop(request.request_id, None)

    def observe(self, message: Message) -> None:
        """Fold an inbound message into the mirrored view and settle waiters."""
        if isinstance(message, PermissionResult):
            self._permissions.set(message.permission, message.granted)
            future = self._waiters.get(message.request_id)
            if future is not None and not future.done():
                future.set_result(message.granted)
            elif future is None:
                logging.getLogger('negotiator').debug(f"late permission_result for {message.request_id}")
        elif isinstance(message, PermissionUpdate):
            self._permissions.set(message.kind, message.granted)
        elif isinstance(message, PermissionGranted):
            self._permissions.set(message.permission, True)
        elif isinstance(message, ComprehensiveUpdate):
            self._permissions.update(message.permissions)

    # Child side

    def handle_request(self, request: PermissionRequest) -> asyncio.Task | None:
        """Start an independent negotiation for ``request``."""
        if self.role is not Role.CHILD:
            logging.getLogger('negotiator').warning("permission_request received on the parent, ignoring")
            return None

        task = asyncio.create_task(self._negotiate(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _negotiate(self, request: PermissionRequest) -> None:
        kind = request.permission
        await asyncio.sleep(self.negotiation_delay_ms / 1000.0)

        granted = await self._prompt(kind)
        self._permissions.set(kind, granted)
        logging.getLogger('negotiator').info(f"permission {kind}: {'granted' if granted else 'denied'}")

        if granted:
            self._send(PermissionGranted(permission=kind))
        self._send(PermissionResult(request_id=request.request_id, permission=kind, granted=granted))

    async def _prompt(self, kind: str) -> bool:
        try:
            return bool(await self._capabilities.request_permission(kind))
        except Exception as e:
            logging.getLogger('negotiator').error(f"error requesting {kind} permission: {e!r}")
            return False

    def _on_provider_change(self, kind: str, granted: bool) -> None:
        if kind not in self._permissions:
            logging.getLogger('negotiator').warning(f"provider reported unknown permission kind {kind!r}")
            return
        self._permissions.set(kind, granted)
        listener = self._change_listener
        if listener is not None:
            listener(kind, granted)

    def cancel_pending(self) -> None:
        """Abandon in-flight negotiations; parent waiters resolve to False."""
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

        for request_id, future in list(self._waiters.items()):
            if not future.done():
                logging.getLogger('negotiator').info(f"abandoning permission request {request_id}")
                future.set_result(False)

    def detach(self) -> None:
        """Release the capability provider's change callback."""
        if self.role is Role.CHILD and self._capabilities is not None:
            self._capabilities.set_permission_change_callback(None)
