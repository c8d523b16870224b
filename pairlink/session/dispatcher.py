# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..capabilities.protocol import CapabilityProvider
from ..exceptions import UnknownCommand
from ..protocol.messages import (
    AppUsageResponse,
    CameraCapture,
    Command,
    LocationResponse,
    Role,
    ScreenCapture,
    TelemetryMessage,
)


CommandHandler = Callable[[dict[str, Any]], Awaitable[None]]


class CommandDispatcher:
    """Runs parent commands against the child's capabilities.

    Each command runs as its own task and answers with a telemetry message.
    Failures and unknown commands are logged and absorbed; nothing propagates
    back to the parent.
    """

    def __init__(self, role: Role, capabilities: CapabilityProvider | None, emit: Callable[[TelemetryMessage], None]):
        self.role = Role(role)
        self._capabilities = capabilities
        self._emit = emit
        self._tasks: set[asyncio.Task] = set()
        self._handlers: dict[str, CommandHandler] = {
            "capture_screen": self._capture_screen,
            "capture_photo": self._capture_photo,
            "get_location": self._get_location,
            "get_app_usage": self._get_app_usage,
        }

    def handle(self, command: Command) -> asyncio.Task | None:
        if self.role is not Role.CHILD:
            return None

        try:
            handler = self._resolve(command.command)
        except UnknownCommand as e:
            logging.getLogger('dispatcher').warning(f"{e} (params={command.params})")
            return None

        logging.getLogger('dispatcher').info(f"dispatching {command.command}")
        task = asyncio.create_task(self._run(command.command, handler, command.params))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _resolve(self, name: str) -> CommandHandler:
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownCommand(name)
        return handler

    async def _run(self, name: str, handler: CommandHandler, params: dict[str, Any]) -> None:
        try:
            await handler(params)
        except Exception as e:
            logging.getLogger('dispatcher').error(f"command {name} failed: {e!r}")

    async def _capture_screen(self, params: dict[str, Any]) -> None:
        screenshot = await self._capabilities.capture_screen()
        self._emit(ScreenCapture(screenshot=screenshot))

    async def _capture_photo(self, params: dict[str, Any]) -> None:
        photo = await self._capabilities.capture_photo()
        self._emit(CameraCapture(photo=photo))

    async def _get_location(self, params: dict[str, Any]) -> None:
        location = await self._capabilities.get_current_location()
        self._emit(LocationResponse(location=location))

    async def _get_app_usage(self, params: dict[str, Any]) -> None:
        usage = sorted(self._capabilities.get_app_usage(), key=lambda entry: entry["timeSpent"], reverse=True)
        self._emit(AppUsageResponse(app_usage=usage))

    def cancel_pending(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
