# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from ..capabilities.protocol import CapabilityProvider
from ..protocol.messages import (
    AppActivity,
    CameraCapture,
    ComprehensiveUpdate,
    EmergencyAlert,
    LocationUpdate,
    NotificationReceived,
    PermissionUpdate,
    ScreenCapture,
    TelemetryMessage,
    utc_timestamp,
)
from .negotiator import PermissionNegotiator


Emit = Callable[[TelemetryMessage], None]


class TelemetryStreamer:
    """Child-side producer of periodic and event-driven telemetry."""

    def __init__(
        self,
        capabilities: CapabilityProvider,
        negotiator: PermissionNegotiator,
        frequency_ms: int = 5000,
        recent_photos: int = 5,
    ):
        self._capabilities = capabilities
        self._negotiator = negotiator
        self.frequency_ms = frequency_ms
        self.recent_photos = recent_photos
        self._sink: Emit | None = None
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._sink is not None

    def status(self) -> dict[str, Any]:
        return {"streaming": self.is_running, "frequency": self.frequency_ms}

    def start(self, emit: Emit) -> None:
        """Begin streaming into ``emit``. A second start while running is ignored."""
        if self.is_running:
            logging.getLogger('telemetry').warning("Data streaming already active")
            return

        self._sink = emit
        logging.getLogger('telemetry').info(f"Starting data streaming every {self.frequency_ms}ms")

        self._negotiator.set_change_listener(self.send_permission_update)
        self._capabilities.watch_location(self.send_location_update)

        task = asyncio.create_task(self._run(self.frequency_ms / 1000.0))

        def on_done(t: asyncio.Task):
            if t.cancelled():
                return
            exc = t.exception()
            if exc:
                logging.getLogger('telemetry').error(f"telemetry loop crashed: {exc!r}")
        task.add_done_callback(on_done)
        self._task = task

    def stop(self) -> None:
        """Cancel the timer, drop listeners and the sink. Idempotent."""
        if not self.is_running:
            return

        logging.getLogger('telemetry').info("Stopping data streaming")
        self._sink = None

        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None

        self._negotiator.set_change_listener(None)
        self._capabilities.unwatch_location()

    def set_frequency(self, frequency_ms: int) -> None:
        """Change the collection interval, restarting the timer if running."""
        if frequency_ms <= 0:
            raise ValueError(f"frequency must be positive, got {frequency_ms}")
        self.frequency_ms = frequency_ms

        if self.is_running:
            sink = self._sink
            self.stop()
            self.start(sink)

    async def _run(self, interval_s: float) -> None:
        while True:
            await self.collect_and_stream()
            await asyncio.sleep(interval_s)

    async def collect_and_stream(self) -> None:
        """Run one collection cycle and emit a comprehensive_update."""
        sink = self._sink
        if sink is None:
            return

        timestamp = utc_timestamp()
        try:
            permissions = self._negotiator.get_status()
            device_info = self._capabilities.get_device_info()
            app_usage = self._capabilities.get_app_usage()
        except Exception as e:
            logging.getLogger('telemetry').error(f"Error collecting device data: {e!r}")
            return

        location = None
        if permissions.get("location"):
            try:
                location = await self._capabilities.get_current_location()
            except Exception as e:
                logging.getLogger('telemetry').warning(f"Failed to get current location: {e}")

        recent_photos = None
        if permissions.get("gallery"):
            try:
                recent_photos = await self._capabilities.get_recent_photos(self.recent_photos)
                recent_photos = list(recent_photos)[:self.recent_photos]
            except Exception as e:
                logging.getLogger('telemetry').warning(f"Failed to get recent photos: {e}")

        # Stopped or restarted while fetching
        if self._sink is not sink:
            return

        sink(ComprehensiveUpdate(
            timestamp=timestamp,
            device_info=device_info,
            app_usage=app_usage,
            permissions=permissions,
            location=location,
            recent_photos=recent_photos,
        ))

    def _emit(self, message: TelemetryMessage) -> None:
        sink = self._sink
        if sink is None:
            return
        sink(message)

    def send_permission_update(self, kind: str, granted: bool) -> None:
        self._emit(PermissionUpdate(permission={"type": kind, "granted": granted}))

    def send_location_update(self, location: dict[str, Any]) -> None:
        self._emit(LocationUpdate(location=location))

    def send_app_activity(self, app_name: str, action: str) -> None:
        """Report an app transition: ``opened``, ``closed`` or ``backgrounded``."""
        self._emit(AppActivity(app={"name": app_name, "action": action}))

    def send_notification_received(self, notification: dict[str, Any]) -> None:
        self._emit(NotificationReceived(notification={
            "title": notification.get("title"),
            "body": notification.get("body"),
            "app": notification.get("app"),
        }))

    def send_screen_capture(self, screenshot: dict[str, Any]) -> None:
        self._emit(ScreenCapture(screenshot=screenshot))

    def send_camera_capture(self, photo: dict[str, Any]) -> None:
        self._emit(CameraCapture(photo=photo))

    def send_emergency_alert(self, alert_type: str, message: str) -> None:
        """Raise an alert (``panic``, ``location_alert``, ``app_alert``) at high priority."""
        self._emit(EmergencyAlert(alert={"type": alert_type, "message": message, "priority": "high"}))
