# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""
Simulated device capabilities for demos and tests.

Stands in for the platform permission prompts and sensors:
- Permission prompts grant unless the kind is on the deny list
- Screen projection is approved with a configurable probability
- Device info and app usage are randomized (seedable)
- Location fixes are delivered periodically while watched and granted
"""

import asyncio
import logging
import random
import time
from collections.abc import Iterable
from typing import Any

from ..config import Config
from ..exceptions import PermissionDenied, UnknownPermissionKind
from ..protocol.messages import PERMISSION_KINDS
from .protocol import CapabilityProvider, LocationCallback


SIMULATED_APPS = [
    "Messages", "Safari", "Instagram", "TikTok", "YouTube",
    "Spotify", "Games", "Camera", "Photos", "Settings",
]


def _now_ms() -> int:
    return int(time.time() * 1000)


class SimulatedCapabilityProvider(CapabilityProvider):
    """In-memory capability provider with a simulated OS permission layer."""

    def __init__(
        self,
        *,
        deny: Iterable[str] = (),
        screen_projection_approval: float = 0.7,
        location_interval_s: float = 10.0,
        prompt_delay_s: float = 0.0,
        seed: int | None = None,
        home: tuple[float, float] = (37.7749, -122.4194),
    ):
        super().__init__()
        self.deny = set(deny)
        self.screen_projection_approval = screen_projection_approval
        self.location_interval_s = location_interval_s
        self.prompt_delay_s = prompt_delay_s
        self.home = home
        self._rng = random.Random(seed)
        self._granted = {kind: False for kind in PERMISSION_KINDS}
        self._location_callback: LocationCallback | None = None
        self._watch_task: asyncio.Task | None = None

    @classmethod
    def from_config(cls, config: Config, seed: int | None = None) -> "SimulatedCapabilityProvider":
        return cls(
            deny=config.get("simulation.deny"),
            screen_projection_approval=float(config.get("simulation.screen_projection_approval")),
            location_interval_s=config.get("simulation.location_interval_ms") / 1000.0,
            seed=seed,
        )

    def is_granted(self, kind: str) -> bool:
        return self._granted.get(kind, False)

    async def request_permission(self, kind: str) -> bool:
        if kind not in PERMISSION_KINDS:
            raise UnknownPermissionKind(kind)

        if self.prompt_delay_s > 0:
            await asyncio.sleep(self.prompt_delay_s)

        if kind in self.deny:
            granted = False
        elif kind == "screenProjection":
            granted = self._rng.random() < self.screen_projection_approval
        else:
            granted = True

        logging.getLogger('capabilities').info(f"simulated prompt {kind}: {'granted' if granted else 'denied'}")
        self._set_grant(kind, granted)
        return granted

    def revoke(self, kind: str) -> None:
        """Emulate the OS revoking a grant behind the app's back."""
        if kind not in PERMISSION_KINDS:
            raise UnknownPermissionKind(kind)
        logging.getLogger('capabilities').info(f"simulated revocation of {kind}")
        self._set_grant(kind, False)

    def _set_grant(self, kind: str, granted: bool) -> None:
        self._granted[kind] = granted
        if kind == "location":
            if granted:
                self._start_location_task()
            else:
                self._stop_location_task()
        self._notify_permission_change(kind, granted)

    def _sample_location(self) -> dict[str, Any]:
        lat, lon = self.home
        return {
            "latitude": round(lat + self._rng.uniform(-0.01, 0.01), 6),
            "longitude": round(lon + self._rng.uniform(-0.01, 0.01), 6),
            "accuracy": round(self._rng.uniform(3.0, 25.0), 1),
            "timestamp": _now_ms(),
        }

    async def get_current_location(self) -> dict[str, Any]:
        if not self._granted["location"]:
            raise PermissionDenied("location")
        return self._sample_location()

    async def get_recent_photos(self, limit: int = 10) -> list[dict[str, Any]]:
        if not self._granted["gallery"]:
            raise PermissionDenied("gallery")

        now = _now_ms()
        photos = []
        for i in range(max(0, limit)):
            photo_id = f"sim-{i + 1:04d}"
            photos.append({
                "id": photo_id,
                "filename": f"IMG_{i + 1:04d}.JPG",
                "uri": f"simulated://gallery/{photo_id}",
                "creationTime": now - i * 3_600_000,
                "width": 4032,
                "height": 3024,
            })
        return photos

    async def capture_photo(self) -> dict[str, Any]:
        if not self._granted["camera"]:
            raise PermissionDenied("camera")
        return {"uri": "simulated_photo_uri", "width": 1920, "height": 1080, "timestamp": _now_ms()}

    async def capture_screen(self) -> dict[str, Any]:
        return {"uri": "simulated_screenshot_uri", "width": 1080, "height": 1920}

    def get_device_info(self) -> dict[str, Any]:
        rng = self._rng
        return {
            "battery": rng.randrange(100),
            "storage": {"total": 64000, "used": rng.randrange(32000)},  # MB
            "memory": {"total": 4096, "used": rng.randrange(2048)},  # MB
            "network": {"type": "wifi", "strength": rng.randint(1, 5)},  # bars
        }

    def get_app_usage(self) -> list[dict[str, Any]]:
        now = _now_ms()
        usage = [
            {
                "name": app,
                "timeSpent": self._rng.randrange(120),  # minutes
                "lastUsed": now - self._rng.randrange(86_400_000),
            }
            for app in SIMULATED_APPS
        ]
        return sorted(usage, key=lambda entry: entry["timeSpent"], reverse=True)

    def watch_location(self, callback: LocationCallback) -> None:
        self._location_callback = callback
        self._start_location_task()

    def unwatch_location(self) -> None:
        self._location_callback = None
        self._stop_location_task()

    def _start_location_task(self) -> None:
        if self._location_callback is None or not self._granted["location"]:
            return
        if self._watch_task and not self._watch_task.done():
            return
        self._watch_task = asyncio.create_task(self._location_loop())

    def _stop_location_task(self) -> None:
        if self._watch_task and not self._watch_task.done():
            self._watch_task.cancel()
        self._watch_task = None

    async def _location_loop(self) -> None:
        while True:
            await asyncio.sleep(self.location_interval_s)
            callback = self._location_callback
            if callback is None:
                return
            try:
                callback(self._sample_location())
            except Exception as e:
                logging.getLogger('capabilities').error(f"location listener failed: {e!r}")
