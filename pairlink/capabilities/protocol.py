# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any
import logging


PermissionChangeCallback = Callable[[str, bool], None]
LocationCallback = Callable[[dict[str, Any]], None]


class CapabilityProvider(ABC):
    """Abstract base class for the child device's permission-gated capabilities.

    Location, gallery and camera reads raise PermissionDenied when the
    provider's own grant for that kind is off. Permission flips are reported
    through the permission change callback, whether they come from a request
    or from the OS revoking a grant.
    """

    def __init__(self):
        self._on_permission_change: PermissionChangeCallback | None = None

    def set_permission_change_callback(self, callback: PermissionChangeCallback | None) -> None:
        """Register (or clear, with None) the permission change listener."""
        self._on_permission_change = callback

    def _notify_permission_change(self, kind: str, granted: bool) -> None:
        callback = self._on_permission_change
        if callback is None:
            return
        try:
            callback(kind, granted)
        except Exception as e:
            logging.getLogger('capabilities').error(f"permission change listener failed for {kind}: {e!r}")

    @abstractmethod
    async def request_permission(self, kind: str) -> bool:
        """Prompt for a permission. Returns the resulting grant state."""
        pass

    @abstractmethod
    async def get_current_location(self) -> dict[str, Any]:
        """Return ``{latitude, longitude, accuracy, timestamp}``."""
        pass

    @abstractmethod
    async def get_recent_photos(self, limit: int = 10) -> list[dict[str, Any]]:
        """Return up to ``limit`` of ``{id, filename, uri, creationTime, width, height}``."""
        pass

    @abstractmethod
    async def capture_photo(self) -> dict[str, Any]:
        """Return ``{uri, width, height, timestamp}``."""
        pass

    @abstractmethod
    async def capture_screen(self) -> dict[str, Any]:
        """Return ``{uri, width, height}``."""
        pass

    @abstractmethod
    def get_device_info(self) -> dict[str, Any]:
        """Return ``{battery, storage{total,used}, memory{total,used}, network{type,strength}}``."""
        pass

    @abstractmethod
    def get_app_usage(self) -> list[dict[str, Any]]:
        """Return ``{name, timeSpent, lastUsed}`` entries sorted by timeSpent, descending."""
        pass

    @abstractmethod
    def watch_location(self, callback: LocationCallback) -> None:
        """Start delivering location fixes to ``callback``."""
        pass

    @abstractmethod
    def unwatch_location(self) -> None:
        """Stop delivering location fixes."""
        pass
