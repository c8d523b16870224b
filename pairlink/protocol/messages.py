# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Tagged message variants exchanged between the parent and the child.

Every message is a frozen dataclass. Each dataclass field carries a FieldDef
in its metadata naming the wire key and an optional validator, which the codec
uses to encode and decode the compact JSON form.
"""

from collections.abc import Callable
from dataclasses import MISSING, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar


PERMISSION_KINDS: tuple[str, ...] = ("camera", "location", "notifications", "gallery", "screenProjection")

KNOWN_COMMANDS: tuple[str, ...] = ("capture_screen", "capture_photo", "get_location", "get_app_usage")


class Role(str, Enum):
    """Which side of the pairing a device plays."""

    PARENT = "parent"
    CHILD = "child"


def utc_timestamp() -> str:
    """Current time as ISO-8601 UTC with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def is_permission_kind(value: Any) -> bool:
    return isinstance(value, str) and value in PERMISSION_KINDS


@dataclass
class FieldDef:
    """Wire definition of a message field."""

    name: str
    validator: Callable[[Any], bool] | None = None
    optional: bool = False

    def validate(self, value: Any) -> bool:
        """Validate a field value."""
        if self.validator:
            try:
                return bool(self.validator(value))
            except (ValueError, TypeError, KeyError):
                return False
        return True


def wire(name: str, validator: Callable[[Any], bool] | None = None, *, optional: bool = False,
         default_factory: Callable[[], Any] | None = None) -> Any:
    """Declare a dataclass field together with its wire definition."""
    metadata = {"field_def": FieldDef(name, validator, optional)}
    if default_factory is not None:
        return field(default_factory=default_factory, metadata=metadata)
    if optional:
        return field(default=None, metadata=metadata)
    return field(default=MISSING, metadata=metadata)


def _is_dict(value: Any) -> bool:
    return isinstance(value, dict)


def _is_list(value: Any) -> bool:
    return isinstance(value, list)


# type tag -> message class
MESSAGE_TYPES: dict[str, type["Message"]] = {}


def register_message(cls: type["Message"]) -> type["Message"]:
    """Class decorator adding a message variant to the decode registry."""
    if not cls.TYPE:
        raise ValueError(f"{cls.__name__} has no type tag")
    MESSAGE_TYPES[cls.TYPE] = cls
    return cls


@dataclass(frozen=True, kw_only=True)
class Message:
    """Common base: every message carries its type tag and event timestamp."""

    TYPE: ClassVar[str] = ""
    SENDER: ClassVar[Role]

    timestamp: str = wire("timestamp", lambda x: isinstance(x, str) and len(x) > 0,
                          default_factory=utc_timestamp)


@dataclass(frozen=True, kw_only=True)
class TelemetryMessage(Message):
    """Any event or data message flowing child -> parent."""

    SENDER: ClassVar[Role] = Role.CHILD


@register_message
@dataclass(frozen=True, kw_only=True)
class ComprehensiveUpdate(TelemetryMessage):
    TYPE: ClassVar[str] = "comprehensive_update"

    device_info: dict = wire("deviceInfo", _is_dict)
    app_usage: list = wire("appUsage", _is_list)
    permissions: dict = wire("permissions", _is_dict)
    location: dict | None = wire("location", _is_dict, optional=True)
    recent_photos: list | None = wire("recentPhotos", _is_list, optional=True)


@register_message
@dataclass(frozen=True, kw_only=True)
class PermissionUpdate(TelemetryMessage):
    """A permission flipped on the child. Payload is ``{type, granted}``."""

    TYPE: ClassVar[str] = "permission_update"

    permission: dict = wire("permission", lambda x: is_permission_kind(x["type"]) and isinstance(x["granted"], bool))

    @property
    def kind(self) -> str:
        return self.permission["type"]

    @property
    def granted(self) -> bool:
        return self.permission["granted"]


@register_message
@dataclass(frozen=True, kw_only=True)
class LocationUpdate(TelemetryMessage):
    TYPE: ClassVar[str] = "location_update"

    location: dict = wire("location", _is_dict)


@register_message
@dataclass(frozen=True, kw_only=True)
class AppActivity(TelemetryMessage):
    TYPE: ClassVar[str] = "app_activity"

    app: dict = wire("app", _is_dict)  # {name, action}; action is opened | closed | backgrounded


@register_message
@dataclass(frozen=True, kw_only=True)
class NotificationReceived(TelemetryMessage):
    TYPE: ClassVar[str] = "notification_received"

    notification: dict = wire("notification", _is_dict)


@register_message
@dataclass(frozen=True, kw_only=True)
class ScreenCapture(TelemetryMessage):
    TYPE: ClassVar[str] = "screen_capture"

    screenshot: dict = wire("screenshot", _is_dict)


@register_message
@dataclass(frozen=True, kw_only=True)
class CameraCapture(TelemetryMessage):
    TYPE: ClassVar[str] = "camera_capture"

    photo: dict = wire("photo", _is_dict)


@register_message
@dataclass(frozen=True, kw_only=True)
class EmergencyAlert(TelemetryMessage):
    TYPE: ClassVar[str] = "emergency_alert"

    alert: dict = wire("alert", _is_dict)  # {type, message, priority}


@register_message
@dataclass(frozen=True, kw_only=True)
class PermissionGranted(TelemetryMessage):
    TYPE: ClassVar[str] = "permission_granted"

    permission: str = wire("permission", is_permission_kind)


@register_message
@dataclass(frozen=True, kw_only=True)
class LocationResponse(TelemetryMessage):
    TYPE: ClassVar[str] = "location_response"

    location: dict = wire("location", _is_dict)


@register_message
@dataclass(frozen=True, kw_only=True)
class AppUsageResponse(TelemetryMessage):
    TYPE: ClassVar[str] = "app_usage_response"

    app_usage: list = wire("appUsage", _is_list)


@register_message
@dataclass(frozen=True, kw_only=True)
class Command(Message):
    """Instruction flowing parent -> child."""

    TYPE: ClassVar[str] = "command"
    SENDER: ClassVar[Role] = Role.PARENT

    command: str = wire("command", lambda x: isinstance(x, str))
    params: dict = wire("params", _is_dict, optional=True, default_factory=dict)


@register_message
@dataclass(frozen=True, kw_only=True)
class PermissionRequest(Message):
    """Negotiation trigger sent by the parent; answered by PermissionResult."""

    TYPE: ClassVar[str] = "permission_request"
    SENDER: ClassVar[Role] = Role.PARENT

    request_id: str = wire("requestId", lambda x: isinstance(x, str) and len(x) > 0)
    permission: str = wire("permission", is_permission_kind)


@register_message
@dataclass(frozen=True, kw_only=True)
class PermissionResult(Message):
    TYPE: ClassVar[str] = "permission_result"
    SENDER: ClassVar[Role] = Role.CHILD

    request_id: str = wire("requestId", lambda x: isinstance(x, str) and len(x) > 0)
    permission: str = wire("permission", is_permission_kind)
    granted: bool = wire("granted", lambda x: isinstance(x, bool))
