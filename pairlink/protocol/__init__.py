# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Message variants and their tagged JSON encoding."""

from .codec import decode_message, encode_message, message_from_dict, message_to_dict
from .messages import (
    KNOWN_COMMANDS,
    PERMISSION_KINDS,
    AppActivity,
    AppUsageResponse,
    CameraCapture,
    Command,
    ComprehensiveUpdate,
    EmergencyAlert,
    LocationResponse,
    LocationUpdate,
    Message,
    NotificationReceived,
    PermissionGranted,
    PermissionRequest,
    PermissionResult,
    PermissionUpdate,
    Role,
    ScreenCapture,
    TelemetryMessage,
    utc_timestamp,
)


__all__ = [
    "KNOWN_COMMANDS",
    "PERMISSION_KINDS",
    "AppActivity",
    "AppUsageResponse",
    "CameraCapture",
    "Command",
    "ComprehensiveUpdate",
    "EmergencyAlert",
    "LocationResponse",
    "LocationUpdate",
    "Message",
    "NotificationReceived",
    "PermissionGranted",
    "PermissionRequest",
    "PermissionResult",
    "PermissionUpdate",
    "Role",
    "ScreenCapture",
    "TelemetryMessage",
    "decode_message",
    "encode_message",
    "message_from_dict",
    "message_to_dict",
    "utc_timestamp",
]
