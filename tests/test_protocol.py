# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import json
import re

import pytest

from pairlink.exceptions import MessageFormatError
from pairlink.protocol import (
    Command,
    ComprehensiveUpdate,
    PermissionResult,
    PermissionUpdate,
    Role,
    decode_message,
    encode_message,
    message_to_dict,
    utc_timestamp,
)


def test_timestamp_is_utc_iso_with_millis():
    assert re.fullmatch(r"\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z", utc_timestamp())


def test_comprehensive_update_omits_absent_optional_fields():
    message = ComprehensiveUpdate(
        timestamp="2025-01-01T00:00:00.000Z",
        device_info={"battery": 50},
        app_usage=[],
        permissions={"camera": False},
    )
    wire = json.loads(encode_message(message))

    assert wire == {
        "type": "comprehensive_update",
        "timestamp": "2025-01-01T00:00:00.000Z",
        "deviceInfo": {"battery": 50},
        "appUsage": [],
        "permissions": {"camera": False},
    }


def test_decode_preserves_discriminator_and_fields():
    frame = encode_message(Command(command="get_location", params={"accuracy": "high"}))
    message = decode_message(frame)

    assert isinstance(message, Command)
    assert message.command == "get_location"
    assert message.params == {"accuracy": "high"}
    assert message.SENDER is Role.PARENT


def test_command_params_default_to_empty():
    message = decode_message(b'{"type":"command","timestamp":"t","command":"capture_screen"}')
    assert message.params == {}


def test_messages_are_immutable():
    message = PermissionUpdate(permission={"type": "camera", "granted": True})
    with pytest.raises(AttributeError):
        message.permission = {}


def test_permission_update_accessors():
    message = PermissionUpdate(permission={"type": "gallery", "granted": False})
    assert message.kind == "gallery"
    assert message.granted is False
    assert message_to_dict(message)["permission"] == {"type": "gallery", "granted": False}


@pytest.mark.parametrize("frame, reason", [
    (b"not json", "invalid JSON"),
    (b"[1, 2]", "must be an object"),
    (b'{"type":"teleport","timestamp":"t"}', "unknown message type"),
    (b'{"type":"location_update","timestamp":"t"}', "requires location"),
    (b'{"type":"permission_result","timestamp":"t","requestId":"a","permission":"microphone","granted":true}',
     "invalid permission"),
    (b'{"type":"permission_update","timestamp":"t","permission":{"type":"camera"}}', "invalid permission"),
])
def test_decode_rejects_malformed_frames(frame, reason):
    with pytest.raises(MessageFormatError, match=reason):
        decode_message(frame)


def test_permission_result_requires_boolean_grant():
    with pytest.raises(MessageFormatError):
        decode_message(json.dumps({
            "type": "permission_result", "timestamp": "t", "requestId": "r1",
            "permission": "camera", "granted": "yes",
        }))
    result = decode_message(json.dumps({
        "type": "permission_result", "timestamp": "t", "requestId": "r1",
        "permission": "camera", "granted": True,
    }))
    assert isinstance(result, PermissionResult)
    assert result.granted is True
