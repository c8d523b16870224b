# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import dataclasses
import json
import logging
from typing import Any

from ..exceptions import MessageFormatError
from .messages import MESSAGE_TYPES, Message


def message_to_dict(message: Message) -> dict[str, Any]:
    """Flatten a message into its tagged wire mapping."""
    out: dict[str, Any] = {"type": message.TYPE}
    for f in dataclasses.fields(message):
        field_def = f.metadata["field_def"]
        value = getattr(message, f.name)
        if value is None and field_def.optional:
            continue
        out[field_def.name] = value
    return out


def message_from_dict(data: Any) -> Message:
    """Build the message variant named by ``data['type']``, validating every field."""
    if not isinstance(data, dict):
        raise MessageFormatError(f"message must be an object, got {type(data).__name__}")

    msg_type = data.get("type")
    cls = MESSAGE_TYPES.get(msg_type) if isinstance(msg_type, str) else None
    if cls is None:
        raise MessageFormatError(f"unknown message type {msg_type!r}")

    kwargs: dict[str, Any] = {}
    missing = []
    for f in dataclasses.fields(cls):
        field_def = f.metadata["field_def"]
        if field_def.name not in data:
            if not field_def.optional:
                missing.append(field_def.name)
            continue
        value = data[field_def.name]
        if value is None and field_def.optional:
            continue
        if not field_def.validate(value):
            raise MessageFormatError(f"{msg_type}: invalid {field_def.name}: {value!r}")
        kwargs[f.name] = value

    if missing:
        raise MessageFormatError(f"{msg_type} requires {', '.join(missing)}")

    return cls(**kwargs)


def encode_message(message: Message) -> bytes:
    """Encode a message as compact UTF-8 JSON."""
    return json.dumps(message_to_dict(message), separators=(",", ":")).encode("utf-8")


def decode_message(data: bytes | str) -> Message:
    """Decode one JSON frame into a message."""
    try:
        payload = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logging.getLogger("protocol").debug(f"undecodable frame ({len(data)} bytes): {e}")
        raise MessageFormatError(f"invalid JSON frame: {e}") from e
    return message_from_dict(payload)
