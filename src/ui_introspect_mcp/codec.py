"""Message codec for the remote introspection protocol.

Frames are a 4-byte big-endian length prefix followed by the message body.
Bodies are JSON objects with exactly one key naming the message kind:

    {"request_element_properties": {"element_handle": {...}}}
    {"element_properties": {...}}
    {"error": {"code": "invalid_handle", "message": "..."}}
"""

from __future__ import annotations

import json
import struct
from typing import Any

from .errors import ProtocolError

LENGTH_PREFIX = struct.Struct(">I")
MAX_MESSAGE_SIZE = 64 * 1024 * 1024  # 64 MiB


def frame(body: bytes) -> bytes:
    """Prefix a message body with its length."""
    if len(body) > MAX_MESSAGE_SIZE:
        raise ProtocolError(
            f"Message too large: {len(body)} bytes (max {MAX_MESSAGE_SIZE})"
        )
    return LENGTH_PREFIX.pack(len(body)) + body


def encode_message(kind: str, payload: dict[str, Any] | None = None) -> bytes:
    """Encode a single-kind message body."""
    return json.dumps({kind: payload or {}}, separators=(",", ":")).encode("utf-8")


def decode_message(body: bytes) -> tuple[str, dict[str, Any]]:
    """Decode a message body into ``(kind, payload)``.

    Raises:
        ProtocolError: If the body is not a single-kind JSON object.
    """
    try:
        data = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"Failed to decode response: {e}") from e

    if not isinstance(data, dict) or len(data) != 1:
        raise ProtocolError("Response must be an object with exactly one message kind")
    ((kind, payload),) = data.items()
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ProtocolError(f"Payload of {kind!r} must be an object")
    return kind, payload
