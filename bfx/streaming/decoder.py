"""Turns raw websocket frames into tagged messages.

Bitfinex v2 sends two shapes over one connection:

* JSON objects with an ``event`` key for control traffic
  (``info``, ``subscribed``, ``unsubscribed``, ``error``, ``pong``, ``conf``)
* JSON arrays ``[CHANNEL_ID, ...]`` for channel traffic::

      [42, "hb"]                  heartbeat
      [42, [[...], [...]]]        snapshot
      [42, [...]]                 update
      [42, "te", [...]]           trade executed
      [42, "tu", [...]]           trade update
      [42, "cs", 12345]           book checksum

Arrays may carry trailing sequence numbers; they are ignored here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

import orjson

HEARTBEAT = "hb"
DATA_TAGS = frozenset({"te", "tu", "cs"})


@dataclass(frozen=True)
class ControlMessage:
    type: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DataMessage:
    channel_id: int
    payload: Any
    tag: str | None = None


@dataclass(frozen=True)
class Unrecognized:
    raw: str | bytes
    reason: str


Message = Union[ControlMessage, DataMessage, Unrecognized]


def decode(raw: str | bytes) -> Message:
    """Decode one frame. Never raises; bad input becomes ``Unrecognized``."""
    try:
        msg = orjson.loads(raw)
    except orjson.JSONDecodeError:
        return Unrecognized(raw, "invalid_json")

    if isinstance(msg, dict):
        event = msg.get("event")
        if not isinstance(event, str):
            return Unrecognized(raw, "object_without_event")
        return ControlMessage(event, msg)

    if not isinstance(msg, list) or len(msg) < 2:
        return Unrecognized(raw, "unexpected_shape")

    channel_id = msg[0]
    # bool is an int subclass; a bare `true` is not a channel id
    if not isinstance(channel_id, int) or isinstance(channel_id, bool):
        return Unrecognized(raw, "non_integer_channel_id")

    body = msg[1]
    if body == HEARTBEAT:
        return ControlMessage(HEARTBEAT, {"chanId": channel_id})

    if isinstance(body, str):
        if body not in DATA_TAGS:
            return Unrecognized(raw, f"unknown_tag:{body}")
        if len(msg) < 3:
            return Unrecognized(raw, "missing_body")
        return DataMessage(channel_id, msg[2], body)

    if isinstance(body, list):
        return DataMessage(channel_id, body)

    return Unrecognized(raw, "unexpected_body")
