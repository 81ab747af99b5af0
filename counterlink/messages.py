"""Wire messages exchanged between peers.

Two shapes travel over the link::

    {"counter": 7}           # Update
    {"status": "received"}   # Ack
"""

import json
from dataclasses import dataclass
from typing import Any, Union

from .errors import DecodeError, InvalidArgument

ACK_STATUS = "received"


def require_counter(value: Any) -> int:
    """Validate a counter value, rejecting bools and non-integers."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgument(f"counter must be an integer, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class Update:
    """A new counter value pushed to the peer."""

    counter: int

    def to_dict(self) -> dict[str, Any]:
        return {"counter": self.counter}


@dataclass(frozen=True)
class Ack:
    """Acknowledgment sent back for a received update."""

    status: str = ACK_STATUS

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status}


Message = Union[Update, Ack]


def from_dict(data: Any) -> Message:
    """Build a message from a decoded JSON object.

    Raises:
        DecodeError: If the object is not a known message shape.
    """
    if not isinstance(data, dict):
        raise DecodeError(f"message must be an object, got {type(data).__name__}")

    if "counter" in data:
        try:
            return Update(counter=require_counter(data["counter"]))
        except InvalidArgument as e:
            raise DecodeError(str(e)) from e

    if data.get("status") == ACK_STATUS:
        return Ack()

    raise DecodeError(f"unknown message shape: {sorted(data)}")


def encode(message: Message) -> bytes:
    """Serialize a message to UTF-8 JSON."""
    return json.dumps(message.to_dict()).encode("utf-8")


def decode(payload: bytes | str) -> Message:
    """Parse a UTF-8 JSON payload into a message.

    Raises:
        DecodeError: If the payload is not valid JSON or not a known message.
    """
    try:
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        data = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"invalid payload: {e}") from e

    return from_dict(data)
