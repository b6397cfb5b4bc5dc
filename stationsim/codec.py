"""OCPP-J frame codec.

Frames are JSON arrays whose first element is the message type id:

    [2, "<messageId>", "<Action>", {payload}]                     call
    [3, "<messageId>", {payload}]                                 result
    [4, "<messageId>", "<code>", "<description>", {details}]      error
"""
import json
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Union

from ocpp.messages import MessageType

from .exceptions import DecodeError


@dataclass(frozen=True)
class CallEnvelope:
    message_id: str
    action: str
    payload: Dict[str, Any] = field(default_factory=dict)

    message_type_id: ClassVar[int] = MessageType.Call

    def to_frame(self) -> List[Any]:
        return [self.message_type_id, self.message_id, self.action, self.payload]


@dataclass(frozen=True)
class ResultEnvelope:
    message_id: str
    payload: Dict[str, Any] = field(default_factory=dict)

    message_type_id: ClassVar[int] = MessageType.CallResult

    def to_frame(self) -> List[Any]:
        return [self.message_type_id, self.message_id, self.payload]


@dataclass(frozen=True)
class ErrorEnvelope:
    message_id: str
    error_code: str
    error_description: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    message_type_id: ClassVar[int] = MessageType.CallError

    def to_frame(self) -> List[Any]:
        return [
            self.message_type_id,
            self.message_id,
            self.error_code,
            self.error_description,
            self.details,
        ]


Envelope = Union[CallEnvelope, ResultEnvelope, ErrorEnvelope]


def encode(envelope: Envelope) -> str:
    """Serialize an envelope to the JSON text sent in a websocket text frame."""
    return json.dumps(envelope.to_frame(), separators=(",", ":"))


def decode(raw: Union[str, bytes]) -> Envelope:
    """Parse a websocket frame into one of the three envelope kinds.

    Raises DecodeError for invalid JSON, a non-array value, fewer than three
    elements, or an unknown message type id. The payload itself is not checked.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"frame is not UTF-8 text: {e}", raw) from e
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError as e:
        raise DecodeError(f"frame is not valid JSON: {e}", raw) from e

    if not isinstance(frame, list):
        raise DecodeError("frame is not a JSON array", raw)
    if len(frame) < 3:
        raise DecodeError(f"frame has {len(frame)} elements, expected at least 3", raw)

    type_id = frame[0]
    # bool is an int subclass; [true, ...] is not a valid frame
    if isinstance(type_id, bool) or not isinstance(type_id, int):
        raise DecodeError(f"unknown message type id {type_id!r}", raw)

    message_id = str(frame[1])
    if type_id == MessageType.Call:
        payload = frame[3] if len(frame) > 3 else {}
        return CallEnvelope(message_id, str(frame[2]), payload)
    if type_id == MessageType.CallResult:
        return ResultEnvelope(message_id, frame[2])
    if type_id == MessageType.CallError:
        description = frame[3] if len(frame) > 3 else ""
        details = frame[4] if len(frame) > 4 else {}
        return ErrorEnvelope(message_id, str(frame[2]), description, details)
    raise DecodeError(f"unknown message type id {type_id!r}", raw)
