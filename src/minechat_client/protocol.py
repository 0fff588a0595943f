"""MineChat wire messages and their line-delimited JSON encoding.

Every message travels as one JSON object terminated by a newline::

    {"type": "CHAT", "payload": {"message": "hello"}}

Payload field names follow the server plugin. ``Broadcast.sender`` is sent as
``from`` on the wire since that name is reserved in Python.
"""

import json
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Type, Union

from .errors import ProtocolError


class MessageType(str, Enum):
    AUTH = "AUTH"
    AUTH_ACK = "AUTH_ACK"
    CHAT = "CHAT"
    BROADCAST = "BROADCAST"
    DISCONNECT = "DISCONNECT"


@dataclass(frozen=True)
class Auth:
    client_uuid: str
    link_code: str = ""

    TYPE: ClassVar[MessageType] = MessageType.AUTH


@dataclass(frozen=True)
class AuthAck:
    status: str
    message: str
    minecraft_uuid: Optional[str] = None
    username: Optional[str] = None

    TYPE: ClassVar[MessageType] = MessageType.AUTH_ACK

    @property
    def ok(self) -> bool:
        return self.status == "success"


@dataclass(frozen=True)
class Chat:
    message: str

    TYPE: ClassVar[MessageType] = MessageType.CHAT


@dataclass(frozen=True)
class Broadcast:
    sender: str = field(metadata={"wire": "from"})
    message: str

    TYPE: ClassVar[MessageType] = MessageType.BROADCAST


@dataclass(frozen=True)
class Disconnect:
    reason: str

    TYPE: ClassVar[MessageType] = MessageType.DISCONNECT


Message = Union[Auth, AuthAck, Chat, Broadcast, Disconnect]

MESSAGE_CLASSES: Dict[MessageType, Type[Any]] = {
    cls.TYPE: cls for cls in (Auth, AuthAck, Chat, Broadcast, Disconnect)
}


def _wire_name(f) -> str:
    return f.metadata.get("wire", f.name)


def _is_optional(f) -> bool:
    return f.default is None


def encode_message(message: Message) -> bytes:
    """Encode a message as a single newline-terminated JSON line."""
    payload = {_wire_name(f): getattr(message, f.name) for f in fields(message)}
    document = {"type": message.TYPE.value, "payload": payload}
    return (json.dumps(document, separators=(",", ":")) + "\n").encode("utf-8")


def decode_message(line: Union[bytes, str]) -> Message:
    """Decode one line into a message.

    Raises:
        ProtocolError: if the line is not a well-formed MineChat message.
    """
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Message is not valid UTF-8: {e}") from e

    try:
        document = json.loads(line)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Message is not valid JSON: {e}") from e

    if not isinstance(document, dict):
        raise ProtocolError("Message must be a JSON object")

    raw_type = document.get("type")
    try:
        cls = MESSAGE_CLASSES[MessageType(raw_type)]
    except ValueError:
        raise ProtocolError(f"Unknown message type: {raw_type!r}") from None

    payload = document.get("payload")
    if not isinstance(payload, dict):
        raise ProtocolError(f"{raw_type} message has no payload object")

    kwargs = {}
    for f in fields(cls):
        name = _wire_name(f)
        value = payload.get(name)
        if value is None:
            if _is_optional(f):
                continue
            raise ProtocolError(f"{raw_type} payload is missing '{name}'")
        if not isinstance(value, str):
            raise ProtocolError(f"{raw_type} payload field '{name}' must be a string")
        kwargs[f.name] = value
    return cls(**kwargs)
