"""Data model shared by the linking and chat flows."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class ServerEntry:
    """A linked server and the client credential issued for it."""

    address: str
    client_id: str


class LinkState(Enum):
    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"
    LINKED = "linked"
    FAILED = "failed"


class SessionState(Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"
    CLOSING = "closing"
    CLOSED = "closed"


class RelayExit(Enum):
    """Why a relay duty stopped."""

    QUIT = "quit"
    REMOTE_CLOSED = "remote_closed"
    TRANSPORT_LOST = "transport_lost"


class Direction(Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


@dataclass(frozen=True)
class ChatMessage:
    direction: Direction
    text: str
    sender: Optional[str] = None
