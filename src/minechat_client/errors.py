"""Error types for the MineChat client."""

from typing import Optional


class MineChatError(Exception):
    """Base class for errors reported to the user."""

    exit_code = 1


class ConfigCorrupt(MineChatError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"Config file {path} is unreadable: {reason}")
        self.path = path


class PersistError(MineChatError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"Could not write {path}: {reason}")
        self.path = path


class NotLinked(MineChatError):
    def __init__(self, address: str):
        super().__init__(
            f"Server {address} is not linked. Run with --link <code> first."
        )
        self.address = address


class LinkRejected(MineChatError):
    def __init__(self, reason: str):
        super().__init__(f"Link rejected: {reason}")
        self.reason = reason


class LinkTimeout(MineChatError):
    def __init__(self, address: str, timeout: float):
        super().__init__(f"No link response from {address} within {timeout:g}s")
        self.address = address


class LinkTransportError(MineChatError):
    def __init__(self, address: str, reason: str):
        super().__init__(f"Could not link with {address}: {reason}")
        self.address = address


class AuthRejected(MineChatError):
    def __init__(self, address: str, reason: str):
        super().__init__(f"Server {address} refused the stored credential: {reason}")
        self.address = address


class ConnectionLost(MineChatError):
    def __init__(self, address: str, attempts: Optional[int] = None):
        if attempts:
            message = f"Connection to {address} lost after {attempts} reconnect attempts"
        else:
            message = f"Could not connect to {address}"
        super().__init__(message)
        self.address = address
        self.attempts = attempts


class ChannelError(Exception):
    """Transport failure on a protocol channel."""


class ChannelClosed(ChannelError):
    """The remote end closed the connection."""


class ProtocolError(Exception):
    """A line could not be decoded into a protocol message."""
