"""Network channel carrying MineChat protocol messages."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Tuple

from .errors import ChannelClosed, ChannelError, ProtocolError
from .protocol import Auth, Message, decode_message, encode_message

logger = logging.getLogger(__name__)


class ProtocolChannel(ABC):
    """One connection to a MineChat server.

    ``send`` and ``receive`` may be used concurrently from two tasks as long as
    each direction has a single user.
    """

    @abstractmethod
    async def send(self, message: Message) -> None:
        """Write one message. Raises ChannelError on failure."""

    @abstractmethod
    async def receive(self) -> Message:
        """Wait for the next message.

        Raises ChannelClosed at end of stream, ChannelError on transport
        failure and ProtocolError when a line cannot be decoded.
        """

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""


ChannelFactory = Callable[[str], Awaitable[ProtocolChannel]]


class TcpProtocolChannel(ProtocolChannel):
    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        address: str = "",
    ):
        self._reader = reader
        self._writer = writer
        self.address = address
        self._closed = False

    async def send(self, message: Message) -> None:
        if self._closed:
            raise ChannelClosed("Channel is closed")
        try:
            self._writer.write(encode_message(message))
            await self._writer.drain()
        except OSError as e:
            raise ChannelError(f"Send to {self.address} failed: {e}") from e
        logger.debug(f"Sent {message.TYPE.value} to {self.address}")

    async def receive(self) -> Message:
        try:
            line = await self._reader.readline()
        except ValueError as e:
            # StreamReader reports an oversized line as ValueError and drops it
            raise ProtocolError(f"Incoming line too long: {e}") from e
        except OSError as e:
            raise ChannelError(f"Receive from {self.address} failed: {e}") from e

        if not line:
            raise ChannelClosed(f"{self.address} closed the connection")
        return decode_message(line)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError as e:
            logger.debug(f"Error while closing connection to {self.address}: {e}")


def parse_address(address: str) -> Tuple[str, int]:
    """Split ``host:port`` (``[v6]:port`` for IPv6) into its parts."""
    host, sep, port = address.rpartition(":")
    if not sep or not host:
        raise ChannelError(f"Invalid server address {address!r}, expected host:port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port_number = int(port)
    except ValueError:
        raise ChannelError(f"Invalid port in server address {address!r}") from None
    if not 0 < port_number < 65536:
        raise ChannelError(f"Port out of range in server address {address!r}")
    return host, port_number


async def open_tcp_channel(
    address: str, timeout: Optional[float] = 5.0
) -> TcpProtocolChannel:
    """Connect to ``address`` and wrap the stream in a channel."""
    host, port = parse_address(address)
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout
        )
    except asyncio.TimeoutError as e:
        raise ChannelError(f"Timed out connecting to {address}") from e
    except OSError as e:
        raise ChannelError(f"Could not connect to {address}: {e}") from e

    logger.info(f"Connected to {address}")
    return TcpProtocolChannel(reader, writer, address)


async def exchange_auth(
    channel: ProtocolChannel,
    client_uuid: str,
    link_code: str,
    timeout: Optional[float],
) -> Message:
    """Send AUTH and wait up to ``timeout`` seconds for the server's reply."""
    await channel.send(Auth(client_uuid=client_uuid, link_code=link_code))
    return await asyncio.wait_for(channel.receive(), timeout)
