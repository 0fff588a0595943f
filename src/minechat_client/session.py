"""Live chat session with a linked MineChat server.

A session moves through

    CONNECTING -> ACTIVE -> CLOSING -> CLOSED
                    |  ^
                    v  |
                RECONNECTING -> CLOSING or CLOSED

While ACTIVE two relay tasks share the channel. The inbound relay only calls
``receive()`` and prints what arrives; the outbound relay only reads user
input and calls ``send()``. Neither touches the session state. Each returns a
``RelayExit`` and the supervisor in ``run()`` decides what happens next, so
the state has a single writer. When both relays stop together an explicit
close beats a reconnect. Input is still read during reconnect backoff, so a
quit there ends the session instead of waiting out the retries.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional, Protocol

from .channel import ChannelFactory, ProtocolChannel, exchange_auth
from .commands import CommandRegistry
from .config import ClientSettings
from .errors import (
    AuthRejected,
    ChannelError,
    ConnectionLost,
    NotLinked,
    ProtocolError,
)
from .models import ChatMessage, Direction, RelayExit, ServerEntry, SessionState
from .protocol import AuthAck, Broadcast, Chat, Disconnect
from .registry import ServerRegistry

logger = logging.getLogger(__name__)

_TRANSITIONS = {
    SessionState.CONNECTING: {SessionState.ACTIVE, SessionState.CLOSING, SessionState.CLOSED},
    SessionState.ACTIVE: {SessionState.RECONNECTING, SessionState.CLOSING},
    SessionState.RECONNECTING: {SessionState.ACTIVE, SessionState.CLOSING, SessionState.CLOSED},
    SessionState.CLOSING: {SessionState.CLOSED},
    SessionState.CLOSED: set(),
}

_CONNECT_ERRORS = (ChannelError, ProtocolError, asyncio.TimeoutError)


class LineSource(Protocol):
    async def read_line(self) -> Optional[str]:
        """Next line of user input, or None when input has ended."""
        ...


class ChatOutput(Protocol):
    def show_message(self, message: ChatMessage) -> None: ...

    def show_notice(self, text: str, style: str = "yellow") -> None: ...


def resolve_exit(outcomes: Iterable[RelayExit]) -> RelayExit:
    """Pick the session's next move from the relays that have stopped.

    A user quit wins over a server disconnect, and either wins over a lost
    transport.
    """
    outcomes = set(outcomes)
    for choice in (RelayExit.QUIT, RelayExit.REMOTE_CLOSED):
        if choice in outcomes:
            return choice
    return RelayExit.TRANSPORT_LOST


class ChatSession:
    def __init__(
        self,
        address: str,
        registry: ServerRegistry,
        channel_factory: ChannelFactory,
        line_source: LineSource,
        output: ChatOutput,
        settings: Optional[ClientSettings] = None,
        commands: Optional[CommandRegistry] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.address = address
        self.registry = registry
        self.channel_factory = channel_factory
        self.line_source = line_source
        self.output = output
        self.settings = settings or ClientSettings()
        self.commands = commands or CommandRegistry(output)
        self._sleep = sleep

        self.state = SessionState.CONNECTING
        self.history: List[SessionState] = [SessionState.CONNECTING]
        self._entry: Optional[ServerEntry] = None
        self._channel: Optional[ProtocolChannel] = None
        self._pending_send: Optional[asyncio.Future] = None

    def _transition(self, state: SessionState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid session transition {self.state.value} -> {state.value}"
            )
        logger.debug(f"Session state {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    async def run(self) -> None:
        """Connect and relay messages until the user quits or the server goes away.

        Raises:
            NotLinked: no credential is stored for the address.
            AuthRejected: the server refused the stored credential.
            ConnectionLost: the server could not be reached, or reconnecting failed.
        """
        self._entry = self.registry.find(self.address)
        if self._entry is None:
            self._transition(SessionState.CLOSED)
            raise NotLinked(self.address)

        try:
            try:
                self._channel = await self._open_authenticated()
            except _CONNECT_ERRORS as e:
                logger.error(f"Could not connect to {self.address}: {e}")
                raise ConnectionLost(self.address) from e
            self._transition(SessionState.ACTIVE)

            while True:
                outcome = await self._run_active()
                if outcome is RelayExit.TRANSPORT_LOST:
                    self._transition(SessionState.RECONNECTING)
                    await self._discard_channel()
                    self._channel = await self._reconnect()
                    if self._channel is not None:
                        self._transition(SessionState.ACTIVE)
                        continue
                    outcome = RelayExit.QUIT

                self._transition(SessionState.CLOSING)
                await self._close(notify_server=outcome is RelayExit.QUIT)
                self._transition(SessionState.CLOSED)
                return
        finally:
            if self.state is not SessionState.CLOSED:
                await self._discard_channel()
                self.state = SessionState.CLOSED
                self.history.append(SessionState.CLOSED)

    async def _open_authenticated(self) -> ProtocolChannel:
        channel = await self.channel_factory(self.address)
        try:
            reply = await exchange_auth(
                channel, self._entry.client_id, "", self.settings.handshake_timeout
            )
        except BaseException:
            await channel.close()
            raise

        if not isinstance(reply, AuthAck) or not reply.ok:
            await channel.close()
            reason = reply.message if isinstance(reply, AuthAck) else "unexpected response"
            raise AuthRejected(self.address, reason)

        logger.info(f"Connected: {reply.message}")
        self.output.show_notice(f"Connected: {reply.message}", style="green")
        return channel

    async def _run_active(self) -> RelayExit:
        channel = self._channel
        inbound = asyncio.create_task(self._inbound_relay(channel), name="inbound-relay")
        outbound = asyncio.create_task(self._outbound_relay(channel), name="outbound-relay")
        relays = (inbound, outbound)
        try:
            done, _ = await asyncio.wait(relays, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in relays:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*relays, return_exceptions=True)
            await self._flush_pending_send()

        outcomes = [task.result() for task in done if not task.cancelled()]
        outcome = resolve_exit(outcomes)
        logger.debug(f"Relays stopped with {[o.value for o in outcomes]}, next: {outcome.value}")
        return outcome

    async def _inbound_relay(self, channel: ProtocolChannel) -> RelayExit:
        while True:
            try:
                message = await channel.receive()
            except ProtocolError as e:
                logger.warning(f"Dropping malformed message: {e}")
                continue
            except ChannelError as e:
                logger.warning(f"Connection lost: {e}")
                return RelayExit.TRANSPORT_LOST

            if isinstance(message, Broadcast):
                self.output.show_message(
                    ChatMessage(Direction.INBOUND, message.message, sender=message.sender)
                )
            elif isinstance(message, Disconnect):
                self.output.show_notice(f"Disconnected: {message.reason}")
                return RelayExit.REMOTE_CLOSED
            else:
                logger.debug(f"Received message: {message!r}")

    async def _outbound_relay(self, channel: ProtocolChannel) -> RelayExit:
        while True:
            line = await self.line_source.read_line()
            if line is None:
                return RelayExit.QUIT
            text = line.strip()
            if not text:
                return RelayExit.QUIT

            handler = self.commands.lookup(text)
            if handler is not None:
                result = await handler(text)
                if result is not None:
                    return result
                continue

            if not await self._send_chat(channel, ChatMessage(Direction.OUTBOUND, text)):
                return RelayExit.TRANSPORT_LOST

    async def _send_chat(self, channel: ProtocolChannel, message: ChatMessage) -> bool:
        # A started send always completes; _flush_pending_send awaits it if
        # the relay is cancelled first.
        send = asyncio.ensure_future(channel.send(Chat(message=message.text)))
        self._pending_send = send
        try:
            await asyncio.shield(send)
        except ChannelError as e:
            logger.warning(f"Message not delivered: {e}")
            self.output.show_notice("Message not delivered, connection lost", style="red")
            return False
        finally:
            if send.done():
                self._pending_send = None
        return True

    async def _flush_pending_send(self) -> None:
        send, self._pending_send = self._pending_send, None
        if send is None:
            return
        try:
            await send
        except ChannelError as e:
            logger.warning(f"In-flight message was not delivered: {e}")

    async def _reconnect(self) -> Optional[ProtocolChannel]:
        """Retry with backoff; None when the user quits while waiting."""
        policy = self.settings.reconnect
        quit_requested = asyncio.create_task(self._wait_for_quit(), name="reconnect-input")
        backoff: Optional[asyncio.Future] = None
        try:
            for attempt in range(1, policy.max_attempts + 1):
                delay = policy.delay_for(attempt)
                self.output.show_notice(
                    f"Connection lost, reconnecting in {delay:g}s "
                    f"(attempt {attempt}/{policy.max_attempts})"
                )
                backoff = asyncio.ensure_future(self._sleep(delay))
                await asyncio.wait({backoff, quit_requested}, return_when=asyncio.FIRST_COMPLETED)
                if quit_requested.done():
                    logger.info(f"Reconnect to {self.address} abandoned by user")
                    return None
                try:
                    channel = await self._open_authenticated()
                except _CONNECT_ERRORS as e:
                    logger.warning(f"Reconnect attempt {attempt} failed: {e}")
                    continue
                if quit_requested.done():
                    await channel.close()
                    return None
                return channel
            if quit_requested.done():
                return None
        finally:
            pending = [t for t in (backoff, quit_requested) if t is not None]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        logger.error(f"Giving up on {self.address} after {policy.max_attempts} attempts")
        self._transition(SessionState.CLOSED)
        raise ConnectionLost(self.address, policy.max_attempts)

    async def _wait_for_quit(self) -> None:
        """Read input while disconnected until the user asks to quit."""
        while True:
            line = await self.line_source.read_line()
            text = line.strip() if line is not None else ""
            if not text:
                return
            handler = self.commands.lookup(text)
            if handler is not None:
                if await handler(text) is RelayExit.QUIT:
                    return
                continue
            self.output.show_notice("Not connected, message not sent", style="red")

    async def _close(self, notify_server: bool) -> None:
        channel, self._channel = self._channel, None
        if channel is None:
            return
        if notify_server:
            try:
                await channel.send(Disconnect(reason="Client exit"))
            except ChannelError as e:
                logger.debug(f"Could not send disconnect notice: {e}")
        await channel.close()
        logger.info(f"Disconnected from {self.address}")

    async def _discard_channel(self) -> None:
        channel, self._channel = self._channel, None
        if channel is not None:
            await channel.close()
