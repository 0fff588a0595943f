"""One-shot linking handshake.

Linking trades a code shown in-game for a durable client credential:

    IDLE -> AWAITING_RESPONSE -> LINKED | FAILED

The client generates a fresh UUID, sends it with the code, and stores it in
the registry once the server acknowledges. Linking again for a known address
replaces the old credential. There is no retry; a failed link is reported and
the user runs it again.
"""

import asyncio
import logging
import uuid
from typing import Callable

from .channel import ChannelFactory, ProtocolChannel, exchange_auth
from .errors import (
    ChannelError,
    LinkRejected,
    LinkTimeout,
    LinkTransportError,
    ProtocolError,
)
from .models import LinkState, ServerEntry
from .protocol import AuthAck
from .registry import ServerRegistry

logger = logging.getLogger(__name__)


def new_client_id() -> str:
    return str(uuid.uuid4())


class LinkFlow:
    def __init__(
        self,
        registry: ServerRegistry,
        channel_factory: ChannelFactory,
        timeout: float = 10.0,
        id_factory: Callable[[], str] = new_client_id,
    ):
        self.registry = registry
        self.channel_factory = channel_factory
        self.timeout = timeout
        self.id_factory = id_factory
        self.state = LinkState.IDLE

    def _transition(self, state: LinkState) -> None:
        logger.debug(f"Link state {self.state.value} -> {state.value}")
        self.state = state

    async def run(self, address: str, code: str) -> ServerEntry:
        """Link ``address`` using ``code`` and persist the new credential.

        Raises:
            ValueError: if ``code`` is empty.
            LinkRejected: the server refused the code or answered nonsense.
            LinkTimeout: no answer within the configured timeout.
            LinkTransportError: the connection could not be made or broke.
            PersistError: the credential could not be saved.
        """
        if self.state is not LinkState.IDLE:
            raise RuntimeError("LinkFlow instances are single use")
        code = code.strip()
        if not code:
            raise ValueError("Link code must not be empty")

        previous = self.registry.find(address)
        if previous is not None:
            logger.info(f"Re-linking {address}, the existing credential will be replaced")

        client_id = self.id_factory()
        logger.info(f"Linking with code: {code}")

        try:
            channel = await self.channel_factory(address)
        except ChannelError as e:
            self._transition(LinkState.FAILED)
            raise LinkTransportError(address, str(e)) from e

        try:
            self._transition(LinkState.AWAITING_RESPONSE)
            reply = await self._await_reply(channel, address, client_id, code)
            if not isinstance(reply, AuthAck):
                raise LinkRejected(f"unexpected {reply.TYPE.value} response")
            if not reply.ok:
                raise LinkRejected(reply.message or reply.status)

            entry = ServerEntry(address=address, client_id=client_id)
            self.registry.upsert(entry)
            self.registry.save()
            self._transition(LinkState.LINKED)
            logger.info(f"Linked successfully: {reply.message}")
            return entry
        except BaseException:
            self._transition(LinkState.FAILED)
            raise
        finally:
            await channel.close()

    async def _await_reply(
        self, channel: ProtocolChannel, address: str, client_id: str, code: str
    ):
        try:
            return await exchange_auth(channel, client_id, code, self.timeout)
        except asyncio.TimeoutError as e:
            raise LinkTimeout(address, self.timeout) from e
        except ProtocolError as e:
            raise LinkRejected(f"malformed response ({e})") from e
        except ChannelError as e:
            raise LinkTransportError(address, str(e)) from e
