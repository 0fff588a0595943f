"""Test configuration and fakes."""
import asyncio
from contextlib import nullcontext

import pytest

from minechat_client.channel import ProtocolChannel
from minechat_client.errors import ChannelClosed, ChannelError
from minechat_client.models import ServerEntry
from minechat_client.protocol import AuthAck, Chat
from minechat_client.registry import MemoryStore, ServerRegistry

ADDRESS = "localhost:25575"
WELCOME = AuthAck(status="success", message="Welcome to the server")


class FakeChannel(ProtocolChannel):
    """Channel that replays queued messages and records what is sent.

    Exceptions placed in the inbox are raised from ``receive``. When a
    ``send_gate`` is given, chat sends block until the gate is set.
    """

    def __init__(self, *incoming, ack=WELCOME, send_gate=None):
        self.inbox = asyncio.Queue()
        if ack is not None:
            self.inbox.put_nowait(ack)
        for item in incoming:
            self.inbox.put_nowait(item)
        self.sent = []
        self.closed = False
        self.send_gate = send_gate
        self.sending = asyncio.Event()

    def push(self, item):
        self.inbox.put_nowait(item)

    async def send(self, message):
        if self.closed:
            raise ChannelClosed("channel closed")
        if self.send_gate is not None and isinstance(message, Chat):
            self.sending.set()
            await self.send_gate.wait()
        self.sent.append(message)

    async def receive(self):
        item = await self.inbox.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self):
        self.closed = True


class FakeConnector:
    """Channel factory handing out prepared channels or raising prepared errors."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.addresses = []

    async def __call__(self, address):
        self.addresses.append(address)
        if not self.outcomes:
            raise ChannelError("connection refused")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeInput:
    def __init__(self, *lines):
        self.lines = asyncio.Queue()
        for line in lines:
            self.lines.put_nowait(line)

    def feed(self, line):
        self.lines.put_nowait(line)

    async def read_line(self):
        return await self.lines.get()


class FakeOutput:
    def __init__(self):
        self.messages = []
        self.notices = []
        self.errors = []
        self.commands = {}

    def show_message(self, message):
        self.messages.append(message)

    def show_notice(self, text, style="yellow"):
        self.notices.append(text)

    def show_error(self, text):
        self.errors.append(text)

    def show_banner(self, address):
        pass

    def register_command(self, name, help_text):
        self.commands[name] = help_text

    def live(self):
        return nullcontext()


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def registry(store):
    return ServerRegistry.load(store)


@pytest.fixture
def linked_registry():
    store = MemoryStore({"servers": [{"address": ADDRESS, "uuid": "uuid-1"}]})
    return ServerRegistry.load(store)


@pytest.fixture
def output():
    return FakeOutput()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def entry():
    return ServerEntry(address=ADDRESS, client_id="uuid-1")
