"""Tests for the linking handshake."""
import json
import uuid

import pytest

from minechat_client.errors import (
    ChannelClosed,
    ChannelError,
    LinkRejected,
    LinkTimeout,
    LinkTransportError,
    PersistError,
    ProtocolError,
)
from minechat_client.link import LinkFlow
from minechat_client.models import LinkState, ServerEntry
from minechat_client.protocol import Auth, AuthAck, Broadcast
from minechat_client.registry import JsonFileStore, ServerRegistry

from .conftest import ADDRESS, FakeChannel, FakeConnector


def make_flow(registry, connector, client_id="uuid-1", timeout=1.0):
    return LinkFlow(registry, connector, timeout=timeout, id_factory=lambda: client_id)


@pytest.mark.asyncio
async def test_link_stores_and_persists_credential(tmp_path):
    path = tmp_path / "servers.json"
    registry = ServerRegistry.load(JsonFileStore(path))
    channel = FakeChannel(ack=AuthAck(status="success", message="Linked to Steve"))
    flow = make_flow(registry, FakeConnector(channel))

    entry = await flow.run(ADDRESS, "ABC123")

    assert entry == ServerEntry(ADDRESS, "uuid-1")
    assert flow.state is LinkState.LINKED
    assert channel.sent == [Auth(client_uuid="uuid-1", link_code="ABC123")]
    assert channel.closed
    assert registry.find(ADDRESS) == entry
    assert json.loads(path.read_text()) == {
        "servers": [{"address": ADDRESS, "uuid": "uuid-1"}]
    }


@pytest.mark.asyncio
async def test_relink_replaces_existing_credential(linked_registry):
    before = linked_registry.find(ADDRESS)
    flow = make_flow(linked_registry, FakeConnector(FakeChannel()), client_id="uuid-2")

    await flow.run(ADDRESS, "XYZ789")

    assert before.client_id == "uuid-1"
    assert linked_registry.find(ADDRESS).client_id == "uuid-2"
    assert len(linked_registry) == 1


@pytest.mark.asyncio
async def test_rejected_code(registry, store):
    channel = FakeChannel(ack=AuthAck(status="error", message="Invalid link code"))
    flow = make_flow(registry, FakeConnector(channel))

    with pytest.raises(LinkRejected, match="Invalid link code"):
        await flow.run(ADDRESS, "WRONG")

    assert flow.state is LinkState.FAILED
    assert registry.find(ADDRESS) is None
    assert store.writes == 0
    assert channel.closed


@pytest.mark.asyncio
async def test_unexpected_response_is_rejection(registry):
    channel = FakeChannel(ack=Broadcast(sender="Steve", message="hi"))
    flow = make_flow(registry, FakeConnector(channel))

    with pytest.raises(LinkRejected, match="unexpected BROADCAST"):
        await flow.run(ADDRESS, "ABC123")
    assert flow.state is LinkState.FAILED


@pytest.mark.asyncio
async def test_malformed_response_is_rejection(registry):
    channel = FakeChannel(ProtocolError("bad json"), ack=None)
    flow = make_flow(registry, FakeConnector(channel))

    with pytest.raises(LinkRejected, match="malformed"):
        await flow.run(ADDRESS, "ABC123")


@pytest.mark.asyncio
async def test_no_response_times_out(registry):
    channel = FakeChannel(ack=None)
    flow = make_flow(registry, FakeConnector(channel), timeout=0.01)

    with pytest.raises(LinkTimeout):
        await flow.run(ADDRESS, "ABC123")

    assert flow.state is LinkState.FAILED
    assert channel.closed
    assert registry.find(ADDRESS) is None


@pytest.mark.asyncio
async def test_connect_failure_is_transport_error(registry):
    connector = FakeConnector(ChannelError("connection refused"))
    flow = make_flow(registry, connector)

    with pytest.raises(LinkTransportError, match="connection refused"):
        await flow.run(ADDRESS, "ABC123")

    assert flow.state is LinkState.FAILED
    assert connector.addresses == [ADDRESS]


@pytest.mark.asyncio
async def test_server_hangup_is_transport_error(registry):
    channel = FakeChannel(ChannelClosed("eof"), ack=None)
    flow = make_flow(registry, FakeConnector(channel))

    with pytest.raises(LinkTransportError):
        await flow.run(ADDRESS, "ABC123")


@pytest.mark.asyncio
async def test_persist_failure_propagates(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    registry = ServerRegistry(JsonFileStore(blocker / "servers.json"))
    channel = FakeChannel()
    flow = make_flow(registry, FakeConnector(channel))

    with pytest.raises(PersistError):
        await flow.run(ADDRESS, "ABC123")

    assert flow.state is LinkState.FAILED
    assert channel.closed


@pytest.mark.asyncio
async def test_empty_code_is_refused_before_connecting(registry):
    connector = FakeConnector(FakeChannel())
    flow = make_flow(registry, connector)

    with pytest.raises(ValueError):
        await flow.run(ADDRESS, "   ")

    assert connector.addresses == []
    assert flow.state is LinkState.IDLE


@pytest.mark.asyncio
async def test_flow_is_single_use(registry):
    flow = make_flow(registry, FakeConnector(FakeChannel(), FakeChannel()))
    await flow.run(ADDRESS, "ABC123")

    with pytest.raises(RuntimeError):
        await flow.run(ADDRESS, "ABC123")


@pytest.mark.asyncio
async def test_link_generates_uuid_by_default(registry):
    flow = LinkFlow(registry, FakeConnector(FakeChannel()), timeout=1.0)
    entry = await flow.run(ADDRESS, "ABC123")

    assert str(uuid.UUID(entry.client_id)) == entry.client_id
