from __future__ import annotations
import asyncio
import random

import pytest

from puftrust.config import NodeConfig
from puftrust.peer.controller import ServerController
from puftrust.peer.node import DatagramEvent, PeerNode, TimerEvent
from puftrust.peer.transport import MemoryTransport, UdpTransport
from puftrust.protocol.errors import EntropySourceUnavailable
from puftrust.protocol.registry import Endpoint

PEER_A = Endpoint("fd00::a", 8765)
PEER_B = Endpoint("fd00::b", 8765)


def fixed_entropy(n):
    return b"\x2a" * n


async def wait_for(predicate, timeout=3.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


def test_node_key_comes_from_entropy():
    a = PeerNode(NodeConfig(role="server"), transport=MemoryTransport(), entropy=fixed_entropy)
    b = PeerNode(NodeConfig(role="server"), transport=MemoryTransport(), entropy=fixed_entropy)
    assert a.key == b.key
    assert a.controller.key == a.key
    assert isinstance(a.controller, ServerController)


def test_node_fails_without_entropy():
    def broken(n):
        raise NotImplementedError

    with pytest.raises(EntropySourceUnavailable):
        PeerNode(NodeConfig(role="server"), transport=MemoryTransport(), entropy=broken)


@pytest.mark.asyncio
async def test_events_processed_sequentially():
    transport = MemoryTransport()
    node = PeerNode(NodeConfig(role="server"), transport=transport, entropy=fixed_entropy,
                    rng=random.Random(0))
    node.enqueue_datagram(PEER_A, b"keyaaaaaaa hello 0")
    node.enqueue_datagram(PEER_B, b"keybbbbbbb hello 0")
    node.enqueue_datagram(PEER_A, b"intruder00 hello 1")
    node.events.put_nowait(TimerEvent())
    node.enqueue_datagram(PEER_B, b"keybbbbbbb hello 1")
    node.stop()

    await asyncio.wait_for(node.run(), timeout=2.0)

    key = node.key
    assert transport.sent == [
        (PEER_A, f"{key} hello 0".encode()),
        (PEER_B, f"{key} hello 0".encode()),
        (PEER_A, f"{key} validate".encode()),
        (PEER_B, f"{key} validate".encode()),
        (PEER_B, f"{key} hello 1".encode()),
    ]
    assert node.controller.state.dropped_mismatch == 1
    assert transport.closed


@pytest.mark.asyncio
async def test_timer_event_reschedules():
    transport = MemoryTransport(destination=Endpoint("fd00::1", 5678))
    config = NodeConfig(role="client", server_host="fd00::1", send_interval_s=0.05, send_jitter_s=0.01)
    node = PeerNode(config, transport=transport, entropy=fixed_entropy, rng=random.Random(3))
    task = asyncio.create_task(node.run())
    try:
        await wait_for(lambda: node.controller.state.tx_count >= 3)
    finally:
        node.stop()
        await asyncio.wait_for(task, timeout=2.0)

    payloads = [data for _, data in transport.sent]
    assert payloads[:3] == [f"{node.key} hello {i}".encode() for i in range(3)]


@pytest.mark.asyncio
async def test_datagram_event_dispatch():
    transport = MemoryTransport()
    node = PeerNode(NodeConfig(role="server", reply_enabled=False), transport=transport,
                    entropy=fixed_entropy)
    await node.dispatch(DatagramEvent(PEER_A, b"keyaaaaaaa hello 0"))
    assert PEER_A in node.controller.registry
    assert transport.sent == []


@pytest.mark.asyncio
async def test_udp_transport_loopback():
    received = asyncio.Queue()
    a = UdpTransport(lambda ep, data: received.put_nowait((ep, data)))
    b = UdpTransport(lambda ep, data: None)
    await a.open("127.0.0.1", 0)
    await b.open("127.0.0.1", 0)
    try:
        b.send(a.local_endpoint, b"k hello 0")
        ep, data = await asyncio.wait_for(received.get(), timeout=2.0)
        assert data == b"k hello 0"
        assert ep == b.local_endpoint
    finally:
        a.close()
        b.close()


@pytest.mark.asyncio
async def test_udp_transport_resolves_destination():
    t = UdpTransport(lambda ep, data: None, server_host="127.0.0.1", server_port=5678)
    assert t.destination() is None
    await t.open("127.0.0.1", 0)
    try:
        await t.refresh()
        assert t.destination() == Endpoint("127.0.0.1", 5678)
    finally:
        t.close()


@pytest.mark.asyncio
async def test_client_and_server_over_udp():
    server = PeerNode(NodeConfig(role="server", host="127.0.0.1", port=0,
                                 challenge_initial_max_s=0.2, challenge_repeat_max_s=0.2),
                      rng=random.Random(1))
    server_task = asyncio.create_task(server.run())
    await wait_for(lambda: server._running)
    server_port = server.transport.local_endpoint.port

    client = PeerNode(NodeConfig(role="client", host="127.0.0.1", port=0, server_host="127.0.0.1",
                                 server_port=server_port, send_interval_s=0.05, send_jitter_s=0.01),
                      rng=random.Random(2))
    client_task = asyncio.create_task(client.run())
    try:
        await wait_for(lambda: client.controller.state.challenges_answered >= 1
                       and client.controller.state.rx_count >= 2)
        client_ep = client.transport.local_endpoint
    finally:
        client.stop()
        server.stop()
        await asyncio.wait_for(asyncio.gather(client_task, server_task), timeout=2.0)

    entries = server.controller.registry.entries()
    assert len(entries) == 1
    assert entries[0].key == client.key
    assert entries[0].endpoint == client_ep
    assert client.controller.registry.entries()[0].key == server.key
    assert client.controller.state.dropped_mismatch == 0
