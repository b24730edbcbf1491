from __future__ import annotations
import random
import sys
from pathlib import Path

import pytest

_src = Path(__file__).resolve().parent.parent / "src"
if _src.exists() and str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from puftrust.peer.controller import ClientController, ServerController  # noqa: E402
from puftrust.peer.transport import MemoryTransport  # noqa: E402
from puftrust.protocol.registry import Endpoint, PeerRegistry  # noqa: E402

SERVER_KEY = "serverkeyy"
CLIENT_KEY = "clientkeyy"
SERVER_EP = Endpoint("fd00::1", 5678)


class AuditRecorder:
    def __init__(self):
        self.events = []

    def __call__(self, event, **fields):
        self.events.append((event, fields))

    def names(self):
        return [name for name, _ in self.events]


@pytest.fixture
def audit():
    return AuditRecorder()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def memory_transport():
    return MemoryTransport()


@pytest.fixture
def server(memory_transport, rng, audit):
    return ServerController(SERVER_KEY, memory_transport, registry=PeerRegistry(audit=audit), rng=rng)


@pytest.fixture
def client(rng, audit):
    transport = MemoryTransport(destination=SERVER_EP)
    return ClientController(CLIENT_KEY, transport, registry=PeerRegistry(audit=audit), rng=rng)
