from __future__ import annotations
import asyncio
import os
import random
from dataclasses import dataclass
from typing import Optional, Union

import structlog

from puftrust.config import NodeConfig
from puftrust.crypto.identity import EntropySource, KeyGenerator
from puftrust.protocol.registry import Endpoint

from .controller import ValidationController, build_controller
from .transport import Transport, UdpTransport

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TimerEvent:
    pass


@dataclass(frozen=True)
class DatagramEvent:
    endpoint: Endpoint
    data: bytes


Event = Union[TimerEvent, DatagramEvent]


class PeerNode:
    """One peer process: a key, a controller, a transport and an event queue.

    Timer expiries and received datagrams are only queued by their sources;
    :meth:`run` takes them off the queue and handles each to completion
    before waiting for the next.
    """

    def __init__(self, config: NodeConfig, transport: Optional[Transport] = None,
                 entropy: EntropySource = os.urandom, rng: Optional[random.Random] = None):
        self.config = config
        self.key = KeyGenerator(entropy=entropy, length=config.key_length).generate()
        logger.info("identity_key_generated", role=config.role, key=self.key)

        self.events: asyncio.Queue = asyncio.Queue()
        self.transport = transport or UdpTransport(
            self.enqueue_datagram,
            server_host=config.server_host if config.role == "client" else None,
            server_port=config.server_port,
        )
        self.controller: ValidationController = build_controller(config, self.key, self.transport, rng=rng)

        self._timer: Optional[asyncio.TimerHandle] = None
        self._running = False
        self._stop = object()

    def enqueue_datagram(self, endpoint: Endpoint, data: bytes) -> None:
        self.events.put_nowait(DatagramEvent(Endpoint(*endpoint), bytes(data)))

    def _fire_timer(self) -> None:
        self._timer = None
        self.events.put_nowait(TimerEvent())

    def schedule(self, delay: float) -> None:
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(max(0.0, delay), self._fire_timer)
        logger.debug("timer_scheduled", role=self.config.role, delay_s=round(delay, 3))

    async def start(self) -> None:
        if isinstance(self.transport, UdpTransport):
            await self.transport.open(self.config.host, self.config.bind_port)
        await self.transport.refresh()
        self._running = True
        self.schedule(self.controller.first_delay())
        logger.info("node_started", role=self.config.role, key=self.key)

    async def dispatch(self, event: Event) -> None:
        if isinstance(event, TimerEvent):
            await self.transport.refresh()
            self.schedule(self.controller.on_tick())
        elif isinstance(event, DatagramEvent):
            self.controller.handle_datagram(event.endpoint, event.data)

    async def run(self) -> None:
        await self.start()
        try:
            while self._running:
                event = await self.events.get()
                if event is self._stop:
                    break
                await self.dispatch(event)
        finally:
            self.close()

    def stop(self) -> None:
        self._running = False
        self.events.put_nowait(self._stop)

    def close(self) -> None:
        self._running = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.transport.close()
        logger.info("node_stopped", role=self.config.role, **self.controller.state.stats())
