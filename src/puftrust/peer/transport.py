from __future__ import annotations
import asyncio
import socket
from typing import Callable, List, Optional, Tuple

import structlog

from puftrust.protocol.errors import ProtocolError
from puftrust.protocol.registry import Endpoint

logger = structlog.get_logger(__name__)

DatagramHandler = Callable[[Endpoint, bytes], None]


class Transport:
    """What the controllers need from the network: fire-and-forget sends
    and the currently reachable destination (if any)."""

    def send(self, endpoint: Endpoint, data: bytes) -> None:
        """Hook for subclasses: send one datagram, or raise ProtocolError."""
        raise NotImplementedError

    def destination(self) -> Optional[Endpoint]:
        return None

    async def refresh(self) -> None:
        return None

    def close(self) -> None:
        return None


class MemoryTransport(Transport):
    def __init__(self, destination: Optional[Endpoint] = None):
        self._destination = destination
        self.reachable = destination is not None
        self.sent: List[Tuple[Endpoint, bytes]] = []
        self.closed = False

    def send(self, endpoint: Endpoint, data: bytes) -> None:
        if self.closed:
            raise ProtocolError("not connected")
        self.sent.append((Endpoint(*endpoint), bytes(data)))

    def destination(self) -> Optional[Endpoint]:
        return self._destination if self.reachable else None

    def set_destination(self, endpoint: Optional[Endpoint]) -> None:
        self._destination = endpoint
        self.reachable = endpoint is not None

    def sent_to(self, endpoint: Endpoint) -> List[bytes]:
        return [data for ep, data in self.sent if ep == Endpoint(*endpoint)]

    def close(self) -> None:
        self.closed = True


class UdpTransport(Transport, asyncio.DatagramProtocol):
    def __init__(self, on_datagram: DatagramHandler, server_host: Optional[str] = None,
                 server_port: Optional[int] = None):
        self._on_datagram = on_datagram
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._server = (server_host, server_port) if server_host and server_port else None
        self._destination: Optional[Endpoint] = None
        self.family = socket.AF_INET

    async def open(self, host: str, port: int) -> Endpoint:
        loop = asyncio.get_running_loop()
        await loop.create_datagram_endpoint(lambda: self, local_addr=(host, port))
        local = self.local_endpoint
        logger.info("udp_bound", host=local.host, port=local.port)
        return local

    @property
    def local_endpoint(self) -> Endpoint:
        if self._transport is None:
            raise ProtocolError("not connected")
        addr = self._transport.get_extra_info("sockname")
        return Endpoint(addr[0], addr[1])

    def connection_made(self, transport):
        self._transport = transport
        sock = transport.get_extra_info("socket")
        if sock is not None:
            self.family = sock.family

    def connection_lost(self, exc):
        if exc:
            logger.error("udp_connection_lost", error=str(exc))
        self._transport = None

    def datagram_received(self, data: bytes, addr):
        self._on_datagram(Endpoint(addr[0], addr[1]), data)

    def error_received(self, exc):
        logger.warning("udp_error", error=str(exc))

    async def refresh(self) -> None:
        if self._destination is not None or self._server is None or self._transport is None:
            return
        host, port = self._server
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(host, port, family=self.family, type=socket.SOCK_DGRAM)
        except socket.gaierror as e:
            logger.info("resolve_failed", host=host, port=port, error=str(e))
            return
        if infos:
            addr = infos[0][4]
            self._destination = Endpoint(addr[0], addr[1])
            logger.info("destination_resolved", host=addr[0], port=addr[1])

    def destination(self) -> Optional[Endpoint]:
        if self._transport is None or self._transport.is_closing():
            return None
        return self._destination

    def send(self, endpoint: Endpoint, data: bytes) -> None:
        if self._transport is None or self._transport.is_closing():
            raise ProtocolError("not connected")
        self._transport.sendto(data, (endpoint[0], endpoint[1]))

    def close(self) -> None:
        if self._transport is not None:
            self._transport.close()
