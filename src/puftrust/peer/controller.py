from __future__ import annotations
import random
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import structlog

from puftrust.config import NodeConfig
from puftrust.protocol.codec import Message, MessageCodec, Verb, echo, hello, validate
from puftrust.protocol.constants import (
    ROLE, SEND_INTERVAL_S, SEND_JITTER_S, CHALLENGE_INITIAL_MAX_S, CHALLENGE_REPEAT_MAX_S,
    STATS_EVERY_TX,
)
from puftrust.protocol.errors import KeyMismatch, MalformedMessage, ProtocolError, TableFull
from puftrust.protocol.registry import Endpoint, Outcome, PeerRegistry

from .state import ControllerState, Phase
from .transport import Transport

logger = structlog.get_logger(__name__)


class ValidationController(ABC):
    """Shared inbound path for both roles.

    Every datagram is decoded, checked against the peer registry and, if the
    sender is trusted or newly registered, handed to :meth:`on_message`.
    Malformed, mismatched and table-full messages stop here with no reply.
    """

    role: ROLE

    def __init__(self, key: str, transport: Transport, registry: Optional[PeerRegistry] = None,
                 codec: Optional[MessageCodec] = None, rng: Optional[random.Random] = None):
        self._key = key
        self.transport = transport
        self.registry = registry if registry is not None else PeerRegistry()
        self.codec = codec or MessageCodec()
        self.rng = rng or random.Random()
        self.state = ControllerState(role=self.role)

    @property
    def key(self) -> str:
        return self._key

    def handle_datagram(self, endpoint, data: bytes) -> Optional[Outcome]:
        endpoint = Endpoint(*endpoint)
        try:
            msg = self.codec.decode(data)
        except MalformedMessage as e:
            self.state.dropped_malformed += 1
            logger.warning("message_dropped", reason="malformed", host=endpoint.host,
                           port=endpoint.port, error=str(e))
            return None

        logger.info("message_received", role=self.role, host=endpoint.host, port=endpoint.port,
                    key=msg.key, verb=msg.token)

        try:
            outcome = self.registry.require_trusted(endpoint, msg.key)
        except KeyMismatch as e:
            self.state.dropped_mismatch += 1
            logger.warning("connection_dropped", reason="key_mismatch", host=endpoint.host,
                           port=endpoint.port, key=e.presented, error=str(e))
            return Outcome.MISMATCH
        except TableFull as e:
            self.state.dropped_table_full += 1
            logger.warning("message_dropped", reason="table_full", host=endpoint.host,
                           port=endpoint.port, key=msg.key, capacity=e.capacity, error=str(e))
            return Outcome.TABLE_FULL
        if outcome is Outcome.TRUSTED:
            logger.info("key_verified", host=endpoint.host, port=endpoint.port, key=msg.key)

        self.state.rx_count += 1
        self.on_message(endpoint, msg, outcome)
        return outcome

    @abstractmethod
    def on_message(self, endpoint: Endpoint, msg: Message, outcome: Outcome) -> None:
        """Handle a message from a trusted or newly registered peer."""

    @abstractmethod
    def first_delay(self) -> float:
        """Delay before the first timer event."""

    @abstractmethod
    def on_tick(self) -> float:
        """Run the periodic send logic; returns the delay until the next tick."""

    def _answer_challenge(self, endpoint: Endpoint) -> None:
        # The key is a stand-in for a PUF response, so re-deriving it must
        # reproduce the same value. Answering means leaving it untouched.
        self.state.challenge_pending = True
        logger.info("validation_received", role=self.role, host=endpoint.host, port=endpoint.port)
        logger.info("key_unchanged", role=self.role, key=self._key)
        self.state.challenges_answered += 1
        self.state.challenge_pending = False

    def _send(self, endpoint: Endpoint, msg: Message) -> bool:
        try:
            data = self.codec.encode(msg)
        except MalformedMessage as e:
            logger.error("encode_failed", host=endpoint.host, port=endpoint.port, error=str(e))
            return False
        try:
            self.transport.send(endpoint, data)
        except ProtocolError as e:
            logger.error("send_failed", host=endpoint.host, port=endpoint.port, error=str(e))
            return False
        return True

    def status(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "key": self._key,
            "phase": self.state.phase.name.lower(),
            "stats": self.state.stats(),
            "peers": self.registry.snapshot(),
        }


class ClientController(ValidationController):
    role: ROLE = "client"

    def __init__(self, key: str, transport: Transport, registry: Optional[PeerRegistry] = None,
                 codec: Optional[MessageCodec] = None, rng: Optional[random.Random] = None,
                 interval: float = SEND_INTERVAL_S, jitter: float = SEND_JITTER_S):
        super().__init__(key, transport, registry=registry, codec=codec, rng=rng)
        self.interval = interval
        self.jitter = jitter

    def first_delay(self) -> float:
        return self.rng.uniform(0, self.interval)

    def next_delay(self) -> float:
        return self.interval - self.jitter + self.rng.uniform(0, 2 * self.jitter)

    def on_tick(self) -> float:
        dest = self.transport.destination()
        if dest is not None:
            if self.state.tx_count % STATS_EVERY_TX == 0:
                logger.info("tx_stats", tx=self.state.tx_count, rx=self.state.rx_count,
                            missed_tx=self.state.missed_tx_count)
            logger.info("sending_hello", counter=self.state.tx_count, key=self._key,
                        host=dest.host, port=dest.port)
            self._send(dest, hello(self._key, self.state.tx_count))
            self.state.tx_count += 1
        else:
            logger.info("not_reachable")
            if self.state.tx_count > 0:
                self.state.missed_tx_count += 1
        return self.next_delay()

    def on_message(self, endpoint: Endpoint, msg: Message, outcome: Outcome) -> None:
        if msg.verb is Verb.VALIDATE:
            self._answer_challenge(endpoint)


class ServerController(ValidationController):
    role: ROLE = "server"

    def __init__(self, key: str, transport: Transport, registry: Optional[PeerRegistry] = None,
                 codec: Optional[MessageCodec] = None, rng: Optional[random.Random] = None,
                 reply_enabled: bool = True, challenge_initial_max: float = CHALLENGE_INITIAL_MAX_S,
                 challenge_repeat_max: float = CHALLENGE_REPEAT_MAX_S):
        super().__init__(key, transport, registry=registry, codec=codec, rng=rng)
        self.reply_enabled = reply_enabled
        self.challenge_initial_max = challenge_initial_max
        self.challenge_repeat_max = challenge_repeat_max

    def first_delay(self) -> float:
        return self.rng.uniform(0, self.challenge_initial_max)

    def on_tick(self) -> float:
        self.state.validate_pending = True
        self.flush_challenges()
        return self.rng.uniform(0, self.challenge_repeat_max)

    def flush_challenges(self) -> int:
        """Send one ``validate`` to every registered peer if a cycle is pending."""
        if not self.state.validate_pending:
            return 0
        self.state.phase = Phase.BROADCASTING
        sent = 0
        for entry in self.registry.entries():
            logger.info("sending_validation", host=entry.endpoint.host, port=entry.endpoint.port,
                        peer_key=entry.key)
            if self._send(entry.endpoint, validate(self._key)):
                sent += 1
        self.state.challenges_sent += sent
        self.state.broadcasts += 1
        self.state.validate_pending = False
        self.state.phase = Phase.IDLE
        return sent

    def on_message(self, endpoint: Endpoint, msg: Message, outcome: Outcome) -> None:
        if msg.verb is Verb.VALIDATE:
            self._answer_challenge(endpoint)

        self.flush_challenges()

        if self.reply_enabled:
            logger.info("sending_response", role=self.role, key=self._key,
                        host=endpoint.host, port=endpoint.port)
            self._send(endpoint, echo(self._key, msg))


def build_controller(config: NodeConfig, key: str, transport: Transport,
                     rng: Optional[random.Random] = None) -> ValidationController:
    registry = PeerRegistry(capacity=config.capacity)
    codec = MessageCodec(max_len=config.max_msg_bytes)
    if config.role == "server":
        return ServerController(
            key, transport, registry=registry, codec=codec, rng=rng,
            reply_enabled=config.reply_enabled,
            challenge_initial_max=config.challenge_initial_max_s,
            challenge_repeat_max=config.challenge_repeat_max_s,
        )
    return ClientController(
        key, transport, registry=registry, codec=codec, rng=rng,
        interval=config.send_interval_s, jitter=config.send_jitter_s,
    )
