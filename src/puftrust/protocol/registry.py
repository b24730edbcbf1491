from __future__ import annotations
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, List, NamedTuple, Optional

import structlog

from puftrust.crypto.identity import safe_compare
from .constants import MAX_NODES
from .errors import KeyMismatch, TableFull

logger = structlog.get_logger(__name__)


class Endpoint(NamedTuple):
    host: str
    port: int

    def __str__(self) -> str:
        return f"[{self.host}]:{self.port}" if ":" in self.host else f"{self.host}:{self.port}"


class Outcome(Enum):
    TRUSTED = auto()
    MISMATCH = auto()
    REGISTERED = auto()
    TABLE_FULL = auto()


@dataclass
class PeerEntry:
    endpoint: Endpoint
    key: str
    occupied: bool = True
    registered_at: float = field(default_factory=time.monotonic)
    last_seen: float = 0.0
    messages: int = 1

    def __post_init__(self):
        if not self.last_seen:
            self.last_seen = self.registered_at


AuditHook = Callable[..., None]


def log_audit(event: str, **fields: Any) -> None:
    if event == "peer_registered":
        logger.info(event, **fields)
    else:
        logger.warning(event, **fields)


class PeerRegistry:
    """Bounded trust-on-first-use table of endpoint -> identity key.

    The first key seen from an endpoint is bound for the life of the
    registry. There is no update or removal; once ``capacity`` endpoints
    are bound, new endpoints are refused.
    """

    def __init__(self, capacity: int = MAX_NODES, audit: Optional[AuditHook] = None):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._audit = audit or log_audit
        self._entries: Dict[Endpoint, PeerEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, endpoint) -> bool:
        return Endpoint(*endpoint) in self._entries

    @property
    def is_full(self) -> bool:
        return len(self._entries) >= self.capacity

    def get(self, endpoint) -> Optional[PeerEntry]:
        return self._entries.get(Endpoint(*endpoint))

    def entries(self) -> List[PeerEntry]:
        return [e for e in self._entries.values() if e.occupied]

    def verify_or_register(self, endpoint, key: str) -> Outcome:
        endpoint = Endpoint(*endpoint)
        entry = self._entries.get(endpoint)

        if entry is not None:
            if safe_compare(entry.key, key):
                entry.last_seen = time.monotonic()
                entry.messages += 1
                return Outcome.TRUSTED
            self._audit("peer_key_mismatch", host=endpoint.host, port=endpoint.port,
                        presented=key, bound=entry.key)
            return Outcome.MISMATCH

        if self.is_full:
            self._audit("peer_table_full", host=endpoint.host, port=endpoint.port,
                        presented=key, capacity=self.capacity)
            return Outcome.TABLE_FULL

        self._entries[endpoint] = PeerEntry(endpoint=endpoint, key=key)
        self._audit("peer_registered", host=endpoint.host, port=endpoint.port,
                    key=key, size=len(self._entries))
        return Outcome.REGISTERED

    def require_trusted(self, endpoint, key: str) -> Outcome:
        """Like verify_or_register, but raises KeyMismatch or TableFull instead
        of returning the refusing outcome. Returns TRUSTED or REGISTERED."""
        endpoint = Endpoint(*endpoint)
        outcome = self.verify_or_register(endpoint, key)
        if outcome is Outcome.MISMATCH:
            raise KeyMismatch(endpoint, key)
        if outcome is Outcome.TABLE_FULL:
            raise TableFull(endpoint, self.capacity)
        return outcome

    def snapshot(self) -> List[Dict[str, Any]]:
        now = time.monotonic()
        return [
            {
                "host": e.endpoint.host,
                "port": e.endpoint.port,
                "key": e.key,
                "messages": e.messages,
                "idle_s": round(now - e.last_seen, 3),
            }
            for e in self.entries()
        ]
