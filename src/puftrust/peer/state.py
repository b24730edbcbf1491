from __future__ import annotations
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict

from puftrust.protocol.constants import ROLE


class Phase(Enum):
    IDLE = auto()
    BROADCASTING = auto()


@dataclass
class ControllerState:
    role: ROLE
    phase: Phase = Phase.IDLE

    # set by the challenge timer, consumed by the next processing step
    validate_pending: bool = False
    # set when a peer challenges us; cleared once the key is confirmed unchanged
    challenge_pending: bool = False

    tx_count: int = 0
    rx_count: int = 0
    missed_tx_count: int = 0
    dropped_malformed: int = 0
    dropped_mismatch: int = 0
    dropped_table_full: int = 0
    challenges_sent: int = 0
    challenges_answered: int = 0
    broadcasts: int = 0

    def stats(self) -> Dict[str, Any]:
        return {
            "tx": self.tx_count,
            "rx": self.rx_count,
            "missed_tx": self.missed_tx_count,
            "dropped_malformed": self.dropped_malformed,
            "dropped_mismatch": self.dropped_mismatch,
            "dropped_table_full": self.dropped_table_full,
            "challenges_sent": self.challenges_sent,
            "challenges_answered": self.challenges_answered,
            "broadcasts": self.broadcasts,
        }
