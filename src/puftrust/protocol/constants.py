from __future__ import annotations
from typing import Literal

ROLE = Literal["client", "server"]

UDP_CLIENT_PORT = 8765
UDP_SERVER_PORT = 5678

MAX_NODES = 10
MAX_MSG_BYTES = 120

KEY_LENGTH = 10
KEY_SEED_BYTES = 4

VERB_HELLO = "hello"
VERB_VALIDATE = "validate"

SEND_INTERVAL_S = 60.0
SEND_JITTER_S = 1.0
CHALLENGE_INITIAL_MAX_S = 320.0
CHALLENGE_REPEAT_MAX_S = 180.0

STATS_EVERY_TX = 10
