from __future__ import annotations
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from puftrust.protocol.constants import (
    ROLE, UDP_CLIENT_PORT, UDP_SERVER_PORT, MAX_NODES, MAX_MSG_BYTES, KEY_LENGTH,
    SEND_INTERVAL_S, SEND_JITTER_S, CHALLENGE_INITIAL_MAX_S, CHALLENGE_REPEAT_MAX_S,
)


class NodeConfig(BaseModel):
    role: ROLE
    host: str = "0.0.0.0"
    port: Optional[int] = Field(default=None, ge=0, le=65535)
    server_host: Optional[str] = None
    server_port: int = Field(default=UDP_SERVER_PORT, ge=1, le=65535)

    capacity: int = Field(default=MAX_NODES, ge=1)
    max_msg_bytes: int = Field(default=MAX_MSG_BYTES, ge=16, le=65507)
    key_length: int = Field(default=KEY_LENGTH, ge=1, le=64)

    reply_enabled: bool = True
    send_interval_s: float = Field(default=SEND_INTERVAL_S, gt=0)
    send_jitter_s: float = Field(default=SEND_JITTER_S, ge=0)
    challenge_initial_max_s: float = Field(default=CHALLENGE_INITIAL_MAX_S, gt=0)
    challenge_repeat_max_s: float = Field(default=CHALLENGE_REPEAT_MAX_S, gt=0)

    @model_validator(mode="after")
    def _check_role(self) -> "NodeConfig":
        if self.send_jitter_s >= self.send_interval_s:
            raise ValueError("send_jitter_s must be smaller than send_interval_s")
        if self.role == "client" and not self.server_host:
            raise ValueError("client role requires server_host")
        if self.key_length + len(" validate") > self.max_msg_bytes:
            raise ValueError("max_msg_bytes too small for the configured key length")
        return self

    @property
    def bind_port(self) -> int:
        if self.port is not None:
            return self.port
        return UDP_SERVER_PORT if self.role == "server" else UDP_CLIENT_PORT
