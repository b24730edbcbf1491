from __future__ import annotations


class ProtocolError(Exception):
    pass


class MalformedMessage(ProtocolError):
    pass


class MessageTooLong(MalformedMessage):
    def __init__(self, size: int, limit: int):
        super().__init__(f"Message too long: {size} > {limit}")
        self.size = size
        self.limit = limit


class KeyMismatch(ProtocolError):
    def __init__(self, endpoint, presented: str):
        super().__init__(f"Key mismatch for {endpoint[0]}:{endpoint[1]}")
        self.endpoint = endpoint
        self.presented = presented


class TableFull(ProtocolError):
    def __init__(self, endpoint, capacity: int):
        super().__init__(f"Peer table full ({capacity}); cannot register {endpoint[0]}:{endpoint[1]}")
        self.endpoint = endpoint
        self.capacity = capacity


class EntropySourceUnavailable(ProtocolError):
    pass
