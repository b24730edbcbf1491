from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .constants import MAX_MSG_BYTES, VERB_HELLO, VERB_VALIDATE
from .errors import MalformedMessage, MessageTooLong


class Verb(Enum):
    HELLO = VERB_HELLO
    VALIDATE = VERB_VALIDATE
    OTHER = "other"


@dataclass(frozen=True)
class Message:
    key: str
    token: Optional[str] = None
    payload: str = ""

    @property
    def verb(self) -> Verb:
        if self.token == VERB_VALIDATE:
            return Verb.VALIDATE
        if self.token == VERB_HELLO:
            return Verb.HELLO
        return Verb.OTHER

    @property
    def tail(self) -> str:
        """Everything after the key, as it appears on the wire."""
        if self.token is None:
            return ""
        return f"{self.token} {self.payload}" if self.payload else self.token


def hello(key: str, counter: int) -> Message:
    return Message(key, VERB_HELLO, str(counter))


def validate(key: str) -> Message:
    return Message(key, VERB_VALIDATE)


def echo(key: str, original: Message) -> Message:
    # Only the key field is substituted; verb and payload are carried over.
    return Message(key, original.token, original.payload)


def _check_key(key: str) -> None:
    if any(c.isspace() for c in key):
        raise MalformedMessage("Key contains whitespace")


def _check_nul(msg: Message) -> None:
    # decode treats NUL as the C string terminator
    for name, value in (("key", msg.key), ("verb", msg.token or ""), ("payload", msg.payload)):
        if "\x00" in value:
            raise MalformedMessage(f"NUL byte in {name} field")


class MessageCodec:
    def __init__(self, max_len: int = MAX_MSG_BYTES):
        self.max_len = max_len

    def decode(self, data: bytes) -> Message:
        # a C peer may send its string terminator, which does not count
        # against the bound
        if data.endswith(b"\x00"):
            data = data[:-1]
        if len(data) > self.max_len:
            raise MessageTooLong(len(data), self.max_len)

        data = data.rstrip(b"\x00")
        try:
            text = data.decode("ascii")
        except UnicodeDecodeError as e:
            raise MalformedMessage(f"Non-ASCII message: {e}") from e

        fields = text.split(" ")
        key = fields[0]
        if not key:
            raise MalformedMessage("Missing key field")
        _check_key(key)

        if len(fields) == 1:
            return Message(key)

        token = fields[1]
        payload = " ".join(fields[2:])
        return Message(key, token, payload)

    def encode(self, msg: Message) -> bytes:
        if not msg.key:
            raise MalformedMessage("Missing key field")
        _check_key(msg.key)
        _check_nul(msg)
        if msg.token is None:
            if msg.payload:
                raise MalformedMessage("Payload without verb")
            text = msg.key
        else:
            if " " in msg.token:
                raise MalformedMessage("Verb must not contain spaces")
            text = f"{msg.key} {msg.tail}" if msg.tail else f"{msg.key} "

        try:
            data = text.encode("ascii")
        except UnicodeEncodeError as e:
            raise MalformedMessage(f"Non-ASCII message: {e}") from e
        if len(data) > self.max_len:
            raise MessageTooLong(len(data), self.max_len)
        return data
