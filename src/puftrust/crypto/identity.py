from __future__ import annotations
import hmac
import os
import random
import string
from typing import Callable, Optional

from puftrust.protocol.constants import KEY_LENGTH, KEY_SEED_BYTES
from puftrust.protocol.errors import EntropySourceUnavailable

EntropySource = Callable[[int], bytes]


def safe_compare(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


class KeyGenerator:
    """Session identity key standing in for a PUF response.

    A seed is read once from the entropy source and drives a deterministic
    PRNG, from which ``length`` characters of ``alphabet`` are drawn. The
    key is generated on the first call and returned unchanged afterwards.
    """

    def __init__(self, entropy: EntropySource = os.urandom, length: int = KEY_LENGTH,
                 alphabet: str = string.ascii_lowercase):
        if length < 1:
            raise ValueError(f"key length must be >= 1, got {length}")
        if not alphabet:
            raise ValueError("alphabet must not be empty")
        self.entropy = entropy
        self.length = length
        self.alphabet = alphabet
        self._key: Optional[str] = None

    def _seed(self) -> int:
        try:
            raw = self.entropy(KEY_SEED_BYTES)
        except (OSError, NotImplementedError) as e:
            raise EntropySourceUnavailable(f"Entropy source failed: {e}") from e
        if raw is None or len(raw) < KEY_SEED_BYTES:
            raise EntropySourceUnavailable(
                f"Entropy source returned {0 if raw is None else len(raw)} < {KEY_SEED_BYTES} bytes"
            )
        return int.from_bytes(raw[:KEY_SEED_BYTES], "little")

    def generate(self) -> str:
        if self._key is None:
            rng = random.Random(self._seed())
            self._key = "".join(rng.choice(self.alphabet) for _ in range(self.length))
        return self._key

    @property
    def key(self) -> Optional[str]:
        return self._key
