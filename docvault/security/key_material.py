"""Key Material - Fresh per-document data key + IV"""

import os
from dataclasses import dataclass

KEY_SIZE = 32  # AES-256
IV_SIZE = 16


@dataclass(frozen=True)
class KeyMaterial:
    key: bytes
    iv: bytes

    def __repr__(self) -> str:
        return "KeyMaterial(key=<redacted>, iv=%s)" % self.iv.hex()


def generate() -> KeyMaterial:
    """Draw a new (key, iv) pair from the OS CSPRNG.

    Never reuse the result: GCM loses confidentiality and integrity when an IV
    repeats under the same key. Entropy failures propagate unchanged.
    """
    return KeyMaterial(key=os.urandom(KEY_SIZE), iv=os.urandom(IV_SIZE))
