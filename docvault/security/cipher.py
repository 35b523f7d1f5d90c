"""Cipher Codec - AES-256-GCM for document blobs

Self-Explanatory: Encrypts/decrypts document bytes with the per-document key.
Why: Authenticated mode; a flipped bit or truncated blob fails loudly instead
of producing garbage plaintext.
How: cryptography's Cipher/GCM so large files can be processed chunk by chunk.

Blob layout:
    ciphertext || tag (16 bytes)
"""

from typing import Iterable, Iterator

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from docvault.errors import CodecError
from docvault.security.key_material import IV_SIZE, KEY_SIZE
from docvault.utils.metrics import encryption_operations_total

logger = structlog.get_logger()

TAG_SIZE = 16
ALGORITHM = "AES-256-GCM"
TAMPERED = "document corrupted or tampered"


def _check_key_material(key: bytes, iv: bytes):
    if len(key) != KEY_SIZE:
        raise CodecError(f"key must be {KEY_SIZE} bytes, got {len(key)}")
    if len(iv) != IV_SIZE:
        raise CodecError(f"iv must be {IV_SIZE} bytes, got {len(iv)}")


def encrypt_stream(chunks: Iterable[bytes], key: bytes, iv: bytes) -> Iterator[bytes]:
    """Encrypt an iterable of plaintext chunks, yielding ciphertext then the tag"""
    _check_key_material(key, iv)
    encryptor = Cipher(algorithms.AES(key), modes.GCM(iv)).encryptor()
    for chunk in chunks:
        out = encryptor.update(chunk)
        if out:
            yield out
    final = encryptor.finalize()
    if final:
        yield final
    yield encryptor.tag
    encryption_operations_total.labels(operation="encrypt", algorithm=ALGORITHM).inc()


def decrypt_stream(chunks: Iterable[bytes], key: bytes, iv: bytes) -> Iterator[bytes]:
    """Decrypt a blob delivered in chunks.

    The last TAG_SIZE bytes are held back until the source is exhausted, then
    verified. A bad tag raises CodecError before the generator completes, so a
    consumer that reads to the end never accepts tampered data.
    """
    _check_key_material(key, iv)
    decryptor = Cipher(algorithms.AES(key), modes.GCM(iv)).decryptor()
    pending = b""
    for chunk in chunks:
        pending += chunk
        if len(pending) > TAG_SIZE:
            body, pending = pending[:-TAG_SIZE], pending[-TAG_SIZE:]
            out = decryptor.update(body)
            if out:
                yield out
    if len(pending) < TAG_SIZE:
        logger.error("Blob truncated", size=len(pending))
        raise CodecError(TAMPERED)
    try:
        final = decryptor.finalize_with_tag(pending)
    except InvalidTag:
        logger.error("Authentication tag mismatch")
        raise CodecError(TAMPERED)
    if final:
        yield final
    encryption_operations_total.labels(operation="decrypt", algorithm=ALGORITHM).inc()


def encrypt(plaintext: bytes, key: bytes, iv: bytes) -> bytes:
    return b"".join(encrypt_stream([plaintext], key, iv))


def decrypt(blob: bytes, key: bytes, iv: bytes) -> bytes:
    return b"".join(decrypt_stream([blob], key, iv))
