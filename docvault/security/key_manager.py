"""Key Manager - Envelope encryption for per-document data keys

Self-Explanatory: Wraps each document's data key under a master key that never
lives in the metadata catalog.
Why: A catalog dump alone must not be enough to decrypt the vault.
How: AWS KMS master key in production; Fernet master key for local development.

Security Model:
1. Generate data key (DEK) + IV for the document
2. Encrypt document with DEK (AES-256-GCM)
3. Wrap DEK with master key (KMS encrypt / Fernet)
4. Catalog stores: {wrapped_dek, key_id, iv}
5. Retrieve: unwrap DEK -> DEK decrypts document
"""

import base64
import hashlib
from dataclasses import dataclass
from typing import Dict, Optional

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError
from cryptography.fernet import Fernet, InvalidToken

from docvault import config
from docvault.errors import CodecError, StoreUnavailable

logger = structlog.get_logger()


@dataclass(frozen=True)
class WrappedKey:
    ciphertext: str  # base64 text, safe to store in the catalog
    key_id: str


class KeyManager:
    """Interface shared by the KMS and local backends"""

    def wrap(self, key: bytes, context: Dict[str, str]) -> WrappedKey:
        raise NotImplementedError

    def unwrap(self, wrapped: WrappedKey, context: Dict[str, str]) -> bytes:
        raise NotImplementedError


class KMSKeyManager(KeyManager):
    """AWS KMS-backed wrapping; the encryption context is bound to the document id"""

    def __init__(self, key_id: str, kms_client=None):
        self.key_id = key_id
        self.kms_client = kms_client or boto3.client("kms", region_name=config.AWS_REGION)
        logger.info("KMS key manager initialized", key_id=key_id[:20] + "...")

    def wrap(self, key: bytes, context: Dict[str, str]) -> WrappedKey:
        try:
            response = self.kms_client.encrypt(
                KeyId=self.key_id, Plaintext=key, EncryptionContext=context
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("KMS wrap error", error=str(e))
            raise StoreUnavailable("key management service unavailable")
        return WrappedKey(
            ciphertext=base64.b64encode(response["CiphertextBlob"]).decode("utf-8"),
            key_id=response.get("KeyId", self.key_id),
        )

    def unwrap(self, wrapped: WrappedKey, context: Dict[str, str]) -> bytes:
        try:
            response = self.kms_client.decrypt(
                CiphertextBlob=base64.b64decode(wrapped.ciphertext),
                EncryptionContext=context,
                KeyId=wrapped.key_id,
            )
        except ClientError as e:
            code = e.response["Error"]["Code"]
            if code in ("InvalidCiphertextException", "IncorrectKeyException"):
                logger.error("KMS rejected wrapped key", code=code)
                raise CodecError("key material corrupted or tampered")
            logger.error("KMS unwrap error", error=str(e))
            raise StoreUnavailable("key management service unavailable")
        except BotoCoreError as e:
            logger.error("KMS unwrap error", error=str(e))
            raise StoreUnavailable("key management service unavailable")
        return response["Plaintext"]


class LocalKeyManager(KeyManager):
    """Fernet master key for development and tests.

    The context is prefixed to the key before wrapping so a wrapped key copied
    onto another document's record will not unwrap.
    """

    def __init__(self, master_key: Optional[bytes] = None):
        if master_key is None:
            master_key = Fernet.generate_key()
            logger.warning("Using ephemeral master key (development only)")
        self._fernet = Fernet(master_key)
        self.key_id = "local:" + hashlib.sha256(master_key).hexdigest()[:16]

    @staticmethod
    def _bind(context: Dict[str, str]) -> bytes:
        return "|".join(f"{k}={context[k]}" for k in sorted(context)).encode() + b"\x00"

    def wrap(self, key: bytes, context: Dict[str, str]) -> WrappedKey:
        token = self._fernet.encrypt(self._bind(context) + key)
        return WrappedKey(ciphertext=token.decode("utf-8"), key_id=self.key_id)

    def unwrap(self, wrapped: WrappedKey, context: Dict[str, str]) -> bytes:
        if wrapped.key_id != self.key_id:
            raise CodecError(f"wrapped under unknown master key {wrapped.key_id}")
        try:
            payload = self._fernet.decrypt(wrapped.ciphertext.encode("utf-8"))
        except InvalidToken:
            logger.error("Wrapped key failed verification")
            raise CodecError("key material corrupted or tampered")
        prefix = self._bind(context)
        if not payload.startswith(prefix):
            logger.error("Wrapped key bound to a different document")
            raise CodecError("key material corrupted or tampered")
        return payload[len(prefix):]


def build_key_manager() -> KeyManager:
    if config.KMS_KEY_ID:
        return KMSKeyManager(config.KMS_KEY_ID)
    master = config.MASTER_KEY.encode() if config.MASTER_KEY else None
    return LocalKeyManager(master)
