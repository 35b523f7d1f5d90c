"""Encrypted Object Storage - S3/MinIO backend

Self-Explanatory: Puts/gets/deletes opaque ciphertext blobs by key.
Why: Durable blob storage outside the application; signed URLs for direct download.
How: Boto3 for AWS S3, tenacity for bounded retry of transient failures.

Contract (both backends):
- put overwrites an existing key
- get/stream/delete raise NotFound for a missing key
- anything still failing after the retry budget surfaces as StoreUnavailable
"""

import threading
import time
from typing import Dict, Iterator, Optional, Tuple

import boto3
import structlog
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from docvault import config
from docvault.errors import NotFound, StoreUnavailable, ValidationError

logger = structlog.get_logger()

MISSING_CODES = {"NoSuchKey", "404", "NotFound"}
TRANSIENT_CODES = {
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "RequestTimeout",
    "RequestTimeTooSkewed",
    "InternalError",
    "ServiceUnavailable",
    "503",
    "500",
}


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def is_transient(exc: BaseException) -> bool:
    """Connection-level botocore errors, throttling and 5xx are worth retrying"""
    if isinstance(exc, ClientError):
        if _error_code(exc) in TRANSIENT_CODES:
            return True
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        return status >= 500
    return isinstance(exc, BotoCoreError)


def _log_retry(retry_state):
    logger.warning(
        "Object store call failed, retrying",
        attempt=retry_state.attempt_number,
        error=str(retry_state.outcome.exception()),
    )


class ObjectStore:
    """Interface for blob backends"""

    def put(self, key: str, data: bytes, content_type: str) -> None:
        raise NotImplementedError

    def get(self, key: str) -> bytes:
        return b"".join(self.stream(key))

    def stream(self, key: str, chunk_size: int = config.CHUNK_SIZE) -> Iterator[bytes]:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def signed_url(self, key: str, ttl: int = config.SIGNED_URL_TTL) -> str:
        raise NotImplementedError

    def ping(self) -> None:
        raise NotImplementedError


class S3ObjectStore(ObjectStore):
    """S3 bucket adapter; blobs also get server-side AES256 at rest"""

    def __init__(
        self,
        bucket: str = config.BUCKET,
        s3_client=None,
        max_attempts: int = config.STORE_RETRIES,
        backoff_max: float = config.STORE_BACKOFF_MAX,
    ):
        self.bucket = bucket
        self.s3 = s3_client or boto3.client(
            "s3",
            region_name=config.AWS_REGION,
            endpoint_url=config.S3_ENDPOINT_URL,
            # Retries are ours; keep botocore from multiplying them
            config=BotoConfig(retries={"max_attempts": 1, "mode": "standard"}),
        )
        self._retrying = Retrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=0.2, max=backoff_max),
            retry=retry_if_exception(is_transient),
            before_sleep=_log_retry,
            reraise=True,
        )
        logger.info("S3 object store initialized", bucket=bucket)

    def _call(self, operation: str, key: str, **params):
        method = getattr(self.s3, operation)
        try:
            return self._retrying.copy()(method, Bucket=self.bucket, **params)
        except ClientError as e:
            if _error_code(e) in MISSING_CODES:
                raise NotFound(f"blob {key} not found")
            logger.error("Object store error", operation=operation, key=key, error=str(e))
            raise StoreUnavailable(f"{operation} failed")
        except BotoCoreError as e:
            logger.error("Object store unreachable", operation=operation, key=key, error=str(e))
            raise StoreUnavailable(f"{operation} failed")

    def put(self, key: str, data: bytes, content_type: str) -> None:
        self._call(
            "put_object",
            key,
            Key=key,
            Body=data,
            ContentType=content_type or "application/octet-stream",
            ServerSideEncryption="AES256",
        )
        logger.info("Blob stored", key=key, size=len(data))

    def stream(self, key: str, chunk_size: int = config.CHUNK_SIZE) -> Iterator[bytes]:
        # Open eagerly so NotFound surfaces before the first chunk is requested
        response = self._call("get_object", key, Key=key)
        return self._iter_body(key, response["Body"], chunk_size)

    @staticmethod
    def _iter_body(key: str, body, chunk_size: int) -> Iterator[bytes]:
        try:
            for chunk in body.iter_chunks(chunk_size):
                yield chunk
        except BotoCoreError as e:
            logger.error("Blob stream interrupted", key=key, error=str(e))
            raise StoreUnavailable("stream interrupted")
        finally:
            body.close()

    def exists(self, key: str) -> bool:
        try:
            self._call("head_object", key, Key=key)
        except NotFound:
            return False
        return True

    def delete(self, key: str) -> None:
        # S3 deletes are silent for missing keys; look first to report NotFound
        if not self.exists(key):
            raise NotFound(f"blob {key} not found")
        self._call("delete_object", key, Key=key)
        logger.info("Blob deleted", key=key)

    def signed_url(self, key: str, ttl: int = config.SIGNED_URL_TTL) -> str:
        if ttl <= 0:
            raise ValidationError("ttl must be positive")
        return self.s3.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=ttl,
        )

    def ping(self) -> None:
        self._call("head_bucket", self.bucket)


class MemoryObjectStore(ObjectStore):
    """In-process store with the same contract (development and tests)"""

    def __init__(self):
        self._blobs: Dict[str, Tuple[bytes, str]] = {}
        self._lock = threading.Lock()

    def put(self, key: str, data: bytes, content_type: str) -> None:
        with self._lock:
            self._blobs[key] = (bytes(data), content_type)

    def stream(self, key: str, chunk_size: int = config.CHUNK_SIZE) -> Iterator[bytes]:
        with self._lock:
            if key not in self._blobs:
                raise NotFound(f"blob {key} not found")
            data = self._blobs[key][0]
        return (data[i:i + chunk_size] for i in range(0, len(data), chunk_size))

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._blobs

    def delete(self, key: str) -> None:
        with self._lock:
            if self._blobs.pop(key, None) is None:
                raise NotFound(f"blob {key} not found")

    def signed_url(self, key: str, ttl: int = config.SIGNED_URL_TTL) -> str:
        if ttl <= 0:
            raise ValidationError("ttl must be positive")
        return f"memory://{key}?expires={int(time.time()) + ttl}"

    def ping(self) -> None:
        return None

    def keys(self):
        with self._lock:
            return sorted(self._blobs)


def build_object_store(backend: Optional[str] = None) -> ObjectStore:
    backend = backend or config.STORE_BACKEND
    if backend == "s3":
        return S3ObjectStore()
    if backend == "memory":
        logger.warning("Using in-memory object store (development only)")
        return MemoryObjectStore()
    raise ValueError(f"Unknown store backend: {backend}")
