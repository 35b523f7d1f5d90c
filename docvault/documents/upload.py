"""Upload Orchestrator - Received -> KeyGenerated -> Encrypted -> Stored -> Cataloged -> Done

Self-Explanatory: Turns an admin's upload into a stored ciphertext plus a catalog record.
Why: The blob store and the catalog cannot commit together, so ordering and
compensation bound the inconsistency window.
How: Blob first, metadata second; if the metadata write fails (or the client
goes away) the blob is deleted again, best-effort.
"""

import asyncio
import re
from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Awaitable, Callable, Dict, Optional
from uuid import uuid4

import structlog
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from docvault.catalog.models import DocumentRecord
from docvault.catalog.repository import Catalog
from docvault.errors import ClientDisconnected, DocVaultError, Forbidden, NotFound, ValidationError
from docvault.governance.access import Identity, can_write
from docvault.governance.audit_logger import AuditLogger
from docvault.security import cipher, key_material
from docvault.security.key_manager import KeyManager
from docvault.storage.object_store import ObjectStore
from docvault.utils.metrics import (
    documents_uploaded_total,
    orphan_blobs_total,
    track_duration,
    upload_duration_seconds,
    upload_failures_total,
    upload_size_bytes,
)

logger = structlog.get_logger()

MONTH_RE = re.compile(r"^(0[1-9]|1[0-2])$")
YEAR_RE = re.compile(r"^\d{4}$")
MIME_FAMILIES = {"application", "audio", "font", "image", "message", "model", "multipart", "text", "video"}


class UploadState(str, Enum):
    RECEIVED = "received"
    KEY_GENERATED = "key_generated"
    ENCRYPTED = "encrypted"
    STORED = "stored"
    CATALOGED = "cataloged"
    DONE = "done"
    FAILED = "failed"


class UploadRequest(BaseModel):
    owner_id: Optional[str] = None
    month: Optional[str] = None
    year: Optional[str] = None
    filename: Optional[str] = None
    content_type: Optional[str] = None
    data: bytes = b""


def clean_filename(filename: str) -> str:
    """Last path component only; the name becomes part of the storage key"""
    return PurePosixPath(filename.replace("\\", "/")).name.strip()


def build_storage_key(owner_id: str, year: str, month: str, uploaded_at: datetime, name: str) -> str:
    timestamp_ms = int(uploaded_at.timestamp() * 1000)
    return f"{owner_id}/{year}/{month}/{timestamp_ms}-{name}"


def mime_family(content_type: str) -> str:
    """Top-level media type for metric labels; unknown families collapse to 'other'"""
    family = content_type.split("/", 1)[0].strip().lower()
    return family if family in MIME_FAMILIES else "other"


def validate(request: UploadRequest) -> str:
    """Check required fields; returns the cleaned file name. No side effects."""
    missing = [
        field for field in ("owner_id", "month", "year", "filename")
        if not (getattr(request, field) or "").strip()
    ]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    if not request.data:
        raise ValidationError("File is empty")
    if "/" in request.owner_id:
        raise ValidationError("owner_id must not contain '/'")
    if not MONTH_RE.match(request.month):
        raise ValidationError("month must be 01-12")
    if not YEAR_RE.match(request.year):
        raise ValidationError("year must have four digits")
    name = clean_filename(request.filename)
    if not name or name in (".", ".."):
        raise ValidationError("Invalid file name")
    return name


class UploadOrchestrator:
    def __init__(self, store: ObjectStore, catalog: Catalog, key_manager: KeyManager,
                 audit: Optional[AuditLogger] = None):
        self.store = store
        self.catalog = catalog
        self.key_manager = key_manager
        self.audit = audit

    @track_duration(upload_duration_seconds)
    async def upload(
        self,
        identity: Identity,
        request: UploadRequest,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> Dict[str, Any]:
        """Run the pipeline for one file.

        Args:
            identity: caller; must be admin
            request: file bytes + owner/month/year/filename
            is_disconnected: polled after the blob is stored; True aborts with rollback

        Returns:
            {id, name, type, size, uploaded_at}; never key material or storage key
        """
        state = UploadState.RECEIVED
        document_id = uuid4().hex
        pending_key = None  # put issued, outcome unknown
        stored_key = None   # put confirmed
        in_flight = None    # blocking step the task is waiting on
        log = logger.bind(document_id=document_id, user_id=identity.user_id)

        try:
            if not can_write(identity):
                raise Forbidden("Only administrators may upload documents")
            name = validate(request)
            content_type = request.content_type or "application/octet-stream"

            material = key_material.generate()
            wrapped = await run_in_threadpool(
                self.key_manager.wrap, material.key, {"document_id": document_id}
            )
            state = UploadState.KEY_GENERATED
            log.info("Upload state", state=state.value)

            ciphertext = cipher.encrypt(request.data, material.key, material.iv)
            state = UploadState.ENCRYPTED
            log.info("Upload state", state=state.value, ciphertext_size=len(ciphertext))

            uploaded_at = datetime.now(timezone.utc)
            pending_key = build_storage_key(request.owner_id, request.year, request.month, uploaded_at, name)
            in_flight = asyncio.ensure_future(
                run_in_threadpool(self.store.put, pending_key, ciphertext, content_type)
            )
            await asyncio.shield(in_flight)
            in_flight = None
            stored_key = pending_key
            state = UploadState.STORED
            log.info("Upload state", state=state.value)

            if is_disconnected is not None and await is_disconnected():
                raise ClientDisconnected("Client disconnected during upload")

            record = DocumentRecord(
                id=document_id,
                owner_id=request.owner_id,
                storage_key=stored_key,
                cipher_key=wrapped.ciphertext,
                key_id=wrapped.key_id,
                iv=material.iv.hex(),
                original_name=name,
                mime_type=content_type,
                size_bytes=len(request.data),
                uploaded_at=uploaded_at,
                uploaded_by=identity.user_id,
                month=request.month,
                year=request.year,
            )
            in_flight = asyncio.ensure_future(run_in_threadpool(self.catalog.insert, record))
            await asyncio.shield(in_flight)
            in_flight = None
            state = UploadState.CATALOGED
            log.info("Upload state", state=state.value)

        except asyncio.CancelledError:
            # The worker thread keeps running after cancellation; let it land first
            if in_flight is not None and await self._settle(in_flight):
                if state == UploadState.STORED:
                    state = UploadState.CATALOGED
                else:
                    stored_key = pending_key
                    state = UploadState.STORED
            if state == UploadState.CATALOGED and not await self._uncatalog(document_id):
                raise
            await self._fail(state, stored_key, document_id, ClientDisconnected.code)
            raise
        except DocVaultError as e:
            await self._fail(state, stored_key, document_id, e.code)
            raise

        if self.audit is not None:
            await run_in_threadpool(
                self.audit.log, identity.user_id, "upload", document_id,
                {"owner_id": record.owner_id, "size": record.size_bytes},
            )
        documents_uploaded_total.labels(mime_family=mime_family(content_type)).inc()
        upload_size_bytes.observe(record.size_bytes)
        log.info("Upload state", state=UploadState.DONE.value, owner_id=record.owner_id)
        return record.public()

    @staticmethod
    async def _settle(step: asyncio.Future) -> bool:
        """Wait for an abandoned step; True if it completed"""
        try:
            await step
        except DocVaultError:
            return False
        return True

    async def _uncatalog(self, document_id: str) -> bool:
        """Drop a record written by a cancelled upload; False keeps the blob"""
        try:
            await run_in_threadpool(self.catalog.delete, document_id)
        except NotFound:
            pass
        except DocVaultError as e:
            logger.error("Cancelled upload kept", document_id=document_id, error=e.message)
            return False
        return True

    async def _fail(self, state: UploadState, blob_key: Optional[str], document_id: str, reason: str):
        upload_failures_total.labels(reason=reason, state=state.value).inc()
        logger.error("Upload failed", document_id=document_id, state=state.value, reason=reason)
        if blob_key is not None:
            await self._compensate(blob_key, document_id)

    async def _compensate(self, blob_key: str, document_id: str):
        """Delete the just-written blob; failure is alerted, never escalated"""
        try:
            await run_in_threadpool(self.store.delete, blob_key)
            logger.info("Compensating delete succeeded", document_id=document_id)
        except NotFound:
            logger.info("Compensating delete found nothing to remove", document_id=document_id)
        except DocVaultError as e:
            orphan_blobs_total.inc()
            logger.critical("Orphan blob", document_id=document_id, storage_key=blob_key, error=e.message)
