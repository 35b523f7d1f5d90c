"""Retrieval Orchestrator - Gate -> Catalog -> Object Store -> streaming decrypt

A denied read raises Unauthorized, a NotFound subclass, so callers outside the
owner/admin set cannot learn whether a document id exists.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

import structlog
from starlette.concurrency import run_in_threadpool

from docvault import config
from docvault.catalog.models import DocumentFilters, DocumentRecord
from docvault.catalog.repository import Catalog
from docvault.errors import Forbidden, NotFound, Unauthorized
from docvault.governance.access import Identity, can_read
from docvault.governance.audit_logger import AuditLogger
from docvault.security import cipher
from docvault.security.key_manager import KeyManager, WrappedKey
from docvault.storage.object_store import ObjectStore
from docvault.utils.metrics import documents_retrieved_total

logger = structlog.get_logger()


@dataclass
class DocumentStream:
    record: DocumentRecord
    chunks: Iterator[bytes]


class RetrievalOrchestrator:
    def __init__(self, store: ObjectStore, catalog: Catalog, key_manager: KeyManager,
                 audit: Optional[AuditLogger] = None, chunk_size: int = config.CHUNK_SIZE):
        self.store = store
        self.catalog = catalog
        self.key_manager = key_manager
        self.audit = audit
        self.chunk_size = chunk_size

    async def _authorized_record(self, identity: Identity, document_id: str) -> DocumentRecord:
        try:
            record = await run_in_threadpool(self.catalog.find_by_id, document_id)
        except NotFound:
            documents_retrieved_total.labels(outcome="not_found").inc()
            raise
        if not can_read(identity, record):
            documents_retrieved_total.labels(outcome="not_found").inc()
            if self.audit is not None:
                await run_in_threadpool(self.audit.log, identity.user_id, "read_denied", document_id)
            raise Unauthorized(f"document {document_id} not found")
        return record

    async def open(self, identity: Identity, document_id: str) -> DocumentStream:
        """Plaintext of one document as a chunk iterator.

        Memory stays bounded by the chunk size. Tampering surfaces as
        CodecError while the iterator is consumed.
        """
        record = await self._authorized_record(identity, document_id)
        context = {"document_id": record.id}
        key = await run_in_threadpool(
            self.key_manager.unwrap, WrappedKey(record.cipher_key, record.key_id), context
        )
        blob = await run_in_threadpool(self.store.stream, record.storage_key, self.chunk_size)
        chunks = cipher.decrypt_stream(blob, key, bytes.fromhex(record.iv))

        if self.audit is not None:
            await run_in_threadpool(self.audit.log, identity.user_id, "retrieve", record.id)
        documents_retrieved_total.labels(outcome="streamed").inc()
        logger.info("Document opened", document_id=record.id, user_id=identity.user_id)
        return DocumentStream(record=record, chunks=chunks)

    async def read(self, identity: Identity, document_id: str) -> bytes:
        """Whole plaintext in memory; small documents only"""
        stream = await self.open(identity, document_id)
        return await run_in_threadpool(b"".join, stream.chunks)

    async def signed_url(self, identity: Identity, document_id: str,
                         ttl: int = config.SIGNED_URL_TTL) -> Dict[str, Any]:
        """Time-limited URL to the ciphertext blob (admin tooling; bytes stay encrypted)"""
        record = await self._authorized_record(identity, document_id)
        if not identity.is_admin:
            raise Forbidden("Signed URLs are restricted to administrators")
        url = await run_in_threadpool(self.store.signed_url, record.storage_key, ttl)
        documents_retrieved_total.labels(outcome="signed_url").inc()
        logger.info("Signed URL issued", document_id=record.id, ttl=ttl)
        return {"url": url, "expires_in": ttl}

    async def list(self, identity: Identity, filters: Optional[DocumentFilters] = None,
                   owner_id: Optional[str] = None) -> List[DocumentRecord]:
        """Clients see their own documents; admins see all, or one owner's"""
        if not identity.is_admin:
            records = await run_in_threadpool(self.catalog.find_by_owner, identity.user_id, filters)
        elif owner_id:
            records = await run_in_threadpool(self.catalog.find_by_owner, owner_id, filters)
        else:
            records = await run_in_threadpool(self.catalog.find_all, filters)
        logger.info("Documents listed", user_id=identity.user_id, count=len(records))
        return records
