"""Document Deletion - soft-delete, blob delete, purge

Flow:
1. mark_deleted: record disappears from every read (atomic for the caller)
2. delete blob (already missing is fine)
3. remove the catalog row
If step 2 cannot reach the store the row stays soft-deleted and the sweeper
finishes the job later, so no visible record ever points at a missing blob.
"""

import asyncio
from typing import Optional

import structlog
from starlette.concurrency import run_in_threadpool

from docvault.catalog.models import DocumentRecord
from docvault.catalog.repository import Catalog
from docvault.errors import (
    CatalogUnavailable,
    DocVaultError,
    Forbidden,
    NotFound,
    StoreUnavailable,
    Unauthorized,
)
from docvault.governance.access import Identity, can_delete
from docvault.governance.audit_logger import AuditLogger
from docvault.storage.object_store import ObjectStore
from docvault.utils.metrics import documents_deleted_total, pending_deletes_purged_total

logger = structlog.get_logger()

SWEEP_INTERVAL = 300  # seconds


class DeletionService:
    def __init__(self, store: ObjectStore, catalog: Catalog, audit: Optional[AuditLogger] = None):
        self.store = store
        self.catalog = catalog
        self.audit = audit

    async def delete(self, identity: Identity, document_id: str) -> None:
        record = await run_in_threadpool(self.catalog.find_by_id, document_id)
        if not can_delete(identity, record):
            if record.owner_id != identity.user_id:
                raise Unauthorized(f"document {document_id} not found")
            raise Forbidden("Only administrators may delete documents")

        # A concurrent delete that won the race makes this raise NotFound
        await run_in_threadpool(self.catalog.mark_deleted, document_id)
        purged = await self._purge(record)

        if self.audit is not None:
            await run_in_threadpool(
                self.audit.log, identity.user_id, "delete", document_id, {"purged": purged}
            )
        documents_deleted_total.inc()
        logger.info("Document deleted", document_id=document_id, user_id=identity.user_id, purged=purged)

    async def _purge(self, record: DocumentRecord) -> bool:
        """Remove blob then row. False when the store was unreachable."""
        try:
            await run_in_threadpool(self.store.delete, record.storage_key)
        except NotFound:
            logger.warning("Blob already gone", document_id=record.id)
        except StoreUnavailable as e:
            logger.warning("Blob delete deferred", document_id=record.id, error=e.message)
            return False
        try:
            await run_in_threadpool(self.catalog.delete, record.id)
        except NotFound:
            pass  # another purge finished first
        except CatalogUnavailable as e:
            # Row is still soft-deleted, the next sweep removes it
            logger.warning("Row purge deferred", document_id=record.id, error=e.message)
            return False
        return True

    async def purge_pending(self) -> int:
        """Finish soft-deleted records whose blob delete was deferred"""
        records = await run_in_threadpool(self.catalog.pending_deletes)
        purged = 0
        for record in records:
            if await self._purge(record):
                purged += 1
                pending_deletes_purged_total.inc()
        if records:
            logger.info("Pending deletes swept", pending=len(records), purged=purged)
        return purged

    async def sweeper(self, interval: float = SWEEP_INTERVAL):
        """Background loop started by the app"""
        while True:
            try:
                await self.purge_pending()
            except DocVaultError as e:
                logger.error("Sweep failed", error=e.message)
            except Exception as e:
                logger.exception("Sweep crashed", error=str(e))
            await asyncio.sleep(interval)
