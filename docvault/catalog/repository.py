"""Metadata Catalog - Durable document records

Self-Explanatory: Insert/find/list/delete document metadata.
How: SQLAlchemy Core over any SQL database (Postgres in prod, SQLite locally).

Listing contract: newest first (uploaded_at DESC); filters combine with AND.
Soft-deleted rows are invisible to every read except pending_deletes().
"""

import os
from datetime import datetime, timezone
from typing import List, Optional

import structlog
from sqlalchemy import create_engine, delete, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from docvault import config
from docvault.catalog.models import DocumentFilters, DocumentRecord, documents, metadata
from docvault.errors import CatalogUnavailable, CatalogWriteError, NotFound

logger = structlog.get_logger()


def build_engine(url: str = config.DATABASE_URL) -> Engine:
    if url.startswith("sqlite"):
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every thread sees an empty database
            return create_engine(
                url, connect_args={"check_same_thread": False}, poolclass=StaticPool
            )
        path = url.split("///", 1)[-1]
        if os.path.dirname(path):
            os.makedirs(os.path.dirname(path), exist_ok=True)
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_record(row) -> DocumentRecord:
    data = dict(row._mapping)
    data["uploaded_at"] = _as_utc(data["uploaded_at"])
    data["deleted_at"] = _as_utc(data["deleted_at"])
    return DocumentRecord(**data)


class Catalog:
    def __init__(self, engine: Engine):
        self.engine = engine

    def create_schema(self):
        metadata.create_all(self.engine)
        logger.info("Catalog schema ensured", tables=sorted(metadata.tables))

    def insert(self, record: DocumentRecord) -> str:
        values = record.model_dump()
        try:
            with self.engine.begin() as conn:
                conn.execute(documents.insert().values(**values))
        except SQLAlchemyError as e:
            logger.error("Catalog insert failed", document_id=record.id, error=str(e))
            raise CatalogWriteError("could not record document metadata")
        logger.info("Document cataloged", document_id=record.id, owner_id=record.owner_id)
        return record.id

    def _fetch(self, query) -> List[DocumentRecord]:
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(query).fetchall()
        except SQLAlchemyError as e:
            logger.error("Catalog read failed", error=str(e))
            raise CatalogUnavailable("catalog unavailable")
        return [_to_record(row) for row in rows]

    def find_by_id(self, document_id: str) -> DocumentRecord:
        query = select(documents).where(
            documents.c.id == document_id, documents.c.deleted_at.is_(None)
        )
        records = self._fetch(query)
        if not records:
            raise NotFound(f"document {document_id} not found")
        return records[0]

    def _filtered(self, filters: Optional[DocumentFilters]):
        query = select(documents).where(documents.c.deleted_at.is_(None))
        filters = filters or DocumentFilters()
        if filters.month:
            query = query.where(documents.c.month == filters.month)
        if filters.year:
            query = query.where(documents.c.year == filters.year)
        if filters.name_pattern:
            pattern = f"%{_escape_like(filters.name_pattern)}%"
            query = query.where(documents.c.original_name.ilike(pattern, escape="\\"))
        return query.order_by(documents.c.uploaded_at.desc(), documents.c.id.desc())

    def find_by_owner(
        self, owner_id: str, filters: Optional[DocumentFilters] = None
    ) -> List[DocumentRecord]:
        return self._fetch(self._filtered(filters).where(documents.c.owner_id == owner_id))

    def find_all(self, filters: Optional[DocumentFilters] = None) -> List[DocumentRecord]:
        return self._fetch(self._filtered(filters))

    def mark_deleted(self, document_id: str) -> None:
        """Hide the record atomically; the row stays until the blob is gone"""
        stmt = (
            update(documents)
            .where(documents.c.id == document_id, documents.c.deleted_at.is_(None))
            .values(deleted_at=datetime.now(timezone.utc))
        )
        self._write(stmt, document_id)

    def delete(self, document_id: str) -> None:
        self._write(delete(documents).where(documents.c.id == document_id), document_id)
        logger.info("Catalog record removed", document_id=document_id)

    def _write(self, stmt, document_id: str):
        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Catalog write failed", document_id=document_id, error=str(e))
            raise CatalogUnavailable("catalog unavailable")
        if result.rowcount == 0:
            raise NotFound(f"document {document_id} not found")

    def pending_deletes(self) -> List[DocumentRecord]:
        return self._fetch(
            select(documents)
            .where(documents.c.deleted_at.is_not(None))
            .order_by(documents.c.deleted_at)
        )

    def ping(self):
        try:
            with self.engine.connect() as conn:
                conn.exec_driver_sql("SELECT 1")
        except SQLAlchemyError as e:
            raise CatalogUnavailable(str(e))
