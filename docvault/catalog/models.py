"""Catalog Models - Tables and record types for document metadata"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel
from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

metadata = MetaData()

documents = Table(
    "documents",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("owner_id", String(128), nullable=False),
    Column("storage_key", String(1024), nullable=False, unique=True),
    Column("cipher_key", Text, nullable=False),  # wrapped data key
    Column("key_id", String(256), nullable=False),
    Column("iv", String(64), nullable=False),
    Column("original_name", String(512), nullable=False),
    Column("mime_type", String(255), nullable=False),
    Column("size_bytes", BigInteger, nullable=False),
    Column("uploaded_at", DateTime(timezone=True), nullable=False),
    Column("uploaded_by", String(128), nullable=False),
    Column("month", String(2), nullable=False),
    Column("year", String(4), nullable=False),
    Column("deleted_at", DateTime(timezone=True), nullable=True),
)

Index("ix_documents_owner_uploaded", documents.c.owner_id, documents.c.uploaded_at)

audit_logs = Table(
    "audit_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(128), nullable=False),
    Column("action", String(64), nullable=False),
    Column("resource_id", String(128), nullable=True),
    Column("details", JSON, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("signature", String(64), nullable=False),
)


class DocumentRecord(BaseModel):
    id: str
    owner_id: str
    storage_key: str
    cipher_key: str
    key_id: str
    iv: str
    original_name: str
    mime_type: str
    size_bytes: int
    uploaded_at: datetime
    uploaded_by: str
    month: str
    year: str
    deleted_at: Optional[datetime] = None

    def public(self) -> Dict[str, Any]:
        """Caller-facing view; never key material or the storage key"""
        return {
            "id": self.id,
            "name": self.original_name,
            "type": self.mime_type,
            "size": self.size_bytes,
            "uploaded_at": self.uploaded_at.isoformat(),
        }

    def listing(self) -> Dict[str, Any]:
        view = self.public()
        view.update(owner_id=self.owner_id, month=self.month, year=self.year)
        return view


class DocumentFilters(BaseModel):
    month: Optional[str] = None
    year: Optional[str] = None
    name_pattern: Optional[str] = None
