"""Access Control Gate - Who may upload, read and delete documents

Roles: 'admin' (upload/read/delete everything), 'client' (read own documents only).

| Action | admin | client (owner) | client (non-owner) |
|--------|-------|----------------|--------------------|
| upload | allow | deny           | deny               |
| read   | allow | allow          | deny               |
| delete | allow | deny           | deny               |
"""

from enum import Enum

import structlog
from pydantic import BaseModel

from docvault.catalog.models import DocumentRecord
from docvault.utils.metrics import access_denied_total

logger = structlog.get_logger()


class Role(str, Enum):
    ADMIN = "admin"
    CLIENT = "client"


class Identity(BaseModel):
    """Caller identity, passed explicitly through every operation"""

    user_id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def _deny(action: str, identity: Identity, **context) -> bool:
    access_denied_total.labels(action=action, role=identity.role.value).inc()
    logger.warning("Access denied", action=action, user_id=identity.user_id, **context)
    return False


def can_write(identity: Identity) -> bool:
    if identity.is_admin:
        return True
    return _deny("upload", identity)


def can_read(identity: Identity, record: DocumentRecord) -> bool:
    if identity.is_admin or record.owner_id == identity.user_id:
        return True
    return _deny("read", identity, document_id=record.id)


def can_delete(identity: Identity, record: DocumentRecord) -> bool:
    if identity.is_admin:
        return True
    return _deny("delete", identity, document_id=record.id)
