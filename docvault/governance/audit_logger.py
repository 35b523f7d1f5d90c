"""Audit Logger - Signed trail of document access

Why: Every upload, read and delete must be attributable after the fact.
How: Append-only rows in the catalog database, each HMAC-SHA256 signed.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.hmac import HMAC
from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from docvault import config
from docvault.catalog.models import audit_logs

logger = structlog.get_logger()


def sign_entry(user_id: str, action: str, resource_id: Optional[str], details: Dict[str, Any],
               created_at: datetime, key: bytes = config.AUDIT_KEY) -> str:
    hmac = HMAC(key, hashes.SHA256())
    msg = "|".join([
        user_id,
        action,
        resource_id or "",
        json.dumps(details, sort_keys=True, default=str),
        created_at.isoformat(),
    ])
    hmac.update(msg.encode())
    return hmac.finalize().hex()


class AuditLogger:
    def __init__(self, engine: Engine, key: bytes = config.AUDIT_KEY):
        self.engine = engine
        self.key = key

    def log(self, user_id: str, action: str, resource_id: Optional[str] = None,
            details: Optional[Dict[str, Any]] = None) -> None:
        """Write one signed entry. Audit failures are logged, never raised into the request."""
        details = details or {}
        created_at = datetime.now(timezone.utc)
        signature = sign_entry(user_id, action, resource_id, details, created_at, self.key)
        try:
            with self.engine.begin() as conn:
                conn.execute(audit_logs.insert().values(
                    user_id=user_id,
                    action=action,
                    resource_id=resource_id,
                    details=details,
                    created_at=created_at,
                    signature=signature,
                ))
        except SQLAlchemyError as e:
            logger.error("Audit write failed", action=action, resource_id=resource_id, error=str(e))
            return
        logger.info("Audit logged", action=action, resource_id=resource_id, signature=signature[:12])

    def entries(self, resource_id: Optional[str] = None) -> List[Dict[str, Any]]:
        query = select(audit_logs).order_by(audit_logs.c.id)
        if resource_id is not None:
            query = query.where(audit_logs.c.resource_id == resource_id)
        with self.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(query)]

    def verify(self, entry: Dict[str, Any]) -> bool:
        created_at = entry["created_at"]
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        expected = sign_entry(entry["user_id"], entry["action"], entry["resource_id"],
                              entry["details"] or {}, created_at, self.key)
        return expected == entry["signature"]
