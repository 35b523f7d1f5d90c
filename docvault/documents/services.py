"""Service wiring - one set of stateless handles shared by all requests"""

from typing import Optional

from sqlalchemy.engine import Engine

from docvault.catalog.repository import Catalog, build_engine
from docvault.documents.deletion import DeletionService
from docvault.documents.retrieval import RetrievalOrchestrator
from docvault.documents.upload import UploadOrchestrator
from docvault.governance.audit_logger import AuditLogger
from docvault.security.key_manager import KeyManager, build_key_manager
from docvault.storage.object_store import ObjectStore, build_object_store


class Services:
    def __init__(self, store: ObjectStore, engine: Engine, key_manager: KeyManager):
        self.store = store
        self.catalog = Catalog(engine)
        self.catalog.create_schema()
        self.audit = AuditLogger(engine)
        self.key_manager = key_manager
        self.uploads = UploadOrchestrator(store, self.catalog, key_manager, self.audit)
        self.retrieval = RetrievalOrchestrator(store, self.catalog, key_manager, self.audit)
        self.deletion = DeletionService(store, self.catalog, self.audit)


def build_services(store: Optional[ObjectStore] = None, engine: Optional[Engine] = None,
                   key_manager: Optional[KeyManager] = None) -> Services:
    return Services(
        store=store or build_object_store(),
        engine=engine or build_engine(),
        key_manager=key_manager or build_key_manager(),
    )
