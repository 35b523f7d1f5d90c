"""Shared fixtures: in-memory catalog, memory object store, local master key"""
import pytest

from docvault.catalog.repository import build_engine
from docvault.documents.services import build_services
from docvault.errors import StoreUnavailable
from docvault.governance.access import Identity, Role
from docvault.security.key_manager import LocalKeyManager
from docvault.storage.object_store import MemoryObjectStore


class FlakyStore(MemoryObjectStore):
    """Memory store whose operations can be switched to fail"""

    def __init__(self):
        super().__init__()
        self.fail_put = False
        self.fail_delete = False

    def put(self, key, data, content_type):
        if self.fail_put:
            raise StoreUnavailable("put failed")
        super().put(key, data, content_type)

    def delete(self, key):
        if self.fail_delete:
            raise StoreUnavailable("delete failed")
        super().delete(key)


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def key_manager():
    return LocalKeyManager()


@pytest.fixture
def services(store, engine, key_manager):
    return build_services(store=store, engine=engine, key_manager=key_manager)


@pytest.fixture
def admin():
    return Identity(user_id="admin1", role=Role.ADMIN)


@pytest.fixture
def client_c1():
    return Identity(user_id="c1", role=Role.CLIENT)


@pytest.fixture
def client_c2():
    return Identity(user_id="c2", role=Role.CLIENT)
