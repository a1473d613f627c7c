"""
Fixtures compartidos para los tests de billing_app

Las variables de entorno se fijan antes de importar la configuración:
SQLite en memoria y store en memoria para la API.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STORE_BACKEND"] = "memory"
os.environ["STORE_TIMEOUT_SECONDS"] = "5"
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "false"
os.environ["RETRY_BASE_BACKOFF_MS"] = "300"

import pytest
from fastapi.testclient import TestClient

from billing_app.database.database import Base, SessionLocal, sync_engine
from billing_app.modules.store import InMemoryDocumentStore, SqlDocumentStore
import billing_app.modules.store.models  # noqa: F401


class CountingStore(InMemoryDocumentStore):
    """Store en memoria que cuenta las escrituras"""

    def __init__(self):
        super().__init__()
        self.writes = []

    def create(self, collection, record, record_id=None):
        created = super().create(collection, record, record_id)
        self.writes.append(("create", collection, created["id"]))
        return created

    def update(self, collection, record_id, partial, expected_version=None):
        updated = super().update(collection, record_id, partial, expected_version)
        self.writes.append(("update", collection, record_id))
        return updated

    def writes_to(self, collection):
        return [w for w in self.writes if w[1] == collection]


@pytest.fixture
def store():
    """Store en memoria limpio por test"""
    return InMemoryDocumentStore()


@pytest.fixture
def counting_store():
    return CountingStore()


@pytest.fixture
def db_session():
    """Sesión sobre SQLite en memoria con la tabla store_records recién creada"""
    Base.metadata.create_all(bind=sync_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=sync_engine)


@pytest.fixture
def sql_store(db_session):
    return SqlDocumentStore(db_session)


@pytest.fixture
def client():
    """TestClient con un store en memoria nuevo"""
    from billing_app.main import app

    app.state.memory_store = InMemoryDocumentStore()
    with TestClient(app) as test_client:
        yield test_client
