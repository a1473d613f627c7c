from typing import Annotated, Iterator
from fastapi import Depends, Request
import logging

from billing_app.common.middleware import UNKNOWN_ACTOR
from billing_app.core.config import settings
from billing_app.database.database import SessionLocal
from billing_app.modules.store import (
    BoundedDocumentStore, DocumentStore, InMemoryDocumentStore, SqlDocumentStore
)

logger = logging.getLogger(__name__)


def get_memory_store(request: Request) -> InMemoryDocumentStore:
    """Store en memoria compartido por la aplicación (STORE_BACKEND=memory)"""
    store = getattr(request.app.state, "memory_store", None)
    if store is None:
        store = InMemoryDocumentStore()
        request.app.state.memory_store = store
    return store


def get_store(request: Request) -> Iterator[DocumentStore]:
    """
    DocumentStore para una petición.

    Con STORE_TIMEOUT_SECONDS cada llamada al store queda limitada en el tiempo.
    """
    db = None
    if settings.STORE_BACKEND == "memory":
        store: DocumentStore = get_memory_store(request)
    else:
        db = SessionLocal()
        store = SqlDocumentStore(db)

    bounded = None
    if settings.STORE_TIMEOUT_SECONDS:
        bounded = BoundedDocumentStore(store, settings.STORE_TIMEOUT_SECONDS)
        store = bounded

    try:
        yield store
    finally:
        if bounded is not None:
            bounded.close()
        if db is not None:
            db.close()


def get_actor(request: Request) -> str:
    return getattr(request.state, "actor", UNKNOWN_ACTOR)


store_dependency = Annotated[DocumentStore, Depends(get_store)]
actor_dependency = Annotated[str, Depends(get_actor)]
