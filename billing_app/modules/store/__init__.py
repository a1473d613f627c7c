"""
Módulo de almacenamiento de documentos

Abstracción sobre colecciones de registros sin esquema con atomicidad por
registro (creación condicional y actualización por versión):

- base.py: contrato DocumentStore
- sql_store.py: backend SQLAlchemy (tabla store_records)
- memory_store.py: backend en memoria para desarrollo y pruebas
- bounded.py: límite de tiempo por llamada
"""

from .base import DocumentStore, ID_KEY, VERSION_KEY
from .bounded import BoundedDocumentStore
from .memory_store import InMemoryDocumentStore
from .sql_store import SqlDocumentStore

__all__ = [
    "DocumentStore",
    "ID_KEY",
    "VERSION_KEY",
    "BoundedDocumentStore",
    "InMemoryDocumentStore",
    "SqlDocumentStore",
]
