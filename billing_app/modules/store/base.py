"""
Contrato del DocumentStore: colecciones con nombre de registros sin esquema.

Cada registro devuelto incluye su `id` y su `_version`. La versión se
incrementa en cada escritura y permite actualizaciones condicionales
(compare-and-swap) sobre un único registro. No hay transacciones entre
registros ni entre colecciones.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

ID_KEY = "id"
VERSION_KEY = "_version"
RESERVED_KEYS = (ID_KEY, VERSION_KEY)


def strip_reserved(record: Dict[str, Any]) -> Dict[str, Any]:
    """Quitar las claves gestionadas por el store antes de persistir"""
    return {k: v for k, v in record.items() if k not in RESERVED_KEYS}


def with_identity(record_id: str, version: int, data: Dict[str, Any]) -> Dict[str, Any]:
    record = dict(data)
    record[ID_KEY] = record_id
    record[VERSION_KEY] = version
    return record


def matches_filters(record: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    """Filtro por igualdad sobre campos de primer nivel"""
    if not filters:
        return True
    return all(record.get(field) == value for field, value in filters.items())


class DocumentStore(ABC):
    """Almacén de documentos con atomicidad por registro"""

    @abstractmethod
    def create(self, collection: str, record: Dict[str, Any], record_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Crear un registro.

        Con `record_id` explícito la escritura es condicional
        ("no existe"): si ya existe lanza ConflictError.
        """

    @abstractmethod
    def get_by_id(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Registro por ID o None"""

    @abstractmethod
    def get_all(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Todos los registros de la colección que cumplen los filtros"""

    @abstractmethod
    def update(
        self,
        collection: str,
        record_id: str,
        partial: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Fusionar `partial` sobre el registro.

        Lanza NotFoundError si no existe y ConflictError si
        `expected_version` no coincide con la versión almacenada.
        """

    @abstractmethod
    def delete(self, collection: str, record_id: str) -> bool:
        """Eliminar; idempotente (borrar un ID ausente devuelve True)"""
