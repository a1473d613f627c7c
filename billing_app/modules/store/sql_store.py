"""
DocumentStore sobre SQLAlchemy.

Todas las colecciones viven en la tabla `store_records` como JSON con una
columna de versión. Las escrituras condicionales se resuelven en SQL:

- create con ID explícito: INSERT protegido por la clave primaria
- update con versión: UPDATE ... WHERE version = :esperada
"""
import logging
from datetime import datetime
from functools import wraps
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import delete, func, insert, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from billing_app.core.exceptions import ConflictError, NotFoundError, TransientError
from billing_app.modules.store.base import (
    DocumentStore, matches_filters, strip_reserved, with_identity
)
from billing_app.modules.store.models import StoreRecord

logger = logging.getLogger(__name__)


def _transient_on_disconnect(method):
    """Traducir errores de conexión de la base de datos a TransientError"""
    @wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except OperationalError as e:
            self.db.rollback()
            logger.error(f"Database operational error in {method.__name__}: {str(e)}")
            raise TransientError(f"Error de conexión con la base de datos: {str(e)}", last_error=e)
    return wrapper


class SqlDocumentStore(DocumentStore):
    # Reintentos internos de la fusión cuando no se exige versión
    MERGE_ATTEMPTS = 10

    def __init__(self, db: Session):
        self.db = db

    def _load(self, collection: str, record_id: str) -> Optional[StoreRecord]:
        return self.db.query(StoreRecord).filter(
            StoreRecord.collection == collection,
            StoreRecord.record_id == record_id
        ).populate_existing().first()

    @_transient_on_disconnect
    def create(self, collection: str, record: Dict[str, Any], record_id: Optional[str] = None) -> Dict[str, Any]:
        new_id = record_id or uuid4().hex
        now = datetime.utcnow().isoformat()
        data = strip_reserved(record)
        data.setdefault("createdAt", now)
        data.setdefault("updatedAt", now)

        try:
            self.db.execute(
                insert(StoreRecord).values(
                    collection=collection,
                    record_id=new_id,
                    version=1,
                    data=data
                )
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(f"Record {new_id} already exists in collection {collection}")

        logger.debug(f"Created record {new_id} in collection {collection}")
        return with_identity(new_id, 1, data)

    @_transient_on_disconnect
    def get_by_id(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        row = self._load(collection, record_id)
        if row is None:
            return None
        return with_identity(row.record_id, row.version, dict(row.data or {}))

    @_transient_on_disconnect
    def get_all(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        rows = self.db.query(StoreRecord).filter(
            StoreRecord.collection == collection
        ).order_by(StoreRecord.created_at, StoreRecord.record_id).populate_existing().all()

        return [
            with_identity(row.record_id, row.version, dict(row.data or {}))
            for row in rows
            if matches_filters(row.data or {}, filters)
        ]

    @_transient_on_disconnect
    def update(
        self,
        collection: str,
        record_id: str,
        partial: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Dict[str, Any]:
        for attempt in range(1, self.MERGE_ATTEMPTS + 1):
            row = self._load(collection, record_id)
            if row is None:
                raise NotFoundError(
                    f"Document {record_id} not found in collection {collection}",
                    collection=collection,
                    record_id=record_id,
                )
            if expected_version is not None and row.version != expected_version:
                raise ConflictError(
                    f"Version conflict on {collection}/{record_id}: expected {expected_version}, found {row.version}"
                )

            current_version = row.version
            merged = dict(row.data or {})
            merged.update(strip_reserved(partial))
            merged["updatedAt"] = datetime.utcnow().isoformat()

            result = self.db.execute(
                update(StoreRecord)
                .where(
                    StoreRecord.collection == collection,
                    StoreRecord.record_id == record_id,
                    StoreRecord.version == current_version
                )
                .values(data=merged, version=current_version + 1, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                self.db.commit()
                return with_identity(record_id, current_version + 1, merged)

            self.db.rollback()
            if expected_version is not None:
                raise ConflictError(f"Version conflict on {collection}/{record_id}: record changed concurrently")
            logger.debug(f"Concurrent write on {collection}/{record_id}, retrying merge (attempt {attempt})")

        raise ConflictError(f"Could not merge update into {collection}/{record_id} after {self.MERGE_ATTEMPTS} attempts")

    @_transient_on_disconnect
    def delete(self, collection: str, record_id: str) -> bool:
        result = self.db.execute(
            delete(StoreRecord)
            .where(
                StoreRecord.collection == collection,
                StoreRecord.record_id == record_id
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount == 0:
            logger.debug(f"Document {record_id} does not exist in collection {collection}, delete is a no-op")
        return True
