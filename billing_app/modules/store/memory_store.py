import copy
import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from billing_app.core.exceptions import ConflictError, NotFoundError
from billing_app.modules.store.base import (
    DocumentStore, matches_filters, strip_reserved, with_identity
)

logger = logging.getLogger(__name__)


class InMemoryDocumentStore(DocumentStore):
    """
    Backend en memoria, seguro entre hilos.

    Cada operación es atómica sobre un único registro, igual que el
    backend SQL; no ofrece nada más fuerte que eso.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._collections: Dict[str, Dict[str, Tuple[int, Dict[str, Any]]]] = {}

    def _collection(self, name: str) -> Dict[str, Tuple[int, Dict[str, Any]]]:
        return self._collections.setdefault(name, {})

    def create(self, collection: str, record: Dict[str, Any], record_id: Optional[str] = None) -> Dict[str, Any]:
        data = copy.deepcopy(strip_reserved(record))
        now = datetime.utcnow().isoformat()
        data.setdefault("createdAt", now)
        data.setdefault("updatedAt", now)

        with self._lock:
            records = self._collection(collection)
            new_id = record_id or uuid4().hex
            if new_id in records:
                raise ConflictError(f"Record {new_id} already exists in collection {collection}")
            records[new_id] = (1, data)
            logger.debug(f"Created record {new_id} in collection {collection}")
            return with_identity(new_id, 1, copy.deepcopy(data))

    def get_by_id(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._collection(collection).get(record_id)
            if entry is None:
                return None
            version, data = entry
            return with_identity(record_id, version, copy.deepcopy(data))

    def get_all(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        with self._lock:
            snapshot = list(self._collection(collection).items())
        result = []
        for record_id, (version, data) in snapshot:
            if matches_filters(data, filters):
                result.append(with_identity(record_id, version, copy.deepcopy(data)))
        return result

    def update(
        self,
        collection: str,
        record_id: str,
        partial: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Dict[str, Any]:
        with self._lock:
            records = self._collection(collection)
            entry = records.get(record_id)
            if entry is None:
                raise NotFoundError(
                    f"Document {record_id} not found in collection {collection}",
                    collection=collection,
                    record_id=record_id,
                )
            version, data = entry
            if expected_version is not None and expected_version != version:
                raise ConflictError(
                    f"Version conflict on {collection}/{record_id}: expected {expected_version}, found {version}"
                )
            merged = dict(data)
            merged.update(copy.deepcopy(strip_reserved(partial)))
            merged["updatedAt"] = datetime.utcnow().isoformat()
            records[record_id] = (version + 1, merged)
            return with_identity(record_id, version + 1, copy.deepcopy(merged))

    def delete(self, collection: str, record_id: str) -> bool:
        with self._lock:
            removed = self._collection(collection).pop(record_id, None)
        if removed is None:
            logger.debug(f"Document {record_id} does not exist in collection {collection}, delete is a no-op")
        return True
