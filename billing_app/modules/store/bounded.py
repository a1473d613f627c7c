import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, List, Optional

from billing_app.core.exceptions import TransientError
from billing_app.modules.store.base import DocumentStore

logger = logging.getLogger(__name__)


class BoundedDocumentStore(DocumentStore):
    """
    Envuelve otro DocumentStore limitando cada llamada a `timeout_seconds`.

    Al vencer el plazo lanza TransientError. La llamada subyacente no se
    puede interrumpir y puede terminar en segundo plano hasta `close()`; los
    pasos ya completados por el llamador no se deshacen.
    """

    def __init__(self, inner: DocumentStore, timeout_seconds: float, executor: Optional[Executor] = None):
        self.inner = inner
        self.timeout_seconds = timeout_seconds
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="store-call")

    def _call(self, name: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        future = self._executor.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError:
            logger.error(f"Store call {name} exceeded {self.timeout_seconds}s")
            raise TransientError(f"La operación {name} del almacén excedió {self.timeout_seconds}s")

    def create(self, collection: str, record: Dict[str, Any], record_id: Optional[str] = None) -> Dict[str, Any]:
        return self._call("create", self.inner.create, collection, record, record_id)

    def get_by_id(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        return self._call("get_by_id", self.inner.get_by_id, collection, record_id)

    def get_all(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return self._call("get_all", self.inner.get_all, collection, filters)

    def update(
        self,
        collection: str,
        record_id: str,
        partial: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Dict[str, Any]:
        return self._call("update", self.inner.update, collection, record_id, partial, expected_version)

    def delete(self, collection: str, record_id: str) -> bool:
        return self._call("delete", self.inner.delete, collection, record_id)

    def close(self):
        """
        Liberar el worker.

        Espera a que termine la llamada que siguió en curso tras un
        TransientError: el store interno (p. ej. una Session) no debe
        cerrarse mientras el worker aún lo usa.
        """
        if self._owns_executor:
            self._executor.shutdown(wait=True)
