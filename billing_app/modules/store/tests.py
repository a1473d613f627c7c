"""
Tests para el módulo de almacenamiento

Ambos backends (memoria y SQLite) deben cumplir el mismo contrato:
- Creación condicional con ID explícito
- Actualización condicional por versión
- Borrado idempotente
- Filtros por igualdad
"""

import threading
import time

import pytest

from billing_app.core.exceptions import ConflictError, NotFoundError, TransientError
from billing_app.modules.store import BoundedDocumentStore, InMemoryDocumentStore
from billing_app.modules.store.base import VERSION_KEY, matches_filters, strip_reserved


@pytest.fixture(params=["memory", "sql"])
def any_store(request):
    if request.param == "memory":
        return request.getfixturevalue("store")
    return request.getfixturevalue("sql_store")


# ===== TESTS DEL CONTRATO =====

class TestDocumentStoreContract:
    """Tests comunes a todos los backends"""

    def test_create_assigns_id_and_version(self, any_store):
        record = any_store.create("cashbills", {"invoiceNumber": "WNF-1"})

        assert record["id"]
        assert record[VERSION_KEY] == 1
        assert record["invoiceNumber"] == "WNF-1"
        assert "createdAt" in record

    def test_create_with_explicit_id_is_conditional(self, any_store):
        any_store.create("counters", {"current": 1}, record_id="WNF:CashBill")

        with pytest.raises(ConflictError):
            any_store.create("counters", {"current": 99}, record_id="WNF:CashBill")
        assert any_store.get_by_id("counters", "WNF:CashBill")["current"] == 1

    def test_same_id_in_different_collections(self, any_store):
        any_store.create("a", {"v": 1}, record_id="x")
        any_store.create("b", {"v": 2}, record_id="x")

        assert any_store.get_by_id("a", "x")["v"] == 1
        assert any_store.get_by_id("b", "x")["v"] == 2

    def test_get_missing_returns_none(self, any_store):
        assert any_store.get_by_id("customers", "CUST-404") is None

    def test_update_merges_and_bumps_version(self, any_store):
        created = any_store.create("customers", {"customerName": "Ravi", "company": ["WIT"]}, record_id="CUST-1")

        updated = any_store.update("customers", "CUST-1", {"company": ["WIT", "WGD"]})

        assert updated[VERSION_KEY] == created[VERSION_KEY] + 1
        assert updated["customerName"] == "Ravi"
        assert updated["company"] == ["WIT", "WGD"]
        assert any_store.get_by_id("customers", "CUST-1")["company"] == ["WIT", "WGD"]

    def test_update_with_stale_version_conflicts(self, any_store):
        created = any_store.create("counters", {"current": 1}, record_id="k")
        any_store.update("counters", "k", {"current": 2}, expected_version=created[VERSION_KEY])

        with pytest.raises(ConflictError):
            any_store.update("counters", "k", {"current": 2}, expected_version=created[VERSION_KEY])
        assert any_store.get_by_id("counters", "k")["current"] == 2

    def test_update_missing_raises_not_found(self, any_store):
        with pytest.raises(NotFoundError):
            any_store.update("customers", "nope", {"a": 1})

    def test_update_ignores_reserved_keys(self, any_store):
        any_store.create("c", {"v": 1}, record_id="r")
        updated = any_store.update("c", "r", {"id": "otro", VERSION_KEY: 50, "v": 2})

        assert updated["id"] == "r"
        assert updated[VERSION_KEY] == 2

    def test_delete_is_idempotent(self, any_store):
        any_store.create("quotations", {"invoiceNumber": "WNF-1"}, record_id="q1")

        assert any_store.delete("quotations", "q1") is True
        assert any_store.delete("quotations", "q1") is True
        assert any_store.get_by_id("quotations", "q1") is None

    def test_get_all_with_filters(self, any_store):
        any_store.create("cashbills", {"invoiceNumber": "WNF-1", "status": "Active"})
        any_store.create("cashbills", {"invoiceNumber": "WNF-2", "status": "Cancelled"})
        any_store.create("creditbills", {"invoiceNumber": "WNF-1", "status": "Active"})

        assert len(any_store.get_all("cashbills")) == 2
        active = any_store.get_all("cashbills", {"status": "Active"})
        assert [r["invoiceNumber"] for r in active] == ["WNF-1"]
        assert any_store.get_all("debitnotes") == []


# ===== TESTS DEL BACKEND EN MEMORIA =====

class TestInMemoryDocumentStore:
    """Tests específicos del backend en memoria"""

    def test_returned_records_are_copies(self, store):
        store.create("customers", {"customerContact": {"phone": "1"}}, record_id="c")

        record = store.get_by_id("customers", "c")
        record["customerContact"]["phone"] = "2"

        assert store.get_by_id("customers", "c")["customerContact"]["phone"] == "1"

    def test_concurrent_conditional_creates(self, store):
        """Solo una de varias creaciones simultáneas con el mismo ID gana"""
        outcomes = []

        def attempt(n):
            try:
                store.create("invoice_numbers", {"by": n}, record_id="CashBill:WNF-1")
                outcomes.append("ok")
            except ConflictError:
                outcomes.append("conflict")

        threads = [threading.Thread(target=attempt, args=(n,)) for n in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("conflict") == 19


# ===== TESTS DEL LÍMITE DE TIEMPO =====

class SlowStore(InMemoryDocumentStore):
    def __init__(self, delay):
        super().__init__()
        self.delay = delay

    def get_all(self, collection, filters=None):
        time.sleep(self.delay)
        return super().get_all(collection, filters)


class TestBoundedDocumentStore:
    """Tests para BoundedDocumentStore"""

    def test_fast_calls_pass_through(self, store):
        bounded = BoundedDocumentStore(store, timeout_seconds=1)
        try:
            created = bounded.create("customers", {"customerName": "Ravi"}, record_id="CUST-1")
            assert bounded.get_by_id("customers", "CUST-1")["customerName"] == "Ravi"
            assert bounded.update("customers", "CUST-1", {"x": 1}, expected_version=created[VERSION_KEY])["x"] == 1
            assert bounded.delete("customers", "CUST-1") is True
        finally:
            bounded.close()

    def test_slow_call_raises_transient_error(self):
        bounded = BoundedDocumentStore(SlowStore(delay=0.5), timeout_seconds=0.05)
        try:
            with pytest.raises(TransientError):
                bounded.get_all("cashbills")
        finally:
            bounded.close()

    def test_close_waits_for_call_in_flight(self):
        inner = SlowStore(delay=0.3)
        finished = threading.Event()
        original_get_all = inner.get_all

        def tracked_get_all(collection, filters=None):
            result = original_get_all(collection, filters)
            finished.set()
            return result

        inner.get_all = tracked_get_all
        bounded = BoundedDocumentStore(inner, timeout_seconds=0.05)

        with pytest.raises(TransientError):
            bounded.get_all("cashbills")
        assert not finished.is_set()

        bounded.close()

        assert finished.is_set()

    def test_errors_from_inner_store_propagate(self, store):
        bounded = BoundedDocumentStore(store, timeout_seconds=1)
        try:
            with pytest.raises(NotFoundError):
                bounded.update("customers", "missing", {"a": 1})
        finally:
            bounded.close()


# ===== TESTS DE UTILIDADES =====

def test_strip_reserved():
    assert strip_reserved({"id": "x", VERSION_KEY: 3, "a": 1}) == {"a": 1}


def test_matches_filters():
    record = {"status": "Active", "companyName": "WYENFOS"}
    assert matches_filters(record, None)
    assert matches_filters(record, {"status": "Active"})
    assert not matches_filters(record, {"status": "Active", "companyName": "WYENFOS ADS"})
