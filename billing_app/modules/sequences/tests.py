"""
Tests para el módulo de Secuencias

Cubren:
- Formato y validación de números de documento
- Siembra del contador desde documentos históricos
- Unicidad bajo concurrencia y monotonía
- IDs de cliente CUST-N
- Reserva de números explícitos
"""

import threading

import pytest

from billing_app.core.exceptions import ConflictError
from billing_app.modules.documents.schemas import DocumentType
from billing_app.modules.sequences.service import (
    COUNTERS_COLLECTION, SequenceAllocator, counter_key, format_invoice_number,
    is_valid_invoice_number, parse_invoice_number
)
from billing_app.modules.store import InMemoryDocumentStore


class AlwaysConflictingStore(InMemoryDocumentStore):
    """Simula un contador que siempre cambia entre la lectura y la escritura"""

    def update(self, collection, record_id, partial, expected_version=None):
        if collection == COUNTERS_COLLECTION:
            raise ConflictError("contador en disputa")
        return super().update(collection, record_id, partial, expected_version)


# ===== TESTS DE FORMATO =====

class TestInvoiceNumberFormat:
    """Tests para el formato PREFIJO-N"""

    def test_format(self):
        assert format_invoice_number("WGD", 1) == "WGD-1"
        assert format_invoice_number("WNF", 120) == "WNF-120"

    def test_parse(self):
        assert parse_invoice_number("WGD-15", "WGD") == 15
        assert parse_invoice_number("WGD-007", "WGD") == 7
        assert parse_invoice_number("WIT-15", "WGD") is None
        assert parse_invoice_number("WGD-", "WGD") is None
        assert parse_invoice_number("WGD-1a", "WGD") is None
        assert parse_invoice_number(None, "WGD") is None
        assert parse_invoice_number(42, "WGD") is None

    def test_validation(self):
        assert is_valid_invoice_number("WGD-1")
        assert is_valid_invoice_number("AB-10")
        assert is_valid_invoice_number("ABCD-999")
        assert not is_valid_invoice_number("WGD-0")
        assert not is_valid_invoice_number("WGD-01")
        assert not is_valid_invoice_number("wgd-1")
        assert not is_valid_invoice_number("W-1")
        assert not is_valid_invoice_number("ABCDE-1")
        assert not is_valid_invoice_number("")

    def test_counter_key(self):
        assert counter_key("WGD", DocumentType.CREDIT_BILL) == "WGD:CreditBill"


# ===== TESTS DEL ASIGNADOR =====

class TestSequenceAllocator:
    """Tests para SequenceAllocator"""

    def test_first_allocation_is_one(self, store):
        allocator = SequenceAllocator(store)

        assert allocator.allocate("WGD", DocumentType.CREDIT_BILL) == 1
        assert allocator.allocate("WGD", DocumentType.CREDIT_BILL) == 2

    def test_sequences_are_independent(self, store):
        allocator = SequenceAllocator(store)

        assert allocator.allocate("WGD", DocumentType.CASH_BILL) == 1
        assert allocator.allocate("WGD", DocumentType.CREDIT_BILL) == 1
        assert allocator.allocate("WIT", DocumentType.CASH_BILL) == 1
        assert allocator.allocate("WGD", DocumentType.CASH_BILL) == 2

    def test_counter_seeded_from_existing_documents(self, store):
        store.create("cashbills", {"invoiceNumber": "WNF-7"})
        store.create("cashbills", {"invoiceNumber": "WNF-12"})
        store.create("cashbills", {"invoiceNumber": "WIT-40"})
        store.create("cashbills", {"invoiceNumber": "WNF-abc"})
        store.create("cashbills", {"invoiceNumber": None})
        store.create("creditbills", {"invoiceNumber": "WNF-90"})
        allocator = SequenceAllocator(store)

        assert allocator.scan_max("WNF", DocumentType.CASH_BILL) == 12
        assert allocator.allocate("WNF", DocumentType.CASH_BILL) == 13

    def test_documents_added_after_seeding_are_ignored(self, store):
        allocator = SequenceAllocator(store)
        assert allocator.allocate("WNF", DocumentType.QUOTATION) == 1

        store.create("quotations", {"invoiceNumber": "WNF-50"})

        assert allocator.allocate("WNF", DocumentType.QUOTATION) == 2

    def test_peek_does_not_consume(self, store):
        allocator = SequenceAllocator(store)

        assert allocator.peek("WAD", DocumentType.RECEIPT) == 1
        assert allocator.peek("WAD", DocumentType.RECEIPT) == 1
        assert allocator.allocate("WAD", DocumentType.RECEIPT) == 1
        assert allocator.peek("WAD", DocumentType.RECEIPT) == 2

    def test_advance_to_never_moves_backwards(self, store):
        allocator = SequenceAllocator(store)
        allocator.allocate("WCV", DocumentType.DEBIT_NOTE)

        assert allocator.advance_to("WCV", DocumentType.DEBIT_NOTE, 10) == 10
        assert allocator.advance_to("WCV", DocumentType.DEBIT_NOTE, 4) == 10
        assert allocator.allocate("WCV", DocumentType.DEBIT_NOTE) == 11

    def test_exhausted_attempts_raise_conflict(self):
        allocator = SequenceAllocator(AlwaysConflictingStore(), max_attempts=3)

        with pytest.raises(ConflictError):
            allocator.allocate("WNF", DocumentType.CASH_BILL)

    def test_invalid_max_attempts(self, store):
        with pytest.raises(ValueError):
            SequenceAllocator(store, max_attempts=0)

    def test_works_on_sql_backend(self, sql_store):
        sql_store.create("creditbills", {"invoiceNumber": "WGD-3"})
        allocator = SequenceAllocator(sql_store)

        assert allocator.allocate("WGD", DocumentType.CREDIT_BILL) == 4
        assert allocator.allocate("WGD", DocumentType.CREDIT_BILL) == 5
        assert allocator.peek("WGD", DocumentType.CREDIT_BILL) == 6


# ===== TESTS DE CONCURRENCIA =====

class TestConcurrentAllocation:
    """Unicidad y monotonía con asignaciones simultáneas"""

    def test_fifty_threads_get_distinct_numbers(self, store):
        allocator = SequenceAllocator(store, max_attempts=500)
        results = []
        errors = []
        barrier = threading.Barrier(50)

        def worker():
            barrier.wait()
            try:
                results.append(allocator.allocate("WGD", DocumentType.CASH_BILL))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(50)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert sorted(results) == list(range(1, 51))

    def test_later_allocations_exceed_earlier_ones(self, store):
        allocator = SequenceAllocator(store, max_attempts=500)
        first_batch = [allocator.allocate("WPD", DocumentType.CASH_BILL) for _ in range(5)]

        later = []
        threads = [
            threading.Thread(target=lambda: later.append(allocator.allocate("WPD", DocumentType.CASH_BILL)))
            for _ in range(10)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert min(later) > max(first_batch)
        assert len(set(later)) == 10


# ===== TESTS DE IDS DE CLIENTE Y RESERVAS =====

class TestCustomerIdsAndClaims:
    """Tests para allocate_customer_id y claim_number"""

    def test_customer_ids_continue_after_existing(self, store):
        store.create("customers", {"customerId": "CUST-4"}, record_id="CUST-4")
        store.create("customers", {"customerId": "legacy"}, record_id="legacy")
        allocator = SequenceAllocator(store)

        assert allocator.allocate_customer_id() == "CUST-5"
        assert allocator.allocate_customer_id() == "CUST-6"

    def test_claim_same_number_twice_conflicts(self, store):
        allocator = SequenceAllocator(store)
        allocator.claim_number(DocumentType.CASH_BILL, "WNF-1", "WNF")

        with pytest.raises(ConflictError):
            allocator.claim_number(DocumentType.CASH_BILL, "WNF-1", "WNF")
        # Otro tipo de documento puede usar el mismo número
        allocator.claim_number(DocumentType.CREDIT_BILL, "WNF-1", "WNF")

    def test_claim_detects_existing_document(self, store):
        store.create("cashbills", {"invoiceNumber": "WNF-3"})
        allocator = SequenceAllocator(store)

        with pytest.raises(ConflictError):
            allocator.claim_number(DocumentType.CASH_BILL, "WNF-3", "WNF", check_existing=True)
