"""
Tests para el módulo de Inventario

Cubren:
- Ventas con piso en cero y devoluciones
- Ítems inexistentes
- Aislamiento de fallos por ítem
- Bitácora de movimientos y resumen
"""

import random
import threading

import pytest

from billing_app.core.exceptions import NotFoundError, TransientError
from billing_app.modules.documents.schemas import LineItem
from billing_app.modules.inventory.schemas import MovementDirection
from billing_app.modules.inventory.service import InventoryLedger
from billing_app.modules.store import InMemoryDocumentStore


class FailingItemStore(InMemoryDocumentStore):
    """Falla cualquier lectura del ítem indicado"""

    def __init__(self, failing_code):
        super().__init__()
        self.failing_code = failing_code

    def get_by_id(self, collection, record_id):
        if collection == "inventory" and record_id == self.failing_code:
            raise TransientError("almacén no disponible")
        return super().get_by_id(collection, record_id)


def line(code, qty, name=None, price="100"):
    return LineItem(item_code=code, item_name=name or f"Item {code}", quantity=qty, unit_price=price)


def seed_item(store, code, quantity):
    store.create("inventory", {"itemCode": code, "itemName": f"Item {code}", "quantity": quantity,
                               "totalSold": 0, "totalReturns": 0}, record_id=code)


# ===== TESTS DE VENTAS Y DEVOLUCIONES =====

class TestInventoryLedger:
    """Tests para apply_sale y apply_return"""

    def test_sale_decrements_stock(self, store):
        seed_item(store, "G-100", 10)
        ledger = InventoryLedger(store)

        warnings = ledger.apply_sale([line("G-100", 3)], "doc-1", "CashBill", "WGD-1")

        item = ledger.get_item("G-100")
        assert warnings == []
        assert item.quantity == 7
        assert item.total_sold == 3
        assert item.last_sold_date is not None

    def test_sale_never_goes_below_zero(self, store):
        seed_item(store, "G-100", 2)
        ledger = InventoryLedger(store)

        ledger.apply_sale([line("G-100", 5)], "doc-1", "CashBill", "WGD-1")

        item = ledger.get_item("G-100")
        assert item.quantity == 0
        assert item.total_sold == 5

    def test_sale_of_unknown_item_creates_it_with_zero_stock(self, store):
        ledger = InventoryLedger(store)

        warnings = ledger.apply_sale([line("NEW-1", 4)], "doc-1", "CreditBill", "WNF-1")

        item = ledger.get_item("NEW-1")
        assert warnings == []
        assert item.quantity == 0
        assert item.total_sold == 4
        assert item.item_name == "Item NEW-1"

    def test_return_increments_stock(self, store):
        seed_item(store, "G-100", 1)
        ledger = InventoryLedger(store)

        ledger.apply_return([line("G-100", 2)], "note-1", "CreditNote", "WGD-1")

        item = ledger.get_item("G-100")
        assert item.quantity == 3
        assert item.total_returns == 2
        assert item.last_return_date is not None

    def test_return_of_unknown_item_creates_stock(self, store):
        ledger = InventoryLedger(store)

        ledger.apply_return([line("RET-1", 6)], "note-1", "CreditNote", "WGD-1")

        assert ledger.get_item("RET-1").quantity == 6

    def test_blank_item_code_is_skipped_with_warning(self, store):
        seed_item(store, "G-100", 5)
        ledger = InventoryLedger(store)

        warnings = ledger.apply_sale([line("", 1, name="Servicio"), line("G-100", 1)], "doc-1", "CashBill", "WGD-1")

        assert len(warnings) == 1
        assert warnings[0].item_code is None
        assert ledger.get_item("G-100").quantity == 4

    def test_concurrent_sales_are_all_counted(self, store):
        seed_item(store, "G-100", 100)
        ledger = InventoryLedger(store, max_attempts=100)

        threads = [
            threading.Thread(target=ledger.apply_sale, args=([line("G-100", 1)], f"doc-{n}", "CashBill", f"WGD-{n}"))
            for n in range(20)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        item = ledger.get_item("G-100")
        assert item.quantity == 80
        assert item.total_sold == 20

    @pytest.mark.parametrize("steps", [
        [("sale", 3), ("sale", 5), ("return", 2)],
        [("sale", 10), ("return", 4), ("sale", 1)],
        [("return", 1), ("sale", 20), ("sale", 1), ("return", 3), ("sale", 3)],
    ])
    def test_quantity_never_negative_over_sequence(self, store, steps):
        seed_item(store, "G-100", 5)
        ledger = InventoryLedger(store)
        expected = 5

        for n, (direction, qty) in enumerate(steps):
            apply = ledger.apply_sale if direction == "sale" else ledger.apply_return
            assert apply([line("G-100", qty)], f"doc-{n}", "CashBill", f"WGD-{n}") == []
            expected = max(0, expected - qty) if direction == "sale" else expected + qty

            assert ledger.get_item("G-100").quantity == expected
            assert ledger.get_item("G-100").quantity >= 0

    def test_random_sequence_keeps_floor(self, store):
        rng = random.Random(1234)
        seed_item(store, "G-100", 3)
        ledger = InventoryLedger(store)
        expected = 3

        for n in range(200):
            qty = rng.randint(1, 6)
            if rng.random() < 0.6:
                ledger.apply_sale([line("G-100", qty)], f"doc-{n}", "CashBill", f"WGD-{n}")
                expected = max(0, expected - qty)
            else:
                ledger.apply_return([line("G-100", qty)], f"note-{n}", "CreditNote", f"WGD-{n}")
                expected += qty

            quantity = ledger.get_item("G-100").quantity
            assert quantity >= 0
            assert quantity == expected


# ===== TESTS DE AISLAMIENTO DE FALLOS =====

class TestPartialFailureIsolation:
    """Un ítem que falla no impide actualizar los demás"""

    def test_failing_item_becomes_warning(self):
        store = FailingItemStore("BAD-1")
        seed_item(store, "OK-1", 5)
        seed_item(store, "OK-2", 5)
        ledger = InventoryLedger(store)

        warnings = ledger.apply_sale(
            [line("OK-1", 1), line("BAD-1", 1), line("OK-2", 2)], "doc-1", "CashBill", "WGD-1"
        )

        assert len(warnings) == 1
        assert warnings[0].item_code == "BAD-1"
        assert warnings[0].step == "inventory"
        assert ledger.get_item("OK-1").quantity == 4
        assert ledger.get_item("OK-2").quantity == 3
        assert {m.item_code for m in ledger.list_movements()} == {"OK-1", "OK-2"}


# ===== TESTS DE CONSULTAS =====

class TestInventoryQueries:
    """Tests para movimientos, ítems y resumen"""

    def test_one_movement_per_line(self, store):
        ledger = InventoryLedger(store)
        ledger.apply_sale([line("A", 2), line("B", 1)], "doc-1", "CashBill", "WNF-1")
        ledger.apply_return([line("A", 1)], "note-1", "CreditNote", "WNF-1")

        movements = ledger.list_movements("A")

        assert [m.direction for m in movements] == [MovementDirection.SALE, MovementDirection.RETURN]
        assert movements[0].source_document_id == "doc-1"
        assert movements[0].invoice_number == "WNF-1"
        assert movements[1].source_document_type == "CreditNote"
        assert len(ledger.list_movements()) == 3

    def test_get_missing_item(self, store):
        with pytest.raises(NotFoundError):
            InventoryLedger(store).get_item("NOPE")

    def test_summary_totals(self, store):
        seed_item(store, "A", 10)
        seed_item(store, "C", 1)
        ledger = InventoryLedger(store)
        ledger.apply_sale([line("A", 4), line("B", 2)], "doc-1", "CashBill", "WNF-1")
        ledger.apply_return([line("A", 1)], "note-1", "CreditNote", "WNF-1")

        summary = ledger.summary()
        by_code = {i.item_code: i for i in summary.items}

        assert summary.total_items == 3
        assert by_code["A"].quantity == 7
        assert by_code["A"].total_sold == 4
        assert by_code["A"].total_returned == 1
        assert by_code["A"].net_sold == 3
        assert by_code["A"].last_sale_date is not None
        assert by_code["B"].quantity == 0
        assert by_code["C"].total_sold == 0
        assert by_code["C"].last_sale_date is None

    def test_negative_legacy_quantity_reads_as_zero(self, store):
        store.create("inventory", {"itemCode": "OLD-1", "itemName": "Old stock", "quantity": -2},
                     record_id="OLD-1")
        ledger = InventoryLedger(store)

        assert ledger.get_item("OLD-1").quantity == 0
        assert [i.quantity for i in ledger.list_items()] == [0]
        assert ledger.summary().items[0].quantity == 0

    def test_sale_on_negative_legacy_quantity_clamps(self, store):
        store.create("inventory", {"itemCode": "OLD-1", "quantity": -2}, record_id="OLD-1")
        ledger = InventoryLedger(store)

        assert ledger.apply_sale([line("OLD-1", 1)], "doc-1", "CashBill", "WNF-1") == []
        assert ledger.get_item("OLD-1").quantity == 0


# ===== TESTS DE LA API =====

class TestInventoryAPI:
    """Tests de los endpoints de inventario"""

    def test_inventory_after_sale(self, client):
        client.post("/documents/CashBill", json={
            "companyName": "WYENFOS PURE DROPS",
            "customerName": "Anil",
            "lineItems": [{"itemCode": "WATER-20L", "itemName": "Water can", "quantity": 3, "unitPrice": "60"}],
        })

        summary = client.get("/inventory/")
        assert summary.status_code == 200
        assert summary.json()["totalItems"] == 1
        assert summary.json()["items"][0]["totalSold"] == 3

        item = client.get("/inventory/WATER-20L")
        assert item.status_code == 200
        assert item.json()["quantity"] == 0

        movements = client.get("/inventory/movements/", params={"item_code": "WATER-20L"})
        assert movements.status_code == 200
        assert movements.json()[0]["direction"] == "sale"
        assert movements.json()[0]["invoiceNumber"] == "WPD-1"

    def test_missing_item_is_404(self, client):
        assert client.get("/inventory/NOPE").status_code == 404

    @pytest.mark.parametrize("path", ["/inventory/movements", "/inventory/movements/"])
    def test_movements_with_and_without_trailing_slash(self, client, path):
        client.post("/documents/CashBill", json={
            "companyName": "WYENFOS PURE DROPS",
            "customerName": "Anil",
            "lineItems": [{"itemCode": "WATER-20L", "quantity": 1, "unitPrice": "60"}],
        })

        response = client.get(path)

        assert response.status_code == 200
        assert [m["itemCode"] for m in response.json()] == ["WATER-20L"]

    def test_negative_legacy_quantity_does_not_break_listing(self, client):
        client.app.state.memory_store.create("inventory", {"itemCode": "OLD-1", "quantity": -4},
                                             record_id="OLD-1")

        response = client.get("/inventory/")

        assert response.status_code == 200
        assert response.json()["items"][0]["quantity"] == 0
