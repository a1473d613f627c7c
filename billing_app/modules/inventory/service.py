import logging
from datetime import datetime
from typing import Dict, List, Optional

from billing_app.core.config import settings
from billing_app.core.exceptions import ConflictError, NotFoundError, PartialFailureWarning
from billing_app.modules.documents.schemas import LineItem
from billing_app.modules.inventory.schemas import (
    INVENTORY_COLLECTION, MOVEMENTS_COLLECTION,
    InventoryItem, InventorySummary, InventorySummaryItem, MovementDirection, MovementRecord
)
from billing_app.modules.store.base import DocumentStore, ID_KEY, VERSION_KEY

logger = logging.getLogger(__name__)


def _to_item(record: Dict) -> InventoryItem:
    data = dict(record)
    data.setdefault("itemCode", record[ID_KEY])
    quantity = int(data.get("quantity") or 0)
    if quantity < 0:
        # Existencias negativas heredadas del sistema anterior
        logger.warning(f"Item {data['itemCode']} has negative quantity {quantity}, reading it as 0")
        quantity = 0
    data["quantity"] = quantity
    return InventoryItem.model_validate(data)


class InventoryLedger:
    """Service for stock updates driven by billing documents."""

    def __init__(self, store: DocumentStore, max_attempts: Optional[int] = None):
        self.store = store
        self.max_attempts = max_attempts if max_attempts is not None else settings.INVENTORY_MAX_ATTEMPTS

    def apply_sale(
        self,
        line_items: List[LineItem],
        document_id: Optional[str] = None,
        document_type: Optional[str] = None,
        invoice_number: Optional[str] = None,
    ) -> List[PartialFailureWarning]:
        """Descontar existencias por cada línea vendida (nunca por debajo de cero)."""
        return self._apply(line_items, MovementDirection.SALE, document_id, document_type, invoice_number)

    def apply_return(
        self,
        line_items: List[LineItem],
        document_id: Optional[str] = None,
        document_type: Optional[str] = None,
        invoice_number: Optional[str] = None,
    ) -> List[PartialFailureWarning]:
        """Devolver existencias por cada línea de una nota crédito."""
        return self._apply(line_items, MovementDirection.RETURN, document_id, document_type, invoice_number)

    def _apply(
        self,
        line_items: List[LineItem],
        direction: MovementDirection,
        document_id: Optional[str],
        document_type: Optional[str],
        invoice_number: Optional[str],
    ) -> List[PartialFailureWarning]:
        warnings: List[PartialFailureWarning] = []

        for item in line_items:
            if not item.item_code:
                message = f"Línea sin código de ítem omitida ({item.item_name or 'sin nombre'})"
                logger.warning(f"Skipping line without item code in {invoice_number}")
                warnings.append(PartialFailureWarning(step="inventory", message=message))
                continue

            try:
                self._mutate_item(item, direction)
            except Exception as e:
                logger.error(
                    f"Inventory {direction.value} failed for item {item.item_code} in {invoice_number}: {e}",
                    exc_info=True,
                )
                warnings.append(PartialFailureWarning(
                    step="inventory",
                    message=f"No se pudo actualizar el inventario del ítem {item.item_code}: {e}",
                    item_code=item.item_code,
                ))
                continue

            try:
                self._record_movement(item, direction, document_id, document_type, invoice_number)
            except Exception as e:
                logger.error(
                    f"Movement record failed for item {item.item_code} in {invoice_number}: {e}",
                    exc_info=True,
                )
                warnings.append(PartialFailureWarning(
                    step="inventory_movement",
                    message=f"No se pudo registrar el movimiento del ítem {item.item_code}: {e}",
                    item_code=item.item_code,
                ))

        return warnings

    def _mutate_item(self, item: LineItem, direction: MovementDirection) -> Dict:
        code = item.item_code
        for attempt in range(1, self.max_attempts + 1):
            now = datetime.utcnow().isoformat()
            record = self.store.get_by_id(INVENTORY_COLLECTION, code)

            if record is None:
                data = {
                    "itemCode": code,
                    "itemName": item.item_name,
                    "unitPrice": str(item.unit_price),
                    "gst": str(item.tax_rate),
                    "totalSold": 0,
                    "totalReturns": 0,
                    "lastUpdated": now,
                }
                if direction == MovementDirection.SALE:
                    logger.warning(f"Item {code} not in inventory, creating it with zero stock")
                    data.update(quantity=0, totalSold=item.quantity, lastSoldDate=now)
                else:
                    data.update(quantity=item.quantity, totalReturns=item.quantity, lastReturnDate=now)
                try:
                    return self.store.create(INVENTORY_COLLECTION, data, record_id=code)
                except ConflictError:
                    logger.debug(f"Item {code} created concurrently, retrying as update")
                    continue

            current = int(record.get("quantity", 0) or 0)
            if direction == MovementDirection.SALE:
                if current < item.quantity:
                    logger.warning(f"Insufficient stock for {code}: have {current}, selling {item.quantity}")
                changes = {
                    "quantity": max(0, current - item.quantity),
                    "totalSold": int(record.get("totalSold", 0) or 0) + item.quantity,
                    "lastSoldDate": now,
                    "lastUpdated": now,
                }
            else:
                changes = {
                    "quantity": current + item.quantity,
                    "totalReturns": int(record.get("totalReturns", 0) or 0) + item.quantity,
                    "lastReturnDate": now,
                    "lastUpdated": now,
                }
            if not record.get("itemName") and item.item_name:
                changes["itemName"] = item.item_name

            try:
                updated = self.store.update(
                    INVENTORY_COLLECTION, record[ID_KEY], changes, expected_version=record[VERSION_KEY]
                )
                logger.debug(f"Item {code} quantity {current} -> {changes['quantity']}")
                return updated
            except ConflictError:
                logger.debug(f"Item {code} contended on attempt {attempt}, retrying")

        raise ConflictError(f"No se pudo actualizar el ítem {code} tras {self.max_attempts} intentos")

    def _record_movement(
        self,
        item: LineItem,
        direction: MovementDirection,
        document_id: Optional[str],
        document_type: Optional[str],
        invoice_number: Optional[str],
    ) -> Dict:
        movement = MovementRecord(
            item_code=item.item_code,
            item_name=item.item_name,
            quantity=item.quantity,
            direction=direction,
            source_document_id=document_id,
            source_document_type=document_type,
            invoice_number=invoice_number,
            timestamp=datetime.utcnow().isoformat(),
        )
        return self.store.create(
            MOVEMENTS_COLLECTION, movement.model_dump(mode="json", by_alias=True, exclude={"id"})
        )

    # ===== CONSULTAS =====

    def get_item(self, item_code: str) -> InventoryItem:
        record = self.store.get_by_id(INVENTORY_COLLECTION, item_code)
        if record is None:
            raise NotFoundError(
                f"Ítem {item_code} no encontrado en inventario",
                collection=INVENTORY_COLLECTION,
                record_id=item_code,
            )
        return _to_item(record)

    def list_items(self) -> List[InventoryItem]:
        records = self.store.get_all(INVENTORY_COLLECTION)
        return sorted((_to_item(r) for r in records), key=lambda i: i.item_code)

    def list_movements(self, item_code: Optional[str] = None) -> List[MovementRecord]:
        filters = {"itemCode": item_code} if item_code else None
        records = self.store.get_all(MOVEMENTS_COLLECTION, filters)
        movements = [MovementRecord.model_validate(r) for r in records]
        return sorted(movements, key=lambda m: m.timestamp)

    def summary(self) -> InventorySummary:
        """Existencias con totales vendidos y devueltos calculados desde la bitácora"""
        items: Dict[str, InventorySummaryItem] = {}
        for item in self.list_items():
            items[item.item_code] = InventorySummaryItem(
                item_code=item.item_code,
                item_name=item.item_name,
                quantity=item.quantity,
                unit_price=item.unit_price,
            )

        for movement in self.list_movements():
            entry = items.get(movement.item_code)
            if entry is None:
                # Movimiento de un ítem ya eliminado del inventario
                entry = InventorySummaryItem(item_code=movement.item_code, item_name=movement.item_name)
                items[movement.item_code] = entry
            if movement.direction == MovementDirection.SALE:
                entry.total_sold += movement.quantity
                entry.last_sale_date = max(filter(None, [entry.last_sale_date, movement.timestamp]))
            else:
                entry.total_returned += movement.quantity
                entry.last_return_date = max(filter(None, [entry.last_return_date, movement.timestamp]))
            entry.net_sold = entry.total_sold - entry.total_returned

        ordered = sorted(items.values(), key=lambda i: i.item_code)
        return InventorySummary(items=ordered, total_items=len(ordered))
