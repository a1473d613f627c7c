from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from decimal import Decimal
from typing import Optional, List
from enum import Enum

INVENTORY_COLLECTION = "inventory"
MOVEMENTS_COLLECTION = "inventory_movements"


class MovementDirection(str, Enum):
    SALE = "sale"      # Salida por factura de venta
    RETURN = "return"  # Entrada por nota crédito


class InventoryItem(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    item_code: str
    item_name: str = ""
    quantity: int = Field(0, ge=0)
    unit_price: Decimal = Decimal("0")
    gst: Decimal = Decimal("0")
    total_sold: int = 0
    total_returns: int = 0
    last_updated: Optional[str] = None
    last_sold_date: Optional[str] = None
    last_return_date: Optional[str] = None


class MovementRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: Optional[str] = None
    item_code: str
    item_name: str = ""
    quantity: int
    direction: MovementDirection
    source_document_id: Optional[str] = None
    source_document_type: Optional[str] = None
    invoice_number: Optional[str] = None
    timestamp: str


class InventorySummaryItem(BaseModel):
    """Ítem con totales derivados de la bitácora de movimientos"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    item_code: str
    item_name: str = ""
    quantity: int = 0
    unit_price: Decimal = Decimal("0")
    total_sold: int = 0
    total_returned: int = 0
    net_sold: int = 0
    last_sale_date: Optional[str] = None
    last_return_date: Optional[str] = None


class InventorySummary(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    items: List[InventorySummaryItem]
    total_items: int
