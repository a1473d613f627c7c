from fastapi import APIRouter, Query, Path
from typing import List, Optional

from billing_app.dependencies.storeDependencies import store_dependency
from billing_app.modules.inventory.schemas import InventoryItem, InventorySummary, MovementRecord
from billing_app.modules.inventory.service import InventoryLedger

router = APIRouter(
    prefix="/inventory",
    tags=["Inventory"],
    responses={404: {"description": "Not found"}}
)


@router.get("/", response_model=InventorySummary)
def get_inventory(store: store_dependency):
    """Existencias con totales vendidos y devueltos"""
    return InventoryLedger(store).summary()


@router.get("/movements", response_model=List[MovementRecord])
@router.get("/movements/", response_model=List[MovementRecord], include_in_schema=False)
def get_movements(
    store: store_dependency,
    item_code: Optional[str] = Query(None, description="Filtrar por código de ítem"),
):
    """Bitácora de movimientos de inventario"""
    return InventoryLedger(store).list_movements(item_code)


@router.get("/{item_code}", response_model=InventoryItem)
def get_item(
    store: store_dependency,
    item_code: str = Path(..., description="Código del ítem"),
):
    return InventoryLedger(store).get_item(item_code)
