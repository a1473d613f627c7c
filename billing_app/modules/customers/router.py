from fastapi import APIRouter, Query, Path
from typing import List, Optional

from billing_app.dependencies.storeDependencies import store_dependency
from billing_app.modules.customers.schemas import Customer
from billing_app.modules.customers.service import CustomerResolver

router = APIRouter(
    prefix="/customers",
    tags=["Customers"],
    responses={404: {"description": "Not found"}}
)


@router.get("/", response_model=List[Customer], response_model_by_alias=True)
def get_customers(
    store: store_dependency,
    search: Optional[str] = Query(None, description="Búsqueda por nombre, email o teléfono"),
    company: Optional[str] = Query(None, description="Filtrar por empresa"),
):
    """Listar clientes ordenados por nombre"""
    return CustomerResolver(store).search(search, company)


@router.get("/{customer_id}", response_model=Customer, response_model_by_alias=True)
def get_customer(
    store: store_dependency,
    customer_id: str = Path(..., description="ID del cliente (CUST-N)"),
):
    """Obtener un cliente por ID"""
    return CustomerResolver(store).get(customer_id)
