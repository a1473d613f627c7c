"""
Router para el módulo de Documentos

Endpoints REST para documentos de facturación numerados:
- Creación con numeración consecutiva, cliente e inventario
- Consulta y listado por tipo
- Vista previa del siguiente número
- Anulación conservando el número
- Resumen de ingresos
"""

from fastapi import APIRouter, Query, Path, status
from typing import List, Optional

from billing_app.dependencies.storeDependencies import actor_dependency, store_dependency
from billing_app.modules.documents.service import OrchestrationService
from billing_app.modules.documents.schemas import (
    DocumentCancelRequest, DocumentCreate, DocumentCreateResponse, DocumentType,
    NextNumberOut, RevenueSummary, WarningOut
)

router = APIRouter(
    prefix="/documents",
    tags=["Documents"],
    responses={404: {"description": "Not found"}}
)


def _serialize(document) -> dict:
    return document.model_dump(mode="json", by_alias=True)


# ===== REPORTES =====

@router.get("/revenue/summary", response_model=RevenueSummary)
def get_revenue_summary(
    store: store_dependency,
    company: Optional[str] = Query(None, description="Filtrar por nombre de empresa"),
):
    """Total facturado por ventas activas (facturas de contado y crédito)"""
    return OrchestrationService(store).revenue_summary(company)


# ===== ENDPOINTS PRINCIPALES =====

@router.post("/{document_type}", response_model=DocumentCreateResponse, status_code=status.HTTP_201_CREATED)
def create_document(
    document_data: DocumentCreate,
    store: store_dependency,
    actor: actor_dependency,
    document_type: DocumentType = Path(..., description="Tipo de documento"),
):
    """
    Crear un documento numerado

    - **invoiceNumber**: Opcional; si se omite se asigna el siguiente de la secuencia
    - **customerId** o **customerName**: Cliente existente o datos para resolverlo
    - **lineItems**: Líneas del documento; las ventas descuentan inventario
    - **details**: Datos propios del tipo (paymentMode, dueDate, sourceBill, ...)

    Los fallos de inventario no impiden la creación; se devuelven en **warnings**.
    """
    result = OrchestrationService(store).create_document(document_type, document_data, actor)
    return DocumentCreateResponse(
        document=_serialize(result.document),
        warnings=[WarningOut(**w.to_dict()) for w in result.warnings],
    )


@router.get("/{document_type}", response_model=List[dict])
def list_documents(
    store: store_dependency,
    document_type: DocumentType = Path(..., description="Tipo de documento"),
    company: Optional[str] = Query(None, description="Filtrar por nombre de empresa"),
    include_cancelled: bool = Query(False, description="Incluir documentos anulados"),
):
    """Listar documentos de un tipo en orden de creación"""
    documents = OrchestrationService(store).list_documents(document_type, company, include_cancelled)
    return [_serialize(d) for d in documents]


@router.get("/{document_type}/next-number", response_model=NextNumberOut)
def get_next_number(
    store: store_dependency,
    document_type: DocumentType = Path(..., description="Tipo de documento"),
    company: Optional[str] = Query(None, description="Nombre de la empresa emisora"),
):
    """Siguiente número que se asignaría (no lo consume)"""
    return OrchestrationService(store).next_number(document_type, company)


@router.get("/{document_type}/{document_id}", response_model=dict)
def get_document(
    store: store_dependency,
    document_type: DocumentType = Path(..., description="Tipo de documento"),
    document_id: str = Path(..., description="ID del documento"),
):
    """Obtener un documento por ID"""
    return _serialize(OrchestrationService(store).get_document(document_type, document_id))


@router.post("/{document_type}/{document_id}/cancel", response_model=dict)
def cancel_document(
    store: store_dependency,
    actor: actor_dependency,
    cancel_data: Optional[DocumentCancelRequest] = None,
    document_type: DocumentType = Path(..., description="Tipo de documento"),
    document_id: str = Path(..., description="ID del documento"),
):
    """
    Anular un documento

    El número se conserva; anular dos veces devuelve 400.
    El inventario no se revierte.
    """
    reason = cancel_data.reason if cancel_data else ""
    document = OrchestrationService(store).cancel_document(document_type, document_id, reason, actor)
    return _serialize(document)
