"""
Servicios de negocio para el módulo de Documentos

Creación de un documento, en este orden:
0. Validación de la solicitud (sin tocar el almacén)
1. Número: asignado por la secuencia o reservado si viene explícito
2. Cliente: resolución u alta
3. Persistencia del documento en estado Active
4. Inventario: ventas descuentan, notas crédito devuelven

Los pasos 1 a 3 fallan de inmediato; el paso 4 nunca hace fallar la
creación: cada ítem que no se pudo actualizar se devuelve como aviso.
Los pasos ya completados no se revierten si uno posterior falla.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from billing_app.core.exceptions import (
    ConflictError, NotFoundError, PartialFailureWarning, ValidationError
)
from billing_app.modules.companies.utils import DEFAULT_COMPANY_NAME, resolve_company_prefix
from billing_app.modules.customers.schemas import Customer, CustomerInput
from billing_app.modules.customers.service import CustomerResolver
from billing_app.modules.documents.schemas import (
    DOCUMENT_MODELS, RETURN_DOCUMENT_TYPES, SALE_DOCUMENT_TYPES,
    BillingDocumentBase, DocumentCreate, DocumentStatus, DocumentTotals, DocumentType,
    LineItem, NextNumberOut, RevenueSummary, SourceBill,
    collection_for, document_from_record, document_to_record
)
from billing_app.modules.inventory.service import InventoryLedger
from billing_app.modules.sequences.service import (
    SequenceAllocator, format_invoice_number, is_valid_company_prefix, is_valid_invoice_number,
    parse_invoice_number
)
from billing_app.modules.store.base import DocumentStore, VERSION_KEY

logger = logging.getLogger(__name__)

# Reasignaciones permitidas si un número asignado ya estaba reservado
NUMBER_CLAIM_ATTEMPTS = 5
CANCEL_MAX_ATTEMPTS = 3
TWO_PLACES = Decimal("0.01")


@dataclass
class CreationResult:
    """Documento persistido más los avisos de efectos secundarios degradados"""
    document: BillingDocumentBase
    warnings: List[PartialFailureWarning] = field(default_factory=list)


@dataclass(frozen=True)
class DocumentHandoff:
    """Lo que reciben los colaboradores de PDF y correo"""
    document: BillingDocumentBase
    customer: Customer

    def __post_init__(self):
        if not self.document.invoice_number or not self.customer.customer_id:
            raise ValidationError("El documento debe tener número y cliente para entregarse")


def compute_totals(line_items: List[LineItem]) -> DocumentTotals:
    subtotal = sum((item.line_subtotal for item in line_items), Decimal("0"))
    tax_total = sum((item.line_tax for item in line_items), Decimal("0"))
    return DocumentTotals(
        subtotal=subtotal.quantize(TWO_PLACES),
        tax_total=tax_total.quantize(TWO_PLACES),
        total=(subtotal + tax_total).quantize(TWO_PLACES),
    )


def _company_prefix(company_name: str) -> str:
    company_prefix = resolve_company_prefix(company_name)
    # El prefijo por defecto puede traer espacios o dígitos (ej. "Al Noor" -> "AL ")
    if not is_valid_company_prefix(company_prefix):
        raise ValidationError(
            f"La empresa {company_name} no tiene un prefijo de numeración válido "
            f"({company_prefix!r}); configúrelo en COMPANY_PREFIXES"
        )
    return company_prefix


def _document_from_record(document_type: DocumentType, record: dict) -> BillingDocumentBase:
    # Los registros heredados no guardan documentType ni companyPrefix
    data = dict(record)
    data.setdefault("documentType", DocumentType(document_type).value)
    if not data.get("companyPrefix"):
        invoice_number = str(data.get("invoiceNumber") or "")
        if "-" in invoice_number:
            data["companyPrefix"] = invoice_number.rsplit("-", 1)[0]
        else:
            data["companyPrefix"] = resolve_company_prefix(data.get("companyName"))
    data.setdefault("companyName", DEFAULT_COMPANY_NAME)
    try:
        return document_from_record(data)
    except PydanticValidationError as e:
        error = e.errors()[0]
        field_name = ".".join(str(part) for part in error["loc"][1:]) or "documento"
        raise ValidationError(f"Registro {record.get('id')} ilegible ({field_name}): {error['msg']}")


class OrchestrationService:
    """Servicio principal para la creación y consulta de documentos"""

    def __init__(
        self,
        store: DocumentStore,
        allocator: Optional[SequenceAllocator] = None,
        customers: Optional[CustomerResolver] = None,
        inventory: Optional[InventoryLedger] = None,
    ):
        self.store = store
        self.allocator = allocator or SequenceAllocator(store)
        self.customers = customers or CustomerResolver(store, self.allocator)
        self.inventory = inventory or InventoryLedger(store)

    def create_document(
        self,
        document_type: DocumentType,
        document_data: DocumentCreate,
        actor: str = "unknown",
    ) -> CreationResult:
        """Crear un documento numerado"""
        document_type = DocumentType(document_type)
        company_name = document_data.company_name or DEFAULT_COMPANY_NAME
        company_prefix = _company_prefix(company_name)
        model, details_model = DOCUMENT_MODELS[document_type]

        # 0. Validación
        if not document_data.customer_id and not (document_data.customer_name or "").strip():
            raise ValidationError("El nombre del cliente es obligatorio")

        explicit_number = document_data.invoice_number.strip() if document_data.invoice_number else None
        if explicit_number:
            if not is_valid_invoice_number(explicit_number):
                raise ValidationError(f"Número de documento inválido: {explicit_number}")
            if parse_invoice_number(explicit_number, company_prefix) is None:
                raise ValidationError(
                    f"El número {explicit_number} no corresponde al prefijo {company_prefix} de {company_name}"
                )

        try:
            details = details_model.model_validate(document_data.details)
        except PydanticValidationError as e:
            raise ValidationError(f"Datos de {document_type.value} inválidos: {e.errors()[0]['msg']}")

        if isinstance(getattr(details, "source_bill", None), SourceBill):
            details.source_bill = self._resolve_source_bill(details.source_bill)

        # 1. Número
        if explicit_number:
            invoice_number = self._claim_explicit_number(document_type, company_prefix, explicit_number)
        else:
            invoice_number = self._allocate_number(document_type, company_prefix)

        # 2. Cliente
        customer = self.customers.resolve(
            CustomerInput(
                customer_id=document_data.customer_id,
                customer_name=document_data.customer_name or "",
                customer_contact=document_data.customer_contact,
                company_name=company_name,
            ),
            actor=actor,
        )

        # 3. Persistencia
        document = model(
            company_name=company_name,
            company_prefix=company_prefix,
            invoice_number=invoice_number,
            status=DocumentStatus.ACTIVE,
            customer_id=customer.customer_id,
            customer_name=customer.customer_name,
            customer_contact=customer.customer_contact,
            line_items=document_data.line_items,
            totals=document_data.totals or compute_totals(document_data.line_items),
            notes=document_data.notes,
            created_by=actor,
            last_updated_by=actor,
            **details.model_dump(),
        )
        record = self.store.create(collection_for(document_type), document_to_record(document))
        document = document_from_record(record)
        logger.info(f"Created {document_type.value} {invoice_number} ({document.id}) for customer {customer.customer_id}")

        # 4. Inventario
        warnings: List[PartialFailureWarning] = []
        if document_type in SALE_DOCUMENT_TYPES:
            warnings = self.inventory.apply_sale(
                document.line_items, document.id, document_type.value, invoice_number
            )
        elif document_type in RETURN_DOCUMENT_TYPES:
            warnings = self.inventory.apply_return(
                document.line_items, document.id, document_type.value, invoice_number
            )

        for warning in warnings:
            logger.warning(f"{invoice_number} created with degraded step {warning.step}: {warning.message}")

        return CreationResult(document=document, warnings=warnings)

    def _allocate_number(self, document_type: DocumentType, company_prefix: str) -> str:
        for attempt in range(1, NUMBER_CLAIM_ATTEMPTS + 1):
            number = self.allocator.allocate(company_prefix, document_type)
            invoice_number = format_invoice_number(company_prefix, number)
            try:
                self.allocator.claim_number(document_type, invoice_number, company_prefix)
                return invoice_number
            except ConflictError:
                logger.warning(f"{invoice_number} was already claimed, allocating again (attempt {attempt})")
        raise ConflictError(
            f"No se pudo reservar un número para {document_type.value} tras {NUMBER_CLAIM_ATTEMPTS} intentos"
        )

    def _claim_explicit_number(self, document_type: DocumentType, company_prefix: str, invoice_number: str) -> str:
        self.allocator.claim_number(document_type, invoice_number, company_prefix, check_existing=True)
        self.allocator.advance_to(company_prefix, document_type, parse_invoice_number(invoice_number, company_prefix))
        logger.info(f"Claimed caller-supplied number {invoice_number} for {document_type.value}")
        return invoice_number

    def _resolve_source_bill(self, source_bill: SourceBill) -> SourceBill:
        """La factura de origen de una nota debe existir como factura de contado o crédito"""
        candidates = [source_bill.document_type] if source_bill.document_type in SALE_DOCUMENT_TYPES else [
            DocumentType.CASH_BILL, DocumentType.CREDIT_BILL
        ]
        for candidate in candidates:
            matches = self.store.get_all(collection_for(candidate), {"invoiceNumber": source_bill.invoice_number})
            if matches:
                return SourceBill(
                    invoice_number=source_bill.invoice_number,
                    document_type=candidate,
                    document_id=matches[0]["id"],
                )
        raise ValidationError(f"Factura de origen {source_bill.invoice_number} no encontrada")

    # ===== ANULACIÓN =====

    def cancel_document(
        self,
        document_type: DocumentType,
        document_id: str,
        reason: str = "",
        actor: str = "unknown",
    ) -> BillingDocumentBase:
        """
        Anular un documento.

        El número se conserva y sigue contando para la secuencia. El
        inventario no se revierte.
        """
        document_type = DocumentType(document_type)
        collection = collection_for(document_type)

        for attempt in range(1, CANCEL_MAX_ATTEMPTS + 1):
            record = self._get_record(document_type, document_id)
            if record.get("status") == DocumentStatus.CANCELLED.value:
                raise ValidationError(f"El documento {record.get('invoiceNumber')} ya está anulado")

            now = datetime.utcnow().isoformat()
            try:
                updated = self.store.update(
                    collection,
                    document_id,
                    {
                        "status": DocumentStatus.CANCELLED.value,
                        "cancelledAt": now,
                        "cancellationReason": reason,
                        "lastUpdatedBy": actor,
                    },
                    expected_version=record[VERSION_KEY],
                )
                logger.info(f"Cancelled {document_type.value} {record.get('invoiceNumber')} by {actor}")
                return _document_from_record(document_type, updated)
            except ConflictError:
                logger.debug(f"Document {document_id} changed while cancelling, attempt {attempt}")

        raise ConflictError(f"No se pudo anular el documento {document_id}, intente de nuevo")

    # ===== CONSULTAS =====

    def _get_record(self, document_type: DocumentType, document_id: str) -> dict:
        collection = collection_for(document_type)
        record = self.store.get_by_id(collection, document_id)
        if record is None:
            raise NotFoundError(
                f"{DocumentType(document_type).value} {document_id} no encontrado",
                collection=collection,
                record_id=document_id,
            )
        return record

    def get_document(self, document_type: DocumentType, document_id: str) -> BillingDocumentBase:
        return _document_from_record(document_type, self._get_record(document_type, document_id))

    def list_documents(
        self,
        document_type: DocumentType,
        company_name: Optional[str] = None,
        include_cancelled: bool = False,
    ) -> List[BillingDocumentBase]:
        filters = {"companyName": company_name} if company_name else None
        documents = []
        for record in self.store.get_all(collection_for(document_type), filters):
            if not include_cancelled and record.get("status") == DocumentStatus.CANCELLED.value:
                continue
            try:
                documents.append(_document_from_record(document_type, record))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable {DocumentType(document_type).value} record {record.get('id')}: {e.message}")
        return sorted(documents, key=lambda d: d.created_at or "")

    def next_number(self, document_type: DocumentType, company_name: Optional[str] = None) -> NextNumberOut:
        """Vista previa del siguiente número, sin consumirlo"""
        document_type = DocumentType(document_type)
        company_name = company_name or DEFAULT_COMPANY_NAME
        company_prefix = _company_prefix(company_name)
        number = self.allocator.peek(company_prefix, document_type)
        return NextNumberOut(
            document_type=document_type,
            company_name=company_name,
            company_prefix=company_prefix,
            next_number=number,
            invoice_number=format_invoice_number(company_prefix, number),
        )

    def revenue_summary(self, company_name: Optional[str] = None) -> RevenueSummary:
        """Total facturado por ventas activas; los anulados solo se cuentan"""
        documents = 0
        cancelled = 0
        total = Decimal("0")
        for document_type in sorted(SALE_DOCUMENT_TYPES, key=lambda t: t.value):
            for document in self.list_documents(document_type, company_name, include_cancelled=True):
                if document.status == DocumentStatus.CANCELLED:
                    cancelled += 1
                    continue
                documents += 1
                total += document.totals.total
        return RevenueSummary(
            company_name=company_name,
            documents=documents,
            cancelled_documents=cancelled,
            total_amount=total.quantize(TWO_PLACES),
        )

    def build_handoff(self, document_type: DocumentType, document_id: str) -> DocumentHandoff:
        """Documento finalizado y su cliente, listos para PDF o correo"""
        document = self.get_document(document_type, document_id)
        return DocumentHandoff(document=document, customer=self.customers.get(document.customer_id))
