from pydantic import BaseModel, ConfigDict, Field, AliasChoices, TypeAdapter, field_validator, model_validator
from pydantic.alias_generators import to_camel
from decimal import Decimal
from typing import Optional, List, Dict, Any, Literal, Union, Annotated
from enum import Enum

from billing_app.modules.customers.schemas import CustomerContact


class DocumentType(str, Enum):
    CASH_BILL = "CashBill"
    CREDIT_BILL = "CreditBill"
    CREDIT_NOTE = "CreditNote"
    DEBIT_NOTE = "DebitNote"
    QUOTATION = "Quotation"
    RECEIPT = "Receipt"


class DocumentStatus(str, Enum):
    DRAFT = "Draft"          # Antes de persistir, no visible
    ACTIVE = "Active"        # Persistido
    CANCELLED = "Cancelled"  # Anulado; conserva su número


# Nombres de colección de los datos existentes
DOCUMENT_COLLECTIONS: Dict[DocumentType, str] = {
    DocumentType.CASH_BILL: "cashbills",
    DocumentType.CREDIT_BILL: "creditbills",
    DocumentType.CREDIT_NOTE: "creditnotes",
    DocumentType.DEBIT_NOTE: "debitnotes",
    DocumentType.QUOTATION: "quotations",
    DocumentType.RECEIPT: "paymentReceipts",
}

# Ventas descuentan inventario; notas crédito lo devuelven
SALE_DOCUMENT_TYPES = frozenset({DocumentType.CASH_BILL, DocumentType.CREDIT_BILL})
RETURN_DOCUMENT_TYPES = frozenset({DocumentType.CREDIT_NOTE})


def collection_for(document_type: DocumentType) -> str:
    return DOCUMENT_COLLECTIONS[DocumentType(document_type)]


class CamelModel(BaseModel):
    """Los documentos se guardan y exponen con claves camelCase"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LineItem(CamelModel):
    item_code: str = Field("", serialization_alias="itemCode", validation_alias=AliasChoices("itemCode", "item_code", "code"))
    item_name: str = Field("", serialization_alias="itemName", validation_alias=AliasChoices("itemName", "item_name", "name", "description"))
    quantity: int = Field(..., gt=0, serialization_alias="quantity", validation_alias=AliasChoices("quantity", "qty"))
    unit_price: Decimal = Field(Decimal("0"), ge=0, serialization_alias="unitPrice", validation_alias=AliasChoices("unitPrice", "unit_price", "rate", "price"))
    tax_rate: Decimal = Field(Decimal("0"), ge=0, serialization_alias="taxRate", validation_alias=AliasChoices("taxRate", "tax_rate", "gst"))

    @field_validator("item_code", "item_name", mode="before")
    @classmethod
    def strip_text(cls, v):
        return (v or "").strip() if isinstance(v, str) or v is None else str(v)

    @property
    def line_subtotal(self) -> Decimal:
        return Decimal(self.quantity) * self.unit_price

    @property
    def line_tax(self) -> Decimal:
        return self.line_subtotal * self.tax_rate / Decimal("100")


class DocumentTotals(CamelModel):
    subtotal: Decimal = Decimal("0.00")
    tax_total: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")


class SourceBill(CamelModel):
    """Factura de origen de una nota crédito/débito"""
    invoice_number: str
    document_type: Optional[DocumentType] = None
    document_id: Optional[str] = None


class BillingDocumentBase(CamelModel):
    """Sobre común a todos los documentos numerados"""
    id: Optional[str] = None
    company_name: str
    company_prefix: str
    invoice_number: str
    status: DocumentStatus = DocumentStatus.ACTIVE
    customer_id: str
    customer_name: str = ""
    customer_contact: CustomerContact = Field(default_factory=CustomerContact)
    line_items: List[LineItem] = Field(default_factory=list)
    totals: DocumentTotals = Field(default_factory=DocumentTotals)
    notes: Optional[str] = None
    created_by: str = "unknown"
    last_updated_by: str = "unknown"
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    cancelled_at: Optional[str] = None
    cancellation_reason: Optional[str] = None

    @field_validator("customer_id", "invoice_number")
    @classmethod
    def not_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("El campo no puede estar vacío")
        return v


# ===== DATOS PROPIOS DE CADA TIPO =====

class CashBillDetails(CamelModel):
    payment_mode: Optional[str] = "cash"


class CreditBillDetails(CamelModel):
    due_date: Optional[str] = None
    payment_terms: Optional[str] = None


class NoteDetails(CamelModel):
    source_bill: Optional[SourceBill] = None
    reason: Optional[str] = None


class QuotationDetails(CamelModel):
    valid_until: Optional[str] = None


class ReceiptDetails(CamelModel):
    amount: Decimal = Field(Decimal("0.00"), ge=0)
    payment_mode: Optional[str] = None
    credit_bill_id: Optional[str] = None


class CashBill(BillingDocumentBase, CashBillDetails):
    document_type: Literal["CashBill"] = "CashBill"


class CreditBill(BillingDocumentBase, CreditBillDetails):
    document_type: Literal["CreditBill"] = "CreditBill"


class CreditNote(BillingDocumentBase, NoteDetails):
    document_type: Literal["CreditNote"] = "CreditNote"


class DebitNote(BillingDocumentBase, NoteDetails):
    document_type: Literal["DebitNote"] = "DebitNote"


class Quotation(BillingDocumentBase, QuotationDetails):
    document_type: Literal["Quotation"] = "Quotation"


class Receipt(BillingDocumentBase, ReceiptDetails):
    document_type: Literal["Receipt"] = "Receipt"


DOCUMENT_MODELS = {
    DocumentType.CASH_BILL: (CashBill, CashBillDetails),
    DocumentType.CREDIT_BILL: (CreditBill, CreditBillDetails),
    DocumentType.CREDIT_NOTE: (CreditNote, NoteDetails),
    DocumentType.DEBIT_NOTE: (DebitNote, NoteDetails),
    DocumentType.QUOTATION: (Quotation, QuotationDetails),
    DocumentType.RECEIPT: (Receipt, ReceiptDetails),
}


BillingDocument = Annotated[
    Union[CashBill, CreditBill, CreditNote, DebitNote, Quotation, Receipt],
    Field(discriminator="document_type"),
]

billing_document_adapter = TypeAdapter(BillingDocument)


def document_from_record(record: Dict[str, Any]) -> BillingDocumentBase:
    """Reconstruir la variante tipada a partir de un registro del store"""
    return billing_document_adapter.validate_python(record)


def document_to_record(document: BillingDocumentBase) -> Dict[str, Any]:
    # createdAt/updatedAt los asigna el store
    return document.model_dump(mode="json", by_alias=True, exclude={"id", "created_at", "updated_at"})


# ===== ENTRADA / SALIDA =====

class DocumentCreate(CamelModel):
    """Solicitud de creación de un documento"""
    company_name: Optional[str] = Field(None, validation_alias=AliasChoices("companyName", "company_name", "company"))
    invoice_number: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_contact: CustomerContact = Field(default_factory=CustomerContact)
    line_items: List[LineItem] = Field(default_factory=list, validation_alias=AliasChoices("lineItems", "line_items", "items"))
    totals: Optional[DocumentTotals] = None
    notes: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("company_name", mode="before")
    @classmethod
    def company_from_object(cls, v):
        # Algunos clientes envían {"company": {"name": ...}}
        if isinstance(v, dict):
            return v.get("name")
        return v

    @model_validator(mode="after")
    def normalize_blank(self):
        if self.invoice_number is not None and not self.invoice_number.strip():
            self.invoice_number = None
        if self.customer_id is not None and not self.customer_id.strip():
            self.customer_id = None
        return self


class DocumentCancelRequest(CamelModel):
    reason: str = Field("", max_length=500)


class WarningOut(CamelModel):
    step: str
    message: str
    item_code: Optional[str] = None
    occurred_at: str


class DocumentCreateResponse(CamelModel):
    document: Dict[str, Any]
    warnings: List[WarningOut] = Field(default_factory=list)


class NextNumberOut(CamelModel):
    document_type: DocumentType
    company_name: str
    company_prefix: str
    next_number: int
    invoice_number: str


class RevenueSummary(CamelModel):
    company_name: Optional[str] = None
    documents: int
    cancelled_documents: int
    total_amount: Decimal
