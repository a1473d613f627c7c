"""
Servicios de negocio para el módulo de Clientes

Resolución de clientes al crear documentos:
- ID explícito: debe existir
- Sin ID: coincidencia exacta por nombre, luego email, luego teléfono
- Sin coincidencia: alta con ID CUST-N

Los datos de contacto se fusionan solo con valores no vacíos y la lista de
empresas crece como conjunto. Resolver dos veces los mismos datos no
escribe nada la segunda vez.
"""
import hashlib
import logging
from typing import Any, Dict, List, Optional

from billing_app.core.exceptions import ConflictError, NotFoundError, ValidationError
from billing_app.modules.customers.schemas import (
    CONTACT_FIELDS, CUSTOMER_NAME_CLAIMS_COLLECTION, CUSTOMERS_COLLECTION,
    Customer, CustomerContact, CustomerInput
)
from billing_app.modules.sequences.service import SequenceAllocator
from billing_app.modules.store.base import DocumentStore, ID_KEY, VERSION_KEY

logger = logging.getLogger(__name__)

MERGE_MAX_ATTEMPTS = 10


def _companies(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def name_claim_key(customer_name: str) -> str:
    return hashlib.sha1(customer_name.encode("utf-8")).hexdigest()


class CustomerResolver:
    """Servicio de resolución y consulta de clientes"""

    def __init__(self, store: DocumentStore, allocator: Optional[SequenceAllocator] = None):
        self.store = store
        self.allocator = allocator or SequenceAllocator(store)

    def resolve(self, customer_input: CustomerInput, actor: str = "unknown") -> Customer:
        """Obtener o crear el cliente de un documento"""
        contact = customer_input.customer_contact
        company_name = customer_input.company_name

        if customer_input.customer_id:
            record = self._get_record(customer_input.customer_id)
            if record is None:
                raise NotFoundError(
                    f"Cliente {customer_input.customer_id} no encontrado",
                    collection=CUSTOMERS_COLLECTION,
                    record_id=customer_input.customer_id,
                )
            return self._to_customer(self._merge(record, contact, company_name, actor))

        name = (customer_input.customer_name or "").strip()
        if not name:
            raise ValidationError("El nombre del cliente es obligatorio")

        record = self._find_match(name, contact)
        if record is not None:
            logger.debug(f"Matched customer {record.get('customerId')} for {name}")
            return self._to_customer(self._merge(record, contact, company_name, actor))

        return self._to_customer(self._create(name, contact, company_name, actor))

    def get(self, customer_id: str) -> Customer:
        record = self._get_record(customer_id)
        if record is None:
            raise NotFoundError(
                f"Cliente {customer_id} no encontrado",
                collection=CUSTOMERS_COLLECTION,
                record_id=customer_id,
            )
        return self._to_customer(record)

    def search(self, search: Optional[str] = None, company: Optional[str] = None) -> List[Customer]:
        """Listar clientes filtrando por texto (nombre, email, teléfono) y empresa"""
        term = (search or "").strip().lower()
        result = []
        for record in self.store.get_all(CUSTOMERS_COLLECTION):
            if company and company not in _companies(record.get("company")):
                continue
            if term:
                contact = record.get("customerContact") or {}
                haystack = [
                    str(record.get("customerName", "")),
                    str(contact.get("email", "")),
                    str(contact.get("phone", "")),
                ]
                if not any(term in value.lower() for value in haystack):
                    continue
            result.append(self._to_customer(record))
        return sorted(result, key=lambda c: c.customer_name.lower())

    # ===== INTERNOS =====

    def _get_record(self, customer_id: str) -> Optional[Dict[str, Any]]:
        record = self.store.get_by_id(CUSTOMERS_COLLECTION, customer_id)
        if record is not None:
            return record
        # Registros heredados con un ID de registro distinto de customerId
        matches = self.store.get_all(CUSTOMERS_COLLECTION, {"customerId": customer_id})
        return matches[0] if matches else None

    def _find_match(self, name: str, contact: CustomerContact) -> Optional[Dict[str, Any]]:
        records = self.store.get_all(CUSTOMERS_COLLECTION)

        for record in records:
            if record.get("customerName") == name:
                return record

        # Email y teléfono vacíos nunca coinciden
        for field in ("email", "phone"):
            value = getattr(contact, field)
            if not value:
                continue
            for record in records:
                if (record.get("customerContact") or {}).get(field) == value:
                    return record
        return None

    def _create(
        self, name: str, contact: CustomerContact, company_name: Optional[str], actor: str
    ) -> Dict[str, Any]:
        customer_id = self.allocator.allocate_customer_id()
        claim_key = name_claim_key(name)
        try:
            self.store.create(
                CUSTOMER_NAME_CLAIMS_COLLECTION,
                {"customerName": name, "customerId": customer_id},
                record_id=claim_key,
            )
        except ConflictError:
            # Otro hilo dio de alta el mismo nombre; usar su cliente
            claim = self.store.get_by_id(CUSTOMER_NAME_CLAIMS_COLLECTION, claim_key)
            if claim is None:
                raise ConflictError(f"El alta del cliente {name} está en conflicto, intente de nuevo")
            logger.info(f"Customer name {name} already claimed by {claim['customerId']}")
            record = self._ensure_record(claim["customerId"], name, actor)
            return self._merge(record, contact, company_name, actor)

        data = {
            "customerId": customer_id,
            "customerName": name,
            "customerContact": contact.model_dump(),
            "company": [company_name] if company_name else [],
            "createdBy": actor,
            "lastUpdatedBy": actor,
        }
        try:
            record = self.store.create(CUSTOMERS_COLLECTION, data, record_id=customer_id)
        except ConflictError:
            # Otro hilo creó el registro a partir de nuestra reserva
            record = self._ensure_record(customer_id, name, actor)
            return self._merge(record, contact, company_name, actor)
        logger.info(f"Created customer {customer_id} ({name})")
        return record

    def _ensure_record(self, customer_id: str, name: str, actor: str) -> Dict[str, Any]:
        """Registro del cliente reservado; lo crea si quien lo reservó aún no lo hizo"""
        record = self.store.get_by_id(CUSTOMERS_COLLECTION, customer_id)
        if record is not None:
            return record
        try:
            return self.store.create(
                CUSTOMERS_COLLECTION,
                {
                    "customerId": customer_id,
                    "customerName": name,
                    "customerContact": CustomerContact().model_dump(),
                    "company": [],
                    "createdBy": actor,
                    "lastUpdatedBy": actor,
                },
                record_id=customer_id,
            )
        except ConflictError:
            record = self.store.get_by_id(CUSTOMERS_COLLECTION, customer_id)
            if record is None:
                raise
            return record

    def _merge(
        self,
        record: Dict[str, Any],
        contact: CustomerContact,
        company_name: Optional[str],
        actor: str,
    ) -> Dict[str, Any]:
        for attempt in range(1, MERGE_MAX_ATTEMPTS + 1):
            current_contact = dict(record.get("customerContact") or {})
            merged_contact = dict(current_contact)
            for field in CONTACT_FIELDS:
                value = getattr(contact, field)
                if value and value != current_contact.get(field):
                    merged_contact[field] = value

            companies = _companies(record.get("company"))
            changes: Dict[str, Any] = {}
            if merged_contact != current_contact:
                changes["customerContact"] = merged_contact
            if company_name and company_name not in companies:
                changes["company"] = companies + [company_name]
            if not changes:
                return record

            changes["lastUpdatedBy"] = actor
            try:
                updated = self.store.update(
                    CUSTOMERS_COLLECTION, record[ID_KEY], changes, expected_version=record[VERSION_KEY]
                )
                logger.info(f"Updated customer {record.get('customerId')}: {sorted(changes)}")
                return updated
            except ConflictError:
                logger.debug(f"Customer {record.get('customerId')} changed concurrently, attempt {attempt}")
                record = self.store.get_by_id(CUSTOMERS_COLLECTION, record[ID_KEY])
                if record is None:
                    raise NotFoundError("Cliente eliminado durante la actualización", collection=CUSTOMERS_COLLECTION)

        raise ConflictError(f"No se pudo actualizar el cliente tras {MERGE_MAX_ATTEMPTS} intentos")

    @staticmethod
    def _to_customer(record: Dict[str, Any]) -> Customer:
        data = dict(record)
        data.setdefault("customerId", record.get(ID_KEY))
        data.setdefault("customerName", "")
        return Customer.model_validate(data)
