"""
Asignación de números consecutivos por (prefijo de empresa, tipo de documento).

Cada secuencia vive en un único registro de la colección `counters`
(id "{prefijo}:{tipo}") y avanza con actualizaciones condicionales por
versión. Dos asignaciones concurrentes nunca obtienen el mismo valor:
la que pierde la carrera relee el contador y vuelve a intentar.

Cuando el contador aún no existe se siembra con el mayor sufijo numérico
encontrado entre los documentos ya guardados de ese tipo, de modo que la
numeración continúa por encima de los documentos históricos.
"""
import logging
import random
import re
import time
from typing import Any, Callable, Dict, Optional

from billing_app.core.config import settings
from billing_app.core.exceptions import ConflictError
from billing_app.modules.customers.schemas import CUSTOMERS_COLLECTION
from billing_app.modules.documents.schemas import DocumentType, collection_for
from billing_app.modules.store.base import DocumentStore, VERSION_KEY

logger = logging.getLogger(__name__)

COUNTERS_COLLECTION = "counters"
NUMBER_CLAIMS_COLLECTION = "invoice_numbers"

CUSTOMER_COUNTER_KEY = "CUST:Customer"
CUSTOMER_ID_PREFIX = "CUST"

INVOICE_NUMBER_PATTERN = re.compile(r"^[A-Z]{2,4}-[1-9][0-9]*$")
COMPANY_PREFIX_PATTERN = re.compile(r"^[A-Z]{2,4}$")

# Espera máxima (segundos) por intento tras perder una carrera
CONFLICT_BACKOFF_SECONDS = 0.002


def format_invoice_number(company_prefix: str, number: int) -> str:
    return f"{company_prefix}-{number}"


def parse_invoice_number(value: Any, company_prefix: str) -> Optional[int]:
    """Sufijo numérico si `value` tiene la forma {prefijo}-N, si no None"""
    if not isinstance(value, str):
        return None
    match = re.match(rf"^{re.escape(company_prefix)}-(\d+)$", value)
    if not match:
        return None
    return int(match.group(1))


def is_valid_invoice_number(value: Any) -> bool:
    return isinstance(value, str) and INVOICE_NUMBER_PATTERN.match(value) is not None


def is_valid_company_prefix(value: Any) -> bool:
    return isinstance(value, str) and COMPANY_PREFIX_PATTERN.match(value) is not None


def counter_key(company_prefix: str, document_type: DocumentType) -> str:
    return f"{company_prefix}:{DocumentType(document_type).value}"


def number_claim_key(document_type: DocumentType, invoice_number: str) -> str:
    return f"{DocumentType(document_type).value}:{invoice_number}"


class SequenceAllocator:
    """Asignador de números consecutivos sobre un DocumentStore"""

    def __init__(self, store: DocumentStore, max_attempts: Optional[int] = None):
        self.store = store
        self.max_attempts = max_attempts if max_attempts is not None else settings.SEQUENCE_MAX_ATTEMPTS
        if self.max_attempts < 1:
            raise ValueError("max_attempts debe ser al menos 1")

    # ===== ESCANEO HEREDADO =====

    def scan_max(self, company_prefix: str, document_type: DocumentType) -> int:
        """Mayor sufijo usado por documentos guardados de ese tipo y prefijo (0 si no hay)"""
        highest = 0
        for record in self.store.get_all(collection_for(document_type)):
            number = parse_invoice_number(record.get("invoiceNumber"), company_prefix)
            if number is not None and number > highest:
                highest = number
        return highest

    def _scan_customer_max(self) -> int:
        highest = 0
        for record in self.store.get_all(CUSTOMERS_COLLECTION):
            number = parse_invoice_number(record.get("customerId"), CUSTOMER_ID_PREFIX)
            if number is not None and number > highest:
                highest = number
        return highest

    # ===== CONTADOR =====

    def _load_counter(self, key: str, seed: Callable[[], int]) -> Dict[str, Any]:
        counter = self.store.get_by_id(COUNTERS_COLLECTION, key)
        if counter is not None:
            return counter

        start = seed()
        try:
            counter = self.store.create(COUNTERS_COLLECTION, {"key": key, "current": start}, record_id=key)
            logger.info(f"Initialized counter {key} at {start}")
            return counter
        except ConflictError:
            # Otro proceso sembró el contador primero
            counter = self.store.get_by_id(COUNTERS_COLLECTION, key)
            if counter is None:
                raise ConflictError(f"El contador {key} cambió durante su inicialización")
            return counter

    def _increment(self, key: str, seed: Callable[[], int]) -> int:
        for attempt in range(1, self.max_attempts + 1):
            counter = self._load_counter(key, seed)
            next_value = int(counter.get("current", 0)) + 1
            try:
                self.store.update(
                    COUNTERS_COLLECTION,
                    key,
                    {"current": next_value},
                    expected_version=counter[VERSION_KEY],
                )
                return next_value
            except ConflictError:
                logger.debug(f"Counter {key} contended on attempt {attempt}, retrying")
                time.sleep(random.uniform(0, CONFLICT_BACKOFF_SECONDS * attempt))

        logger.error(f"Could not allocate from counter {key} after {self.max_attempts} attempts")
        raise ConflictError(
            f"No se pudo asignar un número para {key} tras {self.max_attempts} intentos"
        )

    def allocate(self, company_prefix: str, document_type: DocumentType) -> int:
        """
        Reservar el siguiente número de la secuencia.

        El número queda consumido aunque el documento no llegue a guardarse;
        nunca se reutiliza.
        """
        key = counter_key(company_prefix, document_type)
        number = self._increment(key, lambda: self.scan_max(company_prefix, document_type))
        logger.info(f"Allocated {format_invoice_number(company_prefix, number)} for {key}")
        return number

    def peek(self, company_prefix: str, document_type: DocumentType) -> int:
        """Siguiente número que se asignaría, sin consumirlo"""
        counter = self.store.get_by_id(COUNTERS_COLLECTION, counter_key(company_prefix, document_type))
        if counter is None:
            return self.scan_max(company_prefix, document_type) + 1
        return int(counter.get("current", 0)) + 1

    def advance_to(self, company_prefix: str, document_type: DocumentType, number: int) -> int:
        """
        Garantizar que el contador esté al menos en `number`.

        Se usa cuando el llamador aporta un número explícito mayor que el
        contador; la secuencia nunca retrocede. Devuelve el valor actual.
        """
        key = counter_key(company_prefix, document_type)
        for attempt in range(1, self.max_attempts + 1):
            counter = self._load_counter(key, lambda: self.scan_max(company_prefix, document_type))
            current = int(counter.get("current", 0))
            if current >= number:
                return current
            try:
                self.store.update(
                    COUNTERS_COLLECTION, key, {"current": number}, expected_version=counter[VERSION_KEY]
                )
                logger.info(f"Advanced counter {key} from {current} to {number}")
                return number
            except ConflictError:
                logger.debug(f"Counter {key} contended while advancing on attempt {attempt}")
                time.sleep(random.uniform(0, CONFLICT_BACKOFF_SECONDS * attempt))

        raise ConflictError(f"No se pudo avanzar el contador {key} tras {self.max_attempts} intentos")

    def allocate_customer_id(self) -> str:
        """Siguiente ID de cliente con la forma CUST-N"""
        number = self._increment(CUSTOMER_COUNTER_KEY, self._scan_customer_max)
        customer_id = format_invoice_number(CUSTOMER_ID_PREFIX, number)
        logger.info(f"Allocated customer id {customer_id}")
        return customer_id

    # ===== RESERVA DE NÚMEROS =====

    def claim_number(
        self,
        document_type: DocumentType,
        invoice_number: str,
        company_prefix: str,
        check_existing: bool = False,
    ) -> Dict[str, Any]:
        """
        Reservar un número concreto para un tipo de documento.

        La reserva es una creación condicional: si el número ya fue reservado
        lanza ConflictError. Protege contra números explícitos duplicados y
        contra documentos históricos que se saltaron el contador
        (`check_existing`).
        """
        if check_existing and self.store.get_all(
            collection_for(document_type), {"invoiceNumber": invoice_number}
        ):
            raise ConflictError(f"El número {invoice_number} ya está en uso para {DocumentType(document_type).value}")

        return self.store.create(
            NUMBER_CLAIMS_COLLECTION,
            {
                "documentType": DocumentType(document_type).value,
                "invoiceNumber": invoice_number,
                "companyPrefix": company_prefix,
            },
            record_id=number_claim_key(document_type, invoice_number),
        )
