"""
Excepciones de dominio del motor de numeración y orquestación.

Los servicios lanzan estas excepciones; la capa HTTP (main.py) las traduce
a respuestas JSON con el código de estado correspondiente.

- ValidationError  -> 400, no se reintenta
- NotFoundError    -> 404, no se reintenta
- ConflictError    -> 409, el asignador de secuencias reintenta hasta su límite
- TransientError   -> 503, RetryPolicy reintenta donde aplica

PartialFailureWarning no es una excepción: es un valor que acompaña a un
resultado exitoso cuando falla un efecto secundario (inventario).
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


class BillingError(Exception):
    """Base de todos los errores de dominio"""

    code: str = "BILLING_ERROR"
    status_code: int = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(BillingError):
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(BillingError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, message: str, collection: Optional[str] = None, record_id: Optional[str] = None):
        self.collection = collection
        self.record_id = record_id
        super().__init__(message)


class ConflictError(BillingError):
    code = "CONFLICT"
    status_code = 409


class TransientError(BillingError):
    code = "TRANSIENT_ERROR"
    status_code = 503

    def __init__(self, message: str, attempts: int = 1, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(message)


@dataclass(frozen=True)
class PartialFailureWarning:
    """Fallo degradado de un efecto secundario; nunca se lanza."""

    step: str
    message: str
    item_code: Optional[str] = None
    occurred_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "step": self.step,
            "message": self.message,
            "item_code": self.item_code,
            "occurred_at": self.occurred_at.isoformat(),
        }
