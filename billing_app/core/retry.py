"""
Política de reintentos con backoff exponencial.

Se usa para colaboradores externos propensos a fallos transitorios
(p. ej. verificación del transporte de correo). El asignador de secuencias
NO la usa: allí el reintento depende de conflictos de versión, no de fallos.
"""
import logging
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from billing_app.core.config import settings
from billing_app.core.exceptions import TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def with_retry(
    operation: Callable[[], T],
    max_attempts: Optional[int] = None,
    base_backoff_ms: Optional[int] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Ejecutar `operation` con reintentos.

    Entre intentos espera base_backoff_ms * 2^(intento-1). Al agotar los
    intentos lanza TransientError envolviendo el último error.

    Args:
        operation: Callable sin argumentos
        max_attempts: Intentos totales (por defecto RETRY_MAX_ATTEMPTS)
        base_backoff_ms: Espera base en milisegundos (por defecto RETRY_BASE_BACKOFF_MS)
        retry_on: Tipos de excepción que se reintentan; el resto se propaga tal cual
        sleep: Función de espera (inyectable en pruebas)

    Returns:
        El resultado de la operación
    """
    attempts = max_attempts if max_attempts is not None else settings.RETRY_MAX_ATTEMPTS
    backoff_ms = base_backoff_ms if base_backoff_ms is not None else settings.RETRY_BASE_BACKOFF_MS
    if attempts < 1:
        raise ValueError("max_attempts debe ser al menos 1")

    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=backoff_ms / 1000.0),
        retry=retry_if_exception_type(retry_on),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
    )

    try:
        return retrying(operation)
    except RetryError as e:
        last_error = e.last_attempt.exception()
        logger.error(f"Operation failed after {attempts} attempts: {last_error}")
        raise TransientError(
            f"Operation failed after {attempts} attempts: {last_error}",
            attempts=attempts,
            last_error=last_error,
        ) from last_error
