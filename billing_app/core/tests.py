"""
Tests para el núcleo: política de reintentos, errores y configuración
"""

import time

import pytest

from billing_app.core.config import Settings
from billing_app.core.exceptions import (
    BillingError, ConflictError, NotFoundError, PartialFailureWarning,
    TransientError, ValidationError
)
from billing_app.core.retry import with_retry


class Flaky:
    """Operación que falla `failures` veces antes de responder"""

    def __init__(self, failures, exc_type=ConnectionError):
        self.failures = failures
        self.exc_type = exc_type
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc_type(f"fallo {self.calls}")
        return "ok"


# ===== TESTS DE REINTENTOS =====

class TestWithRetry:
    """Tests para with_retry"""

    def test_returns_first_success(self):
        operation = Flaky(0)
        assert with_retry(operation, max_attempts=3, base_backoff_ms=1) == "ok"
        assert operation.calls == 1

    def test_retries_until_success(self):
        waits = []
        operation = Flaky(2)

        result = with_retry(operation, max_attempts=3, base_backoff_ms=300, sleep=waits.append)

        assert result == "ok"
        assert operation.calls == 3
        assert waits == [pytest.approx(0.3), pytest.approx(0.6)]

    def test_exhaustion_raises_transient_error(self):
        """Tres intentos fallidos esperan al menos 900 ms en total"""
        operation = Flaky(10)

        started = time.monotonic()
        with pytest.raises(TransientError) as exc_info:
            with_retry(operation, max_attempts=3, base_backoff_ms=300)
        elapsed = time.monotonic() - started

        assert operation.calls == 3
        assert elapsed >= 0.9
        assert "3 attempts" in str(exc_info.value)
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, ConnectionError)

    def test_non_retryable_error_propagates(self):
        operation = Flaky(5, exc_type=KeyError)

        with pytest.raises(KeyError):
            with_retry(operation, max_attempts=3, base_backoff_ms=1, retry_on=(ConnectionError,))
        assert operation.calls == 1

    def test_single_attempt_does_not_wait(self):
        waits = []
        with pytest.raises(TransientError):
            with_retry(Flaky(1), max_attempts=1, base_backoff_ms=300, sleep=waits.append)
        assert waits == []

    def test_invalid_attempts(self):
        with pytest.raises(ValueError):
            with_retry(Flaky(0), max_attempts=0)


# ===== TESTS DE ERRORES =====

class TestErrors:
    """Tests para la taxonomía de errores"""

    def test_status_codes(self):
        assert ValidationError("x").status_code == 400
        assert NotFoundError("x").status_code == 404
        assert ConflictError("x").status_code == 409
        assert TransientError("x").status_code == 503

    def test_all_errors_share_base(self):
        for error in (ValidationError("a"), NotFoundError("b"), ConflictError("c"), TransientError("d")):
            assert isinstance(error, BillingError)
            assert error.message in str(error)

    def test_not_found_carries_record(self):
        error = NotFoundError("no existe", collection="customers", record_id="CUST-9")
        assert error.collection == "customers"
        assert error.record_id == "CUST-9"

    def test_partial_failure_warning_is_value(self):
        warning = PartialFailureWarning(step="inventory", message="sin stock", item_code="A1")
        data = warning.to_dict()

        assert data["step"] == "inventory"
        assert data["item_code"] == "A1"
        assert isinstance(data["occurred_at"], str)
        with pytest.raises(Exception):
            warning.step = "otro"


# ===== TESTS DE CONFIGURACIÓN =====

class TestSettings:
    """Tests para Settings"""

    def test_store_timeout_can_be_disabled(self):
        assert Settings(STORE_TIMEOUT_SECONDS="0").STORE_TIMEOUT_SECONDS is None
        assert Settings(STORE_TIMEOUT_SECONDS="none").STORE_TIMEOUT_SECONDS is None
        assert Settings(STORE_TIMEOUT_SECONDS="2.5").STORE_TIMEOUT_SECONDS == 2.5

    def test_debug_parsing(self):
        assert Settings(DEBUG="yes").DEBUG is True
        assert Settings(DEBUG="false").DEBUG is False

    def test_database_url_override(self):
        assert Settings(DATABASE_URL="sqlite://").database_url == "sqlite://"
        built = Settings(DATABASE_URL=None, POSTGRES_HOST="db", POSTGRES_DB="billing").database_url
        assert built.startswith("postgresql+psycopg2://")
        assert built.endswith("@db:5432/billing")
