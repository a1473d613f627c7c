"""
Tests para el transporte de correo

smtplib se reemplaza por mocks; no se abre ninguna conexión real.
"""

import smtplib
from unittest.mock import patch

import pytest

from billing_app.core.exceptions import TransientError, ValidationError
from billing_app.modules.documents.schemas import DocumentCreate, DocumentType, LineItem
from billing_app.modules.documents.service import OrchestrationService
from billing_app.modules.email.service import MailTransport, MailTransportConfig


@pytest.fixture
def config():
    return MailTransportConfig(
        smtp_server="smtp.test.local",
        smtp_port=587,
        username="bills@wyenfos.com",
        password="secret",
        from_email="bills@wyenfos.com",
        from_name="Wyenfos Bills",
    )


@pytest.fixture
def smtp_mock():
    with patch("billing_app.modules.email.service.smtplib.SMTP") as mock_smtp:
        server = mock_smtp.return_value
        server.__enter__.return_value = server
        server.noop.return_value = (250, b"OK")
        yield mock_smtp


def make_handoff(store, email="meera@example.com"):
    service = OrchestrationService(store)
    created = service.create_document(
        DocumentType.CASH_BILL,
        DocumentCreate(
            company_name="WYENFOS GOLD AND DIAMONDS",
            customer_name="Meera Nair",
            customer_contact={"email": email},
            line_items=[LineItem(item_code="RING-22K", item_name="Gold ring", quantity=1, unit_price="25000")],
        ),
    )
    return service.build_handoff(DocumentType.CASH_BILL, created.document.id)


class TestMailTransportVerify:
    """Tests para MailTransport.verify"""

    def test_verify_ok(self, config, smtp_mock):
        transport = MailTransport(config)

        assert transport.verify() is True
        server = smtp_mock.return_value
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bills@wyenfos.com", "secret")

    def test_verify_retries_transient_failures(self, config, smtp_mock):
        waits = []
        smtp_mock.side_effect = [OSError("connection refused"), smtp_mock.return_value]
        transport = MailTransport(config, retry_attempts=3, base_backoff_ms=300, sleep=waits.append)

        assert transport.verify() is True
        assert smtp_mock.call_count == 2
        assert waits == [pytest.approx(0.3)]

    def test_verify_gives_up_after_attempts(self, config, smtp_mock):
        waits = []
        smtp_mock.side_effect = OSError("connection refused")
        transport = MailTransport(config, retry_attempts=3, base_backoff_ms=300, sleep=waits.append)

        with pytest.raises(TransientError) as exc_info:
            transport.verify()

        assert smtp_mock.call_count == 3
        assert "3 attempts" in str(exc_info.value)
        assert sum(waits) >= 0.9

    def test_verify_treats_bad_noop_as_failure(self, config, smtp_mock):
        smtp_mock.return_value.noop.return_value = (421, b"closing")
        transport = MailTransport(config, retry_attempts=2, base_backoff_ms=1, sleep=lambda s: None)

        with pytest.raises(TransientError):
            transport.verify()

    def test_config_from_settings(self):
        config = MailTransportConfig.from_settings()
        assert config.smtp_server
        assert config.timeout_seconds > 0


class TestMailTransportSend:
    """Tests para MailTransport.send_document"""

    def test_send_document_with_pdf(self, config, smtp_mock, store):
        handoff = make_handoff(store)
        transport = MailTransport(config)

        assert transport.send_document(handoff, pdf_content=b"%PDF-1.4 fake") is True

        from_email, recipients, message = smtp_mock.return_value.sendmail.call_args[0]
        assert from_email == "bills@wyenfos.com"
        assert recipients == ["meera@example.com"]
        assert "Cash Bill WGD-1" in message
        assert "WGD-1.pdf" in message

    def test_render_document_email(self, config, store):
        handoff = make_handoff(store)

        subject, html = MailTransport(config).render_document_email(handoff)

        assert subject == "Cash Bill WGD-1 - WYENFOS GOLD AND DIAMONDS"
        assert "Meera Nair" in html
        assert "Gold ring" in html

    def test_send_requires_recipient(self, config, smtp_mock, store):
        handoff = make_handoff(store, email="")

        with pytest.raises(ValidationError):
            MailTransport(config).send_document(handoff)
        smtp_mock.assert_not_called()

    def test_explicit_recipients(self, config, smtp_mock, store):
        handoff = make_handoff(store, email="")

        assert MailTransport(config).send_document(handoff, to_emails=["office@wyenfos.com"]) is True
        assert smtp_mock.return_value.sendmail.call_args[0][1] == ["office@wyenfos.com"]

    def test_smtp_failure_returns_false(self, config, smtp_mock, store):
        handoff = make_handoff(store)
        smtp_mock.return_value.sendmail.side_effect = smtplib.SMTPException("rejected")

        assert MailTransport(config).send_document(handoff) is False


# ===== TESTS DE LA API =====

@pytest.fixture
def email_client(client, config):
    from billing_app.dependencies.mailDependencies import get_mail_transport

    transport = MailTransport(config, retry_attempts=2, base_backoff_ms=1, sleep=lambda s: None)
    client.app.dependency_overrides[get_mail_transport] = lambda: transport
    try:
        yield client
    finally:
        client.app.dependency_overrides.pop(get_mail_transport, None)


class TestEmailAPI:
    """Tests de los endpoints de correo"""

    def create_bill(self, client, email="meera@example.com"):
        response = client.post("/documents/CashBill", json={
            "companyName": "WYENFOS GOLD AND DIAMONDS",
            "customerName": "Meera Nair",
            "customerContact": {"email": email},
            "lineItems": [{"itemCode": "RING-22K", "itemName": "Gold ring", "quantity": 1, "unitPrice": "25000"}],
        })
        return response.json()["document"]["id"]

    def test_send_document_email(self, email_client, smtp_mock):
        document_id = self.create_bill(email_client)

        response = email_client.post(f"/email/documents/CashBill/{document_id}")

        assert response.status_code == 200
        assert response.json()["invoiceNumber"] == "WGD-1"
        assert smtp_mock.return_value.sendmail.call_args[0][1] == ["meera@example.com"]

    def test_send_to_explicit_recipients(self, email_client, smtp_mock):
        document_id = self.create_bill(email_client, email="")

        response = email_client.post(f"/email/documents/CashBill/{document_id}",
                                     json={"to_emails": ["office@wyenfos.com"]})

        assert response.status_code == 200
        assert smtp_mock.return_value.sendmail.call_args[0][1] == ["office@wyenfos.com"]

    def test_customer_without_email_is_400(self, email_client, smtp_mock):
        document_id = self.create_bill(email_client, email="")

        response = email_client.post(f"/email/documents/CashBill/{document_id}")

        assert response.status_code == 400
        smtp_mock.assert_not_called()

    def test_smtp_failure_is_503(self, email_client, smtp_mock):
        document_id = self.create_bill(email_client)
        smtp_mock.return_value.sendmail.side_effect = smtplib.SMTPException("rejected")

        response = email_client.post(f"/email/documents/CashBill/{document_id}")

        assert response.status_code == 503

    def test_unknown_document_is_404(self, email_client, smtp_mock):
        assert email_client.post("/email/documents/CashBill/missing").status_code == 404

    def test_verify_endpoint(self, email_client, smtp_mock):
        response = email_client.get("/email/verify")

        assert response.status_code == 200
        assert response.json()["smtpServer"] == "smtp.test.local"

    def test_verify_endpoint_retries_then_503(self, email_client, smtp_mock):
        smtp_mock.side_effect = OSError("connection refused")

        response = email_client.get("/email/verify")

        assert response.status_code == 503
        assert smtp_mock.call_count == 2
