import smtplib
import ssl
import time
from dataclasses import dataclass
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Callable, List, Optional, Tuple
import logging

from jinja2 import Environment, FileSystemLoader, select_autoescape

from billing_app.core.config import settings
from billing_app.core.exceptions import ValidationError
from billing_app.core.retry import with_retry
from billing_app.modules.documents.service import DocumentHandoff

logger = logging.getLogger(__name__)

DOCUMENT_LABELS = {
    "CashBill": "Cash Bill",
    "CreditBill": "Credit Bill",
    "CreditNote": "Credit Note",
    "DebitNote": "Debit Note",
    "Quotation": "Quotation",
    "Receipt": "Payment Receipt",
}


@dataclass(frozen=True)
class MailTransportConfig:
    """Configuración SMTP; se pasa explícitamente a cada MailTransport."""

    smtp_server: str
    smtp_port: int = 587
    username: str = ""
    password: str = ""
    use_tls: bool = True
    from_email: str = ""
    from_name: str = ""
    timeout_seconds: float = 10.0

    @classmethod
    def from_settings(cls) -> "MailTransportConfig":
        return cls(
            smtp_server=settings.EMAIL_SMTP_SERVER,
            smtp_port=settings.EMAIL_SMTP_PORT,
            username=settings.EMAIL_USERNAME,
            password=settings.EMAIL_PASSWORD,
            use_tls=settings.EMAIL_USE_TLS,
            from_email=settings.EMAIL_FROM,
            from_name=settings.EMAIL_FROM_NAME,
            timeout_seconds=settings.EMAIL_TIMEOUT_SECONDS,
        )


class MailTransport:
    """
    Transporte SMTP para enviar documentos finalizados.

    El PDF lo genera el llamador; aquí solo se adjunta.
    """

    def __init__(
        self,
        config: MailTransportConfig,
        retry_attempts: Optional[int] = None,
        base_backoff_ms: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.retry_attempts = retry_attempts
        self.base_backoff_ms = base_backoff_ms
        self._sleep = sleep

        template_dir = Path(__file__).parent / "templates"
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(['html', 'xml'])
        )

    def _create_smtp_connection(self):
        """Crear conexión SMTP segura."""
        try:
            if self.config.use_tls:
                context = ssl.create_default_context()
                server = smtplib.SMTP(self.config.smtp_server, self.config.smtp_port, timeout=self.config.timeout_seconds)
                server.starttls(context=context)
            else:
                server = smtplib.SMTP_SSL(self.config.smtp_server, self.config.smtp_port, timeout=self.config.timeout_seconds)

            if self.config.username:
                server.login(self.config.username, self.config.password)
            return server
        except Exception as e:
            logger.error(f"Error creating SMTP connection: {str(e)}")
            raise

    def _check_connection(self) -> bool:
        with self._create_smtp_connection() as server:
            code, message = server.noop()
            if code != 250:
                raise smtplib.SMTPResponseException(code, message)
        return True

    def verify(self) -> bool:
        """
        Comprobar que el servidor SMTP responde.

        Reintenta con backoff exponencial; al agotar los intentos lanza
        TransientError.
        """
        result = with_retry(
            self._check_connection,
            max_attempts=self.retry_attempts,
            base_backoff_ms=self.base_backoff_ms,
            retry_on=(smtplib.SMTPException, OSError),
            sleep=self._sleep,
        )
        logger.info(f"SMTP transport {self.config.smtp_server}:{self.config.smtp_port} verified")
        return result

    def render_document_email(self, handoff: DocumentHandoff) -> Tuple[str, str]:
        """
        Asunto y cuerpo HTML para un documento.

        Returns:
            (subject, html_content)
        """
        document = handoff.document
        label = DOCUMENT_LABELS.get(document.document_type, document.document_type)
        subject = f"{label} {document.invoice_number} - {document.company_name}"
        template = self.jinja_env.get_template("document_email.html")
        html_content = template.render(
            document=document,
            customer=handoff.customer,
            document_label=label,
            from_name=self.config.from_name or document.company_name,
        )
        return subject, html_content

    def send_document(
        self,
        handoff: DocumentHandoff,
        to_emails: Optional[List[str]] = None,
        pdf_content: Optional[bytes] = None,
        pdf_filename: Optional[str] = None,
    ) -> bool:
        """
        Enviar un documento por correo.

        Args:
            handoff: Documento finalizado y su cliente
            to_emails: Destinatarios; por defecto el email del cliente
            pdf_content: PDF ya generado para adjuntar
            pdf_filename: Nombre del adjunto (por defecto {numero}.pdf)

        Returns:
            True si se envió correctamente, False en caso contrario
        """
        recipients = to_emails or ([handoff.customer.customer_contact.email]
                                   if handoff.customer.customer_contact.email else [])
        if not recipients:
            raise ValidationError(f"El cliente {handoff.customer.customer_id} no tiene email")

        subject, html_content = self.render_document_email(handoff)

        try:
            msg = MIMEMultipart('mixed')
            msg['Subject'] = subject
            msg['From'] = f"{self.config.from_name} <{self.config.from_email}>"
            msg['To'] = ', '.join(recipients)
            msg.attach(MIMEText(html_content, 'html', 'utf-8'))

            if pdf_content:
                filename = pdf_filename or f"{handoff.document.invoice_number}.pdf"
                part = MIMEApplication(pdf_content, _subtype="pdf")
                part.add_header('Content-Disposition', 'attachment', filename=filename)
                msg.attach(part)

            with self._create_smtp_connection() as server:
                server.sendmail(self.config.from_email, recipients, msg.as_string())

            logger.info(f"Document {handoff.document.invoice_number} sent to {', '.join(recipients)}")
            return True

        except Exception as e:
            logger.error(f"Error sending document {handoff.document.invoice_number}: {str(e)}")
            return False
