"""
Router para el envío de documentos por correo

- Envío de un documento finalizado a su cliente (o a destinatarios dados)
- Verificación del servidor SMTP con reintentos
"""
from fastapi import APIRouter, Path
from pydantic import BaseModel
from typing import List, Optional
import logging

from billing_app.core.exceptions import TransientError
from billing_app.dependencies.mailDependencies import mail_dependency
from billing_app.dependencies.storeDependencies import store_dependency
from billing_app.modules.documents.schemas import DocumentType
from billing_app.modules.documents.service import OrchestrationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/email", tags=["Email"])


class DocumentEmailRequest(BaseModel):
    to_emails: Optional[List[str]] = None


@router.post("/documents/{document_type}/{document_id}")
def send_document_email(
    store: store_dependency,
    transport: mail_dependency,
    request: Optional[DocumentEmailRequest] = None,
    document_type: DocumentType = Path(..., description="Tipo de documento"),
    document_id: str = Path(..., description="ID del documento"),
):
    """
    Enviar un documento por correo

    Sin **to_emails** se usa el email del cliente; si no tiene, devuelve 400.
    """
    handoff = OrchestrationService(store).build_handoff(document_type, document_id)
    to_emails = request.to_emails if request else None

    if not transport.send_document(handoff, to_emails=to_emails):
        raise TransientError(f"No se pudo enviar el documento {handoff.document.invoice_number}")

    logger.info(f"Emailed {document_type.value} {handoff.document.invoice_number}")
    return {
        "message": "Documento enviado correctamente",
        "success": True,
        "invoiceNumber": handoff.document.invoice_number,
    }


@router.get("/verify")
def verify_email_transport(transport: mail_dependency):
    """Comprobar que el servidor SMTP responde (reintenta antes de devolver 503)"""
    transport.verify()
    return {
        "status": "ok",
        "smtpServer": transport.config.smtp_server,
        "smtpPort": transport.config.smtp_port,
    }
