from typing import Annotated
from fastapi import Depends

from billing_app.modules.email.service import MailTransport, MailTransportConfig


def get_mail_transport() -> MailTransport:
    """Transporte SMTP configurado desde settings"""
    return MailTransport(MailTransportConfig.from_settings())


mail_dependency = Annotated[MailTransport, Depends(get_mail_transport)]
