"""
Directorio de empresas emisoras y sus prefijos de numeración.

El prefijo de una empresa desconocida son los tres primeros caracteres del
nombre en mayúsculas; hay documentos históricos numerados así, por lo que
la regla no debe cambiar.
"""
from typing import Dict, Optional

from billing_app.core.config import settings

DEFAULT_COMPANY_NAME = "WYENFOS"

COMPANY_PREFIXES: Dict[str, str] = {
    "WYENFOS INFOTECH": "WIT",
    "WYENFOS GOLD AND DIAMONDS": "WGD",
    "WYENFOS GOLD & DIAMONDS": "WGD",
    "WYENFOS ADS": "WAD",
    "WYENFOS CASH VAPASE": "WCV",
    "AYUR FOR HERBALS INDIA": "ALH",
    "WYENFOS": "WNF",
    "WYENFOS PURE DROPS": "WPD",
}


def resolve_company_prefix(company_name: Optional[str], extra_prefixes: Optional[Dict[str, str]] = None) -> str:
    """Prefijo de numeración para una empresa"""
    name = company_name or DEFAULT_COMPANY_NAME
    directory = {**COMPANY_PREFIXES, **settings.COMPANY_PREFIXES, **(extra_prefixes or {})}
    if name in directory:
        return directory[name]
    return name[:3].upper()
