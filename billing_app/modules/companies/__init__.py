from .utils import COMPANY_PREFIXES, DEFAULT_COMPANY_NAME, resolve_company_prefix

__all__ = ["COMPANY_PREFIXES", "DEFAULT_COMPANY_NAME", "resolve_company_prefix"]
