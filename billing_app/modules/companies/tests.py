"""
Tests para el directorio de empresas
"""

import pytest

from billing_app.modules.companies.utils import DEFAULT_COMPANY_NAME, resolve_company_prefix


class TestResolveCompanyPrefix:
    """Tests para resolve_company_prefix"""

    @pytest.mark.parametrize("name,prefix", [
        ("WYENFOS INFOTECH", "WIT"),
        ("WYENFOS GOLD AND DIAMONDS", "WGD"),
        ("WYENFOS GOLD & DIAMONDS", "WGD"),
        ("WYENFOS ADS", "WAD"),
        ("WYENFOS CASH VAPASE", "WCV"),
        ("AYUR FOR HERBALS INDIA", "ALH"),
        ("WYENFOS", "WNF"),
        ("WYENFOS PURE DROPS", "WPD"),
    ])
    def test_known_companies(self, name, prefix):
        assert resolve_company_prefix(name) == prefix

    def test_unknown_company_uses_first_three_letters(self):
        assert resolve_company_prefix("kerala traders") == "KER"

    def test_missing_name_uses_default_company(self):
        assert resolve_company_prefix(None) == resolve_company_prefix(DEFAULT_COMPANY_NAME) == "WNF"
        assert resolve_company_prefix("") == "WNF"

    def test_extra_prefixes(self):
        assert resolve_company_prefix("Kerala Traders", {"Kerala Traders": "KT"}) == "KT"
