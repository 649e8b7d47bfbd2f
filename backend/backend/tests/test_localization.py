from __future__ import annotations

from decimal import Decimal

from app.core.tenant import TenantContext
from services.costing.localization import (
    CURRENCY_VARIANCE_CODE,
    DEFAULT_JURISDICTION,
    LocalizationManager,
    build_catalog,
)


US_MAPPING = {
    "SUPPLIER_PRICE_HIKE": "5410",
    "PRODUCTION_INEFFICIENCY": "5420",
    "QUALITY_REWORK": "5460",
    "LABOR_OVERTIME": "5400",
    "MATERIAL_SHORTAGE": "5430",
    "EQUIPMENT_BREAKDOWN": "5470",
    "REGULATORY_COMPLIANCE": "5400",
    "INFLATION_ADJUSTMENT": "5400",
}


def test_us_catalog_order_and_accounts() -> None:
    loc = LocalizationManager("US", "USD")
    assert [rc.code for rc in loc.get_variance_reason_codes()] == list(US_MAPPING)
    assert loc.get_variance_gl_account_mapping() == US_MAPPING


def test_catalog_depends_only_on_jurisdiction_pair() -> None:
    a = LocalizationManager.for_tenant(TenantContext(id="t1", slug="a", home_country="UG", base_currency="UGX"))
    b = LocalizationManager.for_tenant(TenantContext(id="t2", slug="b", home_country="ug", base_currency="ugx"))

    assert a.get_variance_reason_codes() == b.get_variance_reason_codes()
    assert a.get_variance_gl_account_mapping() == b.get_variance_gl_account_mapping()
    # Same cached tuple
    assert a.get_variance_reason_codes() is b.get_variance_reason_codes()


def test_catalog_is_cached_per_key() -> None:
    build_catalog.cache_clear()
    LocalizationManager("ZA", "ZAR").get_variance_reason_codes()
    LocalizationManager("ZA", "ZAR").get_variance_reason_codes()
    info = build_catalog.cache_info()
    assert info.misses == 1
    assert info.hits == 1


def test_mapping_is_a_copy() -> None:
    loc = LocalizationManager("US", "USD")
    loc.get_variance_gl_account_mapping()["SUPPLIER_PRICE_HIKE"] = "9999"
    assert loc.get_variance_gl_account_mapping()["SUPPLIER_PRICE_HIKE"] == "5410"


def test_unknown_country_uses_default_jurisdiction() -> None:
    loc = LocalizationManager("ZZ", "USD")
    assert loc.jurisdiction.country == DEFAULT_JURISDICTION
    assert loc.get_variance_gl_account_mapping() == US_MAPPING


def test_foreign_base_currency_adds_exchange_rate_code() -> None:
    codes = LocalizationManager("US", "EUR").get_variance_reason_codes()
    assert codes[-1].code == CURRENCY_VARIANCE_CODE
    assert codes[-1].gl_account == "5450"
    assert len(codes) == len(US_MAPPING) + 1


def test_exchange_rate_code_is_not_duplicated() -> None:
    codes = [rc.code for rc in LocalizationManager("UG", "USD").get_variance_reason_codes()]
    assert codes.count(CURRENCY_VARIANCE_CODE) == 1
    assert codes[0] == CURRENCY_VARIANCE_CODE


def test_uganda_overrides() -> None:
    mapping = LocalizationManager("UG", "UGX").get_variance_gl_account_mapping()
    assert len(mapping) == 12
    assert mapping["FUEL_SURCHARGE"] == "5480"
    assert mapping["BORDER_DELAY_COSTS"] == "5490"
    assert mapping["SUPPLIER_PRICE_HIKE"] == "5410"
    assert mapping["ROAD_CONDITION_DELAYS"] == "5400"


def test_kenya_uses_default_catalog_with_own_policy() -> None:
    loc = LocalizationManager("KE", "KES")
    assert loc.get_variance_gl_account_mapping() == US_MAPPING
    policy = loc.get_revaluation_policy()
    assert policy.auto_approval_threshold == Decimal("200000")
    assert "KRA_COMPLIANCE_CHECK" in policy.compliance_requirements


def test_validate_reason_code() -> None:
    loc = LocalizationManager("GB", "GBP")
    assert loc.validate_reason_code("BREXIT_IMPACT")
    assert not loc.validate_reason_code("MONSOON_IMPACT")
    assert loc.gl_account_for(None) is None
    assert loc.gl_account_for("BREXIT_IMPACT") == "5400"


def test_revaluation_warnings() -> None:
    ug = LocalizationManager("UG", "UGX")
    assert ug.revaluation_warnings(Decimal("18"), Decimal("10")) == [
        "High cost increase detected - consider currency impact analysis"
    ]
    assert len(ug.revaluation_warnings(Decimal("25"), Decimal("10"))) == 2
    assert LocalizationManager("US", "USD").revaluation_warnings(Decimal("-5"), Decimal("10")) == []


def test_describe() -> None:
    cfg = LocalizationManager("IN", "INR").describe()
    assert cfg["locale"] == "en-IN"
    assert cfg["required_approvers"] == ["FINANCE_MANAGER"]
    assert cfg["large_variance_threshold"] == "12"


def test_only_uganda_overrides_accounts() -> None:
    mapping = LocalizationManager("IN", "INR").get_variance_gl_account_mapping()
    assert mapping["FUEL_SURCHARGE"] == "5400"
    assert mapping["POWER_SHORTAGE"] == "5400"
    assert mapping["SUPPLIER_PRICE_HIKE"] == "5410"
