"""
Jurisdiction rules for standard costing.

Variance reason codes, their GL accounts and the revaluation approval policy
depend only on the tenant's (home country, base currency) pair. The rules live
in the JURISDICTIONS table below; nothing else in the costing services branches
on country or currency.

Countries missing from the table use DEFAULT_JURISDICTION ("US"). Reason codes
without an explicit account post to DEFAULT_VARIANCE_ACCOUNT.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache

from app.core.tenant import TenantContext

DEFAULT_JURISDICTION = "US"
DEFAULT_VARIANCE_ACCOUNT = "5400"  # General Cost Variance
CURRENCY_VARIANCE_CODE = "EXCHANGE_RATE_FLUCTUATION"


@dataclass(frozen=True)
class VarianceReasonCode:
    code: str
    description: str
    gl_account: str


@dataclass(frozen=True)
class RevaluationPolicy:
    auto_approval_threshold: Decimal  # base currency
    large_variance_threshold: Decimal  # percent
    required_approvers: tuple[str, ...]
    compliance_requirements: tuple[str, ...]


@dataclass(frozen=True)
class Jurisdiction:
    country: str
    home_currency: str
    locale: str
    policy: RevaluationPolicy
    # None -> the default jurisdiction's catalog
    reason_codes: tuple[str, ...] | None = None
    gl_overrides: tuple[tuple[str, str], ...] = ()


REASON_DESCRIPTIONS: dict[str, str] = {
    "SUPPLIER_PRICE_HIKE": "Supplier raised purchase prices",
    "PRODUCTION_INEFFICIENCY": "Labor or machine hours above standard",
    "QUALITY_REWORK": "Rework or scrap caused by quality failures",
    "LABOR_OVERTIME": "Overtime premium paid on production labor",
    "MATERIAL_SHORTAGE": "Substitute or expedited material due to shortage",
    "EQUIPMENT_BREAKDOWN": "Downtime and repairs on production equipment",
    "REGULATORY_COMPLIANCE": "Cost of meeting new regulatory requirements",
    "INFLATION_ADJUSTMENT": "General price level increase",
    "EXCHANGE_RATE_FLUCTUATION": "Exchange rate movement against the base currency",
    "FUEL_SURCHARGE": "Transport cost increase driven by fuel prices",
    "BORDER_DELAY_COSTS": "Storage and demurrage from border delays",
    "POWER_OUTAGE_LOSSES": "Losses and generator costs from power outages",
    "IMPORT_DUTY_INCREASE": "Higher import duties on materials",
    "ROAD_CONDITION_DELAYS": "Transit delays from road conditions",
    "CUSTOMS_PROCESSING_FEES": "Customs clearance and processing fees",
    "POLITICAL_INSTABILITY": "Disruption caused by political instability",
    "SEASONAL_SUPPLY_SHORTAGE": "Seasonal shortage of local supply",
    "RAINFALL_IMPACT": "Supply or transport disruption from rainfall",
    "TRANSPORT_STRIKE": "Transport strike delaying deliveries",
    "BREXIT_IMPACT": "Tariffs and border friction after Brexit",
    "LABOR_SHORTAGE": "Premium paid to cover labor shortage",
    "ENERGY_COST_INCREASE": "Energy tariff increase",
    "TRANSPORT_DISRUPTION": "Disruption to inbound logistics",
    "MONSOON_IMPACT": "Supply or transport disruption from the monsoon",
    "LABOR_UNREST": "Output lost to labor unrest",
    "POWER_SHORTAGE": "Losses from grid power shortage",
    "RAW_MATERIAL_SHORTAGE": "Shortage of raw materials",
    "GOVERNMENT_POLICY_CHANGE": "Change in government policy affecting cost",
    "INFRASTRUCTURE_DELAYS": "Delays caused by infrastructure constraints",
}

BASE_GL_ACCOUNTS: dict[str, str] = {
    "SUPPLIER_PRICE_HIKE": "5410",  # Purchase Price Variance
    "PRODUCTION_INEFFICIENCY": "5420",  # Labor Efficiency Variance
    "MATERIAL_SHORTAGE": "5430",  # Material Usage Variance
    "EXCHANGE_RATE_FLUCTUATION": "5450",  # Currency Variance
    "QUALITY_REWORK": "5460",  # Quality Variance
    "EQUIPMENT_BREAKDOWN": "5470",  # Manufacturing Overhead Variance
}


JURISDICTIONS: dict[str, Jurisdiction] = {
    "US": Jurisdiction(
        country="US",
        home_currency="USD",
        locale="en-US",
        reason_codes=(
            "SUPPLIER_PRICE_HIKE",
            "PRODUCTION_INEFFICIENCY",
            "QUALITY_REWORK",
            "LABOR_OVERTIME",
            "MATERIAL_SHORTAGE",
            "EQUIPMENT_BREAKDOWN",
            "REGULATORY_COMPLIANCE",
            "INFLATION_ADJUSTMENT",
        ),
        policy=RevaluationPolicy(
            auto_approval_threshold=Decimal("10000"),
            large_variance_threshold=Decimal("10"),
            required_approvers=("FINANCE_MANAGER",),
            compliance_requirements=("INVENTORY_AUDIT_TRAIL", "SUPPORTING_DOCUMENTATION"),
        ),
    ),
    "UG": Jurisdiction(
        country="UG",
        home_currency="UGX",
        locale="en-UG",
        reason_codes=(
            "EXCHANGE_RATE_FLUCTUATION",
            "FUEL_SURCHARGE",
            "BORDER_DELAY_COSTS",
            "POWER_OUTAGE_LOSSES",
            "SUPPLIER_PRICE_HIKE",
            "IMPORT_DUTY_INCREASE",
            "ROAD_CONDITION_DELAYS",
            "CUSTOMS_PROCESSING_FEES",
            "POLITICAL_INSTABILITY",
            "SEASONAL_SUPPLY_SHORTAGE",
            "RAINFALL_IMPACT",
            "TRANSPORT_STRIKE",
        ),
        gl_overrides=(
            ("FUEL_SURCHARGE", "5480"),  # Transport Cost Variance
            ("BORDER_DELAY_COSTS", "5490"),  # Import Cost Variance
            ("POWER_OUTAGE_LOSSES", "5470"),
            ("IMPORT_DUTY_INCREASE", "5430"),
            ("CUSTOMS_PROCESSING_FEES", "5490"),
        ),
        policy=RevaluationPolicy(
            auto_approval_threshold=Decimal("500000"),
            large_variance_threshold=Decimal("20"),
            required_approvers=("FINANCE_MANAGER", "CFO"),
            compliance_requirements=(
                "URA_TAX_CLEARANCE",
                "INVENTORY_AUDIT_TRAIL",
                "SUPPORTING_DOCUMENTATION",
            ),
        ),
    ),
    "GB": Jurisdiction(
        country="GB",
        home_currency="GBP",
        locale="en-GB",
        reason_codes=(
            "BREXIT_IMPACT",
            "SUPPLIER_PRICE_HIKE",
            "PRODUCTION_INEFFICIENCY",
            "LABOR_SHORTAGE",
            "ENERGY_COST_INCREASE",
            "REGULATORY_COMPLIANCE",
            "MATERIAL_SHORTAGE",
            "TRANSPORT_DISRUPTION",
        ),
        policy=RevaluationPolicy(
            auto_approval_threshold=Decimal("8000"),
            large_variance_threshold=Decimal("10"),
            required_approvers=("FINANCE_MANAGER",),
            compliance_requirements=("INVENTORY_AUDIT_TRAIL", "SUPPORTING_DOCUMENTATION"),
        ),
    ),
    "IN": Jurisdiction(
        country="IN",
        home_currency="INR",
        locale="en-IN",
        reason_codes=(
            "MONSOON_IMPACT",
            "FUEL_SURCHARGE",
            "SUPPLIER_PRICE_HIKE",
            "LABOR_UNREST",
            "POWER_SHORTAGE",
            "RAW_MATERIAL_SHORTAGE",
            "GOVERNMENT_POLICY_CHANGE",
            "INFRASTRUCTURE_DELAYS",
        ),
        policy=RevaluationPolicy(
            auto_approval_threshold=Decimal("800000"),
            large_variance_threshold=Decimal("12"),
            required_approvers=("FINANCE_MANAGER",),
            compliance_requirements=("GST_RECONCILIATION", "INVENTORY_AUDIT_TRAIL"),
        ),
    ),
    "KE": Jurisdiction(
        country="KE",
        home_currency="KES",
        locale="en-KE",
        policy=RevaluationPolicy(
            auto_approval_threshold=Decimal("200000"),
            large_variance_threshold=Decimal("15"),
            required_approvers=("FINANCE_MANAGER",),
            compliance_requirements=("KRA_COMPLIANCE_CHECK", "INVENTORY_AUDIT_TRAIL"),
        ),
    ),
    "ZA": Jurisdiction(
        country="ZA",
        home_currency="ZAR",
        locale="en-ZA",
        policy=RevaluationPolicy(
            auto_approval_threshold=Decimal("50000"),
            large_variance_threshold=Decimal("12"),
            required_approvers=("FINANCE_MANAGER",),
            compliance_requirements=("SARS_COMPLIANCE", "INVENTORY_AUDIT_TRAIL"),
        ),
    ),
}


def get_jurisdiction(country: str) -> Jurisdiction:
    return JURISDICTIONS.get((country or "").upper()) or JURISDICTIONS[DEFAULT_JURISDICTION]


@lru_cache(maxsize=None)
def build_catalog(country: str, currency: str) -> tuple[VarianceReasonCode, ...]:
    """Ordered reason-code catalog for a jurisdiction key. Cached, immutable."""
    jurisdiction = get_jurisdiction(country)
    codes = jurisdiction.reason_codes
    if codes is None:
        codes = JURISDICTIONS[DEFAULT_JURISDICTION].reason_codes or ()
    if currency != jurisdiction.home_currency and CURRENCY_VARIANCE_CODE not in codes:
        codes = codes + (CURRENCY_VARIANCE_CODE,)

    overrides = dict(jurisdiction.gl_overrides)
    return tuple(
        VarianceReasonCode(
            code=code,
            description=REASON_DESCRIPTIONS.get(code, code.replace("_", " ").capitalize()),
            gl_account=overrides.get(code) or BASE_GL_ACCOUNTS.get(code, DEFAULT_VARIANCE_ACCOUNT),
        )
        for code in codes
    )


class LocalizationManager:
    """Per-request view over the jurisdiction rules of one tenant."""

    def __init__(self, home_country: str | None, base_currency: str | None):
        self.home_country = (home_country or DEFAULT_JURISDICTION).upper()
        self.base_currency = (base_currency or "USD").upper()
        self.jurisdiction = get_jurisdiction(self.home_country)

    @classmethod
    def for_tenant(cls, tenant: TenantContext) -> "LocalizationManager":
        return cls(tenant.home_country, tenant.base_currency)

    def get_variance_reason_codes(self) -> tuple[VarianceReasonCode, ...]:
        return build_catalog(self.home_country, self.base_currency)

    def get_variance_gl_account_mapping(self) -> dict[str, str]:
        return {rc.code: rc.gl_account for rc in self.get_variance_reason_codes()}

    def validate_reason_code(self, code: str) -> bool:
        return any(rc.code == code for rc in self.get_variance_reason_codes())

    def gl_account_for(self, code: str | None) -> str | None:
        if not code:
            return None
        return self.get_variance_gl_account_mapping().get(code)

    def get_revaluation_policy(self) -> RevaluationPolicy:
        return self.jurisdiction.policy

    def revaluation_warnings(self, percentage_change: Decimal | None, new_total: Decimal) -> list[str]:
        warnings: list[str] = []
        policy = self.get_revaluation_policy()
        if percentage_change is not None and abs(percentage_change) > policy.large_variance_threshold:
            warnings.append(
                f"Large cost change of {percentage_change:.1f}% may require additional approval"
            )
        # High-inflation environment
        if self.jurisdiction.country == "UG" and percentage_change is not None and percentage_change > 15:
            warnings.append("High cost increase detected - consider currency impact analysis")
        if new_total <= 0:
            warnings.append("Zero unit cost will affect gross margin calculations")
        return warnings

    def describe(self) -> dict:
        policy = self.get_revaluation_policy()
        return {
            "country": self.home_country,
            "jurisdiction": self.jurisdiction.country,
            "base_currency": self.base_currency,
            "locale": self.jurisdiction.locale,
            "auto_approval_threshold": str(policy.auto_approval_threshold),
            "large_variance_threshold": str(policy.large_variance_threshold),
            "required_approvers": list(policy.required_approvers),
            "compliance_requirements": list(policy.compliance_requirements),
        }
