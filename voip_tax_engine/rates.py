"""
Rate formulas, federal telecom constants, and the built-in reference set.

Federal excise tax and the Universal Service Fund are statutory and
computed directly; every other tax or fee is a ``RateDefinition``
evaluated by ``compute_rate_amount``.

The seed data below covers the federal jurisdiction plus sample
Texas, California and New York state and local authorities. Amounts
are representative telecom taxes and E911 fees and are intended for
demos and tests, not for filing.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from voip_tax_engine.errors import MissingUSFRateError
from voip_tax_engine.models import (
    ZERO,
    Jurisdiction,
    JurisdictionLevel,
    RateDefinition,
    RateType,
    ServiceType,
    TaxCategory,
    TaxLevel,
)
from voip_tax_engine.repositories import (
    InMemoryExemptionRepository,
    InMemoryJurisdictionRepository,
    InMemoryRateRepository,
    InMemoryTaxCategoryRepository,
    InMemoryUSFRateRepository,
    ReferenceData,
    USFRateRepository,
)

logger = logging.getLogger(__name__)

FEDERAL_EXCISE_TAX_RATE = Decimal("3.0")  # percent
FEDERAL_EXCISE_THRESHOLD = Decimal("0.20")  # exclusive
DEFAULT_USF_RATE = Decimal("33.4")  # percent, reset quarterly by the FCC

FEDERAL_EXCISE_SERVICES = frozenset(
    {
        ServiceType.LOCAL,
        ServiceType.LONG_DISTANCE,
        ServiceType.VOIP_FIXED,
        ServiceType.VOIP_NOMADIC,
    }
)
USF_SERVICES = FEDERAL_EXCISE_SERVICES | {ServiceType.INTERNATIONAL}


def compute_rate_amount(
    rate: RateDefinition,
    amount: Decimal,
    line_count: int = 1,
    minutes: Decimal = ZERO,
    precision: int = 4,
) -> Decimal:
    """
    Evaluate one rate definition against a charge.

    Percentage rates apply to the amount, fixed rates are flat (times
    the line count when defined per line) and usage rates charge the
    per-minute amount for every minute. A minimum threshold, when set,
    must be strictly exceeded by the amount.
    """
    return rate.calculate(
        amount, line_count=line_count, minutes=minutes, precision=precision
    )


def quarter_of(day: date) -> int:
    return (day.month - 1) // 3 + 1


class USFRateSchedule:
    """
    Resolves the USF contribution factor for a calculation date.

    Rates are looked up per (year, quarter). When none is on file the
    fallback rate is used, or ``MissingUSFRateError`` is raised under
    the ``strict`` policy.
    """

    def __init__(
        self,
        repository: USFRateRepository,
        fallback_rate: Decimal = DEFAULT_USF_RATE,
        policy: str = "default",
    ) -> None:
        self.repository = repository
        self.fallback_rate = fallback_rate
        self.policy = policy

    def rate_on(self, day: date) -> Decimal:
        quarter = quarter_of(day)
        rate: Optional[Decimal] = self.repository.rate_for(day.year, quarter)
        if rate is not None:
            return rate
        if self.policy == "strict":
            raise MissingUSFRateError(day.year, quarter)
        logger.warning(
            "No USF rate on file for Q%d %d; using fallback %s%%",
            quarter,
            day.year,
            self.fallback_rate,
        )
        return self.fallback_rate


# ---------------------------------------------------------------------------
# Built-in reference data
# ---------------------------------------------------------------------------

DEFAULT_COMPANY_ID = 1

TELECOM_CATEGORY_ID = 1
INTERNET_CATEGORY_ID = 2

_CATEGORY_DATA: list[dict] = [
    {
        "id": TELECOM_CATEGORY_ID,
        "name": "Telecommunications Services",
        "services": USF_SERVICES,
        "priority": 10,
        "taxable": True,
    },
    {
        "id": INTERNET_CATEGORY_ID,
        "name": "Internet Access",
        "services": frozenset({ServiceType.DATA}),
        "priority": 20,
        "taxable": False,  # Internet Tax Freedom Act
    },
]

_JURISDICTION_DATA: list[dict] = [
    {
        "id": 1,
        "name": "United States Federal",
        "level": JurisdictionLevel.FEDERAL,
        "code": "US-FED",
        "authority": "Federal Communications Commission",
        "priority": 1,
    },
    {
        "id": 10,
        "name": "Texas",
        "level": JurisdictionLevel.STATE,
        "code": "TX",
        "state": "TX",
        "authority": "Texas Comptroller of Public Accounts",
        "priority": 10,
    },
    {
        "id": 11,
        "name": "Harris County",
        "level": JurisdictionLevel.COUNTY,
        "code": "TX-HARRIS",
        "state": "TX",
        "county": "Harris",
        "authority": "Greater Harris County 9-1-1 Emergency Network",
        "priority": 20,
    },
    {
        "id": 12,
        "name": "City of Houston",
        "level": JurisdictionLevel.CITY,
        "code": "TX-HOUSTON",
        "state": "TX",
        "city": "Houston",
        "authority": "City of Houston",
        "priority": 30,
    },
    {
        "id": 20,
        "name": "California",
        "level": JurisdictionLevel.STATE,
        "code": "CA",
        "state": "CA",
        "authority": "California Department of Tax and Fee Administration",
        "priority": 10,
    },
    {
        "id": 21,
        "name": "Los Angeles County",
        "level": JurisdictionLevel.COUNTY,
        "code": "CA-LA-COUNTY",
        "state": "CA",
        "county": "Los Angeles",
        "authority": "Los Angeles County Treasurer and Tax Collector",
        "priority": 20,
    },
    {
        "id": 22,
        "name": "City of Los Angeles",
        "level": JurisdictionLevel.CITY,
        "code": "CA-LA",
        "state": "CA",
        "city": "Los Angeles",
        "authority": "Los Angeles Office of Finance",
        "priority": 30,
    },
    {
        "id": 30,
        "name": "New York",
        "level": JurisdictionLevel.STATE,
        "code": "NY",
        "state": "NY",
        "authority": "New York State Department of Taxation and Finance",
        "priority": 10,
    },
    {
        "id": 31,
        "name": "New York City",
        "level": JurisdictionLevel.CITY,
        "code": "NY-NYC",
        "state": "NY",
        "city": "New York",
        "authority": "NYC Department of Finance",
        "priority": 30,
    },
    {
        "id": 32,
        "name": "Metropolitan Commuter Transportation District",
        "level": JurisdictionLevel.SPECIAL_DISTRICT,
        "code": "NY-MCTD",
        "state": "NY",
        "postal_codes": ("100*", "101*", "102*", "103*", "104*", "112*", "113*", "114*"),
        "authority": "New York State Department of Taxation and Finance",
        "priority": 40,
    },
]

# (jurisdiction_id, name, tax_type, rate_type, level, rate, extra)
_RATE_DATA: list[tuple] = [
    (10, "Texas Sales Tax on Telecommunications", "state_sales_tax",
     RateType.PERCENTAGE, TaxLevel.STATE, "6.25", {"priority": 10}),
    (10, "Texas Universal Service Fund", "state_usf",
     RateType.PERCENTAGE, TaxLevel.STATE, "3.3",
     {"priority": 20, "services": FEDERAL_EXCISE_SERVICES}),
    (10, "Texas 9-1-1 Equalization Surcharge", "e911",
     RateType.USAGE, TaxLevel.STATE, "0.0006",
     {"priority": 30, "services": frozenset({ServiceType.LONG_DISTANCE})}),
    (11, "Harris County 9-1-1 Emergency Service Fee", "e911",
     RateType.FIXED, TaxLevel.LOCAL, "0.50", {"priority": 10, "per_line": True}),
    (12, "City of Houston Sales Tax", "local_sales_tax",
     RateType.PERCENTAGE, TaxLevel.LOCAL, "1.0", {"priority": 20}),
    (20, "California 911 Surcharge", "e911",
     RateType.FIXED, TaxLevel.STATE, "0.30", {"priority": 10, "per_line": True}),
    (20, "California Universal LifeLine Surcharge", "state_usf",
     RateType.PERCENTAGE, TaxLevel.STATE, "4.75", {"priority": 20}),
    (21, "Los Angeles County Utility Users Tax", "local_utility_tax",
     RateType.PERCENTAGE, TaxLevel.LOCAL, "4.5", {"priority": 10}),
    (22, "Los Angeles Communications Users Tax", "local_utility_tax",
     RateType.PERCENTAGE, TaxLevel.LOCAL, "9.0", {"priority": 20}),
    (30, "New York Excise Tax on Telecommunication Services", "state_excise",
     RateType.PERCENTAGE, TaxLevel.STATE, "2.5", {"priority": 10}),
    (30, "New York Public Safety Communications Surcharge", "e911",
     RateType.FIXED, TaxLevel.STATE, "1.20", {"priority": 20, "per_line": True}),
    (31, "New York City Utility Tax", "local_utility_tax",
     RateType.PERCENTAGE, TaxLevel.LOCAL, "2.35", {"priority": 10}),
    (32, "MCTD Telecommunications Surcharge", "special_district_tax",
     RateType.PERCENTAGE, TaxLevel.LOCAL, "0.375", {"priority": 30}),
]


def default_reference_data(company_id: int = DEFAULT_COMPANY_ID) -> ReferenceData:
    """Build the built-in reference set for one company scope."""
    authorities: dict[int, str] = {}
    jurisdictions = InMemoryJurisdictionRepository()
    for data in _JURISDICTION_DATA:
        authorities[data["id"]] = data["authority"]
        jurisdictions.add(
            Jurisdiction(
                id=data["id"],
                company_id=company_id,
                name=data["name"],
                level=data["level"],
                code=data["code"],
                state_code=data.get("state"),
                county=data.get("county"),
                city=data.get("city"),
                postal_codes=data.get("postal_codes", ()),
                authority_name=data["authority"],
                priority=data["priority"],
            )
        )

    categories = InMemoryTaxCategoryRepository(
        TaxCategory(
            id=data["id"],
            company_id=company_id,
            name=data["name"],
            service_types=data["services"],
            priority=data["priority"],
            is_taxable=data["taxable"],
        )
        for data in _CATEGORY_DATA
    )

    rates = InMemoryRateRepository()
    for rate_id, row in enumerate(_RATE_DATA, start=100):
        jurisdiction_id, name, tax_type, rate_type, level, value, extra = row
        amount = Decimal(value)
        rates.add(
            RateDefinition(
                id=rate_id,
                company_id=company_id,
                jurisdiction_id=jurisdiction_id,
                category_id=TELECOM_CATEGORY_ID,
                tax_name=name,
                tax_type=tax_type,
                rate_type=rate_type,
                level=level,
                percentage_rate=amount if rate_type is RateType.PERCENTAGE else None,
                fixed_amount=None if rate_type is RateType.PERCENTAGE else amount,
                per_line=extra.get("per_line", False),
                service_types=extra.get("services", frozenset()),
                authority_name=authorities[jurisdiction_id],
                priority=extra["priority"],
            )
        )

    return ReferenceData(
        jurisdictions=jurisdictions,
        categories=categories,
        rates=rates,
        exemptions=InMemoryExemptionRepository(),
        usf_rates=InMemoryUSFRateRepository(),
    )
