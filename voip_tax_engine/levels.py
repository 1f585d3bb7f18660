"""
Federal, state and local rate calculators.

Each calculator turns the rate definitions for its level into itemized
tax lines. State and local calculators walk every resolved
jurisdiction at their level, so overlapping authorities (county, city
and special district) each contribute their own lines. The federal
calculator adds the statutory excise tax and USF contribution ahead of
any federal fees on file.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from voip_tax_engine.jurisdictions import JurisdictionResolver
from voip_tax_engine.models import (
    ZERO,
    CalculationRequest,
    Jurisdiction,
    RateType,
    TaxCategory,
    TaxLevel,
    TaxLine,
    round_amount,
)
from voip_tax_engine.rates import (
    FEDERAL_EXCISE_SERVICES,
    FEDERAL_EXCISE_TAX_RATE,
    FEDERAL_EXCISE_THRESHOLD,
    USF_SERVICES,
    USFRateSchedule,
    compute_rate_amount,
)
from voip_tax_engine.repositories import RateRepository


class LevelTaxCalculator:
    """Evaluates the rate definitions of one tax level."""

    level: TaxLevel

    def __init__(self, rates: RateRepository, precision: int = 4) -> None:
        self.rates = rates
        self.precision = precision

    def calculate(
        self,
        company_id: int,
        jurisdictions: list[Jurisdiction],
        category: TaxCategory,
        request: CalculationRequest,
        on: date,
    ) -> list[TaxLine]:
        lines: list[TaxLine] = []
        for jurisdiction in JurisdictionResolver.by_level(jurisdictions, self.level):
            lines.extend(
                self._evaluate(company_id, jurisdiction, category, request, on)
            )
        return lines

    def _evaluate(
        self,
        company_id: int,
        jurisdiction: Jurisdiction,
        category: TaxCategory,
        request: CalculationRequest,
        on: date,
    ) -> list[TaxLine]:
        lines: list[TaxLine] = []
        definitions = self.rates.rates_for(
            company_id, jurisdiction.id, category.id, self.level
        )
        for rate in definitions:
            if not rate.is_effective(on) or not rate.applies_to(request.service_type):
                continue

            amount = compute_rate_amount(
                rate,
                request.amount,
                line_count=request.line_count,
                minutes=request.minutes,
                precision=self.precision,
            )
            if amount <= ZERO:
                continue

            lines.append(
                TaxLine(
                    tax_name=rate.tax_name,
                    tax_type=rate.tax_type,
                    rate_type=rate.rate_type,
                    rate=rate.rate,
                    base_amount=request.amount,
                    tax_amount=amount,
                    authority=rate.authority_name or jurisdiction.authority_name,
                    level=self.level,
                    jurisdiction=jurisdiction.name,
                    jurisdiction_id=jurisdiction.id,
                    tax_rate_id=rate.id,
                )
            )
        return lines


class StateTaxCalculator(LevelTaxCalculator):
    level = TaxLevel.STATE


class LocalTaxCalculator(LevelTaxCalculator):
    level = TaxLevel.LOCAL


class FederalTaxCalculator(LevelTaxCalculator):
    """
    Federal excise tax, USF, then any federal fees on file.

    Excise tax is 3% on excise-eligible services, and only when the
    charge is strictly above $0.20. USF uses the contribution factor
    for the calculation date's quarter.
    """

    level = TaxLevel.FEDERAL

    def __init__(
        self,
        rates: RateRepository,
        usf_schedule: USFRateSchedule,
        precision: int = 4,
    ) -> None:
        super().__init__(rates, precision)
        self.usf_schedule = usf_schedule

    def calculate(
        self,
        company_id: int,
        jurisdictions: list[Jurisdiction],
        category: TaxCategory,
        request: CalculationRequest,
        on: date,
    ) -> list[TaxLine]:
        federal: Optional[Jurisdiction] = next(
            iter(JurisdictionResolver.by_level(jurisdictions, TaxLevel.FEDERAL)), None
        )
        amount = request.amount
        lines: list[TaxLine] = []

        if (
            request.service_type in FEDERAL_EXCISE_SERVICES
            and amount > FEDERAL_EXCISE_THRESHOLD
        ):
            lines.append(
                self._statutory_line(
                    "Federal Excise Tax",
                    "federal_excise_tax",
                    FEDERAL_EXCISE_TAX_RATE,
                    amount,
                    "Internal Revenue Service",
                    federal,
                )
            )

        if request.service_type in USF_SERVICES:
            usf_rate = self.usf_schedule.rate_on(on)
            lines.append(
                self._statutory_line(
                    "Universal Service Fund",
                    "universal_service_fund",
                    usf_rate,
                    amount,
                    "Federal Communications Commission",
                    federal,
                )
            )

        lines = [line for line in lines if line.tax_amount > ZERO]
        lines.extend(
            super().calculate(company_id, jurisdictions, category, request, on)
        )
        return lines

    def _statutory_line(
        self,
        name: str,
        tax_type: str,
        rate: Decimal,
        amount: Decimal,
        authority: str,
        federal: Optional[Jurisdiction],
    ) -> TaxLine:
        return TaxLine(
            tax_name=name,
            tax_type=tax_type,
            rate_type=RateType.PERCENTAGE,
            rate=rate,
            base_amount=amount,
            tax_amount=round_amount(amount * rate / Decimal(100), self.precision),
            authority=authority,
            level=TaxLevel.FEDERAL,
            jurisdiction=federal.name if federal else None,
            jurisdiction_id=federal.id if federal else None,
        )
