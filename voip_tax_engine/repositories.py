"""
Reference data access.

The engine never queries storage directly. It reads jurisdictions,
categories, rate definitions, exemptions and USF factors through the
protocols below, so any persistence technology can back it. The
in-memory implementations are used by the CLI, the YAML loader and the
tests.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional, Protocol, runtime_checkable

from voip_tax_engine.models import (
    Exemption,
    ExemptionUsage,
    Jurisdiction,
    RateDefinition,
    TaxCategory,
    TaxLevel,
)


@runtime_checkable
class JurisdictionRepository(Protocol):
    def active_for_company(self, company_id: int) -> list[Jurisdiction]: ...

    def get_many(self, company_id: int, ids: Iterable[int]) -> list[Jurisdiction]: ...


@runtime_checkable
class TaxCategoryRepository(Protocol):
    def active_for_company(self, company_id: int) -> list[TaxCategory]: ...


@runtime_checkable
class RateRepository(Protocol):
    def rates_for(
        self,
        company_id: int,
        jurisdiction_id: int,
        category_id: int,
        level: TaxLevel,
    ) -> list[RateDefinition]: ...

    def all_for_company(self, company_id: int) -> list[RateDefinition]: ...


@runtime_checkable
class ExemptionRepository(Protocol):
    def for_client(self, company_id: int, client_id: int) -> list[Exemption]: ...


@runtime_checkable
class USFRateRepository(Protocol):
    def rate_for(self, year: int, quarter: int) -> Optional[Decimal]: ...


@runtime_checkable
class ExemptionUsageRepository(Protocol):
    def add(self, usage: ExemptionUsage) -> None: ...

    def count_for_month(self, exemption_id: int, year: int, month: int) -> int: ...


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------


class InMemoryJurisdictionRepository:
    def __init__(self, jurisdictions: Iterable[Jurisdiction] = ()) -> None:
        self._by_id: dict[int, Jurisdiction] = {j.id: j for j in jurisdictions}

    def add(self, jurisdiction: Jurisdiction) -> None:
        self._by_id[jurisdiction.id] = jurisdiction

    def active_for_company(self, company_id: int) -> list[Jurisdiction]:
        return [
            j
            for j in self._by_id.values()
            if j.company_id == company_id and j.is_active
        ]

    def get_many(self, company_id: int, ids: Iterable[int]) -> list[Jurisdiction]:
        found = (self._by_id.get(i) for i in ids)
        return [j for j in found if j is not None and j.company_id == company_id]

    def all(self) -> list[Jurisdiction]:
        return sorted(self._by_id.values(), key=lambda j: j.id)


class InMemoryTaxCategoryRepository:
    def __init__(self, categories: Iterable[TaxCategory] = ()) -> None:
        self._categories: list[TaxCategory] = list(categories)

    def add(self, category: TaxCategory) -> None:
        self._categories.append(category)

    def active_for_company(self, company_id: int) -> list[TaxCategory]:
        return [
            c
            for c in self._categories
            if c.company_id == company_id and c.is_active
        ]


class InMemoryRateRepository:
    def __init__(self, rates: Iterable[RateDefinition] = ()) -> None:
        self._rates: list[RateDefinition] = list(rates)

    def add(self, rate: RateDefinition) -> None:
        self._rates.append(rate)

    def rates_for(
        self,
        company_id: int,
        jurisdiction_id: int,
        category_id: int,
        level: TaxLevel,
    ) -> list[RateDefinition]:
        matching = [
            r
            for r in self._rates
            if r.company_id == company_id
            and r.jurisdiction_id == jurisdiction_id
            and r.category_id == category_id
            and r.level is level
            and r.is_active
        ]
        return sorted(matching, key=lambda r: (r.priority, r.id))

    def all_for_company(self, company_id: int) -> list[RateDefinition]:
        return sorted(
            (r for r in self._rates if r.company_id == company_id),
            key=lambda r: (r.jurisdiction_id, r.priority, r.id),
        )


class InMemoryExemptionRepository:
    def __init__(self, exemptions: Iterable[Exemption] = ()) -> None:
        self._exemptions: list[Exemption] = list(exemptions)

    def add(self, exemption: Exemption) -> None:
        self._exemptions.append(exemption)

    def for_client(self, company_id: int, client_id: int) -> list[Exemption]:
        return [
            e
            for e in self._exemptions
            if e.company_id == company_id and e.client_id == client_id
        ]


class InMemoryUSFRateRepository:
    """Quarterly USF contribution factors keyed by (year, quarter)."""

    def __init__(self, rates: Optional[dict[tuple[int, int], Decimal]] = None) -> None:
        self._rates: dict[tuple[int, int], Decimal] = dict(rates or {})
        self._lock = threading.Lock()

    def set_rate(self, year: int, quarter: int, rate: Decimal) -> None:
        if quarter not in (1, 2, 3, 4):
            raise ValueError(f"Quarter must be 1-4, got {quarter}")
        with self._lock:
            self._rates[(year, quarter)] = rate

    def rate_for(self, year: int, quarter: int) -> Optional[Decimal]:
        with self._lock:
            return self._rates.get((year, quarter))

    def quarters(self) -> list[tuple[int, int]]:
        with self._lock:
            return sorted(self._rates)


class InMemoryExemptionUsageRepository:
    """Append-only store of exemption usage audit rows."""

    def __init__(self) -> None:
        self._rows: list[ExemptionUsage] = []
        self._lock = threading.Lock()

    def add(self, usage: ExemptionUsage) -> None:
        with self._lock:
            self._rows.append(usage)

    def count_for_month(self, exemption_id: int, year: int, month: int) -> int:
        with self._lock:
            return sum(
                1
                for row in self._rows
                if row.exemption_id == exemption_id
                and row.used_at.year == year
                and row.used_at.month == month
            )

    def all(self) -> list[ExemptionUsage]:
        with self._lock:
            return list(self._rows)


@dataclass
class ReferenceData:
    """The repositories one engine instance reads from."""

    jurisdictions: JurisdictionRepository = field(
        default_factory=InMemoryJurisdictionRepository
    )
    categories: TaxCategoryRepository = field(
        default_factory=InMemoryTaxCategoryRepository
    )
    rates: RateRepository = field(default_factory=InMemoryRateRepository)
    exemptions: ExemptionRepository = field(
        default_factory=InMemoryExemptionRepository
    )
    usf_rates: USFRateRepository = field(default_factory=InMemoryUSFRateRepository)
    usage: ExemptionUsageRepository = field(
        default_factory=InMemoryExemptionUsageRepository
    )
