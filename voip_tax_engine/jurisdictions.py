"""
Jurisdiction resolution.

Maps a service address to every taxing authority that covers it: the
federal jurisdiction, the state, and any number of overlapping local
authorities (county, city, municipality, special district).
"""

from __future__ import annotations

import logging
from typing import Optional

from voip_tax_engine.cache import (
    CacheBackend,
    make_jurisdiction_key,
    safe_get,
    safe_set,
)
from voip_tax_engine.models import (
    Jurisdiction,
    JurisdictionLevel,
    ServiceAddress,
    TaxLevel,
)
from voip_tax_engine.repositories import JurisdictionRepository

logger = logging.getLogger(__name__)

_LEVEL_ORDER = {TaxLevel.FEDERAL: 0, TaxLevel.STATE: 1, TaxLevel.LOCAL: 2}


def _ordered(jurisdictions: list[Jurisdiction]) -> list[Jurisdiction]:
    return sorted(
        jurisdictions,
        key=lambda j: (_LEVEL_ORDER[j.level.tax_level], j.priority, j.id),
    )


class JurisdictionResolver:
    """
    Resolves the jurisdictions that apply to a service address.

    An empty address yields only the federal jurisdiction. Matching is
    non-exclusive and an address matching nothing is not an error.
    Resolved ids are cached per company and address.
    """

    def __init__(
        self,
        repository: JurisdictionRepository,
        cache: Optional[CacheBackend] = None,
        cache_ttl: int = 3600,
        default_country: str = "US",
    ) -> None:
        self.repository = repository
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.default_country = default_country

    def resolve(self, company_id: int, address: ServiceAddress) -> list[Jurisdiction]:
        active = self.repository.active_for_company(company_id)

        if address.is_empty:
            return _ordered(
                [j for j in active if j.level is JurisdictionLevel.FEDERAL]
            )

        key = make_jurisdiction_key(company_id, address.normalized())
        cached_ids = safe_get(self.cache, key)
        if cached_ids is not None:
            cached = self.repository.get_many(company_id, cached_ids)
            return _ordered([j for j in cached if j.is_active])

        matched = _ordered(
            [j for j in active if j.matches(address, self.default_country)]
        )
        safe_set(self.cache, key, [j.id for j in matched], self.cache_ttl)

        if not any(j.level is not JurisdictionLevel.FEDERAL for j in matched):
            logger.info(
                "No state or local jurisdiction matches address %s",
                address.normalized(),
            )
        return matched

    @staticmethod
    def by_level(
        jurisdictions: list[Jurisdiction], level: TaxLevel
    ) -> list[Jurisdiction]:
        return [j for j in jurisdictions if j.level.tax_level is level]
