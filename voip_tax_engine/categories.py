"""Tax category matching for service types."""

from __future__ import annotations

from typing import Optional

from voip_tax_engine.models import ServiceType, TaxCategory
from voip_tax_engine.repositories import TaxCategoryRepository


class TaxCategoryMatcher:
    """Selects the single category that governs a service type."""

    def __init__(self, repository: TaxCategoryRepository) -> None:
        self.repository = repository

    def match(self, company_id: int, service_type: ServiceType) -> Optional[TaxCategory]:
        """
        Return the active category covering ``service_type``.

        Categories with no service types listed cover every service.
        When several qualify the lowest priority number wins.
        """
        candidates = [
            c
            for c in self.repository.active_for_company(company_id)
            if c.covers(service_type)
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda c: (c.priority, c.id))

    @staticmethod
    def is_taxable(category: Optional[TaxCategory]) -> bool:
        return category is not None and category.is_taxable
