"""
Client exemptions: lookup, application to tax lines, and audit.

Exemptions are resolved once per calculation, applied level by level,
and only written to the usage audit trail when the caller finalizes a
billing document.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Callable, Iterable, Optional

from voip_tax_engine.models import (
    ZERO,
    AppliedExemption,
    DocumentReference,
    Exemption,
    ExemptionUsage,
    Jurisdiction,
    ServiceType,
    TaxLine,
)
from voip_tax_engine.repositories import (
    ExemptionRepository,
    ExemptionUsageRepository,
)

logger = logging.getLogger(__name__)


class ExemptionResolver:
    """Finds a client's exemptions that are valid for a calculation."""

    def __init__(
        self,
        repository: ExemptionRepository,
        usage: Optional[ExemptionUsageRepository] = None,
    ) -> None:
        self.repository = repository
        self.usage = usage

    def resolve(
        self,
        company_id: int,
        client_id: Optional[int],
        jurisdictions: Iterable[Jurisdiction],
        on: date,
    ) -> list[Exemption]:
        """
        Valid blanket or jurisdiction-scoped exemptions, by priority.

        No client means no exemptions.
        """
        if client_id is None:
            return []
        jurisdiction_ids = {j.id for j in jurisdictions}
        found = [
            e
            for e in self.repository.for_client(company_id, client_id)
            if e.is_valid_on(on)
            and (e.is_blanket or e.jurisdiction_id in jurisdiction_ids)
        ]
        return sorted(found, key=lambda e: (e.priority, e.id))

    def monthly_usage(self, exemptions: Iterable[Exemption], on: date) -> dict[int, int]:
        """Usage counts this month for exemptions limited by usage."""
        if self.usage is None:
            return {}
        return {
            e.id: self.usage.count_for_month(e.id, on.year, on.month)
            for e in exemptions
            if any(c.type == "usage_limit" for c in e.conditions)
        }


class ExemptionApplicator:
    """
    Reduces tax lines by the exemptions that cover them.

    Exemptions stack in priority order, each capped by what is left of
    the line, so a line never drops below zero and the exempted total
    never exceeds the original amount.
    """

    def apply(
        self,
        lines: Iterable[TaxLine],
        exemptions: list[Exemption],
        service_type: ServiceType,
        on: date,
        monthly_usage: Optional[dict[int, int]] = None,
    ) -> tuple[list[TaxLine], list[AppliedExemption]]:
        lines = list(lines)
        if not exemptions:
            return lines, []

        usage = monthly_usage or {}
        adjusted: list[TaxLine] = []
        applied: list[AppliedExemption] = []

        for line in lines:
            original = line.tax_amount
            remaining = original

            for exemption in exemptions:
                if remaining <= ZERO:
                    break
                if not (
                    exemption.applies_to_tax_type(line.tax_type)
                    and exemption.applies_to_service(service_type)
                    and exemption.applies_to_jurisdiction(line.jurisdiction_id)
                ):
                    continue

                relief = exemption.calculate_exemption_amount(
                    original,
                    {
                        "amount": line.base_amount,
                        "service_type": service_type,
                        "date": on,
                        "monthly_usage": usage.get(exemption.id, 0),
                    },
                )
                granted = min(relief, remaining)
                if granted <= ZERO:
                    continue

                remaining -= granted
                applied.append(
                    AppliedExemption(
                        exemption_id=exemption.id,
                        exemption_name=exemption.name,
                        tax_name=line.tax_name,
                        tax_type=line.tax_type,
                        level=line.level,
                        original_amount=original,
                        exempted_amount=granted,
                    )
                )

            final = max(remaining, ZERO)
            adjusted.append(
                replace(line, tax_amount=final, exempted_amount=original - final)
            )

        return adjusted, applied


class ExemptionUsageRecorder:
    """Writes the audit trail for exemptions on a finalized document."""

    def __init__(
        self,
        repository: ExemptionUsageRepository,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.repository = repository
        self.clock = clock

    def record(
        self,
        company_id: int,
        exemptions_applied: Iterable[AppliedExemption],
        document: DocumentReference,
    ) -> list[ExemptionUsage]:
        used_at = self.clock()
        rows: list[ExemptionUsage] = []
        for applied in exemptions_applied:
            row = ExemptionUsage(
                exemption_id=applied.exemption_id,
                company_id=company_id,
                document=document,
                original_tax_amount=applied.original_amount,
                exempted_amount=applied.exempted_amount,
                final_tax_amount=applied.final_amount,
                exemption_reason=applied.exemption_name,
                used_at=used_at,
            )
            self.repository.add(row)
            rows.append(row)

        logger.info(
            "Recorded %d exemption usage row(s) for %s %s",
            len(rows),
            document.kind.value,
            document.id,
        )
        return rows
