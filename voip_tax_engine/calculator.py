"""
VoIP tax calculation engine.

Handles:
- Request validation and company scoping
- Jurisdiction resolution and tax category gating
- Federal, state and local tax and fee itemization
- Client exemption stacking with a floor at zero
- Result memoization and cache invalidation
- Exemption usage audit and batch summaries
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation, getcontext
from typing import Any, Iterable, Optional, Union

from voip_tax_engine.cache import (
    CALCULATION_PREFIX,
    CacheBackend,
    InMemoryCache,
    RedisCache,
    make_cache_key,
    safe_get,
    safe_set,
)
from voip_tax_engine.categories import TaxCategoryMatcher
from voip_tax_engine.config import EngineConfig
from voip_tax_engine.errors import (
    ConfigurationError,
    PatternInvalidationUnsupported,
    TaxEngineError,
    ValidationError,
)
from voip_tax_engine.exemptions import (
    ExemptionApplicator,
    ExemptionResolver,
    ExemptionUsageRecorder,
)
from voip_tax_engine.jurisdictions import JurisdictionResolver
from voip_tax_engine.levels import (
    FederalTaxCalculator,
    LocalTaxCalculator,
    StateTaxCalculator,
)
from voip_tax_engine.models import (
    ZERO,
    AppliedExemption,
    CalculationRequest,
    CalculationResult,
    CalculationSummary,
    DocumentReference,
    ExemptionUsage,
    JurisdictionSummary,
    ServiceAddress,
    ServiceType,
    TaxLevel,
    TaxLine,
    round_amount,
)
from voip_tax_engine.rates import USFRateSchedule, default_reference_data
from voip_tax_engine.repositories import ReferenceData

logger = logging.getLogger(__name__)

RequestLike = Union[CalculationRequest, dict[str, Any]]


# ---------------------------------------------------------------------------
# Request validation
# ---------------------------------------------------------------------------


def _to_decimal(value: Any, name: str) -> Decimal:
    if value is None or isinstance(value, bool):
        raise ValidationError(name, "must be a number")
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(name, f"must be a number, got {value!r}") from None
    if not number.is_finite():
        raise ValidationError(name, "must be a finite number")
    return number


def _to_int(value: Any, name: str) -> int:
    number = _to_decimal(value, name)
    if number != number.to_integral_value():
        raise ValidationError(name, f"must be an integer, got {value!r}")
    return int(number)


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(
                "calculation_date", f"not an ISO date: {value!r}"
            ) from None
    raise ValidationError("calculation_date", f"unsupported value {value!r}")


def _to_service_type(value: Any) -> ServiceType:
    if isinstance(value, ServiceType):
        return value
    try:
        return ServiceType(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(s.value for s in ServiceType)
        raise ValidationError(
            "service_type", f"{value!r} is not one of: {allowed}"
        ) from None


def _check_magnitude(number: Decimal, name: str, precision: int) -> None:
    # quantized values and their sums must fit the decimal context
    if number and number.adjusted() + precision + 2 > getcontext().prec:
        raise ValidationError(name, f"is too large ({number})")


def build_request(data: RequestLike, precision: int = 4) -> CalculationRequest:
    """
    Validate and normalize calculation input.

    Raises ``ValidationError`` for a missing, non-numeric, negative or
    oversized amount, a line count below one, negative or oversized
    minutes, an unknown service type or an unparseable date.
    """
    if isinstance(data, CalculationRequest):
        data = {
            "amount": data.amount,
            "service_type": data.service_type,
            "service_address": data.service_address,
            "client_id": data.client_id,
            "calculation_date": data.calculation_date,
            "line_count": data.line_count,
            "minutes": data.minutes,
        }

    if "amount" not in data:
        raise ValidationError("amount", "is required")
    amount = _to_decimal(data["amount"], "amount")
    if amount < 0:
        raise ValidationError("amount", "must be a non-negative number")
    _check_magnitude(amount, "amount", precision)

    line_count = data.get("line_count")
    line_count = 1 if line_count is None else _to_int(line_count, "line_count")
    if line_count < 1:
        raise ValidationError("line_count", "must be a positive integer")
    _check_magnitude(Decimal(line_count), "line_count", precision)

    minutes = data.get("minutes")
    minutes = ZERO if minutes is None else _to_decimal(minutes, "minutes")
    if minutes < 0:
        raise ValidationError("minutes", "must be a non-negative number")
    _check_magnitude(minutes, "minutes", precision)

    client_id = data.get("client_id")
    if client_id is not None and client_id != "":
        client_id = _to_int(client_id, "client_id")
    else:
        client_id = None

    address = data.get("service_address")
    if not isinstance(address, ServiceAddress):
        if address is not None and not isinstance(address, dict):
            raise ValidationError("service_address", "must be a mapping")
        address = ServiceAddress.from_dict(address)

    return CalculationRequest(
        amount=amount,
        service_type=_to_service_type(data.get("service_type") or ServiceType.LOCAL),
        service_address=address,
        client_id=client_id,
        calculation_date=_to_datetime(data.get("calculation_date")),
        line_count=line_count,
        minutes=minutes,
    )


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def aggregate_results(
    company_id: int,
    request: CalculationRequest,
    calculated_at: datetime,
    jurisdictions: Iterable[JurisdictionSummary],
    federal_taxes: list[TaxLine],
    state_taxes: list[TaxLine],
    local_taxes: list[TaxLine],
    exemptions_applied: list[AppliedExemption],
    precision: int = 4,
) -> CalculationResult:
    """Merge the per-level lines into a final, immutable result."""
    breakdown = tuple(federal_taxes) + tuple(state_taxes) + tuple(local_taxes)
    total_tax = round_amount(
        sum((line.tax_amount for line in breakdown), ZERO), precision
    )
    return CalculationResult(
        company_id=company_id,
        base_amount=request.amount,
        service_type=request.service_type,
        calculation_date=calculated_at.isoformat(),
        federal_taxes=tuple(federal_taxes),
        state_taxes=tuple(state_taxes),
        local_taxes=tuple(local_taxes),
        exemptions_applied=tuple(exemptions_applied),
        total_tax_amount=total_tax,
        final_amount=request.amount + total_tax,
        tax_breakdown=breakdown,
        jurisdictions=tuple(jurisdictions),
    )


@dataclass
class BatchResult:
    """Results and errors for a batch of calculation requests."""

    results: list[CalculationResult]
    summary: CalculationSummary
    errors: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class VoIPTaxCalculator:
    """
    VoIP telecommunications tax engine.

    Every call takes the company scope explicitly; one instance can
    serve any number of tenants concurrently. Reference data is read
    through the repositories of ``reference``.
    """

    def __init__(
        self,
        reference: Optional[ReferenceData] = None,
        config: Optional[EngineConfig] = None,
        cache: Optional[CacheBackend] = None,
    ) -> None:
        self.reference = reference or default_reference_data()
        self.config = config or EngineConfig()
        if cache is None:
            cache = (
                RedisCache.from_url(self.config.redis_url)
                if self.config.redis_url
                else InMemoryCache()
            )
        self.cache: CacheBackend = cache

        active_cache = self.cache if self.config.enable_caching else None
        precision = self.config.round_precision

        self.jurisdiction_resolver = JurisdictionResolver(
            self.reference.jurisdictions,
            cache=active_cache,
            cache_ttl=self.config.cache_ttl,
            default_country=self.config.default_country,
        )
        self.category_matcher = TaxCategoryMatcher(self.reference.categories)
        self.exemption_resolver = ExemptionResolver(
            self.reference.exemptions, self.reference.usage
        )
        self.exemption_applicator = ExemptionApplicator()
        self.usage_recorder = ExemptionUsageRecorder(self.reference.usage)

        usf_schedule = USFRateSchedule(
            self.reference.usf_rates,
            fallback_rate=self.config.usf_fallback_rate,
            policy=self.config.usf_fallback_policy,
        )
        self.federal = FederalTaxCalculator(
            self.reference.rates, usf_schedule, precision
        )
        self.state = StateTaxCalculator(self.reference.rates, precision)
        self.local = LocalTaxCalculator(self.reference.rates, precision)

    @staticmethod
    def _require_scope(company_id: Optional[int]) -> int:
        if company_id is None or isinstance(company_id, bool):
            raise ConfigurationError(
                "A company scope is required before calculating taxes"
            )
        return int(company_id)

    # ------------------------------------------------------------------
    # Calculation
    # ------------------------------------------------------------------

    def calculate_taxes(
        self, company_id: Optional[int], request: RequestLike
    ) -> CalculationResult:
        """
        Calculate every federal, state and local tax for one charge.

        Identical normalized inputs on the same calendar day are served
        from the cache while the entry lives.
        """
        company_id = self._require_scope(company_id)
        req = build_request(request, self.config.round_precision)
        calculated_at = req.calculation_date or datetime.now(timezone.utc)

        key = self.cache_key(company_id, req, calculated_at.date())
        if self.config.enable_caching:
            cached = safe_get(self.cache, key)
            if cached is not None:
                return cached

        result = self._perform_calculation(company_id, req, calculated_at)

        if self.config.enable_caching:
            safe_set(self.cache, key, result, self.config.cache_ttl)
        return result

    def _perform_calculation(
        self,
        company_id: int,
        req: CalculationRequest,
        calculated_at: datetime,
    ) -> CalculationResult:
        day = calculated_at.date()
        precision = self.config.round_precision

        jurisdictions = self.jurisdiction_resolver.resolve(
            company_id, req.service_address
        )
        summaries = [JurisdictionSummary(j.id, j.name, j.level) for j in jurisdictions]

        category = self.category_matcher.match(company_id, req.service_type)
        if not TaxCategoryMatcher.is_taxable(category):
            logger.info(
                "Service not taxable: service_type=%s category=%s",
                req.service_type.value,
                category.name if category else None,
            )
            return aggregate_results(
                company_id, req, calculated_at, summaries, [], [], [], [], precision
            )

        exemptions = self.exemption_resolver.resolve(
            company_id, req.client_id, jurisdictions, day
        )
        usage = self.exemption_resolver.monthly_usage(exemptions, day)

        applied: list[AppliedExemption] = []
        levels: dict[TaxLevel, list[TaxLine]] = {}
        for level, calculator in (
            (TaxLevel.FEDERAL, self.federal),
            (TaxLevel.STATE, self.state),
            (TaxLevel.LOCAL, self.local),
        ):
            lines = calculator.calculate(company_id, jurisdictions, category, req, day)
            levels[level], level_applied = self.exemption_applicator.apply(
                lines, exemptions, req.service_type, day, usage
            )
            applied.extend(level_applied)

        result = aggregate_results(
            company_id,
            req,
            calculated_at,
            summaries,
            levels[TaxLevel.FEDERAL],
            levels[TaxLevel.STATE],
            levels[TaxLevel.LOCAL],
            applied,
            precision,
        )

        logger.info(
            "Tax calculation completed: company_id=%s base_amount=%s "
            "total_tax=%s jurisdictions=%d",
            company_id,
            result.base_amount,
            result.total_tax_amount,
            len(result.jurisdictions),
        )
        return result

    def calculate_batch(
        self, company_id: Optional[int], requests: Iterable[RequestLike]
    ) -> BatchResult:
        """Calculate a batch, collecting per-request errors."""
        company_id = self._require_scope(company_id)
        results: list[CalculationResult] = []
        errors: list[str] = []
        for i, request in enumerate(requests, start=1):
            try:
                results.append(self.calculate_taxes(company_id, request))
            except TaxEngineError as e:
                errors.append(f"Request {i}: {e}")
        return BatchResult(
            results=results,
            summary=self.get_calculation_summary(results),
            errors=errors,
        )

    def cache_key(self, company_id: int, req: CalculationRequest, day: date) -> str:
        return make_cache_key(
            company_id,
            {
                "company_id": company_id,
                "amount": str(round_amount(req.amount, self.config.round_precision)),
                "service_type": req.service_type.value,
                "address": req.service_address.normalized(),
                "client_id": req.client_id,
                "date": day.isoformat(),
                "line_count": req.line_count,
                "minutes": str(req.minutes.normalize()),
            },
        )

    # ------------------------------------------------------------------
    # Supporting operations
    # ------------------------------------------------------------------

    def record_exemption_usage(
        self,
        company_id: Optional[int],
        exemptions_applied: Iterable[AppliedExemption],
        document: DocumentReference,
    ) -> list[ExemptionUsage]:
        """Write the audit trail once a result is billed on ``document``."""
        company_id = self._require_scope(company_id)
        return self.usage_recorder.record(company_id, exemptions_applied, document)

    def clear_cache(self, pattern: Optional[str] = None) -> None:
        """
        Invalidate cached results.

        Pattern invalidation is best-effort; backends that cannot
        match patterns are flushed entirely.
        """
        if pattern is None:
            self.cache.flush()
        else:
            try:
                removed = self.cache.delete_pattern(pattern)
                logger.info("Cleared %d cache entries matching %s", removed, pattern)
            except PatternInvalidationUnsupported:
                logger.info("Pattern invalidation unsupported; flushing cache")
                self.cache.flush()
        logger.info("VoIP tax calculation cache cleared (pattern=%s)", pattern)

    def clear_company_cache(self, company_id: int) -> None:
        self.clear_cache(f"{CALCULATION_PREFIX}:{company_id}:*")

    @staticmethod
    def get_calculation_summary(
        results: Iterable[CalculationResult],
    ) -> CalculationSummary:
        """Totals by level and tax type across prior results."""
        summary = CalculationSummary()
        for result in results:
            summary.calculation_count += 1
            summary.total_base_amount += result.base_amount
            summary.total_tax_amount += result.total_tax_amount
            summary.total_final_amount += result.final_amount
            summary.federal_taxes += sum(
                (t.tax_amount for t in result.federal_taxes), ZERO
            )
            summary.state_taxes += sum(
                (t.tax_amount for t in result.state_taxes), ZERO
            )
            summary.local_taxes += sum(
                (t.tax_amount for t in result.local_taxes), ZERO
            )
            for line in result.tax_breakdown:
                summary.exemptions_total += line.exempted_amount
                summary.tax_by_type[line.tax_type] = (
                    summary.tax_by_type.get(line.tax_type, ZERO) + line.tax_amount
                )
            for jurisdiction in result.jurisdictions:
                summary.jurisdictions[jurisdiction.id] = jurisdiction.name
        return summary
