"""
Domain model for VoIP tax calculation.

Reference entities (jurisdictions, categories, rate definitions,
exemptions) are read-only inputs to the engine. Calculation outputs
(tax lines, applied exemptions, results) are frozen so a cached result
can be handed out repeatedly without risk of mutation.
"""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Optional

ZERO = Decimal("0")


def round_amount(amount: Decimal, places: int = 4) -> Decimal:
    """Round a monetary amount half-up to the given number of places."""
    return amount.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


class ServiceType(Enum):
    LOCAL = "local"
    LONG_DISTANCE = "long_distance"
    INTERNATIONAL = "international"
    VOIP_FIXED = "voip_fixed"
    VOIP_NOMADIC = "voip_nomadic"
    DATA = "data"
    EQUIPMENT = "equipment"

    @property
    def label(self) -> str:
        return _SERVICE_LABELS[self]


_SERVICE_LABELS: dict[ServiceType, str] = {
    ServiceType.LOCAL: "Local Service",
    ServiceType.LONG_DISTANCE: "Long Distance",
    ServiceType.INTERNATIONAL: "International",
    ServiceType.VOIP_FIXED: "Fixed VoIP",
    ServiceType.VOIP_NOMADIC: "Nomadic VoIP",
    ServiceType.DATA: "Data Services",
    ServiceType.EQUIPMENT: "Equipment",
}


class TaxLevel(Enum):
    FEDERAL = "federal"
    STATE = "state"
    LOCAL = "local"


class JurisdictionLevel(Enum):
    FEDERAL = "federal"
    STATE = "state"
    COUNTY = "county"
    CITY = "city"
    MUNICIPALITY = "municipality"
    SPECIAL_DISTRICT = "special_district"
    LOCAL = "local"

    @property
    def tax_level(self) -> TaxLevel:
        if self is JurisdictionLevel.FEDERAL:
            return TaxLevel.FEDERAL
        if self is JurisdictionLevel.STATE:
            return TaxLevel.STATE
        return TaxLevel.LOCAL


class RateType(Enum):
    PERCENTAGE = "percentage"  # percentage_rate % of the charge
    FIXED = "fixed"  # flat amount, optionally per line
    USAGE = "usage"  # per-minute amount times minutes


# ---------------------------------------------------------------------------
# Reference entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ServiceAddress:
    """Where a service is delivered. Every part is optional."""

    country: Optional[str] = None
    state: Optional[str] = None
    county: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ServiceAddress":
        data = data or {}

        def _clean(value: Any) -> Optional[str]:
            if value is None:
                return None
            text = str(value).strip()
            return text or None

        return cls(
            country=_clean(data.get("country")),
            state=_clean(data.get("state")),
            county=_clean(data.get("county")),
            city=_clean(data.get("city")),
            postal_code=_clean(data.get("postal_code", data.get("zip_code"))),
        )

    @property
    def is_empty(self) -> bool:
        return not any(
            (self.country, self.state, self.county, self.city, self.postal_code)
        )

    def normalized(self) -> dict[str, str]:
        """Case-folded, trimmed parts with empty fields dropped."""
        parts = {
            "country": self.country,
            "state": self.state,
            "county": self.county,
            "city": self.city,
            "postal_code": self.postal_code,
        }
        return {k: v.strip().casefold() for k, v in parts.items() if v and v.strip()}


def _same(expected: Optional[str], actual: Optional[str]) -> bool:
    if not expected:
        return True
    if not actual:
        return False
    return expected.strip().casefold() == actual.strip().casefold()


@dataclass(frozen=True)
class Jurisdiction:
    """A taxing authority and the geography it covers."""

    id: int
    company_id: int
    name: str
    level: JurisdictionLevel
    code: str = ""
    country: Optional[str] = "US"
    state_code: Optional[str] = None
    county: Optional[str] = None
    city: Optional[str] = None
    postal_codes: tuple[str, ...] = ()
    authority_name: str = ""
    is_active: bool = True
    priority: int = 100

    def matches(self, address: ServiceAddress, default_country: str = "US") -> bool:
        """
        Geo-match predicate.

        Populated attributes must equal the address (case-insensitive);
        unpopulated ones match anything. Postal codes accept ``*``
        wildcards. Federal jurisdictions only compare the country.
        """
        if not _same(self.country, address.country or default_country):
            return False
        if self.level is JurisdictionLevel.FEDERAL:
            return True
        if not _same(self.state_code, address.state):
            return False
        if not _same(self.county, address.county):
            return False
        if not _same(self.city, address.city):
            return False
        if self.postal_codes:
            if not address.postal_code:
                return False
            postal = address.postal_code.strip().upper()
            return any(
                fnmatch.fnmatchcase(postal, pattern.strip().upper())
                for pattern in self.postal_codes
            )
        return True


@dataclass(frozen=True)
class TaxCategory:
    """A group of service types that share a tax treatment."""

    id: int
    company_id: int
    name: str
    service_types: frozenset[ServiceType] = frozenset()  # empty = all
    priority: int = 100
    is_taxable: bool = True
    is_active: bool = True

    def covers(self, service_type: ServiceType) -> bool:
        return not self.service_types or service_type in self.service_types


@dataclass(frozen=True)
class RateDefinition:
    """One tax or regulatory-fee rule for a jurisdiction and category."""

    id: int
    company_id: int
    jurisdiction_id: int
    category_id: int
    tax_name: str
    tax_type: str
    rate_type: RateType
    level: TaxLevel
    percentage_rate: Optional[Decimal] = None
    fixed_amount: Optional[Decimal] = None
    per_line: bool = False
    minimum_threshold: Optional[Decimal] = None
    service_types: frozenset[ServiceType] = frozenset()  # empty = all
    authority_name: str = ""
    effective_date: Optional[date] = None
    expiry_date: Optional[date] = None
    priority: int = 100
    is_active: bool = True

    def __post_init__(self) -> None:
        if self.rate_type is RateType.PERCENTAGE and self.percentage_rate is None:
            raise ValueError(f"Rate {self.tax_name!r}: percentage_rate is required")
        if self.rate_type in (RateType.FIXED, RateType.USAGE) and self.fixed_amount is None:
            raise ValueError(
                f"Rate {self.tax_name!r}: fixed_amount is required for "
                f"{self.rate_type.value} rates"
            )

    @property
    def rate(self) -> Decimal:
        if self.rate_type is RateType.PERCENTAGE:
            return self.percentage_rate  # type: ignore[return-value]
        return self.fixed_amount  # type: ignore[return-value]

    def applies_to(self, service_type: ServiceType) -> bool:
        return not self.service_types or service_type in self.service_types

    def is_effective(self, on: date) -> bool:
        if self.effective_date and on < self.effective_date:
            return False
        if self.expiry_date and on >= self.expiry_date:
            return False
        return True

    def calculate(
        self,
        amount: Decimal,
        line_count: int = 1,
        minutes: Decimal = ZERO,
        precision: int = 4,
    ) -> Decimal:
        if self.minimum_threshold is not None and amount <= self.minimum_threshold:
            return ZERO

        if self.rate_type is RateType.PERCENTAGE:
            raw = amount * self.percentage_rate / Decimal(100)
        elif self.rate_type is RateType.FIXED:
            raw = self.fixed_amount * (line_count if self.per_line else 1)
        elif self.rate_type is RateType.USAGE:
            raw = Decimal(minutes) * self.fixed_amount
        else:
            raise ValueError(f"Unhandled rate type: {self.rate_type!r}")

        return round_amount(raw, precision)


@dataclass(frozen=True)
class ExemptionCondition:
    """A restriction that must hold for an exemption to grant relief."""

    type: str  # minimum_amount, service_type, usage_limit, date_range
    value: Any = None
    operator: str = "="
    start_date: Optional[date] = None
    end_date: Optional[date] = None


_OPERATORS = {
    "=": lambda a, b: a == b,
    "==": lambda a, b: a == b,
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
    "!=": lambda a, b: a != b,
}


def _condition_number(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


@dataclass(frozen=True)
class Exemption:
    """A client's relief from one or more tax types."""

    id: int
    company_id: int
    client_id: int
    name: str
    jurisdiction_id: Optional[int] = None
    is_blanket: bool = False
    tax_types: frozenset[str] = frozenset()  # empty = all
    service_types: frozenset[ServiceType] = frozenset()  # empty = all
    issue_date: Optional[date] = None
    expiry_date: Optional[date] = None
    status: str = "active"
    verification_status: str = "verified"
    exemption_percentage: Optional[Decimal] = None  # None = full relief
    maximum_exemption_amount: Optional[Decimal] = None
    conditions: tuple[ExemptionCondition, ...] = ()
    priority: int = 100

    def is_valid_on(self, day: date) -> bool:
        if self.status != "active" or self.verification_status != "verified":
            return False
        if self.issue_date and day < self.issue_date:
            return False
        if self.expiry_date and day >= self.expiry_date:
            return False
        return True

    def applies_to_tax_type(self, tax_type: str) -> bool:
        if self.is_blanket or not self.tax_types:
            return True
        return tax_type in self.tax_types

    def applies_to_service(self, service_type: ServiceType) -> bool:
        if self.is_blanket or not self.service_types:
            return True
        return service_type in self.service_types

    def applies_to_jurisdiction(self, jurisdiction_id: Optional[int]) -> bool:
        if self.is_blanket and self.jurisdiction_id is None:
            return True
        return self.jurisdiction_id == jurisdiction_id

    def meets_conditions(self, context: dict[str, Any]) -> bool:
        for condition in self.conditions:
            if condition.type == "minimum_amount":
                compare = _OPERATORS.get(condition.operator)
                if compare is None:
                    return False
                minimum = _condition_number(condition.value)
                if minimum is None:
                    return False
                actual = Decimal(str(context.get("amount", ZERO)))
                if not compare(actual, minimum):
                    return False
            elif condition.type == "service_type":
                allowed = condition.value or ()
                if isinstance(allowed, str):
                    allowed = [allowed]
                service = context.get("service_type")
                if isinstance(service, ServiceType):
                    service = service.value
                if service not in allowed:
                    return False
            elif condition.type == "usage_limit":
                limit = _condition_number(condition.value)
                if limit is None or context.get("monthly_usage", 0) >= limit:
                    return False
            elif condition.type == "date_range":
                day = context.get("date")
                if day is None:
                    return False
                if condition.start_date and day < condition.start_date:
                    return False
                if condition.end_date and day > condition.end_date:
                    return False
        return True

    def calculate_exemption_amount(
        self, tax_amount: Decimal, context: Optional[dict[str, Any]] = None
    ) -> Decimal:
        """Relief granted against ``tax_amount``, before any stacking cap."""
        if not self.meets_conditions(context or {}):
            return ZERO
        if self.exemption_percentage is None:
            relief = tax_amount
        else:
            relief = tax_amount * self.exemption_percentage / Decimal(100)
        if self.maximum_exemption_amount is not None:
            relief = min(relief, self.maximum_exemption_amount)
        return round_amount(max(relief, ZERO), 4)


# ---------------------------------------------------------------------------
# Calculation inputs and outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CalculationRequest:
    """Validated input to a single tax calculation."""

    amount: Decimal
    service_type: ServiceType = ServiceType.LOCAL
    service_address: ServiceAddress = field(default_factory=ServiceAddress)
    client_id: Optional[int] = None
    calculation_date: Optional[datetime] = None
    line_count: int = 1
    minutes: Decimal = ZERO


@dataclass(frozen=True)
class TaxLine:
    """One itemized tax or fee."""

    tax_name: str
    tax_type: str
    rate_type: RateType
    rate: Decimal
    base_amount: Decimal
    tax_amount: Decimal
    authority: str
    level: TaxLevel
    exempted_amount: Decimal = ZERO
    jurisdiction: Optional[str] = None
    jurisdiction_id: Optional[int] = None
    tax_rate_id: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tax_name": self.tax_name,
            "tax_type": self.tax_type,
            "rate_type": self.rate_type.value,
            "rate": self.rate,
            "base_amount": self.base_amount,
            "tax_amount": self.tax_amount,
            "exempted_amount": self.exempted_amount,
            "authority": self.authority,
            "jurisdiction": self.jurisdiction,
            "jurisdiction_id": self.jurisdiction_id,
            "tax_rate_id": self.tax_rate_id,
            "level": self.level.value,
        }


@dataclass(frozen=True)
class AppliedExemption:
    """Relief one exemption granted against one tax line."""

    exemption_id: int
    exemption_name: str
    tax_name: str
    tax_type: str
    level: TaxLevel
    original_amount: Decimal
    exempted_amount: Decimal

    @property
    def final_amount(self) -> Decimal:
        return self.original_amount - self.exempted_amount

    def to_dict(self) -> dict[str, Any]:
        return {
            "exemption_id": self.exemption_id,
            "exemption_name": self.exemption_name,
            "tax_name": self.tax_name,
            "tax_type": self.tax_type,
            "level": self.level.value,
            "original_amount": self.original_amount,
            "exempted_amount": self.exempted_amount,
        }


@dataclass(frozen=True)
class JurisdictionSummary:
    id: int
    name: str
    level: JurisdictionLevel

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "level": self.level.value}


@dataclass(frozen=True)
class CalculationResult:
    """The engine's complete, immutable answer for one request."""

    company_id: int
    base_amount: Decimal
    service_type: ServiceType
    calculation_date: str
    federal_taxes: tuple[TaxLine, ...] = ()
    state_taxes: tuple[TaxLine, ...] = ()
    local_taxes: tuple[TaxLine, ...] = ()
    exemptions_applied: tuple[AppliedExemption, ...] = ()
    total_tax_amount: Decimal = ZERO
    final_amount: Decimal = ZERO
    tax_breakdown: tuple[TaxLine, ...] = ()
    jurisdictions: tuple[JurisdictionSummary, ...] = ()

    @property
    def total_exempted_amount(self) -> Decimal:
        return sum((line.exempted_amount for line in self.tax_breakdown), ZERO)

    def to_dict(self) -> dict[str, Any]:
        return {
            "company_id": self.company_id,
            "base_amount": self.base_amount,
            "service_type": self.service_type.value,
            "calculation_date": self.calculation_date,
            "federal_taxes": [t.to_dict() for t in self.federal_taxes],
            "state_taxes": [t.to_dict() for t in self.state_taxes],
            "local_taxes": [t.to_dict() for t in self.local_taxes],
            "exemptions_applied": [e.to_dict() for e in self.exemptions_applied],
            "total_tax_amount": self.total_tax_amount,
            "final_amount": self.final_amount,
            "tax_breakdown": [t.to_dict() for t in self.tax_breakdown],
            "jurisdictions": [j.to_dict() for j in self.jurisdictions],
        }


@dataclass
class CalculationSummary:
    """Totals across a batch of calculation results."""

    calculation_count: int = 0
    total_base_amount: Decimal = ZERO
    total_tax_amount: Decimal = ZERO
    total_final_amount: Decimal = ZERO
    federal_taxes: Decimal = ZERO
    state_taxes: Decimal = ZERO
    local_taxes: Decimal = ZERO
    exemptions_total: Decimal = ZERO
    tax_by_type: dict[str, Decimal] = field(default_factory=dict)
    jurisdictions: dict[int, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class DocumentKind(Enum):
    INVOICE = "invoice"
    CREDIT_NOTE = "credit_note"
    QUOTE = "quote"


@dataclass(frozen=True)
class DocumentReference:
    """The billing document a calculation was finalized on."""

    kind: DocumentKind
    id: int


@dataclass(frozen=True)
class ExemptionUsage:
    """Immutable audit row for one exemption application."""

    exemption_id: int
    company_id: int
    document: DocumentReference
    original_tax_amount: Decimal
    exempted_amount: Decimal
    final_tax_amount: Decimal
    exemption_reason: str
    used_at: datetime
