"""
Reference data loader.

Reads a YAML document describing jurisdictions, tax categories, rate
definitions, client exemptions and quarterly USF factors, and builds
the in-memory repositories the engine reads from.

Failure modes
-------------
* Missing file -> ``FileNotFoundError`` propagates.
* Malformed YAML -> ``yaml.YAMLError`` propagates.
* Missing required keys, unknown enum values, bad numbers or dates ->
  ``ReferenceDataError`` naming the section and entry.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Optional, Union

import yaml

from voip_tax_engine.errors import ReferenceDataError
from voip_tax_engine.models import (
    Exemption,
    ExemptionCondition,
    Jurisdiction,
    JurisdictionLevel,
    RateDefinition,
    RateType,
    ServiceType,
    TaxCategory,
    TaxLevel,
)
from voip_tax_engine.rates import DEFAULT_COMPANY_ID
from voip_tax_engine.repositories import (
    InMemoryExemptionRepository,
    InMemoryJurisdictionRepository,
    InMemoryRateRepository,
    InMemoryTaxCategoryRepository,
    InMemoryUSFRateRepository,
    ReferenceData,
)


def load_yaml_file(path: Union[str, Path]) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        document = yaml.safe_load(f) or {}
    if not isinstance(document, dict):
        raise ReferenceDataError(f"{path}: expected a mapping at the top level")
    return document


def parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def parse_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Not a number: {value!r}") from None


def parse_services(values: Any) -> frozenset[ServiceType]:
    return frozenset(ServiceType(v) for v in (values or []))


def parse_jurisdiction(data: dict[str, Any], company_id: int) -> Jurisdiction:
    return Jurisdiction(
        id=int(data["id"]),
        company_id=company_id,
        name=data["name"],
        level=JurisdictionLevel(data["level"]),
        code=data.get("code", ""),
        country=data.get("country", "US"),
        state_code=data.get("state"),
        county=data.get("county"),
        city=data.get("city"),
        postal_codes=tuple(str(p) for p in data.get("postal_codes") or ()),
        authority_name=data.get("authority", ""),
        is_active=bool(data.get("active", True)),
        priority=int(data.get("priority", 100)),
    )


def parse_category(data: dict[str, Any], company_id: int) -> TaxCategory:
    return TaxCategory(
        id=int(data["id"]),
        company_id=company_id,
        name=data["name"],
        service_types=parse_services(data.get("service_types")),
        priority=int(data.get("priority", 100)),
        is_taxable=bool(data.get("taxable", True)),
        is_active=bool(data.get("active", True)),
    )


def parse_rate(
    data: dict[str, Any],
    company_id: int,
    jurisdictions: dict[int, Jurisdiction],
) -> RateDefinition:
    jurisdiction_id = int(data["jurisdiction_id"])
    jurisdiction = jurisdictions.get(jurisdiction_id)
    if "level" in data:
        level = TaxLevel(data["level"])
    elif jurisdiction is not None:
        level = jurisdiction.level.tax_level
    else:
        raise KeyError("level")
    return RateDefinition(
        id=int(data["id"]),
        company_id=company_id,
        jurisdiction_id=jurisdiction_id,
        category_id=int(data["category_id"]),
        tax_name=data["tax_name"],
        tax_type=data["tax_type"],
        rate_type=RateType(data["rate_type"]),
        level=level,
        percentage_rate=parse_decimal(data.get("percentage_rate")),
        fixed_amount=parse_decimal(data.get("fixed_amount")),
        per_line=bool(data.get("per_line", False)),
        minimum_threshold=parse_decimal(data.get("minimum_threshold")),
        service_types=parse_services(data.get("service_types")),
        authority_name=data.get("authority")
        or (jurisdiction.authority_name if jurisdiction else ""),
        effective_date=parse_date(data.get("effective_date")),
        expiry_date=parse_date(data.get("expiry_date")),
        priority=int(data.get("priority", 100)),
        is_active=bool(data.get("active", True)),
    )


CONDITION_TYPES = ("minimum_amount", "service_type", "usage_limit", "date_range")


def parse_condition(data: dict[str, Any]) -> ExemptionCondition:
    kind = data["type"]
    if kind not in CONDITION_TYPES:
        raise ValueError(f"Unknown condition type: {kind!r}")
    value = data.get("value")
    if kind in ("minimum_amount", "usage_limit"):
        number = parse_decimal(value)
        if number is None or not number.is_finite():
            raise ValueError(f"{kind} condition needs a numeric value, got {value!r}")
    elif kind == "service_type":
        services = [value] if isinstance(value, str) else value
        if not services:
            raise ValueError("service_type condition needs a value")
        parse_services(services)
    return ExemptionCondition(
        type=kind,
        value=value,
        operator=data.get("operator", "="),
        start_date=parse_date(data.get("start_date")),
        end_date=parse_date(data.get("end_date")),
    )


def parse_exemption(data: dict[str, Any], company_id: int) -> Exemption:
    jurisdiction_id = data.get("jurisdiction_id")
    return Exemption(
        id=int(data["id"]),
        company_id=company_id,
        client_id=int(data["client_id"]),
        name=data["name"],
        jurisdiction_id=int(jurisdiction_id) if jurisdiction_id is not None else None,
        is_blanket=bool(data.get("blanket", False)),
        tax_types=frozenset(data.get("tax_types") or ()),
        service_types=parse_services(data.get("service_types")),
        issue_date=parse_date(data.get("issue_date")),
        expiry_date=parse_date(data.get("expiry_date")),
        status=data.get("status", "active"),
        verification_status=data.get("verification_status", "verified"),
        exemption_percentage=parse_decimal(data.get("percentage")),
        maximum_exemption_amount=parse_decimal(data.get("maximum_amount")),
        conditions=tuple(parse_condition(c) for c in data.get("conditions") or ()),
        priority=int(data.get("priority", 100)),
    )


def _parse_section(
    document: dict[str, Any],
    section: str,
    parse: Callable[[dict[str, Any]], Any],
) -> list[Any]:
    parsed = []
    for i, entry in enumerate(document.get(section) or []):
        try:
            parsed.append(parse(entry))
        except (KeyError, ValueError, TypeError) as e:
            raise ReferenceDataError(f"{section}[{i}]: invalid entry ({e!r})") from e
    return parsed


def build_reference_data(document: dict[str, Any]) -> ReferenceData:
    """Build repositories from an already-parsed reference document."""
    company_id = int(document.get("company_id", DEFAULT_COMPANY_ID))

    jurisdictions = _parse_section(
        document, "jurisdictions", lambda d: parse_jurisdiction(d, company_id)
    )
    by_id = {j.id: j for j in jurisdictions}
    categories = _parse_section(
        document, "categories", lambda d: parse_category(d, company_id)
    )
    rates = _parse_section(
        document, "rates", lambda d: parse_rate(d, company_id, by_id)
    )
    exemptions = _parse_section(
        document, "exemptions", lambda d: parse_exemption(d, company_id)
    )

    usf_rates = InMemoryUSFRateRepository()
    for i, entry in enumerate(document.get("usf_rates") or []):
        try:
            rate = parse_decimal(entry["rate"])
            if rate is None:
                raise ValueError("rate is empty")
            usf_rates.set_rate(int(entry["year"]), int(entry["quarter"]), rate)
        except (KeyError, ValueError, TypeError) as e:
            raise ReferenceDataError(f"usf_rates[{i}]: invalid entry ({e!r})") from e

    return ReferenceData(
        jurisdictions=InMemoryJurisdictionRepository(jurisdictions),
        categories=InMemoryTaxCategoryRepository(categories),
        rates=InMemoryRateRepository(rates),
        exemptions=InMemoryExemptionRepository(exemptions),
        usf_rates=usf_rates,
    )


def load_reference_data(path: Union[str, Path]) -> ReferenceData:
    """Load a reference data YAML file into in-memory repositories."""
    return build_reference_data(load_yaml_file(path))
