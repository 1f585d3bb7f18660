"""Tests for client exemption lookup, stacking and usage audit."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from voip_tax_engine.calculator import VoIPTaxCalculator
from voip_tax_engine.exemptions import (
    ExemptionApplicator,
    ExemptionResolver,
    ExemptionUsageRecorder,
)
from voip_tax_engine.models import (
    AppliedExemption,
    DocumentKind,
    DocumentReference,
    Exemption,
    ExemptionCondition,
    Jurisdiction,
    JurisdictionLevel,
    RateType,
    ServiceType,
    TaxLevel,
    TaxLine,
)
from voip_tax_engine.rates import default_reference_data
from voip_tax_engine.repositories import (
    InMemoryExemptionRepository,
    InMemoryExemptionUsageRepository,
)

DAY = date(2024, 6, 15)
HOUSTON = {"state": "TX", "county": "Harris", "city": "Houston"}


def _line(
    amount: str = "3.00",
    tax_type: str = "federal_excise_tax",
    jurisdiction_id: int | None = 1,
    level: TaxLevel = TaxLevel.FEDERAL,
) -> TaxLine:
    return TaxLine(
        tax_name=tax_type.replace("_", " ").title(),
        tax_type=tax_type,
        rate_type=RateType.PERCENTAGE,
        rate=Decimal("3.0"),
        base_amount=Decimal("100.00"),
        tax_amount=Decimal(amount),
        authority="Internal Revenue Service",
        level=level,
        jurisdiction_id=jurisdiction_id,
    )


def _exemption(exemption_id: int = 1, **kwargs) -> Exemption:
    defaults = {
        "company_id": 1,
        "client_id": 42,
        "name": f"Exemption {exemption_id}",
    }
    defaults.update(kwargs)
    return Exemption(id=exemption_id, **defaults)


@pytest.fixture
def applicator() -> ExemptionApplicator:
    return ExemptionApplicator()


def _apply(applicator, lines, exemptions, service=ServiceType.LOCAL, usage=None):
    return applicator.apply(lines, exemptions, service, DAY, usage)


# ── Validity ─────────────────────────────────────────────────────────


def test_expiry_date_is_exclusive():
    exemption = _exemption(issue_date=date(2024, 1, 1), expiry_date=DAY)
    assert exemption.is_valid_on(date(2024, 6, 14))
    assert not exemption.is_valid_on(DAY)


def test_not_yet_issued():
    assert not _exemption(issue_date=date(2024, 7, 1)).is_valid_on(DAY)


@pytest.mark.parametrize(
    "status, verification",
    [("revoked", "verified"), ("active", "pending"), ("suspended", "rejected")],
)
def test_inactive_or_unverified_is_invalid(status, verification):
    exemption = _exemption(status=status, verification_status=verification)
    assert not exemption.is_valid_on(DAY)


# ── Resolution ───────────────────────────────────────────────────────


def _federal() -> Jurisdiction:
    return Jurisdiction(1, 1, "United States Federal", JurisdictionLevel.FEDERAL)


def test_no_client_means_no_exemptions():
    resolver = ExemptionResolver(InMemoryExemptionRepository([_exemption()]))
    assert resolver.resolve(1, None, [_federal()], DAY) == []


def test_resolves_blanket_and_scoped_by_priority():
    repo = InMemoryExemptionRepository(
        [
            _exemption(1, jurisdiction_id=1, priority=20),
            _exemption(2, is_blanket=True, priority=10),
            _exemption(3, jurisdiction_id=99, priority=1),  # elsewhere
            _exemption(4, is_blanket=True, expiry_date=date(2024, 1, 1)),
            _exemption(5, client_id=7, is_blanket=True),
        ]
    )
    found = ExemptionResolver(repo).resolve(1, 42, [_federal()], DAY)
    assert [e.id for e in found] == [2, 1]


def test_monthly_usage_only_for_usage_limited():
    usage = InMemoryExemptionUsageRepository()
    limited = _exemption(1, conditions=(ExemptionCondition("usage_limit", 2),))
    resolver = ExemptionResolver(InMemoryExemptionRepository(), usage)
    assert resolver.monthly_usage([limited, _exemption(2)], DAY) == {1: 0}


# ── Application ──────────────────────────────────────────────────────


def test_full_exemption_zeroes_line(applicator):
    lines, applied = _apply(applicator, [_line()], [_exemption(is_blanket=True)])
    assert lines[0].tax_amount == Decimal("0")
    assert lines[0].exempted_amount == Decimal("3.00")
    assert applied == [
        AppliedExemption(
            exemption_id=1,
            exemption_name="Exemption 1",
            tax_name="Federal Excise Tax",
            tax_type="federal_excise_tax",
            level=TaxLevel.FEDERAL,
            original_amount=Decimal("3.00"),
            exempted_amount=Decimal("3.00"),
        )
    ]


def test_stacking_never_exceeds_original(applicator):
    first = _exemption(1, jurisdiction_id=1, exemption_percentage=Decimal("60"), priority=1)
    second = _exemption(2, jurisdiction_id=1, exemption_percentage=Decimal("60"), priority=2)
    lines, applied = _apply(applicator, [_line()], [first, second])
    assert [a.exempted_amount for a in applied] == [Decimal("1.80"), Decimal("1.20")]
    assert lines[0].tax_amount == Decimal("0")
    assert lines[0].exempted_amount == Decimal("3.00")


def test_partial_relief_uses_original_amount(applicator):
    first = _exemption(1, jurisdiction_id=1, exemption_percentage=Decimal("50"), priority=1)
    second = _exemption(2, jurisdiction_id=1, exemption_percentage=Decimal("25"), priority=2)
    lines, applied = _apply(applicator, [_line("4.00")], [first, second])
    # 50% of 4.00, then 25% of 4.00 (not of the remainder)
    assert [a.exempted_amount for a in applied] == [Decimal("2.00"), Decimal("1.00")]
    assert lines[0].tax_amount == Decimal("1.00")
    assert applied[1].final_amount == Decimal("3.00")


def test_maximum_exemption_amount(applicator):
    capped = _exemption(
        jurisdiction_id=1,
        exemption_percentage=Decimal("50"),
        maximum_exemption_amount=Decimal("1.00"),
    )
    lines, _ = _apply(applicator, [_line()], [capped])
    assert lines[0].tax_amount == Decimal("2.00")


def test_tax_type_restriction(applicator):
    excise_only = _exemption(jurisdiction_id=1, tax_types=frozenset({"federal_excise_tax"}))
    lines, applied = _apply(
        applicator,
        [_line(), _line("33.40", "universal_service_fund")],
        [excise_only],
    )
    assert [line.tax_amount for line in lines] == [Decimal("0"), Decimal("33.40")]
    assert len(applied) == 1


def test_scoped_exemption_only_touches_its_jurisdiction(applicator):
    texas = _exemption(jurisdiction_id=10)
    lines, _ = _apply(
        applicator,
        [_line(), _line("6.25", "state_sales_tax", 10, TaxLevel.STATE)],
        [texas],
    )
    assert lines[0].tax_amount == Decimal("3.00")
    assert lines[1].tax_amount == Decimal("0")


def test_blanket_with_jurisdiction_stays_scoped(applicator):
    texas_blanket = _exemption(is_blanket=True, jurisdiction_id=10)
    lines, _ = _apply(
        applicator,
        [_line(), _line("6.25", "state_sales_tax", 10, TaxLevel.STATE)],
        [texas_blanket],
    )
    assert lines[0].tax_amount == Decimal("3.00")
    assert lines[1].tax_amount == Decimal("0")


def test_service_type_restriction(applicator):
    ld_only = _exemption(
        jurisdiction_id=1, service_types=frozenset({ServiceType.LONG_DISTANCE})
    )
    lines, _ = _apply(applicator, [_line()], [ld_only], ServiceType.LOCAL)
    assert lines[0].tax_amount == Decimal("3.00")
    lines, _ = _apply(applicator, [_line()], [ld_only], ServiceType.LONG_DISTANCE)
    assert lines[0].tax_amount == Decimal("0")


def test_no_exemptions_returns_lines_unchanged(applicator):
    original = [_line()]
    lines, applied = _apply(applicator, original, [])
    assert lines == original
    assert applied == []


# ── Conditions ───────────────────────────────────────────────────────


def test_minimum_amount_condition(applicator):
    over_500 = _exemption(
        jurisdiction_id=1,
        conditions=(ExemptionCondition("minimum_amount", "500", ">="),),
    )
    lines, applied = _apply(applicator, [_line()], [over_500])
    assert lines[0].tax_amount == Decimal("3.00")
    assert applied == []


def test_service_type_condition(applicator):
    voip = _exemption(
        jurisdiction_id=1,
        conditions=(ExemptionCondition("service_type", ["voip_fixed", "voip_nomadic"]),),
    )
    lines, _ = _apply(applicator, [_line()], [voip], ServiceType.VOIP_FIXED)
    assert lines[0].tax_amount == Decimal("0")
    lines, _ = _apply(applicator, [_line()], [voip], ServiceType.LOCAL)
    assert lines[0].tax_amount == Decimal("3.00")


def test_date_range_condition_uses_calculation_date(applicator):
    summer = _exemption(
        jurisdiction_id=1,
        conditions=(
            ExemptionCondition(
                "date_range", start_date=date(2024, 6, 1), end_date=date(2024, 8, 31)
            ),
        ),
    )
    lines, _ = _apply(applicator, [_line()], [summer])
    assert lines[0].tax_amount == Decimal("0")

    lines, _ = applicator.apply([_line()], [summer], ServiceType.LOCAL, date(2024, 9, 1))
    assert lines[0].tax_amount == Decimal("3.00")


def test_usage_limit_condition(applicator):
    limited = _exemption(jurisdiction_id=1, conditions=(ExemptionCondition("usage_limit", 2),))
    lines, _ = _apply(applicator, [_line()], [limited], usage={1: 1})
    assert lines[0].tax_amount == Decimal("0")
    lines, _ = _apply(applicator, [_line()], [limited], usage={1: 2})
    assert lines[0].tax_amount == Decimal("3.00")


@pytest.mark.parametrize(
    "condition",
    [
        ExemptionCondition("minimum_amount"),
        ExemptionCondition("minimum_amount", "lots", ">="),
        ExemptionCondition("usage_limit"),
        ExemptionCondition("usage_limit", "unlimited"),
        ExemptionCondition("service_type"),
    ],
)
def test_malformed_condition_is_unmet(applicator, condition):
    exemption = _exemption(jurisdiction_id=1, conditions=(condition,))
    lines, applied = _apply(applicator, [_line()], [exemption])
    assert lines[0].tax_amount == Decimal("3.00")
    assert applied == []


def test_malformed_condition_does_not_break_calculation():
    reference = default_reference_data()
    reference.exemptions.add(
        _exemption(1, is_blanket=True, conditions=(ExemptionCondition("minimum_amount"),))
    )
    result = VoIPTaxCalculator(reference).calculate_taxes(
        1, {"amount": "100", "client_id": 42, "calculation_date": DAY}
    )
    assert result.total_tax_amount == Decimal("36.40")
    assert result.exemptions_applied == ()

# ── Usage audit ──────────────────────────────────────────────────────


def test_recorder_writes_one_row_per_application():
    repo = InMemoryExemptionUsageRepository()
    recorder = ExemptionUsageRecorder(repo, clock=lambda: datetime(2024, 6, 15, 12, 0))
    applied = [
        AppliedExemption(1, "Non-Profit", "Federal Excise Tax", "federal_excise_tax",
                         TaxLevel.FEDERAL, Decimal("3.00"), Decimal("1.80")),
        AppliedExemption(2, "Government", "Federal Excise Tax", "federal_excise_tax",
                         TaxLevel.FEDERAL, Decimal("3.00"), Decimal("1.20")),
    ]
    rows = recorder.record(1, applied, DocumentReference(DocumentKind.CREDIT_NOTE, 55))
    assert [r.exemption_id for r in rows] == [1, 2]
    assert rows[0].final_tax_amount == Decimal("1.20")
    assert rows[0].exemption_reason == "Non-Profit"
    assert rows[1].document == DocumentReference(DocumentKind.CREDIT_NOTE, 55)
    assert repo.count_for_month(1, 2024, 6) == 1
    assert repo.count_for_month(1, 2024, 7) == 0


def test_usage_limit_is_enforced_end_to_end():
    reference = default_reference_data()
    reference.exemptions.add(
        _exemption(
            1,
            is_blanket=True,
            conditions=(ExemptionCondition("usage_limit", 1),),
        )
    )
    engine = VoIPTaxCalculator(reference)
    engine.usage_recorder.clock = lambda: datetime(2024, 6, 2)

    request = {"amount": "100.00", "client_id": 42, "calculation_date": DAY}
    first = engine.calculate_taxes(1, request)
    assert first.total_tax_amount == Decimal("0")
    engine.record_exemption_usage(
        1, first.exemptions_applied[:1], DocumentReference(DocumentKind.INVOICE, 1)
    )

    second = engine.calculate_taxes(1, dict(request, amount="100.01"))
    assert second.exemptions_applied == ()
    assert second.total_tax_amount > 0


def test_client_scoped_state_exemption_end_to_end():
    reference = default_reference_data()
    reference.exemptions.add(
        _exemption(1, jurisdiction_id=10, tax_types=frozenset({"state_sales_tax"}))
    )
    engine = VoIPTaxCalculator(reference)
    result = engine.calculate_taxes(
        1,
        {
            "amount": "100.00",
            "service_address": HOUSTON,
            "client_id": 42,
            "calculation_date": DAY,
        },
    )
    sales = next(t for t in result.state_taxes if t.tax_type == "state_sales_tax")
    assert sales.tax_amount == Decimal("0")
    assert sales.exempted_amount == Decimal("6.25")
    assert result.total_exempted_amount == Decimal("6.25")
    assert [a.exemption_id for a in result.exemptions_applied] == [1]
    assert result.final_amount == result.base_amount + result.total_tax_amount
