"""Tests for report generation and export."""

import json
from datetime import date
from decimal import Decimal

import pytest

from voip_tax_engine.calculator import VoIPTaxCalculator
from voip_tax_engine.report_generator import LINE_COLUMNS, ReportGenerator

DAY = date(2024, 6, 15)
HOUSTON = {"state": "TX", "county": "Harris", "city": "Houston"}


@pytest.fixture
def engine() -> VoIPTaxCalculator:
    return VoIPTaxCalculator()


@pytest.fixture
def rg(tmp_path) -> ReportGenerator:
    return ReportGenerator(str(tmp_path / "reports"))


@pytest.fixture
def results(engine: VoIPTaxCalculator):
    return [
        engine.calculate_taxes(1, {"amount": "100.00", "calculation_date": DAY}),
        engine.calculate_taxes(
            1,
            {
                "amount": "250.00",
                "service_type": "voip_fixed",
                "service_address": HOUSTON,
                "line_count": 3,
                "calculation_date": DAY,
            },
        ),
    ]


# ── Calculation report ───────────────────────────────────────────────


def test_calculation_report(rg: ReportGenerator, results):
    report = rg.calculation_report(results[0])
    assert report["report_type"] == "tax_calculation"
    assert report["summary"]["total_tax_amount"] == Decimal("36.40")
    assert report["summary"]["effective_rate"] == pytest.approx(0.364)
    assert len(report["tax_breakdown"]) == 2


def test_calculation_report_zero_base(rg: ReportGenerator, engine: VoIPTaxCalculator):
    result = engine.calculate_taxes(1, {"amount": "0", "calculation_date": DAY})
    assert rg.calculation_report(result)["summary"]["effective_rate"] == 0.0


def test_summary_report(rg: ReportGenerator, engine: VoIPTaxCalculator, results):
    report = rg.summary_report(engine.get_calculation_summary(results), "2024-06")
    assert report["period"] == "2024-06"
    assert report["summary"]["calculations"] == 2
    assert report["level_breakdown"]["local"] == Decimal("4.00")
    # largest tax type first
    assert next(iter(report["tax_by_type"])) == "universal_service_fund"
    assert {"id": 11, "name": "Harris County"} in report["jurisdictions"]


# ── Tabular views ────────────────────────────────────────────────────


def test_tax_lines_frame(rg: ReportGenerator, results):
    frame = rg.tax_lines_frame(results)
    assert list(frame.columns) == LINE_COLUMNS
    assert len(frame) == 8
    assert set(frame["calculation"]) == {1, 2}
    assert frame["tax_amount"].sum() == pytest.approx(155.275)


def test_tax_lines_frame_empty(rg: ReportGenerator):
    frame = rg.tax_lines_frame([])
    assert frame.empty
    assert list(frame.columns) == LINE_COLUMNS


def test_level_totals(rg: ReportGenerator, results):
    totals = rg.level_totals(results)
    local = totals[totals["level"] == "local"].set_index("jurisdiction")
    assert local.loc["Harris County", "tax_amount"] == pytest.approx(1.50)
    assert local.loc["City of Houston", "lines"] == 1
    federal = totals[totals["level"] == "federal"]
    assert int(federal["lines"].sum()) == 4


def test_level_totals_empty(rg: ReportGenerator):
    assert rg.level_totals([]).empty


# ── Export ───────────────────────────────────────────────────────────


def test_to_json_writes_file(rg: ReportGenerator, results):
    text = rg.to_json(rg.calculation_report(results[1]), "calc.json")
    data = json.loads(text)
    assert data["summary"]["base_amount"] == 250.0
    assert (rg.output_dir / "calc.json").exists()


def test_to_json_without_filename_writes_nothing(rg: ReportGenerator, results):
    rg.to_json(rg.calculation_report(results[0]))
    assert not rg.output_dir.exists()


def test_to_csv_breakdown(rg: ReportGenerator, results):
    text = rg.to_csv(rg.calculation_report(results[0]), "breakdown.csv")
    header = text.splitlines()[0]
    assert "tax_name" in header
    assert "Federal Excise Tax" in text
    assert (rg.output_dir / "breakdown.csv").exists()


def test_to_csv_missing_section(rg: ReportGenerator, results):
    assert rg.to_csv(rg.calculation_report(results[0]), section="nothing") == ""


def test_export_tax_lines(rg: ReportGenerator, results):
    text = rg.export_tax_lines(results, "lines.csv")
    assert text.splitlines()[0] == ",".join(LINE_COLUMNS)
    assert (rg.output_dir / "lines.csv").read_text(encoding="utf-8") == text


# ── Text ─────────────────────────────────────────────────────────────


def test_format_text(rg: ReportGenerator, engine: VoIPTaxCalculator, results):
    text = rg.format_text(rg.calculation_report(results[1]))
    assert "Tax Calculation" in text
    assert "TAX BREAKDOWN" in text
    assert "Harris County 9-1-1 Emergency Service Fee" in text
    assert "JURISDICTIONS" in text

    summary = rg.format_text(
        rg.summary_report(engine.get_calculation_summary(results), "2024-06")
    )
    assert "Period: 2024-06" in summary
    assert "LEVEL BREAKDOWN" in summary
