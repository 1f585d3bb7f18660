"""
Tax calculation report generator.

Produces:
- Per-calculation tax breakdowns
- Batch summaries by level, tax type and jurisdiction
- Tax line tables (pandas) for CSV export
- JSON export and console-friendly text
"""

from __future__ import annotations

import csv
import io
import json
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Optional

import pandas as pd

from voip_tax_engine.models import CalculationResult, CalculationSummary

LINE_COLUMNS = [
    "calculation",
    "level",
    "jurisdiction",
    "tax_name",
    "tax_type",
    "rate_type",
    "rate",
    "base_amount",
    "tax_amount",
    "exempted_amount",
    "authority",
]


class _DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal and date objects."""

    def default(self, o: Any) -> Any:
        if isinstance(o, Decimal):
            return float(o)
        if isinstance(o, date):
            return o.isoformat()
        return super().default(o)


def _decimal_to_float(obj: Any) -> Any:
    """Recursively convert Decimal values to float for serialization."""
    if isinstance(obj, dict):
        return {k: _decimal_to_float(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_decimal_to_float(i) for i in obj]
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, date):
        return obj.isoformat()
    return obj


class ReportGenerator:
    """
    Generates tax calculation reports with export capabilities.

    Reports are structured dicts that can be rendered to text or
    exported to CSV/JSON under ``output_dir``.
    """

    def __init__(self, output_dir: Optional[str] = None) -> None:
        self.output_dir = Path(output_dir) if output_dir else Path("reports")

    def _write(self, filename: str, content: str) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / filename
        path.write_text(content, encoding="utf-8")
        return path

    # ------------------------------------------------------------------
    # Single calculation
    # ------------------------------------------------------------------

    def calculation_report(self, result: CalculationResult) -> dict[str, Any]:
        """Breakdown of one calculation."""
        data = result.to_dict()
        return {
            "report_type": "tax_calculation",
            "generated_date": date.today().isoformat(),
            "summary": {
                "service_type": result.service_type.value,
                "calculation_date": result.calculation_date,
                "base_amount": result.base_amount,
                "total_tax_amount": result.total_tax_amount,
                "total_exempted": result.total_exempted_amount,
                "final_amount": result.final_amount,
                "effective_rate": (
                    float(result.total_tax_amount / result.base_amount)
                    if result.base_amount > 0
                    else 0.0
                ),
            },
            "tax_breakdown": data["tax_breakdown"],
            "exemptions_applied": data["exemptions_applied"],
            "jurisdictions": data["jurisdictions"],
        }

    # ------------------------------------------------------------------
    # Batch summary
    # ------------------------------------------------------------------

    def summary_report(
        self,
        summary: CalculationSummary,
        period_label: str = "",
    ) -> dict[str, Any]:
        """Totals across a batch, by level and by tax type."""
        return {
            "report_type": "tax_calculation_summary",
            "period": period_label,
            "generated_date": date.today().isoformat(),
            "summary": {
                "calculations": summary.calculation_count,
                "total_base_amount": summary.total_base_amount,
                "total_tax_amount": summary.total_tax_amount,
                "total_final_amount": summary.total_final_amount,
                "exemptions_total": summary.exemptions_total,
                "overall_effective_rate": (
                    float(summary.total_tax_amount / summary.total_base_amount)
                    if summary.total_base_amount > 0
                    else 0.0
                ),
            },
            "level_breakdown": {
                "federal": summary.federal_taxes,
                "state": summary.state_taxes,
                "local": summary.local_taxes,
            },
            "tax_by_type": {
                tax_type: amount
                for tax_type, amount in sorted(
                    summary.tax_by_type.items(),
                    key=lambda x: x[1],
                    reverse=True,
                )
            },
            "jurisdictions": [
                {"id": jid, "name": name}
                for jid, name in sorted(summary.jurisdictions.items())
            ],
        }

    # ------------------------------------------------------------------
    # Tabular views
    # ------------------------------------------------------------------

    def tax_lines_frame(self, results: Iterable[CalculationResult]) -> pd.DataFrame:
        """One row per tax line across ``results``."""
        rows = [
            {
                "calculation": index,
                "level": line.level.value,
                "jurisdiction": line.jurisdiction or "",
                "tax_name": line.tax_name,
                "tax_type": line.tax_type,
                "rate_type": line.rate_type.value,
                "rate": float(line.rate),
                "base_amount": float(line.base_amount),
                "tax_amount": float(line.tax_amount),
                "exempted_amount": float(line.exempted_amount),
                "authority": line.authority,
            }
            for index, result in enumerate(results, start=1)
            for line in result.tax_breakdown
        ]
        return pd.DataFrame(rows, columns=LINE_COLUMNS)

    def level_totals(self, results: Iterable[CalculationResult]) -> pd.DataFrame:
        """Tax and exempted amounts per level and jurisdiction."""
        frame = self.tax_lines_frame(results)
        if frame.empty:
            return pd.DataFrame(
                columns=["level", "jurisdiction", "tax_amount", "exempted_amount", "lines"]
            )
        return (
            frame.groupby(["level", "jurisdiction"], sort=True)
            .agg(
                tax_amount=("tax_amount", "sum"),
                exempted_amount=("exempted_amount", "sum"),
                lines=("tax_name", "count"),
            )
            .reset_index()
        )

    # ------------------------------------------------------------------
    # Export methods
    # ------------------------------------------------------------------

    def to_json(
        self,
        report: dict[str, Any],
        filename: Optional[str] = None,
    ) -> str:
        """Export a report to JSON. Returns the JSON string."""
        serializable = _decimal_to_float(report)
        json_str = json.dumps(serializable, indent=2, cls=_DecimalEncoder)

        if filename:
            self._write(filename, json_str)

        return json_str

    def to_csv(
        self,
        report: dict[str, Any],
        filename: Optional[str] = None,
        section: str = "tax_breakdown",
    ) -> str:
        """
        Export a report section to CSV. Returns the CSV string.

        The section parameter specifies which list/dict in the report
        to export as rows.
        """
        data = report.get(section, [])
        if not data:
            return ""

        output = io.StringIO()

        if isinstance(data, list) and isinstance(data[0], dict):
            writer = csv.DictWriter(output, fieldnames=list(data[0].keys()))
            writer.writeheader()
            for row in data:
                writer.writerow(
                    {k: float(v) if isinstance(v, Decimal) else v for k, v in row.items()}
                )
        elif isinstance(data, dict):
            writer = csv.writer(output)
            writer.writerow(["key", "value"])
            for k, v in data.items():
                writer.writerow([k, float(v) if isinstance(v, Decimal) else v])

        csv_str = output.getvalue()

        if filename:
            self._write(filename, csv_str)

        return csv_str

    def export_tax_lines(
        self,
        results: Iterable[CalculationResult],
        filename: str = "tax_lines.csv",
    ) -> str:
        """Export every tax line of ``results`` to CSV."""
        csv_str = self.tax_lines_frame(results).to_csv(index=False)
        self._write(filename, csv_str)
        return csv_str

    # ------------------------------------------------------------------
    # Console-formatted text output
    # ------------------------------------------------------------------

    def format_text(self, report: dict[str, Any]) -> str:
        """Format a report as human-readable text for console output."""
        lines: list[str] = []
        report_type = report.get("report_type", "report").replace("_", " ").title()
        lines.append(f"{'=' * 60}")
        lines.append(f"  {report_type}")
        lines.append(f"  Generated: {report.get('generated_date', '')}")
        if report.get("period"):
            lines.append(f"  Period: {report['period']}")
        lines.append(f"{'=' * 60}")
        lines.append("")

        summary = report.get("summary", {})
        if summary:
            lines.append("SUMMARY")
            lines.append("-" * 40)
            for key, value in summary.items():
                label = key.replace("_", " ").title()
                if isinstance(value, (float, Decimal)):
                    if "rate" in key:
                        lines.append(f"  {label}: {float(value):.2%}")
                    else:
                        lines.append(f"  {label}: ${float(value):,.4f}")
                else:
                    lines.append(f"  {label}: {value}")
            lines.append("")

        breakdown = report.get("tax_breakdown", [])
        if breakdown:
            lines.append("TAX BREAKDOWN")
            lines.append("-" * 40)
            for t in breakdown:
                where = t.get("jurisdiction") or t.get("authority", "")
                line = (
                    f"  [{t['level']}] {t['tax_name']} ({where}): "
                    f"${float(t['tax_amount']):,.4f}"
                )
                if t.get("exempted_amount"):
                    line += f" (exempted ${float(t['exempted_amount']):,.4f})"
                lines.append(line)
            lines.append("")

        levels = report.get("level_breakdown", {})
        if levels:
            lines.append("LEVEL BREAKDOWN")
            lines.append("-" * 40)
            for level, amount in levels.items():
                lines.append(f"  {level}: ${float(amount):>12,.4f}")
            lines.append("")

        by_type = report.get("tax_by_type", {})
        if by_type:
            lines.append("TAX BY TYPE")
            lines.append("-" * 40)
            for tax_type, amount in by_type.items():
                lines.append(f"  {tax_type}: ${float(amount):>12,.4f}")
            lines.append("")

        exemptions = report.get("exemptions_applied", [])
        if exemptions:
            lines.append("EXEMPTIONS APPLIED")
            lines.append("-" * 40)
            for e in exemptions:
                lines.append(
                    f"  {e['exemption_name']} on {e['tax_name']}: "
                    f"${float(e['exempted_amount']):,.4f} of "
                    f"${float(e['original_amount']):,.4f}"
                )
            lines.append("")

        jurisdictions = report.get("jurisdictions", [])
        if jurisdictions:
            lines.append("JURISDICTIONS")
            lines.append("-" * 40)
            for j in jurisdictions:
                level = f" ({j['level']})" if "level" in j else ""
                lines.append(f"  {j['id']}: {j['name']}{level}")
            lines.append("")

        return "\n".join(lines)
