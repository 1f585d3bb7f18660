"""
Quick start: calculate VoIP taxes for a few charges.

Run from the repository root:
    python examples/quick_start.py
"""

from datetime import date

from voip_tax_engine import ReportGenerator, VoIPTaxCalculator
from voip_tax_engine.models import DocumentKind, DocumentReference

COMPANY_ID = 1


def main() -> None:
    engine = VoIPTaxCalculator()
    rg = ReportGenerator("reports")

    # Federal-only: no service address
    result = engine.calculate_taxes(
        COMPANY_ID,
        {"amount": "100.00", "service_type": "local", "calculation_date": date(2024, 6, 15)},
    )
    print(rg.format_text(rg.calculation_report(result)))

    # Houston, three lines: state, county E911 and city taxes
    result = engine.calculate_taxes(
        COMPANY_ID,
        {
            "amount": "250.00",
            "service_type": "voip_fixed",
            "service_address": {"state": "TX", "county": "Harris", "city": "Houston"},
            "line_count": 3,
        },
    )
    print(rg.format_text(rg.calculation_report(result)))

    # Equipment is not in any taxable category
    result = engine.calculate_taxes(COMPANY_ID, {"amount": "50.00", "service_type": "equipment"})
    print(f"Equipment: tax={result.total_tax_amount} final={result.final_amount}")

    # Finalize on an invoice: record any exemptions used
    engine.record_exemption_usage(
        COMPANY_ID,
        result.exemptions_applied,
        DocumentReference(DocumentKind.INVOICE, 1001),
    )


if __name__ == "__main__":
    main()
