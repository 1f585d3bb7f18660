"""
Command-line interface for the VoIP Tax Engine.

Provides subcommands for tax calculation, jurisdiction lookup, rate
listing, and service type discovery.
"""

from __future__ import annotations

import argparse
import csv
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from voip_tax_engine.calculator import VoIPTaxCalculator
from voip_tax_engine.config import EngineConfig, load_config
from voip_tax_engine.errors import TaxEngineError
from voip_tax_engine.loader import build_reference_data, load_yaml_file
from voip_tax_engine.models import CalculationResult, ServiceAddress, ServiceType
from voip_tax_engine.rates import DEFAULT_COMPANY_ID, default_reference_data
from voip_tax_engine.report_generator import ReportGenerator

console = Console()
logger = logging.getLogger(__name__)

_ADDRESS_FIELDS = ("country", "state", "county", "city", "postal_code")


def _build_engine(args: argparse.Namespace) -> VoIPTaxCalculator:
    """Build the engine and settle the company scope queries run under."""
    if args.data:
        document = load_yaml_file(args.data)
        data_company = int(document.get("company_id", DEFAULT_COMPANY_ID))
        if args.company is None:
            args.company = data_company
        elif args.company != data_company:
            logger.warning(
                "--company %d does not match company_id %d in %s; "
                "no reference data will be found",
                args.company,
                data_company,
                args.data,
            )
        reference = build_reference_data(document)
    else:
        if args.company is None:
            args.company = DEFAULT_COMPANY_ID
        reference = default_reference_data(args.company)
    config = load_config(args.config) if args.config else EngineConfig()
    return VoIPTaxCalculator(reference, config)


def _address_from_args(args: argparse.Namespace) -> dict[str, Optional[str]]:
    return {name: getattr(args, name, None) for name in _ADDRESS_FIELDS}


def _load_requests_csv(path: str) -> list[dict[str, Any]]:
    """
    Load calculation requests from a CSV file.

    Expected columns: amount, service_type, country, state, county,
                      city, postal_code, client_id, calculation_date,
                      line_count, minutes
    """
    csv_path = Path(path)
    if not csv_path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        sys.exit(1)

    requests: list[dict[str, Any]] = []
    with open(csv_path, newline="", encoding="utf-8") as f:
        for row in csv.DictReader(f):
            row = {k: (v.strip() if isinstance(v, str) else v) for k, v in row.items()}
            requests.append(
                {
                    "amount": row.get("amount"),
                    "service_type": row.get("service_type") or "local",
                    "service_address": {k: row.get(k) for k in _ADDRESS_FIELDS},
                    "client_id": row.get("client_id") or None,
                    "calculation_date": row.get("calculation_date") or None,
                    "line_count": row.get("line_count") or None,
                    "minutes": row.get("minutes") or None,
                }
            )
    return requests


def _print_result(result: CalculationResult) -> None:
    table = Table(title="Tax Breakdown", box=box.ROUNDED, show_lines=True)
    table.add_column("Level", style="dim")
    table.add_column("Tax / Fee")
    table.add_column("Jurisdiction")
    table.add_column("Rate", justify="right")
    table.add_column("Tax", justify="right", style="bold")
    table.add_column("Exempted", justify="right")

    for line in result.tax_breakdown:
        rate = (
            f"{line.rate}%" if line.rate_type.value == "percentage" else f"${line.rate}"
        )
        table.add_row(
            line.level.value,
            line.tax_name,
            line.jurisdiction or "-",
            rate,
            f"${line.tax_amount:,.4f}",
            f"${line.exempted_amount:,.4f}" if line.exempted_amount else "",
        )

    if result.tax_breakdown:
        console.print(table)

    console.print(
        Panel(
            f"[bold]Service Type:[/bold] {result.service_type.label}\n"
            f"[bold]Base Amount:[/bold] ${result.base_amount:,.2f}\n"
            f"[bold]Total Tax:[/bold] ${result.total_tax_amount:,.4f}\n"
            f"[bold]Exempted:[/bold] ${result.total_exempted_amount:,.4f}\n"
            f"[bold]Final Amount:[/bold] ${result.final_amount:,.4f}\n"
            f"[bold]Jurisdictions:[/bold] "
            f"{', '.join(j.name for j in result.jurisdictions) or 'None'}",
            title="Tax Calculation",
            border_style="blue",
        )
    )


# -----------------------------------------------------------------------
# Subcommand: calculate
# -----------------------------------------------------------------------


def cmd_calculate(args: argparse.Namespace) -> None:
    """Calculate VoIP taxes for a single charge or CSV batch."""
    engine = _build_engine(args)
    rg = ReportGenerator(args.output_dir or "reports")

    if args.file:
        batch = engine.calculate_batch(args.company, _load_requests_csv(args.file))
        report = rg.summary_report(batch.summary, period_label=args.period or "")
        console.print(rg.format_text(report))

        totals = rg.level_totals(batch.results)
        if not totals.empty:
            table = Table(title="Tax by Jurisdiction", box=box.ROUNDED)
            table.add_column("Level", style="bold")
            table.add_column("Jurisdiction")
            table.add_column("Lines", justify="right")
            table.add_column("Tax", justify="right")
            table.add_column("Exempted", justify="right")
            for row in totals.itertuples(index=False):
                table.add_row(
                    row.level,
                    row.jurisdiction or "-",
                    str(row.lines),
                    f"${row.tax_amount:,.4f}",
                    f"${row.exempted_amount:,.4f}",
                )
            console.print(table)

        for error in batch.errors:
            console.print(f"[yellow]Skipped: {error}[/yellow]")

        if args.export_json:
            rg.to_json(report, args.export_json)
            console.print(f"[green]JSON exported to {args.export_json}[/green]")
        if args.export_csv:
            rg.export_tax_lines(batch.results, args.export_csv)
            console.print(f"[green]CSV exported to {args.export_csv}[/green]")
        return

    if args.amount is None:
        console.print("[red]Provide --amount, or --file[/red]")
        sys.exit(1)

    try:
        result = engine.calculate_taxes(
            args.company,
            {
                "amount": args.amount,
                "service_type": args.service_type,
                "service_address": _address_from_args(args),
                "client_id": args.client_id,
                "calculation_date": args.date,
                "line_count": args.lines,
                "minutes": args.minutes,
            },
        )
    except TaxEngineError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    _print_result(result)

    if args.export_json:
        rg.to_json(rg.calculation_report(result), args.export_json)
        console.print(f"[green]JSON exported to {args.export_json}[/green]")


# -----------------------------------------------------------------------
# Subcommand: jurisdictions
# -----------------------------------------------------------------------


def cmd_jurisdictions(args: argparse.Namespace) -> None:
    """Show the jurisdictions that apply to an address."""
    engine = _build_engine(args)
    address = ServiceAddress.from_dict(_address_from_args(args))
    matched = engine.jurisdiction_resolver.resolve(args.company, address)

    table = Table(title="Applicable Jurisdictions", box=box.ROUNDED)
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Level")
    table.add_column("Code")
    table.add_column("Authority")
    for j in matched:
        table.add_row(str(j.id), j.name, j.level.value, j.code, j.authority_name)
    console.print(table)

    if not matched:
        console.print("[yellow]No jurisdictions on file for this address.[/yellow]")


# -----------------------------------------------------------------------
# Subcommand: rates
# -----------------------------------------------------------------------


def cmd_rates(args: argparse.Namespace) -> None:
    """List rate definitions on file."""
    engine = _build_engine(args)
    rates = engine.reference.rates.all_for_company(args.company)
    if args.jurisdiction is not None:
        rates = [r for r in rates if r.jurisdiction_id == args.jurisdiction]

    table = Table(title="Rate Definitions", box=box.ROUNDED)
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Jurisdiction", justify="right")
    table.add_column("Name", style="bold")
    table.add_column("Type")
    table.add_column("Formula")
    table.add_column("Rate", justify="right")
    table.add_column("Services")
    for r in rates:
        formula = r.rate_type.value + (" per line" if r.per_line else "")
        table.add_row(
            str(r.id),
            str(r.jurisdiction_id),
            r.tax_name,
            r.tax_type,
            formula,
            f"{r.rate}%" if r.percentage_rate is not None else f"${r.rate}",
            ", ".join(sorted(s.value for s in r.service_types)) or "all",
            style="dim" if not r.is_active else "",
        )
    console.print(table)


# -----------------------------------------------------------------------
# Subcommand: service-types
# -----------------------------------------------------------------------


def cmd_service_types(args: argparse.Namespace) -> None:
    """List the service types the engine understands."""
    table = Table(title="Service Types", box=box.SIMPLE)
    table.add_column("Value", style="bold")
    table.add_column("Label")
    for service in ServiceType:
        table.add_row(service.value, service.label)
    console.print(table)


# -----------------------------------------------------------------------
# Argument parser
# -----------------------------------------------------------------------


def _add_address_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--country", help="Country code (default US)")
    parser.add_argument("--state", help="State or province code")
    parser.add_argument("--county", help="County name")
    parser.add_argument("--city", help="City name")
    parser.add_argument("--postal-code", dest="postal_code", help="Postal code")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="voip-tax-engine",
        description="VoIP Tax Engine - Federal, state and local telecom tax and fee calculation",
    )
    parser.add_argument("--data", help="Reference data YAML file")
    parser.add_argument("--config", help="Engine configuration YAML file")
    parser.add_argument(
        "--company",
        type=int,
        default=None,
        help="Company scope for queries (default: the data file's company_id, else 1)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # calculate
    calc_p = subparsers.add_parser("calculate", help="Calculate VoIP taxes")
    calc_p.add_argument("--amount", help="Charge amount")
    calc_p.add_argument(
        "--service-type",
        dest="service_type",
        default="local",
        choices=[s.value for s in ServiceType],
        help="Service type",
    )
    _add_address_args(calc_p)
    calc_p.add_argument("--client-id", dest="client_id", help="Client for exemptions")
    calc_p.add_argument("--date", help="Calculation date (ISO format)")
    calc_p.add_argument("--lines", help="Number of lines (default 1)")
    calc_p.add_argument("--minutes", help="Billed minutes (default 0)")
    calc_p.add_argument("--file", "-f", help="CSV file with charges")
    calc_p.add_argument("--period", help="Period label for reports")
    calc_p.add_argument("--export-json", help="Export results to JSON file")
    calc_p.add_argument("--export-csv", help="Export batch tax lines to CSV file")
    calc_p.add_argument("--output-dir", help="Output directory for exports")
    calc_p.set_defaults(func=cmd_calculate)

    # jurisdictions
    jur_p = subparsers.add_parser(
        "jurisdictions", help="Resolve jurisdictions for an address"
    )
    _add_address_args(jur_p)
    jur_p.set_defaults(func=cmd_jurisdictions)

    # rates
    rates_p = subparsers.add_parser("rates", help="List rate definitions")
    rates_p.add_argument(
        "--jurisdiction", "-j", type=int, help="Jurisdiction id to filter by"
    )
    rates_p.set_defaults(func=cmd_rates)

    # service-types
    st_p = subparsers.add_parser("service-types", help="List service types")
    st_p.set_defaults(func=cmd_service_types)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    logging.basicConfig(
        level=args.log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    args.func(args)
