"""Tests for the command-line interface."""

from pathlib import Path

import pytest
from rich.console import Console

from voip_tax_engine import cli
from voip_tax_engine.cli import build_parser, main

EXAMPLES = Path(__file__).resolve().parent.parent / "examples"


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    # keep table cells on one line
    monkeypatch.setattr(cli, "console", Console(width=200))


def test_parser_defaults():
    args = build_parser().parse_args(["calculate", "--amount", "10"])
    assert args.company is None
    assert args.service_type == "local"
    assert args.data is None


def test_no_command_prints_help(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main([])
    assert excinfo.value.code == 0
    assert "voip-tax-engine" in capsys.readouterr().out


def test_calculate_single_charge(capsys):
    main(["calculate", "--amount", "100", "--date", "2024-06-15"])
    out = capsys.readouterr().out
    assert "Total Tax" in out
    assert "$36.4000" in out
    assert "$136.4000" in out


def test_calculate_with_address(capsys):
    main(
        [
            "calculate",
            "--amount", "250",
            "--service-type", "voip_fixed",
            "--state", "TX",
            "--county", "Harris",
            "--city", "Houston",
            "--lines", "3",
            "--date", "2024-06-15",
        ]
    )
    out = capsys.readouterr().out
    assert "$118.8750" in out
    assert "City of Houston" in out


def test_calculate_requires_amount_or_file():
    with pytest.raises(SystemExit) as excinfo:
        main(["calculate"])
    assert excinfo.value.code == 1


def test_calculate_invalid_amount(capsys):
    with pytest.raises(SystemExit):
        main(["calculate", "--amount", "lots"])
    assert "amount" in capsys.readouterr().out


def test_calculate_with_reference_file(capsys):
    main(
        [
            "--data", str(EXAMPLES / "reference_data.yaml"),
            "--config", str(EXAMPLES / "engine.yaml"),
            "calculate",
            "--amount", "80",
            "--state", "NY",
            "--city", "New York",
            "--postal-code", "10001",
            "--client-id", "501",
            "--date", "2024-06-15",
        ]
    )
    out = capsys.readouterr().out
    assert "$32.5500" in out
    assert "$2.0000" in out  # exempted


OTHER_COMPANY = """
company_id: 7
jurisdictions:
  - {id: 1, name: Federal, level: federal}
  - {id: 2, name: Oregon, level: state, state: OR, authority: Oregon DOR}
"""


def test_company_defaults_to_data_file(tmp_path, capsys):
    data = tmp_path / "reference.yaml"
    data.write_text(OTHER_COMPANY, encoding="utf-8")
    main(["--data", str(data), "jurisdictions", "--state", "OR"])
    assert "Oregon" in capsys.readouterr().out


def test_mismatched_company_is_reported(tmp_path, capsys, caplog):
    data = tmp_path / "reference.yaml"
    data.write_text(OTHER_COMPANY, encoding="utf-8")
    with caplog.at_level("WARNING"):
        main(["--data", str(data), "--company", "3", "jurisdictions", "--state", "OR"])
    assert "does not match company_id 7" in caplog.text
    assert "No jurisdictions" in capsys.readouterr().out


def test_calculate_batch_from_csv(tmp_path, capsys):
    charges = tmp_path / "charges.csv"
    charges.write_text(
        "amount,service_type,state,county,city,postal_code,client_id,"
        "calculation_date,line_count,minutes\n"
        "100.00,local,,,,,,2024-06-15,,\n"
        "250.00,voip_fixed,TX,Harris,Houston,,,2024-06-15,3,\n"
        "oops,local,,,,,,2024-06-15,,\n",
        encoding="utf-8",
    )
    out_dir = tmp_path / "out"
    main(
        [
            "calculate",
            "--file", str(charges),
            "--period", "June 2024",
            "--output-dir", str(out_dir),
            "--export-json", "summary.json",
            "--export-csv", "lines.csv",
        ]
    )
    out = capsys.readouterr().out
    assert "Period: June 2024" in out
    assert "Skipped: Request 3" in out
    assert (out_dir / "summary.json").exists()
    assert (out_dir / "lines.csv").exists()


def test_calculate_missing_csv(tmp_path):
    with pytest.raises(SystemExit):
        main(["calculate", "--file", str(tmp_path / "missing.csv")])


def test_jurisdictions_command(capsys):
    main(["jurisdictions", "--state", "NY", "--city", "New York", "--postal-code", "10001"])
    out = capsys.readouterr().out
    assert "New York City" in out
    assert "NY-MCTD" in out


def test_jurisdictions_for_foreign_address(capsys):
    main(["jurisdictions", "--country", "MX"])
    assert "No jurisdictions" in capsys.readouterr().out


def test_rates_command(capsys):
    main(["rates", "-j", "10"])
    out = capsys.readouterr().out
    assert "6.25%" in out
    assert "Houston" not in out


def test_service_types_command(capsys):
    main(["service-types"])
    out = capsys.readouterr().out
    assert "voip_nomadic" in out
    assert "Nomadic VoIP" in out
