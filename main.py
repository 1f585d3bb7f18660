#!/usr/bin/env python3
"""
VoIP Tax Engine - Entry Point

Calculates federal, state and local taxes and regulatory fees for VoIP
and telecommunications charges.

Usage:
    python main.py calculate --amount 100 --service-type local
    python main.py calculate --amount 250 --state TX --county Harris --city Houston --lines 3
    python main.py calculate --file charges.csv --export-csv tax_lines.csv
    python main.py --data examples/reference_data.yaml calculate --amount 80 --state NY --city "New York" --postal-code 10001 --client-id 501
    python main.py jurisdictions --state CA --county "Los Angeles" --city "Los Angeles"
    python main.py rates --jurisdiction 10
    python main.py service-types
"""

from voip_tax_engine.cli import main

if __name__ == "__main__":
    main()
