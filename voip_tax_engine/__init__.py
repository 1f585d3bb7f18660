"""
VoIP Tax Engine
===============

Federal, state and local tax and regulatory fee calculation for VoIP
and telecommunications charges, with client exemptions, result caching
and an exemption usage audit trail.

Modules:
    models           - Reference entities, tax lines and calculation results
    rates            - Rate formulas, federal constants and built-in reference data
    jurisdictions    - Service address to taxing jurisdiction resolution
    categories       - Service type to tax category matching
    levels           - Federal, state and local rate calculators
    exemptions       - Exemption lookup, application and usage audit
    cache            - Result cache backends and key derivation
    calculator       - The tax calculation engine
    loader           - YAML reference data loader
    report_generator - Calculation reporting with CSV/JSON export
    cli              - Command-line interface
"""

__version__ = "1.0.0"

from voip_tax_engine.calculator import VoIPTaxCalculator
from voip_tax_engine.config import EngineConfig
from voip_tax_engine.loader import load_reference_data
from voip_tax_engine.rates import default_reference_data
from voip_tax_engine.report_generator import ReportGenerator

__all__ = [
    "VoIPTaxCalculator",
    "EngineConfig",
    "load_reference_data",
    "default_reference_data",
    "ReportGenerator",
]
