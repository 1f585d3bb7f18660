"""Exception hierarchy for the VoIP tax engine."""

from __future__ import annotations


class TaxEngineError(Exception):
    """Base class for all engine errors."""


class ValidationError(TaxEngineError, ValueError):
    """A calculation request failed input validation."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")


class ConfigurationError(TaxEngineError):
    """The engine was called without a usable configuration or scope."""


class MissingUSFRateError(ConfigurationError):
    """No quarterly USF rate is on file and the fallback is disabled."""

    def __init__(self, year: int, quarter: int) -> None:
        self.year = year
        self.quarter = quarter
        super().__init__(f"No USF contribution factor on file for Q{quarter} {year}")


class CacheError(TaxEngineError):
    """The cache backend could not serve a request."""


class PatternInvalidationUnsupported(CacheError):
    """The cache backend cannot delete keys by pattern."""


class ReferenceDataError(TaxEngineError):
    """A reference data document is malformed."""
