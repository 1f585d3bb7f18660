"""
Engine configuration.

Defaults mirror the production settings: one-hour cache, four-place
rounding, and the 33.4% USF contribution factor as the fallback when no
quarterly rate is on file. Settings can be loaded from the ``engine:``
mapping of a YAML file. Setting ``redis_url`` moves the result cache to
a shared Redis server.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from voip_tax_engine.errors import ConfigurationError

USF_POLICIES = ("default", "strict")


@dataclass(frozen=True)
class EngineConfig:
    cache_ttl: int = 3600  # seconds
    enable_caching: bool = True
    round_precision: int = 4
    usf_fallback_rate: Decimal = Decimal("33.4")
    usf_fallback_policy: str = "default"  # default | strict
    default_country: str = "US"
    redis_url: Optional[str] = None  # shared cache; in-process when unset

    def __post_init__(self) -> None:
        if self.cache_ttl <= 0:
            raise ConfigurationError("cache_ttl must be a positive number of seconds")
        if not 0 <= self.round_precision <= 10:
            raise ConfigurationError("round_precision must be between 0 and 10")
        if self.usf_fallback_policy not in USF_POLICIES:
            raise ConfigurationError(
                f"usf_fallback_policy must be one of {', '.join(USF_POLICIES)}"
            )
        if self.usf_fallback_rate < 0:
            raise ConfigurationError("usf_fallback_rate must be non-negative")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EngineConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(
                f"Unknown engine settings: {', '.join(sorted(unknown))}"
            )
        values = dict(data)
        try:
            if "cache_ttl" in values:
                values["cache_ttl"] = int(values["cache_ttl"])
            if "round_precision" in values:
                values["round_precision"] = int(values["round_precision"])
            if "usf_fallback_rate" in values:
                values["usf_fallback_rate"] = Decimal(str(values["usf_fallback_rate"]))
        except (TypeError, ValueError, InvalidOperation) as e:
            raise ConfigurationError(f"Invalid engine setting: {e}") from e
        if "enable_caching" in values:
            values["enable_caching"] = bool(values["enable_caching"])
        return cls(**values)


def load_config(path: Union[str, Path]) -> EngineConfig:
    """Read ``EngineConfig`` from the ``engine`` section of a YAML file."""
    with open(path, encoding="utf-8") as f:
        document = yaml.safe_load(f) or {}
    if not isinstance(document, dict):
        raise ConfigurationError(f"{path}: expected a mapping at the top level")
    section = document.get("engine", {}) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"{path}: 'engine' must be a mapping")
    return EngineConfig.from_dict(section)
