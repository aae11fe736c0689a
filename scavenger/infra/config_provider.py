# scavenger/infra/config_provider.py
"""
In-memory configuration provider.

Per-site unit switches and limits, each falling back to a fleet-wide
default when a site has no entry of its own.  Fleet-wide allocation
settings come from ``settings.*``.  Persistence is the caller's concern:
load rows from wherever they live and feed them through ``set_*``.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from scavenger.core.scavenging.domain import ResourceType, UnitLimits
from scavenger.infra.logging_config import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class SiteUnitsConfig(BaseModel):
    """Which troop types a site may send scavenging (spear only by default)."""

    model_config = ConfigDict(extra="forbid")

    spear: bool = True
    sword: bool = False
    axe: bool = False
    archer: bool = False
    light: bool = False
    marcher: bool = False
    heavy: bool = False

    def as_mapping(self) -> dict[ResourceType, bool]:
        return {unit: getattr(self, unit.value) for unit in ResourceType}


class UnitLimitsConfig(BaseModel):
    """Optional per-type maximum number of units to send (None = unlimited)."""

    model_config = ConfigDict(extra="forbid")

    spear: Optional[int] = Field(default=None, ge=0)
    sword: Optional[int] = Field(default=None, ge=0)
    axe: Optional[int] = Field(default=None, ge=0)
    archer: Optional[int] = Field(default=None, ge=0)
    light: Optional[int] = Field(default=None, ge=0)
    marcher: Optional[int] = Field(default=None, ge=0)
    heavy: Optional[int] = Field(default=None, ge=0)

    def as_mapping(self) -> UnitLimits:
        return {unit: getattr(self, unit.value) for unit in ResourceType}

    def describe(self) -> str:
        parts = [f"{unit.value}={limit}" for unit, limit in self.as_mapping().items() if limit is not None]
        return ", ".join(parts) or "no limits"


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------

class InMemoryConfigurationProvider:
    """
    Usage:
        config = InMemoryConfigurationProvider.from_settings()
        config.set_site_units("101", {"spear": True, "light": True})
        config.set_site_limits("101", {"light": 200})
    """

    def __init__(
        self,
        *,
        skip_level_1: bool = False,
        base_max_resources: int = 99999,
        archers_enabled: bool = False,
        default_units: Optional[SiteUnitsConfig] = None,
        default_limits: Optional[UnitLimitsConfig] = None,
    ):
        self._skip_level_1 = skip_level_1
        self._base_max_resources = base_max_resources
        self._archers_enabled = archers_enabled
        self._default_units = default_units or SiteUnitsConfig()
        self._default_limits = default_limits or UnitLimitsConfig()
        self._site_units: dict[str, SiteUnitsConfig] = {}
        self._site_limits: dict[str, UnitLimitsConfig] = {}

    @classmethod
    def from_settings(cls, s=None) -> "InMemoryConfigurationProvider":
        if s is None:
            from scavenger.config import settings as s
        return cls(
            skip_level_1=s.skip_level_1,
            base_max_resources=s.max_resources,
            archers_enabled=s.archers_enabled,
        )

    @property
    def skip_level_1(self) -> bool:
        return self._skip_level_1

    @property
    def base_max_resources(self) -> int:
        return self._base_max_resources

    def set_site_units(self, site_id: str, units: dict | SiteUnitsConfig) -> SiteUnitsConfig:
        config = units if isinstance(units, SiteUnitsConfig) else SiteUnitsConfig(**units)
        self._site_units[site_id] = config
        return config

    def set_site_limits(self, site_id: str, limits: dict | UnitLimitsConfig) -> UnitLimitsConfig:
        config = limits if isinstance(limits, UnitLimitsConfig) else UnitLimitsConfig(**limits)
        self._site_limits[site_id] = config
        logger.info(f"Updated scavenging limits for site {site_id}: {config.describe()}")
        return config

    def set_default_limits(self, limits: dict | UnitLimitsConfig) -> UnitLimitsConfig:
        config = limits if isinstance(limits, UnitLimitsConfig) else UnitLimitsConfig(**limits)
        self._default_limits = config
        logger.info(f"Updated fleet-wide scavenging limits: {config.describe()}")
        return config

    def remove_site_limits(self, site_id: str) -> bool:
        if self._site_limits.pop(site_id, None) is None:
            logger.warning(f"No scavenging limits found to delete for site {site_id}")
            return False
        return True

    def enabled_units(self, site_id: str) -> dict[ResourceType, bool]:
        enabled = self._site_units.get(site_id, self._default_units).as_mapping()
        if not self._archers_enabled:
            for unit in enabled:
                if unit.is_archer_type:
                    enabled[unit] = False
        return enabled

    def unit_limits(self, site_id: str) -> UnitLimits:
        return self._site_limits.get(site_id, self._default_limits).as_mapping()
