from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from scavenger.core.scavenging.domain import (
    ResourceType,
    Site,
    Slot,
    SlotPlan,
    UnitLimits,
)


@dataclass(frozen=True)
class SubmissionReceipt:
    """Answer of the control surface to a submission (accepted is not confirmed)."""
    accepted: bool
    detail: str = ""


class GameStateProvider(Protocol):
    """
    The single stateful control surface used for a whole fleet pass.

    Implementations translate raw game markup into typed ``Slot`` and unit
    counts.  Reads that do not resolve in time raise ``ObservationTimeout``.
    """

    async def open(self) -> None:
        """Establish the session. Raise on failure."""
        ...

    async def close(self) -> None: ...

    async def observe_slots(self, site: Site) -> list[Slot]: ...

    async def observe_available_units(self, site: Site) -> dict[ResourceType, int]: ...

    async def submit_plan(self, site: Site, level: int, plan: SlotPlan) -> SubmissionReceipt:
        """
        Fill in and start one level.

        May raise ``SubmissionRejected`` instead of returning
        ``accepted=False``; both are handled the same way.
        """
        ...

    async def reported_duration(self, site: Site, level: int) -> int:
        """Mission duration shown for a level, in seconds (0 if unknown)."""
        ...


class ConfigurationProvider(Protocol):
    """Per-site unit configuration with fleet-wide fallback."""

    @property
    def skip_level_1(self) -> bool: ...

    @property
    def base_max_resources(self) -> int: ...

    def enabled_units(self, site_id: str) -> dict[ResourceType, bool]: ...

    def unit_limits(self, site_id: str) -> UnitLimits: ...
