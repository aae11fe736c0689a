# scavenger/infra/sim_provider.py
"""
Simulated control surface.

An in-process ``GameStateProvider`` backed by plain dicts.  Used by the
example runner and by integration tests to drive a full fleet pass
without a live game session.  Each level is held as the raw signals a
page would show (unlock control, unlocking marker, start control,
countdown text) and is classified on every observation.  Failure modes
(refused session, dropped submissions, read timeouts) are injected per
site and level.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

from scavenger.core.scavenging.classifier import classify_slot, classify_slots
from scavenger.core.scavenging.domain import (
    ResourceType,
    Site,
    Slot,
    SlotPlan,
    SlotSignals,
    SlotStatus,
)
from scavenger.core.scavenging.errors import (
    ControlSurfaceUnavailable,
    ObservationTimeout,
    SubmissionRejected,
)
from scavenger.core.scavenging.planner import plan_capacity
from scavenger.core.scavenging.ports import SubmissionReceipt
from scavenger.core.scavenging.timefmt import format_duration, parse_time_to_seconds
from scavenger.infra.logging_config import get_logger

logger = get_logger(__name__)

SIGNALS_BY_STATUS = {
    SlotStatus.LOCKED: SlotSignals(has_unlock_control=True, is_unlocking=False, has_start_control=False),
    SlotStatus.UNLOCKING: SlotSignals(has_unlock_control=False, is_unlocking=True, has_start_control=False),
    SlotStatus.AVAILABLE: SlotSignals(has_unlock_control=False, is_unlocking=False, has_start_control=True),
    SlotStatus.BUSY: SlotSignals(has_unlock_control=False, is_unlocking=False, has_start_control=False),
}


@dataclass
class SimulatedLevel:
    signals: SlotSignals
    countdown: Optional[str] = None

    @property
    def status(self) -> SlotStatus:
        s = self.signals
        return classify_slot(s.has_unlock_control, s.is_unlocking, s.has_start_control)


@dataclass
class SimulatedSite:
    # level containers in page order; level N is levels[N - 1]
    levels: list[SimulatedLevel]
    units: dict[ResourceType, int] = field(default_factory=dict)
    # level -> number of upcoming accepted submissions that silently do not register
    dropped_submissions: dict[int, int] = field(default_factory=dict)
    # level -> number of upcoming submissions refused outright
    rejected_submissions: dict[int, int] = field(default_factory=dict)
    # number of upcoming slot observations that time out
    slot_timeouts: int = 0
    unit_timeouts: int = 0

    def level(self, level: int) -> Optional[SimulatedLevel]:
        if 1 <= level <= len(self.levels):
            return self.levels[level - 1]
        return None


class SimulatedGameStateProvider:
    """
    Usage:
        sim = SimulatedGameStateProvider()
        sim.add_site("101", statuses=["available"] * 4, units={ResourceType.SPEAR: 300})
        await FleetPass(sim, config, tracker).run([Site("101", "Alpha")])
    """

    def __init__(self, *, refuse_session: bool = False, seconds_per_capacity: float = 0.5):
        self.refuse_session = refuse_session
        self.seconds_per_capacity = seconds_per_capacity
        self.is_open = False
        self.sites: dict[str, SimulatedSite] = {}
        self.submissions: list[tuple[str, int, SlotPlan]] = []
        self.durations: dict[tuple[str, int], int] = {}

    def add_site(
        self,
        site_id: str,
        statuses: Sequence[str | SlotStatus] = (),
        units: Optional[dict[ResourceType, int]] = None,
        remaining: Optional[dict[int, int]] = None,
        signals: Optional[Sequence[SlotSignals]] = None,
    ) -> SimulatedSite:
        """
        Register a site by plain statuses, or by raw ``signals`` when the
        level containers should show an arbitrary (possibly ambiguous)
        combination of controls.  ``remaining`` maps level -> countdown seconds.
        """
        if signals is None:
            signals = [SIGNALS_BY_STATUS[SlotStatus(s)] for s in statuses]
        remaining = remaining or {}

        levels = []
        for index, raw in enumerate(signals):
            seconds = remaining.get(index + 1, 0)
            levels.append(SimulatedLevel(raw, format_duration(seconds) if seconds else None))

        site = SimulatedSite(levels=levels, units=dict(units or {}))
        self.sites[site_id] = site
        return site

    def _site(self, site: Site) -> SimulatedSite:
        try:
            return self.sites[site.site_id]
        except KeyError:
            raise ObservationTimeout(f"site {site.site_id} did not load") from None

    def _require_open(self) -> None:
        if not self.is_open:
            raise ControlSurfaceUnavailable("session is not open")

    async def open(self) -> None:
        if self.refuse_session:
            raise ControlSurfaceUnavailable("login refused")
        self.is_open = True

    async def close(self) -> None:
        self.is_open = False

    async def observe_slots(self, site: Site) -> list[Slot]:
        self._require_open()
        state = self._site(site)
        if state.slot_timeouts > 0:
            state.slot_timeouts -= 1
            raise ObservationTimeout(f"level containers of site {site.site_id} not visible")

        slots = classify_slots(raw.signals for raw in state.levels)
        for slot, raw in zip(slots, state.levels):
            if slot.status in (SlotStatus.BUSY, SlotStatus.UNLOCKING) and raw.countdown:
                slot.time_remaining_text = raw.countdown
                slot.remaining_seconds = parse_time_to_seconds(raw.countdown)
        return slots

    async def observe_available_units(self, site: Site) -> dict[ResourceType, int]:
        self._require_open()
        state = self._site(site)
        if state.unit_timeouts > 0:
            state.unit_timeouts -= 1
            raise ObservationTimeout(f"unit table of site {site.site_id} not visible")
        return dict(state.units)

    async def submit_plan(self, site: Site, level: int, plan: SlotPlan) -> SubmissionReceipt:
        self._require_open()
        state = self._site(site)
        self.submissions.append((site.site_id, level, dict(plan)))

        if state.rejected_submissions.get(level, 0) > 0:
            state.rejected_submissions[level] -= 1
            raise SubmissionRejected(f"level {level} refused the squad")

        raw = state.level(level)
        if raw is None or raw.status != SlotStatus.AVAILABLE:
            return SubmissionReceipt(accepted=False, detail=f"level {level} has no start button")

        for unit, count in plan.items():
            if count > state.units.get(unit, 0):
                return SubmissionReceipt(accepted=False, detail=f"not enough {unit.value}")

        if state.dropped_submissions.get(level, 0) > 0:
            state.dropped_submissions[level] -= 1
            logger.debug(f"Simulated submission for site {site.site_id} level {level} did not register")
            return SubmissionReceipt(accepted=True, detail="clicked")

        for unit, count in plan.items():
            state.units[unit] = state.units.get(unit, 0) - count

        duration = int(plan_capacity(plan) * self.seconds_per_capacity)
        raw.signals = SIGNALS_BY_STATUS[SlotStatus.BUSY]
        raw.countdown = format_duration(duration)
        self.durations[(site.site_id, level)] = duration
        return SubmissionReceipt(accepted=True, detail="clicked")

    async def reported_duration(self, site: Site, level: int) -> int:
        self._require_open()
        return self.durations.get((site.site_id, level), 0)
