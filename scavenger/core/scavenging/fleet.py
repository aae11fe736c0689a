"""
Fleet pass: one sequential sweep over every site.

    open control surface
    pre-filter: observe each site, record its slot timings, keep sites with
                a free level and enabled troops at home
    dispatch:   plan and execute each kept site
    estimate:   next-poll delay from the tracker
    close control surface

Sites are never visited concurrently: the control surface has a single
"current site" at a time.
"""
from __future__ import annotations

import asyncio
import uuid
from typing import Optional, Sequence

from scavenger.core.scavenging.domain import (
    MAX_SLOTS_PER_SITE,
    UNIT_ORDER,
    DispatchPlan,
    FleetPassResult,
    ResourceType,
    Site,
    SiteDispatchResult,
    Slot,
    SlotStatus,
)
from scavenger.core.scavenging.errors import (
    ControlSurfaceUnavailable,
    NoEligiblePlan,
    ObservationTimeout,
)
from scavenger.core.scavenging.estimator import PollPolicy, estimate_next_poll_delay
from scavenger.core.scavenging.executor import DispatchExecutor
from scavenger.core.scavenging.planner import format_plan, plan_distribution
from scavenger.core.scavenging.ports import ConfigurationProvider, GameStateProvider
from scavenger.core.scavenging.tracker import FleetStateTracker, build_site_state
from scavenger.infra.logging_config import LogContext, get_logger
from scavenger.infra.metrics import ScavengeMetrics

logger = get_logger(__name__)


class FleetPass:
    """
    Usage:
        tracker = FleetStateTracker()
        fleet = FleetPass(provider, config, tracker)
        result = await fleet.run(sites)
        result.next_poll_delay  # seconds, or None when nothing is tracked
    """

    def __init__(
        self,
        provider: GameStateProvider,
        config: ConfigurationProvider,
        tracker: FleetStateTracker,
        *,
        executor: Optional[DispatchExecutor] = None,
        policy: Optional[PollPolicy] = None,
        auto_scavenging_enabled: Optional[bool] = None,
        site_pacing_delay: Optional[float] = None,
        prefilter_pacing_delay: Optional[float] = None,
    ):
        from scavenger.config import settings

        self._provider = provider
        self._config = config
        self._tracker = tracker
        self._executor = executor or DispatchExecutor.from_settings(provider, tracker)
        self._policy = policy or PollPolicy.from_settings()
        self._enabled = (
            settings.auto_scavenging_enabled if auto_scavenging_enabled is None else auto_scavenging_enabled
        )
        self._site_pacing = settings.site_pacing_delay if site_pacing_delay is None else site_pacing_delay
        self._prefilter_pacing = (
            settings.prefilter_pacing_delay if prefilter_pacing_delay is None else prefilter_pacing_delay
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, sites: Sequence[Site]) -> FleetPassResult:
        """
        Run one fleet pass.

        Raises:
            ControlSurfaceUnavailable: the session could not be established
                (no site is visited) or was lost mid-pass.
        """
        result = FleetPassResult(pass_id=uuid.uuid4().hex)
        log = LogContext(logger, pass_id=result.pass_id)

        if not self._enabled:
            log.warning("Auto scavenging is disabled, fleet pass skipped")
            return result
        if not sites:
            log.warning("No sites with auto scavenging enabled, fleet pass skipped")
            return result

        ScavengeMetrics.pass_started()
        await self._open(log)
        with ScavengeMetrics.track_pass() as timer:
            try:
                self._tracker.reset_pass()

                log.info(f"=== PRE-FILTER: collecting data for {len(sites)} sites ===")
                kept = await self._prefilter(sites, log)
                result.processed_site_ids = [s.site_id for s in kept]
                log.info(f"=== Pre-filter completed: {len(kept)}/{len(sites)} sites selected ===")

                if kept:
                    log.info("=== DISPATCH: processing selected sites ===")
                for index, site in enumerate(kept):
                    result.site_results.append(await self._process_site_safely(site, log))
                    if index < len(kept) - 1:
                        await asyncio.sleep(self._site_pacing)

                result.errored_site_ids = self._tracker.sites_with_errors()
                result.next_poll_delay = estimate_next_poll_delay(self._tracker, policy=self._policy)
            finally:
                await self._close(log)

        log.info(
            f"=== SUMMARY: {result.total_confirmed} missions dispatched across "
            f"{len(result.processed_site_ids)} sites in {timer.elapsed:.1f}s, "
            f"next poll in {result.next_poll_delay}s ===",
        )
        if result.errored_site_ids:
            log.warning(f"Data collection failed for sites: {', '.join(result.errored_site_ids)}")
        return result

    async def dispatch_single_site(self, site: Site) -> SiteDispatchResult:
        """Plan and dispatch one site outside a full pass (manual trigger)."""
        log = LogContext(logger, pass_id=uuid.uuid4().hex, site_id=site.site_id)

        if not self._enabled:
            log.warning("Auto scavenging is disabled, manual dispatch refused")
            return SiteDispatchResult(site_id=site.site_id, skipped_reason="auto scavenging disabled")

        await self._open(log)
        try:
            try:
                slots = await self._provider.observe_slots(site)
            except ObservationTimeout as exc:
                ScavengeMetrics.observation_timeout()
                self._tracker.mark_collection_error(site.site_id, site.name)
                return SiteDispatchResult(
                    site_id=site.site_id,
                    skipped_reason=f"slot observation timed out: {exc.detail}",
                )
            if slots:
                self._tracker.record_site(build_site_state(site.site_id, site.name, slots))
            else:
                self._tracker.mark_collection_error(site.site_id, site.name)
            return await self._process_site(site, log)
        finally:
            await self._close(log)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def _open(self, log: LogContext) -> None:
        try:
            await self._provider.open()
        except ControlSurfaceUnavailable:
            ScavengeMetrics.pass_aborted()
            log.error("Control surface unavailable, no site visited")
            raise
        except Exception as exc:
            ScavengeMetrics.pass_aborted()
            log.error(f"Control surface unavailable: {exc}", exc_info=True)
            raise ControlSurfaceUnavailable(f"Could not open control surface: {exc}") from exc

    async def _close(self, log: LogContext) -> None:
        try:
            await self._provider.close()
        except Exception as exc:
            log.warning(f"Error closing control surface: {exc}")

    # ------------------------------------------------------------------
    # Pre-filter
    # ------------------------------------------------------------------

    async def _prefilter(self, sites: Sequence[Site], log: LogContext) -> list[Site]:
        kept: list[Site] = []
        for index, site in enumerate(sites):
            site_log = log.bind(site_id=site.site_id)
            site_log.info(f"Pre-filtering site {index + 1}/{len(sites)}: {site.label}")

            try:
                if await self._prefilter_site(site, site_log):
                    kept.append(site)
            except ControlSurfaceUnavailable:
                raise
            except Exception as exc:
                site_log.error(f"Error during pre-filtering for site {site.label}: {exc}", exc_info=True)
                self._tracker.mark_collection_error(site.site_id, site.name)

            if index < len(sites) - 1:
                await asyncio.sleep(self._prefilter_pacing)
        return kept

    async def _prefilter_site(self, site: Site, log: LogContext) -> bool:
        try:
            slots = await self._provider.observe_slots(site)
        except ObservationTimeout as exc:
            ScavengeMetrics.observation_timeout()
            log.warning(f"Site {site.label} - slot observation timed out ({exc.detail}), will retry shortly")
            self._tracker.mark_collection_error(site.site_id, site.name)
            return False

        if not slots:
            log.warning(f"Site {site.label} - no levels found, will retry shortly")
            self._tracker.mark_collection_error(site.site_id, site.name)
            return False

        self._tracker.record_site(build_site_state(site.site_id, site.name, slots))
        self._log_slots(site, slots, log)

        free = [s for s in slots if s.is_available]
        if not free:
            locked = sum(1 for s in slots if s.status == SlotStatus.LOCKED)
            if locked == len(slots) == MAX_SLOTS_PER_SITE:
                log.info(f"Site {site.label} skipped - all {locked} levels locked")
            else:
                log.info(f"Site {site.label} skipped - no free levels")
            return False

        units = await self._observe_units(site, log)
        enabled = self._config.enabled_units(site.site_id)
        ready = [u for u in UNIT_ORDER if enabled.get(u) and units.get(u, 0) > 0]
        if not ready:
            log.info(f"Site {site.label} skipped - no enabled units available")
            return False

        log.info(
            f"Site {site.label} queued ({len(free)} free levels, enabled units: "
            f"{', '.join(f'{u.value}={units[u]}' for u in ready)})"
        )
        return True

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _process_site_safely(self, site: Site, log: LogContext) -> SiteDispatchResult:
        site_log = log.bind(site_id=site.site_id)
        try:
            return await self._process_site(site, site_log)
        except ControlSurfaceUnavailable:
            raise
        except Exception as exc:
            site_log.error(f"Error processing site {site.label}: {exc}", exc_info=True)
            ScavengeMetrics.site_skipped("error")
            return SiteDispatchResult(
                site_id=site.site_id,
                skipped_reason=f"error: {exc.__class__.__name__}: {exc}",
            )

    async def _process_site(self, site: Site, log: LogContext) -> SiteDispatchResult:
        units = await self._observe_units(site, log)
        try:
            slots = await self._provider.observe_slots(site)
        except ObservationTimeout as exc:
            ScavengeMetrics.observation_timeout()
            log.warning(f"Site {site.label} - slot observation timed out ({exc.detail})")
            slots = []

        try:
            plan = self._plan(site, units, [s for s in slots if s.is_available])
        except NoEligiblePlan as exc:
            log.info(f"Site {site.label} skipped: {exc.detail}")
            ScavengeMetrics.site_skipped("no_plan")
            return SiteDispatchResult(site_id=site.site_id, skipped_reason=exc.detail)

        log.info(f"Dispatch plan for {site.label}: {format_plan(plan)}")
        return await self._executor.dispatch_site(site, plan, log)

    def _plan(self, site: Site, units: dict[ResourceType, int], free: list[Slot]) -> DispatchPlan:
        if not free:
            raise NoEligiblePlan("no free levels")

        plan = plan_distribution(
            units,
            free,
            self._config.enabled_units(site.site_id),
            self._config.unit_limits(site.site_id),
            skip_level_1=self._config.skip_level_1,
            base_max_resources=self._config.base_max_resources,
        )
        if not plan:
            raise NoEligiblePlan("nothing to allocate")
        return plan

    async def _observe_units(self, site: Site, log: LogContext) -> dict[ResourceType, int]:
        try:
            return await self._provider.observe_available_units(site)
        except ObservationTimeout as exc:
            ScavengeMetrics.observation_timeout()
            log.warning(f"Unit count read timed out for site {site.label} ({exc.detail}), assuming 0 units")
            return {}

    @staticmethod
    def _log_slots(site: Site, slots: list[Slot], log: LogContext) -> None:
        parts = []
        for slot in slots:
            if slot.status in (SlotStatus.BUSY, SlotStatus.UNLOCKING) and slot.time_remaining_text:
                parts.append(f"{slot.level}={slot.status.value} ({slot.time_remaining_text})")
            else:
                parts.append(f"{slot.level}={slot.status.value}")
        log.debug(f"Site {site.label} levels: {', '.join(parts)}")
