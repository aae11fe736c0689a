"""
Dispatch executor: carries out a site's plan level by level.

Round 1 waits (briefly) for each level to be available, submits its plan
and re-observes the level to confirm it turned busy.  Levels that did not
confirm are retried exactly once in round 2, in ascending level order,
without the availability wait.  A failed level never aborts the site.
"""
from __future__ import annotations

import asyncio
from typing import Optional

from scavenger.core.scavenging.domain import (
    DispatchPlan,
    Site,
    SiteDispatchResult,
    SlotDispatchOutcome,
    SlotOutcome,
    SlotStatus,
)
from scavenger.core.scavenging.errors import (
    ControlSurfaceUnavailable,
    ObservationTimeout,
    SubmissionRejected,
)
from scavenger.core.scavenging.planner import has_units, plan_capacity
from scavenger.core.scavenging.ports import GameStateProvider
from scavenger.core.scavenging.tracker import FleetStateTracker
from scavenger.infra.logging_config import LogContext, get_logger
from scavenger.infra.metrics import ScavengeMetrics

logger = get_logger(__name__)


class DispatchExecutor:
    """
    Two-round dispatch of one site's plan through the control surface.

    Usage:
        executor = DispatchExecutor.from_settings(provider, tracker)
        result = await executor.dispatch_site(site, plan)
    """

    def __init__(
        self,
        provider: GameStateProvider,
        tracker: FleetStateTracker,
        *,
        availability_max_attempts: int = 3,
        availability_retry_delay: float = 1.5,
        verify_delay: float = 2.0,
    ):
        self._provider = provider
        self._tracker = tracker
        self._max_attempts = availability_max_attempts
        self._retry_delay = availability_retry_delay
        self._verify_delay = verify_delay

    @classmethod
    def from_settings(cls, provider: GameStateProvider, tracker: FleetStateTracker, s=None) -> "DispatchExecutor":
        if s is None:
            from scavenger.config import settings as s
        return cls(
            provider,
            tracker,
            availability_max_attempts=s.availability_max_attempts,
            availability_retry_delay=s.availability_retry_delay,
            verify_delay=s.verify_delay,
        )

    async def dispatch_site(
        self,
        site: Site,
        plan: DispatchPlan,
        log: Optional[LogContext] = None,
    ) -> SiteDispatchResult:
        log = (log or LogContext(logger)).bind(site_id=site.site_id)
        result = SiteDispatchResult(site_id=site.site_id)

        for level in sorted(plan):
            outcome = SlotDispatchOutcome(level=level, plan=dict(plan[level]))
            result.outcomes.append(outcome)
            if has_units(outcome.plan):
                result.attempted_count += 1

        log.info(f"=== ROUND 1: dispatching {result.attempted_count} levels for {site.label} ===")
        for outcome in result.outcomes:
            await self._run_round1(site, outcome, log)

        retries = [o for o in result.outcomes if o.state == SlotOutcome.ROUND2_PENDING]
        if retries:
            log.info(f"=== ROUND 2: retrying {len(retries)} failed dispatches for {site.label} ===")
            for outcome in sorted(retries, key=lambda o: o.level):
                await self._run_round2(site, outcome, log)

        result.confirmed_count = sum(1 for o in result.outcomes if o.state == SlotOutcome.CONFIRMED)
        log.info(
            f"Site {site.label}: {result.confirmed_count}/{result.attempted_count} levels confirmed",
        )
        return result

    # ------------------------------------------------------------------
    # Rounds
    # ------------------------------------------------------------------

    async def _run_round1(self, site: Site, outcome: SlotDispatchOutcome, log: LogContext) -> None:
        if not has_units(outcome.plan):
            self._skip(outcome, "no units to send", log)
            return

        try:
            if not await self._wait_until_available(site, outcome):
                self._skip(
                    outcome,
                    f"not available after {outcome.observations} observations",
                    log,
                )
                return

            log.info(
                f"Dispatching level {outcome.level}: "
                f"{sum(outcome.plan.values())} units, capacity {plan_capacity(outcome.plan)}",
                extra={"slot": outcome.level},
            )
            if await self._submit_and_verify(site, outcome, log):
                return

            outcome.state = SlotOutcome.ROUND2_PENDING
            ScavengeMetrics.round2_retry()
            log.warning(
                f"Level {outcome.level} not confirmed ({outcome.reason}), adding to retry list",
                extra={"slot": outcome.level},
            )
        except ControlSurfaceUnavailable:
            raise
        except Exception as exc:
            self._fail(outcome, f"{exc.__class__.__name__}: {exc}", log, exc_info=True)

    async def _run_round2(self, site: Site, outcome: SlotDispatchOutcome, log: LogContext) -> None:
        try:
            status = await self._observe_status(site, outcome)
            if status != SlotStatus.AVAILABLE:
                self._fail(outcome, f"round 2: no longer available ({_status_text(status)})", log)
                return

            if await self._submit_and_verify(site, outcome, log):
                return

            self._fail(outcome, f"round 2: {outcome.reason}", log)
        except ControlSurfaceUnavailable:
            raise
        except Exception as exc:
            self._fail(outcome, f"round 2: {exc.__class__.__name__}: {exc}", log, exc_info=True)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _observe_status(self, site: Site, outcome: SlotDispatchOutcome) -> Optional[SlotStatus]:
        """Current status of the outcome's level; None if unreadable or missing."""
        outcome.observations += 1
        try:
            slots = await self._provider.observe_slots(site)
        except ObservationTimeout as exc:
            ScavengeMetrics.observation_timeout()
            logger.warning(
                f"Slot observation timed out for site {site.label}: {exc.detail}",
                extra={"site_id": site.site_id, "slot": outcome.level},
            )
            return None

        for slot in slots:
            if slot.level == outcome.level:
                return slot.status
        return None

    async def _wait_until_available(self, site: Site, outcome: SlotDispatchOutcome) -> bool:
        for attempt in range(self._max_attempts):
            if attempt > 0:
                logger.debug(
                    f"Retry {attempt}/{self._max_attempts - 1} checking level {outcome.level} "
                    f"after {self._retry_delay}s",
                )
                await asyncio.sleep(self._retry_delay)
            if await self._observe_status(site, outcome) == SlotStatus.AVAILABLE:
                return True
        return False

    async def _submit_and_verify(self, site: Site, outcome: SlotDispatchOutcome, log: LogContext) -> bool:
        outcome.state = SlotOutcome.SUBMITTED
        outcome.submissions += 1

        try:
            receipt = await self._provider.submit_plan(site, outcome.level, outcome.plan)
        except SubmissionRejected as exc:
            outcome.reason = f"submission rejected: {exc.detail}"
            return False

        if not receipt.accepted:
            outcome.reason = f"submission rejected: {receipt.detail or 'no detail'}"
            return False

        await asyncio.sleep(self._verify_delay)
        status = await self._observe_status(site, outcome)

        if status == SlotStatus.BUSY:
            duration = await self._reported_duration(site, outcome.level)
            outcome.state = SlotOutcome.CONFIRMED
            outcome.reason = None
            self._tracker.mark_dispatched(site.site_id, outcome.level, duration)
            ScavengeMetrics.slot_confirmed()
            log.info(
                f"Level {outcome.level} dispatched (now busy, {duration}s)",
                extra={"slot": outcome.level, "outcome": outcome.state.value},
            )
            return True

        if status == SlotStatus.AVAILABLE:
            outcome.reason = "still available after submission"
        else:
            outcome.reason = f"status unclear after submission ({_status_text(status)})"
        return False

    async def _reported_duration(self, site: Site, level: int) -> int:
        try:
            return max(0, int(await self._provider.reported_duration(site, level)))
        except ControlSurfaceUnavailable:
            raise
        except Exception as exc:
            logger.warning(
                f"Could not read mission duration for site {site.label} level {level}: {exc}",
                extra={"site_id": site.site_id, "slot": level},
            )
            return 0

    @staticmethod
    def _skip(outcome: SlotDispatchOutcome, reason: str, log: LogContext) -> None:
        outcome.state = SlotOutcome.SKIPPED
        outcome.reason = reason
        ScavengeMetrics.slot_skipped()
        log.info(f"Level {outcome.level} skipped: {reason}", extra={"slot": outcome.level})

    @staticmethod
    def _fail(outcome: SlotDispatchOutcome, reason: str, log: LogContext, exc_info: bool = False) -> None:
        outcome.state = SlotOutcome.FAILED
        outcome.reason = reason
        ScavengeMetrics.slot_failed()
        if exc_info:
            log.error(f"Level {outcome.level} failed: {reason}", extra={"slot": outcome.level}, exc_info=True)
        else:
            log.warning(f"Level {outcome.level} failed: {reason}", extra={"slot": outcome.level})


def _status_text(status: Optional[SlotStatus]) -> str:
    return status.value if status else "unknown"
