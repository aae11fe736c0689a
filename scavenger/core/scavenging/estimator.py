"""
Next-poll estimator.

Each site contributes one wait time derived from its slot states; the
fleet waits for the shortest of them.
"""
from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Union

from scavenger.core.scavenging.domain import SiteScavengingState, SlotStatus
from scavenger.core.scavenging.tracker import FleetStateTracker
from scavenger.infra.logging_config import get_logger
from scavenger.infra.metrics import ScavengeMetrics

logger = get_logger(__name__)


@dataclass(frozen=True)
class PollPolicy:
    fresh_state_window_seconds: int = 300
    idle_site_fallback_seconds: int = 300
    unlocking_fallback_seconds: int = 600
    all_locked_wait_seconds: int = 3600
    error_recovery_seconds: int = 600
    min_delay_seconds: int = 30
    fallback_delay_seconds: int = 300
    jitter_min_seconds: int = 30
    jitter_max_seconds: int = 90

    @classmethod
    def from_settings(cls, s=None) -> "PollPolicy":
        if s is None:
            from scavenger.config import settings as s
        return cls(
            fresh_state_window_seconds=s.fresh_state_window_seconds,
            idle_site_fallback_seconds=s.idle_site_fallback_seconds,
            unlocking_fallback_seconds=s.unlocking_fallback_seconds,
            all_locked_wait_seconds=s.all_locked_wait_seconds,
            error_recovery_seconds=s.error_recovery_seconds,
            min_delay_seconds=s.min_delay_seconds,
            fallback_delay_seconds=s.fallback_delay_seconds,
            jitter_min_seconds=s.jitter_min_seconds,
            jitter_max_seconds=s.jitter_max_seconds,
        )


@dataclass(frozen=True)
class NextPassSchedule:
    delay_seconds: int
    next_run_at: datetime
    reason: str  # "estimated" / "fallback" / "error_recovery"


StateSource = Union[FleetStateTracker, Iterable[SiteScavengingState]]


def _states(source: StateSource, now: datetime) -> list[SiteScavengingState]:
    if isinstance(source, FleetStateTracker):
        return source.snapshot(now)
    return list(source)


def estimate_site_wait(
    state: SiteScavengingState,
    now: Optional[datetime] = None,
    policy: Optional[PollPolicy] = None,
) -> Optional[int]:
    """
    Seconds until this site is worth another look.

    Returns None for a site without slot records (data collection error).
    """
    if not state.levels:
        return None

    now = now or datetime.now(timezone.utc)
    policy = policy or PollPolicy.from_settings()
    name = state.site_name or state.site_id

    busy = [r for r in state.levels if r.status == SlotStatus.BUSY]
    available = [r for r in state.levels if r.status == SlotStatus.AVAILABLE]
    unlocking = [r for r in state.levels if r.status == SlotStatus.UNLOCKING]

    if busy:
        wait = max(max(0, r.remaining_seconds) for r in busy)
        logger.debug(f"Site {name} max busy time: {wait}s")
        return wait

    if available:
        age = now - state.last_updated
        fresh = age < timedelta(seconds=policy.fresh_state_window_seconds)
        if fresh and len(available) == len(state.levels):
            # Every level is still free right after this pass: nothing went
            # out (no troops, or the dispatch did not register).
            logger.debug(
                f"Site {name} fully available right after the pass - "
                f"using {policy.idle_site_fallback_seconds}s"
            )
            return policy.idle_site_fallback_seconds
        logger.debug(f"Site {name} has available levels - ready now")
        return 0

    if unlocking:
        times = [r.remaining_seconds for r in unlocking if r.remaining_seconds > 0]
        if times:
            wait = min(times)
            logger.debug(f"Site {name} shortest unlock time: {wait}s")
            return wait
        logger.debug(f"Site {name} unlocking without countdown - using {policy.unlocking_fallback_seconds}s")
        return policy.unlocking_fallback_seconds

    logger.debug(f"Site {name} has every level locked - using {policy.all_locked_wait_seconds}s")
    return policy.all_locked_wait_seconds


def estimate_next_poll_delay(
    source: StateSource,
    now: Optional[datetime] = None,
    policy: Optional[PollPolicy] = None,
) -> Optional[int]:
    """
    Fleet-wide delay in seconds before the next pass.

    Returns None only when there is no tracked site at all.  Sites with a
    collection error are ignored; if every site errored the error recovery
    interval is returned.
    """
    now = now or datetime.now(timezone.utc)
    policy = policy or PollPolicy.from_settings()
    states = _states(source, now)

    if not states:
        logger.debug("No site data available for next-poll estimation")
        return None

    waits = [w for w in (estimate_site_wait(s, now, policy) for s in states) if w is not None]
    if not waits:
        logger.warning("Every tracked site failed data collection - using error recovery interval")
        return policy.error_recovery_seconds

    delay = max(0, min(waits))
    logger.debug(f"Shortest site wait across {len(waits)} sites: {delay}s")
    ScavengeMetrics.next_poll_delay(delay)
    return delay


def schedule_next_pass(
    source: StateSource,
    now: Optional[datetime] = None,
    policy: Optional[PollPolicy] = None,
    rng: Optional[random.Random] = None,
) -> NextPassSchedule:
    """
    Turn the estimate into a concrete next run, with random jitter.

    Sites that failed data collection force the short error recovery
    interval so they are re-checked soon.
    """
    now = now or datetime.now(timezone.utc)
    policy = policy or PollPolicy.from_settings()
    rng = rng or random.Random()
    states = _states(source, now)

    errored = [s.site_name or s.site_id for s in states if s.has_collection_error]
    if errored:
        logger.warning(
            f"Found {len(errored)} sites with data collection errors: {', '.join(errored)}. "
            f"Re-checking in {policy.error_recovery_seconds}s"
        )
        delay = policy.error_recovery_seconds
        return NextPassSchedule(delay, now + timedelta(seconds=delay), "error_recovery")

    delay = estimate_next_poll_delay(states, now, policy)
    reason = "estimated"
    if delay is None or delay < policy.min_delay_seconds:
        logger.info(f"Using fallback delay {policy.fallback_delay_seconds}s (estimate: {delay})")
        delay = policy.fallback_delay_seconds
        reason = "fallback"

    low, high = sorted((policy.jitter_min_seconds, policy.jitter_max_seconds))
    delay += rng.randrange(low, high) if high > low else low

    next_run_at = now + timedelta(seconds=delay)
    logger.info(f"Next scavenging pass in {delay}s at {next_run_at.isoformat()} ({reason})")
    return NextPassSchedule(delay, next_run_at, reason)
