"""
In-memory fleet state tracker.

Holds the last observed slot timings of every site.  The orchestrator owns
the instance and hands it to each fleet pass; nothing here is global.
Entries are overwritten wholesale when a site is observed in the
pre-filter phase and patched in place after each confirmed dispatch.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional

from scavenger.core.scavenging.domain import (
    SiteScavengingState,
    Slot,
    SlotStatus,
    SlotTimeRecord,
)
from scavenger.core.scavenging.timefmt import format_duration
from scavenger.infra.logging_config import get_logger

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_site_state(
    site_id: str,
    site_name: str,
    slots: list[Slot],
    now: Optional[datetime] = None,
) -> SiteScavengingState:
    """Turn observed slots into a tracker entry."""
    now = now or _utcnow()
    records = []
    for slot in slots:
        record = SlotTimeRecord(level=slot.level, status=slot.status)
        if slot.status in (SlotStatus.BUSY, SlotStatus.UNLOCKING):
            record.remaining_seconds = max(0, slot.remaining_seconds)
            record.time_remaining_text = slot.time_remaining_text
            if record.remaining_seconds > 0:
                record.estimated_completion = now + timedelta(seconds=record.remaining_seconds)
        records.append(record)
    return SiteScavengingState(
        site_id=site_id,
        site_name=site_name,
        last_updated=now,
        levels=records,
    )


class FleetStateTracker:
    """
    Per-site slot timings for the next-poll estimator.

    Usage:
        tracker = FleetStateTracker(ttl_seconds=settings.tracker_ttl_seconds)
        result = await FleetPass(provider, config, tracker).run(sites)
        delay = estimate_next_poll_delay(tracker)
    """

    def __init__(self, ttl_seconds: int = 86400):
        self._ttl = timedelta(seconds=ttl_seconds)
        self._sites: dict[str, SiteScavengingState] = {}

    def __len__(self) -> int:
        return len(self._sites)

    def __contains__(self, site_id: object) -> bool:
        return site_id in self._sites

    def __iter__(self) -> Iterator[SiteScavengingState]:
        return iter(list(self._sites.values()))

    def reset_pass(self) -> None:
        """Drop all entries before a new pass starts collecting."""
        self._sites.clear()

    def clear(self) -> None:
        self._sites.clear()

    def record_site(self, state: SiteScavengingState) -> None:
        self._sites[state.site_id] = state

    def mark_collection_error(self, site_id: str, site_name: str, now: Optional[datetime] = None) -> None:
        """Record a site whose slots could not be read (empty level list)."""
        self._sites[site_id] = SiteScavengingState(
            site_id=site_id,
            site_name=site_name,
            last_updated=now or _utcnow(),
            levels=[],
        )

    def get(self, site_id: str) -> Optional[SiteScavengingState]:
        return self._sites.get(site_id)

    def evict_stale(self, now: Optional[datetime] = None) -> int:
        """Remove entries not updated within the TTL. Returns the number removed."""
        now = now or _utcnow()
        stale = [
            site_id for site_id, state in self._sites.items()
            if now - state.last_updated > self._ttl
        ]
        for site_id in stale:
            del self._sites[site_id]
        if stale:
            logger.debug(f"Evicted {len(stale)} stale tracker entries: {', '.join(stale)}")
        return len(stale)

    def snapshot(self, now: Optional[datetime] = None) -> list[SiteScavengingState]:
        self.evict_stale(now)
        return list(self._sites.values())

    def sites_with_errors(self) -> list[str]:
        return [s.site_id for s in self._sites.values() if s.has_collection_error]

    def mark_dispatched(
        self,
        site_id: str,
        level: int,
        duration_seconds: int,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Flip a level to busy after a confirmed dispatch.

        Returns False when the site or level is not tracked.
        """
        state = self._sites.get(site_id)
        if state is None:
            logger.warning(f"Cannot update site state - site {site_id} not tracked")
            return False

        record = state.find_level(level)
        if record is None:
            logger.warning(f"Cannot update site state - level {level} not tracked for site {site_id}")
            return False

        now = now or _utcnow()
        duration_seconds = max(0, int(duration_seconds))
        record.status = SlotStatus.BUSY
        record.remaining_seconds = duration_seconds
        record.estimated_completion = now + timedelta(seconds=duration_seconds)
        if duration_seconds == 0:
            logger.warning(
                f"Duration unknown for site {state.site_name or site_id} level {level}, "
                f"setting time remaining to 0:00:00"
            )
        record.time_remaining_text = format_duration(duration_seconds)

        logger.debug(
            f"Site {state.site_name or site_id} level {level} marked busy "
            f"({record.time_remaining_text} remaining)",
            extra={"site_id": site_id, "slot": level},
        )
        return True
