#!/usr/bin/env python3
"""
Simulated Fleet Pass

Runs one fleet pass against the in-process simulated control surface and
prints the dispatch results and the next scheduled pass.

Run from project root:
    python examples/simulated_fleet_pass.py
"""
import asyncio
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from scavenger.config import settings, validate_or_warn
from scavenger.core.scavenging import FleetPass, FleetStateTracker, ResourceType, Site, schedule_next_pass
from scavenger.core.scavenging.executor import DispatchExecutor
from scavenger.infra.config_provider import InMemoryConfigurationProvider
from scavenger.infra.logging_config import setup_logging_from_settings
from scavenger.infra.metrics import get_metrics_collector
from scavenger.infra.sim_provider import SimulatedGameStateProvider


def build_fleet(sim: SimulatedGameStateProvider) -> list[Site]:
    sim.add_site(
        "101",
        statuses=["available", "available", "available", "locked"],
        units={ResourceType.SPEAR: 420, ResourceType.LIGHT: 90},
    )
    sim.add_site(
        "102",
        statuses=["busy", "available", "locked", "locked"],
        units={ResourceType.SPEAR: 150},
        remaining={1: 5400},
    )
    sim.add_site(
        "103",
        statuses=["locked", "locked", "locked", "locked"],
    )
    # Level 2 of this site swallows the first submission
    flaky = sim.add_site(
        "104",
        statuses=["available", "available", "unlocking", "locked"],
        units={ResourceType.SPEAR: 80, ResourceType.AXE: 40},
        remaining={3: 1800},
    )
    flaky.dropped_submissions[2] = 1
    return [Site("101", "Alpha"), Site("102", "Bravo"), Site("103", "Charlie"), Site("104", "Delta")]


async def main() -> None:
    setup_logging_from_settings()
    validate_or_warn(settings)

    sim = SimulatedGameStateProvider()
    sites = build_fleet(sim)

    config = InMemoryConfigurationProvider.from_settings()
    config.set_site_units("101", {"spear": True, "light": True})
    config.set_site_units("104", {"spear": True, "axe": True})
    config.set_site_limits("101", {"light": 60})

    tracker = FleetStateTracker(ttl_seconds=settings.tracker_ttl_seconds)
    executor = DispatchExecutor(sim, tracker, availability_retry_delay=0.1, verify_delay=0.1)
    fleet = FleetPass(
        sim, config, tracker,
        executor=executor,
        site_pacing_delay=0.1,
        prefilter_pacing_delay=0.1,
    )

    result = await fleet.run(sites)

    print("\n" + "=" * 60)
    print("FLEET PASS RESULT")
    print("=" * 60)
    for site_result in result.site_results:
        print(
            f"Site {site_result.site_id}: {site_result.confirmed_count}/{site_result.attempted_count} confirmed"
            + (f" (skipped: {site_result.skipped_reason})" if site_result.skipped_reason else "")
        )
        for outcome in site_result.outcomes:
            print(f"  level {outcome.level}: {outcome.state.value} {outcome.reason or ''}")

    schedule = schedule_next_pass(tracker)
    if result.errored_site_ids:
        print(f"Unreadable sites: {', '.join(result.errored_site_ids)}")
    print(f"\nNext poll delay (raw): {result.next_poll_delay}s")
    print(f"Next pass: in {schedule.delay_seconds}s ({schedule.reason}) at {schedule.next_run_at:%H:%M:%S}")
    print(f"\nMetrics: {get_metrics_collector().get_metrics()['counters']}")


if __name__ == "__main__":
    asyncio.run(main())
