# tests/test_executor.py
"""Tests for the two-round dispatch executor"""
import json
import logging
from unittest.mock import AsyncMock, patch

import pytest

from scavenger.core.scavenging.domain import ResourceType, Slot, SlotOutcome, SlotStatus
from scavenger.core.scavenging.errors import (
    ControlSurfaceUnavailable,
    ObservationTimeout,
    SubmissionRejected,
)
from scavenger.core.scavenging.executor import DispatchExecutor
from scavenger.core.scavenging.ports import SubmissionReceipt
from scavenger.core.scavenging.tracker import build_site_state
from scavenger.infra.logging_config import JSONFormatter
from scavenger.infra.metrics import get_metrics_collector
from scavenger.infra.sim_provider import SimulatedGameStateProvider

A = SlotStatus.AVAILABLE
B = SlotStatus.BUSY
SPEAR = ResourceType.SPEAR


class MockGameStateProvider:
    """
    Scripted control surface.

    Each ``observe_slots`` call consumes the next snapshot (``{level: status}``
    or an exception to raise); the last snapshot repeats once the script runs
    out.  Each ``submit_plan`` call consumes the next receipt or exception,
    defaulting to an accepted receipt.
    """

    def __init__(self, snapshots, receipts=None, duration=1800):
        self.snapshots = list(snapshots)
        self.receipts = list(receipts or [])
        self.duration = duration
        self.observe_calls = 0
        self.submissions = []

    async def open(self):
        pass

    async def close(self):
        pass

    async def observe_slots(self, site):
        self.observe_calls += 1
        snapshot = self.snapshots.pop(0) if len(self.snapshots) > 1 else self.snapshots[0]
        if isinstance(snapshot, Exception):
            raise snapshot
        return [Slot(level, status) for level, status in sorted(snapshot.items())]

    async def observe_available_units(self, site):
        return {}

    async def submit_plan(self, site, level, plan):
        self.submissions.append((level, dict(plan)))
        receipt = self.receipts.pop(0) if self.receipts else SubmissionReceipt(accepted=True)
        if isinstance(receipt, Exception):
            raise receipt
        return receipt

    async def reported_duration(self, site, level):
        if isinstance(self.duration, Exception):
            raise self.duration
        return self.duration


def make_executor(provider, tracker, attempts=3):
    return DispatchExecutor(
        provider,
        tracker,
        availability_max_attempts=attempts,
        availability_retry_delay=0.0,
        verify_delay=0.0,
    )


def counter(name, **labels):
    return get_metrics_collector().get_counter(name, **labels)


class TestRoundOne:
    @pytest.mark.asyncio
    async def test_confirmed_on_first_try(self, site, tracker):
        tracker.record_site(build_site_state(site.site_id, site.name, [Slot(1, A)]))
        provider = MockGameStateProvider([{1: A}, {1: B}])

        result = await make_executor(provider, tracker).dispatch_site(site, {1: {SPEAR: 40}})

        outcome = result.outcome_for(1)
        assert outcome.state == SlotOutcome.CONFIRMED
        assert outcome.observations == 2
        assert outcome.submissions == 1
        assert result.confirmed_count == 1
        assert result.attempted_count == 1
        assert result.success
        assert provider.submissions == [(1, {SPEAR: 40})]
        assert counter("scavenge_dispatch_confirmed") == 1

    @pytest.mark.asyncio
    async def test_confirmation_updates_tracker(self, site, tracker):
        tracker.record_site(build_site_state(site.site_id, site.name, [Slot(1, A), Slot(2, A)]))
        provider = MockGameStateProvider([{1: A, 2: A}, {1: B, 2: A}], duration=5400)

        await make_executor(provider, tracker).dispatch_site(site, {1: {SPEAR: 40}})

        record = tracker.get(site.site_id).find_level(1)
        assert record.status == SlotStatus.BUSY
        assert record.remaining_seconds == 5400
        assert record.time_remaining_text == "1:30:00"
        assert tracker.get(site.site_id).find_level(2).status == SlotStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_waits_for_availability(self, site, tracker):
        provider = MockGameStateProvider([{1: B}, {1: B}, {1: A}, {1: B}])

        result = await make_executor(provider, tracker).dispatch_site(site, {1: {SPEAR: 10}})

        assert result.outcome_for(1).state == SlotOutcome.CONFIRMED
        assert result.outcome_for(1).observations == 4

    @pytest.mark.asyncio
    async def test_never_available_is_skipped_after_bounded_observations(self, site, tracker):
        provider = MockGameStateProvider([{1: B}])

        result = await make_executor(provider, tracker).dispatch_site(site, {1: {SPEAR: 10}})

        outcome = result.outcome_for(1)
        assert outcome.state == SlotOutcome.SKIPPED
        assert outcome.reason == "not available after 3 observations"
        assert outcome.submissions == 0
        assert provider.observe_calls == 3
        assert result.confirmed_count == 0
        assert counter("scavenge_slot_skipped") == 1

    @pytest.mark.asyncio
    async def test_attempt_bound_is_configurable(self, site, tracker):
        provider = MockGameStateProvider([{1: B}])
        await make_executor(provider, tracker, attempts=5).dispatch_site(site, {1: {SPEAR: 10}})
        assert provider.observe_calls == 5

    @pytest.mark.asyncio
    async def test_observation_timeout_counts_as_attempt(self, site, tracker):
        provider = MockGameStateProvider([ObservationTimeout("slow"), {1: A}, {1: B}])

        result = await make_executor(provider, tracker).dispatch_site(site, {1: {SPEAR: 10}})

        assert result.outcome_for(1).state == SlotOutcome.CONFIRMED
        assert result.outcome_for(1).observations == 3
        assert counter("scavenge_observation_timeouts") == 1

    @pytest.mark.asyncio
    async def test_zero_plan_is_skipped_without_observation(self, site, tracker):
        provider = MockGameStateProvider([{1: A, 2: A}, {1: A, 2: B}])

        result = await make_executor(provider, tracker).dispatch_site(
            site, {1: {SPEAR: 0}, 2: {SPEAR: 5}},
        )

        assert result.outcome_for(1).state == SlotOutcome.SKIPPED
        assert result.outcome_for(1).reason == "no units to send"
        assert result.outcome_for(1).observations == 0
        assert result.outcome_for(2).state == SlotOutcome.CONFIRMED
        assert result.attempted_count == 1
        assert result.confirmed_count == 1

    @pytest.mark.asyncio
    async def test_unknown_duration_still_confirms(self, site, tracker):
        tracker.record_site(build_site_state(site.site_id, site.name, [Slot(1, A)]))
        provider = MockGameStateProvider([{1: A}, {1: B}], duration=RuntimeError("no timer"))

        result = await make_executor(provider, tracker).dispatch_site(site, {1: {SPEAR: 10}})

        assert result.outcome_for(1).state == SlotOutcome.CONFIRMED
        assert tracker.get(site.site_id).find_level(1).remaining_seconds == 0

    @pytest.mark.asyncio
    async def test_unexpected_error_fails_only_that_level(self, site, tracker):
        provider = MockGameStateProvider(
            [{1: A, 2: A}, {1: A, 2: A}, {1: A, 2: B}],
            receipts=[RuntimeError("button vanished")],
        )

        result = await make_executor(provider, tracker).dispatch_site(
            site, {1: {SPEAR: 10}, 2: {SPEAR: 5}},
        )

        assert result.outcome_for(1).state == SlotOutcome.FAILED
        assert "button vanished" in result.outcome_for(1).reason
        assert result.outcome_for(2).state == SlotOutcome.CONFIRMED
        assert result.confirmed_count == 1
        assert counter("scavenge_dispatch_failed") == 1

    @pytest.mark.asyncio
    async def test_lost_session_propagates(self, site, tracker):
        provider = MockGameStateProvider([ControlSurfaceUnavailable("logged out")])

        with pytest.raises(ControlSurfaceUnavailable):
            await make_executor(provider, tracker).dispatch_site(site, {1: {SPEAR: 10}})


class TestRoundTwo:
    @pytest.mark.asyncio
    async def test_unconfirmed_level_is_retried_and_confirmed(self, site, tracker):
        # Submission accepted but the level still shows available afterwards
        provider = MockGameStateProvider([{1: A}, {1: A}, {1: A}, {1: B}])

        result = await make_executor(provider, tracker).dispatch_site(site, {1: {SPEAR: 10}})

        outcome = result.outcome_for(1)
        assert outcome.state == SlotOutcome.CONFIRMED
        assert outcome.submissions == 2
        assert outcome.reason is None
        assert result.confirmed_count == 1
        assert counter("scavenge_round2_retries") == 1
        assert counter("scavenge_dispatch_failed") == 0

    @pytest.mark.asyncio
    async def test_rejected_twice_fails(self, site, tracker):
        provider = MockGameStateProvider(
            [{1: A}],
            receipts=[SubmissionRejected("form error"), SubmissionRejected("form error")],
        )

        result = await make_executor(provider, tracker).dispatch_site(site, {1: {SPEAR: 10}})

        outcome = result.outcome_for(1)
        assert outcome.state == SlotOutcome.FAILED
        assert outcome.reason == "round 2: submission rejected: form error"
        assert outcome.submissions == 2

    @pytest.mark.asyncio
    async def test_not_accepted_receipt_goes_to_round_two(self, site, tracker):
        provider = MockGameStateProvider(
            [{1: A}, {1: A}, {1: B}],
            receipts=[SubmissionReceipt(accepted=False, detail="no start button")],
        )

        result = await make_executor(provider, tracker).dispatch_site(site, {1: {SPEAR: 10}})

        assert result.outcome_for(1).state == SlotOutcome.CONFIRMED
        assert result.outcome_for(1).submissions == 2

    @pytest.mark.asyncio
    async def test_round_two_does_not_wait_for_availability(self, site, tracker):
        provider = MockGameStateProvider([{1: A}, {1: A}, {1: SlotStatus.LOCKED}])

        result = await make_executor(provider, tracker).dispatch_site(site, {1: {SPEAR: 10}})

        outcome = result.outcome_for(1)
        assert outcome.state == SlotOutcome.FAILED
        assert outcome.reason == "round 2: no longer available (locked)"
        assert outcome.submissions == 1
        assert provider.observe_calls == 3

    @pytest.mark.asyncio
    async def test_still_available_twice_fails(self, site, tracker):
        provider = MockGameStateProvider([{1: A}])

        result = await make_executor(provider, tracker).dispatch_site(site, {1: {SPEAR: 10}})

        outcome = result.outcome_for(1)
        assert outcome.state == SlotOutcome.FAILED
        assert outcome.reason == "round 2: still available after submission"
        assert outcome.submissions == 2

    @pytest.mark.asyncio
    async def test_failure_lines_keep_severity_in_json(self, site, tracker, caplog):
        provider = MockGameStateProvider([{1: A}])

        with caplog.at_level(logging.WARNING, logger="scavenger.core.scavenging.executor"):
            await make_executor(provider, tracker).dispatch_site(site, {1: {SPEAR: 10}})

        lines = [json.loads(JSONFormatter().format(r)) for r in caplog.records]
        assert lines
        assert all(line["level"] == "WARNING" for line in lines)
        assert all(line["slot"] == 1 for line in lines)
        assert all(line["site_id"] == site.site_id for line in lines)

    @pytest.mark.asyncio
    async def test_retries_run_in_ascending_level_order(self, site, tracker):
        sim = SimulatedGameStateProvider()
        state = sim.add_site(
            site.site_id,
            statuses=["available", "available", "available", "locked"],
            units={SPEAR: 300},
        )
        state.dropped_submissions.update({1: 1, 3: 1})
        await sim.open()

        result = await make_executor(sim, tracker).dispatch_site(
            site, {1: {SPEAR: 100}, 2: {SPEAR: 50}, 3: {SPEAR: 20}},
        )

        assert [level for _, level, _ in sim.submissions] == [1, 2, 3, 1, 3]
        assert result.confirmed_count == 3
        assert all(o.state == SlotOutcome.CONFIRMED for o in result.outcomes)
        assert state.units[SPEAR] == 130


class TestPacing:
    @pytest.mark.asyncio
    async def test_retry_delay_between_observations(self, site, tracker):
        provider = MockGameStateProvider([{1: B}])
        executor = DispatchExecutor(provider, tracker)

        with patch("scavenger.core.scavenging.executor.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await executor.dispatch_site(site, {1: {SPEAR: 10}})

        assert [c.args[0] for c in sleep.await_args_list] == [1.5, 1.5]

    @pytest.mark.asyncio
    async def test_verify_delay_after_submission(self, site, tracker):
        provider = MockGameStateProvider([{1: A}, {1: B}])
        executor = DispatchExecutor(provider, tracker, verify_delay=4.0)

        with patch("scavenger.core.scavenging.executor.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await executor.dispatch_site(site, {1: {SPEAR: 10}})

        sleep.assert_awaited_once_with(4.0)

    @pytest.mark.asyncio
    async def test_from_settings(self, site, tracker):
        from scavenger.config import Settings

        provider = MockGameStateProvider([{1: B}])
        s = Settings(availability_max_attempts=2, availability_retry_delay=0.5, _env_file=None)
        executor = DispatchExecutor.from_settings(provider, tracker, s)

        with patch("scavenger.core.scavenging.executor.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await executor.dispatch_site(site, {1: {SPEAR: 10}})

        assert provider.observe_calls == 2
        sleep.assert_awaited_once_with(0.5)
