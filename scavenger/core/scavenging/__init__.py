"""
Scavenging engine -- allocation and dispatch for a fleet of sites.

This package contains the domain model, the provider protocols (ports),
the slot classifier, the allocation planner, the two-round dispatch
executor, the fleet state tracker and the next-poll estimator.

Canonical imports:
    from scavenger.core.scavenging import FleetPass, FleetStateTracker
    from scavenger.core.scavenging.planner import plan_distribution
    from scavenger.core.scavenging.ports import GameStateProvider
"""
from scavenger.core.scavenging.domain import (  # noqa: F401
    ResourceType,
    SlotStatus,
    SlotSignals,
    Slot,
    Site,
    SlotTimeRecord,
    SiteScavengingState,
    SlotOutcome,
    SlotDispatchOutcome,
    SiteDispatchResult,
    FleetPassResult,
    LEVEL_WEIGHTS,
    MAX_SLOTS_PER_SITE,
)
from scavenger.core.scavenging.errors import (  # noqa: F401
    ScavengingError,
    ObservationTimeout,
    SubmissionRejected,
    NoEligiblePlan,
    ControlSurfaceUnavailable,
)
from scavenger.core.scavenging.ports import (  # noqa: F401
    GameStateProvider,
    ConfigurationProvider,
    SubmissionReceipt,
)
from scavenger.core.scavenging.classifier import classify_slot, classify_slots  # noqa: F401
from scavenger.core.scavenging.planner import plan_distribution  # noqa: F401
from scavenger.core.scavenging.tracker import FleetStateTracker  # noqa: F401
from scavenger.core.scavenging.estimator import (  # noqa: F401
    PollPolicy,
    NextPassSchedule,
    estimate_next_poll_delay,
    schedule_next_pass,
)
from scavenger.core.scavenging.executor import DispatchExecutor  # noqa: F401
from scavenger.core.scavenging.fleet import FleetPass  # noqa: F401
