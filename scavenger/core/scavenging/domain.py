from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict


# ============================================================================
# RESOURCE TYPES
# ============================================================================

class ResourceType(str, Enum):
    """Troop types that can be sent scavenging, in the game's form order."""
    SPEAR = "spear"
    SWORD = "sword"
    AXE = "axe"
    ARCHER = "archer"
    LIGHT = "light"
    MARCHER = "marcher"
    HEAVY = "heavy"

    @property
    def capacity(self) -> int:
        """Loot carried per unit."""
        return UNIT_CAPACITY[self]

    @property
    def is_archer_type(self) -> bool:
        return self in ARCHER_TYPES


UNIT_CAPACITY: Dict[ResourceType, int] = {
    ResourceType.SPEAR: 25,
    ResourceType.SWORD: 15,
    ResourceType.AXE: 10,
    ResourceType.ARCHER: 10,
    ResourceType.LIGHT: 80,
    ResourceType.MARCHER: 50,
    ResourceType.HEAVY: 50,
}

ARCHER_TYPES = frozenset({ResourceType.ARCHER, ResourceType.MARCHER})

# Iteration order used everywhere a plan is built or logged
UNIT_ORDER: tuple[ResourceType, ...] = tuple(ResourceType)


# ============================================================================
# SLOTS
# ============================================================================

MAX_SLOTS_PER_SITE = 4

# Proportionality factor per scavenging level (lower levels are slower and
# take a larger share).
LEVEL_WEIGHTS: Dict[int, int] = {
    1: 15,
    2: 6,
    3: 3,
    4: 2,
}


class SlotStatus(str, Enum):
    LOCKED = "locked"
    UNLOCKING = "unlocking"
    AVAILABLE = "available"
    BUSY = "busy"


@dataclass(frozen=True)
class SlotSignals:
    """Raw per-slot signals as read from the control surface."""
    has_unlock_control: bool
    is_unlocking: bool
    has_start_control: bool


@dataclass
class Slot:
    """One observed scavenging level of a site."""
    level: int
    status: SlotStatus
    remaining_seconds: int = 0
    time_remaining_text: Optional[str] = None

    @property
    def weight(self) -> Optional[int]:
        return LEVEL_WEIGHTS.get(self.level)

    @property
    def is_available(self) -> bool:
        return self.status == SlotStatus.AVAILABLE

    @property
    def is_busy(self) -> bool:
        return self.status == SlotStatus.BUSY


@dataclass(frozen=True)
class Site:
    """A village taking part in fleet passes."""
    site_id: str
    name: str = ""

    @property
    def label(self) -> str:
        return self.name or self.site_id


# level -> (type -> count)
SlotPlan = Dict[ResourceType, int]
DispatchPlan = Dict[int, SlotPlan]

# type -> maximum count to commit (None = unlimited)
UnitLimits = Dict[ResourceType, Optional[int]]


# ============================================================================
# FLEET STATE
# ============================================================================

@dataclass
class SlotTimeRecord:
    level: int
    status: SlotStatus
    remaining_seconds: int = 0
    time_remaining_text: Optional[str] = None
    estimated_completion: Optional[datetime] = None


@dataclass
class SiteScavengingState:
    """
    Last known slot timings of one site.

    An empty ``levels`` list marks a site whose slots could not be read
    during the pass.
    """
    site_id: str
    site_name: str
    last_updated: datetime
    levels: list[SlotTimeRecord] = field(default_factory=list)

    @property
    def has_collection_error(self) -> bool:
        return not self.levels

    def find_level(self, level: int) -> Optional[SlotTimeRecord]:
        for record in self.levels:
            if record.level == level:
                return record
        return None


# ============================================================================
# DISPATCH RESULTS
# ============================================================================

class SlotOutcome(str, Enum):
    PENDING = "pending"
    SKIPPED = "skipped"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    ROUND2_PENDING = "round2_pending"
    FAILED = "failed"


@dataclass
class SlotDispatchOutcome:
    level: int
    plan: SlotPlan
    state: SlotOutcome = SlotOutcome.PENDING
    reason: Optional[str] = None
    submissions: int = 0
    observations: int = 0


@dataclass
class SiteDispatchResult:
    site_id: str
    confirmed_count: int = 0
    attempted_count: int = 0
    outcomes: list[SlotDispatchOutcome] = field(default_factory=list)
    skipped_reason: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.confirmed_count > 0

    def outcome_for(self, level: int) -> Optional[SlotDispatchOutcome]:
        for outcome in self.outcomes:
            if outcome.level == level:
                return outcome
        return None


@dataclass
class FleetPassResult:
    pass_id: str
    site_results: list[SiteDispatchResult] = field(default_factory=list)
    processed_site_ids: list[str] = field(default_factory=list)
    # sites whose slots could not be read this pass
    errored_site_ids: list[str] = field(default_factory=list)
    next_poll_delay: Optional[int] = None

    @property
    def total_confirmed(self) -> int:
        return sum(r.confirmed_count for r in self.site_results)
