"""
Allocation planner: split available troops over free scavenging levels.

Troops of every eligible type are divided proportionally to the level
weights, remainders are dropped, and each level is then scaled down to a
resource ceiling that depends on how many levels share the troops.
"""
from __future__ import annotations

from fractions import Fraction
from typing import Iterable, Mapping, Optional

from scavenger.core.scavenging.domain import (
    LEVEL_WEIGHTS,
    UNIT_ORDER,
    DispatchPlan,
    ResourceType,
    Slot,
    SlotPlan,
    UnitLimits,
)
from scavenger.infra.logging_config import get_logger

logger = get_logger(__name__)

# Ceiling multiplier by number of eligible levels; 4 or more use the last one
_SCALE_BY_SLOT_COUNT: dict[int, Fraction] = {
    1: Fraction(10),
    2: Fraction(4),
    3: Fraction(2),
}
_SCALE_MANY = Fraction("1.3333")


def _ceiling(base_max_resources: int, eligible_count: int) -> Fraction:
    scale = _SCALE_BY_SLOT_COUNT.get(eligible_count, _SCALE_MANY)
    return Fraction(base_max_resources) * scale


def slot_ceiling(base_max_resources: int, eligible_count: int) -> float:
    """Resource ceiling of one level when ``eligible_count`` levels are planned."""
    return float(_ceiling(base_max_resources, eligible_count))


def plan_capacity(slot_plan: Mapping[ResourceType, int]) -> int:
    return sum(count * unit.capacity for unit, count in slot_plan.items())


def has_units(slot_plan: Mapping[ResourceType, int]) -> bool:
    return any(count > 0 for count in slot_plan.values())


def format_plan(plan: DispatchPlan) -> str:
    lines = []
    for level in sorted(plan):
        units = ", ".join(f"{u.value}={plan[level].get(u, 0)}" for u in UNIT_ORDER)
        lines.append(f"Level {level}: {units}")
    return "; ".join(lines)


def select_eligible_slots(
    free_slots: Iterable[Slot],
    *,
    skip_level_1: bool,
    level_weights: Mapping[int, int] = LEVEL_WEIGHTS,
) -> list[Slot]:
    free = list(free_slots)
    eligible = []
    for slot in free:
        if slot.level == 1 and skip_level_1 and len(free) > 1:
            logger.info("Skipping level 1 due to skip_level_1 setting")
            continue
        if level_weights.get(slot.level):
            eligible.append(slot)
    return eligible


def effective_unit_counts(
    available_units: Mapping[ResourceType, int],
    enabled_units: Mapping[ResourceType, bool],
    unit_limits: Optional[UnitLimits] = None,
) -> dict[ResourceType, int]:
    """Counts per enabled, in-stock type after per-type limits."""
    counts: dict[ResourceType, int] = {}
    for unit in UNIT_ORDER:
        available = available_units.get(unit, 0)
        if not enabled_units.get(unit, False) or available <= 0:
            continue
        limit = unit_limits.get(unit) if unit_limits else None
        if limit is not None:
            effective = min(available, max(0, limit))
            if effective < available:
                logger.info(f"Applied {unit.value} limit: {available} available -> {effective} used")
        else:
            effective = available
        counts[unit] = effective
    return counts


def plan_distribution(
    available_units: Mapping[ResourceType, int],
    free_slots: Iterable[Slot],
    enabled_units: Mapping[ResourceType, bool],
    unit_limits: Optional[UnitLimits] = None,
    *,
    skip_level_1: bool = False,
    base_max_resources: int = 99999,
    level_weights: Mapping[int, int] = LEVEL_WEIGHTS,
) -> Optional[DispatchPlan]:
    """
    Build a per-level dispatch plan.

    Args:
        available_units: Troops at home per type
        free_slots: Levels observed as available
        enabled_units: Per-type switches for the site
        unit_limits: Optional per-type maximum to send
        skip_level_1: Leave level 1 out when other levels are free too
        base_max_resources: Base per-level resource ceiling
        level_weights: Proportionality factor per level

    Returns:
        Plan keyed by level for eligible levels only, or None when there are
        no eligible levels or no eligible troops.
    """
    eligible_slots = select_eligible_slots(
        free_slots, skip_level_1=skip_level_1, level_weights=level_weights,
    )
    total_weight = sum(level_weights[s.level] for s in eligible_slots)
    if not eligible_slots or total_weight == 0:
        logger.warning("No eligible levels for distribution or total weight is zero")
        return None

    effective = effective_unit_counts(available_units, enabled_units, unit_limits)
    if not effective:
        logger.info("No enabled units available for distribution")
        return None

    logger.debug(f"Total weight for distribution: {total_weight}, units: {effective}")

    ceiling = _ceiling(base_max_resources, len(eligible_slots))
    plan: DispatchPlan = {}

    for slot in sorted(eligible_slots, key=lambda s: s.level):
        weight = level_weights[slot.level]
        slot_plan: SlotPlan = {
            unit: (count * weight) // total_weight
            for unit, count in effective.items()
        }

        capacity = plan_capacity(slot_plan)
        if capacity > ceiling:
            logger.debug(
                f"Level {slot.level} capacity {capacity} exceeds limit {float(ceiling):.1f}, scaling down"
            )
            slot_plan = {
                unit: int(count * ceiling // capacity)
                for unit, count in slot_plan.items()
            }

        plan[slot.level] = slot_plan

    return plan
