from __future__ import annotations

from typing import Iterable

from scavenger.core.scavenging.domain import (
    MAX_SLOTS_PER_SITE,
    Slot,
    SlotSignals,
    SlotStatus,
)


def classify_slot(
    has_unlock_control: bool,
    is_unlocking: bool,
    has_start_control: bool,
) -> SlotStatus:
    """
    Derive the status of one slot from its raw signals.

    Precedence is locked > unlocking > available > busy, so ambiguous
    signals always resolve to the most restrictive state.
    """
    if has_unlock_control:
        return SlotStatus.LOCKED
    if is_unlocking:
        return SlotStatus.UNLOCKING
    if has_start_control:
        return SlotStatus.AVAILABLE
    return SlotStatus.BUSY


def classify_slots(signals: Iterable[SlotSignals]) -> list[Slot]:
    """Classify slot containers in page order; levels are numbered from 1."""
    slots: list[Slot] = []
    for index, raw in enumerate(signals):
        if index >= MAX_SLOTS_PER_SITE:
            break
        status = classify_slot(raw.has_unlock_control, raw.is_unlocking, raw.has_start_control)
        slots.append(Slot(level=index + 1, status=status))
    return slots
