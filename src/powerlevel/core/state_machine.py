"""Event-driven status transitions for cached epics.

Events come from the classifier already typed; nothing here looks at raw
text or talks to GitHub. Each handled event appends one journey entry and
marks its epic dirty. Events that cannot be tied to an epic are dropped.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from powerlevel.core.cache import append_journey, epic_for_sub_item, find_epic_by_plan_file, get_epic
from powerlevel.core.models import STATUS_ORDER, EpicStatus, EventKind, JourneyKind

if TYPE_CHECKING:
    from datetime import datetime

    from powerlevel.core.models import CacheSnapshot, DetectedEvent, Epic

logger = logging.getLogger(__name__)

SKILL_MESSAGES = {
    EventKind.EXECUTION: "Started executing implementation plan",
    EventKind.FINISHING: "Started finishing development branch",
    EventKind.SUBAGENT: "Started subagent-driven development",
}

# Events that advance an epic one step, keyed to the status they advance from
FORWARD_TRANSITIONS = {
    EventKind.EXECUTION: EpicStatus.PLANNING,
    EventKind.FINISHING: EpicStatus.IN_PROGRESS,
}


def next_status(current: EpicStatus) -> EpicStatus | None:
    """The status one step forward, or None at the end."""
    index = STATUS_ORDER.index(current)
    if index + 1 < len(STATUS_ORDER):
        return STATUS_ORDER[index + 1]
    return None


def select_active_epic(snapshot: CacheSnapshot) -> Epic | None:
    """Pick the in-progress epic with the latest journey activity.

    Only open, self-tracking epics qualify. Ties go to the highest number.
    """
    candidates = [
        epic
        for epic in snapshot.epics.values()
        if epic.status == EpicStatus.IN_PROGRESS and epic.state == "open" and not epic.is_external
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda epic: (epic.last_activity, epic.number))


def _resolve_epic(snapshot: CacheSnapshot, event: DetectedEvent) -> Epic | None:
    if event.kind == EventKind.TASK_COMPLETION:
        if event.issue_number is None:
            return None
        return epic_for_sub_item(snapshot, event.issue_number)

    matched = find_epic_by_plan_file(snapshot, event.plan_file) if event.plan_file else None
    if matched is not None or event.kind != EventKind.FINISHING:
        return matched
    return select_active_epic(snapshot)


def apply_event(snapshot: CacheSnapshot, event: DetectedEvent, *, now: datetime | None = None) -> CacheSnapshot:
    """Apply one detected event to the snapshot.

    Args:
        snapshot: The cache snapshot to mutate.
        event: A typed event from the classifier.
        now: Timestamp for the journey entry (defaults to the current time).

    Returns:
        The same snapshot, for chaining.
    """
    epic = _resolve_epic(snapshot, event)
    if epic is None:
        logger.debug(f"Dropping {event.kind.value} event: no matching epic")
        return snapshot

    if event.kind == EventKind.TASK_COMPLETION:
        sub_item = snapshot.sub_items[event.issue_number]  # type: ignore[index]
        metadata = {"issue_number": sub_item.number, "title": sub_item.title}
        if event.metadata:
            metadata.update(event.metadata)
        append_journey(
            snapshot,
            epic.number,
            JourneyKind.TASK_COMPLETION,
            f"Task #{sub_item.number} completed: {sub_item.title}",
            actor=event.actor,
            metadata=metadata,
            timestamp=now,
        )
        logger.info(f"Recorded completion of #{sub_item.number} on epic #{epic.number}")
        return snapshot

    advanced = next_status(epic.status) if FORWARD_TRANSITIONS.get(event.kind) == epic.status else None
    if advanced is not None:
        logger.info(f"Epic #{epic.number}: {epic.status.value} -> {advanced.value}")
        epic.status = advanced

    metadata = {"skill": event.kind.value}
    if event.plan_file:
        metadata["plan_file"] = event.plan_file
    append_journey(
        snapshot,
        epic.number,
        JourneyKind.SKILL_INVOCATION,
        SKILL_MESSAGES[event.kind],
        actor=event.actor,
        metadata=metadata,
        timestamp=now,
    )
    return snapshot


def apply_events(snapshot: CacheSnapshot, events: list[DetectedEvent], *, now: datetime | None = None) -> CacheSnapshot:
    """Apply events in arrival order."""
    for event in events:
        apply_event(snapshot, event, now=now)
    return snapshot


def transition_status(
    snapshot: CacheSnapshot,
    number: int,
    status: EpicStatus,
    actor: str | None = None,
    *,
    now: datetime | None = None,
) -> Epic:
    """Set an epic's status explicitly, in either direction.

    Used for manual changes; records a status-change journey entry.

    Raises:
        UnknownEpicError: If the epic is not cached.
    """
    epic = get_epic(snapshot, number)
    previous = epic.status
    if previous == status:
        return epic

    epic.status = status
    append_journey(
        snapshot,
        number,
        JourneyKind.STATUS_CHANGE,
        f"Status changed from {previous.value} to {status.value}",
        actor=actor,
        metadata={"from": previous.value, "to": status.value},
        timestamp=now,
    )
    return epic
