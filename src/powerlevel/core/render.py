"""Canonical markdown bodies for epic issues.

Every function here is pure: the same inputs always produce the same
string, so re-rendering unchanged state never shows up as a remote edit.
"""

from __future__ import annotations

from datetime import UTC
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from powerlevel.core.models import Epic, ExternalItem, JourneyEntry, SubItem

EMPTY_EXTERNAL_LINE = "- [ ] No open issues in external repository"


def checkbox(done: bool) -> str:
    """Markdown task-list checkbox."""
    return "[x]" if done else "[ ]"


def render_task_list(sub_items: Sequence[SubItem]) -> str:
    """Render sub-items as a checklist, one line each, in the given order."""
    return "\n".join(f"- {checkbox(item.is_closed)} #{item.number} {item.title}" for item in sub_items)


def render_journey(journey: Sequence[JourneyEntry]) -> str:
    """Render journey entries as a timeline in append order."""
    lines: list[str] = []
    for entry in journey:
        stamp = entry.timestamp.astimezone(UTC).strftime("%Y-%m-%d %H:%M")
        lines.append(f"- **{stamp} UTC** - {entry.message}")
        if entry.actor:
            lines.append(f"  - Agent: {entry.actor}")
    return "\n".join(lines)


def render_epic_body(goal: str, sub_items: Sequence[SubItem], journey: Sequence[JourneyEntry]) -> str:
    """Render the body of a self-tracking epic.

    Layout is a Goal section, a Tasks checklist and a Progress Journey
    timeline; empty sections are left out.
    """
    sections = [f"## Goal\n\n{goal.strip() or 'No goal specified'}"]
    if sub_items:
        sections.append(f"## Tasks\n\n{render_task_list(sub_items)}")
    if journey:
        sections.append(f"## Progress Journey\n\n{render_journey(journey)}")
    return "\n\n".join(sections) + "\n"


def render_external_checklist(items: Sequence[ExternalItem]) -> str:
    """Render an external epic's mirrored checklist."""
    if not items:
        return EMPTY_EXTERNAL_LINE
    return "\n".join(f"- {checkbox(item.closed)} [{item.title}]({item.url})" for item in items)


def render_external_body(
    target: str,
    description: str,
    items: Sequence[ExternalItem],
    journey: Sequence[JourneyEntry] = (),
) -> str:
    """Render the body of an epic that mirrors an external repository."""
    parts = [
        "**External Project Tracking Epic**",
        f"This epic tracks open issues from the external repository: [{target}](https://github.com/{target})",
    ]
    if description.strip():
        parts.append(f"**Description:** {description.strip()}")
    parts.append(f"**Tracked Issues:**\n\n{render_external_checklist(items)}")
    parts.append(
        "**Tracking Status:**\n"
        f"- External repo: https://github.com/{target}\n"
        "- Auto-synced on session start\n"
        "- Checklist items mirror open issues in the external repo; the external repo is never modified"
    )
    if journey:
        parts.append(f"## Progress Journey\n\n{render_journey(journey)}")
    return "\n\n".join(parts) + "\n"


def render_body(epic: Epic, sub_items: Sequence[SubItem]) -> str:
    """Render whichever body layout fits the epic."""
    if epic.external_target is not None:
        return render_external_body(epic.external_target, epic.goal, epic.external_items, epic.journey)
    return render_epic_body(epic.goal or epic.title, sub_items, epic.journey)
