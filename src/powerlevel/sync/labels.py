"""Label taxonomy for epics and their tasks.

This module knows which labels powerlevel puts on issues, creates them on
demand, and maps status/priority labels onto project board field options.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from powerlevel.sync.github_client import GitHubClientError

if TYPE_CHECKING:
    from powerlevel.sync.github_client import BoardField, GitHubClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LabelDefinition:
    """Color and description of a managed label."""

    color: str
    description: str


LABELS: dict[str, LabelDefinition] = {
    "priority/p0": LabelDefinition("b60205", "Critical priority epic"),
    "priority/p1": LabelDefinition("d93f0b", "High priority epic"),
    "priority/p2": LabelDefinition("fbca04", "Medium priority epic"),
    "priority/p3": LabelDefinition("0e8a16", "Low priority epic"),
    "task/p0": LabelDefinition("b60205", "Critical priority task"),
    "task/p1": LabelDefinition("d93f0b", "High priority task"),
    "task/p2": LabelDefinition("fbca04", "Medium priority task"),
    "task/p3": LabelDefinition("0e8a16", "Low priority task"),
    "type/epic": LabelDefinition("5319e7", "Epic issue"),
    "type/task": LabelDefinition("1d76db", "Task issue"),
    "status/planning": LabelDefinition("d4c5f9", "In planning phase"),
    "status/in-progress": LabelDefinition("c2e0c6", "Work in progress"),
    "status/review": LabelDefinition("fbca04", "In review"),
    "status/done": LabelDefinition("0e8a16", "Completed"),
}

EPIC_LABEL_COLOR = "5319e7"

# label -> (board field name, board option name)
BOARD_FIELD_VALUES: dict[str, tuple[str, str]] = {
    "priority/p0": ("Priority", "P0 - Critical"),
    "priority/p1": ("Priority", "P1 - High"),
    "priority/p2": ("Priority", "P2 - Normal"),
    "priority/p3": ("Priority", "P3 - Low"),
    "status/planning": ("Status", "Todo"),
    "status/in-progress": ("Status", "In Progress"),
    "status/review": ("Status", "In Progress"),
    "status/done": ("Status", "Done"),
}


def epic_labels(priority: str = "p2") -> list[str]:
    """Labels for a newly created epic."""
    return ["type/epic", f"priority/{priority}", "status/planning"]


def task_labels(epic_number: int, priority: str = "p2") -> list[str]:
    """Labels for a task created under an epic."""
    return ["type/task", f"epic/{epic_number}", f"task/{priority}", "status/planning"]


def map_label_to_field(label: str, fields: dict[str, BoardField]) -> tuple[str, str] | None:
    """Map a label to a (field id, option id) pair on a board.

    Args:
        label: A status or priority label, e.g. "priority/p1".
        fields: Board single-select fields keyed by lowercased name.

    Returns:
        The field and option ids, or None if the board has no match.
    """
    mapping = BOARD_FIELD_VALUES.get(label)
    if mapping is None:
        return None
    field_name, option_name = mapping
    board_field = fields.get(field_name.lower())
    if board_field is None:
        return None
    option_id = board_field.option_id(option_name)
    if option_id is None:
        return None
    return board_field.id, option_id


class LabelManager:
    """Creates powerlevel's labels in a repository when missing."""

    def __init__(
        self,
        client: GitHubClient,
        create_if_missing: bool = True,
    ) -> None:
        """Initialize the label manager.

        Args:
            client: GitHubClient instance for API calls.
            create_if_missing: Whether to create labels if they don't exist.
        """
        self.client = client
        self.create_if_missing = create_if_missing
        self._labels_ensured = False

    async def ensure_labels_exist(self) -> None:
        """Ensure every managed label exists in the repository.

        Failures are logged per label; issue creation still works without
        colored labels because GitHub creates unknown labels implicitly.
        """
        if self._labels_ensured or not self.create_if_missing:
            return

        for name, definition in LABELS.items():
            try:
                await self.client.ensure_label(name, definition.color, definition.description)
                logger.debug(f"Ensured label exists: {name}")
            except GitHubClientError as e:
                logger.warning(f"Failed to ensure label '{name}': {e}")

        self._labels_ensured = True

    async def ensure_epic_label(self, epic_number: int) -> str:
        """Ensure the ``epic/<n>`` label used to group an epic's tasks exists."""
        name = f"epic/{epic_number}"
        if self.create_if_missing:
            try:
                await self.client.ensure_label(name, EPIC_LABEL_COLOR, f"Tasks for epic #{epic_number}")
            except GitHubClientError as e:
                logger.warning(f"Failed to ensure label '{name}': {e}")
        return name
