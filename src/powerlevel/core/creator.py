"""Create an epic and its sub-issues from a parsed plan."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from powerlevel.core.cache import add_epic, add_sub_item, append_journey, sub_items_for
from powerlevel.core.models import Epic, JourneyKind, SubItem
from powerlevel.core.render import render_body, render_epic_body
from powerlevel.sync.github_client import GitHubClientError
from powerlevel.sync.labels import epic_labels, map_label_to_field, task_labels

if TYPE_CHECKING:
    from powerlevel.core.models import CacheSnapshot, ProjectBoardRef
    from powerlevel.parsers.plan import PlanDocument
    from powerlevel.sync.github_client import GitHubClient
    from powerlevel.sync.labels import LabelManager

logger = logging.getLogger(__name__)


def task_title(index: int, task: str) -> str:
    """Sub-issue title for the 1-based ``index``-th task."""
    return f"Task {index}: {task}"


async def add_to_board(
    client: GitHubClient,
    board: ProjectBoardRef,
    issue_numbers: list[int],
    labels: list[str],
) -> int:
    """Add issues to a board and set fields mapped from ``labels``.

    Board errors are logged per issue and never raised.

    Returns:
        Number of issues added.
    """
    try:
        fields = await client.get_board_fields(board.id)
    except GitHubClientError as e:
        logger.warning(f"Could not read fields of board #{board.number}: {e}")
        fields = {}

    added = 0
    for number in issue_numbers:
        try:
            node_id = await client.get_issue_node_id(number)
            item_id = await client.add_item_to_board(board.id, node_id)
            if item_id:
                for label in labels:
                    mapped = map_label_to_field(label, fields)
                    if mapped is not None:
                        await client.update_board_item_field(board.id, item_id, *mapped)
        except GitHubClientError as e:
            logger.warning(f"Failed to add #{number} to board #{board.number}: {e}")
            continue
        added += 1
    return added


async def create_epic_from_plan(
    snapshot: CacheSnapshot,
    client: GitHubClient,
    plan: PlanDocument,
    plan_path: str,
    board: ProjectBoardRef | None = None,
    label_manager: LabelManager | None = None,
    actor: str | None = None,
) -> Epic:
    """Create the remote epic and sub-issues for a plan and cache them.

    Args:
        snapshot: Cache snapshot to record the new epic in.
        client: GitHub client.
        plan: Parsed plan document.
        plan_path: Repo-relative plan path, used to match later events.
        board: Project board to add the issues to, if any.
        label_manager: Creates managed labels before use, if given.
        actor: Recorded on the creation journey entry.

    Returns:
        The cached epic (not added to the cache in dry-run mode).

    Raises:
        GitHubClientError: If the epic issue itself cannot be created.
    """
    labels = epic_labels(plan.priority)
    if label_manager is not None:
        await label_manager.ensure_labels_exist()

    issue = await client.create_issue(plan.title, render_epic_body(plan.goal, [], []), labels)
    epic = Epic(
        number=issue.number,
        title=plan.title,
        goal=plan.goal,
        priority=plan.priority,  # type: ignore[arg-type]
        plan_file=plan_path,
        labels=labels,
    )
    if client.dry_run:
        logger.info(f"[DRY RUN] Would create {len(plan.tasks)} sub-issues for '{plan.title}'")
        return epic

    logger.info(f"Created epic #{epic.number}: {plan.title}")
    add_epic(snapshot, epic)

    sub_labels = task_labels(epic.number, plan.priority)
    if label_manager is not None:
        await label_manager.ensure_epic_label(epic.number)

    for index, task in enumerate(plan.tasks, start=1):
        title = task_title(index, task)
        try:
            sub_issue = await client.create_sub_issue(epic.number, title, f"{task}\n\nPlan: `{plan_path}`", sub_labels)
        except GitHubClientError as e:
            logger.warning(f"Failed to create sub-issue '{title}' for epic #{epic.number}: {e}")
            continue
        add_sub_item(snapshot, epic.number, SubItem(number=sub_issue.number, title=title, epic_number=epic.number))

    append_journey(
        snapshot,
        epic.number,
        JourneyKind.CREATION,
        f"Epic created from {plan_path}",
        actor=actor,
        metadata={"plan_file": plan_path, "tasks": len(epic.sub_items)},
    )

    try:
        await client.update_issue(epic.number, body=render_body(epic, sub_items_for(snapshot, epic)))
    except GitHubClientError as e:
        logger.warning(f"Epic #{epic.number} created but body update failed, will retry on flush: {e}")
    else:
        epic.dirty = False

    if board is not None:
        await add_to_board(client, board, [epic.number], labels)
        await add_to_board(client, board, list(epic.sub_items), [])

    return epic
