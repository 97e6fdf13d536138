"""Mirror open issues of external repositories onto external epics.

The external repository is only read. Its open issues become unchecked
checklist lines; items seen at an earlier reconciliation that are no longer
open are kept, checked, after them.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from powerlevel.core.models import ExternalItem
from powerlevel.core.render import render_external_body
from powerlevel.core.synchronizer import DEFAULT_CONCURRENCY
from powerlevel.sync.github_client import GitHubClientError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from powerlevel.core.models import CacheSnapshot, Epic
    from powerlevel.core.synchronizer import RemoteClient
    from powerlevel.sync.github_client import GitHubIssue

logger = logging.getLogger(__name__)

DEFAULT_LABEL_FILTERS: list[str | None] = ["type/epic", "epic", None]


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass."""

    updated: list[int] = field(default_factory=list)
    unchanged: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    # Dry run: body edit only logged, cached checklist kept
    pending: list[int] = field(default_factory=list)


async def fetch_external_issues(
    client: RemoteClient,
    repo: str,
    label_filters: Sequence[str | None],
) -> list[GitHubIssue]:
    """Fetch open issues of ``repo``, trying each label filter in order.

    Stops at the first filter with a non-empty result. ``None`` means
    no label filter.
    """
    for label in label_filters:
        issues = await client.list_open_issues(repo, label=label)
        if issues:
            logger.debug(f"{repo}: {len(issues)} open issues with filter {label!r}")
            return issues
    return []


def merge_external_items(previous: Sequence[ExternalItem], issues: Sequence[GitHubIssue]) -> list[ExternalItem]:
    """Merge freshly fetched open issues with the previously mirrored list."""
    current = [ExternalItem(number=issue.number, title=issue.title, url=issue.url) for issue in issues]
    open_urls = {item.url for item in current}
    vanished = [item.model_copy(update={"closed": True}) for item in previous if item.url not in open_urls]
    return current + vanished


async def _reconcile_epic(
    epic: Epic,
    target: str,
    client: RemoteClient,
    label_filters: Sequence[str | None],
    semaphore: asyncio.Semaphore,
) -> list[ExternalItem] | None:
    """Return the new checklist if the remote body was rewritten, else None."""
    async with semaphore:
        issues = await fetch_external_issues(client, target, label_filters)
        items = merge_external_items(epic.external_items, issues)
        if items == epic.external_items:
            return None
        body = render_external_body(target, epic.goal, items, epic.journey)
        await client.edit_issue_body(epic.number, body)
    return items


async def reconcile_external(
    snapshot: CacheSnapshot,
    client: RemoteClient,
    *,
    label_filters: Sequence[str | None] | None = None,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> ReconcileResult:
    """Reconcile every external epic in the snapshot.

    In dry-run mode the body edits are only logged, so cached checklists
    are kept as they are and the epics are reported as pending.

    Args:
        snapshot: Cache snapshot; checklists are updated in place.
        client: Remote client.
        label_filters: Ordered fallback filters for listing issues.
        concurrency: Maximum number of epics reconciled at once.

    Returns:
        ReconcileResult with updated, unchanged, failed and pending epic numbers.
    """
    filters = list(DEFAULT_LABEL_FILTERS if label_filters is None else label_filters)
    epics = [snapshot.epics[n] for n in sorted(snapshot.epics)]
    targets: list[tuple[Epic, str]] = [
        (epic, epic.external_target) for epic in epics if epic.external_target is not None
    ]
    result = ReconcileResult()
    if not targets:
        return result

    semaphore = asyncio.Semaphore(max(1, concurrency))
    outcomes = await asyncio.gather(
        *(_reconcile_epic(epic, target, client, filters, semaphore) for epic, target in targets),
        return_exceptions=True,
    )

    for (epic, target), outcome in zip(targets, outcomes, strict=True):
        if isinstance(outcome, GitHubClientError):
            logger.warning(f"Failed to reconcile epic #{epic.number} with {target}: {outcome}")
            result.failed.append(epic.number)
        elif isinstance(outcome, BaseException):
            raise outcome
        elif outcome is None:
            result.unchanged.append(epic.number)
        elif client.dry_run:
            result.pending.append(epic.number)
        else:
            epic.external_items = outcome
            result.updated.append(epic.number)
            logger.info(f"Epic #{epic.number}: mirrored {len(outcome)} items from {target}")

    return result
