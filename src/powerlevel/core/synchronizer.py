"""Push dirty epics to GitHub, and pull remote state back into the cache.

Flush is the only path that writes epic bodies and labels. It issues one
update per dirty epic and clears the flag only when that update succeeds,
so a failed epic is simply retried at the next checkpoint.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from powerlevel.core.cache import dirty_epics, sub_items_for
from powerlevel.core.models import EpicStatus, SubItem
from powerlevel.core.render import render_body
from powerlevel.sync.github_client import GitHubClientError

if TYPE_CHECKING:
    from powerlevel.core.models import CacheSnapshot, Epic
    from powerlevel.sync.github_client import GitHubIssue

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 4


class RemoteClient(Protocol):
    """The subset of GitHubClient used by flush, pull and reconcile."""

    # Writes are only logged, so nothing reaches the remote
    dry_run: bool

    async def update_issue(
        self,
        issue_number: int,
        body: str | None = None,
        labels: list[str] | None = None,
        state: str | None = None,
    ) -> GitHubIssue | None: ...

    async def edit_issue_body(self, issue_number: int, body: str) -> None: ...

    async def get_issue(self, issue_number: int) -> GitHubIssue: ...

    async def list_sub_issues(self, parent: int) -> list[GitHubIssue]: ...

    async def list_open_issues(
        self,
        repo: str | None = None,
        label: str | None = None,
        limit: int = 100,
    ) -> list[GitHubIssue]: ...


@dataclass
class FlushResult:
    """Outcome of one flush pass."""

    succeeded: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    # Dry run: would have been pushed, still dirty
    pending: list[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when no epic failed."""
        return not self.failed


# =============================================================================
# Flush
# =============================================================================


async def _push_epic(
    snapshot: CacheSnapshot,
    epic: Epic,
    client: RemoteClient,
    semaphore: asyncio.Semaphore,
) -> None:
    body = render_body(epic, sub_items_for(snapshot, epic))
    async with semaphore:
        await client.update_issue(epic.number, body=body, labels=epic.remote_labels())


async def flush(
    snapshot: CacheSnapshot,
    client: RemoteClient,
    *,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> FlushResult:
    """Push every dirty epic's rendered body and labels.

    In dry-run mode the client only logs each update, so dirty flags are
    kept and the epics are reported as pending.

    Args:
        snapshot: Cache snapshot; dirty flags are cleared in place.
        client: Remote client.
        concurrency: Maximum number of updates in flight.

    Returns:
        FlushResult listing succeeded, failed and pending epic numbers.
    """
    result = FlushResult()
    epics = dirty_epics(snapshot)
    if not epics:
        logger.debug("Flush: no dirty epics")
        return result

    semaphore = asyncio.Semaphore(max(1, concurrency))
    outcomes = await asyncio.gather(
        *(_push_epic(snapshot, epic, client, semaphore) for epic in epics),
        return_exceptions=True,
    )

    for epic, outcome in zip(epics, outcomes, strict=True):
        if isinstance(outcome, GitHubClientError):
            logger.warning(f"Failed to update epic #{epic.number}: {outcome}")
            result.failed.append(epic.number)
        elif isinstance(outcome, BaseException):
            raise outcome
        elif client.dry_run:
            result.pending.append(epic.number)
        else:
            epic.dirty = False
            result.succeeded.append(epic.number)

    logger.info(
        f"Flush: {len(result.succeeded)} updated, {len(result.failed)} failed, {len(result.pending)} pending"
    )
    return result


# =============================================================================
# Pull
# =============================================================================


def _accept_remote(epic: Epic, issue: GitHubIssue) -> None:
    epic.title = issue.title
    epic.state = "closed" if issue.state == "closed" else "open"
    for label in issue.labels:
        status = EpicStatus.from_label(label)
        if status is not None:
            epic.status = status
            break
    epic.labels = list(issue.labels)


def _merge_sub_issues(snapshot: CacheSnapshot, epic: Epic, issues: list[GitHubIssue]) -> None:
    for issue in issues:
        state = "closed" if issue.state == "closed" else "open"
        known = snapshot.sub_items.get(issue.number)
        if known is not None:
            known.state = state
            known.title = issue.title
            continue
        snapshot.sub_items[issue.number] = SubItem(
            number=issue.number,
            title=issue.title,
            state=state,
            epic_number=epic.number,
        )
        if issue.number not in epic.sub_items:
            epic.sub_items.append(issue.number)


async def _pull_epic(snapshot: CacheSnapshot, epic: Epic, client: RemoteClient) -> None:
    issue = await client.get_issue(epic.number)
    _accept_remote(epic, issue)
    if not epic.is_external:
        _merge_sub_issues(snapshot, epic, await client.list_sub_issues(epic.number))


async def pull(snapshot: CacheSnapshot, client: RemoteClient) -> list[int]:
    """Refresh cached epics from their remote issues.

    Remote state, title and status label are taken as-is. Journey and
    dirty flags are left alone, so pending local changes still flush.

    Returns:
        Numbers of the epics that were refreshed.
    """
    refreshed: list[int] = []
    for number in sorted(snapshot.epics):
        epic = snapshot.epics[number]
        try:
            await _pull_epic(snapshot, epic, client)
        except GitHubClientError as e:
            logger.warning(f"Failed to refresh epic #{number}: {e}")
            continue
        refreshed.append(number)

    logger.debug(f"Pull: refreshed {len(refreshed)} of {len(snapshot.epics)} epics")
    return refreshed
