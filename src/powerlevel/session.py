"""Session checkpoints: what runs when a work session starts and ends."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from powerlevel.classifier import find_completed_tasks
from powerlevel.core.cache import add_epic, epic_for_sub_item, mark_dirty
from powerlevel.core.models import Epic, JourneyKind, ProjectBoardRef, utcnow
from powerlevel.core.reconciler import ReconcileResult, reconcile_external
from powerlevel.core.state_machine import apply_event
from powerlevel.core.synchronizer import FlushResult, flush, pull
from powerlevel.sync.github_client import GitHubClientError

if TYPE_CHECKING:
    from datetime import datetime
    from pathlib import Path

    from powerlevel.config import Config
    from powerlevel.core.cache import CacheStore
    from powerlevel.core.models import CacheSnapshot, RepoContext
    from powerlevel.sync.github_client import GitHubClient

logger = logging.getLogger(__name__)

DEFAULT_TASK_LOOKBACK = timedelta(hours=1)


def _recorded_commits(epic: Epic) -> set[str]:
    return {
        entry.metadata["commit"]
        for entry in epic.journey
        if entry.kind == JourneyKind.TASK_COMPLETION and entry.metadata and entry.metadata.get("commit")
    }


@dataclass
class SessionStartResult:
    """What happened at session start."""

    board: ProjectBoardRef | None = None
    reconcile: ReconcileResult = field(default_factory=ReconcileResult)
    refreshed: list[int] = field(default_factory=list)


@dataclass
class SessionEndResult:
    """What happened at session end."""

    completed_tasks: list[int] = field(default_factory=list)
    flush: FlushResult | None = None


class SessionRunner:
    """Runs the start and end checkpoints for one repository."""

    def __init__(
        self,
        context: RepoContext,
        config: Config,
        client: GitHubClient,
        store: CacheStore,
        cwd: Path | None = None,
        snapshot: CacheSnapshot | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            context: Repository being tracked.
            config: Loaded configuration.
            client: Entered GitHub client for ``context``.
            store: Cache store; the snapshot is loaded lazily.
            cwd: Working tree scanned for commits at session end.
            snapshot: Already loaded snapshot to work on, if any.
        """
        self.context = context
        self.config = config
        self.client = client
        self.store = store
        self.cwd = cwd
        self._snapshot = snapshot

    @property
    def snapshot(self) -> CacheSnapshot:
        """The cache snapshot, loaded on first access."""
        if self._snapshot is None:
            self._snapshot = self.store.load(self.context)
        return self._snapshot

    def save(self) -> Path:
        """Persist the snapshot."""
        return self.store.save(self.context, self.snapshot)

    # =========================================================================
    # Start
    # =========================================================================

    def register_external_targets(self) -> list[int]:
        """Make sure every configured external target has a cached epic.

        Newly registered epics are marked dirty so the next flush rewrites
        their body in the external layout.
        """
        registered: list[int] = []
        for target in self.config.external.targets:
            existing = self.snapshot.epics.get(target.epic)
            if existing is not None and existing.external_target == target.repo:
                continue
            try:
                add_epic(
                    self.snapshot,
                    Epic(
                        number=target.epic,
                        title=existing.title if existing else f"Track {target.repo}",
                        goal=target.description,
                        external_target=target.repo,
                    ),
                )
            except ValueError as e:
                logger.warning(f"Skipping external target {target.repo}: {e}")
                continue
            mark_dirty(self.snapshot, target.epic)
            registered.append(target.epic)
        return registered

    async def ensure_board(self) -> ProjectBoardRef | None:
        """Return the cached board reference, detecting it when absent."""
        settings = self.config.project_board
        if not settings.enabled:
            return None
        cached = self.snapshot.project_board
        if cached is not None and (settings.number is None or cached.number == settings.number):
            return cached

        try:
            board = await self.client.find_project_board(settings.number)
        except GitHubClientError as e:
            logger.warning(f"Project board detection failed: {e}")
            return None
        if board is None:
            logger.info(f"No project board found for {self.context.full_name}")
            return None

        self.snapshot.project_board = ProjectBoardRef(id=board.id, number=board.number, title=board.title, url=board.url)
        logger.info(f"Using project board #{board.number}: {board.title}")
        return self.snapshot.project_board

    async def start(self) -> SessionStartResult:
        """Session start: board, external reconciliation, pull, save."""
        result = SessionStartResult()
        self.register_external_targets()
        result.board = await self.ensure_board()
        result.reconcile = await reconcile_external(
            self.snapshot,
            self.client,
            label_filters=self.config.external.label_filters,
            concurrency=self.config.sync.concurrency,
        )
        result.refreshed = await pull(self.snapshot, self.client)
        self.save()
        return result

    # =========================================================================
    # End
    # =========================================================================

    async def record_completed_tasks(self, now: datetime | None = None) -> list[int]:
        """Apply task-completion events from commits since the last check."""
        now = now or utcnow()
        since = self.snapshot.last_task_check or (now - DEFAULT_TASK_LOOKBACK)
        completed: list[int] = []

        for event in find_completed_tasks(since, self.cwd):
            if event.issue_number is None:
                continue
            epic = epic_for_sub_item(self.snapshot, event.issue_number)
            if epic is None:
                logger.debug(f"Commit references #{event.issue_number}, which is not a tracked task")
                continue
            commit = (event.metadata or {}).get("commit")
            if commit and commit in _recorded_commits(epic):
                # --since includes its boundary, so the previous scan may have seen this commit
                logger.debug(f"Commit {commit[:7]} already recorded on epic #{epic.number}")
                continue
            apply_event(self.snapshot, event, now=now)
            completed.append(event.issue_number)

            if self.config.tracking.comment_on_progress:
                try:
                    await self.client.add_comment(
                        epic.number, f"Task #{event.issue_number} completed ({event.actor or 'unknown'})"
                    )
                except GitHubClientError as e:
                    logger.warning(f"Failed to comment on epic #{epic.number}: {e}")

        self.snapshot.last_task_check = now
        return completed

    async def end(self, now: datetime | None = None) -> SessionEndResult:
        """Session end: record completed tasks, flush, save."""
        result = SessionEndResult()
        if self.config.tracking.update_on_task_complete:
            result.completed_tasks = await self.record_completed_tasks(now)
        if self.config.tracking.auto_update_epics:
            result.flush = await flush(self.snapshot, self.client, concurrency=self.config.sync.concurrency)
        self.save()
        return result
