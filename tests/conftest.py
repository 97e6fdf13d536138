"""Shared fixtures: sample snapshots and an in-memory GitHub stand-in."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from powerlevel.core.cache import CacheStore, add_epic, add_sub_item
from powerlevel.core.models import CacheSnapshot, Epic, EpicStatus, RepoContext, SubItem
from powerlevel.sync.github_client import BoardField, GitHubClientError, GitHubIssue, ProjectBoard

T0 = datetime(2026, 2, 10, 14, 3, tzinfo=UTC)
PLAN_FILE = "docs/plans/2026-02-10-feature.md"


class FakeRemote:
    """In-memory GitHub with the async methods the core calls.

    Every call is recorded in ``calls``. Issue numbers in ``fail_numbers``
    raise GitHubClientError on any write; repos in ``fail_repos`` raise on
    listing.
    """

    def __init__(self) -> None:
        self.issues: dict[int, GitHubIssue] = {}
        self.sub_issues: dict[int, list[int]] = {}
        self.external: dict[tuple[str, str | None], list[GitHubIssue]] = {}
        self.fail_numbers: set[int] = set()
        self.fail_repos: set[str] = set()
        self.calls: list[tuple] = []
        self.comments: list[tuple[int, str]] = []
        self.board: ProjectBoard | None = None
        self.board_fields: dict[str, BoardField] = {}
        self.board_items: list[str] = []
        self.field_updates: list[tuple[str, str, str]] = []
        self.dry_run = False
        self._next_number = 200

    def add_issue(self, number: int, title: str, state: str = "open", labels: list[str] | None = None) -> GitHubIssue:
        issue = GitHubIssue(number=number, title=title, state=state, labels=labels or [], id=number * 10)
        self.issues[number] = issue
        return issue

    def _check(self, number: int) -> None:
        if number in self.fail_numbers:
            raise GitHubClientError(f"GitHub API error 500: boom on #{number}")

    async def update_issue(
        self,
        issue_number: int,
        body: str | None = None,
        labels: list[str] | None = None,
        state: str | None = None,
    ) -> GitHubIssue:
        self.calls.append(("update_issue", issue_number))
        self._check(issue_number)
        issue = self.issues.setdefault(issue_number, GitHubIssue(number=issue_number, title="", state="open"))
        if body is not None:
            issue.body = body
        if labels is not None:
            issue.labels = list(labels)
        if state is not None:
            issue.state = state
        return issue

    async def edit_issue_body(self, issue_number: int, body: str) -> None:
        self.calls.append(("edit_issue_body", issue_number))
        self._check(issue_number)
        self.issues.setdefault(issue_number, GitHubIssue(number=issue_number, title="", state="open")).body = body

    async def get_issue(self, issue_number: int) -> GitHubIssue:
        self.calls.append(("get_issue", issue_number))
        if issue_number in self.fail_numbers or issue_number not in self.issues:
            raise GitHubClientError(f"Resource not found: #{issue_number}")
        return self.issues[issue_number]

    async def list_sub_issues(self, parent: int) -> list[GitHubIssue]:
        self.calls.append(("list_sub_issues", parent))
        return [self.issues[n] for n in self.sub_issues.get(parent, [])]

    async def list_open_issues(
        self,
        repo: str | None = None,
        label: str | None = None,
        limit: int = 100,
    ) -> list[GitHubIssue]:
        self.calls.append(("list_open_issues", repo, label))
        if repo in self.fail_repos:
            raise GitHubClientError(f"Network error after 3 attempts: {repo}")
        return list(self.external.get((repo or "", label), []))[:limit]

    async def create_issue(self, title: str, body: str, labels: list[str] | None = None) -> GitHubIssue:
        self.calls.append(("create_issue", title))
        number = self._next_number
        self._next_number += 1
        issue = self.add_issue(number, title, labels=labels)
        issue.body = body
        return issue

    async def create_sub_issue(
        self,
        parent: int,
        title: str,
        body: str,
        labels: list[str] | None = None,
    ) -> GitHubIssue:
        issue = await self.create_issue(title, f"Part of #{parent}\n\n{body}", labels)
        self.sub_issues.setdefault(parent, []).append(issue.number)
        return issue

    async def add_comment(self, issue_number: int, body: str) -> int:
        self.calls.append(("add_comment", issue_number))
        self._check(issue_number)
        self.comments.append((issue_number, body))
        return len(self.comments)

    async def get_issue_node_id(self, issue_number: int) -> str:
        return f"node-{issue_number}"

    async def find_project_board(self, number: int | None = None) -> ProjectBoard | None:
        self.calls.append(("find_project_board", number))
        return self.board

    async def get_board_fields(self, project_id: str) -> dict[str, BoardField]:
        return self.board_fields

    async def add_item_to_board(self, project_id: str, content_id: str) -> str:
        self.board_items.append(content_id)
        return f"item-{content_id}"

    async def update_board_item_field(self, project_id: str, item_id: str, field_id: str, option_id: str) -> None:
        self.field_updates.append((item_id, field_id, option_id))

    async def ensure_label(self, name: str, color: str, description: str = "") -> None:
        self.calls.append(("ensure_label", name))

    def writes(self) -> list[tuple]:
        """Recorded calls that modify remote state."""
        return [c for c in self.calls if c[0] in ("update_issue", "edit_issue_body", "create_issue", "add_comment")]


@pytest.fixture
def remote() -> FakeRemote:
    """In-memory GitHub stand-in."""
    return FakeRemote()


@pytest.fixture
def repo_context() -> RepoContext:
    """The tracked repository."""
    return RepoContext(owner="acme", name="widgets")


@pytest.fixture
def store(tmp_path: Path) -> CacheStore:
    """Cache store rooted in a temp directory."""
    return CacheStore(tmp_path / "cache")


@pytest.fixture
def snapshot() -> CacheSnapshot:
    """Empty cache snapshot."""
    return CacheSnapshot()


@pytest.fixture
def tracked_snapshot() -> CacheSnapshot:
    """Epic #123 in planning, created from a plan, with sub-items #124 and #125."""
    snap = CacheSnapshot()
    add_epic(
        snap,
        Epic(
            number=123,
            title="Feature X",
            goal="Ship feature X",
            status=EpicStatus.PLANNING,
            plan_file=PLAN_FILE,
            created_at=T0,
            labels=["type/epic", "priority/p2", "status/planning"],
        ),
    )
    add_sub_item(snap, 123, SubItem(number=124, title="Task 1: Build it", epic_number=123))
    add_sub_item(snap, 123, SubItem(number=125, title="Task 2: Test it", epic_number=123))
    return snap
