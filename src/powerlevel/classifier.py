"""Turn free text and git history into typed workflow events.

All heuristics live here. The core only ever sees ``DetectedEvent``
values, so patterns can change without touching the state machine.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from powerlevel.core.models import DetectedEvent, EventKind
from powerlevel.repo import run_git

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

# Skill announcement -> event kind. Skills without an event kind are recognized but ignored.
SKILL_PATTERNS: list[tuple[re.Pattern[str], str, EventKind | None]] = [
    (re.compile(r"using the executing-plans skill", re.IGNORECASE), "executing-plans", EventKind.EXECUTION),
    (
        re.compile(r"using the finishing-a-development-branch skill", re.IGNORECASE),
        "finishing-a-development-branch",
        EventKind.FINISHING,
    ),
    (
        re.compile(r"using the subagent-driven-development skill", re.IGNORECASE),
        "subagent-driven-development",
        EventKind.SUBAGENT,
    ),
    (re.compile(r"using the writing-plans skill", re.IGNORECASE), "writing-plans", None),
]

PLAN_PATH_PATTERN = re.compile(r"docs/plans/[\w.-]+\.md")
COMMIT_TASK_PATTERN = re.compile(r"\b(closes|fixes|resolves|completes)\s+#(\d+)", re.IGNORECASE)


@dataclass
class Commit:
    """A commit from ``git log``."""

    hash: str
    message: str
    timestamp: str

    @property
    def short_hash(self) -> str:
        return self.hash[:7]


def detect_skill(message: str) -> str | None:
    """Name of the first skill announced in a message, or None."""
    for pattern, skill, _ in SKILL_PATTERNS:
        if pattern.search(message):
            return skill
    return None


def extract_plan_path(message: str) -> str | None:
    """First ``docs/plans/*.md`` path mentioned in a message."""
    match = PLAN_PATH_PATTERN.search(message)
    return match.group(0) if match else None


def detect_task_from_commit(message: str) -> tuple[int, str] | None:
    """Find a ``closes #N`` style reference in a commit message.

    Returns:
        (issue number, lowercased keyword), or None.
    """
    if not message:
        return None
    match = COMMIT_TASK_PATTERN.search(message)
    if not match:
        return None
    return int(match.group(2)), match.group(1).lower()


def classify_message(message: str, actor: str | None = None) -> list[DetectedEvent]:
    """Classify a chat or log message into zero or more events.

    A skill announcement yields at most one event, carrying any plan path
    mentioned in the same message. Each ``closes #N`` reference yields a
    task-completion event.
    """
    events: list[DetectedEvent] = []

    for pattern, skill, kind in SKILL_PATTERNS:
        if not pattern.search(message):
            continue
        if kind is None:
            logger.debug(f"Ignoring skill without workflow event: {skill}")
        else:
            events.append(
                DetectedEvent(
                    kind=kind,
                    plan_file=extract_plan_path(message),
                    actor=actor,
                    metadata={"skill": skill},
                )
            )
        break

    for match in COMMIT_TASK_PATTERN.finditer(message):
        events.append(
            DetectedEvent(
                kind=EventKind.TASK_COMPLETION,
                issue_number=int(match.group(2)),
                actor=actor,
                metadata={"keyword": match.group(1).lower()},
            )
        )

    return events


def get_recent_commits(since: datetime | str, cwd: Path | None = None) -> list[Commit]:
    """List commits since a timestamp, newest first.

    Returns an empty list outside a git repository.
    """
    since_arg = since.isoformat() if isinstance(since, datetime) else since
    output = run_git(["log", f"--since={since_arg}", "--format=%H|%s|%cI"], cwd)
    if not output:
        return []

    commits: list[Commit] = []
    for line in output.splitlines():
        parts = line.split("|")
        if len(parts) < 3:
            continue
        # The subject may itself contain '|'
        commits.append(Commit(hash=parts[0].strip(), message="|".join(parts[1:-1]).strip(), timestamp=parts[-1].strip()))
    return commits


def find_completed_tasks(since: datetime | str, cwd: Path | None = None) -> list[DetectedEvent]:
    """Task-completion events for commits since ``since``, oldest first."""
    events: list[DetectedEvent] = []
    for commit in reversed(get_recent_commits(since, cwd)):
        detected = detect_task_from_commit(commit.message)
        if detected is None:
            continue
        issue_number, keyword = detected
        events.append(
            DetectedEvent(
                kind=EventKind.TASK_COMPLETION,
                issue_number=issue_number,
                actor=f"git-commit-{commit.short_hash}",
                metadata={"keyword": keyword, "commit": commit.hash, "committed_at": commit.timestamp},
            )
        )
    logger.debug(f"Found {len(events)} completed tasks in commits since {since}")
    return events
