"""Core data models for powerlevel's local cache."""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

CACHE_VERSION = 1


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


class EpicStatus(str, Enum):
    """Status label of an epic. Forward order is planning -> done."""

    PLANNING = "planning"
    IN_PROGRESS = "in-progress"
    REVIEW = "review"
    DONE = "done"

    @property
    def label(self) -> str:
        """Remote label carrying this status."""
        return f"status/{self.value}"

    @classmethod
    def from_label(cls, label: str) -> EpicStatus | None:
        """Parse a ``status/<value>`` label, or None if it is not one."""
        if not label.startswith("status/"):
            return None
        try:
            return cls(label.removeprefix("status/"))
        except ValueError:
            return None


STATUS_ORDER = [EpicStatus.PLANNING, EpicStatus.IN_PROGRESS, EpicStatus.REVIEW, EpicStatus.DONE]


class JourneyKind(str, Enum):
    """Kinds of journey log entries."""

    CREATION = "creation"
    SKILL_INVOCATION = "skill-invocation"
    TASK_COMPLETION = "task-completion"
    STATUS_CHANGE = "status-change"


class EventKind(str, Enum):
    """Kinds of events produced by the classifier."""

    EXECUTION = "execution"
    FINISHING = "finishing"
    SUBAGENT = "subagent"
    TASK_COMPLETION = "task-completion"


IssueState = Literal["open", "closed"]
Priority = Literal["p0", "p1", "p2", "p3"]


# =============================================================================
# Repository
# =============================================================================


class RepoContext(BaseModel):
    """A tracked local repository, identified by its GitHub owner and name."""

    model_config = ConfigDict(frozen=True)

    owner: str
    name: str

    @property
    def repo_hash(self) -> str:
        """Stable cache partition key for this repository."""
        return hashlib.sha256(self.full_name.encode("utf-8")).hexdigest()[:16]

    @property
    def full_name(self) -> str:
        """Repository in 'owner/name' format."""
        return f"{self.owner}/{self.name}"

    @classmethod
    def parse(cls, full_name: str) -> RepoContext:
        """Build a context from an 'owner/name' string."""
        owner, sep, name = full_name.strip().partition("/")
        if not sep or not owner or not name or "/" in name:
            raise ValueError(f"Expected 'owner/repo', got {full_name!r}")
        return cls(owner=owner, name=name)


# =============================================================================
# Cache entities
# =============================================================================


class JourneyEntry(BaseModel):
    """An immutable record of one workflow event on an epic."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    kind: JourneyKind
    message: str
    actor: str | None = None
    metadata: dict[str, Any] | None = None


class SubItem(BaseModel):
    """A sub-issue owned by exactly one epic."""

    number: int
    title: str
    state: IssueState = "open"
    epic_number: int

    @property
    def is_closed(self) -> bool:
        """Check if the sub-item is closed."""
        return self.state == "closed"


class ExternalItem(BaseModel):
    """One line of an external epic's mirrored checklist."""

    number: int | None = None
    title: str
    url: str
    closed: bool = False


class Epic(BaseModel):
    """A tracking entity mirrored 1:1 to a remote issue.

    An epic either tracks its own sub-items or mirrors an external
    repository (``external_target`` set), never both.
    """

    number: int
    title: str
    goal: str = ""
    priority: Priority = "p2"
    status: EpicStatus = EpicStatus.PLANNING
    state: IssueState = "open"
    plan_file: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    sub_items: list[int] = Field(default_factory=list)
    journey: list[JourneyEntry] = Field(default_factory=list)
    dirty: bool = False
    external_target: str | None = None
    external_items: list[ExternalItem] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_partition(self) -> Epic:
        if self.external_target is not None and self.sub_items:
            raise ValueError(f"Epic #{self.number} tracks {self.external_target} and cannot own sub-items")
        return self

    @property
    def is_external(self) -> bool:
        """Check if this epic mirrors an external repository."""
        return self.external_target is not None

    @property
    def last_activity(self) -> datetime:
        """Timestamp of the latest journey entry, or creation time."""
        if self.journey:
            return self.journey[-1].timestamp
        return self.created_at

    def remote_labels(self) -> list[str]:
        """Labels to push: cached labels with the current status label."""
        labels = [label for label in self.labels if EpicStatus.from_label(label) is None]
        labels.append(self.status.label)
        return labels


class ProjectBoardRef(BaseModel):
    """Cached reference to the repository's project board."""

    id: str
    number: int
    title: str
    url: str = ""


class CacheSnapshot(BaseModel):
    """Full cached state for one repository."""

    version: int = CACHE_VERSION
    epics: dict[int, Epic] = Field(default_factory=dict)
    sub_items: dict[int, SubItem] = Field(default_factory=dict)
    project_board: ProjectBoardRef | None = None
    last_task_check: datetime | None = None


# =============================================================================
# Events
# =============================================================================


class DetectedEvent(BaseModel):
    """A typed event from the classifier."""

    kind: EventKind
    plan_file: str | None = None
    issue_number: int | None = None
    actor: str | None = None
    metadata: dict[str, Any] | None = None
