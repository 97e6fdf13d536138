"""Durable per-repository cache of epics, sub-items and journey logs.

The snapshot is loaded once per process, mutated in memory through the
helpers below, and written back at checkpoints. A missing or unreadable
file is a cold start, never an error; a failed write always raises.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from powerlevel.core.models import (
    CacheSnapshot,
    Epic,
    JourneyEntry,
    JourneyKind,
    SubItem,
    utcnow,
)

if TYPE_CHECKING:
    from typing import Any

    from powerlevel.core.models import RepoContext

logger = logging.getLogger(__name__)

STATE_FILENAME = "state.json"


class CacheError(Exception):
    """Base exception for cache errors."""


class CacheWriteError(CacheError):
    """Persisting a snapshot failed."""


class UnknownEpicError(CacheError, KeyError):
    """An operation referenced an epic that is not in the cache."""

    def __str__(self) -> str:
        # KeyError quotes its message
        return str(self.args[0]) if self.args else ""


def default_cache_dir() -> Path:
    """Cache root from POWERLEVEL_CACHE_DIR, else ~/.cache/powerlevel."""
    env_dir = os.getenv("POWERLEVEL_CACHE_DIR")
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / ".cache" / "powerlevel"


class CacheStore:
    """Loads and atomically saves one snapshot per repository."""

    def __init__(self, cache_dir: Path | None = None) -> None:
        self.cache_dir = cache_dir or default_cache_dir()

    def path_for(self, context: RepoContext) -> Path:
        """Get the state file path for a repository."""
        return self.cache_dir / context.repo_hash / STATE_FILENAME

    def load(self, context: RepoContext) -> CacheSnapshot:
        """Load the snapshot for a repository.

        Returns an empty snapshot when nothing is persisted yet. A file
        that cannot be parsed is moved aside and treated the same way.
        """
        path = self.path_for(context)
        if not path.exists():
            logger.debug(f"No cache for {context.full_name}, starting cold")
            return CacheSnapshot()

        try:
            raw = path.read_text(encoding="utf-8")
            return CacheSnapshot.model_validate_json(raw)
        except (ValidationError, ValueError, UnicodeDecodeError) as e:
            quarantined = self._quarantine(path)
            logger.warning(
                f"Cache for {context.full_name} is corrupt ({e.__class__.__name__}); "
                f"moved to {quarantined} and starting cold"
            )
            return CacheSnapshot()
        except OSError as e:
            logger.warning(f"Cache for {context.full_name} is unreadable: {e}; starting cold")
            return CacheSnapshot()

    def save(self, context: RepoContext, snapshot: CacheSnapshot) -> Path:
        """Persist a snapshot atomically.

        Writes to a temporary file next to the state file and replaces the
        state file only once the write has been flushed to disk.

        Raises:
            CacheWriteError: If any filesystem operation fails.
        """
        path = self.path_for(context)
        tmp = path.with_suffix(path.suffix + ".tmp")
        payload = snapshot.model_dump_json(indent=2) + "\n"

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            tmp.replace(path)
        except OSError as e:
            raise CacheWriteError(f"Failed to save cache for {context.full_name} at {path}: {e}") from e

        logger.debug(f"Saved cache for {context.full_name} ({len(snapshot.epics)} epics)")
        return path

    @staticmethod
    def _quarantine(path: Path) -> Path | None:
        stamp = utcnow().strftime("%Y%m%dT%H%M%SZ")
        target = path.with_name(f"{path.name}.corrupt-{stamp}")
        try:
            path.replace(target)
        except OSError as e:
            logger.warning(f"Could not move corrupt cache {path} aside: {e}")
            return None
        return target


# =============================================================================
# Snapshot mutation helpers
# =============================================================================


def get_epic(snapshot: CacheSnapshot, number: int) -> Epic:
    """Get an epic by number.

    Raises:
        UnknownEpicError: If the epic is not cached.
    """
    epic = snapshot.epics.get(number)
    if epic is None:
        raise UnknownEpicError(f"Epic #{number} not found in cache")
    return epic


def add_epic(snapshot: CacheSnapshot, epic: Epic) -> Epic:
    """Add an epic, or merge scalar fields into an existing one.

    Journey, sub-items and the dirty flag of an existing epic are kept.

    Raises:
        ValueError: If the merge would make an epic that owns sub-items
            track an external repository. The cached epic is left as it was.
    """
    existing = snapshot.epics.get(epic.number)
    if existing is None:
        snapshot.epics[epic.number] = epic
        return epic

    updates: dict[str, Any] = epic.model_dump(
        include={"title", "goal", "priority", "status", "state", "plan_file", "external_target", "labels"},
        exclude_unset=True,
    )
    target = updates.get("external_target", existing.external_target)
    if target is not None and existing.sub_items:
        raise ValueError(f"Epic #{existing.number} owns sub-items and cannot track {target}")

    for key, value in updates.items():
        setattr(existing, key, value)
    existing.updated_at = utcnow()
    return existing


def add_sub_item(snapshot: CacheSnapshot, epic_number: int, sub_item: SubItem) -> SubItem:
    """Attach a sub-item to a self-tracking epic and index it.

    Raises:
        UnknownEpicError: If the epic is not cached.
        ValueError: If the epic tracks an external repository.
    """
    epic = get_epic(snapshot, epic_number)
    if epic.is_external:
        raise ValueError(f"Epic #{epic_number} tracks {epic.external_target}; external items are not cached as sub-items")

    indexed = sub_item.model_copy(update={"epic_number": epic_number})
    if indexed.number not in epic.sub_items:
        epic.sub_items.append(indexed.number)
    snapshot.sub_items[indexed.number] = indexed
    return indexed


def sub_items_for(snapshot: CacheSnapshot, epic: Epic) -> list[SubItem]:
    """Resolve an epic's ordered sub-item references through the index."""
    if epic.is_external:
        return []
    return [snapshot.sub_items[n] for n in epic.sub_items if n in snapshot.sub_items]


def epic_for_sub_item(snapshot: CacheSnapshot, issue_number: int) -> Epic | None:
    """Find the epic owning a sub-item, or None if the issue is unknown."""
    sub_item = snapshot.sub_items.get(issue_number)
    if sub_item is None:
        return None
    return snapshot.epics.get(sub_item.epic_number)


def find_epic_by_plan_file(snapshot: CacheSnapshot, plan_file: str) -> Epic | None:
    """Find the epic created from a plan file.

    An exact path match wins; otherwise a stored path ending with the
    given one (absolute vs repo-relative paths) is accepted.
    """
    wanted = plan_file.strip()
    if not wanted:
        return None
    for epic in snapshot.epics.values():
        if epic.plan_file == wanted:
            return epic
    for epic in snapshot.epics.values():
        if epic.plan_file and (epic.plan_file.endswith("/" + wanted) or wanted.endswith("/" + epic.plan_file)):
            return epic
    return None


def mark_dirty(snapshot: CacheSnapshot, number: int) -> Epic:
    """Flag an epic as having unpushed local changes."""
    epic = get_epic(snapshot, number)
    epic.dirty = True
    epic.updated_at = utcnow()
    return epic


def dirty_epics(snapshot: CacheSnapshot) -> list[Epic]:
    """Get all dirty epics, ordered by number."""
    return [snapshot.epics[n] for n in sorted(snapshot.epics) if snapshot.epics[n].dirty]


def append_journey(
    snapshot: CacheSnapshot,
    number: int,
    kind: JourneyKind,
    message: str,
    actor: str | None = None,
    metadata: dict[str, Any] | None = None,
    timestamp: datetime | None = None,
) -> JourneyEntry:
    """Append a journey entry to an epic and mark it dirty.

    Timestamps never go backwards within one epic's journey.
    """
    epic = get_epic(snapshot, number)
    when = timestamp or utcnow()
    if epic.journey and when < epic.journey[-1].timestamp:
        when = epic.journey[-1].timestamp

    entry = JourneyEntry(
        timestamp=when,
        kind=kind,
        message=_sanitize(message),
        actor=_sanitize(actor) if actor else None,
        metadata=metadata,
    )
    epic.journey.append(entry)
    mark_dirty(snapshot, number)
    return entry


def _sanitize(text: str) -> str:
    # Strip control characters other than tab/newline/carriage return
    return "".join(ch for ch in text if ch in "\t\n\r" or ord(ch) >= 32)
