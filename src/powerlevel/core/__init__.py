"""Epic tracking core: cache, state machine, flush and reconciliation."""

from powerlevel.core.cache import CacheStore, CacheWriteError, UnknownEpicError
from powerlevel.core.models import (
    CacheSnapshot,
    DetectedEvent,
    Epic,
    EpicStatus,
    EventKind,
    ExternalItem,
    JourneyEntry,
    JourneyKind,
    RepoContext,
    SubItem,
)
from powerlevel.core.reconciler import ReconcileResult, reconcile_external
from powerlevel.core.state_machine import apply_event, transition_status
from powerlevel.core.synchronizer import FlushResult, flush, pull

__all__ = [
    "CacheSnapshot",
    "CacheStore",
    "CacheWriteError",
    "DetectedEvent",
    "Epic",
    "EpicStatus",
    "EventKind",
    "ExternalItem",
    "FlushResult",
    "JourneyEntry",
    "JourneyKind",
    "ReconcileResult",
    "RepoContext",
    "SubItem",
    "UnknownEpicError",
    "apply_event",
    "flush",
    "pull",
    "reconcile_external",
    "transition_status",
]
