"""Sync: note and Ghost sync passes and their entry point."""

from notepress.sync.config import SyncConfig
from notepress.sync.ghost_sync import GhostSyncService
from notepress.sync.limiter import SyncIntervalLimiter, SyncTooSoonError
from notepress.sync.orchestrator import SyncOrchestrator
from notepress.sync.schemas import ChangeAction, OwnerSyncResult, PostChange, SyncResult
from notepress.sync.service import BlogNotFoundError, InternalSyncError, SyncService

__all__ = [
    "BlogNotFoundError",
    "ChangeAction",
    "GhostSyncService",
    "InternalSyncError",
    "OwnerSyncResult",
    "OwnerSyncResult",
    "PostChange",
    "SyncConfig",
    "SyncIntervalLimiter",
    "SyncOrchestrator",
    "SyncResult",
    "SyncService",
    "SyncTooSoonError",
]
