"""Sync engine for tagsync - tag-scoped two-way sync of a Markdown vault."""

from .conflicts import build_conflict_path, find_free_conflict_path, strip_sync_tags
from .engine import (
    DEBOUNCE_SECONDS,
    IGNORE_WINDOW_SECONDS,
    INTERNAL_IGNORE_GLOBS,
    SyncEngine,
    SyncStatus,
    SyncTrigger,
)
from .operations import SyncOperations
from .scope import FrontmatterTagSource, ScopeIndex, TagSource
from .state import JsonStateFile, SyncStateStore
from .vault import LocalFile, LocalVault
from .watcher import VaultEventHandler, start_watching

__all__ = [
    "SyncEngine",
    "SyncStatus",
    "SyncTrigger",
    "SyncOperations",
    "SyncStateStore",
    "JsonStateFile",
    "ScopeIndex",
    "TagSource",
    "FrontmatterTagSource",
    "LocalFile",
    "LocalVault",
    "VaultEventHandler",
    "start_watching",
    "build_conflict_path",
    "find_free_conflict_path",
    "strip_sync_tags",
    "DEBOUNCE_SECONDS",
    "IGNORE_WINDOW_SECONDS",
    "INTERNAL_IGNORE_GLOBS",
]
