"""State management for tracking sync history.

This module keeps the remote list cursor together with what the engine last
knew about every synced path. The engine compares it against the current
local and remote state to tell local edits, remote edits and conflicts
apart.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Optional

from ..models import FileSyncState, SyncStateData
from ..paths import normalize_local_path

logger = logging.getLogger(__name__)

LoadSyncState = Callable[[], Optional[dict[str, Any]]]
SaveSyncState = Callable[[dict[str, Any]], None]


class JsonStateFile:
    """Persists sync state as a JSON file."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> Optional[dict[str, Any]]:
        """Load the stored state.

        Returns:
            The stored dictionary, or None if there is no usable state
        """
        if not self.path.exists():
            logger.debug("No sync state found at %s", self.path)
            return None

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Failed to load sync state from %s: %s", self.path, e)
            return None
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed sync state in %s", self.path)
            return None
        return data

    def save(self, data: dict[str, Any]) -> None:
        """Write state atomically (temp file + replace)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self.path)
        logger.debug(
            "Saved sync state with %d files to %s",
            len(data.get("files", {})),
            self.path,
        )


class SyncStateStore:
    """In-memory sync state with explicit load and save.

    The store is loaded once and then mutated by the engine during a run.
    ``save()`` serializes a snapshot first, so later mutations never leak
    into (or tear) a save that is already in progress.
    """

    def __init__(self, load_state: LoadSyncState, save_state: SaveSyncState):
        """Initialize the store.

        Args:
            load_state: Returns the persisted dictionary, or None
            save_state: Persists a dictionary
        """
        self._load_state = load_state
        self._save_state = save_state
        self._loaded = False
        self._state = SyncStateData()

    @classmethod
    def from_file(cls, path: Path) -> "SyncStateStore":
        """Create a store backed by a JSON file."""
        state_file = JsonStateFile(path)
        return cls(state_file.load, state_file.save)

    def initialize(self) -> None:
        """Load persisted state. Calling it again has no effect."""
        if self._loaded:
            return
        self._state = SyncStateData.from_dict(self._load_state())
        self._loaded = True
        logger.debug(
            "Loaded sync state with %d files (cursor %s)",
            len(self._state.files),
            "set" if self._state.cursor else "unset",
        )

    def get_cursor(self) -> Optional[str]:
        return self._state.cursor

    def set_cursor(self, cursor: Optional[str]) -> None:
        self._state.cursor = cursor

    def get_file(self, path: str) -> Optional[FileSyncState]:
        return self._state.files.get(normalize_local_path(path))

    def set_file(self, path: str, value: FileSyncState) -> None:
        self._state.files[normalize_local_path(path)] = value

    def delete_file(self, path: str) -> None:
        self._state.files.pop(normalize_local_path(path), None)

    def has_file(self, path: str) -> bool:
        return normalize_local_path(path) in self._state.files

    def all_files(self) -> list[tuple[str, FileSyncState]]:
        """Return a copy of all tracked (path, state) pairs."""
        return list(self._state.files.items())

    def snapshot(self) -> dict[str, Any]:
        """Serialize the current state into a new dictionary."""
        return self._state.to_dict()

    def save(self) -> None:
        """Persist a point-in-time copy of the state."""
        self._save_state(self.snapshot())
