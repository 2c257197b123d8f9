"""Local change notifications for the sync engine, backed by watchdog."""

import logging
import os
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..models import LocalEvent, LocalEventType

logger = logging.getLogger(__name__)


class VaultEventHandler(FileSystemEventHandler):
    """Translates watchdog events into vault-relative ``LocalEvent`` values."""

    def __init__(self, root: Path, on_event: Callable[[LocalEvent], None]):
        """Initialize event handler.

        Args:
            root: Vault root directory
            on_event: Receives every translated event
        """
        self.root = Path(root).expanduser().resolve()
        self.on_event = on_event

    def _relative(self, path) -> Optional[str]:
        absolute = Path(os.fsdecode(path))
        try:
            return absolute.resolve().relative_to(self.root).as_posix()
        except ValueError:
            return None

    def _emit(self, event_type: LocalEventType, src_path, dest_path=None) -> None:
        if dest_path is not None:
            new_path = self._relative(dest_path)
            old_path = self._relative(src_path)
            if new_path is None:
                return
            self.on_event(LocalEvent(event_type, new_path, old_path=old_path))
            return

        path = self._relative(src_path)
        if path is not None:
            self.on_event(LocalEvent(event_type, path))

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(LocalEventType.CREATE, event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(LocalEventType.MODIFY, event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(LocalEventType.DELETE, event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(LocalEventType.RENAME, event.src_path, event.dest_path)


def start_watching(root: Path, on_event: Callable[[LocalEvent], None]) -> Observer:
    """Start a recursive observer on the vault root.

    The caller is responsible for ``observer.stop()`` and ``observer.join()``.
    """
    observer = Observer()
    observer.schedule(VaultEventHandler(root, on_event), str(root), recursive=True)
    observer.start()
    logger.info("Watching %s for changes", root)
    return observer
