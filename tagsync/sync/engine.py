"""Core sync engine: run scheduling and pull/push reconciliation."""

import logging
import threading
import time
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from ..api import RemoteClient
from ..config import MIN_POLL_INTERVAL_SECONDS, Settings, is_configured, setup_issue
from ..exceptions import RemoteUnreachableError
from ..models import (
    FileSyncState,
    LocalEvent,
    LocalEventType,
    RemoteDeletedMetadata,
    RemoteFileMetadata,
    TokenSet,
)
from ..paths import (
    is_conflict_copy_path,
    is_document_path,
    normalize_local_path,
    to_local_path,
)
from ..utils import format_size, now_ms
from .conflicts import build_conflict_path, find_free_conflict_path, strip_sync_tags
from .operations import SyncOperations
from .scope import FrontmatterTagSource, ScopeIndex, TagSource
from .state import SyncStateStore
from .vault import LocalFile, LocalVault

logger = logging.getLogger(__name__)

INTERNAL_IGNORE_GLOBS = [".obsidian/**"]

DEBOUNCE_SECONDS = 0.75
IGNORE_WINDOW_SECONDS = 5.0


class SyncStatus(str, Enum):
    """Status shown to the user."""

    IDLE = "Idle"
    SYNCING = "Syncing..."
    PAUSED = "Paused"
    UP_TO_DATE = "Up to date"
    ERROR = "Error"
    UNREACHABLE = "Can't reach remote"


class SyncTrigger(str, Enum):
    """Why a run was requested."""

    MANUAL = "manual"
    LOCAL_EVENT = "local-event"
    POLL = "poll"
    SETTINGS_CHANGE = "settings-change"
    REBUILD_INDEX = "rebuild-index"
    RESYNC_ALL_TAGGED = "resync-all-tagged"


_EXPLICIT_TRIGGERS = {
    SyncTrigger.MANUAL,
    SyncTrigger.REBUILD_INDEX,
    SyncTrigger.RESYNC_ALL_TAGGED,
}


def create_empty_stats() -> dict:
    """Create an empty statistics dictionary.

    Returns:
        Dictionary with zero counts for all stat categories
    """
    return {
        "uploads": 0,
        "downloads": 0,
        "deletes_local": 0,
        "deletes_remote": 0,
        "skips": 0,
        "conflicts": 0,
    }


class SyncEngine:
    """Keeps tagged documents of a vault in sync with the remote.

    Triggers are coalesced so that at most one run executes at a time. A
    trigger that arrives during a run makes that run loop once more instead
    of starting a second one. Runs execute on a worker thread; the engine
    lock only guards scheduling flags, timers and the ignored-path table.

    Status and notice callbacks may be invoked while the engine lock is
    held and must not call back into the engine.
    """

    def __init__(
        self,
        vault: LocalVault,
        get_settings: Callable[[], Settings],
        state_store: SyncStateStore,
        tag_source: Optional[TagSource] = None,
        client_factory: Optional[Callable[[Settings], RemoteClient]] = None,
        on_status_change: Optional[Callable[[SyncStatus], None]] = None,
        on_notice: Optional[Callable[[str], None]] = None,
        on_tokens_updated: Optional[Callable[[TokenSet], None]] = None,
        debounce_seconds: float = DEBOUNCE_SECONDS,
        ignore_window_seconds: float = IGNORE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.now,
    ):
        """Initialize sync engine.

        Args:
            vault: Local document tree
            get_settings: Returns the current settings
            state_store: Persisted sync state
            tag_source: Tag extraction (defaults to reading front matter)
            client_factory: Creates a remote client for one run
            on_status_change: Called with every status change
            on_notice: Called with messages meant for the user
            on_tokens_updated: Called when the client obtains new tokens
            debounce_seconds: Quiet period for local change notifications
            ignore_window_seconds: How long the engine's own writes are ignored
            clock: Monotonic clock for the ignore window
            now: Wall clock used in conflict copy names
        """
        self.vault = vault
        self.get_settings = get_settings
        self.state_store = state_store
        self.scope_index = ScopeIndex(vault, tag_source or FrontmatterTagSource(vault))
        self.client_factory = client_factory or self._default_client_factory
        self.on_status_change = on_status_change
        self.on_notice = on_notice
        self.on_tokens_updated = on_tokens_updated
        self.debounce_seconds = debounce_seconds
        self.ignore_window_seconds = ignore_window_seconds
        self._clock = clock
        self._now = now

        self.status = SyncStatus.IDLE
        self.last_stats = create_empty_stats()

        self._lock = threading.Lock()
        self._paused = False
        self._disposed = False
        self._running = False
        self._rerun_requested = False
        self._run_done: Optional[threading.Event] = None
        self._debounce_timer: Optional[threading.Timer] = None
        self._poll_timer: Optional[threading.Timer] = None
        self._poll_interval: float = 0
        self._ignored_paths: dict[str, float] = {}
        self._force_upload_all_tagged = False

    def _default_client_factory(self, settings: Settings) -> RemoteClient:
        return RemoteClient.from_settings(settings, on_tokens_updated=self.on_tokens_updated)

    # =========================
    # Lifecycle and commands
    # =========================

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_running(self) -> bool:
        return self._running

    def initialize(self) -> None:
        """Load state, start polling and schedule the first run."""
        self.state_store.initialize()
        self._restart_polling()
        self._update_status(SyncStatus.IDLE)
        self._enqueue_sync(SyncTrigger.SETTINGS_CHANGE, immediate=True)

    def dispose(self) -> None:
        """Cancel both timers and wait for the run in progress."""
        with self._lock:
            self._disposed = True
            if self._debounce_timer is not None:
                self._debounce_timer.cancel()
                self._debounce_timer = None
            if self._poll_timer is not None:
                self._poll_timer.cancel()
                self._poll_timer = None
            run_done = self._run_done

        if run_done is not None:
            run_done.wait()

    def on_settings_changed(self) -> None:
        """Recreate the poll timer and schedule a run."""
        self._restart_polling()
        self._enqueue_sync(SyncTrigger.SETTINGS_CHANGE, immediate=True)

    def sync_now(self) -> SyncStatus:
        """Run a sync pass and wait for it to finish."""
        return self._wait(self._enqueue_sync(SyncTrigger.MANUAL, immediate=True))

    def rebuild_index(self) -> SyncStatus:
        """Recompute the tagged set and sync, waiting for completion."""
        return self._wait(self._enqueue_sync(SyncTrigger.REBUILD_INDEX, immediate=True))

    def resync_all_tagged(self) -> SyncStatus:
        """Re-list the remote from scratch and re-upload every tagged file."""
        with self._lock:
            self._force_upload_all_tagged = True
        return self._wait(
            self._enqueue_sync(SyncTrigger.RESYNC_ALL_TAGGED, immediate=True)
        )

    def toggle_pause(self) -> bool:
        """Pause or resume syncing.

        Returns:
            True if the engine is now paused
        """
        with self._lock:
            self._paused = not self._paused
            paused = self._paused
            if paused and not self._running:
                self._update_status(SyncStatus.PAUSED)

        if not paused:
            logger.info("Sync resumed")
            self._update_status(SyncStatus.IDLE)
            self._enqueue_sync(SyncTrigger.MANUAL, immediate=True)
        else:
            logger.info("Sync paused")
        return paused

    def handle_local_event(self, event: LocalEvent) -> None:
        """React to a local change notification.

        Events for non-documents and for paths the engine itself just wrote
        are dropped. Everything else schedules a debounced run.
        """
        if event.type == LocalEventType.RENAME:
            new_path = normalize_local_path(event.path)
            old_path = normalize_local_path(event.old_path or "")
            if not (is_document_path(new_path) or is_document_path(old_path)):
                return
            if self._is_path_ignored(new_path) or self._is_path_ignored(old_path):
                return
        else:
            path = normalize_local_path(event.path)
            if not is_document_path(path):
                return
            if self._is_path_ignored(path):
                logger.debug("Ignoring own change to %s", path)
                return

        self._enqueue_sync(SyncTrigger.LOCAL_EVENT, immediate=False)

    # =========================
    # Scheduling
    # =========================

    def _wait(self, run_done: Optional[threading.Event]) -> SyncStatus:
        if run_done is not None:
            run_done.wait()
        return self.status

    def _enqueue_sync(
        self, trigger: SyncTrigger, immediate: bool
    ) -> Optional[threading.Event]:
        if self._disposed:
            return None
        if self._paused:
            logger.debug("Sync paused, ignoring %s trigger", trigger.value)
            return None

        if immediate:
            return self._start_run(trigger)

        with self._lock:
            if self._debounce_timer is not None:
                self._debounce_timer.cancel()
            timer = threading.Timer(
                self.debounce_seconds, self._on_debounce_elapsed, args=(trigger,)
            )
            timer.daemon = True
            self._debounce_timer = timer
            timer.start()
        return None

    def _on_debounce_elapsed(self, trigger: SyncTrigger) -> None:
        with self._lock:
            self._debounce_timer = None
            if self._disposed:
                return
        self._start_run(trigger)

    def _start_run(self, trigger: SyncTrigger) -> Optional[threading.Event]:
        issue = setup_issue(self.get_settings())
        if issue:
            if trigger in _EXPLICIT_TRIGGERS:
                self._notify(f"Setup required: {issue}")
            logger.debug("Not syncing (%s): %s", trigger.value, issue)
            return None

        with self._lock:
            if self._running:
                self._rerun_requested = True
                return self._run_done

            self._running = True
            self._rerun_requested = False
            run_done = threading.Event()
            self._run_done = run_done

        worker = threading.Thread(
            target=self._run_loop,
            args=(trigger, run_done),
            name="tagsync-run",
            daemon=True,
        )
        worker.start()
        return run_done

    def _run_loop(self, trigger: SyncTrigger, run_done: threading.Event) -> None:
        self._update_status(SyncStatus.SYNCING)
        try:
            current: SyncTrigger = trigger
            while True:
                self._sync_once(current)
                with self._lock:
                    if not self._rerun_requested:
                        self._running = False
                        self._run_done = None
                        self._update_status(
                            SyncStatus.PAUSED if self._paused else SyncStatus.UP_TO_DATE
                        )
                        break
                    self._rerun_requested = False
                    current = (
                        SyncTrigger.RESYNC_ALL_TAGGED
                        if self._force_upload_all_tagged
                        else SyncTrigger.LOCAL_EVENT
                    )
        except RemoteUnreachableError as e:
            logger.warning("Sync failed: %s", e)
            self._finish_failed_run(SyncStatus.UNREACHABLE)
            self._notify(str(e))
        except Exception as e:
            logger.exception("Sync failed")
            self._finish_failed_run(SyncStatus.ERROR)
            self._notify(f"Sync error: {e}")
        finally:
            run_done.set()

    def _finish_failed_run(self, status: SyncStatus) -> None:
        with self._lock:
            self._running = False
            self._rerun_requested = False
            self._run_done = None
            self._update_status(status)

    def _restart_polling(self) -> None:
        interval = max(
            MIN_POLL_INTERVAL_SECONDS, self.get_settings().poll_interval_seconds
        )
        with self._lock:
            if self._poll_timer is not None:
                self._poll_timer.cancel()
                self._poll_timer = None
            if self._disposed:
                return
            self._poll_interval = interval
            self._schedule_poll_locked()

    def _schedule_poll_locked(self) -> None:
        timer = threading.Timer(self._poll_interval, self._on_poll_tick)
        timer.daemon = True
        self._poll_timer = timer
        timer.start()

    def _on_poll_tick(self) -> None:
        with self._lock:
            if self._disposed:
                return
            self._schedule_poll_locked()
        self._enqueue_sync(SyncTrigger.POLL, immediate=True)

    # =========================
    # Self-echo suppression
    # =========================

    def _mark_path_ignored(self, path: str) -> None:
        with self._lock:
            expires_at = self._clock() + self.ignore_window_seconds
            self._ignored_paths[normalize_local_path(path)] = expires_at

    def _is_path_ignored(self, path: str) -> bool:
        now = self._clock()
        with self._lock:
            for tracked_path, expires_at in list(self._ignored_paths.items()):
                if expires_at < now:
                    del self._ignored_paths[tracked_path]
            expires_at = self._ignored_paths.get(normalize_local_path(path))
        return expires_at is not None and expires_at >= now

    # =========================
    # One sync pass
    # =========================

    def _sync_once(self, trigger: SyncTrigger) -> None:
        if self._paused:
            return

        settings = self.get_settings()
        if not is_configured(settings):
            return

        # A resync requested while this pass runs sets the flag again and
        # is picked up by the rerun.
        with self._lock:
            force_upload = (
                self._force_upload_all_tagged
                or trigger == SyncTrigger.RESYNC_ALL_TAGGED
            )
            self._force_upload_all_tagged = False
        if force_upload:
            self.state_store.set_cursor(None)

        stats = create_empty_stats()
        self.last_stats = stats
        start_time = time.time()
        logger.debug("Starting sync pass (%s)", trigger.value)

        try:
            with self.client_factory(settings) as client:
                operations = SyncOperations(client, settings.remote_base_path)
                try:
                    self._pull_remote_changes(operations, settings, stats)
                    tagged_files = self.scope_index.compute_scope(
                        settings.tags_to_sync,
                        INTERNAL_IGNORE_GLOBS + list(settings.ignore_globs),
                    )
                    self._push_local_changes(
                        operations, settings, tagged_files, force_upload, stats
                    )
                finally:
                    self.state_store.save()
        except Exception:
            if force_upload:
                with self._lock:
                    self._force_upload_all_tagged = True
            raise

        logger.info(
            "Sync pass done in %.2fs: %d up, %d down, %d local deletes, "
            "%d remote deletes, %d conflicts, %d skipped",
            time.time() - start_time,
            stats["uploads"],
            stats["downloads"],
            stats["deletes_local"],
            stats["deletes_remote"],
            stats["conflicts"],
            stats["skips"],
        )

    # =========================
    # Pull
    # =========================

    def _pull_remote_changes(
        self, operations: SyncOperations, settings: Settings, stats: dict
    ) -> None:
        result = operations.list_changes(self.state_store.get_cursor())
        logger.debug("Pulled %d remote change(s)", len(result.entries))

        for entry in result.entries:
            if isinstance(entry, RemoteDeletedMetadata):
                self._apply_remote_delete(entry, operations, settings, stats)
            else:
                self._apply_remote_file(entry, operations, settings, stats)

        self.state_store.set_cursor(result.cursor)

    def _apply_remote_delete(
        self,
        entry: RemoteDeletedMetadata,
        operations: SyncOperations,
        settings: Settings,
        stats: dict,
    ) -> None:
        local_path = to_local_path(settings.remote_base_path, entry.path)
        if not local_path:
            return
        if not is_document_path(local_path) or is_conflict_copy_path(local_path):
            self.state_store.delete_file(local_path)
            return

        existing_state = self.state_store.get_file(local_path)
        if existing_state is None:
            logger.debug("Remote deletion of untracked %s, nothing to do", local_path)
            return

        local_file = self.vault.get_file(local_path)
        if local_file is None:
            self.state_store.delete_file(local_path)
            return

        if local_file.mtime == existing_state.last_local_mtime:
            self._delete_local_file(local_path)
            self.state_store.delete_file(local_path)
            stats["deletes_local"] += 1
            logger.debug("Deleted %s (deleted remotely)", local_path)
            return

        # Edited locally since the last sync: the original path keeps the
        # local content and is uploaded again.
        logger.info("%s was deleted remotely but edited locally", local_path)
        local_content = self.vault.read(local_path)
        self._create_conflict_copy(local_path, local_content, settings)
        stats["conflicts"] += 1

        uploaded = operations.upload(local_path, local_content)
        self._record_state(local_path, uploaded, local_file.mtime)
        stats["uploads"] += 1

    def _apply_remote_file(
        self,
        entry: RemoteFileMetadata,
        operations: SyncOperations,
        settings: Settings,
        stats: dict,
    ) -> None:
        local_path = to_local_path(settings.remote_base_path, entry.path_display)
        if not local_path or not is_document_path(local_path):
            return
        if is_conflict_copy_path(local_path):
            self.state_store.delete_file(local_path)
            return

        existing_state = self.state_store.get_file(local_path)
        if existing_state is not None and existing_state.remote_revision == entry.rev:
            return

        local_file = self.vault.get_file(local_path)
        local_changed = (
            local_file is not None
            and (
                existing_state is None
                or local_file.mtime != existing_state.last_local_mtime
            )
        )

        if local_file is None or not local_changed:
            downloaded = operations.download(local_path)
            written = self._write_local_file(local_path, downloaded.content)
            self._record_state(local_path, downloaded.metadata, written.mtime)
            stats["downloads"] += 1
            logger.debug("Downloaded %s (rev %s)", local_path, downloaded.metadata.rev)
            return

        local_content = self.vault.read(local_path)
        downloaded = operations.download(local_path)

        if downloaded.content == local_content:
            # Both sides converged on the same content independently
            self._record_state(local_path, downloaded.metadata, local_file.mtime)
            return

        logger.info("Conflict on %s", local_path)
        self._create_conflict_copy(local_path, local_content, settings)
        stats["conflicts"] += 1

        remote_modified = self._remote_time(downloaded.metadata)
        if remote_modified >= local_file.mtime:
            written = self._write_local_file(local_path, downloaded.content)
            self._record_state(local_path, downloaded.metadata, written.mtime)
            stats["downloads"] += 1
            return

        uploaded = operations.upload(local_path, local_content)
        self._record_state(local_path, uploaded, local_file.mtime)
        stats["uploads"] += 1

    # =========================
    # Push
    # =========================

    def _push_local_changes(
        self,
        operations: SyncOperations,
        settings: Settings,
        tagged_files: set[str],
        force_upload: bool,
        stats: dict,
    ) -> None:
        for tracked_path, tracked_state in self.state_store.all_files():
            local_file = self.vault.get_file(tracked_path)
            if local_file is None or is_conflict_copy_path(tracked_path):
                self._delete_remote(operations, tracked_path, stats)
                continue

            if tracked_path not in tagged_files:
                # Out of scope: only a local edit (e.g. removing the tag)
                # takes the file off the remote.
                if tracked_state.last_local_mtime != local_file.mtime:
                    self._delete_remote(operations, tracked_path, stats)

        max_upload_bytes = settings.max_upload_bytes

        for local_path in sorted(tagged_files):
            local_file = self.vault.get_file(local_path)
            if local_file is None:
                continue

            existing_state = self.state_store.get_file(local_path)
            if (
                not force_upload
                and existing_state is not None
                and existing_state.last_local_mtime == local_file.mtime
            ):
                continue

            if local_file.size > max_upload_bytes:
                message = (
                    f"Skipped {local_path}: "
                    f"{format_size(local_file.size)} is over the "
                    f"{settings.max_upload_size_mb:g} MB limit"
                )
                logger.warning(message)
                self._notify(message)
                self.state_store.set_file(
                    local_path,
                    FileSyncState(
                        remote_revision=(
                            existing_state.remote_revision if existing_state else None
                        ),
                        last_local_mtime=local_file.mtime,
                        last_remote_modified=(
                            existing_state.last_remote_modified
                            if existing_state
                            else None
                        ),
                    ),
                )
                stats["skips"] += 1
                continue

            content = self.vault.read(local_path)
            uploaded = operations.upload(local_path, content)
            self._record_state(local_path, uploaded, local_file.mtime)
            stats["uploads"] += 1
            logger.debug("Uploaded %s (rev %s)", local_path, uploaded.rev)

    def _delete_remote(
        self, operations: SyncOperations, local_path: str, stats: dict
    ) -> None:
        if operations.delete(local_path):
            stats["deletes_remote"] += 1
            logger.debug("Deleted remote copy of %s", local_path)
        self.state_store.delete_file(local_path)

    # =========================
    # Local file helpers
    # =========================

    def _write_local_file(self, path: str, content: bytes) -> LocalFile:
        self._mark_path_ignored(path)
        return self.vault.write(path, content)

    def _delete_local_file(self, path: str) -> None:
        self._mark_path_ignored(path)
        self.vault.delete(path)

    def _create_conflict_copy(self, local_path: str, content: bytes, settings: Settings) -> str:
        """Write a sanitized copy of local content next to the original.

        Returns:
            Path of the conflict copy
        """
        conflict_path = build_conflict_path(local_path, settings.vault_id, self._now())
        final_path = find_free_conflict_path(conflict_path, self.vault.exists)

        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError:
            sanitized = content
        else:
            sanitized = strip_sync_tags(text, settings.tags_to_sync).encode("utf-8")

        self._mark_path_ignored(final_path)
        self.vault.write(final_path, sanitized)
        logger.info("Created conflict copy %s", final_path)
        return final_path

    def _record_state(
        self, local_path: str, metadata: RemoteFileMetadata, local_mtime: int
    ) -> None:
        self.state_store.set_file(
            local_path,
            FileSyncState(
                remote_revision=metadata.rev,
                last_local_mtime=local_mtime,
                last_remote_modified=self._remote_time(metadata),
            ),
        )

    def _remote_time(self, metadata: RemoteFileMetadata) -> int:
        remote_ms = metadata.server_modified_ms
        return remote_ms if remote_ms is not None else now_ms()

    # =========================
    # Status
    # =========================

    def _update_status(self, status: SyncStatus) -> None:
        self.status = status
        if self.on_status_change is not None:
            self.on_status_change(status)

    def _notify(self, message: str) -> None:
        if self.on_notice is not None:
            self.on_notice(message)
