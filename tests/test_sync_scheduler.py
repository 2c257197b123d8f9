"""Tests for run scheduling: debounce, coalescing, pause and timers."""

import threading
import time

from conftest import GatedRemote, write_note

from tagsync.exceptions import RemoteUnreachableError
from tagsync.models import LocalEvent, LocalEventType
from tagsync.sync import SyncStatus, SyncTrigger


def wait_for(condition, timeout=3.0):
    """Poll until condition() is true or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


def modify(path):
    return LocalEvent(LocalEventType.MODIFY, path)


class TestDebounce:
    """Tests for local event debouncing."""

    def test_burst_of_events_runs_once(self, engine_factory, vault, remote):
        """Test that ten quick events collapse into a single run."""
        engine = engine_factory(debounce_seconds=0.1)
        write_note(vault, "a.md", "#shared\n")

        for _ in range(10):
            engine.handle_local_event(modify("a.md"))

        assert wait_for(lambda: remote.clients_opened == 1 and not engine.is_running)
        time.sleep(0.3)
        assert remote.clients_opened == 1
        assert "/vault/a.md" in remote.files

    def test_non_documents_ignored(self, engine_factory):
        engine = engine_factory(debounce_seconds=10)
        engine.handle_local_event(modify("image.png"))
        engine.handle_local_event(
            LocalEvent(LocalEventType.RENAME, "b.txt", old_path="a.txt")
        )
        assert engine._debounce_timer is None

    def test_rename_of_document_schedules(self, engine_factory):
        engine = engine_factory(debounce_seconds=10)
        engine.handle_local_event(
            LocalEvent(LocalEventType.RENAME, "b.md", old_path="a.md")
        )
        assert engine._debounce_timer is not None

    def test_rename_away_from_document_schedules(self, engine_factory):
        engine = engine_factory(debounce_seconds=10)
        engine.handle_local_event(
            LocalEvent(LocalEventType.RENAME, "a.txt", old_path="a.md")
        )
        assert engine._debounce_timer is not None


class TestIgnoreWindow:
    """Tests for suppression of the engine's own writes."""

    def test_window_expires(self, engine_factory):
        now = [100.0]
        engine = engine_factory(clock=lambda: now[0], debounce_seconds=10)

        engine._mark_path_ignored("a.md")
        assert engine._is_path_ignored("a.md")
        engine.handle_local_event(modify("a.md"))
        assert engine._debounce_timer is None

        now[0] += 6
        assert not engine._is_path_ignored("a.md")
        assert "a.md" not in engine._ignored_paths
        engine.handle_local_event(modify("a.md"))
        assert engine._debounce_timer is not None


class TestCoalescing:
    """Tests for run coalescing."""

    def test_triggers_during_run_cause_one_rerun(self, engine_factory, status_log):
        gated = GatedRemote()
        engine = engine_factory(
            client_factory=lambda s: gated, on_status_change=status_log
        )

        done = engine._enqueue_sync(SyncTrigger.MANUAL, immediate=True)
        assert gated.listing_started.wait(2)
        assert engine.is_running

        assert engine._enqueue_sync(SyncTrigger.MANUAL, immediate=True) is done
        assert engine._enqueue_sync(SyncTrigger.POLL, immediate=True) is done

        gated.release.set()
        assert done.wait(3)

        assert len(gated.list_calls) == 2
        assert gated.clients_opened == 2
        assert not engine.is_running
        statuses = [c.args[0] for c in status_log.call_args_list]
        assert statuses == [SyncStatus.SYNCING, SyncStatus.UP_TO_DATE]

    def test_resync_requested_during_run_is_not_lost(self, engine_factory, vault):
        """Test that the rerun after a mid-run resync relists and re-uploads."""
        gated = GatedRemote()
        gated.release.set()
        engine = engine_factory(client_factory=lambda s: gated)
        write_note(vault, "a.md", "#shared\n")
        write_note(vault, "b.md", "#shared\n")
        engine.sync_now()
        assert len(gated.uploads) == 2

        gated.listing_started.clear()
        gated.release.clear()
        done = engine._enqueue_sync(SyncTrigger.MANUAL, immediate=True)
        assert gated.listing_started.wait(2)

        result = []
        resync = threading.Thread(
            target=lambda: result.append(engine.resync_all_tagged())
        )
        resync.start()
        assert wait_for(lambda: engine._force_upload_all_tagged)

        gated.release.set()
        resync.join(3)
        assert done.wait(3)

        assert result == [SyncStatus.UP_TO_DATE]
        assert len(gated.uploads) == 4
        assert gated.list_calls[-1] is None
        assert not engine._force_upload_all_tagged

    def test_failed_resync_keeps_force_flag(self, engine, vault, remote):
        write_note(vault, "a.md", "#shared\n")
        engine.sync_now()
        remote.fail_with = RemoteUnreachableError()

        assert engine.resync_all_tagged() == SyncStatus.UNREACHABLE
        assert engine._force_upload_all_tagged

        remote.fail_with = None
        engine.sync_now()
        assert remote.list_calls[-1] is None
        assert len(remote.uploads) == 2
        assert not engine._force_upload_all_tagged

    def test_sync_now_waits_for_completion(self, engine, vault, remote):
        write_note(vault, "a.md", "#shared\n")
        assert engine.sync_now() == SyncStatus.UP_TO_DATE
        assert not engine.is_running


class TestPause:
    """Tests for toggle_pause."""

    def test_paused_triggers_do_not_run(self, engine_factory, remote):
        engine = engine_factory(debounce_seconds=0.01)

        assert engine.toggle_pause() is True
        assert engine.status == SyncStatus.PAUSED
        assert engine.sync_now() == SyncStatus.PAUSED
        engine.handle_local_event(modify("a.md"))
        time.sleep(0.1)

        assert remote.clients_opened == 0

    def test_resume_schedules_run(self, engine, remote):
        engine.toggle_pause()
        assert engine.toggle_pause() is False
        assert wait_for(lambda: remote.clients_opened >= 1 and not engine.is_running)
        assert engine.status == SyncStatus.UP_TO_DATE

    def test_pause_during_run_ends_paused(self, engine_factory):
        gated = GatedRemote()
        engine = engine_factory(client_factory=lambda s: gated)

        done = engine._enqueue_sync(SyncTrigger.MANUAL, immediate=True)
        assert gated.listing_started.wait(2)
        engine.toggle_pause()
        gated.release.set()

        assert done.wait(3)
        assert engine.status == SyncStatus.PAUSED


class TestLifecycle:
    """Tests for initialize, settings changes and dispose."""

    def test_initialize_runs_and_polls(self, engine, remote):
        engine.initialize()
        assert engine._poll_timer is not None
        assert wait_for(lambda: remote.clients_opened == 1 and not engine.is_running)

    def test_settings_change_recreates_poll_timer(self, engine, remote):
        engine.initialize()
        old_timer = engine._poll_timer

        engine.on_settings_changed()

        assert engine._poll_timer is not old_timer
        assert old_timer.finished.is_set()

    def test_poll_tick_reschedules_and_runs(self, engine, remote):
        engine._restart_polling()
        first_timer = engine._poll_timer

        engine._on_poll_tick()

        assert engine._poll_timer is not first_timer
        assert wait_for(lambda: remote.clients_opened == 1 and not engine.is_running)

    def test_poll_interval_clamped(self, engine, settings):
        settings.poll_interval_seconds = 1
        engine._restart_polling()
        assert engine._poll_interval == 5

    def test_dispose_stops_everything(self, engine, remote):
        engine.initialize()
        engine.dispose()

        assert engine._poll_timer is None
        assert engine._debounce_timer is None
        opened = remote.clients_opened
        engine.sync_now()
        engine.handle_local_event(modify("a.md"))
        assert remote.clients_opened == opened
