"""Shared fixtures for sync engine tests."""

import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import Mock

import pytest

from tagsync.config import Settings
from tagsync.models import (
    DownloadResult,
    ListDeltaResult,
    RemoteDeletedMetadata,
    RemoteFileMetadata,
)
from tagsync.sync import LocalVault, SyncEngine, SyncStateStore

FIXED_NOW = datetime(2024, 1, 1, 10, 0)


def iso_from_ms(ms):
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


class FakeRemote:
    """In-memory remote with a change journal used as list cursor."""

    def __init__(self):
        self.files = {}
        self.journal = []
        self.revision = 0
        self.uploads = []
        self.downloads = []
        self.deletes = []
        self.list_calls = []
        self.fail_with = None
        self.fail_on = None
        self.clients_opened = 0

    # Test-side helpers

    def put(self, path, content, modified_ms=None):
        """Create or change a file as another device would."""
        if isinstance(content, str):
            content = content.encode()
        self.revision += 1
        modified = iso_from_ms(modified_ms) if modified_ms is not None else (
            datetime.now(timezone.utc).isoformat()
        )
        metadata = RemoteFileMetadata(
            name=path.rsplit("/", 1)[-1],
            path_display=path,
            path_lower=path.lower(),
            rev=f"rev{self.revision}",
            server_modified=modified,
            size=len(content),
        )
        self.files[path] = (content, metadata)
        self.journal.append(metadata)
        return metadata

    def remove(self, path):
        """Delete a file as another device would."""
        self.files.pop(path, None)
        self.journal.append(
            RemoteDeletedMetadata(path_lower=path.lower(), path_display=path)
        )

    def content(self, path):
        return self.files[path][0]

    # RemoteClient interface

    def __enter__(self):
        self.clients_opened += 1
        return self

    def __exit__(self, *exc_info):
        return None

    def _maybe_fail(self, operation):
        if self.fail_with is not None and self.fail_on in (None, operation):
            raise self.fail_with

    def list_delta(self, remote_base_path, cursor=None):
        self._maybe_fail("list_delta")
        self.list_calls.append(cursor)
        if cursor is None:
            entries = [metadata for _, metadata in self.files.values()]
        else:
            # Only the latest change per path is reported
            latest = {}
            for entry in self.journal[int(cursor):]:
                latest.pop(entry.path_lower, None)
                latest[entry.path_lower] = entry
            entries = list(latest.values())
        return ListDeltaResult(entries=entries, cursor=str(len(self.journal)))

    def upload(self, remote_path, content):
        self._maybe_fail("upload")
        self.uploads.append(remote_path)
        return self.put(remote_path, content)

    def download(self, remote_path):
        self._maybe_fail("download")
        self.downloads.append(remote_path)
        content, metadata = self.files[remote_path]
        return DownloadResult(metadata=metadata, content=content)

    def delete(self, remote_path):
        self._maybe_fail("delete")
        self.deletes.append(remote_path)
        if remote_path not in self.files:
            return False
        self.remove(remote_path)
        return True


def write_note(vault, path, text, mtime_ms=None):
    """Write a note, optionally forcing its modification time (ms)."""
    content = text.encode() if isinstance(text, str) else text
    vault.write(path, content)
    if mtime_ms is not None:
        ns = mtime_ms * 1_000_000
        os.utime(vault.resolve(path), ns=(ns, ns))
    return vault.get_file(path)


def bump_mtime(vault, path, delta_ms=10_000):
    """Move a file's modification time by delta_ms and return the new value."""
    current = vault.get_file(path).mtime
    ns = (current + delta_ms) * 1_000_000
    os.utime(vault.resolve(path), ns=(ns, ns))
    return current + delta_ms


@pytest.fixture
def vault(tmp_path):
    root = Path(tmp_path) / "vault"
    root.mkdir()
    return LocalVault(root)


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def settings(vault):
    return Settings(
        tags_to_sync=["shared"],
        access_token="token",
        remote_base_path="/vault",
        vault_id="test",
        vault_path=str(vault.root),
    )


@pytest.fixture
def saved_states():
    return []


@pytest.fixture
def notices():
    return []


@pytest.fixture
def engine_factory(vault, remote, settings, saved_states, notices):
    """Build engines wired to the fake remote; all are disposed afterwards."""
    engines = []

    def factory(**kwargs):
        kwargs.setdefault("client_factory", lambda s: remote)
        engine = SyncEngine(
            vault=vault,
            get_settings=lambda: settings,
            state_store=SyncStateStore(lambda: None, saved_states.append),
            on_notice=notices.append,
            now=lambda: FIXED_NOW,
            **kwargs,
        )
        engine.state_store.initialize()
        engines.append(engine)
        return engine

    yield factory

    for engine in engines:
        engine.dispose()


@pytest.fixture
def engine(engine_factory):
    return engine_factory()


class GatedRemote(FakeRemote):
    """Fake remote whose first listing blocks until released."""

    def __init__(self):
        super().__init__()
        self.listing_started = threading.Event()
        self.release = threading.Event()

    def list_delta(self, remote_base_path, cursor=None):
        if not self.listing_started.is_set():
            self.listing_started.set()
            self.release.wait(5)
        return super().list_delta(remote_base_path, cursor)


@pytest.fixture
def status_log():
    return Mock()
